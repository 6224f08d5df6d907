"""Management command to delete orphaned blobs."""

import logging
from datetime import timedelta
from typing import Any, Final

from django.conf import settings
from django.core.management.base import BaseCommand

from server.apps.vfs.exceptions import BlobStorageError
from server.apps.vfs.logic.file_service import get_file_service
from server.apps.vfs.logic.orphan_operations import (
    find_unreferenced_blobs,
    purge_orphaned_blobs,
    queue_orphaned_blob,
)
from server.apps.vfs.models import OrphanedBlob

_DEFAULT_BATCH_SIZE: Final = 1000

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Delete blobs that no node references any more."""

    help = 'Delete queued orphaned blobs, optionally scanning for new ones'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without deleting',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=_DEFAULT_BATCH_SIZE,
            help=f'Max blobs to process (default: {_DEFAULT_BATCH_SIZE})',
        )
        parser.add_argument(
            '--scan',
            action='store_true',
            help='Queue stored blobs that no node references first',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the purge command.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        dry_run = options['dry_run']
        batch_size = options['batch_size']
        blob_store = get_file_service().blob_store

        if options['scan']:
            self._scan(blob_store, dry_run=dry_run)

        if dry_run:
            queued = OrphanedBlob.objects.order_by('created_at')[:batch_size]
            count = 0
            for orphan in queued:
                self.stdout.write(
                    f'Would delete: {orphan.key} '
                    f'(reason: {orphan.reason}, attempts: {orphan.attempts})',
                )
                count += 1
            self.stdout.write(
                self.style.SUCCESS(f'Would purge {count} orphaned blobs'),
            )
            return

        result = purge_orphaned_blobs(blob_store, batch_size)
        if result.released:
            self.stdout.write(
                f'Released {result.released} blobs referenced again',
            )
        self.stdout.write(
            self.style.SUCCESS(
                f'Purged {result.purged} orphaned blobs, '
                f'{result.failed} failed',
            ),
        )

    def _scan(self, blob_store: Any, *, dry_run: bool) -> None:
        grace = timedelta(seconds=settings.VFS_ORPHAN_GRACE_SECONDS)
        self.stdout.write(f'Scanning blob store for blobs older than {grace}')
        try:
            keys = find_unreferenced_blobs(blob_store, grace)
        except BlobStorageError as exc:
            self.stderr.write(f'Scan failed: {exc}')
            logger.exception('Orphaned blob scan failed')
            return

        for key in keys:
            if dry_run:
                self.stdout.write(f'Would queue: {key}')
                continue
            queue_orphaned_blob(key, OrphanedBlob.Reason.UNREFERENCED)
        self.stdout.write(f'Found {len(keys)} unreferenced blobs')
