"""Business logic for tracking and purging orphaned blobs.

A blob becomes orphaned when no node references it any more but the
blob store still holds it: a failed delete, a failed rename cleanup, a
metadata write that failed after its upload, or a crash between the
two stores. Keys land in the OrphanedBlob ledger and are retried by
``purge_orphaned_blobs``.
"""

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import timedelta
from itertools import islice
from typing import TYPE_CHECKING, Final, final

from django.db.models import F
from django.utils import timezone

from server.apps.vfs.exceptions import BlobStorageError
from server.apps.vfs.infrastructure.node_store import is_referenced
from server.apps.vfs.models import Node, OrphanedBlob

if TYPE_CHECKING:
    from server.apps.vfs.infrastructure.storage import BlobStorage

# Keeps IN (...) clauses below SQLite's bound parameter limit
_LOOKUP_CHUNK_SIZE: Final = 500

logger = logging.getLogger(__name__)


@final
@dataclass(frozen=True)
class PurgeResult:
    """Outcome of one purge run."""

    purged: int
    failed: int
    released: int


def queue_orphaned_blob(
    key: str,
    reason: OrphanedBlob.Reason,
    error: BaseException | None = None,
) -> OrphanedBlob:
    """Record a blob key for later deletion.

    Queuing the same key twice keeps one entry and refreshes its error.

    Args:
        key: Blob key no node references any more.
        reason: Why the key was orphaned.
        error: Failure that prevented immediate deletion, if any.

    Returns:
        The ledger entry.
    """
    last_error = str(error) if error else ''
    orphan, created = OrphanedBlob.objects.get_or_create(
        key=key,
        defaults={'reason': reason, 'last_error': last_error},
    )
    if not created and last_error:
        orphan.last_error = last_error
        orphan.save(update_fields=['last_error'])

    logger.warning('Queued orphaned blob: %s (%s)', key, reason)
    return orphan


def purge_orphaned_blobs(
    blob_store: 'BlobStorage',
    batch_size: int,
) -> PurgeResult:
    """Delete queued blobs, oldest first.

    Keys that a node references again are released from the queue
    without touching the blob. Failed deletes stay queued with their
    attempt counter increased.

    Args:
        blob_store: Blob store holding the keys.
        batch_size: Maximum number of ledger entries to process.

    Returns:
        Counts of purged, failed and released entries.
    """
    purged = 0
    failed = 0
    released = 0

    for orphan in OrphanedBlob.objects.order_by('created_at')[:batch_size]:
        if is_referenced(orphan.key):
            logger.info('Blob referenced again, releasing: %s', orphan.key)
            orphan.delete()
            released += 1
            continue

        try:
            blob_store.delete(orphan.key)
        except BlobStorageError as error:
            OrphanedBlob.objects.filter(id=orphan.id).update(
                attempts=F('attempts') + 1,
                last_error=str(error),
            )
            failed += 1
            continue

        orphan.delete()
        purged += 1
        logger.info('Purged orphaned blob: %s', orphan.key)

    return PurgeResult(purged=purged, failed=failed, released=released)


def find_unreferenced_blobs(
    blob_store: 'BlobStorage',
    older_than: timedelta,
) -> list[str]:
    """Find stored blobs that no node references and nothing queued.

    Blobs younger than ``older_than`` are skipped because they may
    belong to a save whose metadata write has not happened yet.

    Args:
        blob_store: Blob store to scan.
        older_than: Grace period.

    Returns:
        Keys that are safe to queue.
    """
    cutoff = timezone.now() - older_than
    keys = blob_store.list(f'{blob_store.key_prefix}/')

    known: set[str] = set()
    for chunk in _chunks(keys, _LOOKUP_CHUNK_SIZE):
        known.update(
            Node.objects.filter(blob_key__in=chunk).values_list(
                'blob_key',
                flat=True,
            ),
        )
        known.update(
            OrphanedBlob.objects.filter(key__in=chunk).values_list(
                'key',
                flat=True,
            ),
        )

    unreferenced = []
    for key in keys:
        if key in known:
            continue
        try:
            modified_at = blob_store.modified_at(key)
        except BlobStorageError:
            logger.exception('Cannot inspect blob, skipping: %s', key)
            continue
        if modified_at <= cutoff:
            unreferenced.append(key)

    logger.info(
        'Found %d unreferenced blobs out of %d',
        len(unreferenced),
        len(keys),
    )
    return unreferenced


def _chunks(items: Sequence[str], size: int) -> Iterator[list[str]]:
    iterator = iter(items)
    while chunk := list(islice(iterator, size)):
        yield chunk
