"""Tests for purge_orphaned_blobs management command."""

from io import StringIO

import pytest
from django.apps import apps
from django.core.management import call_command

from server.apps.vfs.logic.orphan_operations import queue_orphaned_blob
from server.apps.vfs.models import OrphanedBlob


@pytest.fixture
def installed_file_service(file_service, monkeypatch):
    """Route the command to the file service of the mocked bucket.

    Returns:
        The installed VirtualFileService.
    """
    monkeypatch.setattr(
        apps.get_app_config('vfs'),
        'file_service',
        file_service,
    )
    return file_service


@pytest.mark.django_db
class TestPurgeOrphanedBlobsCommand:
    """Tests for purge_orphaned_blobs management command."""

    def test_purge_deletes_queued_blobs(self, installed_file_service, blob_store):
        """Test queued blobs are deleted from the store and the ledger."""
        blob_store.put('users/1/a.txt', b'x', 'text/plain')
        queue_orphaned_blob('users/1/a.txt', OrphanedBlob.Reason.DELETE_FAILED)

        out = StringIO()
        call_command('purge_orphaned_blobs', stdout=out)

        assert 'users/1/a.txt' not in blob_store.list('users/')
        assert OrphanedBlob.objects.count() == 0
        assert 'Purged 1 orphaned blobs, 0 failed' in out.getvalue()

    def test_dry_run_keeps_everything(self, installed_file_service, blob_store):
        """Test dry run only reports what would be deleted."""
        blob_store.put('users/1/a.txt', b'x', 'text/plain')
        queue_orphaned_blob('users/1/a.txt', OrphanedBlob.Reason.DELETE_FAILED)

        out = StringIO()
        call_command('purge_orphaned_blobs', '--dry-run', stdout=out)

        assert 'users/1/a.txt' in blob_store.list('users/')
        assert OrphanedBlob.objects.count() == 1
        assert 'Would delete: users/1/a.txt' in out.getvalue()
        assert 'Would purge 1 orphaned blobs' in out.getvalue()

    def test_scan_queues_and_purges_unreferenced(
        self,
        installed_file_service,
        blob_store,
        make_text_file,
        settings,
    ):
        """Test scan finds stray blobs while referenced ones survive."""
        settings.VFS_ORPHAN_GRACE_SECONDS = 0
        node = make_text_file()
        blob_store.put('users/1/stray.txt', b'x', 'text/plain')

        out = StringIO()
        call_command('purge_orphaned_blobs', '--scan', stdout=out)

        assert 'users/1/stray.txt' not in blob_store.list('users/')
        assert node.blob_key in blob_store.list('users/')
        assert 'Found 1 unreferenced blobs' in out.getvalue()
        assert 'Purged 1 orphaned blobs' in out.getvalue()

    def test_scan_respects_grace_period(
        self,
        installed_file_service,
        blob_store,
    ):
        """Test fresh blobs are not touched by a scan."""
        blob_store.put('users/1/fresh.txt', b'x', 'text/plain')

        out = StringIO()
        call_command('purge_orphaned_blobs', '--scan', stdout=out)

        assert 'users/1/fresh.txt' in blob_store.list('users/')
        assert 'Purged 0 orphaned blobs' in out.getvalue()

    def test_batch_size(self, installed_file_service):
        """Test batch size limits how many entries are processed."""
        for index in range(3):
            queue_orphaned_blob(
                f'users/1/{index}.txt',
                OrphanedBlob.Reason.DELETE_FAILED,
            )

        out = StringIO()
        call_command('purge_orphaned_blobs', '--batch-size', '2', stdout=out)

        assert OrphanedBlob.objects.count() == 1
        assert 'Purged 2 orphaned blobs' in out.getvalue()
