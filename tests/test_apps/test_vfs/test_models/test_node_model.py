"""Tests for Node and OrphanedBlob models."""

import pytest
from django.db import IntegrityError

from server.apps.vfs.models import (
    FOLDER_TYPE,
    BlobContent,
    InlineContent,
    Node,
    OrphanedBlob,
)


@pytest.mark.django_db
class TestNodeModel:
    """Tests for Node model."""

    def test_str(self, user):
        """Test string representation."""
        node = Node.objects.create(
            owner=user,
            name='a.txt',
            node_type='text',
            path='/a.txt',
            content='',
        )

        assert str(node) == f'{user.id}:/a.txt'

    def test_content_locator_variants(self, user):
        """Test the locator reflects whichever variant is set."""
        node = Node(owner=user, name='a.txt', node_type='text', path='/a.txt')

        node.set_content_locator(InlineContent('hi'))
        assert node.content_locator == InlineContent('hi')
        assert node.blob_key is None

        node.set_content_locator(BlobContent(key='users/1/k', url='http://x/k'))
        assert node.content_locator == BlobContent(key='users/1/k', url='http://x/k')
        assert node.content is None

        node.set_content_locator(None)
        assert node.content_locator is None

    def test_empty_inline_content_is_a_locator(self, user):
        """Test an empty string is still inline content, not a folder."""
        node = Node(owner=user, name='a.txt', node_type='text', content='')

        assert node.content_locator == InlineContent('')

    def test_is_folder(self, user):
        """Test folder detection."""
        assert Node(owner=user, node_type=FOLDER_TYPE).is_folder
        assert not Node(owner=user, node_type='text').is_folder

    def test_get_extension(self, user):
        """Test extension extraction."""
        assert Node(owner=user, name='report.PDF').get_extension() == 'pdf'
        assert Node(owner=user, name='Docs').get_extension() == ''

    def test_folder_cannot_hold_content(self, user):
        """Test the check constraint rejects folders with content."""
        with pytest.raises(IntegrityError):
            Node.objects.create(
                owner=user,
                name='Docs',
                node_type=FOLDER_TYPE,
                path='/Docs',
                content='oops',
            )

    def test_file_needs_exactly_one_locator(self, user):
        """Test the check constraint rejects files with both variants."""
        with pytest.raises(IntegrityError):
            Node.objects.create(
                owner=user,
                name='a.txt',
                node_type='text',
                path='/a.txt',
                content='x',
                blob_key='users/1/a.txt',
            )

    def test_file_without_locator(self, user):
        """Test the check constraint rejects files with no content."""
        with pytest.raises(IntegrityError):
            Node.objects.create(
                owner=user,
                name='a.txt',
                node_type='text',
                path='/a.txt',
            )

    def test_negative_size(self, user):
        """Test sizes cannot be negative."""
        with pytest.raises(IntegrityError):
            Node.objects.create(
                owner=user,
                name='a.txt',
                node_type='text',
                path='/a.txt',
                content='',
                size_bytes=-1,
            )

    def test_cascade_on_user_delete(self, user):
        """Test nodes are deleted with their owner."""
        Node.objects.create(
            owner=user,
            name='Docs',
            node_type=FOLDER_TYPE,
            path='/Docs',
        )

        user.delete()

        assert Node.objects.count() == 0


@pytest.mark.django_db
class TestOrphanedBlobModel:
    """Tests for OrphanedBlob model."""

    def test_defaults(self):
        """Test new entries start without attempts."""
        orphan = OrphanedBlob.objects.create(
            key='users/1/a.txt',
            reason=OrphanedBlob.Reason.DELETE_FAILED,
        )

        assert orphan.attempts == 0
        assert orphan.last_error == ''
        assert str(orphan) == 'users/1/a.txt (delete_failed)'

    def test_key_is_unique(self):
        """Test one ledger entry per key."""
        OrphanedBlob.objects.create(
            key='users/1/a.txt',
            reason=OrphanedBlob.Reason.DELETE_FAILED,
        )

        with pytest.raises(IntegrityError):
            OrphanedBlob.objects.create(
                key='users/1/a.txt',
                reason=OrphanedBlob.Reason.REPLACED,
            )
