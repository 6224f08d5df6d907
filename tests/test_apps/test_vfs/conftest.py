"""Shared fixtures for vfs app tests."""

from typing import Final

import boto3
import pytest
from django.contrib.auth import get_user_model
from moto import mock_aws

from server.apps.vfs.exceptions import BlobStorageError
from server.apps.vfs.infrastructure.storage import build_blob_store
from server.apps.vfs.logic.file_service import VirtualFileService
from server.apps.vfs.logic.specs import NodeSpec

User = get_user_model()

_BUCKET: Final = 'virtual-drive'


@pytest.fixture
def user(db):
    """Create test user.

    Returns:
        User instance for testing.
    """
    return User.objects.create_user(
        username='testuser',
        password='testpass123',
        email='test@example.com',
    )


@pytest.fixture
def other_user(db):
    """Create second test user for isolation tests.

    Returns:
        Second user instance.
    """
    return User.objects.create_user(
        username='otheruser',
        password='testpass123',
        email='other@example.com',
    )


@pytest.fixture
def mock_s3():
    """Mock S3 service with virtual-drive bucket.

    Yields:
        boto3 S3 resource with virtual-drive bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket=_BUCKET)

        yield conn


@pytest.fixture
def blob_store(mock_s3):
    """Blob store talking to the mocked bucket.

    Returns:
        Fresh BlobStorage built from settings.
    """
    return build_blob_store()


@pytest.fixture
def file_service(blob_store):
    """File service with the default (degrading) write policy.

    Returns:
        VirtualFileService instance.
    """
    return VirtualFileService(blob_store)


@pytest.fixture
def strict_file_service(blob_store):
    """File service that fails writes when the blob store is down.

    Returns:
        VirtualFileService instance in strict mode.
    """
    return VirtualFileService(blob_store, strict_blob_writes=True)


@pytest.fixture
def blob_store_down(blob_store, monkeypatch):
    """Make every blob call fail as if the store were unreachable.

    Returns:
        The patched blob store.
    """

    def fail(key, *args, **kwargs):
        raise BlobStorageError(key, 'connect timeout')

    for method in ('put', 'get', 'delete'):
        monkeypatch.setattr(blob_store, method, fail)
    return blob_store


@pytest.fixture
def make_text_file(file_service, user):
    """Factory saving a text file for the test user.

    Returns:
        Callable taking name, content and optional parent ID.
    """

    def factory(name='notes.txt', content='hello', parent_id=None):
        return file_service.save_file(
            NodeSpec(
                name=name,
                node_type='text',
                owner=user,
                content=content,
                parent_id=parent_id,
            ),
        )

    return factory
