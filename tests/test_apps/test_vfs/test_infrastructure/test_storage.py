"""Tests for the blob storage backend."""

import re

import pytest
from botocore.exceptions import EndpointConnectionError

from server.apps.vfs.exceptions import BlobNotFoundError, BlobStorageError
from server.apps.vfs.infrastructure.storage import build_blob_store

_KEY_PATTERN = re.compile(r'^users/7/\d{8}T\d{12}-[0-9a-f]{8}_Q1_report.txt$')


def test_new_key_format(blob_store):
    """Test keys are scoped to the owner and embed a sanitized name."""
    key = blob_store.new_key(7, 'Q1 report.txt')

    assert _KEY_PATTERN.match(key)


def test_new_keys_are_unique(blob_store):
    """Test two allocations for the same name never collide."""
    keys = {blob_store.new_key(7, 'a.txt') for _ in range(50)}

    assert len(keys) == 50


def test_put_get_round_trip(blob_store):
    """Test stored bytes come back unchanged."""
    url = blob_store.put('users/7/a.txt', b'payload', 'text/plain')

    assert url.endswith('users/7/a.txt')
    assert '?' not in url
    assert blob_store.get('users/7/a.txt') == b'payload'


def test_put_overwrites(blob_store):
    """Test putting the same key replaces the content."""
    blob_store.put('users/7/a.txt', b'one', 'text/plain')
    blob_store.put('users/7/a.txt', b'two', 'text/plain')

    assert blob_store.get('users/7/a.txt') == b'two'


def test_put_stores_content_type(blob_store, mock_s3):
    """Test the MIME type travels with the object."""
    blob_store.put('users/7/a.md', b'# hi', 'text/markdown')

    stored = mock_s3.Object('virtual-drive', 'users/7/a.md')
    assert stored.content_type == 'text/markdown'


def test_get_missing_key(blob_store):
    """Test reading a missing key raises BlobNotFoundError."""
    with pytest.raises(BlobNotFoundError) as exc_info:
        blob_store.get('users/7/missing.txt')

    assert exc_info.value.key == 'users/7/missing.txt'


def test_delete_is_idempotent(blob_store):
    """Test deleting twice (or a missing key) succeeds."""
    blob_store.put('users/7/a.txt', b'x', 'text/plain')

    blob_store.delete('users/7/a.txt')
    blob_store.delete('users/7/a.txt')

    assert 'users/7/a.txt' not in blob_store.list('users/')


def test_list_by_prefix(blob_store):
    """Test listing returns sorted keys under a prefix only."""
    blob_store.put('users/7/b.txt', b'x', 'text/plain')
    blob_store.put('users/7/a.txt', b'x', 'text/plain')
    blob_store.put('users/8/c.txt', b'x', 'text/plain')

    assert blob_store.list('users/7/') == ['users/7/a.txt', 'users/7/b.txt']


def test_rollback_upload(blob_store):
    """Test rollback removes the uploaded blob."""
    blob_store.put('users/7/a.txt', b'x', 'text/plain')

    assert blob_store.rollback_upload('users/7/a.txt')
    assert 'users/7/a.txt' not in blob_store.list('users/')


def test_connection_errors_are_translated(blob_store, monkeypatch):
    """Test botocore failures surface as BlobStorageError."""

    def unreachable(*args, **kwargs):
        raise EndpointConnectionError(endpoint_url='http://minio:9000')

    monkeypatch.setattr(
        blob_store.bucket.meta.client,
        '_make_api_call',
        unreachable,
    )

    with pytest.raises(BlobStorageError):
        blob_store.put('users/7/a.txt', b'x', 'text/plain')
    with pytest.raises(BlobStorageError):
        blob_store.get('users/7/a.txt')
    with pytest.raises(BlobStorageError):
        blob_store.delete('users/7/a.txt')
    assert not blob_store.rollback_upload('users/7/a.txt')


def test_key_prefix_from_settings(mock_s3, settings):
    """Test the key prefix follows VFS_BLOB_KEY_PREFIX."""
    settings.VFS_BLOB_KEY_PREFIX = 'tenants'

    assert build_blob_store().new_key(1, 'a.txt').startswith('tenants/1/')
