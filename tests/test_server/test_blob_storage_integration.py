"""Integration tests for the blob store against MinIO.

These tests verify that the ``blobs`` storage talks to a real
S3-compatible server when running in Docker Compose. They are
deselected by default; run them with ``pytest -m integration``.
"""
import os
from typing import Final

import boto3
import pytest
from botocore.client import BaseClient
from botocore.exceptions import ClientError

from server.apps.vfs.exceptions import BlobNotFoundError
from server.apps.vfs.infrastructure.storage import BlobStorage, build_blob_store

_TEST_BUCKET: Final = 'virtual-drive'
_TEST_CONTENT: Final = b'Hello from MinIO integration test!'


@pytest.fixture
def s3_client() -> BaseClient:
    """Create S3 client for MinIO.

    Returns:
        Configured boto3 S3 client for MinIO.
    """
    return boto3.client(
        's3',
        endpoint_url=os.getenv('MINIO_ENDPOINT', 'http://minio:9000'),
        aws_access_key_id=os.getenv('MINIO_ROOT_USER', 'minioadmin'),
        aws_secret_access_key=os.getenv('MINIO_ROOT_PASSWORD', 'minioadmin'),
        region_name='us-east-1',
    )


@pytest.fixture
def minio_blob_store(s3_client: BaseClient, settings) -> BlobStorage:
    """Blob store pointed at MinIO, with the bucket created.

    Args:
        s3_client: boto3 S3 client.
        settings: pytest-django settings fixture.

    Returns:
        BlobStorage for the test bucket.
    """
    try:
        s3_client.head_bucket(Bucket=_TEST_BUCKET)
    except ClientError:
        s3_client.create_bucket(Bucket=_TEST_BUCKET)

    blobs = dict(settings.STORAGES['blobs'])
    blobs['OPTIONS'] = {
        **blobs['OPTIONS'],
        'bucket_name': _TEST_BUCKET,
        'endpoint_url': s3_client.meta.endpoint_url,
    }
    settings.STORAGES = {**settings.STORAGES, 'blobs': blobs}
    return build_blob_store()


@pytest.mark.integration
def test_s3_client_connection(s3_client: BaseClient) -> None:
    """Test that S3 client can connect to MinIO."""
    response = s3_client.list_buckets()
    assert 'Buckets' in response


@pytest.mark.integration
def test_blob_round_trip(minio_blob_store: BlobStorage) -> None:
    """Test put, get, list and delete of one blob.

    Args:
        minio_blob_store: Blob store backed by MinIO.
    """
    key = minio_blob_store.new_key(1, 'integration.txt')

    minio_blob_store.put(key, _TEST_CONTENT, 'text/plain')
    assert minio_blob_store.get(key) == _TEST_CONTENT
    assert key in minio_blob_store.list('users/1/')

    minio_blob_store.delete(key)
    with pytest.raises(BlobNotFoundError):
        minio_blob_store.get(key)


@pytest.mark.integration
def test_delete_missing_blob(minio_blob_store: BlobStorage) -> None:
    """Test deleting a key that never existed succeeds.

    Args:
        minio_blob_store: Blob store backed by MinIO.
    """
    minio_blob_store.delete('users/1/never-uploaded.txt')
