"""Blob content store on top of S3-compatible storage."""

import logging
import secrets
from datetime import UTC, datetime
from typing import Any, Final, final, override

from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings
from django.core.files.storage import storages
from storages.backends.s3 import S3Storage
from storages.utils import clean_name, setting

from server.apps.vfs.exceptions import BlobNotFoundError, BlobStorageError
from server.apps.vfs.infrastructure.metadata import sanitize_key_name

logger = logging.getLogger(__name__)

_BLOB_STORAGE_ALIAS: Final = 'blobs'
_MISSING_KEY_CODES: Final = frozenset(('NoSuchKey', '404', 'NotFound'))
_HTTP_NOT_FOUND: Final = 404


def _is_missing_key(error: ClientError) -> bool:
    """Check whether an S3 error means the key does not exist."""
    error_code = error.response.get('Error', {}).get('Code', '')
    status_code = error.response.get('ResponseMetadata', {}).get(
        'HTTPStatusCode',
    )
    return error_code in _MISSING_KEY_CODES or status_code == _HTTP_NOT_FOUND


@final
class BlobStorage(S3Storage):
    """S3 storage backend for node content.

    Extends django-storages S3Storage with the blob contract used by
    the virtual file layer:
    - put/get/delete/list by key, with botocore errors translated
      into BlobStorageError
    - collision-resistant key allocation per owner
    - best-effort rollback for compensating failed metadata writes

    Blobs know nothing about the node hierarchy; the key is the only
    link between a node row and its content.
    """

    @override
    def get_default_settings(self) -> dict[str, Any]:
        """Add the key prefix to the django-storages settings.

        Returns:
            Default settings including ``key_prefix``.
        """
        defaults = super().get_default_settings()
        defaults['key_prefix'] = setting('VFS_BLOB_KEY_PREFIX', 'users')
        return defaults

    def new_key(self, owner_id: object, name: str) -> str:
        """Allocate a new blob key for an owner's file.

        The microsecond timestamp orders keys; the random token keeps
        concurrent writers of the same name apart.

        Args:
            owner_id: ID of the owning user.
            name: Display name of the node.

        Returns:
            Key like 'users/7/20260131T143052123456-9f1c2a7e_notes.txt'.
        """
        timestamp = datetime.now(tz=UTC).strftime('%Y%m%dT%H%M%S%f')
        token = secrets.token_hex(4)
        return '{prefix}/{owner}/{stamp}-{token}_{name}'.format(
            prefix=self.key_prefix,
            owner=owner_id,
            stamp=timestamp,
            token=token,
            name=sanitize_key_name(name),
        )

    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Write bytes under key, overwriting any previous object.

        Args:
            key: Blob key.
            data: Content to store.
            content_type: MIME type stored with the object.

        Returns:
            URL of the stored object.

        Raises:
            BlobStorageError: If the upload fails or times out.
        """
        try:
            logger.info('Uploading blob: %s (%d bytes)', key, len(data))
            self.bucket.Object(self._object_name(key)).put(
                Body=data,
                ContentType=content_type,
            )
            url = self.url(key)
        except (BotoCoreError, ClientError) as error:
            logger.exception('Failed to upload blob: %s', key)
            raise BlobStorageError(key, str(error)) from error
        logger.info('Successfully uploaded blob: %s', key)
        return url

    def get(self, key: str) -> bytes:
        """Read the content stored under key.

        Args:
            key: Blob key.

        Returns:
            Stored bytes.

        Raises:
            BlobNotFoundError: If no object exists under key.
            BlobStorageError: If the download fails or times out.
        """
        try:
            logger.debug('Downloading blob: %s', key)
            response = self.bucket.Object(self._object_name(key)).get()
            return response['Body'].read()
        except ClientError as error:
            if _is_missing_key(error):
                logger.warning('Blob not found: %s', key)
                raise BlobNotFoundError(key) from error
            logger.exception('Failed to download blob: %s', key)
            raise BlobStorageError(key, str(error)) from error
        except BotoCoreError as error:
            logger.exception('Failed to download blob: %s', key)
            raise BlobStorageError(key, str(error)) from error

    @override
    def delete(self, name: str) -> None:
        """Delete a blob; deleting a missing key is not an error.

        Args:
            name: Blob key.

        Raises:
            BlobStorageError: If the delete call fails or times out.
        """
        try:
            logger.info('Deleting blob: %s', name)
            super().delete(name)
        except ClientError as error:
            if _is_missing_key(error):
                logger.info('Blob already absent: %s', name)
                return
            logger.exception('Failed to delete blob: %s', name)
            raise BlobStorageError(name, str(error)) from error
        except BotoCoreError as error:
            logger.exception('Failed to delete blob: %s', name)
            raise BlobStorageError(name, str(error)) from error
        logger.info('Successfully deleted blob: %s', name)

    def list(self, prefix: str) -> list[str]:  # noqa: WPS125
        """List every key under a prefix.

        Args:
            prefix: Key prefix (e.g., 'users/7/').

        Returns:
            Sorted keys, relative to the storage location.

        Raises:
            BlobStorageError: If listing fails.
        """
        object_prefix = self._object_name(prefix) if prefix else self.location
        location_prefix = f'{self.location}/' if self.location else ''
        try:
            keys = [
                blob.key.removeprefix(location_prefix)
                for blob in self.bucket.objects.filter(Prefix=object_prefix)
            ]
        except (BotoCoreError, ClientError) as error:
            logger.exception('Failed to list blobs under: %s', prefix)
            raise BlobStorageError(prefix, str(error)) from error
        return sorted(keys)

    def modified_at(self, key: str) -> datetime:
        """Get the last modification time of a blob.

        Args:
            key: Blob key.

        Returns:
            Timezone-aware modification time.

        Raises:
            BlobStorageError: If the object cannot be inspected.
        """
        try:
            return self.get_modified_time(key)
        except (BotoCoreError, ClientError) as error:
            raise BlobStorageError(key, str(error)) from error

    def rollback_upload(self, key: str) -> bool:
        """Delete an uploaded blob whose metadata write failed.

        This is a best-effort operation - if deletion fails, the error
        is logged but not raised, since the metadata write has already
        failed and its error is the one the caller needs to see.

        Args:
            key: Blob key to delete.

        Returns:
            True if the blob was removed, False if it is now orphaned.
        """
        try:
            logger.warning('Rolling back upload, deleting blob: %s', key)
            self.delete(key)
        except BlobStorageError:
            logger.exception('Failed to rollback upload, orphaned blob: %s', key)
            return False
        logger.info('Successfully rolled back blob upload: %s', key)
        return True

    def _object_name(self, key: str) -> str:
        return self._normalize_name(clean_name(key))


def build_blob_store() -> BlobStorage:
    """Construct the blob store from the ``STORAGES['blobs']`` setting.

    Returns:
        New BlobStorage instance.
    """
    return storages.create_storage(  # type: ignore[return-value]
        settings.STORAGES[_BLOB_STORAGE_ALIAS],
    )
