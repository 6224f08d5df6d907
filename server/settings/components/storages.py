"""Django storage configuration for the blob content store.

Node content lives in an S3-compatible bucket:
- MinIO for local development
- Wasabi, Cloudflare R2 or AWS S3 in production

All of them use the same S3Storage backend through django-storages.
"""

from typing import Any, Final

from botocore.config import Config

from server.settings.components import config

# Every blob call is bounded; a timeout counts as a blob failure.
_BLOB_TIMEOUT: Final = config('VFS_BLOB_TIMEOUT_SECONDS', cast=float, default=5)
_BLOB_MAX_ATTEMPTS: Final = config('VFS_BLOB_MAX_ATTEMPTS', cast=int, default=2)

STORAGES: Final[dict[str, dict[str, Any]]] = {
    'default': {
        'BACKEND': 'django.core.files.storage.FileSystemStorage',
    },
    'blobs': {
        'BACKEND': 'server.apps.vfs.infrastructure.storage.BlobStorage',
        'OPTIONS': {
            'bucket_name': config(
                'AWS_STORAGE_BUCKET_NAME',
                default='virtual-drive',
            ),
            'access_key': config('AWS_ACCESS_KEY_ID', default='minioadmin'),
            'secret_key': config(
                'AWS_SECRET_ACCESS_KEY',
                default='minioadmin',
            ),
            'endpoint_url': config(
                'AWS_S3_ENDPOINT_URL',
                default=None,
            ),
            'region_name': config(
                'AWS_S3_REGION_NAME',
                default='us-east-1',
            ),
            # Public endpoint used to build blob URLs (e.g. a CDN domain)
            'custom_domain': config('AWS_S3_CUSTOM_DOMAIN', default=None),
            'querystring_auth': False,  # Stable URLs stored on nodes
            'file_overwrite': True,  # Re-saving content reuses its key
            'default_acl': None,  # Inherit bucket ACL
            'client_config': Config(
                connect_timeout=_BLOB_TIMEOUT,
                read_timeout=_BLOB_TIMEOUT,
                retries={'max_attempts': _BLOB_MAX_ATTEMPTS},
            ),
        },
    },
    'staticfiles': {
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}
