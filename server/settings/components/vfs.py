"""Virtual file layer settings."""

from server.settings.components import config

# Fail writes instead of storing content inline when the blob store is down
VFS_STRICT_BLOB_WRITES = config(
    'VFS_STRICT_BLOB_WRITES',
    cast=bool,
    default=False,
)

# Prefix under which every blob key is allocated: users/<owner_id>/...
VFS_BLOB_KEY_PREFIX = config('VFS_BLOB_KEY_PREFIX', default='users')

# Unreferenced blobs younger than this may belong to an in-flight save
VFS_ORPHAN_GRACE_SECONDS = config(
    'VFS_ORPHAN_GRACE_SECONDS',
    cast=int,
    default=3600,
)

VFS_RECENT_FILES_LIMIT = config('VFS_RECENT_FILES_LIMIT', cast=int, default=5)
