"""Infrastructure layer for vfs app.

This package talks to the two stores behind the virtual file layer:
- Blob storage on S3-compatible object stores (MinIO, R2, AWS)
- Owner-scoped node metadata queries
- Filename metadata (MIME type, node kind, key-safe names)

Nothing here knows about paths, save modes or degrade policies.
"""
