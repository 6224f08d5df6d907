"""Business logic layer for vfs app.

This package contains the virtual file operations:
- Save, read, list, delete, move, rename and copy of nodes
- Canonical path handling and subtree rewrites
- Orphaned blob bookkeeping

Callers go through ``file_service.get_file_service()``; the service is
built once in the app config with the configured blob store.
"""
