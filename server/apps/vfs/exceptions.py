"""Exceptions for vfs app."""

from typing import override

from django.core.exceptions import ValidationError


class VfsError(Exception):
    """Base class for virtual file layer errors."""


class NodeNotFoundError(VfsError):
    """Raised when a node is missing or not owned by the caller.

    Both cases are reported identically so that callers cannot probe
    for nodes owned by other users.
    """

    def __init__(self, node_ref: object) -> None:
        """Initialize NodeNotFoundError.

        Args:
            node_ref: Node ID or path that was looked up.
        """
        self.node_ref = node_ref
        super().__init__(f'Node not found: {node_ref}')


class PathConflictError(VfsError):
    """Raised when another node already occupies a path in the scope."""

    def __init__(self, path: str, workspace_id: str | None = None) -> None:
        """Initialize PathConflictError.

        Args:
            path: Conflicting node path.
            workspace_id: Workspace the path was checked in.
        """
        self.path = path
        self.workspace_id = workspace_id
        super().__init__(f'Path already exists: {path}')


class NodeValidationError(VfsError, ValidationError):
    """Raised for missing or invalid input (name, parent, target)."""

    def __init__(self, message: str) -> None:
        """Initialize NodeValidationError.

        Args:
            message: Human readable reason.
        """
        ValidationError.__init__(self, message)

    @override
    def __str__(self) -> str:
        """Return the plain message."""
        return str(self.message)


class BlobStorageError(VfsError):
    """Raised when the blob store fails and no degrade path applies."""

    def __init__(self, key: str, message: str) -> None:
        """Initialize BlobStorageError.

        Args:
            key: Blob key involved in the failed call.
            message: Description of the failure.
        """
        self.key = key
        super().__init__(f'Blob storage error for {key}: {message}')


class BlobNotFoundError(BlobStorageError):
    """Raised when reading a blob key that does not exist."""

    def __init__(self, key: str) -> None:
        """Initialize BlobNotFoundError.

        Args:
            key: Missing blob key.
        """
        super().__init__(key, 'object does not exist')
