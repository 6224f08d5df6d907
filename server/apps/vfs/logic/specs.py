"""Inputs and outputs of the virtual file service."""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Self, final
from uuid import UUID

from server.apps.vfs.models import FOLDER_TYPE, BlobContent, Node


@final
class SaveMode(enum.Enum):
    """What ``save_file`` does when the target path is already taken."""

    # Update the node at the path in place (upsert by path)
    CREATE_OR_REPLACE = 'create_or_replace'

    # Refuse with PathConflictError
    CREATE_ONLY = 'create_only'


@final
@dataclass(frozen=True, kw_only=True)
class NodeSpec:
    """Description of a node to save.

    ``path`` is optional: it is derived from the parent (or the root)
    and, when given, must match the derived canonical path. ``size``
    is only checked for sign: the stored size is always the UTF-8 byte
    length of the content actually held.
    """

    name: str
    node_type: str
    owner: Any
    path: str | None = None
    size: int | None = None
    content: str | None = None
    workspace_id: str | None = None
    parent_id: UUID | str | None = None
    is_public: bool = False

    @property
    def is_folder(self) -> bool:
        """Whether the described node is a folder."""
        return self.node_type == FOLDER_TYPE


@final
@dataclass(frozen=True, kw_only=True)
class NodeView:
    """Node metadata together with its resolved text content.

    ``content`` is None for folders and whenever the blob could not be
    read as UTF-8 text; ``content_available`` tells the latter apart.
    """

    id: UUID
    name: str
    node_type: str
    path: str
    parent_id: UUID | None
    owner_id: int
    workspace_id: str | None
    size_bytes: int
    mime_type: str
    blob_key: str | None
    blob_url: str | None
    is_public: bool
    created_at: datetime
    updated_at: datetime
    content: str | None = None
    content_available: bool = True

    @classmethod
    def from_node(
        cls,
        node: Node,
        content: str | None = None,
        *,
        content_available: bool = True,
    ) -> Self:
        """Build a view of a node.

        Args:
            node: Node row.
            content: Resolved text content, if any.
            content_available: False when the content could not be read.

        Returns:
            NodeView instance.
        """
        locator = node.content_locator
        blob = locator if isinstance(locator, BlobContent) else None
        return cls(
            id=node.id,
            name=node.name,
            node_type=node.node_type,
            path=node.path,
            parent_id=node.parent_id,
            owner_id=node.owner_id,
            workspace_id=node.workspace_id,
            size_bytes=node.size_bytes,
            mime_type=node.mime_type,
            blob_key=blob.key if blob else None,
            blob_url=blob.url if blob else None,
            is_public=node.is_public,
            created_at=node.created_at,
            updated_at=node.updated_at,
            content=content,
            content_available=content_available,
        )

    @property
    def is_folder(self) -> bool:
        """Whether the node is a folder."""
        return self.node_type == FOLDER_TYPE
