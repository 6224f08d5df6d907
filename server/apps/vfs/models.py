"""Database models for vfs app."""

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Final, final, override

from django.contrib.auth import get_user_model
from django.db import models

User = get_user_model()

FOLDER_TYPE: Final = 'folder'

# Constants for field max lengths
_NAME_MAX_LENGTH: Final = 255
_PATH_MAX_LENGTH: Final = 1024
_TYPE_MAX_LENGTH: Final = 50
_MIME_TYPE_MAX_LENGTH: Final = 255
_WORKSPACE_MAX_LENGTH: Final = 64
_BLOB_KEY_MAX_LENGTH: Final = 1024
_REASON_MAX_LENGTH: Final = 32


@final
@dataclass(frozen=True, slots=True)
class InlineContent:
    """Content stored directly on the node row."""

    text: str


@final
@dataclass(frozen=True, slots=True)
class BlobContent:
    """Content stored in the blob store under ``key``."""

    key: str
    url: str


# Where the bytes of a non-folder node live
ContentLocator = InlineContent | BlobContent


@final
class Node(models.Model):
    """File or folder in a user's virtual tree.

    Hierarchy metadata lives here; content of non-folder nodes lives
    either inline (``content``) or in the blob store (``blob_key``),
    exposed together as ``content_locator``. Folders carry neither.

    Paths are canonical: '/<name>' at the root, '<parent.path>/<name>'
    below a folder, unique per owner and workspace.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
    )

    owner = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='nodes',
        db_index=True,
    )

    workspace_id = models.CharField(
        max_length=_WORKSPACE_MAX_LENGTH,
        null=True,
        blank=True,
        help_text='Optional partition; NULL is the default scope',
    )

    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        related_name='children',
        null=True,
        blank=True,
    )

    name = models.CharField(max_length=_NAME_MAX_LENGTH)

    node_type = models.CharField(
        max_length=_TYPE_MAX_LENGTH,
        help_text="'folder' or a content kind such as 'text' or 'image'",
    )

    path = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        help_text='Canonical path: /folder/sub/file.ext',
    )

    size_bytes = models.BigIntegerField(default=0)

    mime_type = models.CharField(
        max_length=_MIME_TYPE_MAX_LENGTH,
        blank=True,
        default='',
    )

    # Inline variant of the content locator
    content = models.TextField(null=True, blank=True)

    # Blob variant of the content locator
    blob_key = models.CharField(
        max_length=_BLOB_KEY_MAX_LENGTH,
        null=True,
        blank=True,
        db_index=True,
    )
    blob_url = models.CharField(
        max_length=_BLOB_KEY_MAX_LENGTH,
        null=True,
        blank=True,
    )

    is_public = models.BooleanField(default=False)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        db_table = 'vfs_nodes'
        verbose_name = 'Node'  # type: ignore[mutable-override]
        verbose_name_plural = 'Nodes'  # type: ignore[mutable-override]
        ordering = ['path']

        indexes = [
            # Optimize folder listing queries
            models.Index(
                fields=['owner', 'parent', 'name'],
                name='vfs_owner_parent_idx',
            ),
            # Optimize recent files queries
            models.Index(
                fields=['owner', '-updated_at'],
                name='vfs_owner_recent_idx',
            ),
        ]

        constraints = [
            # One node per path in a workspace
            models.UniqueConstraint(
                fields=['owner', 'workspace_id', 'path'],
                name='vfs_owner_workspace_path_unique',
            ),
            # NULL workspaces never compare equal, so guard them separately
            models.UniqueConstraint(
                fields=['owner', 'path'],
                condition=models.Q(workspace_id__isnull=True),
                name='vfs_owner_default_path_unique',
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(
                        node_type=FOLDER_TYPE,
                        content__isnull=True,
                        blob_key__isnull=True,
                    ) | (
                        ~models.Q(node_type=FOLDER_TYPE) & (
                            models.Q(
                                content__isnull=False,
                                blob_key__isnull=True,
                            ) | models.Q(
                                content__isnull=True,
                                blob_key__isnull=False,
                            )
                        )
                    )
                ),
                name='vfs_single_content_locator',
            ),
            models.CheckConstraint(
                condition=models.Q(size_bytes__gte=0),
                name='vfs_size_bytes_non_negative',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.path}'

    @property
    def is_folder(self) -> bool:
        """Whether this node is a folder."""
        return self.node_type == FOLDER_TYPE

    @property
    def content_locator(self) -> ContentLocator | None:
        """Location of the node's content.

        Returns:
            BlobContent or InlineContent for files, None for folders.
        """
        if self.blob_key is not None:
            return BlobContent(key=self.blob_key, url=self.blob_url or '')
        if self.content is not None:
            return InlineContent(text=self.content)
        return None

    def set_content_locator(self, locator: ContentLocator | None) -> None:
        """Point the node at new content, clearing the other variant.

        Args:
            locator: New content location; None for folders.
        """
        if isinstance(locator, BlobContent):
            self.content = None
            self.blob_key = locator.key
            self.blob_url = locator.url
        elif isinstance(locator, InlineContent):
            self.content = locator.text
            self.blob_key = None
            self.blob_url = None
        else:
            self.content = None
            self.blob_key = None
            self.blob_url = None

    def get_extension(self) -> str:
        """Extract file extension.

        Example: 'report.PDF' -> 'pdf'

        Returns:
            Extension without dot (lowercase).
        """
        extension = Path(self.name).suffix
        return extension.lstrip('.').lower()


@final
class OrphanedBlob(models.Model):
    """Blob key that no node references and that still needs deleting.

    Filled by compensating actions whenever a blob delete fails or a
    metadata write fails after its blob was uploaded. Drained by the
    ``purge_orphaned_blobs`` management command.
    """

    class Reason(models.TextChoices):
        """Why the key was queued."""

        METADATA_WRITE_FAILED = 'metadata_write_failed'
        DELETE_FAILED = 'delete_failed'
        RENAME_CLEANUP_FAILED = 'rename_cleanup_failed'
        REPLACED = 'replaced'
        UNREFERENCED = 'unreferenced'

    key = models.CharField(max_length=_BLOB_KEY_MAX_LENGTH, unique=True)

    reason = models.CharField(
        max_length=_REASON_MAX_LENGTH,
        choices=Reason.choices,
    )

    attempts = models.PositiveIntegerField(default=0)

    last_error = models.TextField(blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        """Model metadata."""

        db_table = 'vfs_orphaned_blobs'
        verbose_name = 'Orphaned blob'  # type: ignore[mutable-override]
        verbose_name_plural = 'Orphaned blobs'  # type: ignore[mutable-override]
        ordering = ['created_at']

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.key} ({self.reason})'
