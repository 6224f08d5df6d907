"""Virtual file service: files and folders across two stores.

Node metadata lives in the database, file content in the blob store.
There is no transaction spanning both, so every operation follows the
same ordering rules:

- Writes upload the blob first and write metadata second; if the
  metadata write fails, the fresh upload is rolled back (or queued as
  orphaned when even that fails).
- Reads never fail because of the blob store: they return metadata
  without content instead.
- Writes fall back to inline content when the blob store is down,
  unless the service runs with ``strict_blob_writes``.
- Blob deletes are best-effort and may leave orphaned blobs; failed
  deletes are queued for ``purge_orphaned_blobs``.
"""

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Final, final
from uuid import UUID

from django.apps import apps
from django.db import transaction

from server.apps.vfs.exceptions import (
    BlobStorageError,
    NodeNotFoundError,
    NodeValidationError,
    PathConflictError,
)
from server.apps.vfs.infrastructure import node_store
from server.apps.vfs.infrastructure.metadata import detect_mime_type
from server.apps.vfs.logic.orphan_operations import queue_orphaned_blob
from server.apps.vfs.logic.paths import (
    child_path,
    dedupe_name,
    is_same_or_descendant,
    parent_path,
    rewrite_subtree,
    validate_name,
)
from server.apps.vfs.logic.specs import NodeSpec, NodeView, SaveMode
from server.apps.vfs.models import (
    FOLDER_TYPE,
    BlobContent,
    ContentLocator,
    InlineContent,
    Node,
    OrphanedBlob,
)

if TYPE_CHECKING:
    from server.apps.vfs.infrastructure.storage import BlobStorage

# User type for Django's dynamic user model
_User = Any

_NodeId = UUID | str

_TEXT_ENCODING: Final = 'utf-8'
_DEFAULT_RECENT_FILES_LIMIT: Final = 5

# Fields rewritten whenever a node's content moves
_CONTENT_FIELDS: Final = ('content', 'blob_key', 'blob_url')

logger = logging.getLogger(__name__)


@final
class VirtualFileService:
    """Public contract of the virtual file layer.

    The service keeps no state besides its collaborators; each call is
    a short sequence of blob and metadata store calls.
    """

    def __init__(
        self,
        blob_store: 'BlobStorage',
        *,
        strict_blob_writes: bool = False,
        recent_files_limit: int = _DEFAULT_RECENT_FILES_LIMIT,
    ) -> None:
        """Initialize the service.

        Args:
            blob_store: Blob content store.
            strict_blob_writes: Raise BlobStorageError on upload failure
                instead of storing content inline.
            recent_files_limit: Default size of ``get_recent_files``.
        """
        self._blob_store = blob_store
        self._strict_blob_writes = strict_blob_writes
        self._recent_files_limit = recent_files_limit

    @property
    def blob_store(self) -> 'BlobStorage':
        """Blob store used by this service."""
        return self._blob_store

    def save_file(
        self,
        spec: NodeSpec,
        mode: SaveMode = SaveMode.CREATE_OR_REPLACE,
    ) -> Node:
        """Create a node, or replace the node at the same path.

        With CREATE_OR_REPLACE an existing node at the path is updated
        in place (type, visibility, content); with CREATE_ONLY it is a
        conflict.

        Transaction safety: content is uploaded first, then the node row
        is written. If the row write fails, a freshly uploaded blob is
        deleted again (rollback).

        Args:
            spec: Description of the node.
            mode: Behaviour when the path is already taken.

        Returns:
            The created or updated Node.

        Raises:
            NodeValidationError: If name, type, size or path are invalid.
            NodeNotFoundError: If the parent folder does not exist.
            PathConflictError: If the path is taken and cannot be replaced.
            BlobStorageError: If the upload fails in strict mode.
        """
        name = validate_name(spec.name)
        if not spec.node_type:
            raise NodeValidationError('Type is required')
        if spec.size is not None and spec.size < 0:
            raise NodeValidationError('Size cannot be negative')

        parent = self._resolve_parent(
            spec.parent_id,
            spec.owner,
            spec.workspace_id,
        )
        workspace_id = parent.workspace_id if parent else spec.workspace_id
        path = child_path(parent.path if parent else None, name)
        if spec.path is not None and spec.path != path:
            raise NodeValidationError(
                f'Path {spec.path} does not match its parent, expected {path}',
            )

        existing = node_store.find_by_path(path, spec.owner, workspace_id)
        if existing is not None:
            if mode is SaveMode.CREATE_ONLY:
                raise PathConflictError(path, workspace_id)
            if existing.is_folder != spec.is_folder:
                # A folder is never overwritten by a file or vice versa
                raise PathConflictError(path, workspace_id)

        previous = existing.content_locator if existing else None
        locator, size_bytes = self._prepare_content(spec, name, existing)
        uploaded_key = _fresh_blob_key(locator, previous)

        try:
            if existing is None:
                node = self._insert(
                    spec,
                    name=name,
                    path=path,
                    parent=parent,
                    workspace_id=workspace_id,
                    locator=locator,
                    size_bytes=size_bytes,
                )
            else:
                node = self._replace(
                    existing,
                    spec,
                    locator=locator,
                    size_bytes=size_bytes,
                )
        except Exception:
            logger.exception('Metadata write failed for node: %s', path)
            if uploaded_key is not None:
                self._compensate_upload(uploaded_key)
            raise

        if isinstance(previous, BlobContent) and not isinstance(
            locator,
            BlobContent,
        ):
            # Content fell back inline; the old blob is stale now
            queue_orphaned_blob(previous.key, OrphanedBlob.Reason.REPLACED)

        return node

    def create_folder(
        self,
        name: str,
        parent_id: _NodeId | None,
        owner: _User,
        workspace_id: str | None = None,
    ) -> Node:
        """Create a folder at the root or inside another folder.

        Args:
            name: Folder name.
            parent_id: Parent folder ID; None for the root.
            owner: Owner of the folder.
            workspace_id: Workspace; defaults to the parent's workspace.

        Returns:
            The created folder Node.

        Raises:
            NodeValidationError: If the name or parent is invalid.
            NodeNotFoundError: If the parent folder does not exist.
            PathConflictError: If the path is already taken.
        """
        return self.save_file(
            NodeSpec(
                name=name,
                node_type=FOLDER_TYPE,
                owner=owner,
                parent_id=parent_id,
                workspace_id=workspace_id,
            ),
            mode=SaveMode.CREATE_ONLY,
        )

    def get_file(self, node_id: _NodeId, owner: _User) -> NodeView:
        """Get a node with its text content resolved.

        Args:
            node_id: Node ID.
            owner: Owner of the node.

        Returns:
            NodeView; content is None for folders and for blobs that
            cannot be read or are not valid UTF-8 text.

        Raises:
            NodeNotFoundError: If absent or owned by someone else.
        """
        return self._resolve_content(node_store.get_by_id(node_id, owner))

    def get_file_by_path(
        self,
        path: str,
        owner: _User,
        workspace_id: str | None = None,
    ) -> NodeView:
        """Get the node at a path with its text content resolved.

        Args:
            path: Canonical node path.
            owner: Owner of the node.
            workspace_id: Workspace; None is the default scope.

        Returns:
            NodeView of the node.

        Raises:
            NodeNotFoundError: If no node occupies the path.
        """
        node = node_store.find_by_path(path, owner, workspace_id)
        if node is None:
            raise NodeNotFoundError(path)
        return self._resolve_content(node)

    def get_files_in_folder(
        self,
        parent_id: _NodeId | None,
        owner: _User,
        workspace_id: str | None = None,
    ) -> list[Node]:
        """List the direct children of a folder, or the root.

        Args:
            parent_id: Folder ID; None lists the root of the workspace.
            owner: Owner of the nodes.
            workspace_id: Workspace, used when listing the root.

        Returns:
            Child nodes.

        Raises:
            NodeNotFoundError: If the folder does not exist.
            NodeValidationError: If the node is not a folder.
        """
        if parent_id is None:
            return list(
                node_store.list_roots(owner, workspace_id).order_by('name'),
            )

        folder = node_store.get_by_id(parent_id, owner)
        if not folder.is_folder:
            raise NodeValidationError(f'Not a folder: {folder.path}')
        return list(node_store.list_children(folder.id, owner))

    def get_root_files(
        self,
        owner: _User,
        workspace_id: str | None = None,
    ) -> list[Node]:
        """List root-level nodes, folders first."""
        return list(node_store.list_roots(owner, workspace_id))

    def get_recent_files(
        self,
        owner: _User,
        limit: int | None = None,
    ) -> list[Node]:
        """List the most recently updated files (folders excluded).

        Args:
            owner: Owner of the nodes.
            limit: Maximum number of files; the service default if None.

        Returns:
            Files ordered by update time, newest first.

        Raises:
            NodeValidationError: If limit is not positive.
        """
        effective_limit = self._recent_files_limit if limit is None else limit
        if effective_limit < 1:
            raise NodeValidationError('Limit must be positive')
        return node_store.list_recent(owner, effective_limit)

    def get_user_storage_usage(self, owner: _User) -> int:
        """Total size in bytes of the owner's files."""
        return node_store.sum_sizes(owner, exclude_folders=True)

    def get_file_content(self, node_id: _NodeId, owner: _User) -> bytes:
        """Read the raw content of a file for download.

        Unlike ``get_file`` there is nothing to degrade to here, so blob
        failures are raised.

        Args:
            node_id: Node ID.
            owner: Owner of the node.

        Returns:
            Content bytes.

        Raises:
            NodeNotFoundError: If absent or owned by someone else.
            NodeValidationError: If the node is a folder.
            BlobStorageError: If the blob cannot be read.
        """
        node = node_store.get_by_id(node_id, owner)
        locator = node.content_locator
        if isinstance(locator, BlobContent):
            return self._blob_store.get(locator.key)
        if isinstance(locator, InlineContent):
            return locator.text.encode(_TEXT_ENCODING)
        raise NodeValidationError(f'Folders have no content: {node.path}')

    def delete_file(self, node_id: _NodeId, owner: _User) -> None:
        """Delete a node; folders are deleted with all descendants.

        Children are deleted before their parents. For each node the
        blob is deleted first (best effort: a failure is logged and the
        key queued as orphaned) and the metadata row last.

        Args:
            node_id: Node ID.
            owner: Owner of the node.

        Raises:
            NodeNotFoundError: If absent or owned by someone else.
        """
        node = node_store.get_by_id(node_id, owner)
        subtree = self._collect_subtree(node)
        logger.info(
            'Deleting node: ID=%s, path=%s (%d nodes)',
            node.id,
            node.path,
            len(subtree),
        )

        for target in reversed(subtree):
            self._release_blob(target, OrphanedBlob.Reason.DELETE_FAILED)
            node_store.delete_node(target)

    def move_file(
        self,
        node_id: _NodeId,
        target_folder_id: _NodeId,
        owner: _User,
    ) -> Node:
        """Move a node into another folder.

        Blob keys do not depend on paths, so moving never touches the
        blob store. Moving a folder rewrites all descendant paths.

        Args:
            node_id: Node to move.
            target_folder_id: Destination folder.
            owner: Owner of both nodes.

        Returns:
            The moved Node.

        Raises:
            NodeNotFoundError: If the node does not exist.
            NodeValidationError: If the target is missing, not a folder,
                in another workspace, or inside the moved folder.
            PathConflictError: If the destination path is taken.
        """
        node = node_store.get_by_id(node_id, owner)
        target = self._resolve_target_folder(target_folder_id, node, owner)

        new_path = child_path(target.path, node.name)
        if new_path == node.path:
            return node
        if node_store.path_exists(
            new_path,
            owner,
            node.workspace_id,
            exclude_id=node.id,
        ):
            raise PathConflictError(new_path, node.workspace_id)

        old_path = node.path
        logger.info('Moving node from %s to %s', old_path, new_path)
        node.parent = target
        node.path = new_path
        self._write_path_change(node, old_path, ['parent', 'path'])
        return node

    def rename_file(
        self,
        node_id: _NodeId,
        new_name: str,
        owner: _User,
    ) -> Node:
        """Rename a node in place.

        Blob-backed files get their content copied to a key matching
        the new name; the old key is deleted afterwards (best effort).
        If the copy fails, the node keeps its old key. Renaming a
        folder rewrites all descendant paths.

        Args:
            node_id: Node to rename.
            new_name: New name.
            owner: Owner of the node.

        Returns:
            The renamed Node.

        Raises:
            NodeNotFoundError: If the node does not exist.
            NodeValidationError: If the name is invalid.
            PathConflictError: If a sibling already has the name.
        """
        node = node_store.get_by_id(node_id, owner)
        name = validate_name(new_name)
        new_path = child_path(parent_path(node.path), name)
        if node_store.path_exists(
            new_path,
            owner,
            node.workspace_id,
            exclude_id=node.id,
        ):
            raise PathConflictError(new_path, node.workspace_id)

        old_path = node.path
        old_locator = node.content_locator
        new_locator = None
        if isinstance(old_locator, BlobContent):
            new_locator = self._copy_blob(old_locator, node.owner_id, name)

        logger.info('Renaming node from %s to %s', old_path, new_path)
        node.name = name
        node.path = new_path
        if not node.is_folder:
            node.mime_type = detect_mime_type(name)
        if new_locator is not None:
            node.set_content_locator(new_locator)

        try:
            self._write_path_change(
                node,
                old_path,
                ['name', 'path', 'mime_type', *_CONTENT_FIELDS],
            )
        except Exception:
            logger.exception('Rename failed for node: %s', old_path)
            if new_locator is not None:
                self._compensate_upload(new_locator.key)
            raise

        if new_locator is not None and isinstance(old_locator, BlobContent):
            self._delete_blob(
                old_locator.key,
                OrphanedBlob.Reason.RENAME_CLEANUP_FAILED,
            )
        return node

    def copy_file(
        self,
        node_id: _NodeId,
        target_folder_id: _NodeId | None,
        owner: _User,
    ) -> Node:
        """Copy a file or a whole folder into a folder (or the root).

        The copy takes the source name, or 'name (n).ext' when the
        target already has a node with that name. Blob content is
        duplicated under new keys.

        Args:
            node_id: Node to copy.
            target_folder_id: Destination folder; None for the root.
            owner: Owner of both nodes.

        Returns:
            The top-level copy.

        Raises:
            NodeNotFoundError: If the node does not exist.
            NodeValidationError: If the target is invalid.
            BlobStorageError: If source content cannot be read.
        """
        source = node_store.get_by_id(node_id, owner)
        target = None
        if target_folder_id is not None:
            target = self._resolve_target_folder(target_folder_id, source, owner)

        taken = node_store.list_child_names(
            target.id if target else None,
            owner,
            source.workspace_id,
        )
        name = dedupe_name(source.name, taken)
        logger.info(
            'Copying node %s into %s as %s',
            source.path,
            target.path if target else '/',
            name,
        )

        top_copy = self._copy_node(source, target, name)
        pending = [(source, top_copy)] if source.is_folder else []
        while pending:
            original, duplicate = pending.pop()
            for child in node_store.list_children(original.id, owner):
                child_copy = self._copy_node(child, duplicate, child.name)
                if child.is_folder:
                    pending.append((child, child_copy))
        return top_copy

    def _resolve_parent(
        self,
        parent_id: _NodeId | None,
        owner: _User,
        workspace_id: str | None,
    ) -> Node | None:
        if parent_id is None:
            return None
        parent = node_store.get_by_id(parent_id, owner)
        if not parent.is_folder:
            raise NodeValidationError(f'Parent is not a folder: {parent.path}')
        if workspace_id is not None and workspace_id != parent.workspace_id:
            raise NodeValidationError('Parent belongs to another workspace')
        return parent

    def _resolve_target_folder(
        self,
        target_folder_id: _NodeId,
        node: Node,
        owner: _User,
    ) -> Node:
        target = node_store.find_by_id(target_folder_id, owner)
        if target is None or not target.is_folder:
            raise NodeValidationError('Target folder not found')
        if target.workspace_id != node.workspace_id:
            raise NodeValidationError('Target folder belongs to another workspace')
        if node.is_folder and is_same_or_descendant(target.path, node.path):
            raise NodeValidationError(
                f'Cannot put folder {node.path} inside itself',
            )
        return target

    def _prepare_content(
        self,
        spec: NodeSpec,
        name: str,
        existing: Node | None,
    ) -> tuple[ContentLocator | None, int]:
        if spec.is_folder:
            return None, 0

        previous = existing.content_locator if existing else None
        if spec.content is None:
            if existing is not None and previous is not None:
                # Metadata-only update keeps the stored content and its size
                return previous, existing.size_bytes
            return InlineContent(''), 0

        data = spec.content.encode(_TEXT_ENCODING)
        reuse_key = previous.key if isinstance(previous, BlobContent) else None
        locator = self._upload(
            spec.owner.pk,
            name,
            data,
            fallback_text=spec.content,
            reuse_key=reuse_key,
        )
        return locator, len(data)

    def _upload(
        self,
        owner_id: object,
        name: str,
        data: bytes,
        *,
        fallback_text: str | None,
        reuse_key: str | None = None,
    ) -> ContentLocator:
        key = reuse_key or self._blob_store.new_key(owner_id, name)
        try:
            url = self._blob_store.put(key, data, detect_mime_type(name))
        except BlobStorageError:
            if self._strict_blob_writes or fallback_text is None:
                raise
            logger.warning(
                'Blob store unavailable, storing content inline: %s',
                name,
            )
            return InlineContent(fallback_text)
        return BlobContent(key=key, url=url)

    def _insert(  # noqa: WPS211
        self,
        spec: NodeSpec,
        *,
        name: str,
        path: str,
        parent: Node | None,
        workspace_id: str | None,
        locator: ContentLocator | None,
        size_bytes: int,
    ) -> Node:
        node = Node(
            owner=spec.owner,
            workspace_id=workspace_id,
            parent=parent,
            name=name,
            node_type=spec.node_type,
            path=path,
            size_bytes=size_bytes,
            mime_type='' if spec.is_folder else detect_mime_type(name),
            is_public=spec.is_public,
        )
        node.set_content_locator(locator)
        return node_store.insert_node(node)

    def _replace(
        self,
        existing: Node,
        spec: NodeSpec,
        *,
        locator: ContentLocator | None,
        size_bytes: int,
    ) -> Node:
        logger.info('Replacing node at %s (ID: %s)', existing.path, existing.id)
        existing.node_type = spec.node_type
        existing.size_bytes = size_bytes
        existing.is_public = spec.is_public
        if not existing.is_folder:
            existing.mime_type = detect_mime_type(existing.name)
        existing.set_content_locator(locator)
        return node_store.update_node(
            existing,
            [
                'node_type',
                'size_bytes',
                'mime_type',
                'is_public',
                *_CONTENT_FIELDS,
            ],
        )

    def _write_path_change(
        self,
        node: Node,
        old_path: str,
        fields: Sequence[str],
    ) -> None:
        with transaction.atomic():
            node_store.update_node(node, fields)
            if not node.is_folder:
                return
            descendants = list(node_store.list_descendants(
                node.owner_id,
                node.workspace_id,
                old_path,
            ))
            new_paths = rewrite_subtree(
                old_path,
                node.path,
                [descendant.path for descendant in descendants],
            )
            for descendant, new_path in zip(descendants, new_paths, strict=True):
                descendant.path = new_path
            node_store.update_paths(descendants)

        logger.info(
            'Rewrote %d descendant paths from %s to %s',
            len(descendants),
            old_path,
            node.path,
        )

    def _resolve_content(self, node: Node) -> NodeView:
        locator = node.content_locator
        if isinstance(locator, InlineContent):
            return NodeView.from_node(node, locator.text)
        if not isinstance(locator, BlobContent):
            return NodeView.from_node(node)
        try:
            text = self._blob_store.get(locator.key).decode(_TEXT_ENCODING)
        except BlobStorageError:
            logger.warning(
                'Blob unavailable, returning metadata only: %s',
                locator.key,
            )
            return NodeView.from_node(node, content_available=False)
        except UnicodeDecodeError:
            logger.warning('Blob is not valid text: %s', locator.key)
            return NodeView.from_node(node, content_available=False)
        return NodeView.from_node(node, text)

    def _collect_subtree(self, root: Node) -> list[Node]:
        """Return root and its descendants, every parent before its children.

        Walks parent links with an explicit stack, so depth is bounded
        by memory rather than by the interpreter's recursion limit.
        """
        collected = []
        seen = set()
        stack = [root]
        while stack:
            current = stack.pop()
            if current.id in seen:
                continue
            seen.add(current.id)
            collected.append(current)
            if current.is_folder:
                stack.extend(
                    node_store.list_children(current.id, current.owner_id),
                )
        return collected

    def _copy_blob(
        self,
        locator: BlobContent,
        owner_id: object,
        name: str,
    ) -> BlobContent | None:
        new_key = self._blob_store.new_key(owner_id, name)
        try:
            data = self._blob_store.get(locator.key)
            url = self._blob_store.put(new_key, data, detect_mime_type(name))
        except BlobStorageError:
            logger.warning('Could not copy blob, keeping key: %s', locator.key)
            return None
        return BlobContent(key=new_key, url=url)

    def _copy_node(self, source: Node, parent: Node | None, name: str) -> Node:
        locator = source.content_locator
        if isinstance(locator, BlobContent):
            data = self._blob_store.get(locator.key)
            locator = self._upload(
                source.owner_id,
                name,
                data,
                fallback_text=_decode_or_none(data),
            )

        duplicate = Node(
            owner_id=source.owner_id,
            workspace_id=source.workspace_id,
            parent=parent,
            name=name,
            node_type=source.node_type,
            path=child_path(parent.path if parent else None, name),
            size_bytes=source.size_bytes,
            mime_type=source.mime_type,
            is_public=source.is_public,
        )
        duplicate.set_content_locator(locator)
        try:
            return node_store.insert_node(duplicate)
        except Exception:
            logger.exception('Metadata write failed for copy: %s', duplicate.path)
            if isinstance(locator, BlobContent):
                self._compensate_upload(locator.key)
            raise

    def _release_blob(self, node: Node, reason: OrphanedBlob.Reason) -> None:
        locator = node.content_locator
        if isinstance(locator, BlobContent):
            self._delete_blob(locator.key, reason)

    def _delete_blob(self, key: str, reason: OrphanedBlob.Reason) -> None:
        try:
            self._blob_store.delete(key)
        except BlobStorageError as error:
            # Log but don't raise - the metadata side already moved on
            logger.exception('Failed to delete blob (orphaned): %s', key)
            queue_orphaned_blob(key, reason, error)

    def _compensate_upload(self, key: str) -> None:
        if not self._blob_store.rollback_upload(key):
            queue_orphaned_blob(key, OrphanedBlob.Reason.METADATA_WRITE_FAILED)


def get_file_service() -> VirtualFileService:
    """Get the service instance built at application startup.

    Returns:
        VirtualFileService owned by the vfs app config.
    """
    return apps.get_app_config('vfs').file_service  # type: ignore[attr-defined]


def _fresh_blob_key(
    locator: ContentLocator | None,
    previous: ContentLocator | None,
) -> str | None:
    """Key uploaded by this call that no row references yet, if any."""
    if not isinstance(locator, BlobContent):
        return None
    if isinstance(previous, BlobContent) and previous.key == locator.key:
        return None
    return locator.key


def _decode_or_none(data: bytes) -> str | None:
    try:
        return data.decode(_TEXT_ENCODING)
    except UnicodeDecodeError:
        return None
