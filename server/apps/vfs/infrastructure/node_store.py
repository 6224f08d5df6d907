"""Owner-scoped access to node metadata rows.

Every lookup filters on the owner, so a node owned by someone else
looks exactly like a missing one.
"""

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Final
from uuid import UUID

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Case, IntegerField, QuerySet, Sum, Value, When

from server.apps.vfs.exceptions import NodeNotFoundError, PathConflictError
from server.apps.vfs.models import FOLDER_TYPE, Node

# User type for Django's dynamic user model
_User = Any

_NodeId = UUID | str

_PATH_SEPARATOR: Final = '/'

logger = logging.getLogger(__name__)


def _owned(owner: _User) -> QuerySet[Node]:
    return Node.objects.filter(owner=owner)


def find_by_id(node_id: _NodeId, owner: _User) -> Node | None:
    """Find a node by ID among the owner's nodes.

    Args:
        node_id: Node ID (malformed IDs are treated as missing).
        owner: Owner of the node.

    Returns:
        Node instance, or None if absent or owned by someone else.
    """
    try:
        return _owned(owner).filter(id=node_id).first()
    except ValidationError:
        logger.debug('Malformed node ID: %s', node_id)
        return None


def get_by_id(node_id: _NodeId, owner: _User) -> Node:
    """Get a node by ID among the owner's nodes.

    Args:
        node_id: Node ID.
        owner: Owner of the node.

    Returns:
        Node instance.

    Raises:
        NodeNotFoundError: If absent or owned by someone else.
    """
    node = find_by_id(node_id, owner)
    if node is None:
        raise NodeNotFoundError(node_id)
    return node


def find_by_path(
    path: str,
    owner: _User,
    workspace_id: str | None = None,
) -> Node | None:
    """Find the node occupying a path in a workspace.

    Args:
        path: Canonical node path.
        owner: Owner of the node.
        workspace_id: Workspace; None is the default scope.

    Returns:
        Node instance or None.
    """
    return _owned(owner).filter(workspace_id=workspace_id, path=path).first()


def path_exists(
    path: str,
    owner: _User,
    workspace_id: str | None = None,
    exclude_id: _NodeId | None = None,
) -> bool:
    """Check whether a path is taken in a workspace.

    Args:
        path: Canonical node path.
        owner: Owner of the nodes.
        workspace_id: Workspace; None is the default scope.
        exclude_id: Node to ignore (the one being renamed or moved).

    Returns:
        True if another node occupies the path.
    """
    query = _owned(owner).filter(workspace_id=workspace_id, path=path)
    if exclude_id is not None:
        query = query.exclude(id=exclude_id)
    return query.exists()


def list_children(parent_id: _NodeId, owner: _User) -> QuerySet[Node]:
    """List direct children of a folder, ordered by name.

    Args:
        parent_id: Folder ID.
        owner: Owner of the nodes.

    Returns:
        QuerySet of child nodes.
    """
    return _owned(owner).filter(parent_id=parent_id).order_by('name')


def list_child_names(
    parent_id: _NodeId | None,
    owner: _User,
    workspace_id: str | None = None,
) -> set[str]:
    """Collect the names used directly inside a folder (or the root).

    Args:
        parent_id: Folder ID; None for the root of the workspace.
        owner: Owner of the nodes.
        workspace_id: Workspace, used for the root only.

    Returns:
        Set of sibling names.
    """
    query = _owned(owner).filter(parent_id=parent_id)
    if parent_id is None:
        query = query.filter(workspace_id=workspace_id)
    return set(query.values_list('name', flat=True))


def list_roots(owner: _User, workspace_id: str | None = None) -> QuerySet[Node]:
    """List root-level nodes, folders first, then by name.

    Args:
        owner: Owner of the nodes.
        workspace_id: Workspace; None is the default scope.

    Returns:
        QuerySet of root nodes.
    """
    return _owned(owner).filter(
        parent__isnull=True,
        workspace_id=workspace_id,
    ).annotate(
        folder_rank=Case(
            When(node_type=FOLDER_TYPE, then=Value(0)),
            default=Value(1),
            output_field=IntegerField(),
        ),
    ).order_by('folder_rank', 'name')


def list_descendants(
    owner: _User,
    workspace_id: str | None,
    folder_path: str,
) -> QuerySet[Node]:
    """List every node below a folder path, by path prefix.

    Args:
        owner: Owner of the nodes.
        workspace_id: Workspace of the folder.
        folder_path: Path of the folder, possibly one it just left.

    Returns:
        QuerySet of descendants ordered by path.
    """
    return _owned(owner).filter(
        workspace_id=workspace_id,
        path__startswith=folder_path + _PATH_SEPARATOR,
    ).order_by('path')


def list_recent(owner: _User, limit: int) -> list[Node]:
    """List most recently updated files (folders excluded).

    Args:
        owner: Owner of the nodes.
        limit: Maximum number of nodes.

    Returns:
        Nodes ordered by update time, newest first.
    """
    return list(
        _owned(owner).exclude(
            node_type=FOLDER_TYPE,
        ).order_by('-updated_at')[:limit],
    )


def sum_sizes(owner: _User, *, exclude_folders: bool = True) -> int:
    """Sum node sizes for a user.

    Args:
        owner: Owner of the nodes.
        exclude_folders: Skip folder rows (their size is always 0).

    Returns:
        Total size in bytes.
    """
    query = _owned(owner)
    if exclude_folders:
        query = query.exclude(node_type=FOLDER_TYPE)
    return query.aggregate(total=Sum('size_bytes'))['total'] or 0


def is_referenced(key: str) -> bool:
    """Check whether any node points at a blob key.

    Args:
        key: Blob key.

    Returns:
        True if a node row references the key.
    """
    return Node.objects.filter(blob_key=key).exists()


def insert_node(node: Node) -> Node:
    """Insert a new node row.

    The unique path constraints turn a concurrent insert of the same
    path into PathConflictError instead of a duplicate row.

    Args:
        node: Unsaved node.

    Returns:
        The saved node.

    Raises:
        PathConflictError: If the path is already taken.
    """
    try:
        with transaction.atomic():
            node.save(force_insert=True)
    except IntegrityError:
        _raise_if_path_taken(node)
        raise
    logger.info('Node inserted: %s (ID: %s)', node.path, node.id)
    return node


def update_node(node: Node, fields: Sequence[str]) -> Node:
    """Save the listed fields of a node and bump ``updated_at``.

    Args:
        node: Node with modified attributes.
        fields: Names of the modified fields.

    Returns:
        The saved node.

    Raises:
        PathConflictError: If the new path is already taken.
    """
    try:
        with transaction.atomic():
            node.save(update_fields=[*fields, 'updated_at'])
    except IntegrityError:
        _raise_if_path_taken(node)
        raise
    logger.info('Node updated: %s (ID: %s)', node.path, node.id)
    return node


def update_paths(nodes: Iterable[Node]) -> int:
    """Persist new paths of already loaded nodes in bulk.

    Args:
        nodes: Nodes whose ``path`` attribute was rewritten.

    Returns:
        Number of rows updated.
    """
    return Node.objects.bulk_update(list(nodes), ['path'])


def delete_node(node: Node) -> None:
    """Delete a node row.

    Args:
        node: Node to delete.
    """
    node_id = node.id
    node.delete()
    logger.info('Node deleted from database: ID=%s', node_id)


def _raise_if_path_taken(node: Node) -> None:
    if path_exists(node.path, node.owner_id, node.workspace_id, node.id):
        logger.warning('Path conflict on write: %s', node.path)
        raise PathConflictError(node.path, node.workspace_id)
