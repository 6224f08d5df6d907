"""Canonical node paths and hierarchy rewrites.

Paths are user-visible and slash-delimited: '/<name>' for root nodes,
'<parent path>/<name>' below a folder. Nothing here touches a store.
"""

from collections.abc import Collection, Iterable
from pathlib import PurePosixPath
from typing import Final

from server.apps.vfs.exceptions import NodeValidationError

# Character used to split node paths
PATH_SEPARATOR: Final = '/'

_NAME_MAX_LENGTH: Final = 255
_RESERVED_NAMES: Final = frozenset(('.', '..'))


def validate_name(name: str | None) -> str:
    """Validate a node name and return it stripped.

    Args:
        name: Proposed file or folder name.

    Returns:
        Name without surrounding whitespace.

    Raises:
        NodeValidationError: If the name is empty, reserved, too long or
            contains a path separator.
    """
    cleaned = (name or '').strip()
    if not cleaned:
        raise NodeValidationError('Name is required')
    if PATH_SEPARATOR in cleaned:
        raise NodeValidationError(f'Name cannot contain "/": {cleaned}')
    if cleaned in _RESERVED_NAMES:
        raise NodeValidationError(f'Reserved name: {cleaned}')
    if len(cleaned) > _NAME_MAX_LENGTH:
        raise NodeValidationError(
            f'Name longer than {_NAME_MAX_LENGTH} characters',
        )
    return cleaned


def child_path(parent_path: str | None, name: str) -> str:
    """Build the path of a node inside a parent folder.

    Args:
        parent_path: Parent folder path; None or '/' for the root.
        name: Node name.

    Returns:
        Canonical child path (e.g., '/docs/report.pdf').
    """
    if not parent_path or parent_path == PATH_SEPARATOR:
        return PATH_SEPARATOR + name
    return parent_path.rstrip(PATH_SEPARATOR) + PATH_SEPARATOR + name


def parent_path(path: str) -> str:
    """Get the parent folder path.

    Args:
        path: Node path (e.g., '/docs/reports/q1.txt').

    Returns:
        Parent path (e.g., '/docs/reports'); '/' for root-level nodes.
    """
    normalized = path.strip(PATH_SEPARATOR)
    if PATH_SEPARATOR not in normalized:
        return PATH_SEPARATOR
    return PATH_SEPARATOR + normalized.rsplit(PATH_SEPARATOR, 1)[0]


def base_name(path: str) -> str:
    """Get the last component of a path.

    Args:
        path: Node path (e.g., '/docs/report.pdf').

    Returns:
        Name component (e.g., 'report.pdf'); '' for the root.
    """
    return path.rstrip(PATH_SEPARATOR).rsplit(PATH_SEPARATOR, 1)[-1]


def is_same_or_descendant(path: str, ancestor_path: str) -> bool:
    """Check whether path equals ancestor_path or lies beneath it.

    Args:
        path: Candidate path.
        ancestor_path: Folder path.

    Returns:
        True for the folder itself and everything inside it.
    """
    return path == ancestor_path or path.startswith(
        ancestor_path + PATH_SEPARATOR,
    )


def rewrite_subtree(
    old_prefix: str,
    new_prefix: str,
    paths: Iterable[str],
) -> list[str]:
    """Move descendant paths from one folder path to another.

    Only paths strictly below ``old_prefix`` change; anything else,
    including a sibling like '/A2' when renaming '/A', is kept as is.

    Example: ('/A', '/B', ['/A/x.txt', '/A/sub/y']) -> ['/B/x.txt', '/B/sub/y']

    Args:
        old_prefix: Current folder path.
        new_prefix: New folder path.
        paths: Paths to rewrite.

    Returns:
        Rewritten paths in input order.
    """
    marker = old_prefix + PATH_SEPARATOR
    return [
        new_prefix + path[len(old_prefix):] if path.startswith(marker) else path
        for path in paths
    ]


def dedupe_name(name: str, existing_names: Collection[str]) -> str:
    """Pick a name that does not collide with its siblings.

    Appends ' (n)' before the extension, incrementing n from 1.

    Example: 'notes.txt' with {'notes.txt', 'notes (1).txt'} -> 'notes (2).txt'

    Args:
        name: Desired name.
        existing_names: Names already taken in the target folder.

    Returns:
        ``name`` itself when free, otherwise the first free variant.
    """
    if name not in existing_names:
        return name

    pure = PurePosixPath(name)
    stem, suffix = pure.stem, pure.suffix
    counter = 1
    candidate = f'{stem} ({counter}){suffix}'
    while candidate in existing_names:
        counter += 1
        candidate = f'{stem} ({counter}){suffix}'
    return candidate
