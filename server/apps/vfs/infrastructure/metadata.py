"""Metadata helpers for node content: MIME types and key-safe names."""

import mimetypes
import re
from pathlib import Path
from typing import Final

_DEFAULT_MIME_TYPE: Final = 'application/octet-stream'

# Types the stdlib registry misses or maps inconsistently across platforms
_MIME_OVERRIDES: Final = {  # noqa: WPS407
    'md': 'text/markdown',
    'markdown': 'text/markdown',
    'ts': 'application/typescript',
    'tsx': 'application/typescript',
    'jsx': 'text/javascript',
    'yml': 'application/yaml',
    'yaml': 'application/yaml',
    'py': 'text/x-python',
    'json': 'application/json',
    'js': 'text/javascript',
}

# Non text/* MIME types whose payload is still UTF-8 text
_TEXT_APPLICATION_TYPES: Final = frozenset((
    'application/json',
    'application/javascript',
    'application/typescript',
    'application/xml',
    'application/yaml',
    'application/x-sh',
    'image/svg+xml',
))

# Node kinds derived from the MIME family, advisory only
_KIND_BY_FAMILY: Final = {  # noqa: WPS407
    'text': 'text',
    'image': 'image',
    'audio': 'audio',
    'video': 'video',
}

_UNSAFE_KEY_CHARS: Final = re.compile(r'[^a-zA-Z0-9.-]')


def get_file_extension(filename: str) -> str:
    """Get file extension from filename.

    Args:
        filename: Filename (e.g., 'document.pdf').

    Returns:
        Extension without dot, lowercase (e.g., 'pdf').
        Returns empty string if no extension.
    """
    extension = Path(filename).suffix
    return extension.lstrip('.').lower()


def detect_mime_type(filename: str) -> str:
    """Detect MIME type from the filename extension.

    Args:
        filename: Filename with extension.

    Returns:
        MIME type string (e.g., 'text/plain', 'application/pdf').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    override = _MIME_OVERRIDES.get(get_file_extension(filename))
    if override is not None:
        return override
    mime_type, _ = mimetypes.guess_type(filename)
    if mime_type is None:
        return _DEFAULT_MIME_TYPE
    return mime_type


def is_text_mime_type(mime_type: str) -> bool:
    """Check whether content of this MIME type is surfaced as text.

    Args:
        mime_type: MIME type string.

    Returns:
        True for text/* and known textual application types.
    """
    return mime_type.startswith('text/') or mime_type in _TEXT_APPLICATION_TYPES


def classify_node_type(filename: str) -> str:
    """Derive an advisory content kind for a file from its name.

    Example: 'notes.md' -> 'text', 'photo.png' -> 'image'.

    Args:
        filename: Filename with extension.

    Returns:
        Content kind, 'file' when nothing more specific applies.
    """
    mime_type = detect_mime_type(filename)
    if is_text_mime_type(mime_type):
        return 'text'
    family = mime_type.split('/', 1)[0]
    return _KIND_BY_FAMILY.get(family, 'file')


def sanitize_key_name(name: str) -> str:
    """Make a node name safe to embed in a blob key.

    Example: 'Q1 report (final).txt' -> 'Q1_report__final_.txt'

    Args:
        name: Display name of the node.

    Returns:
        Name with every character outside [A-Za-z0-9.-] replaced by '_'.
    """
    return _UNSAFE_KEY_CHARS.sub('_', name)
