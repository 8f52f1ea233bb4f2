"""
Utility functions for file system operations and string sanitization.

This module provides helper functions for:
- Sanitizing user-provided filenames for storage keys and headers
- Ensuring directory creation with proper error handling
- Splitting and normalizing file extensions
- Building unique asset identifiers
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import FrozenSet
from urllib.parse import quote
from uuid import uuid4

# Pattern to match characters that are not safe for filesystem paths
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

IMAGE_EXTENSIONS: FrozenSet[str] = frozenset({".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".webp"})
PDF_EXTENSIONS: FrozenSet[str] = frozenset({".pdf"})

_MEDIA_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
    ".webp": "image/webp",
}


def sanitize_label(label: str, fallback: str) -> str:
    """
    Generate a filesystem-safe label from user input.

    Args:
        label: The original label string to sanitize
        fallback: Default value to return if sanitization results in an empty string

    Returns:
        A lowercase, filesystem-safe label or the fallback value

    Example:
        >>> sanitize_label("My Document!", "default-doc")
        "my-document"
        >>> sanitize_label("@#$", "default-doc")
        "default-doc"
    """
    cleaned = SANITIZE_PATTERN.sub("-", label.strip())
    cleaned = cleaned.strip("-_.").lower()
    return cleaned or fallback


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and lowercased extension.

    Example:
        >>> split_extension("Scan.JPG")
        ("Scan", ".jpg")
        >>> split_extension("/path/to/file.tar.gz")
        ("file.tar", ".gz")
    """
    path = Path(filename)
    return path.stem, path.suffix.lower()


def media_type_for(filename: str, default: str = "application/octet-stream") -> str:
    _, extension = split_extension(filename)
    return _MEDIA_TYPES.get(extension, default)


def unique_asset_id(name_hint: str, folder: str = "") -> str:
    """
    Build a storage key that is unique per upload.

    The sanitized stem of ``name_hint`` keeps keys readable; a uuid4 suffix
    keeps concurrent uploads of the same filename apart.

    Example:
        >>> unique_asset_id("My Report.PDF", folder="pdfs")
        "pdfs/my-report_3f2b9c...e1.pdf"
    """
    stem, extension = split_extension(name_hint)
    safe_stem = sanitize_label(stem, fallback="asset")
    key = f"{safe_stem}_{uuid4().hex}{extension}"
    return f"{folder.strip('/')}/{key}" if folder.strip("/") else key


def attachment_header(filename: str) -> str:
    """Content-Disposition value that forces a download under ``filename``."""
    safe_name = filename.replace('"', "").replace("\r", "").replace("\n", "")
    ascii_name = safe_name.encode("ascii", "ignore").decode("ascii") or "download"
    if ascii_name == safe_name:
        return f'attachment; filename="{safe_name}"'
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(safe_name)}"
