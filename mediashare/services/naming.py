"""Utility helpers for consistent cache naming."""

from __future__ import annotations

import hashlib
import re

__all__ = [
    "slugify",
    "build_cache_name",
    "build_archive_name",
]


def slugify(value: str) -> str:
    """Return a filesystem-friendly representation of *value*."""

    value = value.strip().lower()
    value = re.sub(r"[^a-z0-9]+", "-", value)
    value = re.sub(r"-+", "-", value).strip("-")
    return value or "item"


def build_cache_name(prefix: str, source_key: str, *, extension: str = "") -> str:
    """Return a deterministic cache file name for *source_key*.

    The readable stem comes from the key's final path component, the digest
    keeps names unique for files that share a stem in different folders.
    """

    stem = slugify(source_key.rsplit("/", 1)[-1].rsplit(".", 1)[0])
    digest = hashlib.sha1(source_key.encode("utf-8")).hexdigest()[:16]
    suffix = ""
    if extension:
        suffix = extension if extension.startswith(".") else f".{extension}"
        suffix = suffix.lower()
    return f"{prefix}_{stem}-{digest}{suffix}"


def build_archive_name(folder_name: str) -> str:
    """Return the download name used for a zipped folder."""

    cleaned = folder_name.strip().strip("/") or "shared"
    return f"{cleaned}.zip"
