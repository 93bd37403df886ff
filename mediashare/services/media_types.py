"""File type detection and URL helpers for shared media."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, FrozenSet
from urllib.parse import quote


IMAGE_EXTENSIONS: FrozenSet[str] = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif", ".webp", ".heic", ".heif"}
)
VIDEO_EXTENSIONS: FrozenSet[str] = frozenset(
    {".mp4", ".m4v", ".mov", ".avi", ".mkv", ".webm", ".flv", ".wmv", ".mpg", ".mpeg", ".3gp"}
)

DEFAULT_MIME_TYPE = "application/octet-stream"

_MIME_TYPES: Dict[str, str] = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
    ".tif": "image/tiff",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".mp4": "video/mp4",
    ".m4v": "video/mp4",
    ".mov": "video/mp4",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".flv": "video/x-flv",
    ".wmv": "video/x-ms-wmv",
    ".mpg": "video/mpeg",
    ".mpeg": "video/mpeg",
    ".3gp": "video/3gpp",
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".txt": "text/plain",
    ".md": "text/markdown",
}

# Left literal in generated links. Quotes, '#' and '?' are always encoded.
_URL_SAFE_CHARACTERS = "/!$&()*+,;=:@-._~"


def _suffix(name: str | Path) -> str:
    return Path(str(name)).suffix.lower()


def is_image_file(name: str | Path) -> bool:
    return _suffix(name) in IMAGE_EXTENSIONS


def is_video_file(name: str | Path) -> bool:
    return _suffix(name) in VIDEO_EXTENSIONS


def is_media_file(name: str | Path) -> bool:
    return is_image_file(name) or is_video_file(name)


def mime_type_for_path(name: str | Path) -> str:
    """Return the MIME type served for *name* based on its extension."""

    return _MIME_TYPES.get(_suffix(name), DEFAULT_MIME_TYPE)


def encode_path_for_url(path: str) -> str:
    """Percent-encode *path* for use inside generated links."""

    return quote(path, safe=_URL_SAFE_CHARACTERS)


def has_images(directory: Path) -> bool:
    """Return ``True`` when *directory* directly contains at least one image."""

    try:
        for child in directory.iterdir():
            if child.is_file() and is_image_file(child.name):
                return True
    except OSError:
        return False
    return False


__all__ = [
    "DEFAULT_MIME_TYPE",
    "IMAGE_EXTENSIONS",
    "VIDEO_EXTENSIONS",
    "encode_path_for_url",
    "has_images",
    "is_image_file",
    "is_media_file",
    "is_video_file",
    "mime_type_for_path",
]
