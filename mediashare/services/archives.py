"""ZIP archives for whole-folder downloads."""

from __future__ import annotations

import logging
import time
import uuid
import zipfile
from pathlib import Path

from .events import emit_file_event
from .naming import build_archive_name, build_cache_name
from .resolver import Resource, ResourceKind, describe_file


LOGGER = logging.getLogger(__name__)

ZIP_MIME_TYPE = "application/zip"


class ArchiveError(RuntimeError):
    """Raised when a folder archive cannot be written."""


def build_folder_archive(directory: Path, archive_root: Path, *, logical_path: str) -> Resource:
    """Zip *directory* into ``archive_root`` and describe the result as a resource.

    Entries are stored under the folder's own name so that extracting the
    archive recreates the folder. Each call writes a fresh archive; the caller
    deletes it once the response has been sent.
    """

    archive_root.mkdir(parents=True, exist_ok=True)
    download_name = build_archive_name(directory.name)
    archive_path = archive_root / build_cache_name(
        "folder", f"{logical_path}:{uuid.uuid4().hex}", extension=".zip"
    )
    top_level = Path(Path(download_name).stem)

    started = time.perf_counter()
    file_count = 0
    try:
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as bundle:
            for child in sorted(directory.rglob("*")):
                relative = child.relative_to(directory)
                # Anything under a hidden directory is hidden too.
                if child.is_dir() or any(part.startswith(".") for part in relative.parts):
                    continue
                bundle.write(child, (top_level / relative).as_posix())
                file_count += 1
    except OSError as error:
        archive_path.unlink(missing_ok=True)
        raise ArchiveError(f"Could not archive '{logical_path or directory.name}': {error}") from error

    emit_file_event(
        "Folder archive created",
        payload={"folder": logical_path or "/", "files": file_count, "archive": archive_path},
        duration_ms=(time.perf_counter() - started) * 1000.0,
    )
    return describe_file(
        archive_path,
        logical_path=download_name,
        kind=ResourceKind.DIRECTORY_ENTRY,
        mime_type=ZIP_MIME_TYPE,
    )


def discard_archive(resource: Resource) -> None:
    if resource.location is None:
        return
    try:
        resource.location.unlink()
    except FileNotFoundError:
        return
    except OSError as error:
        LOGGER.warning("Could not remove temporary archive %s: %s", resource.location, error)


__all__ = ["ArchiveError", "ZIP_MIME_TYPE", "build_folder_archive", "discard_archive"]
