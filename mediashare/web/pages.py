"""HTML page assembly for folder listings, galleries and the login challenge."""

from __future__ import annotations

import html
import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

from pydantic import BaseModel

from ..services.library import LibraryAsset
from ..services.listing import DirectoryEntry, MediaItem, breadcrumb_trail
from ..services.media_types import encode_path_for_url, mime_type_for_path


_TEMPLATE_ROOT = Path(__file__).parent / "templates"
_PLACEHOLDER = re.compile(r"__MEDIASHARE_([A-Z0-9]+(?:_[A-Z0-9]+)*)__")

_SORT_LABELS: Dict[str, str] = {
    "name": "Sort by Name",
    "date": "Sort by Date",
    "size": "Sort by Size",
}


class GalleryMedia(BaseModel):
    """One entry of the media list embedded in gallery pages."""

    type: str
    name: str
    imagePath: str
    videoPath: str = ""


@lru_cache(maxsize=None)
def _load_template(name: str) -> str:
    return (_TEMPLATE_ROOT / f"{name}.html").read_text(encoding="utf-8")


def _render(name: str, values: Dict[str, str]) -> str:
    # Single pass, so substituted values are never scanned for placeholders.
    return _PLACEHOLDER.sub(
        lambda match: values.get(match.group(1), match.group(0)), _load_template(name)
    )


def _escape(value: str) -> str:
    return html.escape(value, quote=True)


def _breadcrumb(relative_path: str, *, route: str = "browse") -> str:
    parts = ["<a href='/'>Home</a>"]
    for label, logical in breadcrumb_trail(relative_path):
        parts.append(f"<a href='/{route}/{encode_path_for_url(logical)}'>{_escape(label)}</a>")
    return " / ".join(parts)


def _title_for(relative_path: str, fallback: str) -> str:
    trail = breadcrumb_trail(relative_path)
    return trail[-1][0] if trail else fallback


def _file_item(entry: DirectoryEntry) -> str:
    encoded = encode_path_for_url(entry.path)
    name = _escape(entry.name)
    if entry.is_video:
        icon = "&#127916;"
        link = f"<a href='/file/{encoded}'>{name}</a>"
    else:
        icon = "&#128196;"
        link = f"<a href='/file/{encoded}?raw=true'>{name}</a>"
    return (
        "<div class='item'>"
        f"<span class='item-icon'>{icon}</span>"
        f"<span class='item-name'>{link}"
        f"<small> | <a href='/download/{encoded}'>Download</a></small></span>"
        "</div>"
    )


def _directory_item(entry: DirectoryEntry) -> str:
    encoded = encode_path_for_url(entry.path)
    links = []
    if entry.has_images:
        links.append(f"<a href='/gallery/{encoded}'>View Gallery</a>")
    links.append(f"<a href='/download-zip/{encoded}'>Download ZIP</a>")
    return (
        "<div class='item'>"
        "<span class='item-icon folder'>&#128193;</span>"
        f"<span class='item-name'><a href='/browse/{encoded}'>{_escape(entry.name)}</a>"
        f"<small> | {' | '.join(links)}</small></span>"
        "</div>"
    )


def render_folder_page(
    relative_path: str,
    entries: Sequence[DirectoryEntry],
    *,
    show_gallery: bool,
    root_name: str = "Shared Files",
) -> str:
    if entries:
        items = "\n".join(
            _directory_item(entry) if entry.is_directory else _file_item(entry)
            for entry in entries
        )
    else:
        items = "<p>Empty folder</p>"
    actions = ""
    if show_gallery:
        actions = (
            f"<a class='button' href='/gallery/{encode_path_for_url(relative_path)}'>"
            "&#128444;&#65039; View as Gallery</a>"
        )
    return _render(
        "folder",
        {
            "TITLE": _escape(_title_for(relative_path, root_name)),
            "BREADCRUMB": _breadcrumb(relative_path),
            "ACTIONS": actions,
            "ITEMS": items,
        },
    )


def _sort_links(current: str, options: Iterable[str]) -> str:
    links = []
    for option in options:
        active = " class='active'" if option == current else ""
        links.append(f"<a href='?sort={option}'{active}>{_SORT_LABELS.get(option, option)}</a>")
    return "".join(links)


def _media_json(media: List[GalleryMedia]) -> str:
    payload = json.dumps([item.model_dump() for item in media])
    return payload.replace("</", "<\\/")


def _gallery_tiles(media: Sequence[GalleryMedia]) -> str:
    if not media:
        return "<p>No photos or videos found</p>"
    tiles = []
    for index, item in enumerate(media):
        video_class = " video" if item.type == "video" else ""
        if item.imagePath:
            preview = f"<img src='{item.imagePath}' alt='{_escape(item.name)}' loading='lazy'>"
        else:
            preview = f"<span class='item-name'>{_escape(item.name)}</span>"
        tiles.append(
            f"<div class='gallery-item{video_class}' data-index='{index}'>{preview}</div>"
        )
    return "\n".join(tiles)


def render_gallery_page(
    relative_path: str,
    items: Sequence[MediaItem],
    *,
    sort: str,
    sort_options: Sequence[str],
    root_name: str = "Shared Files",
) -> str:
    media: List[GalleryMedia] = []
    for item in items:
        encoded = encode_path_for_url(item.path)
        if item.is_video:
            media.append(
                GalleryMedia(
                    type="video",
                    name=item.name,
                    imagePath="",
                    videoPath=f"/file/{encoded}?raw=true",
                )
            )
        else:
            media.append(
                GalleryMedia(type="image", name=item.name, imagePath=f"/file/{encoded}?raw=true")
            )
    return _render(
        "gallery",
        {
            "TITLE": _escape(_title_for(relative_path, root_name)),
            "BREADCRUMB": _breadcrumb(relative_path),
            "COUNT": str(len(media)),
            "SORT_LINKS": _sort_links(sort, sort_options),
            "ITEMS": _gallery_tiles(media),
            "MEDIA_JSON": _media_json(media),
        },
    )


def render_library_page(
    assets: Sequence[LibraryAsset],
    *,
    sort: str,
    sort_options: Sequence[str],
) -> str:
    media = [
        GalleryMedia(
            type="video" if asset.is_video else "image",
            name=asset.name,
            imagePath=f"/photo/{asset.asset_id}",
            videoPath=f"/video/{asset.asset_id}" if asset.is_video else "",
        )
        for asset in assets
    ]
    return _render(
        "gallery",
        {
            "TITLE": "Photo Library",
            "BREADCRUMB": "<a href='/'>Home</a>",
            "COUNT": str(len(media)),
            "SORT_LINKS": _sort_links(sort, sort_options),
            "ITEMS": _gallery_tiles(media),
            "MEDIA_JSON": _media_json(media),
        },
    )


def render_player_page(relative_path: str) -> str:
    encoded = encode_path_for_url(relative_path)
    parent = relative_path.rsplit("/", 1)[0] if "/" in relative_path else ""
    return _render(
        "player",
        {
            "TITLE": _escape(_title_for(relative_path, "Video")),
            "BREADCRUMB": _breadcrumb(parent),
            "VIDEO_URL": f"/file/{encoded}?raw=true",
            "MIME_TYPE": mime_type_for_path(relative_path),
            "DOWNLOAD_URL": f"/download/{encoded}",
        },
    )


def render_secure_page() -> str:
    return _load_template("secure")


def render_error_page(message: str, *, title: str = "Something went wrong") -> str:
    return _render("error", {"TITLE": _escape(title), "MESSAGE": _escape(message)})


__all__ = [
    "GalleryMedia",
    "render_error_page",
    "render_folder_page",
    "render_gallery_page",
    "render_library_page",
    "render_player_page",
    "render_secure_page",
]
