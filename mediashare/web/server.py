"""FastAPI application serving a shared folder or media library."""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import functools
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar
from urllib.parse import quote

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from starlette.background import BackgroundTask
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..config import AppConfig
from ..services.archives import ArchiveError, build_folder_archive, discard_archive
from ..services.events import emit_auth_event, emit_file_event
from ..services.library import DirectoryMediaLibrary, LibraryError, MediaLibrary
from ..services.listing import (
    GALLERY_SORT_OPTIONS,
    LIBRARY_SORT_OPTIONS,
    collect_media_items,
    list_directory,
    natural_sort_key,
    normalize_sort,
    sort_media_items,
)
from ..services.media_types import has_images
from ..services.ranges import (
    RangeNotSatisfiableError,
    RangeParseError,
    ResponseEnvelope,
    negotiate,
    parse_range_header,
)
from ..services.resolver import (
    InvalidKindError,
    NotFoundError,
    Resource,
    ResourceKind,
    ResourceResolver,
    describe_file,
    normalize_logical_path,
)
from ..services.security import SESSION_COOKIE, SESSION_QUERY_PARAMETER, SessionGate
from ..services.transcode import (
    FFmpegVideoTranscoder,
    FFprobeVideoProber,
    TRANSCODED_MIME_TYPE,
    TranscodeCoordinator,
)
from .pages import (
    render_error_page,
    render_folder_page,
    render_gallery_page,
    render_library_page,
    render_player_page,
    render_secure_page,
)

T = TypeVar("T")

_STATIC_ROOT = Path(__file__).parent / "static"
STATIC_CACHE_CONTROL = "public, max-age=31536000"
CODEC_COMPATIBILITY_HEADER = "X-Codec-Compatibility"
SECURE_PATH = "/secure"

# Routes whose responses are raw bytes; gate failures redirect instead of rendering a page.
_BYTE_ROUTE_PREFIXES: Tuple[str, ...] = ("/photo/", "/video/", "/download/", "/download-zip/")

_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "mediashare_request_id",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    return context


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("mediashare.events"), {})


def _scope_state(scope: Scope) -> Dict[str, Any]:
    state = scope.get("state")
    if state is None:
        state = {}
        scope["state"] = state
    return state


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        state = _scope_state(scope)
        if isinstance(state, dict):
            state["request_id"] = request_id
        request_token = _REQUEST_ID_VAR.set(request_id)
        started = time.perf_counter()
        status_holder: Dict[str, int] = {}

        async def _send(message: Message) -> None:
            if message["type"] == "http.response.start":
                status_holder["status"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, _send)
        finally:
            LOGGER.debug(
                "%s %s -> %s (%.1f ms)",
                scope.get("method"),
                scope.get("path"),
                status_holder.get("status", "-"),
                (time.perf_counter() - started) * 1000.0,
            )
            _REQUEST_ID_VAR.reset(request_token)


class SessionCookieMiddleware:
    """Echo a session token accepted from the query string back as a cookie."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        async def _send(message: Message) -> None:
            if message["type"] == "http.response.start":
                state = scope.get("state")
                token = state.get("session_cookie") if isinstance(state, dict) else None
                if token:
                    cookie = f"{SESSION_COOKIE}={token}; Path=/; HttpOnly; SameSite=Lax"
                    headers = list(message.get("headers", []))
                    headers.append((b"set-cookie", cookie.encode("latin-1")))
                    message["headers"] = headers
            await send(message)

        await self.app(scope, receive, _send)


class CachedStaticFiles(StaticFiles):
    """Static files served with a long-lived ``Cache-Control`` header."""

    def file_response(self, *args: Any, **kwargs: Any) -> Response:
        response = super().file_response(*args, **kwargs)
        response.headers["Cache-Control"] = STATIC_CACHE_CONTROL
        return response


class SessionRequired(Exception):
    """Raised by the gate dependency when a protected route lacks a valid token."""

    def __init__(self, *, byte_route: bool) -> None:
        super().__init__("A valid session token is required")
        self.byte_route = byte_route


class CheckSessionResponse(BaseModel):
    valid: bool


class ServerSession:
    """In-memory state that lives exactly as long as one running server."""

    def __init__(self, coordinator: TranscodeCoordinator, gate: SessionGate) -> None:
        self.coordinator = coordinator
        self.gate = gate

    def shutdown(self, *, preserve_sessions: bool = False) -> Dict[str, int]:
        """Drop cached transcodes and, unless *preserve_sessions*, authorized tokens.

        Sessions are preserved when the server is only being restarted, for
        example after the host process returns to the foreground.
        """

        removed = self.coordinator.clear()
        cleared = 0 if preserve_sessions else self.gate.clear()
        LOGGER.info(
            "Server session closed (transcodes removed=%s, sessions cleared=%s, preserved=%s)",
            removed,
            cleared,
            preserve_sessions,
        )
        return {"transcodes_removed": removed, "sessions_cleared": cleared}


def _is_byte_request(request: Request) -> bool:
    path = request.url.path
    if path.startswith(_BYTE_ROUTE_PREFIXES):
        return True
    if path.startswith("/file/"):
        return request.query_params.get("raw", "").strip().lower() in {"1", "true", "yes", "on"}
    return False


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def _document_error(status_code: int, message: str) -> HTMLResponse:
    return HTMLResponse(render_error_page(message), status_code=status_code)


def _envelope_response(
    envelope: ResponseEnvelope,
    *,
    extra_headers: Optional[Dict[str, str]] = None,
    cleanup: Optional[Callable[[], None]] = None,
) -> Response:
    """Turn a negotiated envelope into a streaming response."""

    if envelope.status == 400:
        raise HTTPException(status_code=400, detail="Malformed Range header")
    if envelope.status >= 500:
        if cleanup is not None:
            cleanup()
        raise HTTPException(status_code=envelope.status, detail="Unable to read the requested file")

    headers = dict(envelope.headers)
    if extra_headers:
        headers.update(extra_headers)
    if envelope.status == 416:
        if cleanup is not None:
            cleanup()
        return Response(status_code=416, headers=headers)

    def _finish() -> None:
        envelope.close()
        if cleanup is not None:
            cleanup()

    return StreamingResponse(
        iter(envelope.body),
        status_code=envelope.status,
        headers=headers,
        background=BackgroundTask(_finish),
    )


def create_app(
    config: AppConfig,
    *,
    library: Optional[MediaLibrary] = None,
    coordinator: Optional[TranscodeCoordinator] = None,
    gate: Optional[SessionGate] = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    if config.source_kind == "library" and library is None:
        library = DirectoryMediaLibrary(
            config.source_root,
            config.poster_root,
            ffmpeg_binary=config.ffmpeg_binary,
        )
    if coordinator is None:
        coordinator = TranscodeCoordinator(
            config.transcode_root,
            prober=FFprobeVideoProber(config.ffprobe_binary),
            transcoder=FFmpegVideoTranscoder(config.ffmpeg_binary),
            report_unknown_compatibility=config.report_unknown_compatibility,
        )
    if gate is None:
        gate = SessionGate(secure_mode=config.secure_mode)

    resolver = ResourceResolver(config.source_root, library=library)
    session = ServerSession(coordinator, gate)
    root_name = config.source_root.name or "Shared Files"

    @contextlib.asynccontextmanager
    async def _lifespan(app: FastAPI):
        if library is not None:
            await _run_blocking(library.refresh)
        LOGGER.info(
            "Sharing %s '%s' (protected=%s)",
            config.source_kind,
            config.source_root,
            gate.secure_mode,
        )
        try:
            yield
        finally:
            session.shutdown(preserve_sessions=bool(app.state.preserve_sessions))

    app = FastAPI(
        title="Media Share",
        description="Browse and stream shared media from any device",
        lifespan=_lifespan,
    )
    app.state.server = None
    app.state.config = config
    app.state.resolver = resolver
    app.state.coordinator = coordinator
    app.state.gate = gate
    app.state.library = library
    app.state.session = session
    app.state.preserve_sessions = False

    app.add_middleware(SessionCookieMiddleware)
    app.add_middleware(RequestContextMiddleware)

    app.mount(
        "/static",
        CachedStaticFiles(directory=_STATIC_ROOT, check_dir=False),
        name="assets",
    )

    async def _run_blocking(operation: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        parent_context = contextvars.copy_context()
        return await loop.run_in_executor(
            None, functools.partial(parent_context.run, operation, *args)
        )

    @app.exception_handler(SessionRequired)
    async def _handle_session_required(request: Request, error: SessionRequired) -> Response:
        if error.byte_route:
            return RedirectResponse(SECURE_PATH, status_code=303)
        return HTMLResponse(render_secure_page(), status_code=200)

    async def _require_session(request: Request) -> None:
        if not gate.secure_mode:
            return
        cookie_token = gate.extract_token(request.headers.get("cookie"), None)
        if gate.validate_token(cookie_token):
            return
        # A stale cookie from an earlier run must not shadow a fresh pairing link.
        query_token = request.query_params.get(SESSION_QUERY_PARAMETER)
        if gate.validate_token(query_token):
            request.state.session_cookie = query_token
            return
        emit_auth_event(
            "Rejected request without a valid session",
            payload={"path": request.url.path, "token_present": bool(cookie_token or query_token)},
            level=logging.DEBUG,
            logger=EVENT_LOGGER,
        )
        raise SessionRequired(byte_route=_is_byte_request(request))

    protected = APIRouter(dependencies=[Depends(_require_session)])

    @app.get(SECURE_PATH, response_class=HTMLResponse)
    async def secure_page() -> HTMLResponse:
        return HTMLResponse(render_secure_page())

    @app.get("/check-session", response_model=CheckSessionResponse)
    async def check_session(request: Request) -> CheckSessionResponse:
        return CheckSessionResponse(valid=gate.validate(request.headers, request.query_params))

    async def _stream_resource(
        resource: Resource,
        range_header: Optional[str],
        *,
        is_video: bool,
        attachment: bool = False,
        cleanup: Optional[Callable[[], None]] = None,
    ) -> Response:
        if is_video and range_header:
            # Reject unparseable ranges before waiting on a transcode.
            try:
                parse_range_header(range_header, resource.size)
            except RangeParseError as error:
                raise HTTPException(status_code=400, detail="Malformed Range header") from error
            except RangeNotSatisfiableError:
                # Checked again below against the file actually served.
                pass
        extra_headers: Dict[str, str] = {}
        if is_video and resource.location is not None:
            outcome = await coordinator.resolve(resource.location)
            if outcome.transcoded:
                resource = describe_file(
                    outcome.path,
                    logical_path=resource.logical_path,
                    kind=resource.kind,
                    mime_type=TRANSCODED_MIME_TYPE,
                )
            if outcome.compatibility_unknown:
                extra_headers[CODEC_COMPATIBILITY_HEADER] = "unknown"
        if attachment:
            extra_headers["Content-Disposition"] = _content_disposition(resource.name)

        envelope = await _run_blocking(
            functools.partial(
                negotiate,
                resource.source,
                resource.size,
                resource.mime_type,
                range_header,
                is_video=is_video,
                video_chunk_bytes=config.video_chunk_bytes,
            )
        )
        return _envelope_response(envelope, extra_headers=extra_headers, cleanup=cleanup)

    if config.source_kind == "folder":

        def _folder_page(path: str) -> HTMLResponse:
            relative = normalize_logical_path(path)
            try:
                directory = resolver.resolve_directory(relative)
            except NotFoundError:
                return _document_error(404, f"Folder '{relative}' was not found.")
            except InvalidKindError:
                return _document_error(400, f"'{relative}' is not a folder.")
            try:
                entries = list_directory(directory, relative)
            except OSError as error:
                LOGGER.error("Could not read directory %s: %s", directory, error)
                return _document_error(500, f"Error reading directory: {error}")
            return HTMLResponse(
                render_folder_page(
                    relative,
                    entries,
                    show_gallery=has_images(directory),
                    root_name=root_name,
                )
            )

        @protected.get("/", response_class=HTMLResponse)
        async def folder_root() -> HTMLResponse:
            return _folder_page("")

        @protected.get("/browse/{path:path}", response_class=HTMLResponse)
        async def browse(path: str) -> HTMLResponse:
            return _folder_page(path)

        @protected.get("/file/{path:path}")
        async def serve_file(request: Request, path: str, raw: bool = False) -> Response:
            try:
                resource = resolver.resolve_file(path)
            except NotFoundError as error:
                raise HTTPException(status_code=404, detail="File not found") from error
            except InvalidKindError as error:
                raise HTTPException(status_code=400, detail="Path is a directory") from error
            if resource.is_video and not raw:
                return HTMLResponse(render_player_page(resource.logical_path))
            return await _stream_resource(
                resource,
                request.headers.get("range"),
                is_video=resource.is_video,
            )

        @protected.get("/gallery/{path:path}", response_class=HTMLResponse)
        async def gallery(path: str, sort: Optional[str] = None) -> HTMLResponse:
            relative = normalize_logical_path(path)
            try:
                directory = resolver.resolve_directory(relative)
            except NotFoundError:
                return _document_error(404, f"Folder '{relative}' was not found.")
            except InvalidKindError:
                return _document_error(400, f"'{relative}' is not a folder.")
            selected = normalize_sort(sort, GALLERY_SORT_OPTIONS, "name")
            try:
                items = collect_media_items(directory, relative)
            except OSError as error:
                LOGGER.error("Could not read directory %s: %s", directory, error)
                return _document_error(500, f"Error reading directory: {error}")
            return HTMLResponse(
                render_gallery_page(
                    relative,
                    sort_media_items(items, selected),
                    sort=selected,
                    sort_options=GALLERY_SORT_OPTIONS,
                    root_name=root_name,
                )
            )

        @protected.get("/download/{path:path}")
        async def download(request: Request, path: str) -> Response:
            try:
                resource = resolver.resolve_file(path)
            except NotFoundError as error:
                raise HTTPException(status_code=404, detail="File not found") from error
            except InvalidKindError as error:
                raise HTTPException(status_code=400, detail="Path is a directory") from error
            emit_file_event(
                "Download requested",
                payload={"path": resource.logical_path, "bytes": resource.size},
                logger=EVENT_LOGGER,
            )
            return await _stream_resource(
                resource,
                request.headers.get("range"),
                is_video=False,
                attachment=True,
            )

        @protected.get("/download-zip/{path:path}")
        async def download_zip(request: Request, path: str) -> Response:
            relative = normalize_logical_path(path)
            try:
                directory = resolver.resolve_directory(relative)
            except NotFoundError as error:
                raise HTTPException(status_code=404, detail="Folder not found") from error
            except InvalidKindError as error:
                raise HTTPException(status_code=400, detail="Path is not a folder") from error
            try:
                archive = await _run_blocking(
                    functools.partial(
                        build_folder_archive,
                        directory,
                        config.archive_root,
                        logical_path=relative,
                    )
                )
            except ArchiveError as error:
                LOGGER.error("%s", error)
                raise HTTPException(status_code=500, detail="Unable to create archive") from error
            return await _stream_resource(
                archive,
                request.headers.get("range"),
                is_video=False,
                attachment=True,
                cleanup=functools.partial(discard_archive, archive),
            )

    else:
        assert library is not None

        @protected.get("/", response_class=HTMLResponse)
        async def library_root(sort: Optional[str] = None) -> HTMLResponse:
            selected = normalize_sort(sort, LIBRARY_SORT_OPTIONS, "date")
            assets = library.assets()
            if selected == "name":
                assets = sorted(assets, key=lambda asset: natural_sort_key(asset.name))
            return HTMLResponse(
                render_library_page(assets, sort=selected, sort_options=LIBRARY_SORT_OPTIONS)
            )

        @protected.get("/photo/{asset_id:path}")
        async def library_photo(request: Request, asset_id: str) -> Response:
            try:
                original = resolver.resolve_asset(asset_id)
            except NotFoundError as error:
                raise HTTPException(status_code=404, detail="Asset not found") from error
            asset = library.get(normalize_logical_path(asset_id))
            if asset is None:
                raise HTTPException(status_code=404, detail="Asset not found")
            try:
                photo_path = await _run_blocking(library.fetch_photo, asset)
            except LibraryError as error:
                LOGGER.error("%s", error)
                raise HTTPException(status_code=500, detail="Unable to load photo") from error
            try:
                resource = describe_file(
                    photo_path,
                    logical_path=original.logical_path,
                    kind=ResourceKind.LIBRARY_ASSET,
                )
            except NotFoundError as error:
                raise HTTPException(status_code=404, detail="Asset not found") from error
            return await _stream_resource(resource, request.headers.get("range"), is_video=False)

        @protected.get("/video/{asset_id:path}")
        async def library_video(request: Request, asset_id: str) -> Response:
            try:
                resource = resolver.resolve_asset(asset_id)
            except NotFoundError as error:
                raise HTTPException(status_code=404, detail="Asset not found") from error
            asset = library.get(normalize_logical_path(asset_id))
            if asset is None:
                raise HTTPException(status_code=404, detail="Asset not found")
            if not asset.is_video:
                raise HTTPException(status_code=400, detail="Asset is not a video")
            try:
                video_path = await _run_blocking(library.fetch_video, asset)
            except LibraryError as error:
                LOGGER.error("%s", error)
                raise HTTPException(status_code=500, detail="Unable to load video") from error
            if video_path != resource.location:
                resource = describe_file(
                    video_path,
                    logical_path=resource.logical_path,
                    kind=ResourceKind.LIBRARY_ASSET,
                )
            return await _stream_resource(resource, request.headers.get("range"), is_video=True)

    app.include_router(protected)
    return app


__all__ = [
    "CODEC_COMPATIBILITY_HEADER",
    "CachedStaticFiles",
    "CheckSessionResponse",
    "ContextualLoggerAdapter",
    "RequestContextMiddleware",
    "STATIC_CACHE_CONTROL",
    "ServerSession",
    "SessionCookieMiddleware",
    "SessionRequired",
    "create_app",
]
