"""Entry-point for the Media Share server."""

from __future__ import annotations

import logging
import sys
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from mediashare.bootstrap import BootstrapError, initialize_app
from mediashare.config import SOURCE_KINDS
from mediashare.logging_utils import configure_logging, get_log_file_path
from mediashare.services.network import build_server_urls
from mediashare.services.security import SessionGate
from mediashare.services.transcode import (
    FFprobeVideoProber,
    ProbeError,
    needs_transcode,
    select_preset,
)
from mediashare.services.video_tools import ffmpeg_available
from mediashare.ui.banner import print_banner
from mediashare.web import create_app


LOGGER = logging.getLogger("mediashare.cli")


cli = typer.Typer(add_completion=False, help="Media Share management commands")


def _prepare_logging(cache_root: Path, *, verbose: bool = False) -> None:
    configure_logging(
        logging.DEBUG if verbose else logging.INFO,
        log_file=get_log_file_path(cache_root),
    )


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Share the configured folder when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(
            serve,
            source=None,
            library=False,
            host=None,
            port=None,
            secure=None,
            code=None,
            open_browser=False,
            verbose=False,
        )


@cli.command()
def serve(
    source: Optional[Path] = typer.Argument(
        None,
        file_okay=False,
        dir_okay=True,
        help="Folder to share (defaults to the configured source_root)",
        envvar="MEDIASHARE_SOURCE",
    ),
    library: bool = typer.Option(
        False,
        "--library",
        help="Share the folder as a photo library instead of a file tree",
    ),
    host: Optional[str] = typer.Option(
        None, help="Host interface for the web server", envvar="MEDIASHARE_HOST"
    ),
    port: Optional[int] = typer.Option(
        None, help="Port for the web server", envvar="MEDIASHARE_PORT"
    ),
    secure: Optional[bool] = typer.Option(
        None,
        "--secure/--open",
        help="Require a pairing code before any content is served",
        envvar="MEDIASHARE_SECURE",
    ),
    code: Optional[str] = typer.Option(
        None,
        help="Pairing code to authorize instead of a random one",
        envvar="MEDIASHARE_CODE",
    ),
    open_browser: bool = typer.Option(
        False, "--open-browser", help="Open the share in the local browser"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Run the FastAPI-powered media server."""

    try:
        app_config = initialize_app(
            source_root=source,
            source_kind="library" if library else None,
            host=host,
            port=port,
            secure_mode=secure,
        )
    except (BootstrapError, ValueError) as error:
        typer.echo(f"Cannot start server: {error}", err=True)
        raise typer.Exit(code=1) from error
    _prepare_logging(app_config.cache_root, verbose=verbose)
    for binary in (app_config.ffprobe_binary, app_config.ffmpeg_binary):
        if not ffmpeg_available(binary):
            LOGGER.warning("%s was not found; HEVC videos will be served unchanged", binary)

    gate = SessionGate(secure_mode=app_config.secure_mode)
    pairing_code: Optional[str] = None
    if app_config.secure_mode:
        if code:
            gate.authorize(code)
            pairing_code = code.strip()
        else:
            pairing_code = gate.issue_token()

    app = create_app(app_config, gate=gate)

    server_config = uvicorn.Config(
        app,
        host=app_config.host,
        port=app_config.port,
        log_config=None,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server

    urls = build_server_urls(app_config.host, app_config.port)
    print_banner(app_config, urls, pairing_code=pairing_code)

    if open_browser:
        url = f"http://127.0.0.1:{app_config.port}/"
        if pairing_code:
            url = f"{url}?session_code={pairing_code}"

        def _open_browser_later() -> None:
            time.sleep(1.0)
            try:
                webbrowser.open(url, new=2, autoraise=True)
            except webbrowser.Error as error:
                LOGGER.warning("Could not open a browser: %s", error)

        threading.Thread(target=_open_browser_later, daemon=True).start()

    server.run()


@cli.command()
def probe(
    video: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
        help="Video file to inspect",
    ),
    ffprobe: str = typer.Option("ffprobe", help="ffprobe binary to use", envvar="MEDIASHARE_FFPROBE"),
) -> None:
    """Report whether *video* would be transcoded before streaming."""

    prober = FFprobeVideoProber(ffprobe)
    try:
        stream = prober.probe(video)
    except ProbeError as error:
        typer.echo(f"Could not probe {video.name}: {error}")
        typer.echo("The original file would be served unchanged.")
        raise typer.Exit(code=1) from error

    typer.echo(f"Video: {video}")
    typer.echo(f"  Codec: {stream.codec_name or 'unknown'} (tag: {stream.codec_tag or '-'})")
    typer.echo(f"  Resolution: {stream.width}x{stream.height}")
    if needs_transcode(stream):
        preset = select_preset(stream.width, stream.height)
        typer.echo(
            f"  Transcode: yes, H.264 {preset.name} ({preset.max_width}x{preset.max_height})"
        )
    else:
        typer.echo("  Transcode: no, served as-is")


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] in SOURCE_KINDS:
        # ``run.py library <dir>`` is a shorthand for ``run.py serve --library <dir>``.
        kind = sys.argv.pop(1)
        sys.argv[1:1] = ["serve", "--library"] if kind == "library" else ["serve"]
    cli()
