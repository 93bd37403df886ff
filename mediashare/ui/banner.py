"""Rich startup banner shown when the server starts."""

from __future__ import annotations

from typing import Optional, Sequence

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..config import AppConfig


def build_banner(
    config: AppConfig,
    urls: Sequence[str],
    *,
    pairing_code: Optional[str] = None,
) -> Panel:
    details = Table.grid(padding=(0, 2))
    details.add_column(style="bold cyan", justify="right")
    details.add_column()
    details.add_row("Sharing", f"{config.source_kind} [dim]{config.source_root}[/dim]")
    details.add_row("Cache", str(config.cache_root))

    addresses = Text()
    for index, url in enumerate(urls):
        if index:
            addresses.append("\n")
        addresses.append(url, style="bold green")
    details.add_row("Open", addresses)

    parts = [details]
    if config.secure_mode:
        if pairing_code:
            pairing_url = f"{urls[0]}?session_code={pairing_code}" if urls else ""
            parts.append(Text())
            parts.append(Text.assemble(("Pairing code: ", "bold yellow"), (pairing_code, "bold")))
            if pairing_url:
                parts.append(Text(pairing_url, style="yellow"))
        else:
            parts.append(Text("Protected mode is on; no pairing code issued.", style="yellow"))

    return Panel(
        Group(*parts),
        title="[bold magenta]Media Share",
        border_style="magenta",
        box=box.ROUNDED,
    )


def print_banner(
    config: AppConfig,
    urls: Sequence[str],
    *,
    pairing_code: Optional[str] = None,
    console: Optional[Console] = None,
) -> None:
    (console or Console()).print(build_banner(config, urls, pairing_code=pairing_code))


__all__ = ["build_banner", "print_banner"]
