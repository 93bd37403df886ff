"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from types import SimpleNamespace

import pytest
import typer
from rich.console import Console
from typer.testing import CliRunner

import run
from conftest import H264_1080, HEVC_4K
from mediashare.bootstrap import BootstrapError
from mediashare.config import AppConfig
from mediashare.services.transcode import ProbeError
from mediashare.ui.banner import print_banner


def _setup_serve(
    monkeypatch, tmp_path, *, secure=False, code=None, open_browser=False, tools_installed=True
):
    captured = {}
    config = AppConfig(
        source_root=tmp_path / "shared",
        cache_root=tmp_path / "cache",
        host="0.0.0.0",
        port=9000,
        secure_mode=secure,
    )

    def fake_initialize(**overrides):
        captured["overrides"] = overrides
        return config

    monkeypatch.setattr(run, "initialize_app", fake_initialize)
    monkeypatch.setattr(run, "_prepare_logging", lambda cache_root, verbose=False: None)
    monkeypatch.setattr(run, "ffmpeg_available", lambda binary: tools_installed)

    dummy_app = SimpleNamespace(state=SimpleNamespace())

    def fake_create_app(app_config, *, gate):
        captured["gate"] = gate
        return dummy_app

    monkeypatch.setattr(run, "create_app", fake_create_app)
    monkeypatch.setattr(run, "build_server_urls", lambda host, port: [f"http://192.168.1.5:{port}/"])

    def fake_banner(app_config, urls, *, pairing_code):
        captured["urls"] = urls
        captured["pairing_code"] = pairing_code

    monkeypatch.setattr(run, "print_banner", fake_banner)

    class DummyConfig:
        def __init__(self, app, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = kwargs

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    class DummyThread:
        def __init__(self, target, daemon):
            self._target = target
            captured["thread_daemon"] = daemon

        def start(self):
            captured["thread_started"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)
    monkeypatch.setattr(run.threading, "Thread", DummyThread)
    monkeypatch.setattr(run.webbrowser, "open", lambda *args, **kwargs: True)

    run.serve(
        source=tmp_path / "shared",
        library=True,
        host="0.0.0.0",
        port=9000,
        secure=secure,
        code=code,
        open_browser=open_browser,
        verbose=False,
    )

    captured["app_state_server"] = dummy_app.state.server
    return captured


def test_serve_runs_uvicorn_with_overrides(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path)

    assert captured["overrides"]["source_kind"] == "library"
    assert captured["overrides"]["source_root"] == tmp_path / "shared"
    assert captured["config_kwargs"] == {"host": "0.0.0.0", "port": 9000, "log_config": None}
    assert captured["server_run"] is True
    assert captured["app_state_server"] is captured["server_instance"]
    assert captured["pairing_code"] is None
    assert captured["gate"].secure_mode is False
    assert "thread_started" not in captured


def test_serve_issues_pairing_code_in_secure_mode(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, secure=True)

    code = captured["pairing_code"]
    assert code
    assert captured["gate"].secure_mode is True
    assert captured["gate"].validate_token(code)


def test_serve_authorizes_supplied_code_and_opens_browser(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, secure=True, code="family", open_browser=True)

    assert captured["pairing_code"] == "family"
    assert captured["gate"].validate_token("family")
    assert captured["thread_daemon"] is True
    assert captured["thread_started"] is True


def test_serve_warns_when_ffmpeg_is_missing(monkeypatch, tmp_path, caplog):
    caplog.set_level(logging.WARNING, logger="mediashare.cli")

    captured = _setup_serve(monkeypatch, tmp_path, tools_installed=False)

    messages = [record.getMessage() for record in caplog.records]
    assert "ffprobe was not found; HEVC videos will be served unchanged" in messages
    assert "ffmpeg was not found; HEVC videos will be served unchanged" in messages
    assert captured["server_run"] is True


def test_serve_exits_when_bootstrap_fails(monkeypatch, tmp_path):
    def failing_initialize(**_overrides):
        raise BootstrapError("Source folder '/missing' does not exist.")

    monkeypatch.setattr(run, "initialize_app", failing_initialize)

    with pytest.raises(typer.Exit) as excinfo:
        run.serve(
            source=tmp_path / "missing",
            library=False,
            host=None,
            port=None,
            secure=None,
            code=None,
            open_browser=False,
            verbose=False,
        )

    assert excinfo.value.exit_code == 1


def test_probe_reports_transcode_decision(monkeypatch, tmp_path):
    video = tmp_path / "phone.mov"
    video.write_bytes(b"movie")

    class StubProber:
        def __init__(self, binary):
            self.binary = binary

        def probe(self, source):
            return HEVC_4K if source.name == "phone.mov" else H264_1080

    monkeypatch.setattr(run, "FFprobeVideoProber", StubProber)
    result = CliRunner().invoke(run.cli, ["probe", str(video)])

    assert result.exit_code == 0
    assert "Codec: hevc (tag: hvc1)" in result.output
    assert "Resolution: 3840x2160" in result.output
    assert "Transcode: yes, H.264 1080p" in result.output


def test_probe_failure_exits_with_error(monkeypatch, tmp_path):
    video = tmp_path / "broken.mp4"
    video.write_bytes(b"junk")

    class BrokenProber:
        def __init__(self, binary):
            pass

        def probe(self, source):
            raise ProbeError("no video track")

    monkeypatch.setattr(run, "FFprobeVideoProber", BrokenProber)
    result = CliRunner().invoke(run.cli, ["probe", str(video)])

    assert result.exit_code == 1
    assert "served unchanged" in result.output


def test_banner_shows_pairing_code(tmp_path: Path):
    config = AppConfig(source_root=tmp_path, cache_root=tmp_path / "cache", secure_mode=True)
    console = Console(record=True, width=120)

    print_banner(config, ["http://192.168.1.5:8080/"], pairing_code="abc123", console=console)

    output = console.export_text()
    assert "Media Share" in output
    assert "Pairing code: abc123" in output
    assert "http://192.168.1.5:8080/?session_code=abc123" in output
