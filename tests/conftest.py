from __future__ import annotations

import sys
from pathlib import Path
from typing import List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mediashare.bootstrap import Bootstrapper
from mediashare.config import AppConfig
from mediashare.services.transcode import TranscodePreset
from mediashare.services.video_tools import VideoStreamInfo


HEVC_4K = VideoStreamInfo(codec_name="hevc", codec_tag="hvc1", width=3840, height=2160)
H264_1080 = VideoStreamInfo(codec_name="h264", codec_tag="avc1", width=1920, height=1080)


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_file = config_dir / "default.json"
    config_file.write_text(
        """
        {
            \"source_root\": \"shared\",\n
            \"cache_root\": \"cache\"\n
        }
        """,
        encoding="utf-8",
    )
    (tmp_path / "shared").mkdir()
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {"source_root": "shared", "cache_root": "cache"},
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


class FakeProber:
    """Return a fixed stream description, or raise the configured error."""

    def __init__(self, stream: VideoStreamInfo = HEVC_4K, error: Exception | None = None) -> None:
        self.stream = stream
        self.error = error
        self.calls: List[Path] = []

    def probe(self, source: Path) -> VideoStreamInfo:
        self.calls.append(source)
        if self.error is not None:
            raise self.error
        return self.stream


class FakeTranscoder:
    """Write a marker file instead of running ffmpeg."""

    def __init__(self, *, payload: bytes = b"transcoded-output", error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.calls: List[tuple[Path, Path, TranscodePreset]] = []

    def transcode(self, source: Path, destination: Path, preset: TranscodePreset) -> None:
        self.calls.append((source, destination, preset))
        if self.error is not None:
            raise self.error
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.payload)


@pytest.fixture()
def fake_prober() -> FakeProber:
    return FakeProber()


@pytest.fixture()
def fake_transcoder() -> FakeTranscoder:
    return FakeTranscoder()
