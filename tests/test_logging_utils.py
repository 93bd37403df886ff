import logging
from pathlib import Path

import pytest

from mediashare.logging_utils import configure_logging, get_log_file_path
from mediashare.services.events import emit_auth_event, emit_task_event, normalize_details


@pytest.fixture()
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_configure_logging_writes_log_file_once(tmp_path: Path, restore_root_logger) -> None:
    log_file = get_log_file_path(tmp_path / "cache")

    configure_logging(logging.DEBUG, log_file=log_file, console=False)
    configure_logging(logging.DEBUG, log_file=log_file, console=False)
    logging.getLogger("mediashare.test").info("hello from the server")
    for handler in restore_root_logger.handlers:
        handler.flush()

    assert log_file.read_text(encoding="utf-8").count("hello from the server") == 1
    assert logging.getLogger("uvicorn.access").level == logging.INFO


def test_access_log_is_quiet_outside_debug(restore_root_logger) -> None:
    configure_logging(logging.INFO, console=False)

    assert logging.getLogger("uvicorn.access").level == logging.WARNING
    assert logging.getLogger("uvicorn").propagate is True


def test_task_event_renders_details(caplog) -> None:
    caplog.set_level(logging.INFO, logger="mediashare.events")

    emit_task_event(
        "ready",
        "Transcode ready",
        payload={"source": Path("/media/clip.mov"), "empty": ""},
        duration_ms=12.34,
    )

    record = caplog.records[-1]
    assert record.getMessage() == (
        "[TASK_STATE] Transcode ready (phase=ready, source=/media/clip.mov, duration_ms=12.3)"
    )
    assert record.event_type == "TASK_STATE"
    assert record.event_duration_ms == pytest.approx(12.34)


def test_auth_event_respects_level(caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="mediashare.events")

    emit_auth_event("Rejected request", payload={"path": "/download/a"}, level=logging.DEBUG)

    assert caplog.records[-1].levelno == logging.DEBUG
    assert caplog.records[-1].event_payload == {"path": "/download/a"}


def test_normalize_details_truncates_and_flattens() -> None:
    details = normalize_details({"tags": ["a", "b"], "long": "x" * 300, "": "skip", "none": None})

    assert details["tags"] == "a, b"
    assert details["long"].endswith("…")
    assert len(details["long"]) == 201
    assert set(details) == {"tags", "long"}
