"""Structured log events for file, transcode and session-gate activity.

Events are ordinary log records on the ``mediashare.events`` logger. The
rendered message carries a ``[KIND]`` prefix and ``key=value`` details so the
log file stays greppable, while the same details are attached to the record
as ``event_*`` attributes for handlers that want them unflattened.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("mediashare.events")

_MAX_VALUE_LENGTH = 200

EventLogger = logging.Logger | logging.LoggerAdapter


class EventKind(str, Enum):
    FILE = "FILE_OP"
    TASK = "TASK_STATE"
    AUTH = "AUTH"


def _clean_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, Mapping):
        return normalize_details(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        text = ", ".join(str(item) for item in value)
    else:
        text = str(value)
    text = text.strip()
    if len(text) > _MAX_VALUE_LENGTH:
        text = text[:_MAX_VALUE_LENGTH] + "…"
    return text or None


def normalize_details(values: Optional[Mapping[Any, Any]]) -> Dict[str, Any]:
    """Drop empty entries and coerce values into log-friendly scalars."""

    details: Dict[str, Any] = {}
    for key, raw in (values or {}).items():
        if not key:
            continue
        cleaned = _clean_value(raw)
        if cleaned is None or cleaned == "" or cleaned == {}:
            continue
        details[str(key)] = cleaned
    return details


def emit_structured_event(
    kind: EventKind | str,
    message: str,
    *,
    payload: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: EventLogger = DEFAULT_EVENT_LOGGER,
) -> None:
    label = kind.value if isinstance(kind, EventKind) else str(kind)
    text = str(message).strip()
    details = normalize_details(payload)
    if duration_ms is not None:
        details["duration_ms"] = round(float(duration_ms), 1)

    rendered = f"[{label}] {text}" if label else text
    if details:
        rendered += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"

    extra: Dict[str, Any] = {"event": text, "event_type": label}
    if details:
        extra["event_payload"] = details
    if duration_ms is not None:
        extra["event_duration_ms"] = float(duration_ms)
    logger.log(level, rendered, extra=extra)


def emit_file_event(
    operation: str,
    *,
    payload: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: EventLogger = DEFAULT_EVENT_LOGGER,
) -> None:
    """Record an archive, poster or download on disk."""

    emit_structured_event(
        EventKind.FILE, operation, payload=payload, duration_ms=duration_ms, level=level, logger=logger
    )


def emit_task_event(
    phase: str,
    message: str,
    *,
    payload: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: EventLogger = DEFAULT_EVENT_LOGGER,
) -> None:
    """Record a transcode job transition; *phase* is added to the payload."""

    details = {"phase": phase, **(payload or {})}
    emit_structured_event(
        EventKind.TASK, message or phase, payload=details, duration_ms=duration_ms, level=level, logger=logger
    )


def emit_auth_event(
    action: str,
    *,
    payload: Optional[Mapping[str, Any]] = None,
    level: int = logging.INFO,
    logger: EventLogger = DEFAULT_EVENT_LOGGER,
) -> None:
    emit_structured_event(EventKind.AUTH, action, payload=payload, level=level, logger=logger)


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "EventKind",
    "emit_auth_event",
    "emit_file_event",
    "emit_structured_event",
    "emit_task_event",
    "normalize_details",
]
