"""Structured logging and run-log helpers for pre-arch components."""

from __future__ import annotations

import datetime as _dt
import json
import os
import sys
from pathlib import Path
from typing import Any, Mapping, Sequence

__all__ = ["log_event", "report", "INFO", "WARNING", "ERROR"]

INFO = "info"
WARNING = "warning"
ERROR = "error"

_DEFAULT_LOG_FILE = Path("/var/log/pre-arch/actions.log")


def _serialise(value: Any) -> Any:
    """Return a JSON-friendly representation of *value*."""

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _serialise(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_serialise(item) for item in value]
    return repr(value)


def _logs_enabled() -> bool:
    """Return ``True`` when structured logging is enabled via the environment."""

    value = os.environ.get("PRE_ARCH_LOG_EVENTS")
    if value is None:
        return False
    return value.strip().lower() not in {"", "0", "false", "no"}


def log_event(event: str, **fields: Any) -> None:
    """Emit a structured log entry to ``stderr`` when logging is enabled.

    The entry includes an ISO-8601 UTC timestamp so the consumer can reconstruct
    execution order across retries and escalations.  Non-JSON-serialisable
    values are converted to strings via ``repr``.
    """

    if not _logs_enabled():
        return

    record = {
        "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat(),
        "event": event,
    }
    for key, value in fields.items():
        record[str(key)] = _serialise(value)

    message = json.dumps(record, sort_keys=True)

    sys.stderr.write(message + "\n")
    sys.stderr.flush()
    _append_to_log_file(message)


def _log_file_path() -> Path:
    """Return the configured log file path.

    When ``PRE_ARCH_LOG_FILE`` is not set or is empty, fall back to the
    default location under ``/var/log``.
    """

    value = os.environ.get("PRE_ARCH_LOG_FILE")
    if value is None or value.strip() == "":
        return _DEFAULT_LOG_FILE
    return Path(value)


def _append_to_log_file(message: str) -> None:
    """Append the given JSON *message* to the configured log file."""

    log_file = _log_file_path()
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with log_file.open("a", encoding="utf-8") as handle:
            handle.write(message + "\n")
    except OSError as exc:  # pragma: no cover - log directory not writable
        sys.stderr.write(f"pre-arch: failed to write log to {log_file}: {exc}\n")
        sys.stderr.flush()


def _timestamp() -> str:
    return _dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def report(message: str, *, level: str = INFO, **fields: Any) -> str:
    """Print a timestamped run-log line for the operator and return it.

    Warnings are prefixed with ``Warning:`` and errors with ``ERROR:``; errors
    go to ``stderr``.  The line is mirrored as a ``pre_arch.report`` event.
    """

    if level == WARNING:
        text = f"Warning: {message}"
    elif level == ERROR:
        text = f"ERROR: {message}"
    else:
        text = message
    line = f"[{_timestamp()}] {text}"
    stream = sys.stderr if level == ERROR else sys.stdout
    stream.write(line + "\n")
    stream.flush()
    log_event("pre_arch.report", level=level, message=message, **fields)
    return line
