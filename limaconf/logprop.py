"""Re-emitting JSON log lines produced by a child process."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

__all__ = ["LogLine", "propagate_json", "TRACE"]

TRACE = 5

_EPSILON = timedelta(seconds=1)

_LEVELS = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

_TIME_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


@dataclass
class LogLine:
    """One line as written by a JSON log formatter."""

    level: str = ""
    msg: str = ""
    time: datetime | None = None


def _parse_time(text: str) -> datetime | None:
    match = _TIME_RE.match(text)
    if not match:
        raise ValueError(f"invalid time {text!r}")
    base, fraction, zone = match.groups()
    fraction = (fraction or "").ljust(6, "0")[:6]
    offset = "+00:00" if zone in ("Z", "z") else zone
    parsed = datetime.fromisoformat(f"{base}.{fraction}{offset}")
    return None if parsed == _ZERO_TIME else parsed


def _parse_line(text: str) -> LogLine:
    data = json.loads(text)
    if data is None:
        return LogLine()
    if not isinstance(data, dict):
        raise ValueError("log line is not a JSON object")
    level = data.get("level") or ""
    msg = data.get("msg") or ""
    raw_time = data.get("time")
    if not isinstance(level, str) or not isinstance(msg, str):
        raise ValueError("level and msg must be strings")
    if raw_time is not None and not isinstance(raw_time, str):
        raise ValueError("time must be a string")
    return LogLine(level=level, msg=msg, time=_parse_time(raw_time) if raw_time else None)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.astimezone()


def propagate_json(
    logger: logging.Logger,
    json_line: bytes | str,
    header: str,
    begin: datetime | None = None,
) -> int | None:
    """Log ``json_line`` through ``logger`` at the level it names.

    Lines older than ``begin`` (with one second of slack) are dropped, and
    panic/fatal lines are logged as errors.  Lines that cannot be understood
    are logged verbatim at INFO on the root logger.  Returns the level used,
    or None when nothing was logged.
    """
    text = json_line.decode("utf-8", errors="replace") if isinstance(json_line, bytes) else json_line
    if not text.strip():
        return None

    try:
        line = _parse_line(text)
    except ValueError:
        line = None

    if line is not None:
        if line.time is not None and begin is not None:
            if _aware(begin) > _aware(line.time) + _EPSILON:
                return None
        name = line.level.lower()
        if name in _LEVELS:
            message = header + line.msg
            if name in ("panic", "fatal"):
                logger.error(message, extra={"level": name})
                return logging.ERROR
            level = _LEVELS[name]
            logger.log(level, message)
            return level

    logging.getLogger().info(header + text)
    return logging.INFO