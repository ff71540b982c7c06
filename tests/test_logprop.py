import json
import logging
from datetime import datetime, timezone

import pytest

from limaconf.logprop import TRACE, propagate_json

LOGGER_NAME = "limaconf.tests.child"


@pytest.fixture
def logger(caplog):
    caplog.set_level(1)
    caplog.set_level(1, logger=LOGGER_NAME)
    return logging.getLogger(LOGGER_NAME)


def _line(**fields):
    return json.dumps(fields)


def test_blank_line_is_ignored(logger, caplog):
    assert propagate_json(logger, "   \n", "[hdr] ", None) is None
    assert caplog.records == []


@pytest.mark.parametrize(
    "level,expected",
    [
        ("error", logging.ERROR),
        ("warning", logging.WARNING),
        ("warn", logging.WARNING),
        ("info", logging.INFO),
        ("debug", logging.DEBUG),
        ("trace", TRACE),
    ],
)
def test_levels_are_mapped(logger, caplog, level, expected):
    result = propagate_json(logger, _line(level=level, msg="hello"), "[hdr] ", None)
    assert result == expected
    assert [(r.name, r.levelno, r.getMessage()) for r in caplog.records] == [
        (LOGGER_NAME, expected, "[hdr] hello")
    ]


@pytest.mark.parametrize("level", ["panic", "fatal"])
def test_panic_and_fatal_become_errors(logger, caplog, level):
    result = propagate_json(logger, _line(level=level, msg="down"), "", None)
    assert result == logging.ERROR
    record = caplog.records[0]
    assert record.levelno == logging.ERROR
    assert record.level == level
    assert record.getMessage() == "down"


def test_invalid_json_falls_back_to_root_info(logger, caplog):
    raw = "not json at all"
    assert propagate_json(logger, raw, "[hdr] ", None) == logging.INFO
    assert [(r.name, r.levelno, r.getMessage()) for r in caplog.records] == [
        ("root", logging.INFO, "[hdr] " + raw)
    ]


def test_unknown_level_falls_back(logger, caplog):
    raw = _line(level="loud", msg="x")
    assert propagate_json(logger, raw, "", None) == logging.INFO
    assert caplog.records[0].getMessage() == raw


def test_bytes_are_accepted(logger, caplog):
    raw = _line(level="warning", msg="from bytes").encode()
    assert propagate_json(logger, raw, "> ", None) == logging.WARNING
    assert caplog.records[0].getMessage() == "> from bytes"


def test_old_lines_are_dropped(logger, caplog):
    begin = datetime(2023, 1, 1, 0, 0, 10, tzinfo=timezone.utc)
    raw = _line(level="info", msg="stale", time="2023-01-01T00:00:00Z")
    assert propagate_json(logger, raw, "", begin) is None
    assert caplog.records == []


def test_lines_within_slack_are_kept(logger, caplog):
    begin = datetime(2023, 1, 1, 0, 0, 10, tzinfo=timezone.utc)
    raw = _line(level="info", msg="fresh", time="2023-01-01T00:00:09.500000001Z")
    assert propagate_json(logger, raw, "", begin) == logging.INFO
    assert caplog.records[0].getMessage() == "fresh"


def test_bad_time_falls_back(logger, caplog):
    raw = _line(level="info", msg="m", time="yesterday")
    assert propagate_json(logger, raw, "", None) == logging.INFO
    assert caplog.records[0].name == "root"
    assert caplog.records[0].getMessage() == raw