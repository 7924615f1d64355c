"""
Tests for logging_setup module.

Verifies:
- JSON structured logging format
- Component and session tagging
- PII-marked fields for user answers
- Latency rendering
- Log level configuration
"""
import json
import logging
from io import StringIO
from datetime import datetime

import pytest

from logging_setup import (
    setup_logging,
    get_logger,
    Component,
    JSONFormatter,
    StructuredLogger,
)


@pytest.fixture
def capture_logs():
    """Capture root log output to a string buffer."""
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(JSONFormatter())

    logger = logging.getLogger()
    logger.handlers = []
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    yield buffer

    logger.handlers = []


def last_entry(buffer):
    return json.loads(buffer.getvalue().strip().splitlines()[-1])


def test_json_formatter_basic(capture_logs):
    logger = get_logger(Component.TAROT_API)
    logger.info("Card drawn", card="The Fool")

    entry = last_entry(capture_logs)

    assert entry["severity"] == "info"
    assert entry["component"] == "tarot_api"
    assert entry["message"] == "Card drawn"
    assert entry["card"] == "The Fool"
    datetime.fromisoformat(entry["timestamp"].replace("Z", "+00:00"))


def test_logger_name_is_namespaced():
    logger = get_logger(Component.COORDINATOR)

    assert logger.logger.name == "tarot.coordinator"


def test_session_id_correlation(capture_logs):
    get_logger(Component.SESSION, session_id="sess_123").info("Reading session started")

    assert last_entry(capture_logs)["session_id"] == "sess_123"


def test_session_id_absent_when_not_provided(capture_logs):
    get_logger(Component.STATE_MACHINE).info("No session")

    assert "session_id" not in last_entry(capture_logs)


def test_with_session_keeps_component(capture_logs):
    session_logger = get_logger(Component.LATENCY).with_session("sess_456")
    session_logger.info("Operation completed")

    entry = last_entry(capture_logs)
    assert entry["session_id"] == "sess_456"
    assert entry["component"] == "latency"


def test_pii_fields_are_grouped(capture_logs):
    logger = get_logger(Component.STT, session_id="sess_789")
    logger.info_pii("Transcript final", transcript="I'm a night owl")

    entry = last_entry(capture_logs)
    assert entry["pii"] == {"transcript": "I'm a night owl"}
    assert "transcript" not in entry


def test_debug_pii_method(capture_logs):
    get_logger(Component.STATE_MACHINE).debug_pii("Answer", answer="lava")

    entry = last_entry(capture_logs)
    assert entry["severity"] == "debug"
    assert entry["pii"]["answer"] == "lava"


def test_pii_keyword_on_plain_call(capture_logs):
    get_logger(Component.STATE_MACHINE).debug("Answer rejected", phase="QUESTION_ELEMENT", pii={"answer": "lava"})

    entry = last_entry(capture_logs)
    assert entry["phase"] == "QUESTION_ELEMENT"
    assert entry["pii"] == {"answer": "lava"}


def test_severity_levels(capture_logs):
    logger = get_logger(Component.WORKER_LLM)

    logger.debug("Debug message")
    logger.info("Info message")
    logger.warning("Warning message")
    logger.error("Error message")
    logger.critical("Critical message")

    lines = [line for line in capture_logs.getvalue().strip().split("\n") if line]
    severities = [json.loads(line)["severity"] for line in lines]
    assert severities == ["debug", "info", "warning", "error", "critical"]


def test_latency_is_rendered_with_unit(capture_logs, monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    get_logger(Component.LATENCY).info("Operation completed", latency_ms=812)

    assert '"latency_ms": 812 ms' in capture_logs.getvalue()


def test_component_enum():
    assert Component.SUPERVISOR_LLM.value == "supervisor_llm"
    assert Component.INTERRUPTION.value == "interruption"
    assert Component.STT.value == "stt"
    assert Component.TTS.value == "tts"
    assert Component.CLI.value == "cli"


def test_component_string_fallback(capture_logs):
    StructuredLogger("custom_component").info("Test")

    assert last_entry(capture_logs)["component"] == "custom_component"


def test_exception_logging(capture_logs):
    logger = get_logger(Component.CLI)

    try:
        raise ValueError("Test exception")
    except ValueError:
        logger.exception("Reading failed")

    entry = last_entry(capture_logs)
    assert entry["severity"] == "error"
    assert "ValueError: Test exception" in entry["exception"]


def test_setup_logging_json():
    stream = StringIO()
    setup_logging(level="DEBUG", use_json=True, stream=stream)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)

    get_logger(Component.SESSION).debug("hello")
    assert json.loads(stream.getvalue())["message"] == "hello"


def test_setup_logging_text():
    setup_logging(level="INFO", use_json=False, stream=StringIO())

    root_logger = logging.getLogger()
    assert root_logger.level == logging.INFO
    assert len(root_logger.handlers) == 1
    assert not isinstance(root_logger.handlers[0].formatter, JSONFormatter)
