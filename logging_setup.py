"""
Shared logging infrastructure for the tarot reader.

Every module logs through a StructuredLogger so that a whole reading session
can be followed as one stream of JSON lines.

Features:
- JSON-formatted structured logs
- Configurable log levels
- Session ID correlation across all logs
- Component tagging
- PII-aware logging helpers (user answers are personal data)
"""

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Severity(str, Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Component(str, Enum):
    """System components for log tagging."""
    SESSION = "session"
    STATE_MACHINE = "state_machine"
    COORDINATOR = "coordinator"
    WORKER_LLM = "worker_llm"
    SUPERVISOR_LLM = "supervisor_llm"
    INTERRUPTION = "interruption"
    LATENCY = "latency"
    TAROT_API = "tarot_api"
    STT = "stt"
    TTS = "tts"
    CLI = "cli"


# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_RECORD_KEYS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "component", "session_id", "message",
})

_LATENCY_PATTERN = re.compile(r'("latency_ms"\s*:\s*)(\d+)')


def _use_color() -> bool:
    no_color = os.environ.get("NO_COLOR", "").lower() in ("1", "true", "yes")
    if no_color:
        return False
    force_color = os.environ.get("FORCE_COLOR", "").lower() in ("1", "true", "yes")
    try:
        is_tty = sys.stdout.isatty()
    except (AttributeError, OSError):
        is_tty = False
    return is_tty or force_color


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Each line carries:
    - ISO8601 timestamp
    - Severity level
    - Component identifier
    - Session ID (if available in extra)
    - Message and additional fields

    Latency values (latency_ms) get an "ms" unit appended, highlighted on a TTY.
    """

    ORANGE = "\033[38;5;208m"
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname.lower(),
            "component": getattr(record, "component", record.name),
            "message": record.getMessage(),
        }

        if hasattr(record, "session_id"):
            log_data["session_id"] = record.session_id

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        json_output = json.dumps(log_data, ensure_ascii=False, default=str)

        if isinstance(log_data.get("latency_ms"), int):
            if _use_color():
                replacement = rf"\1{self.ORANGE}\2 ms{self.RESET}"
            else:
                replacement = r"\1\2 ms"
            json_output = _LATENCY_PATTERN.sub(replacement, json_output)

        return json_output


class StructuredLogger:
    """
    Wrapper around Python's logging with keyword fields.

    Usage:
        logger = StructuredLogger(Component.COORDINATOR, session_id="sess_123")
        logger.info("Stream interrupted", tokens_forwarded=4)
        logger.info_pii("User answered", answer="night owl")
    """

    def __init__(
        self,
        component: str | Component,
        session_id: Optional[str] = None,
        logger_name: Optional[str] = None
    ):
        self.component = component.value if isinstance(component, Component) else component
        self.session_id = session_id
        self.logger = logging.getLogger(logger_name or f"tarot.{self.component}")

    def _log(
        self,
        level: int,
        message: str,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        exc_info = kwargs.pop("exc_info", None)
        stack_info = kwargs.pop("stack_info", None)
        stacklevel = kwargs.pop("stacklevel", 1)

        extra = {
            "component": self.component,
            **kwargs
        }

        if self.session_id:
            extra["session_id"] = self.session_id

        if pii:
            extra["pii"] = pii

        self.logger.log(
            level,
            message,
            exc_info=exc_info,
            stack_info=stack_info,
            stacklevel=stacklevel,
            extra=extra
        )

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log an error message with the active exception attached."""
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, message, **kwargs)

    def debug_pii(self, message: str, **pii_fields):
        """
        Log debug with PII fields explicitly marked.

        Example:
            logger.debug_pii("Transcript updated", transcript="I'm a night owl")
        """
        self._log(logging.DEBUG, message, pii=pii_fields)

    def info_pii(self, message: str, **pii_fields):
        """Log info with PII fields explicitly marked."""
        self._log(logging.INFO, message, pii=pii_fields)

    def with_session(self, session_id: str) -> "StructuredLogger":
        """Create a new logger instance bound to a session ID."""
        return StructuredLogger(
            self.component,
            session_id=session_id,
            logger_name=self.logger.name
        )


def setup_logging(
    level: str = "INFO",
    use_json: bool = True,
    stream=None,
) -> None:
    """
    Configure the root logger. Call once at startup.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: JSON lines (True) or a short human-readable format (False)
        stream: Output stream, defaults to stderr so it never mixes with the
            spoken text printed in demo mode
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stderr)

    if use_json:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)


def get_logger(
    component: str | Component,
    session_id: Optional[str] = None
) -> StructuredLogger:
    """
    Get a structured logger for a component.

    Example:
        logger = get_logger(Component.TAROT_API)
        logger.warning("Card draw failed, using fallback card")
    """
    return StructuredLogger(component, session_id=session_id)
