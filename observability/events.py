"""
Structured JSON event emission for reading sessions.

Events are the audit trail of a session: phase changes, supervisor
interrupts, latency measurements and card draws. Each event is written as a
JSON line and kept in the in-memory event store for later querying.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, TextIO

from .event_store import event_store, EventStore


class Component(str, Enum):
    """Components that emit events."""

    SESSION = "session"
    STATE_MACHINE = "state_machine"
    COORDINATOR = "coordinator"
    LATENCY = "latency"
    TAROT_API = "tarot_api"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


class EventEmitter:
    """
    Emits structured JSON events.

    Args:
        component: Emitting component.
        echo: Write each event as a JSON line to `stream`. The CLI turns this
            off in demo mode so events don't interleave with the dialog.
        stream: Output stream; resolved at emit time when None so that
            pytest's capsys sees the output.
        store: Event store receiving every event (global store by default).
    """

    def __init__(
        self,
        component: Component,
        *,
        echo: bool = True,
        stream: Optional[TextIO] = None,
        store: Optional[EventStore] = None,
    ):
        self.component = component
        self.echo = echo
        self._stream = stream
        self._store = store if store is not None else event_store

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Emit one event and return the envelope that was recorded.

        Args:
            event_type: Stable event type string (e.g. "phase.changed")
            session_id: Opaque session identifier
            severity: Event severity level
            correlation_id: Turn or operation id; defaults to session_id
            pii: PII metadata dict with contains_pii, fields, handling
            **kwargs: Event-specific fields
        """
        event: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or DEFAULT_PII,
        }
        event.update(kwargs)

        if self.echo:
            stream = self._stream or sys.stdout
            stream.write(json.dumps(event, ensure_ascii=False, default=str))
            stream.write("\n")
            stream.flush()

        self._store.store(event)
        return event
