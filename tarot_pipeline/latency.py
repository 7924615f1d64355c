"""
Latency optimizer: hide slow backend steps behind a filler utterance.

await_with_filler() races an operation against a fixed threshold. If the
threshold elapses first, a filler ("Hmm...") is spoken once while the real
operation keeps running; its result or exception is then passed through
untouched. The threshold only changes pacing, never the outcome.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from logging_setup import get_logger, Component
from observability.events import EventEmitter, Severity


logger = get_logger(Component.LATENCY)

T = TypeVar("T")

FillerInjector = Callable[[], Awaitable[Any]]


def latency_band(elapsed_ms: int) -> str:
    if elapsed_ms < 500:
        return "fast"
    if elapsed_ms < 1000:
        return "ok"
    return "slow"


class LatencyOptimizer:
    """Filler-on-timeout wrapper for slow operations."""

    def __init__(
        self,
        inject_filler: FillerInjector,
        *,
        threshold_ms: int = 800,
        session_id: str = "unknown",
        emitter: Optional[EventEmitter] = None,
        now: Callable[[], float] = time.perf_counter,
    ):
        self._inject_filler = inject_filler
        self.threshold_ms = threshold_ms
        self.session_id = session_id
        self._emitter = emitter
        self._now = now
        self._logger = logger.with_session(session_id)

    async def await_with_filler(self, operation: Awaitable[T], label: str = "thinking") -> T:
        """
        Await `operation`, speaking one filler if it outlasts the threshold.

        Returns the operation's result, or raises its exception.
        """
        start_ts = self._now()
        task = asyncio.ensure_future(operation)
        filler_injected = False

        try:
            done, _ = await asyncio.wait({task}, timeout=self.threshold_ms / 1000.0)
            if not done and not filler_injected:
                filler_injected = True
                await self._speak_filler(label)
            result = await task
        except asyncio.CancelledError:
            task.cancel()
            raise
        except Exception:
            self._record(label, start_ts, filler_injected, failed=True)
            raise

        self._record(label, start_ts, filler_injected, failed=False)
        return result

    async def _speak_filler(self, label: str) -> None:
        if self._emitter is not None:
            self._emitter.emit(
                "latency.filler_injected",
                session_id=self.session_id,
                severity=Severity.DEBUG,
                label=label,
                threshold_ms=self.threshold_ms,
            )
        try:
            await self._inject_filler()
        except Exception as e:
            self._logger.warning(
                "Filler could not be spoken",
                label=label,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _record(self, label: str, start_ts: float, filler_injected: bool, *, failed: bool) -> int:
        elapsed_ms = int((self._now() - start_ts) * 1000)
        self._logger.info(
            "Operation completed" if not failed else "Operation failed",
            label=label,
            filler_injected=filler_injected,
            band=latency_band(elapsed_ms),
            latency_ms=elapsed_ms,
        )
        if self._emitter is not None:
            self._emitter.emit(
                "latency.measured",
                session_id=self.session_id,
                severity=Severity.INFO,
                label=label,
                filler_injected=filler_injected,
                failed=failed,
                latency_ms=elapsed_ms,
            )
        return elapsed_ms

    async def track_operation(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        """Time an operation without any filler; failures are re-raised."""
        start_ts = self._now()
        try:
            result = await operation()
        except Exception:
            self._record(name, start_ts, False, failed=True)
            raise
        self._record(name, start_ts, False, failed=False)
        return result

    def log_latency(self, name: str, start_ts: float) -> int:
        """Log elapsed time since `start_ts` (taken from the same clock)."""
        elapsed_ms = int((self._now() - start_ts) * 1000)
        self._logger.info("Latency", label=name, band=latency_band(elapsed_ms), latency_ms=elapsed_ms)
        return elapsed_ms
