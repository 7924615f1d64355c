"""
Coordinator: supervised streaming over the worker and the supervisor.

stream_supervised() forwards worker tokens while a compliance check runs as an
independent task on a deep-copied snapshot of the conversation. Before each
token is forwarded the task is polled without blocking; once it reports
OFF_TRACK the stream ends with a single interrupt chunk. The interrupt chunk
is always the last element. A failing check counts as ON_TRACK.
"""

from __future__ import annotations

import asyncio
import copy
import time
from typing import AsyncIterator, Optional

from logging_setup import get_logger, Component
from observability.events import EventEmitter, Severity

from .models import Card, ComplianceCheck, ConversationState, StreamChunk, UserProfile
from .supervisor import SupervisorLLM
from .worker import WorkerLLM


logger = get_logger(Component.COORDINATOR)


class LLMCoordinator:
    """Runs the worker and the supervisor side by side for one session."""

    def __init__(
        self,
        worker: WorkerLLM,
        supervisor: SupervisorLLM,
        *,
        supervisor_enabled: bool = True,
        session_id: str = "unknown",
        emitter: Optional[EventEmitter] = None,
    ):
        self.worker = worker
        self.supervisor = supervisor
        self.supervisor_enabled = supervisor_enabled
        self.session_id = session_id
        self._emitter = emitter
        self._logger = logger.with_session(session_id)

    async def _checked(self, snapshot: ConversationState, user_input: str) -> ComplianceCheck:
        try:
            return await self.supervisor.check(snapshot, user_input)
        except Exception as e:
            self._logger.warning(
                "Supervisor error, treating turn as ON_TRACK",
                error=str(e),
                error_type=type(e).__name__,
            )
            return ComplianceCheck.on_track()

    async def stream_supervised(
        self,
        prompt: str,
        state: ConversationState,
        user_input: str,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream the worker's reply to `prompt`, interrupting if the supervisor
        flags `user_input` as off-track.

        Single-pass: consume the returned iterator exactly once.
        """
        tokens = self.worker.stream(prompt, state.history_messages())

        if not self.supervisor_enabled:
            try:
                async for token in tokens:
                    yield StreamChunk(token=token)
            finally:
                await tokens.aclose()
            return

        snapshot = copy.deepcopy(state)
        check = asyncio.create_task(self._checked(snapshot, user_input))
        start_ts = time.perf_counter()
        forwarded = 0
        try:
            async for token in tokens:
                if check.done() and check.result().is_off_track:
                    # Remaining worker output is dropped; aclose() in finally releases the request.
                    yield self._interrupt(check.result(), forwarded, start_ts, late=False)
                    return
                forwarded += 1
                yield StreamChunk(token=token)

            result = await check
            if result.is_off_track:
                yield self._interrupt(result, forwarded, start_ts, late=True)
        finally:
            await tokens.aclose()
            if not check.done():
                check.cancel()

    def _interrupt(
        self,
        result: ComplianceCheck,
        forwarded: int,
        start_ts: float,
        *,
        late: bool,
    ) -> StreamChunk:
        self._logger.info(
            "Supervisor interrupted response",
            reason=result.reason,
            tokens_forwarded=forwarded,
            after_stream_end=late,
            latency_ms=int((time.perf_counter() - start_ts) * 1000),
        )
        if self._emitter is not None:
            self._emitter.emit(
                "coordinator.interrupt",
                session_id=self.session_id,
                severity=Severity.INFO,
                reason=result.reason,
                has_redirect=bool(result.redirect),
                tokens_forwarded=forwarded,
                after_stream_end=late,
            )
        return StreamChunk(interrupt=result)

    async def generate_reading(
        self,
        profile: UserProfile,
        card: Card,
        use_enhancement: bool = True,
    ) -> str:
        """
        Full reading from the worker, optionally elaborated by the supervisor.

        Enhancement trouble never reaches the caller; the worker's reading is
        returned instead.
        """
        self._logger.info("Generating reading with worker LLM", card=card.name)
        worker_reading = await self.worker.reading(profile, card)

        if not self.supervisor_enabled or not use_enhancement:
            return worker_reading

        self._logger.info("Enhancing reading with supervisor LLM")
        try:
            enhanced = await self.supervisor.enhance(worker_reading, profile, card)
        except Exception as e:
            self._logger.warning(
                "Enhancement failed, using worker reading",
                error=str(e),
                error_type=type(e).__name__,
            )
            return worker_reading
        return enhanced or worker_reading

    async def conversational_reply(self, user_input: str, context: str) -> str:
        return await self.worker.conversational_reply(user_input, context)

    async def warmup(self) -> None:
        await self.worker.warmup()
        if self.supervisor_enabled:
            await self.supervisor.warmup()

    async def aclose(self) -> None:
        await self.worker.aclose()
        await self.supervisor.aclose()
