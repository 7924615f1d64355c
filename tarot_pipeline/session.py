"""
Reading session: drives one conversation from greeting to COMPLETE.

The session wires the state machine, coordinator, interruption manager,
latency optimizer, card provider and audio manager together, and is the only
place that decides what gets spoken when. Backend failures degrade inside the
collaborators; anything that still escapes ends the session after the audio
manager and backend clients are closed.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Dict, Optional

from logging_setup import get_logger, Component

from observability.events import Component as EventComponent
from observability.events import EventEmitter, Severity

from .config import ReaderConfig
from .coordinator import LLMCoordinator
from .instructions import build_reprompt_prompt, get_scenario
from .interruption import InterruptionManager
from .latency import LatencyOptimizer
from .models import ConversationPhase, ConversationState, PhaseChange
from .speech import AudioManager, ConsoleSpeech, SpeechToText, TextToSpeech, build_fillers
from .state_machine import ConversationStateMachine
from .supervisor import SupervisorLLM
from .tarot_client import TarotAPIClient, card_summary, format_card_for_display
from .worker import WorkerLLM


logger = get_logger(Component.SESSION)


def build_audio(config: ReaderConfig, scenario: Dict[str, Any]) -> AudioManager:
    fillers = build_fillers(scenario.get("fillers"))
    if config.demo_mode:
        return AudioManager(ConsoleSpeech(fillers))
    tts = TextToSpeech(
        config.elevenlabs_api_key,
        voice_id=config.elevenlabs_voice_id,
        model_id=config.elevenlabs_model,
        player=config.tts_player,
        fillers=fillers,
    )
    return AudioManager(tts, stt=SpeechToText(silence_threshold_ms=config.silence_threshold_ms))


def build_coordinator(
    config: ReaderConfig,
    scenario: Dict[str, Any],
    *,
    session_id: str,
    emitter: Optional[EventEmitter] = None,
) -> LLMCoordinator:
    worker = WorkerLLM(
        config.cerebras_api_key,
        base_url=config.cerebras_base_url,
        model=config.worker_model,
        system_prompt=scenario["worker_prompt"],
        total_timeout=config.http_total_timeout_seconds,
    )
    supervisor = SupervisorLLM(
        config.openai_api_key,
        base_url=config.openai_base_url,
        model=config.supervisor_model,
        scenario=scenario,
        total_timeout=config.http_total_timeout_seconds,
    )
    return LLMCoordinator(
        worker,
        supervisor,
        supervisor_enabled=config.supervisor_enabled,
        session_id=session_id,
        emitter=emitter,
    )


class ReadingSession:
    """
    One tarot reading, start to finish.

    Collaborators default to the real backends built from `config`; tests pass
    in-memory fakes for `audio`, `coordinator` and `tarot`.
    """

    def __init__(
        self,
        config: ReaderConfig,
        *,
        audio: Optional[AudioManager] = None,
        coordinator: Optional[LLMCoordinator] = None,
        tarot: Optional[TarotAPIClient] = None,
        session_id: Optional[str] = None,
        echo_events: Optional[bool] = None,
    ):
        self.config = config
        self.session_id = session_id or uuid.uuid4().hex
        self._logger = logger.with_session(self.session_id)
        self.scenario = get_scenario(config.scenario)

        # Event lines on stdout would interleave with the typed dialog in demo mode.
        echo = (not config.demo_mode) if echo_events is None else echo_events
        self._events = EventEmitter(EventComponent.SESSION, echo=echo)
        self._phase_events = EventEmitter(EventComponent.STATE_MACHINE, echo=echo)

        self.audio = audio or build_audio(config, self.scenario)
        self.coordinator = coordinator or build_coordinator(
            config,
            self.scenario,
            session_id=self.session_id,
            emitter=EventEmitter(EventComponent.COORDINATOR, echo=echo),
        )
        self.tarot = tarot or TarotAPIClient(
            config.tarot_api_url,
            session_id=self.session_id,
            emitter=EventEmitter(EventComponent.TAROT_API, echo=echo),
        )
        self.machine = ConversationStateMachine(on_phase_change=self._on_phase_change)
        self.interruptions = InterruptionManager(self.audio)
        self.latency = LatencyOptimizer(
            self.audio.inject_filler,
            threshold_ms=config.filler_threshold_ms,
            session_id=self.session_id,
            emitter=EventEmitter(EventComponent.LATENCY, echo=echo),
        )

    def _on_phase_change(self, change: PhaseChange) -> None:
        self._phase_events.emit(
            "phase.changed",
            session_id=self.session_id,
            from_phase=change.from_phase.value,
            to_phase=change.to_phase.value,
        )

    async def run(self) -> ConversationState:
        """Run the reading to COMPLETE and return the final state."""
        start_ts = time.perf_counter()
        outcome = "error"
        self._events.emit(
            "session.started",
            session_id=self.session_id,
            demo_mode=self.config.demo_mode,
            supervisor_enabled=self.config.supervisor_enabled,
            scenario=self.scenario["name"],
        )
        self._logger.info("Reading session started", demo_mode=self.config.demo_mode)
        try:
            await self._warmup()
            await self.audio.speak(self.scenario["welcome_text"])
            while not self.machine.is_complete():
                await self._step()
            outcome = "complete"
            self._logger.info_pii("Reading complete", profile=self.machine.profile.to_dict())
            return self.machine.get_state()
        finally:
            latency_ms = int((time.perf_counter() - start_ts) * 1000)
            self._events.emit(
                "session.ended",
                session_id=self.session_id,
                severity=Severity.INFO if outcome == "complete" else Severity.WARN,
                outcome=outcome,
                phase=self.machine.phase.value,
                latency_ms=latency_ms,
            )
            try:
                await self.close()
            except Exception as e:
                # A turn-level error already on its way out takes precedence.
                if outcome != "complete":
                    self._logger.exception("Closing session resources failed", error_type=type(e).__name__)
                else:
                    raise

    async def close(self) -> None:
        """Release audio and backend clients; every close runs even if an earlier one fails."""
        try:
            await self.audio.close()
        finally:
            try:
                await self.coordinator.aclose()
            finally:
                await self.tarot.aclose()

    async def _warmup(self) -> None:
        t_start = time.perf_counter()
        try:
            await self.coordinator.warmup()
            await self.tarot.warmup()
        except Exception as e:
            self._logger.warning("Warmup failed (non-fatal)", error=str(e), error_type=type(e).__name__)
            return
        self._logger.debug("Warmup completed", latency_ms=int((time.perf_counter() - t_start) * 1000))

    async def _say(self, text: str) -> None:
        await self.audio.speak(text)
        self.machine.add_to_transcript("assistant", text)

    async def _step(self) -> None:
        phase = self.machine.phase
        if phase == ConversationPhase.CARD_PULL:
            await self._pull_card()
        elif phase == ConversationPhase.READING:
            await self._give_reading()
        elif phase == ConversationPhase.CLOSING:
            await self._say(self.scenario["closing_text"])
            self.machine.complete()
        else:
            await self._ask()

    async def _pull_card(self) -> None:
        await self._say(self.machine.current_question())
        card = await self.latency.await_with_filler(self.tarot.draw_random_card(), label="card_draw")
        self.audio.show(format_card_for_display(card))
        await self._say(self.scenario["card_reveal_text"].format(summary=card_summary(card)))
        self.machine.set_card(card)

    async def _give_reading(self) -> None:
        reading = await self.latency.await_with_filler(
            self.coordinator.generate_reading(
                self.machine.profile,
                self.machine.card,
                use_enhancement=self.config.enhance_reading,
            ),
            label="reading",
        )
        await self._say(reading)
        self.machine.complete_reading()

    async def _ask(self) -> None:
        phase = self.machine.phase
        question = self.machine.current_question()
        await self._say(question)

        answer = await self.audio.listen()
        self.machine.add_to_transcript("user", answer)
        if self.machine.process_user_response(answer):
            return

        self._phase_events.emit(
            "answer.rejected",
            session_id=self.session_id,
            phase=phase.value,
            pii={"contains_pii": True, "fields": ["answer_length"], "handling": "length_only"},
            answer_length=len(answer),
        )
        await self._reprompt(question, answer)

    async def _reprompt(self, question: str, answer: str) -> None:
        if not self.config.worker_available:
            await self._say(self.scenario["reprompt_text"])
            return

        stream = self.coordinator.stream_supervised(
            build_reprompt_prompt(question, answer),
            self.machine.get_state(),
            answer,
        )
        turn = await self.interruptions.consume(stream)
        if turn.assistant_text:
            self.machine.add_to_transcript("assistant", turn.assistant_text)
