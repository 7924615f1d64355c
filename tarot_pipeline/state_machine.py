"""
Dialog phase state machine.

Sequences GREETING -> five profile questions -> CARD_PULL -> READING ->
CLOSING -> COMPLETE. Each transition is monotonic; no phase repeats.
Question phases advance only when the answer matches the phase's closed value
set; anything else leaves the state untouched and the caller re-prompts.

Transitions are reported through the return value and an optional observer
callback passed at construction.
"""

from __future__ import annotations

import copy
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from logging_setup import get_logger, Component

from .errors import PhaseTransitionError
from .models import (
    Card,
    ConversationPhase,
    ConversationState,
    DECISION_STYLES,
    ELEMENTS,
    FOCUS_AREAS,
    LIFE_STYLES,
    PhaseChange,
    TranscriptEntry,
    UserProfile,
)


logger = get_logger(Component.STATE_MACHINE)

PhaseObserver = Callable[[PhaseChange], None]

QUESTIONS: Dict[ConversationPhase, str] = {
    ConversationPhase.GREETING: "Welcome! Let's read your cards. First, what's your vibe?",
    ConversationPhase.QUESTION_ELEMENT: "Are you fire, water, earth, or air?",
    ConversationPhase.QUESTION_TIME: "Morning person or night owl?",
    ConversationPhase.QUESTION_DECISION: "Heart or head?",
    ConversationPhase.QUESTION_STYLE: "Chaos or control?",
    ConversationPhase.QUESTION_AREA: "Pick an area: love, friendship, work, hobbies, family, or wildcard?",
    ConversationPhase.CARD_PULL: "Let me pull a card for you...",
    ConversationPhase.READING: "",
    ConversationPhase.CLOSING: "Thank you for letting me read your cards!",
    ConversationPhase.COMPLETE: "",
}

QUESTION_PHASES = (
    ConversationPhase.GREETING,
    ConversationPhase.QUESTION_ELEMENT,
    ConversationPhase.QUESTION_TIME,
    ConversationPhase.QUESTION_DECISION,
    ConversationPhase.QUESTION_STYLE,
    ConversationPhase.QUESTION_AREA,
)

# Exact-match questions: phase -> (profile field, allowed values, next phase)
_EXACT_MATCH = {
    ConversationPhase.QUESTION_ELEMENT: ("element", ELEMENTS, ConversationPhase.QUESTION_TIME),
    ConversationPhase.QUESTION_DECISION: ("decision_style", DECISION_STYLES, ConversationPhase.QUESTION_STYLE),
    ConversationPhase.QUESTION_STYLE: ("life_style", LIFE_STYLES, ConversationPhase.QUESTION_AREA),
    ConversationPhase.QUESTION_AREA: ("focus_area", FOCUS_AREAS, ConversationPhase.CARD_PULL),
}


def current_question_for(phase: ConversationPhase) -> str:
    return QUESTIONS.get(phase, "")


def match_time_preference(normalized: str) -> Optional[str]:
    """
    Time preference is matched by substring ("I'm a night owl" -> "night"),
    unlike the other questions which require the bare word.
    """
    if "morning" in normalized:
        return "morning"
    if "night" in normalized:
        return "night"
    return None


class ConversationStateMachine:
    """Owns the ConversationState of exactly one session."""

    def __init__(self, on_phase_change: Optional[PhaseObserver] = None):
        self._state = ConversationState()
        self._on_phase_change = on_phase_change

    # --- Read access (copies only) ---

    @property
    def phase(self) -> ConversationPhase:
        return self._state.phase

    @property
    def profile(self) -> UserProfile:
        return replace(self._state.profile)

    @property
    def card(self) -> Optional[Card]:
        return self._state.card

    def get_state(self) -> ConversationState:
        """Deep copy of the live state; mutating it never reaches the machine."""
        return copy.deepcopy(self._state)

    def history_messages(self) -> List[Dict[str, str]]:
        return self._state.history_messages()

    def current_question(self) -> str:
        return current_question_for(self._state.phase)

    def is_complete(self) -> bool:
        return self._state.phase == ConversationPhase.COMPLETE

    def is_awaiting_answer(self) -> bool:
        return self._state.phase in QUESTION_PHASES

    # --- Mutations ---

    def add_to_transcript(self, role: str, content: str) -> TranscriptEntry:
        if role not in ("user", "assistant"):
            raise ValueError(f"role must be 'user' or 'assistant', got {role!r}")
        entry = TranscriptEntry(role=role, content=content)
        self._state.transcript.append(entry)
        return entry

    def process_user_response(self, response: str) -> bool:
        """
        Validate an answer for the current phase.

        Returns True and advances when the answer is accepted. Returns False
        with phase and profile unchanged otherwise.
        """
        normalized = response.strip().lower()
        phase = self._state.phase
        profile = self._state.profile

        if phase == ConversationPhase.GREETING:
            self._transition(ConversationPhase.QUESTION_ELEMENT)
            return True

        if phase == ConversationPhase.QUESTION_TIME:
            value = match_time_preference(normalized)
            if value is None:
                return self._reject(phase, normalized)
            self._record(profile, "time_preference", value)
            self._transition(ConversationPhase.QUESTION_DECISION)
            return True

        if phase in _EXACT_MATCH:
            field_name, allowed, next_phase = _EXACT_MATCH[phase]
            if normalized not in allowed:
                return self._reject(phase, normalized)
            self._record(profile, field_name, normalized)
            self._transition(next_phase)
            return True

        logger.debug("Answer ignored outside question phases", phase=phase.value)
        return False

    def set_card(self, card: Card) -> PhaseChange:
        self._require(ConversationPhase.CARD_PULL, "set_card")
        self._state.card = card
        return self._transition(ConversationPhase.READING)

    def complete_reading(self) -> PhaseChange:
        self._require(ConversationPhase.READING, "complete_reading")
        return self._transition(ConversationPhase.CLOSING)

    def complete(self) -> PhaseChange:
        self._require(ConversationPhase.CLOSING, "complete")
        return self._transition(ConversationPhase.COMPLETE)

    # --- Internals ---

    def _require(self, expected: ConversationPhase, operation: str) -> None:
        if self._state.phase != expected:
            raise PhaseTransitionError(operation, self._state.phase, expected)

    @staticmethod
    def _record(profile: UserProfile, field_name: str, value: str) -> None:
        # Phase ordering guarantees each field is reached once; a set field is final.
        if getattr(profile, field_name) is None:
            setattr(profile, field_name, value)

    @staticmethod
    def _reject(phase: ConversationPhase, normalized: str) -> bool:
        logger.debug("Answer rejected", phase=phase.value, pii={"answer": normalized})
        return False

    def _transition(self, new_phase: ConversationPhase) -> PhaseChange:
        change = PhaseChange(from_phase=self._state.phase, to_phase=new_phase)
        self._state.phase = new_phase
        logger.debug("Phase changed", from_phase=change.from_phase.value, to_phase=new_phase.value)
        if self._on_phase_change is not None:
            self._on_phase_change(change)
        return change
