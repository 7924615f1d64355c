"""
Data model for a reading session.

The state machine owns a ConversationState; everything handed out to other
components is a copy. ComplianceCheck is parsed straight from the
supervisor's JSON reply, so it is a pydantic model; the rest are dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class ConversationPhase(str, Enum):
    """Stages of the scripted conversation, in order."""
    GREETING = "GREETING"
    QUESTION_ELEMENT = "QUESTION_ELEMENT"
    QUESTION_TIME = "QUESTION_TIME"
    QUESTION_DECISION = "QUESTION_DECISION"
    QUESTION_STYLE = "QUESTION_STYLE"
    QUESTION_AREA = "QUESTION_AREA"
    CARD_PULL = "CARD_PULL"
    READING = "READING"
    CLOSING = "CLOSING"
    COMPLETE = "COMPLETE"


PHASE_ORDER: List[ConversationPhase] = list(ConversationPhase)

# Closed value sets, one per profile field.
ELEMENTS = ("fire", "water", "earth", "air")
TIME_PREFERENCES = ("morning", "night")
DECISION_STYLES = ("heart", "head")
LIFE_STYLES = ("chaos", "control")
FOCUS_AREAS = ("love", "friendship", "work", "hobbies", "family", "wildcard")


@dataclass
class UserProfile:
    """Personality attributes collected before the card reveal."""
    element: Optional[str] = None
    time_preference: Optional[str] = None
    decision_style: Optional[str] = None
    life_style: Optional[str] = None
    focus_area: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return None not in (
            self.element,
            self.time_preference,
            self.decision_style,
            self.life_style,
            self.focus_area,
        )

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "element": self.element,
            "time_preference": self.time_preference,
            "decision_style": self.decision_style,
            "life_style": self.life_style,
            "focus_area": self.focus_area,
        }


Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class TranscriptEntry:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> Dict[str, str]:
        """Chat-completion message form used as generator history."""
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Card:
    """A drawn tarot card. Immutable once attached to the conversation."""
    name: str
    arcana: Literal["Major", "Minor"]
    meaning_up: str
    meaning_rev: str
    desc: str
    suit: Optional[str] = None
    value: Optional[str] = None
    image: Optional[str] = None


@dataclass
class ConversationState:
    """Phase, profile, drawn card and transcript of one session."""
    phase: ConversationPhase = ConversationPhase.GREETING
    profile: UserProfile = field(default_factory=UserProfile)
    card: Optional[Card] = None
    transcript: List[TranscriptEntry] = field(default_factory=list)

    def history_messages(self) -> List[Dict[str, str]]:
        return [entry.to_message() for entry in self.transcript]


@dataclass(frozen=True)
class PhaseChange:
    """One state machine transition."""
    from_phase: ConversationPhase
    to_phase: ConversationPhase


class ComplianceStatus(str, Enum):
    ON_TRACK = "ON_TRACK"
    OFF_TRACK = "OFF_TRACK"


class ComplianceCheck(BaseModel):
    """Verdict of one supervisor call. Never merged with earlier verdicts."""

    model_config = ConfigDict(frozen=True)

    status: ComplianceStatus = ComplianceStatus.ON_TRACK
    reason: Optional[str] = None
    redirect: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        if isinstance(value, str):
            return value.strip().upper().replace("-", "_").replace(" ", "_")
        return value

    @property
    def is_off_track(self) -> bool:
        return self.status == ComplianceStatus.OFF_TRACK

    @classmethod
    def on_track(cls) -> "ComplianceCheck":
        return cls(status=ComplianceStatus.ON_TRACK)


@dataclass(frozen=True)
class StreamChunk:
    """One element of a supervised stream: a token or the final interrupt."""
    token: Optional[str] = None
    interrupt: Optional[ComplianceCheck] = None

    @property
    def is_interrupt(self) -> bool:
        return self.interrupt is not None
