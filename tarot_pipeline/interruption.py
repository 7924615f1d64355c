"""
Interruption manager: turns a supervised stream into speech.

Tokens are buffered until one contains a sentence terminator, then the whole
sentence is spoken as one interruptible utterance. On interrupt, playback is
stopped completely before the redirect is spoken, and the redirect itself
cannot be interrupted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol

from logging_setup import get_logger, Component

from .models import ComplianceCheck, StreamChunk


logger = get_logger(Component.INTERRUPTION)

SENTENCE_TERMINATORS = (".", "!", "?", "\n")


class SpeechSink(Protocol):
    async def speak(self, text: str, interruptible: bool = False) -> None: ...

    async def interrupt(self) -> None: ...


@dataclass(frozen=True)
class TurnOutcome:
    spoken_text: str
    interrupted: bool
    compliance: Optional[ComplianceCheck] = None

    @property
    def assistant_text(self) -> str:
        """What the user ended up hearing as the assistant's final word."""
        if self.interrupted and self.compliance is not None and self.compliance.redirect:
            return self.compliance.redirect
        return self.spoken_text


def ends_sentence(token: str) -> bool:
    return any(char in token for char in SENTENCE_TERMINATORS)


class InterruptionManager:
    """Sole commander of the speech sink while a streamed turn is playing."""

    def __init__(self, sink: SpeechSink):
        self._sink = sink
        self._buffer = ""
        self._interrupted = False
        self._spoken: list[str] = []

    @property
    def accumulated_text(self) -> str:
        return self._buffer

    @property
    def is_interrupted(self) -> bool:
        return self._interrupted

    async def handle_token(self, token: str) -> None:
        if self._interrupted:
            return
        self._buffer += token
        if ends_sentence(token):
            await self._speak_buffer()

    async def interrupt(self, compliance: ComplianceCheck) -> None:
        self._interrupted = True
        await self._sink.interrupt()
        logger.info("Playback interrupted", reason=compliance.reason, has_redirect=bool(compliance.redirect))
        if compliance.redirect:
            await self._sink.speak(compliance.redirect, interruptible=False)

    def reset(self) -> None:
        """Clear buffer and interrupted flag; call between turns."""
        self._buffer = ""
        self._interrupted = False
        self._spoken = []

    def flush_remaining(self) -> str:
        remaining, self._buffer = self._buffer, ""
        return remaining

    async def _speak_buffer(self) -> None:
        sentence = self.flush_remaining()
        if sentence.strip():
            self._spoken.append(sentence)
            await self._sink.speak(sentence, interruptible=True)

    async def consume(self, stream: AsyncIterator[StreamChunk]) -> TurnOutcome:
        """
        Play one supervised stream to the end and report what happened.

        Any trailing text without a terminator is spoken once the stream ends,
        unless the turn was interrupted.
        """
        self.reset()
        compliance: Optional[ComplianceCheck] = None
        async for chunk in stream:
            if chunk.interrupt is not None:
                compliance = chunk.interrupt
                await self.interrupt(compliance)
            elif chunk.token is not None:
                await self.handle_token(chunk.token)

        if not self._interrupted:
            await self._speak_buffer()

        return TurnOutcome(
            spoken_text="".join(self._spoken).strip(),
            interrupted=self._interrupted,
            compliance=compliance,
        )
