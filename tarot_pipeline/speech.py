"""
Speech input and output collaborators.

Output:
- TextToSpeech: ElevenLabs text-to-speech over HTTP, mp3 piped into a local
  player process. Interruptible utterances can be stopped mid-playback.
- ConsoleSpeech: demo mode, prints what would be spoken.

Input:
- SpeechToText owns end-of-turn detection: transcript updates pushed by a
  transport restart a silence timer, and silence ends the turn. The
  recognition transport itself is pluggable; the CLI attaches the keyboard.

AudioManager ties one output and the input side together for the session loop.
"""

from __future__ import annotations

import asyncio
import random
import shlex
import sys
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from logging_setup import get_logger, Component

from .errors import MissingCredentialsError, classify_backend_error, redact_detail
from .http import PooledHttpClient


tts_logger = get_logger(Component.TTS)
stt_logger = get_logger(Component.STT)

DEFAULT_FILLERS = ("Hmm...", "I see...", "Interesting...", "Let me think...")


class ConsoleSpeech:
    """Prints utterances instead of speaking them."""

    def __init__(self, fillers: Sequence[str] = DEFAULT_FILLERS, *, rng: Optional[random.Random] = None, stream=None):
        self._fillers = list(fillers)
        self._rng = rng or random.Random()
        self._stream = stream

    def _write(self, line: str) -> None:
        print(line, file=self._stream or sys.stdout, flush=True)

    async def speak(self, text: str, interruptible: bool = False) -> None:
        self._write(f"\n[ASSISTANT]: {text}\n")

    async def interrupt(self) -> None:
        return None

    async def inject_filler(self) -> None:
        await self.speak(self._rng.choice(self._fillers), interruptible=True)

    async def aclose(self) -> None:
        return None


class TextToSpeech(PooledHttpClient):
    """ElevenLabs synthesis played through an external mp3 player."""

    def __init__(
        self,
        api_key: str,
        *,
        voice_id: str = "pNInz6obpgDQGcFmaJgB",
        model_id: str = "eleven_turbo_v2",
        player: str = "mpg123 -q -",
        base_url: str = "https://api.elevenlabs.io/v1",
        fillers: Sequence[str] = DEFAULT_FILLERS,
        rng: Optional[random.Random] = None,
    ):
        super().__init__(logger=tts_logger, total_timeout=30.0)
        self._api_key = api_key
        self._voice_id = voice_id
        self._model_id = model_id
        self._player_cmd = shlex.split(player)
        self._base_url = base_url.rstrip("/")
        self._fillers = list(fillers)
        self._rng = rng or random.Random()
        self._playback: Optional[asyncio.subprocess.Process] = None
        self._playback_interruptible = False

    async def _synthesize(self, text: str) -> bytes:
        if not self._api_key:
            raise MissingCredentialsError("ELEVENLABS_API_KEY is not set")
        session = self._get_or_create_session()
        async with session.post(
            f"{self._base_url}/text-to-speech/{self._voice_id}",
            json={"text": text, "model_id": self._model_id},
            headers={"xi-api-key": self._api_key, "Accept": "audio/mpeg"},
        ) as resp:
            resp.raise_for_status()
            return await resp.read()

    async def _play(self, audio: bytes, interruptible: bool) -> None:
        proc = await asyncio.create_subprocess_exec(
            *self._player_cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        self._playback = proc
        self._playback_interruptible = interruptible
        try:
            await proc.communicate(input=audio)
        except asyncio.CancelledError:
            await self._stop(proc)
            raise
        finally:
            if self._playback is proc:
                self._playback = None
        # Negative return codes mean the player was terminated by interrupt().
        if proc.returncode and proc.returncode > 0:
            raise RuntimeError(f"Audio player exited with code {proc.returncode}")

    @staticmethod
    async def _stop(proc) -> None:
        if proc.returncode is None:
            proc.terminate()
            await proc.wait()

    async def speak(self, text: str, interruptible: bool = False) -> None:
        try:
            audio = await self._synthesize(text)
            await self._play(audio, interruptible)
        except Exception as e:
            tts_logger.warning(
                "TTS failed, printing text instead",
                category=classify_backend_error(e),
                error=redact_detail(e, self._api_key),
                error_type=type(e).__name__,
            )
            print(f"[TTS FALLBACK]: {text}", flush=True)

    async def interrupt(self) -> None:
        """Stop the current utterance if it was spoken as interruptible; wait until it is gone."""
        proc = self._playback
        if proc is None or not self._playback_interruptible:
            return
        await self._stop(proc)
        self._playback = None
        tts_logger.info("Playback interrupted")

    async def inject_filler(self) -> None:
        await self.speak(self._rng.choice(self._fillers), interruptible=True)

    async def aclose(self) -> None:
        """Stop any live playback, protected or not, then close the HTTP session."""
        proc = self._playback
        self._playback = None
        try:
            if proc is not None:
                await self._stop(proc)
        finally:
            await super().aclose()


class SpeechToText:
    """
    End-of-turn detection over transcript updates.

    The silence timer starts with the first update after start_listening()
    and restarts on every further update; when it expires, on_silence fires
    once for that listening period.
    """

    def __init__(
        self,
        *,
        silence_threshold_ms: int = 1500,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_transcript: Optional[Callable[[str], None]] = None,
        on_silence: Optional[Callable[[], None]] = None,
    ):
        self.silence_threshold_ms = silence_threshold_ms
        self._sleep = sleep
        self.on_transcript = on_transcript
        self.on_silence = on_silence
        self.transcript = ""
        self.is_listening = False
        self._silence_fired = False
        self._silence_timer: Optional[asyncio.Task] = None

    def start_listening(self) -> None:
        self.transcript = ""
        self._silence_fired = False
        self.is_listening = True
        stt_logger.debug("Listening started")

    def stop_listening(self) -> None:
        self.is_listening = False
        self._cancel_silence_timer()
        stt_logger.debug("Listening stopped")

    def feed(self, text: str) -> None:
        """Transcript update from the recognition transport."""
        if not self.is_listening:
            return
        self.transcript = text
        stt_logger.debug_pii("Transcript updated", transcript=text)
        if self.on_transcript is not None:
            self.on_transcript(text)
        self._start_silence_timer()

    def _start_silence_timer(self) -> None:
        self._cancel_silence_timer()

        async def _timer():
            await self._sleep(self.silence_threshold_ms / 1000.0)
            if not self.is_listening or self._silence_fired:
                return
            self._silence_fired = True
            if self.on_silence is not None:
                self.on_silence()

        self._silence_timer = asyncio.get_running_loop().create_task(_timer())

    def _cancel_silence_timer(self) -> None:
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None


TranscriptTransport = Callable[[SpeechToText], Awaitable[None]]


def keyboard_transport(input_fn: Callable[[str], str] = input) -> TranscriptTransport:
    """Transport that feeds one typed line per turn as the transcript."""

    async def _transport(stt: SpeechToText) -> None:
        line = await asyncio.to_thread(input_fn, "[SPEAK]: ")
        stt.feed(line.strip())

    return _transport


class AudioManager:
    """Speech output plus either typed input (demo) or SpeechToText (voice)."""

    def __init__(
        self,
        output: Any,
        *,
        stt: Optional[SpeechToText] = None,
        transport: Optional[TranscriptTransport] = None,
        input_fn: Callable[[str], str] = input,
    ):
        self.output = output
        self._stt = stt
        self._transport = transport or keyboard_transport(input_fn)
        self._input_fn = input_fn

    @property
    def demo_mode(self) -> bool:
        return self._stt is None

    async def speak(self, text: str, interruptible: bool = False) -> None:
        await self.output.speak(text, interruptible=interruptible)

    async def interrupt(self) -> None:
        await self.output.interrupt()

    async def inject_filler(self) -> None:
        await self.output.inject_filler()

    def show(self, panel: str) -> None:
        """Print a text panel (e.g. the drawn card) next to the dialog."""
        print(panel, flush=True)

    async def listen(self) -> str:
        """One user turn of text; raises EOFError when input is closed."""
        if self._stt is None:
            return (await asyncio.to_thread(self._input_fn, "[YOU]: ")).strip()

        silence: asyncio.Future = asyncio.get_running_loop().create_future()

        def _on_silence() -> None:
            if not silence.done():
                silence.set_result(None)

        self._stt.on_silence = _on_silence
        self._stt.start_listening()
        transport = asyncio.create_task(self._transport(self._stt))
        try:
            done, _ = await asyncio.wait({silence, transport}, return_when=asyncio.FIRST_COMPLETED)
            if transport in done:
                transport.result()
                await silence
        finally:
            self._stt.stop_listening()
            if not transport.done():
                transport.cancel()
        return self._stt.transcript.strip()

    async def close(self) -> None:
        if self._stt is not None:
            self._stt.stop_listening()
        await self.output.aclose()


def build_fillers(scenario_fillers: Optional[List[str]]) -> Sequence[str]:
    return tuple(scenario_fillers) if scenario_fillers else DEFAULT_FILLERS
