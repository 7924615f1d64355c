"""
Primary generator ("worker") client.

Streams chat completions from an OpenAI-compatible endpoint (Cerebras by
default) as server-sent events and yields the text deltas one by one.

The stream is fail-soft: on any transport or protocol error a single
fallback fragment is yielded instead of raising, so a turn always has
something to say.
"""
import json
import time
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

from logging_setup import get_logger, Component

from .errors import MissingCredentialsError, classify_backend_error, redact_detail
from .http import PooledHttpClient
from .instructions import build_conversational_prompt, build_reading_prompt, get_scenario
from .models import Card, UserProfile


logger = get_logger(Component.WORKER_LLM)

FALLBACK_TOKEN = "I sense your energy..."


def parse_sse_line(line: str) -> Tuple[Optional[str], bool]:
    """
    Parse one SSE line from a streaming chat completion.

    Returns (token, done). Non-data lines, malformed JSON and empty deltas
    give (None, False); the "[DONE]" marker gives (None, True).
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None, False
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return None, True
    try:
        parsed = json.loads(data)
        token = parsed["choices"][0].get("delta", {}).get("content")
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
        return None, False
    return (token or None), False


class WorkerLLM(PooledHttpClient):
    """Streaming generator for the user-facing narration."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.cerebras.ai/v1",
        model: str = "llama3.1-8b",
        max_tokens: int = 150,
        temperature: float = 0.8,
        system_prompt: Optional[str] = None,
        total_timeout: float = 20.0,
    ):
        super().__init__(logger=logger, total_timeout=total_timeout)
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._system_prompt = system_prompt or get_scenario()["worker_prompt"]

    def _build_messages(self, prompt: str, history: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self._system_prompt},
            *history,
            {"role": "user", "content": prompt},
        ]

    async def _stream_lines(self, payload: Dict) -> AsyncIterator[str]:
        """Raw SSE lines of one streaming completion request."""
        if not self._api_key:
            raise MissingCredentialsError("CEREBRAS_API_KEY is not set")

        session = self._get_or_create_session()
        async with session.post(
            f"{self._base_url}/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        ) as resp:
            resp.raise_for_status()
            async for raw in resp.content:
                line = raw.decode("utf-8").strip()
                if line:
                    yield line

    async def stream(self, prompt: str, history: Sequence[Dict[str, str]] = ()) -> AsyncIterator[str]:
        """
        Yield response fragments for `prompt` given the conversation history.

        Each call opens a fresh request; the iterator itself is single-pass.
        """
        payload = {
            "model": self._model,
            "messages": self._build_messages(prompt, history),
            "stream": True,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }
        start_ts = time.perf_counter()
        token_count = 0
        lines = self._stream_lines(payload)
        try:
            async for line in lines:
                token, done = parse_sse_line(line)
                if done:
                    break
                if token:
                    token_count += 1
                    yield token
        except Exception as e:
            logger.warning(
                "Worker stream failed, using fallback",
                category=classify_backend_error(e),
                error=redact_detail(e, self._api_key),
                error_type=type(e).__name__,
                tokens_before_failure=token_count,
            )
            yield FALLBACK_TOKEN
            return
        finally:
            await lines.aclose()

        logger.debug(
            "Worker stream finished",
            tokens=token_count,
            latency_ms=int((time.perf_counter() - start_ts) * 1000),
        )

    async def _drain(self, prompt: str) -> str:
        parts = [token async for token in self.stream(prompt, [])]
        return "".join(parts).strip()

    async def reading(self, profile: UserProfile, card: Card) -> str:
        """Complete personalized reading for the drawn card."""
        return await self._drain(build_reading_prompt(profile, card))

    async def conversational_reply(self, user_input: str, context: str) -> str:
        return await self._drain(build_conversational_prompt(user_input, context))
