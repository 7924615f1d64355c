"""
Compliance supervisor client.

An independent model that judges whether the user is following the scripted
question flow and, when not, supplies a gentle redirect. It also offers a
one-shot "enhance" call that elaborates a finished reading.

Both calls are single round-trips and never raise for backend trouble:
check() defaults to ON_TRACK, enhance() returns the reading it was given.
"""
import json
import time
from typing import Any, Dict, Optional

from logging_setup import get_logger, Component

from .errors import MissingCredentialsError, classify_backend_error, redact_detail
from .http import PooledHttpClient
from .instructions import build_compliance_prompt, build_enhance_prompt, get_scenario
from .models import Card, ComplianceCheck, ConversationState, UserProfile


logger = get_logger(Component.SUPERVISOR_LLM)


def parse_compliance(content: Optional[str]) -> ComplianceCheck:
    """Parse the supervisor's JSON reply. Raises on malformed content."""
    data = json.loads(content or "{}")
    if not isinstance(data, dict):
        raise TypeError(f"compliance reply must be a JSON object, got {type(data).__name__}")
    return ComplianceCheck.model_validate(data)


class SupervisorLLM(PooledHttpClient):
    """Chat-completions client for compliance checks and reading enhancement."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4",
        scenario: Optional[Dict[str, Any]] = None,
        total_timeout: float = 20.0,
    ):
        super().__init__(logger=logger, total_timeout=total_timeout)
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._scenario = scenario or get_scenario()

    async def _chat(self, payload: Dict[str, Any]) -> Optional[str]:
        """POST one chat completion and return the first choice's content."""
        if not self._api_key:
            raise MissingCredentialsError("OPENAI_API_KEY is not set")

        session = self._get_or_create_session()
        async with session.post(
            f"{self._base_url}/chat/completions",
            json={"model": self._model, **payload},
            headers={"Authorization": f"Bearer {self._api_key}"},
        ) as resp:
            resp.raise_for_status()
            body = await resp.json()
        return body["choices"][0]["message"].get("content")

    async def check(self, state: ConversationState, user_input: str) -> ComplianceCheck:
        """
        Judge the latest user input against the conversation rules.

        `state` must be a snapshot the caller no longer mutates.
        """
        start_ts = time.perf_counter()
        payload = {
            "messages": [
                {"role": "system", "content": self._scenario["supervisor_prompt"]},
                {"role": "user", "content": build_compliance_prompt(state.phase, user_input, self._scenario)},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.3,
            "max_tokens": 200,
        }
        try:
            result = parse_compliance(await self._chat(payload))
        except Exception as e:
            logger.warning(
                "Compliance check failed, defaulting to ON_TRACK",
                category=classify_backend_error(e),
                error=redact_detail(e, self._api_key),
                error_type=type(e).__name__,
            )
            return ComplianceCheck.on_track()

        logger.info(
            "Compliance check completed",
            phase=state.phase.value,
            status=result.status.value,
            reason=result.reason,
            latency_ms=int((time.perf_counter() - start_ts) * 1000),
        )
        return result

    async def enhance(self, reading: str, profile: UserProfile, card: Card) -> str:
        """Elaborate a finished reading; the original comes back on any failure."""
        payload = {
            "messages": [
                {"role": "system", "content": self._scenario["enhancer_prompt"]},
                {"role": "user", "content": build_enhance_prompt(reading, profile, card)},
            ],
            "temperature": 0.7,
            "max_tokens": 250,
        }
        try:
            content = await self._chat(payload)
        except Exception as e:
            logger.warning(
                "Enhancement failed, keeping worker reading",
                category=classify_backend_error(e),
                error=redact_detail(e, self._api_key),
                error_type=type(e).__name__,
            )
            return reading
        return (content or "").strip() or reading
