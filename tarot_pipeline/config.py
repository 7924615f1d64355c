"""
Reader configuration.

Loads backend credentials and tuning knobs from environment variables.
"""
import os
from dataclasses import dataclass
from typing import Optional


def _parse_int_env(key: str, default: int) -> int:
    """
    Parse integer environment variable, stripping comments and whitespace.

    Handles cases like:
    - "800  # comment" -> 800
    - "800" -> 800
    - None -> default
    """
    value = os.environ.get(key)
    if not value:
        return default

    if "#" in value:
        value = value.split("#")[0]

    value = value.strip()

    if not value:
        return default

    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = (os.environ.get(key) or "").split("#")[0].strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_bool_env(key: str, default: bool) -> bool:
    """Parse "true"/"false"-style flags; anything unrecognised keeps the default."""
    value = (os.environ.get(key) or "").split("#")[0].strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    return default


@dataclass
class ReaderConfig:
    """Tarot reader configuration."""

    # ElevenLabs (speech output)
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = "pNInz6obpgDQGcFmaJgB"
    elevenlabs_model: str = "eleven_turbo_v2"
    tts_player: str = "mpg123 -q -"

    # Primary generator (OpenAI-compatible streaming endpoint)
    cerebras_api_key: str = ""
    cerebras_base_url: str = "https://api.cerebras.ai/v1"
    worker_model: str = "llama3.1-8b"

    # Compliance supervisor
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    supervisor_model: str = "gpt-4"
    supervisor_enabled: bool = True
    enhance_reading: bool = True

    # Card data provider
    tarot_api_url: str = "https://tarotapi.dev/api/v1"

    # Pacing
    filler_threshold_ms: int = 800
    silence_threshold_ms: int = 1500
    http_total_timeout_seconds: float = 20.0

    # Runtime
    demo_mode: bool = False
    debug: bool = False
    scenario: Optional[str] = None

    @property
    def worker_available(self) -> bool:
        return bool(self.cerebras_api_key)

    @classmethod
    def from_env(cls) -> "ReaderConfig":
        """Load configuration from environment variables."""
        return cls(
            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY", ""),
            elevenlabs_voice_id=os.environ.get("ELEVENLABS_VOICE_ID", "pNInz6obpgDQGcFmaJgB"),
            elevenlabs_model=os.environ.get("ELEVENLABS_MODEL", "eleven_turbo_v2"),
            tts_player=os.environ.get("TTS_PLAYER", "mpg123 -q -"),
            cerebras_api_key=os.environ.get("CEREBRAS_API_KEY", ""),
            cerebras_base_url=os.environ.get("CEREBRAS_BASE_URL", "https://api.cerebras.ai/v1").rstrip("/"),
            worker_model=os.environ.get("WORKER_MODEL", "llama3.1-8b"),
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            openai_base_url=os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
            supervisor_model=os.environ.get("SUPERVISOR_MODEL", "gpt-4"),
            supervisor_enabled=_parse_bool_env("SUPERVISOR_ENABLED", default=True),
            enhance_reading=_parse_bool_env("ENHANCE_READING", default=True),
            tarot_api_url=os.environ.get("TAROT_API_URL", "https://tarotapi.dev/api/v1").rstrip("/"),
            filler_threshold_ms=_parse_int_env("FILLER_THRESHOLD_MS", default=800),
            silence_threshold_ms=_parse_int_env("SILENCE_THRESHOLD_MS", default=1500),
            http_total_timeout_seconds=_parse_float_env("HTTP_TOTAL_TIMEOUT_SECONDS", default=20.0),
            demo_mode=_parse_bool_env("DEMO_MODE", default=False),
            debug=os.environ.get("LOG_LEVEL", "").strip().lower() == "debug",
            scenario=os.environ.get("READER_SCENARIO") or None,
        )


def get_config() -> ReaderConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = ReaderConfig.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() rereads the environment."""
    global _config
    _config = None


# Global config instance (lazy loaded)
_config: Optional[ReaderConfig] = None
