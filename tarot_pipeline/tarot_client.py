"""
Card data provider backed by tarotapi.dev.

draw_random_card() never fails a turn: when the API is unreachable or returns
something unusable, the fixed fallback card (The Fool) is returned.
"""
import random
import textwrap
import time
from typing import Any, Dict, List, Optional

from logging_setup import get_logger, Component
from observability.events import EventEmitter, Severity

from .errors import classify_backend_error, redact_detail
from .http import PooledHttpClient
from .models import Card


logger = get_logger(Component.TAROT_API)

FALLBACK_CARD = Card(
    name="The Fool",
    arcana="Major",
    meaning_up="New beginnings, optimism, trust in life",
    meaning_rev="Recklessness, taken advantage of, inconsideration",
    desc="The Fool is a card of new beginnings, opportunity and potential.",
)

REVERSAL_PROBABILITY = 0.3

_BOX_INNER_WIDTH = 38


def card_from_api(data: Dict[str, Any]) -> Card:
    """Map one tarotapi.dev card object onto a Card."""
    return Card(
        name=data["name"],
        arcana="Major" if data.get("type") == "major" else "Minor",
        suit=data.get("suit"),
        value=data.get("value"),
        meaning_up=data["meaning_up"],
        meaning_rev=data["meaning_rev"],
        desc=data.get("desc", ""),
        image=data.get("image"),
    )


def card_summary(card: Card) -> str:
    """e.g. "Three of Cups (Minor Arcana) - cups three"."""
    summary = f"{card.name} ({card.arcana} Arcana)"
    if card.suit:
        summary += f" - {card.suit}"
    if card.value:
        summary += f" {card.value}"
    return summary


def format_card_for_display(card: Card, reversed: bool = False) -> str:
    """Boxed text panel with the card's name, arcana and wrapped meaning."""
    name = f"{card.name} (Reversed)" if reversed else card.name
    meaning = card.meaning_rev if reversed else card.meaning_up

    def row(text: str) -> str:
        return f"║  {text:<{_BOX_INNER_WIDTH - 2}}║"

    border = "═" * _BOX_INNER_WIDTH
    lines = [f"╔{border}╗", row(name), f"╠{border}╣", row(f"Arcana: {card.arcana}")]
    if card.suit:
        lines.append(row(f"Suit: {card.suit}"))
    if card.value:
        lines.append(row(f"Value: {card.value}"))
    lines.append(f"╠{border}╣")
    lines.append(row("Meaning:"))
    for wrapped in textwrap.wrap(meaning, width=_BOX_INNER_WIDTH - 4):
        lines.append(row(wrapped))
    lines.append(f"╚{border}╝")
    return "\n".join(lines)


class TarotAPIClient(PooledHttpClient):
    """Random card draws and the full deck from tarotapi.dev."""

    def __init__(
        self,
        base_url: str = "https://tarotapi.dev/api/v1",
        *,
        session_id: str = "unknown",
        emitter: Optional[EventEmitter] = None,
        rng: Optional[random.Random] = None,
        total_timeout: float = 10.0,
    ):
        super().__init__(logger=logger, total_timeout=total_timeout)
        self._base_url = base_url.rstrip("/")
        self._session_id = session_id
        self._emitter = emitter
        self._rng = rng or random.Random()

    async def _fetch_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        session = self._get_or_create_session()
        async with session.get(f"{self._base_url}{path}", params=params) as resp:
            resp.raise_for_status()
            return await resp.json()

    async def draw_random_card(self, reversed: Optional[bool] = None) -> Card:
        """
        Draw one card.

        Returns:
            The drawn card, or FALLBACK_CARD when the provider fails.
        """
        start_ts = time.perf_counter()
        try:
            body = await self._fetch_json("/cards/random", params={"n": 1})
            card = card_from_api(body["cards"][0])
        except Exception as e:
            logger.warning(
                "Card draw failed, using fallback card",
                category=classify_backend_error(e),
                error=redact_detail(e),
                error_type=type(e).__name__,
            )
            card = FALLBACK_CARD
            is_fallback = True
        else:
            is_fallback = False

        # Reversal is decided here but only reported; readings use the upright meaning.
        is_reversed = reversed if reversed is not None else self._rng.random() < REVERSAL_PROBABILITY
        latency_ms = int((time.perf_counter() - start_ts) * 1000)
        logger.info("Card drawn", card=card.name, fallback=is_fallback, reversed=is_reversed, latency_ms=latency_ms)
        if self._emitter is not None:
            self._emitter.emit(
                "card.drawn",
                session_id=self._session_id,
                severity=Severity.INFO,
                card=card.name,
                arcana=card.arcana,
                fallback=is_fallback,
                reversed=is_reversed,
                latency_ms=latency_ms,
            )
        return card

    async def get_all_cards(self) -> List[Card]:
        try:
            body = await self._fetch_json("/cards")
            return [card_from_api(item) for item in body["cards"]]
        except Exception as e:
            logger.warning(
                "Fetching all cards failed",
                category=classify_backend_error(e),
                error=redact_detail(e),
                error_type=type(e).__name__,
            )
            return []
