"""
Persona prompts, scripted lines and prompt builders for the reader.

Scenario resolution:
- Scenarios are stored as YAML (preferred) or JSON under scenarios/.
- PyYAML's safe_load parses both YAML and pure JSON.
- Missing keys fall back to the hardcoded defaults below, so a scenario file
  only needs to override what it changes.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .models import Card, ConversationPhase, UserProfile


DEFAULT_SCENARIO: Dict[str, Any] = {
    "name": "default",
    "worker_prompt": (
        "You are a mystical tarot card reader. Be concise, warm, and engaging. "
        "Keep responses brief and conversational. Guide users through quick questions."
    ),
    "supervisor_prompt": "You are a conversation compliance monitor.",
    "enhancer_prompt": "You are a master tarot reader with deep spiritual insight.",
    "rules": [
        "User must answer the specific question (one-word preferred, max 30 seconds)",
        "No medical or legal advice requests",
        "No off-topic rambling or unrelated topics",
        "Keep conversation moving forward through question flow",
    ],
    "welcome_text": "Welcome! Let's discover your tarot reading.",
    "reprompt_text": "Hmm, I didn't quite catch that. Let me ask again.",
    "card_reveal_text": "Your card is {summary}.",
    "closing_text": "Thank you for this reading. May your path be illuminated!",
    "fillers": ["Hmm...", "I see...", "Interesting...", "Let me think..."],
}


def _get_scenarios_dir() -> Path:
    return Path(__file__).parent / "scenarios"


def _load_file(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Scenario file {path} must contain a mapping at top-level")
        return data


@lru_cache(maxsize=8)
def load_scenario(scenario_name: str) -> Dict[str, Any]:
    """
    Load a scenario merged over the hardcoded defaults.

    Resolution order:
    1) <name>.yaml / <name>.yml / <name>.json
    2) default.yaml / default.yml / default.json
    3) hardcoded defaults only
    """
    scenarios_dir = _get_scenarios_dir()

    for name in (scenario_name, "default"):
        for suffix in (".yaml", ".yml", ".json"):
            candidate = scenarios_dir / f"{name}{suffix}"
            if candidate.exists():
                return {**DEFAULT_SCENARIO, **_load_file(candidate)}

    return dict(DEFAULT_SCENARIO)


def get_scenario(name: Optional[str] = None) -> Dict[str, Any]:
    """Scenario by explicit name, then READER_SCENARIO, then "default"."""
    return load_scenario(name or os.getenv("READER_SCENARIO", "default"))


def _profile_lines(profile: UserProfile) -> str:
    return (
        f"- Element: {profile.element}\n"
        f"- Time preference: {profile.time_preference}\n"
        f"- Decision style: {profile.decision_style}\n"
        f"- Life style: {profile.life_style}\n"
        f"- Focus area: {profile.focus_area}"
    )


def build_reading_prompt(profile: UserProfile, card: Card) -> str:
    return (
        "Give a personalized tarot reading for someone who is:\n"
        f"{_profile_lines(profile)}\n\n"
        f"The card drawn is: {card.name} ({card.arcana})\n"
        f"Meaning: {card.meaning_up}\n\n"
        "Deliver a warm, mystical, and personalized 2-3 sentence reading that weaves "
        "their personality traits into the card's meaning."
    )


def build_conversational_prompt(user_input: str, context: str) -> str:
    return f'{context}\n\nUser said: "{user_input}"\n\nRespond briefly and naturally.'


def build_reprompt_prompt(question: str, user_input: str) -> str:
    """Prompt for the short nudge spoken after an answer was not understood."""
    return build_conversational_prompt(
        user_input,
        f'You asked: "{question}". The answer did not match any of the options. '
        "In one short sentence, acknowledge it kindly and invite them to pick one of the options.",
    )


def build_compliance_prompt(
    phase: ConversationPhase,
    user_input: str,
    scenario: Optional[Dict[str, Any]] = None,
) -> str:
    scenario = scenario or get_scenario()
    rules = "\n".join(f"{i}. {rule}" for i, rule in enumerate(scenario["rules"], start=1))
    return (
        "You are monitoring a tarot reading conversation.\n\n"
        f"RULES TO ENFORCE:\n{rules}\n\n"
        f"Current question phase: {phase.value}\n"
        f'User\'s response: "{user_input}"\n\n'
        "Is this response compliant? If not, provide a gentle redirect message.\n\n"
        "Respond in JSON format:\n"
        "{\n"
        '  "status": "ON_TRACK" | "OFF_TRACK",\n'
        '  "reason": "why it\'s off track (if applicable)",\n'
        '  "redirect": "gentle message to redirect user (if applicable)"\n'
        "}"
    )


def build_enhance_prompt(reading: str, profile: UserProfile, card: Card) -> str:
    return (
        "Enhance this tarot reading with deeper insights and poetic language.\n"
        "Keep it mystical, warm, and personal.\n\n"
        f'Original reading: "{reading}"\n\n'
        f"User profile:\n{_profile_lines(profile)}\n\n"
        f"Card: {card.name}\n\n"
        "Provide an enhanced 3-4 sentence reading that's more profound and mystical."
    )
