"""
core/safety.py - Safety and Intent Triage
==========================================

This module decides, before any retrieval happens, whether a message
should be answered with a fixed reply instead of the FAQ pipeline.

Checks run in strict priority order and the first hit wins:
- CRISIS: self-harm or suicide language - provide emergency resources
- DEPRESSION: distress indicators - provide supportive resources
- GREETING: message opens with a greeting - canned welcome
- META: questions about the assistant's instructions or context -
  answered with the standard fallback so nothing about the prompt leaks
- NONE: safe to proceed with retrieval
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from config import (
    COUNSELLING_EMAIL,
    CRISIS_KEYWORDS,
    DEPRESSION_KEYWORDS,
    EMERGENCY_NUMBER,
    MEDICAL_CENTRE,
    ORGANISATION_NAME,
)

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    """Classification tag for an incoming message."""

    CRISIS = "crisis"
    DEPRESSION = "depression"
    GREETING = "greeting"
    META = "meta"
    NONE = "none"


@dataclass(frozen=True)
class TriageResult:
    """
    Structured result from a triage hit.

    Attributes:
        intent: Which branch fired
        message: User-facing reply that replaces retrieval
        matched: The phrase or pattern that triggered it (for logging)
    """
    intent: Intent
    message: str
    matched: str


# =============================================================================
# RESPONSE MESSAGES
# =============================================================================

# The first sentence is also the exact no-answer sentence the LLM is told to use
NO_ANSWER_SENTENCE = (
    "I don't have that information right now. "
    f"Please contact the counselling team at {COUNSELLING_EMAIL} for accurate details."
)

FALLBACK_MESSAGE = (
    f"{NO_ANSWER_SENTENCE} "
    f"Feel free to ask me anything else related to {ORGANISATION_NAME}!"
)

IPOD_SESSION = (
    "🧘 **IPOD Session - Inner Peace and Outer Dynamism**\n"
    "📅 Every Wednesday, 6:30-7:30 PM\n"
    "📍 Multipurpose Hall\n"
    "Join us for music, meditation, and a supportive community."
)

CRISIS_MESSAGE = f"""
If you are feeling unsafe or overwhelmed, please reach out immediately:

📞 Emergency Number: {EMERGENCY_NUMBER}
🏥 {MEDICAL_CENTRE}
💬 Contact a trusted person or local emergency services

{IPOD_SESSION}

You are not alone. Help is available.
""".strip()

DEPRESSION_MESSAGE = f"""
I'm here to help you. It sounds like you might be going through a difficult time. 💙

**Here are some resources that may help:**

{IPOD_SESSION}

📧 **Counselling Services**: {COUNSELLING_EMAIL}
📞 **Emergency Support**: {EMERGENCY_NUMBER}
🏥 **{MEDICAL_CENTRE}** is also available

Remember, reaching out is a sign of strength. You don't have to face this alone. Would you like to know more about our counselling services?
""".strip()

GREETING_MESSAGE = (
    f"Hello! I'm the virtual assistant for {ORGANISATION_NAME}. "
    "How can I help you?"
)


# =============================================================================
# PATTERNS
# =============================================================================

_APOSTROPHES = re.compile(r"['’‘`]")

# Run against the normalized text, so contractions appear without apostrophes
CRISIS_PATTERNS = [
    re.compile(r"\b(?:i\s+)?do(?:nt|\s*not)\s+want\s+to\s+(?:live|be\s+alive)\b"),
    re.compile(r"\b(?:i\s+)?want(?:ed)?\s+to\s+die\b"),
    re.compile(r"\bkill(?:ing)?\s+myself\b"),
    re.compile(r"\bself[-\s]?harm"),
    re.compile(r"\bhurt(?:ing)?\s+myself\b"),
    re.compile(r"\bend\s+(?:my\s+life|it\s+all|my\s+suffering)\b"),
    re.compile(r"\bbetter\s+off\s+dead\b"),
    re.compile(r"\bca(?:nt|n\s*not)\s+take\s+it\s+any\s*more\b"),
]

GREETING_REGEX = re.compile(
    r"^(hi|hello|hey|greetings|good morning|good evening)\b",
    re.IGNORECASE,
)

ABOUT_CONTEXT_REGEX = re.compile(
    r"(what\s+is\s+(your\s+)?(context|content)"
    r"|content\s+provided"
    r"|what\s+content\s+is\s+provided"
    r"|what\s+was\s+provided"
    r"|information\s+provided"
    r"|show\s+(me\s+)?(the\s+|your\s+)?(context|content)"
    r"|prompt"
    r"|instructions"
    r"|rules)",
    re.IGNORECASE,
)


def normalize_message(text: str) -> str:
    """Lower-case and drop every apostrophe variant."""
    return _APOSTROPHES.sub("", text.lower())


_CRISIS_PHRASES = [normalize_message(k) for k in CRISIS_KEYWORDS]
_DEPRESSION_PHRASES = [normalize_message(k) for k in DEPRESSION_KEYWORDS]


# =============================================================================
# MAIN TRIAGE FUNCTIONS
# =============================================================================

def _match_crisis(normalized: str) -> Optional[str]:
    for phrase in _CRISIS_PHRASES:
        if phrase in normalized:
            return phrase
    for pattern in CRISIS_PATTERNS:
        if pattern.search(normalized):
            return pattern.pattern
    return None


def _match_depression(normalized: str) -> Optional[str]:
    for phrase in _DEPRESSION_PHRASES:
        if phrase in normalized:
            return phrase
    return None


def check_triage(user_text: str) -> Optional[TriageResult]:
    """
    Check a message for anything that must bypass retrieval.

    Args:
        user_text: The raw text input from the user

    Returns:
        TriageResult if a fixed reply applies, None if safe to proceed

    Example:
        >>> check_triage("I dont want to live anymore").intent
        <Intent.CRISIS: 'crisis'>
        >>> check_triage("How do I book a session?") is None
        True
    """
    result = _triage(user_text)
    if result is not None:
        logger.info("Triage hit: intent=%s matched=%r", result.intent.value, result.matched)
    return result


def _triage(user_text: str) -> Optional[TriageResult]:
    normalized = normalize_message(user_text)

    # CRISIS first (absolute priority)
    matched = _match_crisis(normalized)
    if matched:
        return TriageResult(Intent.CRISIS, CRISIS_MESSAGE, matched)

    matched = _match_depression(normalized)
    if matched:
        return TriageResult(Intent.DEPRESSION, DEPRESSION_MESSAGE, matched)

    greeting = GREETING_REGEX.match(user_text.strip())
    if greeting:
        return TriageResult(Intent.GREETING, GREETING_MESSAGE, greeting.group(0))

    meta = ABOUT_CONTEXT_REGEX.search(user_text.lower())
    if meta:
        return TriageResult(Intent.META, FALLBACK_MESSAGE, meta.group(0))

    return None


def classify(user_text: str) -> Intent:
    """Return the single intent tag for a message."""
    result = check_triage(user_text)
    return result.intent if result else Intent.NONE
