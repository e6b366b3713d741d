"""
Name extraction - a heuristic guess at the user's first name.

The chat client asks "What's your name?" on first contact and runs the
reply through these patterns. First match wins:

    my name is X       → X
    i'm X / im X       → X
    i am X             → X
    call me X          → X
    this is X          → X
    hey it's X         → X
    X                  → X   (bare single word)

The captured text is reduced to its first alphabetic token and
capitalised. Anything outside 2-20 letters falls through to the next
pattern. A bare word is indistinguishable from a stray greeting ("hello"
becomes "Hello"); swap in a different NameExtractor if that matters.
"""

import re


NAME_PATTERNS = [
    re.compile(r"my\s+name\s+is\s+([a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"i'?m\s+([a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"im\s+([a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"i\s+am\s+([a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"call\s+me\s+([a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"this\s+is\s+([a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"hey\s+it'?s?\s+([a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"^([a-zA-Z]+)$", re.IGNORECASE),
]

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 20

_NON_LETTERS = re.compile(r"[^a-zA-Z\s]")


def _normalize(captured: str) -> str:
    cleaned = _NON_LETTERS.sub("", captured).strip()
    tokens = cleaned.split()
    if not tokens:
        return ""
    first = tokens[0]
    return first[0].upper() + first[1:].lower()


class NameExtractor:
    """Ordered regex chain. Replace with a different extractor to change the heuristic."""

    def __init__(self, patterns: list[re.Pattern] | None = None):
        self.patterns = patterns if patterns is not None else NAME_PATTERNS

    def extract(self, text: str | None) -> str | None:
        if not text or not isinstance(text, str):
            return None

        stripped = text.strip()
        for pattern in self.patterns:
            match = pattern.search(stripped)
            if not match or not match.group(1):
                continue
            name = _normalize(match.group(1))
            if MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
                return name
        return None


_default_extractor = NameExtractor()


def extract_name(text: str | None) -> str | None:
    """Return a capitalised first name, or None when nothing plausible is found."""
    return _default_extractor.extract(text)


def welcome_message(name: str | None) -> str:
    if name:
        return f"Welcome back, {name}! It's good to see you again. How are you feeling today?"
    return (
        "Hi there! I'm MindMend, your personal AI companion. "
        "I'm here to listen and support you. What's your name?"
    )


def user_id_for(name: str | None) -> str:
    """Derive the storage key the chat client uses for a named user."""
    return f"user_{name.lower()}" if name else "anonymous"
