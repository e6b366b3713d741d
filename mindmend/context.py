"""
Prompt context assembly.

Everything here is pure string work: no network, no state. The pipeline
calls these to build the hidden system block that rides along with each
request, and the response generator prepends PERSONA_PROMPT.
"""

from __future__ import annotations

from datetime import datetime, timezone

from mindmend.models import ConversationRecord, EmotionAnnotation

PERSONA_PROMPT = """You are MindMend, a warm, empathetic companion for people who want to talk things through.
Be supportive, never clinical. Validate feelings and ask gentle, open questions.
Sound like a caring friend, not a textbook. Keep replies short and human.
Never give medical advice or diagnoses; if someone may be in danger, encourage them to contact local emergency services or a crisis line.
Never invent memories. Only refer to past conversations that appear in the context you are given. If you don't know, say "I don't remember that, could you tell me again?"
If the user asks for something unrelated to their wellbeing (code, homework, trivia), kindly steer the conversation back to how they are doing."""

ISOLATION_CLAUSE = (
    "You are talking with exactly one user. Everything under 'Relevant past moments' "
    "came from this same user. Never mention, guess at, or reveal anything about other users."
)

FIRST_TURN_NOTE = "There is no earlier conversation with this user. Be warm and welcoming."

PAST_CONTEXT_HEADER = "\nRelevant past moments:\n"
PAST_CONTEXT_LIMIT = 3

EMOTION_DIRECTIVES = {
    "sadness": "The user seems sad. Acknowledge how they feel with real warmth before anything else.",
    "anger": "The user sounds frustrated or angry. Let them know their frustration is valid; do not argue.",
    "fear": "The user seems scared or anxious. Reassure them that they are not alone and slow down.",
    "joy": "The user sounds happy. Share in their good mood.",
    "love": "The user is expressing affection or connection. Respond with warmth.",
    "surprise": "The user sounds surprised. Help them make sense of what happened.",
}


def _format_date(timestamp) -> str:
    try:
        ts = float(timestamp)
    except (TypeError, ValueError):
        return "unknown date"
    if ts <= 0:
        return "unknown date"
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def _field(turn, name: str, default=""):
    if isinstance(turn, ConversationRecord):
        return getattr(turn, name, default)
    if isinstance(turn, dict):
        return turn.get(name, default)
    return default


def build_past_context(past_turns) -> str:
    """Render the three most recent past turns (input is newest first)."""
    if not past_turns:
        return ""
    lines = []
    for turn in list(past_turns)[:PAST_CONTEXT_LIMIT]:
        content = _field(turn, "content") or ""
        role = _field(turn, "role") or "unknown"
        lines.append(f"[{_format_date(_field(turn, 'timestamp', 0))}] {role}: {content}")
    return PAST_CONTEXT_HEADER + "\n".join(lines)


def build_context_prefix(name: str | None) -> str:
    if not name:
        return ""
    return (
        f"[Context: User's name is {name}. "
        f"Use their name naturally in conversation when appropriate.]\n\n"
    )


def build_emotion_directive(emotion: EmotionAnnotation | None, threshold: float = 0.6) -> str:
    """Empathy instruction for a confident classification, else empty."""
    if emotion is None or emotion.score <= threshold:
        return ""
    directive = EMOTION_DIRECTIVES.get(emotion.label)
    if not directive:
        return ""
    return f"{directive} (detected emotion: {emotion.label}, confidence {emotion.score:.2f})"


def build_system_prompt(past_context: str = "", emotion_directive: str = "") -> str:
    """The per-request system block the generator merges under the persona."""
    sections = [ISOLATION_CLAUSE]
    if past_context:
        sections.append(
            "Use ONLY these real past messages when referring to earlier conversations:"
            + past_context
        )
    else:
        sections.append(FIRST_TURN_NOTE)
    if emotion_directive:
        sections.append(emotion_directive)
    return "\n\n".join(sections)
