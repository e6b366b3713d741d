"""
Chat stream framing.

The chat client reads a line-delimited stream where every line is a
one-character tag, a colon, and a compact JSON payload:

    0:{"id": ..., "role": "assistant", "parts": []}        message start
    a:{"type": "text", "id": ..., "text": ""}              text part start
    2:{"type": "text-delta", "id": ..., "textDelta": ...}  text delta
    d:{"emotion": [{"label": ..., "score": ...}]}          metadata (optional)
    3:{"error": ...}                                       error
    e:{"finishReason": "stop"}                             finish

In whole-reply mode the full text goes out as a single delta; in
incremental mode each upstream fragment is its own delta.
"""

from __future__ import annotations

import json
from typing import Iterable, Iterator

from mindmend.models import EmotionAnnotation

MESSAGE_START = "0"
TEXT_START = "a"
TEXT_DELTA = "2"
ERROR = "3"
METADATA = "d"
FINISH = "e"

TAGS = (MESSAGE_START, TEXT_START, TEXT_DELTA, ERROR, METADATA, FINISH)


def encode_frame(tag: str, payload: dict) -> str:
    if tag not in TAGS:
        raise ValueError(f"Unknown frame tag: {tag!r}")
    return f"{tag}:{json.dumps(payload, separators=(',', ':'), ensure_ascii=False)}\n"


def start_frames(message_id: str) -> list[str]:
    return [
        encode_frame(MESSAGE_START, {"id": message_id, "role": "assistant", "parts": []}),
        encode_frame(TEXT_START, {"type": "text", "id": message_id, "text": ""}),
    ]


def delta_frame(message_id: str, text: str) -> str:
    return encode_frame(TEXT_DELTA, {"type": "text-delta", "id": message_id, "textDelta": text})


def end_frames(emotion: EmotionAnnotation | None = None) -> list[str]:
    frames = []
    if emotion is not None:
        frames.append(encode_frame(METADATA, {"emotion": [emotion.to_dict()]}))
    frames.append(encode_frame(FINISH, {"finishReason": "stop"}))
    return frames


def error_frame(message: str, detail: str = "") -> str:
    payload = {"error": message}
    if detail:
        payload["detail"] = detail
    return encode_frame(ERROR, payload)


def frames_for_reply(
    message_id: str,
    text: str | Iterable[str],
    emotion: EmotionAnnotation | None = None,
) -> Iterator[str]:
    """Frame a complete reply (one delta) or an iterable of fragments (one delta each)."""
    yield from start_frames(message_id)
    fragments = [text] if isinstance(text, str) else text
    for fragment in fragments:
        if fragment:
            yield delta_frame(message_id, fragment)
    yield from end_frames(emotion)


# ---------------------------------------------------------------------------
# Decoding (CLI client, tests)
# ---------------------------------------------------------------------------

def parse_frame(line: str) -> tuple[str, dict]:
    """'2:{...}' → ("2", {...}). Raises ValueError on malformed lines."""
    line = line.strip()
    tag, sep, body = line.partition(":")
    if not sep or tag not in TAGS:
        raise ValueError(f"Malformed frame: {line[:80]!r}")
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed frame payload: {line[:80]!r}") from e
    return tag, payload


def parse_stream(lines: Iterable[str]) -> Iterator[tuple[str, dict]]:
    """Decode frames from an iterable of lines, skipping blanks."""
    for line in lines:
        if line and line.strip():
            yield parse_frame(line)


def collect_text(frames: Iterable[tuple[str, dict]]) -> str:
    """Concatenate every text delta."""
    return "".join(
        payload.get("textDelta", "")
        for tag, payload in frames
        if tag == TEXT_DELTA
    )
