"""
Tests for chat stream framing.
"""

import json

import pytest

from mindmend.models import EmotionAnnotation
from mindmend.stream import (
    collect_text,
    encode_frame,
    error_frame,
    frames_for_reply,
    parse_frame,
    parse_stream,
)


def test_encode_frame_is_compact_single_line():
    frame = encode_frame("2", {"type": "text-delta", "id": "m1", "textDelta": "Hi"})
    assert frame == '2:{"type":"text-delta","id":"m1","textDelta":"Hi"}\n'


def test_encode_frame_rejects_unknown_tag():
    with pytest.raises(ValueError):
        encode_frame("x", {})


def test_encode_frame_keeps_unicode_and_newlines_escaped():
    frame = encode_frame("2", {"textDelta": "café\nnext"})
    assert frame.count("\n") == 1
    assert "café" in frame


def test_whole_reply_frames():
    frames = list(frames_for_reply("m1", "Hi! How can I help?", EmotionAnnotation("joy", 0.8)))
    tags = [f.split(":", 1)[0] for f in frames]
    assert tags == ["0", "a", "2", "d", "e"]

    start = json.loads(frames[0][2:])
    assert start == {"id": "m1", "role": "assistant", "parts": []}
    meta = json.loads(frames[3][2:])
    assert meta == {"emotion": [{"label": "joy", "score": 0.8}]}
    assert json.loads(frames[4][2:]) == {"finishReason": "stop"}


def test_frames_without_emotion_skip_metadata():
    tags = [f[0] for f in frames_for_reply("m1", "ok")]
    assert tags == ["0", "a", "2", "e"]


def test_fragment_frames_one_delta_each():
    frames = list(frames_for_reply("m1", ["Hi", "", " there"]))
    deltas = [f for f in frames if f.startswith("2:")]
    assert len(deltas) == 2


def test_parse_stream_and_collect_text():
    raw = "".join(frames_for_reply("m1", ["Hi", " there"], EmotionAnnotation.neutral()))
    frames = list(parse_stream(raw.splitlines() + [""]))
    assert frames[0][0] == "0"
    assert collect_text(frames) == "Hi there"


def test_parse_frame_malformed():
    with pytest.raises(ValueError):
        parse_frame("no colon here")
    with pytest.raises(ValueError):
        parse_frame("z:{}")
    with pytest.raises(ValueError):
        parse_frame("2:{not json")


def test_error_frame_detail_optional():
    assert parse_frame(error_frame("busy")) == ("3", {"error": "busy"})
    assert parse_frame(error_frame("busy", "HTTP 503"))[1]["detail"] == "HTTP 503"
