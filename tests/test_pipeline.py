"""
Tests for the chat pipeline.
All collaborators are mocks; the scenarios follow one request from
validation through persistence.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from mindmend.context import FIRST_TURN_NOTE
from mindmend.errors import GenerationError, PersistenceError, ValidationError
from mindmend.generator import BUSY_MESSAGE
from mindmend.models import ConversationRecord, EmotionAnnotation
from mindmend.pipeline import (
    ChatPipeline,
    PipelineSettings,
    PipelineState,
    USER_ID_REQUIRED,
    parse_request,
)
from mindmend.stream import collect_text, parse_stream

REPLY = "Hi! How can I help?"


def _generator(reply=REPLY, error=None):
    gen = MagicMock()
    gen.model = "test-model"
    if error is not None:
        gen.generate_chat_response = AsyncMock(side_effect=error)
    else:
        gen.generate_chat_response = AsyncMock(return_value=reply)
    return gen


def _store(past=None):
    store = MagicMock()
    store.retrieve_conversations = AsyncMock(return_value=past or [])
    store.store_conversation = AsyncMock(return_value="id")
    return store


def _classifier(label="neutral", score=0.0):
    clf = MagicMock()
    clf.analyze = AsyncMock(return_value=EmotionAnnotation(label, score))
    return clf


def _body(text="Hello", user_id="u1", **extra):
    return {"messages": [{"role": "user", "content": text}], "userId": user_id, **extra}


# ---------------------------------------------------------------------------
# parse_request
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("body", [
    None,
    {"messages": [{"role": "user", "content": "hi"}]},
    {"messages": [{"role": "user", "content": "hi"}], "userId": ""},
    {"messages": [{"role": "user", "content": "hi"}], "userId": 42},
])
def test_parse_request_requires_user_id(body):
    with pytest.raises(ValidationError, match=USER_ID_REQUIRED):
        parse_request(body)


@pytest.mark.parametrize("messages", [
    None,
    [],
    [{"role": "assistant", "content": "only me"}],
    [{"role": "user", "content": "   "}],
])
def test_parse_request_requires_user_text(messages):
    with pytest.raises(ValidationError):
        parse_request({"messages": messages, "userId": "u"})


def test_parse_request_splits_history():
    req = parse_request({
        "userId": "u",
        "userName": "Sam",
        "stream": True,
        "messages": [
            {"role": "system", "content": "client system prompt"},
            {"role": "user", "content": "earlier"},
            {"role": "assistant", "parts": [{"type": "text", "text": "reply"}]},
            {"role": "user", "content": "latest"},
            {"role": "assistant", "content": ""},
        ],
    })
    assert req.latest_text == "latest"
    assert [m.to_chat_format() for m in req.history] == [
        {"role": "user", "content": "earlier"},
        {"role": "assistant", "content": "reply"},
    ]
    assert req.user_name == "Sam"
    assert req.stream is True


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_end_to_end_hello():
    gen, store = _generator(), _store()
    pipeline = ChatPipeline(gen, store=store)

    result = await pipeline.run(_body())

    assert result.content == REPLY
    assert result.state == PipelineState.RESPONDING
    assert result.to_json() == {
        "id": result.id,
        "role": "assistant",
        "content": REPLY,
        "data": {"emotion": [{"label": "neutral", "score": 0.0}]},
    }

    calls = store.store_conversation.await_args_list
    assert len(calls) == 2
    assert calls[0].args == ("u1", "Hello", "user", {"emotion": EmotionAnnotation.neutral()})
    assert calls[1].args == ("u1", REPLY, "assistant", None)


@pytest.mark.asyncio
async def test_missing_user_id_makes_no_calls():
    gen, store, clf = _generator(), _store(), _classifier()
    pipeline = ChatPipeline(gen, store=store, classifier=clf)

    with pytest.raises(ValidationError, match=USER_ID_REQUIRED):
        await pipeline.run({"messages": [{"role": "user", "content": "Hello"}]})

    gen.generate_chat_response.assert_not_awaited()
    store.retrieve_conversations.assert_not_awaited()
    store.store_conversation.assert_not_awaited()
    clf.analyze.assert_not_awaited()


@pytest.mark.asyncio
async def test_generation_failure_persists_nothing():
    gen = _generator(error=GenerationError(BUSY_MESSAGE, detail="HTTP 503"))
    store = _store()
    pipeline = ChatPipeline(gen, store=store)

    with pytest.raises(GenerationError):
        await pipeline.run(_body())
    store.store_conversation.assert_not_awaited()


@pytest.mark.asyncio
async def test_retrieval_and_classification_use_latest_text():
    gen, store, clf = _generator(), _store(), _classifier()
    pipeline = ChatPipeline(gen, store=store, classifier=clf, settings=PipelineSettings(context_top_k=4))

    await pipeline.run({
        "userId": "u1",
        "messages": [
            {"role": "user", "content": "old"},
            {"role": "assistant", "content": "ok"},
            {"role": "user", "content": "new"},
        ],
    })
    store.retrieve_conversations.assert_awaited_once_with("u1", "new", 4)
    clf.analyze.assert_awaited_once_with("new")


@pytest.mark.asyncio
async def test_prompt_carries_context_emotion_and_name():
    past = [ConversationRecord(id="u1#1", user_id="u1", role="user", content="exam stress", timestamp=1_700_000_000_000)]
    gen = _generator()
    pipeline = ChatPipeline(gen, store=_store(past), classifier=_classifier("sadness", 0.92))

    result = await pipeline.run(_body("I failed", userName="Sam"))

    messages = gen.generate_chat_response.call_args.args[0]
    system = messages[0]
    assert system["role"] == "system"
    assert "exam stress" in system["content"]
    assert "sad" in system["content"]
    assert FIRST_TURN_NOTE not in system["content"]
    assert messages[-1]["content"].startswith("[Context: User's name is Sam.")
    assert messages[-1]["content"].endswith("I failed")
    assert result.context_used == 1
    assert result.emotion.label == "sadness"


@pytest.mark.asyncio
async def test_stored_user_turn_has_no_name_prefix():
    gen, store = _generator(), _store()
    await ChatPipeline(gen, store=store).run(_body("I failed", userName="Sam"))
    assert store.store_conversation.await_args_list[0].args[1] == "I failed"


@pytest.mark.asyncio
async def test_history_is_truncated():
    gen = _generator()
    pipeline = ChatPipeline(gen, settings=PipelineSettings(history_turns=2))
    messages = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"} for i in range(6)]
    messages.append({"role": "user", "content": "latest"})

    await pipeline.run({"userId": "u", "messages": messages})

    sent = gen.generate_chat_response.call_args.args[0]
    assert [m["content"] for m in sent[1:]] == ["m4", "m5", "latest"]


@pytest.mark.asyncio
async def test_upstream_failures_are_absorbed():
    gen = _generator()
    store = _store()
    store.retrieve_conversations.side_effect = RuntimeError("index down")
    store.store_conversation.side_effect = PersistenceError("write failed")
    clf = MagicMock()
    clf.analyze = AsyncMock(side_effect=RuntimeError("classifier down"))

    result = await ChatPipeline(gen, store=store, classifier=clf).run(_body())

    assert result.content == REPLY
    assert result.emotion == EmotionAnnotation.neutral()
    assert store.store_conversation.await_count == 2


@pytest.mark.asyncio
async def test_stateless_mode():
    gen = _generator()
    pipeline = ChatPipeline(gen)
    assert not pipeline.memory_enabled

    result = await pipeline.run(_body())
    assert result.content == REPLY
    system = gen.generate_chat_response.call_args.args[0][0]["content"]
    assert FIRST_TURN_NOTE in system


# ---------------------------------------------------------------------------
# stream()
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stream_whole_reply_mode():
    pipeline = ChatPipeline(_generator(), store=_store())
    frames = [f async for f in pipeline.stream(_body())]

    parsed = list(parse_stream(frames))
    assert [tag for tag, _ in parsed] == ["0", "a", "2", "d", "e"]
    assert collect_text(parsed) == REPLY


@pytest.mark.asyncio
async def test_stream_whole_reply_mode_propagates_generation_error():
    pipeline = ChatPipeline(_generator(error=GenerationError(BUSY_MESSAGE)))
    with pytest.raises(GenerationError):
        [f async for f in pipeline.stream(_body())]


class _StreamingGenerator:
    model = "test-model"

    def __init__(self, fragments, error=None):
        self.fragments = fragments
        self.error = error

    async def stream_chat_response(self, messages):
        for fragment in self.fragments:
            yield fragment
        if self.error:
            raise self.error


@pytest.mark.asyncio
async def test_stream_incremental_mode():
    store = _store()
    pipeline = ChatPipeline(
        _StreamingGenerator(["Hi", "! How", " can I help?"]),
        store=store,
        settings=PipelineSettings(incremental_stream=True),
    )
    frames = list(parse_stream([f async for f in pipeline.stream(_body())]))

    assert [tag for tag, _ in frames] == ["0", "a", "2", "2", "2", "d", "e"]
    assert collect_text(frames) == REPLY
    assert store.store_conversation.await_args_list[1].args[1] == REPLY


@pytest.mark.asyncio
async def test_stream_incremental_failure_emits_error_frame():
    store = _store()
    pipeline = ChatPipeline(
        _StreamingGenerator(["Hi"], error=GenerationError(BUSY_MESSAGE, detail="reset")),
        store=store,
        settings=PipelineSettings(incremental_stream=True),
    )
    frames = list(parse_stream([f async for f in pipeline.stream(_body())]))

    assert frames[-1] == ("3", {"error": BUSY_MESSAGE})
    assert "e" not in [tag for tag, _ in frames]
    store.store_conversation.assert_not_awaited()


@pytest.mark.asyncio
async def test_stream_incremental_failure_detail_in_dev_mode():
    pipeline = ChatPipeline(
        _StreamingGenerator([], error=GenerationError(BUSY_MESSAGE, detail="reset")),
        settings=PipelineSettings(incremental_stream=True, dev_mode=True),
    )
    frames = list(parse_stream([f async for f in pipeline.stream(_body())]))
    assert frames[-1] == ("3", {"error": BUSY_MESSAGE, "detail": "reset"})


def test_settings_from_config(monkeypatch):
    monkeypatch.delenv("MINDMEND_ENV", raising=False)
    settings = PipelineSettings.from_config({"chat": {
        "context_top_k": 3, "history_turns": 4, "emotion_threshold": 0.5,
        "stream": True, "incremental_stream": True,
    }})
    assert settings.context_top_k == 3
    assert settings.history_turns == 4
    assert settings.emotion_threshold == 0.5
    assert settings.stream_by_default is True
    assert settings.incremental_stream is True
    assert settings.dev_mode is False
