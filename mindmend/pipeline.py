"""
ChatPipeline: the core of MindMend.
Takes one chat request from the client and runs it through:

    validating → retrieving_context ┐
                 classifying_emotion ┘→ generating → persisting → responding

Retrieval and classification run concurrently and are best-effort: a
failure in either gives empty context / neutral emotion and the request
carries on. Generation is the only fatal step; when it fails nothing is
persisted. Persistence is best-effort memory: store failures are logged
and the user still gets the reply.

All collaborators are injected, so tests hand in fakes. A missing store
means stateless mode (no retrieval, no persistence); a missing
classifier means every turn is neutral.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator
from uuid import uuid4

from mindmend.config import is_dev_mode
from mindmend.context import (
    build_context_prefix,
    build_emotion_directive,
    build_past_context,
    build_system_prompt,
)
from mindmend.errors import GenerationError, ValidationError
from mindmend.generator import BUSY_MESSAGE
from mindmend.models import ConversationRecord, EmotionAnnotation, Message, UserSession, message_text
from mindmend.stream import delta_frame, end_frames, error_frame, frames_for_reply, start_frames

logger = logging.getLogger(__name__)

USER_ID_REQUIRED = "Valid user ID is required"
MESSAGES_REQUIRED = "At least one message is required"
CONTENT_REQUIRED = "Message content is required"

_HISTORY_ROLES = ("user", "assistant")


class PipelineState(str, Enum):
    VALIDATING = "validating"
    RETRIEVING_CONTEXT = "retrieving_context"
    CLASSIFYING_EMOTION = "classifying_emotion"
    GENERATING = "generating"
    PERSISTING = "persisting"
    RESPONDING = "responding"
    ERROR = "error"


@dataclass
class PipelineSettings:
    context_top_k: int = 5
    history_turns: int = 8
    emotion_threshold: float = 0.6
    dev_mode: bool = False
    stream_by_default: bool = False
    incremental_stream: bool = False

    @classmethod
    def from_config(cls, cfg: dict) -> PipelineSettings:
        c = cfg.get("chat", {})
        return cls(
            context_top_k=c.get("context_top_k", 5),
            history_turns=c.get("history_turns", 8),
            emotion_threshold=c.get("emotion_threshold", 0.6),
            dev_mode=is_dev_mode(cfg),
            stream_by_default=c.get("stream", False),
            incremental_stream=c.get("incremental_stream", False),
        )


@dataclass
class ChatRequest:
    user_id: str
    latest_text: str
    history: list[Message] = field(default_factory=list)
    user_name: str | None = None
    stream: bool | None = None

    @property
    def session(self) -> UserSession:
        return UserSession(user_id=self.user_id, display_name=self.user_name)


@dataclass
class ChatResult:
    id: str
    content: str
    emotion: EmotionAnnotation
    state: PipelineState = PipelineState.RESPONDING
    context_used: int = 0

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "role": "assistant",
            "content": self.content,
            "data": {"emotion": [self.emotion.to_dict()]},
        }

    def frames(self):
        return frames_for_reply(self.id, self.content, self.emotion)


def parse_request(body) -> ChatRequest:
    """Validate a raw request body. Raises ValidationError; makes no calls."""
    if not isinstance(body, dict):
        raise ValidationError(USER_ID_REQUIRED)

    user_id = body.get("userId")
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError(USER_ID_REQUIRED)

    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise ValidationError(MESSAGES_REQUIRED)

    # The latest user turn is the input; everything before it is history.
    latest_index = None
    for i in range(len(messages) - 1, -1, -1):
        msg = messages[i]
        if isinstance(msg, dict) and msg.get("role", "user") == "user":
            latest_index = i
            break
    if latest_index is None:
        raise ValidationError(CONTENT_REQUIRED)

    latest_text = message_text(messages[latest_index]).strip()
    if not latest_text:
        raise ValidationError(CONTENT_REQUIRED)

    history = []
    for msg in messages[:latest_index]:
        if not isinstance(msg, dict) or msg.get("role") not in _HISTORY_ROLES:
            continue
        text = message_text(msg).strip()
        if text:
            history.append(Message(role=msg["role"], content=text))

    user_name = body.get("userName") or body.get("displayName")
    stream = body.get("stream")
    return ChatRequest(
        user_id=user_id,
        latest_text=latest_text,
        history=history,
        user_name=user_name if isinstance(user_name, str) and user_name.strip() else None,
        stream=stream if isinstance(stream, bool) else None,
    )


class ChatPipeline:
    """retrieve → classify → generate → persist, for one request at a time."""

    def __init__(
        self,
        generator,
        store=None,
        classifier=None,
        settings: PipelineSettings | None = None,
    ):
        self.generator = generator
        self.store = store
        self.classifier = classifier
        self.settings = settings or PipelineSettings()

    @property
    def memory_enabled(self) -> bool:
        return self.store is not None

    def _enter(self, state: PipelineState, req: ChatRequest):
        logger.debug("pipeline[%s] → %s", req.user_id, state.value)

    # ------------------------------------------------------------------
    # Best-effort steps
    # ------------------------------------------------------------------

    async def _retrieve(self, req: ChatRequest) -> list[ConversationRecord]:
        if self.store is None:
            return []
        self._enter(PipelineState.RETRIEVING_CONTEXT, req)
        try:
            return await self.store.retrieve_conversations(
                req.user_id, req.latest_text, self.settings.context_top_k
            )
        except Exception as e:
            logger.warning("Context retrieval failed for %s, continuing without: %s", req.user_id, e)
            return []

    async def _classify(self, req: ChatRequest) -> EmotionAnnotation:
        if self.classifier is None:
            return EmotionAnnotation.neutral()
        self._enter(PipelineState.CLASSIFYING_EMOTION, req)
        try:
            return await self.classifier.analyze(req.latest_text)
        except Exception as e:
            logger.warning("Emotion classification failed for %s: %s", req.user_id, e)
            return EmotionAnnotation.neutral()

    async def _persist(self, req: ChatRequest, reply: str, emotion: EmotionAnnotation):
        if self.store is None:
            return
        self._enter(PipelineState.PERSISTING, req)
        turns = [
            (req.latest_text, "user", {"emotion": emotion}),
            (reply, "assistant", None),
        ]
        for content, role, metadata in turns:
            try:
                await self.store.store_conversation(req.user_id, content, role, metadata)
            except Exception as e:
                logger.error("Failed to persist %s turn for %s: %s", role, req.user_id, e)

    # ------------------------------------------------------------------
    # Prompt assembly
    # ------------------------------------------------------------------

    def build_messages(
        self,
        req: ChatRequest,
        past: list[ConversationRecord],
        emotion: EmotionAnnotation,
    ) -> list[dict]:
        """System block + last N history turns + the latest user message."""
        system = build_system_prompt(
            past_context=build_past_context(past),
            emotion_directive=build_emotion_directive(emotion, self.settings.emotion_threshold),
        )
        turns = self.settings.history_turns
        history = req.history[-turns:] if turns > 0 else []
        latest = build_context_prefix(req.session.display_name) + req.latest_text
        return (
            [{"role": "system", "content": system}]
            + [m.to_chat_format() for m in history]
            + [{"role": "user", "content": latest}]
        )

    async def _prepare(self, req: ChatRequest) -> tuple[list[dict], EmotionAnnotation, list[ConversationRecord]]:
        past, emotion = await asyncio.gather(self._retrieve(req), self._classify(req))
        if past:
            logger.debug("Using %d past turns for %s", len(past), req.user_id)
        return self.build_messages(req, past, emotion), emotion, past

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def _as_request(self, body) -> ChatRequest:
        if isinstance(body, ChatRequest):
            return body
        return parse_request(body)

    async def run(self, body) -> ChatResult:
        """Whole-reply mode. Raises ValidationError or GenerationError."""
        req = self._as_request(body)
        self._enter(PipelineState.VALIDATING, req)

        messages, emotion, past = await self._prepare(req)

        self._enter(PipelineState.GENERATING, req)
        try:
            reply = await self.generator.generate_chat_response(messages)
        except GenerationError:
            self._enter(PipelineState.ERROR, req)
            raise

        await self._persist(req, reply, emotion)

        self._enter(PipelineState.RESPONDING, req)
        return ChatResult(
            id=uuid4().hex,
            content=reply,
            emotion=emotion,
            state=PipelineState.RESPONDING,
            context_used=len(past),
        )

    async def stream(self, body) -> AsyncIterator[str]:
        """
        Framed reply. Whole-reply mode re-chunks run()'s result and lets
        GenerationError escape; incremental mode forwards upstream
        fragments and reports a late failure as an error frame.
        """
        req = self._as_request(body)
        if not self.settings.incremental_stream:
            result = await self.run(req)
            for frame in result.frames():
                yield frame
            return

        self._enter(PipelineState.VALIDATING, req)
        messages, emotion, _ = await self._prepare(req)

        message_id = uuid4().hex
        for frame in start_frames(message_id):
            yield frame

        self._enter(PipelineState.GENERATING, req)
        parts: list[str] = []
        try:
            async for fragment in self.generator.stream_chat_response(messages):
                parts.append(fragment)
                yield delta_frame(message_id, fragment)
        except GenerationError as e:
            self._enter(PipelineState.ERROR, req)
            yield error_frame(str(e), e.detail if self.settings.dev_mode else "")
            return

        reply = "".join(parts).strip()
        if not reply:
            self._enter(PipelineState.ERROR, req)
            yield error_frame(BUSY_MESSAGE)
            return

        await self._persist(req, reply, emotion)
        self._enter(PipelineState.RESPONDING, req)
        for frame in end_frames(emotion):
            yield frame
