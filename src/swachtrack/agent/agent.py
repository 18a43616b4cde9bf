import logging
import random
import string
import time
from typing import Any, Dict, List, Optional

from ..errors import DispatchError, SwachTrackError, ValidationError
from ..models import (
    ASSISTANT_ROLE,
    SYSTEM_ROLE,
    TOOL_ROLE,
    USER_ROLE,
    ChatOutcome,
    Message,
    utc_now_iso,
)
from ..pipeline import IssuePipeline
from ..services.gateway import ModelGateway
from ..services.sessions import SessionStore
from ..settings import Settings, get_settings
from .tools import (
    DEFAULT_REPLY,
    FALLBACK_REPLY,
    UNKNOWN_TOOL_REPLY,
    ToolResult,
    dispatch_tool,
    get_tool_schemas,
    is_known_tool,
    parse_tool_invocation,
)

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def new_session_id() -> str:
    """Time-ordered id with a short random suffix; not collision-proof."""
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def _seed_history(history: Any) -> List[Message]:
    """Keep only well-formed user/assistant turns from a client-supplied history."""
    if not isinstance(history, list):
        return []
    seeded: List[Message] = []
    for item in history:
        if not isinstance(item, dict):
            continue
        role, content = item.get("role"), item.get("content")
        if role in (USER_ROLE, ASSISTANT_ROLE) and isinstance(content, str) and content:
            seeded.append(Message(role=role, content=content, timestamp=item.get("timestamp")))
    return seeded


def _model_messages(transcript: List[Message]) -> List[Dict[str, Any]]:
    # tool turns carry no tool_call_id, so they stay out of the model context
    return [
        {"role": m.role, "content": m.content}
        for m in transcript
        if m.role != TOOL_ROLE
    ]


class CivicChatAgent:
    """Multi-turn chat over a session transcript with model-driven tool dispatch."""

    def __init__(
        self,
        gateway: ModelGateway,
        pipeline: IssuePipeline,
        store: SessionStore,
        settings: Settings | None = None,
    ) -> None:
        self._gateway = gateway
        self._pipeline = pipeline
        self._store = store
        self._settings = settings or get_settings()

    @property
    def store(self) -> SessionStore:
        return self._store

    async def chat(
        self,
        message: Any,
        session_id: Optional[str] = None,
        conversation_history: Any = None,
    ) -> ChatOutcome:
        """Handle one user turn.

        Args:
            message: User text; required.
            session_id: Existing session to continue; a new id is generated when absent.
            conversation_history: Optional prior turns used to seed a new session.

        Returns:
            ChatOutcome with the reply, the session id and the transcript minus system turns.

        Raises:
            ValidationError: message is missing or empty.
            UpstreamError: the initial model call failed. Nothing is persisted.
        """
        if message is None or not str(message).strip():
            raise ValidationError("message", "Message is required")
        message = str(message)
        session_id = str(session_id) if session_id else new_session_id()

        session = await self._store.get_or_create(session_id)
        transcript = list(session.messages)
        tool_calls_count = session.tool_calls_count
        if len(transcript) <= 1 and conversation_history:
            seeded = _seed_history(conversation_history)
            if seeded:
                logger.info("Session %s seeded with %d turns", session_id, len(seeded))
                transcript.extend(seeded)

        logger.info("Chat turn start session_id=%s", session_id)
        transcript.append(Message(role=USER_ROLE, content=message, timestamp=utc_now_iso()))

        reply_message = await self._gateway.complete(
            _model_messages(transcript),
            tools=get_tool_schemas(),
            temperature=self._settings.chat_temperature,
            max_tokens=self._settings.chat_max_tokens,
        )

        reply = reply_message.content or DEFAULT_REPLY
        report_id: Optional[str] = None
        next_steps: Optional[List[str]] = None

        try:
            invocation = parse_tool_invocation(reply_message)
        except DispatchError as e:
            logger.error("Session %s: %s", session_id, e)
            invocation = None
            reply = FALLBACK_REPLY

        if invocation is not None and not is_known_tool(invocation.name):
            logger.warning("Session %s: model named unknown tool %s", session_id, invocation.name)
            reply = UNKNOWN_TOOL_REPLY
        elif invocation is not None:
            result: Optional[ToolResult] = None
            try:
                result = await dispatch_tool(self._pipeline, invocation)
            except SwachTrackError as e:
                logger.error(
                    "Session %s: tool %s failed: %s", session_id, invocation.name, e
                )
                reply = FALLBACK_REPLY

            if result is not None:
                tool_calls_count += 1
                logger.info(
                    "Session %s: tool call #%d %s completed",
                    session_id,
                    tool_calls_count,
                    result.name,
                )
                now = utc_now_iso()
                transcript.append(
                    Message(role=ASSISTANT_ROLE, content=reply_message.content or "", timestamp=now)
                )
                transcript.append(Message(role=TOOL_ROLE, content=result.to_json(), timestamp=now))
                reply = result.reply
                if result.report is not None:
                    report_id = result.report.report_id
                    next_steps = list(result.report.next_steps)

        transcript.append(Message(role=ASSISTANT_ROLE, content=reply, timestamp=utc_now_iso()))
        await self._store.put(session_id, transcript, tool_calls_count)
        logger.info("Chat turn done session_id=%s turns=%d", session_id, len(transcript))

        return ChatOutcome(
            response=reply,
            session_id=session_id,
            conversation_history=[m for m in transcript if m.role != SYSTEM_ROLE],
            report_id=report_id,
            next_steps=next_steps,
        )
