import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import List, Tuple

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..models import SYSTEM_ROLE, Message, SessionState, utc_now_iso
from ..settings import Settings

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:"


def _fresh_session(session_id: str, system_prompt: str) -> SessionState:
    return SessionState(
        session_id=session_id,
        messages=[Message(role=SYSTEM_ROLE, content=system_prompt, timestamp=utc_now_iso())],
    )


class SessionStore(ABC):
    """Maps session ids to conversation transcripts.

    No locking: concurrent turns on the same session id race, last put wins.
    """

    def __init__(self, system_prompt: str) -> None:
        self._system_prompt = system_prompt

    @abstractmethod
    async def get_or_create(self, session_id: str) -> SessionState:
        """Return the session, creating it with a single system message if unseen."""

    @abstractmethod
    async def put(self, session_id: str, messages: List[Message], tool_calls_count: int = 0) -> bool:
        """Overwrite the transcript of session_id. Returns True on success."""

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Forget session_id."""

    async def connect(self) -> None:
        """Open backing connections. No-op by default."""

    async def close(self) -> None:
        """Release backing connections. No-op by default."""


class InMemorySessionStore(SessionStore):
    """Process-local store bounded by an LRU size cap and an idle TTL."""

    def __init__(self, system_prompt: str, max_entries: int = 1000, ttl_seconds: int = 86400) -> None:
        super().__init__(system_prompt)
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._sessions: "OrderedDict[str, Tuple[float, SessionState]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _expired(self, touched_at: float, now: float) -> bool:
        return self._ttl > 0 and now - touched_at > self._ttl

    def _evict(self, now: float) -> None:
        for sid in [sid for sid, (ts, _) in self._sessions.items() if self._expired(ts, now)]:
            logger.debug("Session %s expired", sid)
            del self._sessions[sid]
        while self._max_entries > 0 and len(self._sessions) > self._max_entries:
            sid, _ = self._sessions.popitem(last=False)
            logger.debug("Session %s evicted (capacity %d)", sid, self._max_entries)

    async def get_or_create(self, session_id: str) -> SessionState:
        now = time.monotonic()
        entry = self._sessions.get(session_id)
        if entry is not None and not self._expired(entry[0], now):
            self._sessions.move_to_end(session_id)
            self._sessions[session_id] = (now, entry[1])
            stored = entry[1]
            return SessionState(
                session_id=session_id,
                messages=list(stored.messages),
                tool_calls_count=stored.tool_calls_count,
            )

        session = _fresh_session(session_id, self._system_prompt)
        self._sessions[session_id] = (now, session)
        self._sessions.move_to_end(session_id)
        self._evict(now)
        logger.info("Session %s created", session_id)
        return SessionState(
            session_id=session_id,
            messages=list(session.messages),
            tool_calls_count=0,
        )

    async def put(self, session_id: str, messages: List[Message], tool_calls_count: int = 0) -> bool:
        now = time.monotonic()
        self._sessions[session_id] = (
            now,
            SessionState(
                session_id=session_id,
                messages=list(messages),
                tool_calls_count=tool_calls_count,
            ),
        )
        self._sessions.move_to_end(session_id)
        self._evict(now)
        return True

    async def delete(self, session_id: str) -> bool:
        self._sessions.pop(session_id, None)
        return True


class RedisSessionStore(SessionStore):
    """Sessions serialized as JSON under ``session:<id>`` with a TTL.

    While Redis is unreachable, sessions are kept in a bounded in-memory
    fallback store so multi-turn chats still work within this process.
    """

    def __init__(
        self,
        url: str,
        system_prompt: str,
        ttl_seconds: int = 86400,
        fallback_max_entries: int = 1000,
    ) -> None:
        super().__init__(system_prompt)
        self._url = url
        self._ttl = ttl_seconds
        self._client: Redis | None = None
        self._fallback = InMemorySessionStore(
            system_prompt, max_entries=fallback_max_entries, ttl_seconds=ttl_seconds
        )

    def _key(self, session_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{session_id}"

    async def connect(self) -> None:
        """Establish connection to Redis. Idempotent."""
        if self._client is not None:
            return
        self._client = Redis.from_url(self._url, decode_responses=True)
        try:
            await self._client.ping()
            logger.info("Redis connection established: %s", self._url.split("@")[-1])
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.warning("Redis ping failed: %s", e)
            await self._client.aclose()
            self._client = None
            raise

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("Redis connection closed")

    async def get_or_create(self, session_id: str) -> SessionState:
        if self._client is None:
            logger.debug("Redis not connected; session %s served from memory", session_id)
            return await self._fallback.get_or_create(session_id)
        try:
            raw = await self._client.get(self._key(session_id))
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.warning("Redis get %s failed, using in-memory session: %s", session_id, e)
            return await self._fallback.get_or_create(session_id)

        if raw is not None:
            try:
                return SessionState.from_dict(json.loads(raw))
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning("Invalid session data for %s: %s", session_id, e)

        logger.info("Session %s created", session_id)
        return _fresh_session(session_id, self._system_prompt)

    async def put(self, session_id: str, messages: List[Message], tool_calls_count: int = 0) -> bool:
        if self._client is None:
            return await self._fallback.put(session_id, messages, tool_calls_count)
        state = SessionState(
            session_id=session_id,
            messages=list(messages),
            tool_calls_count=tool_calls_count,
        )
        payload = json.dumps(state.to_dict(), ensure_ascii=False)
        try:
            if self._ttl > 0:
                await self._client.setex(self._key(session_id), self._ttl, payload)
            else:
                await self._client.set(self._key(session_id), payload)
            return True
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.warning("Redis set %s failed, keeping session in memory: %s", session_id, e)
            return await self._fallback.put(session_id, messages, tool_calls_count)

    async def delete(self, session_id: str) -> bool:
        await self._fallback.delete(session_id)
        if self._client is None:
            return True
        try:
            await self._client.delete(self._key(session_id))
            return True
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.warning("Redis delete %s failed: %s", session_id, e)
            return False


def build_session_store(settings: Settings) -> SessionStore:
    """Return a Redis-backed store if redis_url is configured, else an in-memory one."""
    if settings.redis_url and settings.redis_url.strip():
        return RedisSessionStore(
            settings.redis_url.strip(),
            system_prompt=settings.chat_system_prompt,
            ttl_seconds=settings.context_ttl_seconds,
            fallback_max_entries=settings.session_max_entries,
        )
    return InMemorySessionStore(
        system_prompt=settings.chat_system_prompt,
        max_entries=settings.session_max_entries,
        ttl_seconds=settings.session_ttl_seconds,
    )
