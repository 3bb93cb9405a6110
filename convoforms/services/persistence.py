"""Conversation state persistence.

Stores are keyed by conversation_id and hold one JSON document per
conversation. Neither store merges concurrent writers: callers serialize
writes per conversation (see ``convoforms.core.locks``).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

import redis.asyncio as aioredis

from convoforms.config import Settings, get_settings
from convoforms.core.logging import get_logger
from convoforms.schemas.conversational import ConversationState, ConversationStatus, utcnow

logger = get_logger(__name__)


class ConversationStore(Protocol):
    async def load(self, conversation_id: str) -> ConversationState | None: ...

    async def save(self, state: ConversationState) -> None: ...

    async def delete(self, conversation_id: str) -> None: ...

    async def list_active(self, form_id: str) -> list[ConversationState]: ...

    async def cleanup(self, older_than: timedelta) -> int: ...


def _stale_cutoff(older_than: timedelta, now: datetime | None = None) -> datetime:
    return (now or utcnow()) - older_than


# ── In-memory ────────────────────────────────────────────────────────


class InMemoryConversationStore:
    """Process-local store for tests and single-worker deployments.

    States are stored as JSON so callers never share a live object with the
    store, matching what the Redis store does.
    """

    def __init__(self) -> None:
        self._docs: dict[str, str] = {}

    async def load(self, conversation_id: str) -> ConversationState | None:
        doc = self._docs.get(conversation_id)
        if doc is None:
            return None
        return ConversationState.model_validate_json(doc)

    async def save(self, state: ConversationState) -> None:
        self._docs[state.conversation_id] = state.model_dump_json(by_alias=True)

    async def delete(self, conversation_id: str) -> None:
        self._docs.pop(conversation_id, None)

    async def list_active(self, form_id: str) -> list[ConversationState]:
        states = [ConversationState.model_validate_json(d) for d in self._docs.values()]
        active = [s for s in states if s.form_id == form_id and s.is_active]
        return sorted(active, key=lambda s: s.updated_at, reverse=True)

    async def cleanup(self, older_than: timedelta) -> int:
        """Delete active conversations untouched for longer than ``older_than``."""
        cutoff = _stale_cutoff(older_than)
        stale = [
            s.conversation_id
            for s in (ConversationState.model_validate_json(d) for d in self._docs.values())
            if s.is_active and s.updated_at < cutoff
        ]
        for conversation_id in stale:
            del self._docs[conversation_id]
        if stale:
            logger.info("stale_conversations_deleted", count=len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._docs)


# ── Redis ────────────────────────────────────────────────────────────


def _state_key(conversation_id: str) -> str:
    return f"conversation:state:{conversation_id}"


def _form_key(form_id: str) -> str:
    return f"conversation:form:{form_id}"


_INDEX_KEY = "conversation:index"


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisConversationStore:
    """Redis-backed store.

    Layout::

        conversation:state:{id}      JSON document, expires after the state TTL
        conversation:form:{form_id}  set of conversation ids for the form
        conversation:index           set of every known conversation id

    The sets are pruned lazily: ids whose document has expired are removed the
    next time they are listed.
    """

    def __init__(self, redis: aioredis.Redis, settings: Settings | None = None) -> None:
        self._redis = redis
        self._ttl = (settings or get_settings()).conversation_state_ttl_seconds

    async def load(self, conversation_id: str) -> ConversationState | None:
        doc = await self._redis.get(_state_key(conversation_id))
        if doc is None:
            return None
        return ConversationState.model_validate_json(doc)

    async def save(self, state: ConversationState) -> None:
        await self._redis.set(
            _state_key(state.conversation_id),
            state.model_dump_json(by_alias=True),
            ex=self._ttl,
        )
        await self._redis.sadd(_form_key(state.form_id), state.conversation_id)
        await self._redis.sadd(_INDEX_KEY, state.conversation_id)

    async def delete(self, conversation_id: str) -> None:
        state = await self.load(conversation_id)
        await self._redis.delete(_state_key(conversation_id))
        await self._redis.srem(_INDEX_KEY, conversation_id)
        if state is not None:
            await self._redis.srem(_form_key(state.form_id), conversation_id)

    async def _load_members(self, set_key: str) -> list[ConversationState]:
        states: list[ConversationState] = []
        for member in await self._redis.smembers(set_key):
            conversation_id = _decode(member)
            state = await self.load(conversation_id)
            if state is None:
                await self._redis.srem(set_key, conversation_id)
                continue
            states.append(state)
        return states

    async def list_active(self, form_id: str) -> list[ConversationState]:
        states = await self._load_members(_form_key(form_id))
        active = [s for s in states if s.status == ConversationStatus.ACTIVE]
        return sorted(active, key=lambda s: s.updated_at, reverse=True)

    async def cleanup(self, older_than: timedelta) -> int:
        """Delete active conversations untouched for longer than ``older_than``."""
        cutoff = _stale_cutoff(older_than)
        deleted = 0
        for state in await self._load_members(_INDEX_KEY):
            if state.is_active and state.updated_at < cutoff:
                await self.delete(state.conversation_id)
                deleted += 1
        if deleted:
            logger.info("stale_conversations_deleted", count=deleted)
        return deleted
