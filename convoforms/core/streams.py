"""Redis Streams client for conversation turn events.

Provides publish/consume primitives for the conversation-events:{id} streams.
One event is emitted per turn phase (not per token), each carrying a
sequential ``seq`` for client-side idempotence.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Any

import redis.asyncio as aioredis

# ── Event types ──────────────────────────────────────────────────────

EVENT_STATUS = "status"          # thinking / extracting / wrapping_up
EVENT_REPLY = "reply"            # assistant text for the turn
EVENT_COVERAGE = "coverage"      # topic coverage + confidence snapshot
EVENT_COMPLETED = "completed"    # conversation reached a terminal status
EVENT_ERROR = "error"            # turn failed

TERMINAL_EVENTS = (EVENT_COMPLETED, EVENT_ERROR)


def stream_key(conversation_id: str) -> str:
    return f"conversation-events:{conversation_id}"


class ConversationStreamPublisher:
    """Publishes turn events to the Redis Stream of one conversation.

    Usage::

        pub = ConversationStreamPublisher(redis, conversation_id)
        await pub.setup(ttl=600)
        await pub.emit_status("thinking")
        await pub.emit_reply("Thanks! Which device is affected?")
        await pub.emit_completed(reason="Maximum turns reached", partial=True)
    """

    def __init__(self, redis: aioredis.Redis, conversation_id: str) -> None:
        self._redis = redis
        self._key = stream_key(conversation_id)
        self._seq = 0
        self._ttl = 600
        self._maxlen = 500

    async def setup(self, ttl: int = 600, maxlen: int = 500) -> None:
        self._ttl = ttl
        self._maxlen = maxlen
        await self._redis.expire(self._key, ttl)

    async def _emit(self, event_type: str, payload: dict[str, Any]) -> str:
        """Publish an event. Returns the Redis stream message ID."""
        self._seq += 1
        fields = {
            "seq": str(self._seq),
            "type": event_type,
            "ts": str(time.time()),
            "data": json.dumps(payload, default=str),
        }
        msg_id = await self._redis.xadd(
            self._key,
            fields,
            maxlen=self._maxlen,
            approximate=True,
        )
        # Refresh TTL on replies and terminal events
        if event_type in (EVENT_REPLY, *TERMINAL_EVENTS):
            await self._redis.expire(self._key, self._ttl)
        return msg_id

    # ── Typed emitters ───────────────────────────────────────────

    async def emit_status(self, status: str) -> str:
        return await self._emit(EVENT_STATUS, {"status": status})

    async def emit_reply(self, text: str, *, turn: int) -> str:
        return await self._emit(EVENT_REPLY, {"text": text, "turn": turn})

    async def emit_coverage(
        self,
        topics: list[dict[str, Any]],
        *,
        confidence: float,
    ) -> str:
        return await self._emit(EVENT_COVERAGE, {"topics": topics, "confidence": confidence})

    async def emit_completed(
        self,
        *,
        status: str = "completed",
        reason: str | None = None,
        partial: bool = False,
    ) -> str:
        return await self._emit(EVENT_COMPLETED, {
            "status": status,
            "reason": reason,
            "partial": partial,
        })

    async def emit_error(self, code: str, message: str | None = None) -> str:
        return await self._emit(EVENT_ERROR, {"code": code, "message": message})


class ConversationStreamConsumer:
    """Async generator that reads events from a conversation stream.

    The driver only publishes. This is the reading side for the host
    application's streaming endpoint (SSE or websocket), which lives outside
    this package and relays each event to the respondent's browser.

    Usage::

        async for event in ConversationStreamConsumer(redis, conversation_id):
            # event = {"seq": "1", "type": "reply", "ts": "...", "data": "{...}"}
            ...

    Iteration stops after a ``completed`` or ``error`` event, or when
    ``hard_timeout`` elapses (a synthetic ``error`` event is yielded).
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        conversation_id: str,
        *,
        last_id: str = "0-0",
        block_ms: int = 500,
        heartbeat_interval: float = 15.0,
        hard_timeout: float = 180.0,
    ) -> None:
        self._redis = redis
        self._key = stream_key(conversation_id)
        self._last_id = last_id
        self._block_ms = block_ms
        self._heartbeat_interval = heartbeat_interval
        self._hard_timeout = hard_timeout

    @property
    def last_id(self) -> str:
        return self._last_id

    def __aiter__(self):
        return self._consume()

    async def _consume(self):
        start_time = time.time()
        last_event_time = start_time

        while True:
            if time.time() - start_time > self._hard_timeout:
                yield {
                    "seq": "-1",
                    "type": EVENT_ERROR,
                    "ts": str(time.time()),
                    "data": json.dumps({"code": "hard_timeout", "message": "Stream timeout"}),
                }
                return

            result = await self._redis.xread(
                {self._key: self._last_id},
                block=self._block_ms,
                count=50,
            )

            if not result:
                if time.time() - last_event_time >= self._heartbeat_interval:
                    yield {
                        "seq": "-1",
                        "type": EVENT_STATUS,
                        "ts": str(time.time()),
                        "data": json.dumps({"status": "heartbeat"}),
                    }
                    last_event_time = time.time()
                continue

            for _stream_name, messages in result:
                for msg_id, fields in messages:
                    self._last_id = msg_id.decode() if isinstance(msg_id, bytes) else msg_id
                    last_event_time = time.time()

                    decoded = {
                        (k.decode() if isinstance(k, bytes) else k):
                        (v.decode() if isinstance(v, bytes) else v)
                        for k, v in fields.items()
                    }
                    yield decoded

                    if decoded.get("type") in TERMINAL_EVENTS:
                        return


def redis_publisher_factory(
    redis: aioredis.Redis,
) -> Callable[[str], ConversationStreamPublisher]:
    """Publisher factory for ConversationDriver, bound to one Redis client."""

    def _factory(conversation_id: str) -> ConversationStreamPublisher:
        return ConversationStreamPublisher(redis, conversation_id)

    return _factory
