"""Sahayak Redis telemetry & session-state layer.

Uses redis.asyncio (redis-py >= 4.2) for fully async operations.
Stores:
 - Per-session engine snapshot (navigation, hazards, escalation)
 - Event history ring-buffer (configurable depth)
 - Real-time event broadcast over pub/sub
 - TTL-based expiry so old sessions auto-cleanup

Everything here is best-effort from the engine's point of view: the
``RedisTelemetry`` sink swallows failures so telemetry can never block or
break a safety announcement.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis

logger = logging.getLogger("sahayak.redis")

_pool: Optional[aioredis.Redis] = None

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
SESSION_TTL = 3600  # 1 hour
EVENT_HISTORY_MAX = 500  # keep last N telemetry events
EVENTS_CHANNEL = "sahayak:events"


async def init_redis() -> aioredis.Redis:
    """Create the global async Redis connection pool."""
    global _pool
    pool = aioredis.from_url(
        REDIS_URL,
        decode_responses=True,
        max_connections=20,
    )
    await pool.ping()
    _pool = pool
    logger.info("Redis connected at %s", REDIS_URL)
    return _pool


async def close_redis() -> None:
    global _pool
    if _pool:
        await _pool.aclose()
        _pool = None
        logger.info("Redis connection closed")


def is_connected() -> bool:
    return _pool is not None


def _r() -> aioredis.Redis:
    if _pool is None:
        raise RuntimeError("Redis not initialised: call init_redis() first")
    return _pool


# ---------------------------------------------------------------------------
#  Session state  (hash per session)
# ---------------------------------------------------------------------------

def _session_key(session_id: str) -> str:
    return f"sahayak:session:{session_id}"


async def set_session_state(session_id: str, data: Dict[str, Any]) -> None:
    """Upsert fields into the session hash and refresh TTL."""
    key = _session_key(session_id)
    r = _r()
    serialised = {k: json.dumps(v) if not isinstance(v, str) else v for k, v in data.items()}
    await r.hset(key, mapping=serialised)
    await r.expire(key, SESSION_TTL)


async def get_session_state(session_id: str) -> Dict[str, Any]:
    key = _session_key(session_id)
    raw = await _r().hgetall(key)
    result: Dict[str, Any] = {}
    for k, v in raw.items():
        try:
            result[k] = json.loads(v)
        except (json.JSONDecodeError, TypeError):
            result[k] = v
    return result


async def delete_session(session_id: str) -> None:
    await _r().delete(_session_key(session_id))


# ---------------------------------------------------------------------------
#  Telemetry events  (list ring buffer + pub/sub broadcast)
# ---------------------------------------------------------------------------

_EVENTS_KEY = "sahayak:events:history"


def build_event(
    event_type: str,
    metadata: Optional[Dict[str, Any]] = None,
    source: str = "engine",
    session_id: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    event: Dict[str, Any] = {
        "type": event_type,
        "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
        "source": source,
        "metadata": metadata or {},
    }
    if session_id:
        event["session_id"] = session_id
    return event


async def push_event(event: Dict[str, Any]) -> int:
    """Append to the history, keep only the last N, and broadcast."""
    r = _r()
    payload = json.dumps(event, default=str)
    await r.rpush(_EVENTS_KEY, payload)
    await r.ltrim(_EVENTS_KEY, -EVENT_HISTORY_MAX, -1)  # keep last N
    return await r.publish(EVENTS_CHANNEL, payload)


async def get_event_history(last_n: int = 20) -> List[dict]:
    raw = await _r().lrange(_EVENTS_KEY, -last_n, -1)
    return [json.loads(item) for item in raw]


class RedisTelemetry:
    """Fire-and-forget telemetry sink bound to one engine session."""

    def __init__(self, session_id: Optional[str] = None, source: str = "engine") -> None:
        self.session_id = session_id
        self.source = source

    async def publish(self, event_type: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        if _pool is None:
            logger.debug("Telemetry skipped (no Redis): %s", event_type)
            return
        try:
            await push_event(build_event(event_type, metadata, self.source, self.session_id))
        except Exception as exc:
            logger.warning("Telemetry publish failed for %s: %s", event_type, exc)
