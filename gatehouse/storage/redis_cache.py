from __future__ import annotations

import json
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from gatehouse.logging import get_logger
from gatehouse.storage.errors import SessionStoreError


class RedisSessionStore:
    """Identity sessions held as JSON blobs under ``auth:session:{id}``."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self.logger = get_logger(__name__)

    @staticmethod
    def _key(session_id: str) -> str:
        return f"auth:session:{session_id}"

    async def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.client.get(self._key(session_id))
        except RedisError as exc:
            raise SessionStoreError("session read failed", {"error": str(exc)}) from exc
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            self.logger.warning("session_payload_corrupt", session_id=session_id, error=str(exc))
            raise SessionStoreError("session payload is not valid JSON") from exc
        if not isinstance(data, dict):
            raise SessionStoreError("session payload is not an object")
        return data

    async def save(self, session_id: str, data: Dict[str, Any], ttl_seconds: int) -> None:
        try:
            await self.client.set(self._key(session_id), json.dumps(data), ex=max(1, ttl_seconds))
        except RedisError as exc:
            raise SessionStoreError("session write failed", {"error": str(exc)}) from exc

    async def delete(self, session_id: str) -> None:
        try:
            await self.client.delete(self._key(session_id))
        except RedisError as exc:
            raise SessionStoreError("session delete failed", {"error": str(exc)}) from exc

    async def close(self) -> None:
        await self.client.aclose()
