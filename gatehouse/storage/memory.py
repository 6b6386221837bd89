from __future__ import annotations

import threading
import time
from typing import Any, Dict, Optional, Tuple

from gatehouse.logging import get_logger


class MemorySessionStore:
    """In-process session store for development and tests.

    Entries expire on read once their TTL has elapsed; there is no sweeper.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self.logger = get_logger(__name__)

    async def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            expires_at, data = entry
            if expires_at <= time.time():
                self._sessions.pop(session_id, None)
                self.logger.info("session_expired", session_id=session_id)
                return None
            return dict(data)

    async def save(self, session_id: str, data: Dict[str, Any], ttl_seconds: int) -> None:
        with self._lock:
            self._sessions[session_id] = (time.time() + max(1, ttl_seconds), dict(data))

    async def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    async def close(self) -> None:
        with self._lock:
            self._sessions.clear()
