from __future__ import annotations

import asyncio
import logging
import secrets
import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable


logger = logging.getLogger(__name__)


class SessionStore:
    """In-memory map of session id to expiry time.

    Sessions expire ``timeout`` seconds after creation.  Expired sessions are
    dropped when they are looked up and by :meth:`sweep`.
    """

    def __init__(self, timeout: float, clock: Callable[[], float] = time.time) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be a positive number, not %r" % timeout)
        self.timeout = timeout
        self._clock = clock
        self._sessions: dict[str, float] = {}
        self._lock = threading.Lock()

    def create(self) -> str:
        session_id = secrets.token_hex(32)
        with self._lock:
            self._sessions[session_id] = self._clock() + self.timeout
        return session_id

    def validate(self, session_id: str | None) -> bool:
        if not session_id:
            return False

        with self._lock:
            expires_at = self._sessions.get(session_id)
            if expires_at is None:
                return False
            if self._clock() > expires_at:
                del self._sessions[session_id]
                return False
        return True

    def expire(self, session_id: str | None) -> None:
        if not session_id:
            return
        with self._lock:
            self._sessions.pop(session_id, None)

    def sweep(self) -> int:
        """Removes every expired session and returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [sid for sid, expires_at in self._sessions.items() if now > expires_at]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.debug("Swept %d expired sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(timeout={self.timeout!r})"


async def sweep_periodically(store: SessionStore, interval: float) -> None:
    """Calls ``store.sweep()`` every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        store.sweep()
