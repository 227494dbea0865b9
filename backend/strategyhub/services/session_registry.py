"""In-memory registry of wallet sessions."""

import asyncio
import logging
from typing import Dict, Iterator, List, Optional

from ..models.session import UserSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns the one ``UserSession`` object per wallet address.

    Sessions are never removed while the process runs; a stopped session
    keeps its strategy, config and performance until it is reassigned.
    """

    def __init__(self):
        self._sessions: Dict[str, UserSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, wallet_address: str) -> Optional[UserSession]:
        return self._sessions.get(wallet_address)

    def get_or_create(self, wallet_address: str) -> UserSession:
        session = self._sessions.get(wallet_address)
        if session is None:
            session = UserSession(wallet_address=wallet_address)
            self._sessions[wallet_address] = session
            logger.info(f"Created session record for {wallet_address}")
        return session

    def find_by_session_id(self, session_id: str) -> Optional[UserSession]:
        """Resolve a session token to its session, if it is the current one."""
        if not session_id:
            return None
        for session in self._sessions.values():
            if session.session_id == session_id:
                return session
        return None

    def lock_for(self, wallet_address: str) -> asyncio.Lock:
        """Single-writer lock for assign/stop/config changes on one wallet."""
        lock = self._locks.get(wallet_address)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[wallet_address] = lock
        return lock

    def all(self) -> List[UserSession]:
        return list(self._sessions.values())

    def active(self) -> List[UserSession]:
        return [s for s in self._sessions.values() if s.is_active]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, wallet_address: str) -> bool:
        return wallet_address in self._sessions

    def __iter__(self) -> Iterator[UserSession]:
        return iter(list(self._sessions.values()))
