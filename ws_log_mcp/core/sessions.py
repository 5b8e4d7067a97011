"""Registry of live downstream MCP sessions and change-notification fan-out."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Protocol

from pydantic import AnyUrl

from ..types import SessionState

logger = logging.getLogger(__name__)


class ResourceNotifier(Protocol):
    """The part of ``mcp.server.session.ServerSession`` used for fan-out."""

    async def send_resource_updated(self, uri: AnyUrl) -> None: ...


class Session:
    """One connected downstream client.

    Starts ``OPEN`` when the transport attaches; becomes ``ACTIVE`` once the
    client has finished the handshake and its peer handle is bound; ends
    ``CLOSED`` when the transport goes away.
    """

    def __init__(self, session_id: str, transport: str) -> None:
        self.session_id = session_id
        self.transport = transport
        self.state = SessionState.OPEN
        self.subscribed = False
        self.peer: ResourceNotifier | None = None

    def __repr__(self) -> str:
        return (
            f"Session(id={self.session_id!r}, transport={self.transport!r}, "
            f"state={self.state.value}, subscribed={self.subscribed})"
        )

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def activate(self, peer: ResourceNotifier) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.peer = peer
        self.state = SessionState.ACTIVE

    def close(self) -> None:
        self.state = SessionState.CLOSED
        self.subscribed = False
        self.peer = None

    async def notify(self, uri: str) -> None:
        peer = self.peer
        if peer is None:
            raise RuntimeError(f"Session {self.session_id} has no bound peer")
        await peer.send_resource_updated(AnyUrl(uri))


class SessionRegistry:
    """Set of live sessions keyed by transport-issued id.

    Removal is idempotent.  ``notify_all`` delivers to every active session
    concurrently; each delivery is bounded by ``notify_timeout`` and its
    failure is logged and dropped without touching the other sessions.
    """

    def __init__(self, notify_timeout: float = 5.0) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self.notify_timeout = notify_timeout

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def open(self, transport: str, session_id: str) -> Session:
        """Register a new session for a freshly attached transport."""
        session = Session(session_id, transport)
        with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"Session already registered: {session_id}")
            self._sessions[session_id] = session
        logger.info("Session %s opened (%s)", session_id, transport)
        return session

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            session.close()
            logger.info("Session %s closed", session_id)
        return session

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def active(self) -> list[Session]:
        with self._lock:
            return [s for s in self._sessions.values() if s.is_active]

    async def notify_all(self, uri: str) -> int:
        """Send a resource-updated notification to every active session.

        Returns the number of sessions that accepted the notification.
        """
        targets = self.active()
        if not targets:
            return 0
        results = await asyncio.gather(*(self._notify_one(s, uri) for s in targets))
        return sum(results)

    async def _notify_one(self, session: Session, uri: str) -> bool:
        try:
            await asyncio.wait_for(session.notify(uri), self.notify_timeout)
        except Exception as exc:
            logger.debug("Dropped notification for session %s: %r", session.session_id, exc)
            return False
        return True
