# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
Server-side browser sessions. Each session owns at most one registration transaction.
"""

import secrets
import time

from coreason_gatekeeper.models import Transaction, TransactionState
from coreason_gatekeeper.utils.logger import logger


class Session:
    """
    A browser session, identified by an opaque id carried in the signed session cookie.

    Attributes:
        id (str): The session id.
        transaction (Transaction | None): The registration handshake owned by this session.
    """

    def __init__(self, session_id: str) -> None:
        self.id = session_id
        self.created_at = time.monotonic()
        self.last_seen = self.created_at
        self.transaction: Transaction | None = None

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def idle_for(self, now: float | None = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_seen


class SessionStore:
    """
    Holds live sessions by id and expires idle ones lazily.

    Attributes:
        ttl (float): Seconds of inactivity after which a session is destroyed.
    """

    def __init__(self, ttl: float = 3600.0, purge_interval: float = 60.0) -> None:
        self.ttl = ttl
        self.purge_interval = purge_interval
        self._sessions: dict[str, Session] = {}
        self._last_purge = time.monotonic()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def lookup(self, session_id: str | None) -> Session | None:
        """
        Returns the live session for `session_id` and marks it active. Never starts one.
        """
        now = time.monotonic()
        if now - self._last_purge >= self.purge_interval:
            self.purge_expired(now)

        session = self.get(session_id) if session_id else None
        if session is not None:
            session.touch()
        return session

    def ensure(self, session_id: str | None) -> Session:
        """
        Returns the live session for `session_id`, or starts a new one under a fresh id.
        """
        session = self.lookup(session_id)
        if session is None:
            session = Session(secrets.token_urlsafe(32))
            self._sessions[session.id] = session
            logger.debug("Started a new session")
        return session

    def get(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        if session is not None and session.idle_for() >= self.ttl:
            self.destroy(session_id)
            return None
        return session

    def destroy(self, session_id: str) -> None:
        """
        Drops the session. A transaction still awaiting its profile is marked ABANDONED.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return

        tx = session.transaction
        if tx is not None and tx.state == TransactionState.AWAITING_PROFILE:
            session.transaction = tx.model_copy(update={"state": TransactionState.ABANDONED})
            logger.info(f"IdP transaction {tx.id} abandoned with its session")

    def purge_expired(self, now: float | None = None) -> int:
        now = now if now is not None else time.monotonic()
        self._last_purge = now
        expired = [sid for sid, session in self._sessions.items() if session.idle_for(now) >= self.ttl]
        for sid in expired:
            self.destroy(sid)
        return len(expired)
