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
TransactionStore component: the pending IdP transaction of each session.
"""

from typing import Any

from coreason_gatekeeper.exceptions import GatekeeperError
from coreason_gatekeeper.models import Transaction, TransactionState
from coreason_gatekeeper.sessions import Session, SessionStore
from coreason_gatekeeper.utils.logger import logger


class TransactionStore:
    """
    Reads and writes the transaction slot of a session.

    A session holds at most one pending transaction; nothing is visible across sessions.
    No method awaits, so each call is atomic with respect to other requests.
    """

    def __init__(self, sessions: SessionStore) -> None:
        self.sessions = sessions

    def _session(self, session_id: str) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            raise GatekeeperError("Session does not exist or has expired")
        return session

    def create(self, session_id: str, tx_id: str, profile: dict[str, Any]) -> Transaction:
        """
        Records a transaction awaiting its profile, replacing any earlier one of the session.

        Args:
            session_id: The owning session.
            tx_id: The transaction id issued by the identity provider.
            profile: The partial profile returned by the identity provider.

        Returns:
            Transaction: The new transaction in state AWAITING_PROFILE.
        """
        session = self._session(session_id)
        previous = session.transaction
        if previous is not None and previous.state == TransactionState.AWAITING_PROFILE:
            logger.debug(f"IdP transaction {previous.id} replaced by {tx_id}")

        tx = Transaction(id=tx_id, profile=dict(profile))
        session.transaction = tx
        return tx

    def get(self, session_id: str) -> Transaction | None:
        """Returns the session's pending transaction, if any."""
        session = self.sessions.get(session_id)
        if session is None:
            return None
        tx = session.transaction
        if tx is None or tx.state != TransactionState.AWAITING_PROFILE:
            return None
        return tx

    def _finish(self, session_id: str, state: TransactionState) -> Transaction | None:
        session = self.sessions.get(session_id)
        if session is None or session.transaction is None:
            return None
        tx = session.transaction
        session.transaction = None
        if tx.state != TransactionState.AWAITING_PROFILE:
            return None
        logger.info(f"IdP transaction {tx.id} {state.lower()}")
        return tx.model_copy(update={"state": state})

    def complete(self, session_id: str) -> Transaction | None:
        """Marks the pending transaction COMPLETED and detaches it from the session."""
        return self._finish(session_id, TransactionState.COMPLETED)

    def abandon(self, session_id: str) -> Transaction | None:
        """Marks the pending transaction ABANDONED and detaches it from the session."""
        return self._finish(session_id, TransactionState.ABANDONED)
