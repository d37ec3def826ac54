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
IdPTransactionCoordinator component driving the social IdP registration handshake.
"""

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from coreason_gatekeeper.exceptions import MissingTransactionIdError, NoPendingTransactionError, TransactionError
from coreason_gatekeeper.idp_client import IdPManagementClient
from coreason_gatekeeper.models import CompletedRegistration, PendingRegistration, RegistrationProfile, Transaction
from coreason_gatekeeper.sessions import SessionStore
from coreason_gatekeeper.transactions import TransactionStore
from coreason_gatekeeper.utils.logger import logger

tracer = trace.get_tracer(__name__)

PROVISION_SUCCESS = "SUCCESS"


class IdPTransactionCoordinator:
    """
    Orchestrates fetch -> collect profile -> provision for a social IdP transaction.

    Each step either completes or fails without touching the session's transaction.
    Remote failures are never retried here; the user restarts the login or resubmits the form.
    """

    def __init__(
        self,
        idp_client: IdPManagementClient,
        sessions: SessionStore,
        transactions: TransactionStore | None = None,
    ) -> None:
        self.idp_client = idp_client
        self.sessions = sessions
        self.transactions = transactions or TransactionStore(sessions)

    async def begin(self, session_id: str | None, tx_id: str | None) -> tuple[str, Transaction]:
        """
        Fetch step: loads the IdP transaction and records it as awaiting the profile.

        The session is looked up or started only after the fetch succeeded. A rejected callback
        leaves no session behind; a session that expired during the fetch is replaced.

        Args:
            session_id: The browser session, if the browser presented one.
            tx_id: The `tx_id` from the social login callback.

        Returns:
            tuple[str, Transaction]: The id of the session holding the transaction, and the
            pending transaction with the partial profile for the form.

        Raises:
            MissingTransactionIdError: If no transaction id was supplied.
            TransactionError: If the IdP call fails. The session is left unchanged.
        """
        if not tx_id:
            raise MissingTransactionIdError("The social login callback carries no tx_id")

        with tracer.start_as_current_span("idp.fetch_transaction") as span:
            logger.info(f"Fetching IdP transaction {tx_id}")
            try:
                target = await self.idp_client.get_target(tx_id)
            except TransactionError as e:
                logger.error(str(e))
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, "fetch failed"))
                raise

        session = self.sessions.ensure(session_id)
        return session.id, self.transactions.create(session.id, tx_id, target.profile)

    async def submit(
        self, session_id: str | None, profile: RegistrationProfile
    ) -> CompletedRegistration | PendingRegistration:
        """
        Submit step: provisions the pending transaction with the supplemental profile.

        On `SUCCESS` the transaction is completed and the session destroyed.

        Args:
            session_id: The browser session, if the browser presented one.
            profile: The fields collected from the registration form.

        Returns:
            CompletedRegistration | PendingRegistration: The finish target, or the IdP's
            answer when it requires further steps.

        Raises:
            NoPendingTransactionError: If the session has no transaction awaiting a profile.
            TransactionError: If the IdP call fails. The transaction stays pending.
        """
        session = self.sessions.lookup(session_id)
        tx = self.transactions.get(session.id) if session is not None else None
        if session is None or tx is None:
            raise NoPendingTransactionError("No IdP transaction is awaiting a profile in this session")

        with tracer.start_as_current_span("idp.provision") as span:
            logger.info(f"Registering additional profile ({', '.join(profile.to_idp())}) for IdP transaction {tx.id}")
            try:
                body = await self.idp_client.provision(tx.id, profile)
            except TransactionError as e:
                logger.error(str(e))
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, "provision failed"))
                raise

            status = body.get("status")
            span.set_attribute("idp.provision.status", str(status))

        if status != PROVISION_SUCCESS:
            logger.info(f"IdP transaction {tx.id} answered with status {status}")
            return PendingRegistration(status=status if isinstance(status, str) else None, body=body)

        self.transactions.complete(session.id)
        self.sessions.destroy(session.id)
        token = body.get("sessionToken")
        return CompletedRegistration(
            finish_url=self.idp_client.finish_url(tx.id),
            session_token=token if isinstance(token, str) else None,
        )
