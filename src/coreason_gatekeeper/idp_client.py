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
IdPManagementClient component for the Okta IdP transaction API.
"""

from typing import Any
from urllib.parse import quote

import httpx
from pydantic import SecretStr, ValidationError

from coreason_gatekeeper.exceptions import GatekeeperError, TransactionError
from coreason_gatekeeper.models import RegistrationProfile
from coreason_gatekeeper.models_internal import IdPTransactionTarget
from coreason_gatekeeper.transport import safe_json_fetch


class IdPManagementClient:
    """
    Calls the IdP transaction endpoints of the organization's management API.

    Requests are authenticated with the static SSWS API token.

    Attributes:
        org_url (str): The organization base URL (e.g. https://example.okta.com).
    """

    def __init__(self, org_url: str, api_token: SecretStr | None, client: httpx.AsyncClient) -> None:
        """
        Initialize the IdPManagementClient.

        Args:
            org_url: The organization base URL.
            api_token: The SSWS API token. Calls fail with TransactionError when it is missing.
            client: The async HTTP client to use for requests.
        """
        self.org_url = org_url.rstrip("/")
        self.api_token = api_token
        self.client = client

    def _tx_url(self, tx_id: str, suffix: str) -> str:
        return f"{self.org_url}/api/v1/idps/tx/{quote(tx_id, safe='')}/{suffix}"

    def _headers(self) -> dict[str, str]:
        if self.api_token is None:
            raise TransactionError("No API token configured for the IdP management API")
        return {
            "Authorization": f"SSWS {self.api_token.get_secret_value()}",
            "Accept": "application/json",
        }

    def finish_url(self, tx_id: str) -> str:
        """The URL the browser posts the session token to once provisioning succeeded."""
        return self._tx_url(tx_id, "finish")

    async def get_target(self, tx_id: str) -> IdPTransactionTarget:
        """
        Fetches the user the social IdP transaction resolved to.

        Args:
            tx_id: The IdP transaction id.

        Returns:
            IdPTransactionTarget: The target, including the partial profile.

        Raises:
            TransactionError: On non-2xx status, network error, timeout or an invalid body.
        """
        headers = self._headers()
        try:
            data = await safe_json_fetch(self.client, self._tx_url(tx_id, "target"), headers=headers)
            return IdPTransactionTarget.model_validate(data)
        except (httpx.HTTPError, GatekeeperError, ValidationError) as e:
            raise TransactionError(f"Unable to fetch IdP transaction {tx_id}: {e}") from e

    async def provision(self, tx_id: str, profile: RegistrationProfile) -> dict[str, Any]:
        """
        Provisions the user of the transaction with the supplemental profile.

        Args:
            tx_id: The IdP transaction id.
            profile: The profile collected from the registration form.

        Returns:
            dict[str, Any]: The raw provisioning response.

        Raises:
            TransactionError: On non-2xx status, network error, timeout or an invalid body.
        """
        headers = self._headers()
        try:
            return await safe_json_fetch(
                self.client,
                self._tx_url(tx_id, "lifecycle/provision"),
                method="POST",
                headers=headers,
                json={"profile": profile.to_idp()},
            )
        except (httpx.HTTPError, GatekeeperError) as e:
            raise TransactionError(f"Unable to provision IdP transaction {tx_id}: {e}") from e
