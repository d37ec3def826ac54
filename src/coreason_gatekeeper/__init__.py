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
OAuth 2.0 protected resource server: bearer token verification against the IdP's published keys,
and the social IdP registration handshake.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .async_context import get_current_claims
from .config import GatekeeperConfig
from .coordinator import IdPTransactionCoordinator
from .exceptions import GatekeeperError, VerificationError, VerificationFailure
from .gate import RequireToken
from .key_store import KeyStore
from .manager import Gatekeeper
from .models import TokenClaims, Transaction, TransactionState
from .token_verifier import TokenVerifier
from .transactions import TransactionStore

__all__ = [
    "Gatekeeper",
    "GatekeeperConfig",
    "GatekeeperError",
    "IdPTransactionCoordinator",
    "KeyStore",
    "RequireToken",
    "TokenClaims",
    "TokenVerifier",
    "Transaction",
    "TransactionState",
    "TransactionStore",
    "VerificationError",
    "VerificationFailure",
    "get_current_claims",
]
