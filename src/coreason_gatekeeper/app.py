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
FastAPI application exposing the protected resources and the social IdP callback.
"""

import base64
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated

from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import JSONResponse, Response
from fastapi.templating import Jinja2Templates
from opentelemetry import trace
from pydantic import BaseModel
from starlette.middleware.sessions import SessionMiddleware

from coreason_gatekeeper.config import GatekeeperConfig
from coreason_gatekeeper.exceptions import (
    GatekeeperError,
    MissingTransactionIdError,
    NoPendingTransactionError,
    TransactionError,
    VerificationError,
)
from coreason_gatekeeper.gate import RequireToken, bearer_challenge, challenge_status
from coreason_gatekeeper.manager import Gatekeeper
from coreason_gatekeeper.models import CompletedRegistration, RegistrationProfile, TokenClaims
from coreason_gatekeeper.utils.logger import logger

PACKAGE_DIR = Path(__file__).parent
templates = Jinja2Templates(directory=str(PACKAGE_DIR / "templates"))

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
}


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    trace_id: str | None = None


def _error(status_code: int, code: str, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    trace_id = None
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        trace_id = format(span_context.trace_id, "032x")
    body = ErrorResponse(code=code, message=message, trace_id=trace_id)
    return JSONResponse(body.model_dump(), status_code=status_code, headers=headers)


def load_protected_payload(path: Path = PACKAGE_DIR / "assets" / "oauth2.png") -> str:
    return base64.b64encode(path.read_bytes()).decode("ascii")


def create_app(config: GatekeeperConfig, gatekeeper: Gatekeeper | None = None) -> FastAPI:
    """
    Builds the application.

    Startup loads the signing keys first; the server only accepts connections once that succeeded.

    Args:
        config: The resolved configuration.
        gatekeeper: The core components. Built from `config` when omitted.

    Returns:
        FastAPI: The application.
    """
    core = gatekeeper or Gatekeeper(config)
    protected_payload = load_protected_payload()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with core:
            # ConfigError propagates and aborts startup
            key_set = await core.start()
            logger.info(f"Trusting {len(key_set)} signing key(s) from {key_set.source_url}; starting server...")
            yield

    app = FastAPI(title="coreason-gatekeeper", lifespan=lifespan, docs_url=None, redoc_url=None)
    app.state.gatekeeper = core
    app.state.config = config

    app.add_middleware(
        SessionMiddleware,
        secret_key=config.session_secret.get_secret_value(),
        max_age=config.session_ttl,
        same_site="lax",
        https_only=not config.unsafe_local_dev,
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f} ms")
        return response

    @app.exception_handler(VerificationError)
    async def on_verification_error(request: Request, exc: VerificationError) -> JSONResponse:
        message = "Insufficient scope" if exc.category == "insufficient_scope" else "Unauthorized"
        return _error(challenge_status(exc), exc.category, message, headers=bearer_challenge(exc))

    @app.exception_handler(MissingTransactionIdError)
    @app.exception_handler(NoPendingTransactionError)
    async def on_protocol_violation(request: Request, exc: GatekeeperError) -> JSONResponse:
        logger.warning(f"Rejected social callback: {exc}")
        return _error(400, "invalid_request", str(exc))

    @app.exception_handler(TransactionError)
    async def on_transaction_error(request: Request, exc: TransactionError) -> JSONResponse:
        return _error(502, "idp_unavailable", "The identity provider could not complete this step. Please try again.")

    @app.exception_handler(GatekeeperError)
    async def on_gatekeeper_error(request: Request, exc: GatekeeperError) -> JSONResponse:
        logger.error(f"Request failed: {exc}")
        return _error(500, "internal_error", "Internal server error")

    @app.get("/claims")
    async def claims(token: Annotated[TokenClaims, Depends(RequireToken())]) -> JSONResponse:
        return JSONResponse(dict(token.raw))

    @app.get("/protected")
    async def protected(token: Annotated[TokenClaims, Depends(RequireToken(config.required_scopes))]) -> Response:
        logger.info(f"Accessing protected resource with key {token.key_id}")
        return Response(content=protected_payload, media_type="application/x-octet-stream")

    @app.get("/social/callback")
    async def social_callback(request: Request, tx_id: str | None = None) -> Response:
        session_id, tx = await core.coordinator.begin(request.session.get("sid"), tx_id)
        request.session["sid"] = session_id
        return templates.TemplateResponse(request, "register.html", {"profile": tx.profile})

    @app.post("/social/callback")
    async def social_register(
        request: Request,
        customer_id: Annotated[str | None, Form(alias="customerId")] = None,
        street_address: Annotated[str | None, Form(alias="streetAddress")] = None,
        city: Annotated[str | None, Form()] = None,
        postal_code: Annotated[str | None, Form(alias="postalCode")] = None,
    ) -> Response:
        profile = RegistrationProfile(
            customer_id=customer_id,
            street_address=street_address,
            city=city,
            zip_code=postal_code,
        )
        outcome = await core.coordinator.submit(request.session.get("sid"), profile)

        if isinstance(outcome, CompletedRegistration):
            request.session.clear()
            return templates.TemplateResponse(
                request, "finish.html", {"url": outcome.finish_url, "session_token": outcome.session_token}
            )

        if config.passthrough_provision_response:
            return JSONResponse(outcome.body)
        return JSONResponse({"status": outcome.status, "code": "additional_steps_required"})

    @app.get("/welcome")
    async def welcome(request: Request) -> Response:
        this_app_url = f"{request.url.scheme}://{request.headers.get('host', request.url.netloc)}"
        return templates.TemplateResponse(
            request,
            "welcome.html",
            {"this_app_url": this_app_url, "admin_url": config.admin_url, "config": config},
        )

    @app.get("/js/config.js")
    async def widget_config(request: Request) -> Response:
        return templates.TemplateResponse(
            request, "config.js", {"config": config}, media_type="application/javascript"
        )

    return app
