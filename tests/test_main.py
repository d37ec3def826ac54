# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import os
from unittest.mock import MagicMock, patch

from fastapi import FastAPI

from coreason_gatekeeper.__main__ import main


@patch("coreason_gatekeeper.__main__.uvicorn.run")
def test_main_serves_app(mock_run: MagicMock) -> None:
    code = main(["--issuer", "https://example.okta.com/oauth2/default", "--audience", "api://default", "--port", "9001"])

    assert code == 0
    mock_run.assert_called_once()
    args, kwargs = mock_run.call_args
    assert isinstance(args[0], FastAPI)
    assert kwargs["port"] == 9001
    assert kwargs["lifespan"] == "on"
    assert args[0].state.config.audience == "api://default"


@patch("coreason_gatekeeper.__main__.uvicorn.run")
def test_main_invalid_config(mock_run: MagicMock) -> None:
    with patch.dict(os.environ, {}, clear=True):
        code = main(["--issuer", "http://example.okta.com"])

    assert code == 2
    mock_run.assert_not_called()
