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
Command-line entry point: `coreason-gatekeeper --issuer https://example.okta.com --audience <client id>`.
"""

import sys

import uvicorn
from pydantic import ValidationError

from coreason_gatekeeper.app import create_app
from coreason_gatekeeper.config import GatekeeperConfig
from coreason_gatekeeper.utils.logger import logger


def main(argv: list[str] | None = None) -> int:
    """
    Loads the configuration and serves the application until interrupted.

    Returns:
        int: The process exit code.
    """
    logger.info("Loading configuration...")
    try:
        config = GatekeeperConfig.from_cli(argv)
    except ValidationError as e:
        logger.error(f"Invalid configuration:\n{e}")
        return 2

    logger.info(f"Listener Port: {config.port}")
    logger.info(f"Issuer URL: {config.issuer}")
    logger.info(f"Audience URI: {config.audience}")
    logger.info(f"Metadata URL: {config.metadata_url}")
    logger.info(f"Organization URL: {config.org_url}")

    app = create_app(config)
    # A failed key load aborts startup and uvicorn exits non-zero
    uvicorn.run(app, host="0.0.0.0", port=config.port, lifespan="on", log_config=None, proxy_headers=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
