# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rp

"""
Process entry point: loads configuration from the environment and serves the app.
"""

import sys

import uvicorn
from pydantic import ValidationError

from coreason_rp.app import create_app
from coreason_rp.config import RelyingPartyConfig
from coreason_rp.utils.logger import configure_logging, logger


def load_config() -> RelyingPartyConfig:
    """
    Loads the configuration, exiting the process if it is missing or invalid.

    Only field names and messages are logged; input values may contain secrets.
    """
    try:
        return RelyingPartyConfig()  # type: ignore[call-arg]
    except ValidationError as e:
        for err in e.errors():
            field = ".".join(str(p) for p in err["loc"]) or "config"
            logger.error(f"Invalid configuration for '{field}': {err['msg']}")
        sys.exit(1)


def main() -> None:
    configure_logging()
    config = load_config()
    logger.info(f"Starting relying party on {config.host}:{config.port} (client_id={config.client_id})")
    # log_config=None keeps uvicorn on the intercepted stdlib logging
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_config=None)


if __name__ == "__main__":  # pragma: no cover
    main()
