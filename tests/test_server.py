# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rp

import os
from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI
from loguru import logger

from coreason_rp.server import load_config, main

ENV = {
    "COREASON_RP_CLIENT_ID": "client",
    "COREASON_RP_CLIENT_SECRET": "do-not-log-me",
    "COREASON_RP_ISSUER": "https://idp.example.com",
    "COREASON_RP_REDIRECT_URL": "https://rp.example.com/callback",
}


def test_load_config_from_env() -> None:
    with patch.dict(os.environ, ENV, clear=True):
        config = load_config()
    assert config.client_id == "client"


def test_load_config_exits_on_missing_values() -> None:
    with patch.dict(os.environ, {}, clear=True), pytest.raises(SystemExit) as exc:
        load_config()
    assert exc.value.code == 1


def test_load_config_never_logs_secret() -> None:
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(str(m)), format="{message}")
    try:
        with (
            patch.dict(os.environ, {**ENV, "COREASON_RP_ISSUER": "http://idp.example.com"}, clear=True),
            pytest.raises(SystemExit),
        ):
            load_config()
    finally:
        logger.remove(handler_id)

    assert any("issuer" in m for m in messages)
    assert not any("do-not-log-me" in m for m in messages)


@patch("coreason_rp.server.configure_logging")
@patch("coreason_rp.server.uvicorn.run")
def test_main_serves_app(mock_run: MagicMock, mock_configure: MagicMock) -> None:
    with patch.dict(os.environ, {**ENV, "COREASON_RP_HOST": "0.0.0.0", "COREASON_RP_PORT": "9090"}, clear=True):
        main()

    mock_configure.assert_called_once()
    mock_run.assert_called_once()
    args, kwargs = mock_run.call_args
    assert isinstance(args[0], FastAPI)
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 9090
