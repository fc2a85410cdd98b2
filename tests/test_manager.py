# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rp

from unittest.mock import MagicMock, patch

import httpx
import pytest
from conftest import StubProvider

from coreason_rp.config import RelyingPartyConfig
from coreason_rp.exceptions import ExchangeFailedError, MissingCredentialError, UnauthorizedError
from coreason_rp.manager import RelyingParty
from coreason_rp.state_store import PendingStateRegistry
from coreason_rp.transport import SafeHTTPTransport


@pytest.fixture
def relying_party(config: RelyingPartyConfig, http_client: httpx.AsyncClient) -> RelyingParty:
    return RelyingParty(config, client=http_client)


@pytest.mark.asyncio
async def test_login_round_trip(relying_party: RelyingParty, stub: StubProvider) -> None:
    async with relying_party as rp:
        await rp.startup()
        redirect = await rp.begin_login()
        query = stub.authorize(redirect.url, code="ABC", sub="u1", email="u1@example.com")

        token_set, profile = await rp.complete_login(query, bound_state=redirect.state)

        assert profile.subject == "u1"
        assert profile.email == "u1@example.com"

        cookie = rp.codec.encode(token_set)
        again = await rp.fetch_profile(cookie)
        assert again.subject == "u1"


@pytest.mark.asyncio
async def test_subject_mismatch_rejected(relying_party: RelyingParty, stub: StubProvider) -> None:
    redirect = await relying_party.begin_login()
    query = stub.authorize(redirect.url, code="ABC", sub="u1")
    stub.tokens["access-ABC"]["sub"] = "someone-else"

    with pytest.raises(ExchangeFailedError, match="subject"):
        await relying_party.complete_login(query, bound_state=redirect.state)


@pytest.mark.asyncio
async def test_fetch_profile_without_cookie(relying_party: RelyingParty, stub: StubProvider) -> None:
    with pytest.raises(MissingCredentialError):
        await relying_party.fetch_profile(None)
    # Rejected locally, never sent to the provider
    assert stub.calls("/userinfo") == 0


@pytest.mark.asyncio
async def test_fetch_profile_revoked(relying_party: RelyingParty, stub: StubProvider) -> None:
    stub.grant("tok")
    assert (await relying_party.fetch_profile("tok")).subject == "u1"

    stub.revoke("tok")
    with pytest.raises(UnauthorizedError):
        await relying_party.fetch_profile("tok")


def test_custom_state_store(config: RelyingPartyConfig, http_client: httpx.AsyncClient) -> None:
    store = PendingStateRegistry(max_entries=5)
    rp = RelyingParty(config, client=http_client, state_store=store)
    assert rp.state_store is store
    assert rp.flow.store is store


def test_codec_follows_config(config: RelyingPartyConfig, http_client: httpx.AsyncClient) -> None:
    custom = config.model_copy(update={"cookie_name": "sid", "session_max_age": 120})
    rp = RelyingParty(custom, client=http_client)
    assert rp.codec.cookie_name == "sid"
    assert rp.codec.max_age == 120


@pytest.mark.asyncio
async def test_internal_client_uses_safe_transport(config: RelyingPartyConfig) -> None:
    with patch("coreason_rp.manager.HTTPXClientInstrumentor") as mock_instrumentor:
        rp = RelyingParty(config)
        mock_instrumentor.return_value.instrument_client.assert_called_once_with(rp._client)

    assert isinstance(rp._client._transport, SafeHTTPTransport)
    assert rp._client.timeout.read == config.http_timeout

    await rp.aclose()
    assert rp._client.is_closed


@pytest.mark.asyncio
async def test_local_dev_skips_safe_transport(config: RelyingPartyConfig) -> None:
    local = config.model_copy(update={"unsafe_local_dev": True})
    with patch("coreason_rp.manager.HTTPXClientInstrumentor"):
        rp = RelyingParty(local)

    assert not isinstance(rp._client._transport, SafeHTTPTransport)
    await rp.aclose()


@pytest.mark.asyncio
async def test_external_client_not_closed(config: RelyingPartyConfig) -> None:
    client = MagicMock(spec=httpx.AsyncClient)
    with patch("coreason_rp.manager.HTTPXClientInstrumentor"):
        async with RelyingParty(config, client=client):
            pass

    client.aclose.assert_not_called()
