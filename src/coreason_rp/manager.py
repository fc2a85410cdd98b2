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
RelyingParty component for orchestrating login and session re-validation.
"""

from collections.abc import Mapping
from typing import Any

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from coreason_rp.auth_flow import AuthorizationFlow
from coreason_rp.config import RelyingPartyConfig
from coreason_rp.exceptions import ExchangeFailedError
from coreason_rp.models import LoginRedirect, ProviderMetadata, TokenSet, UserProfile
from coreason_rp.oidc_provider import ProviderMetadataResolver
from coreason_rp.session import SessionCodec
from coreason_rp.state_store import PendingStateRegistry, StateStoreProtocol
from coreason_rp.transport import SafeHTTPTransport
from coreason_rp.userinfo import UserInfoGateway


class RelyingParty:
    """
    Async implementation of the relying party (The Core).
    Handles resources via async context manager.
    """

    def __init__(
        self,
        config: RelyingPartyConfig,
        client: httpx.AsyncClient | None = None,
        state_store: StateStoreProtocol | None = None,
    ) -> None:
        """
        Initialize the RelyingParty.

        Args:
            config: The configuration object.
            client: External async client (optional). If not provided, a client with the
                configured timeout is created, using `SafeHTTPTransport` unless `unsafe_local_dev`.
            state_store: Registry of pending logins. Defaults to an in-memory PendingStateRegistry.
        """
        self.config = config
        self._internal_client = client is None

        if client:
            self._client = client
        else:
            transport = None if config.unsafe_local_dev else SafeHTTPTransport()
            self._client = httpx.AsyncClient(transport=transport, timeout=config.http_timeout)

        # Instrument the client for distributed tracing
        HTTPXClientInstrumentor().instrument_client(self._client)

        self.resolver = ProviderMetadataResolver(
            config.issuer,
            self._client,
            allow_insecure=config.unsafe_local_dev,
        )
        self.state_store = state_store or PendingStateRegistry(max_entries=config.max_pending_states)
        self.flow = AuthorizationFlow(config, self.resolver, self._client, self.state_store)
        self.userinfo = UserInfoGateway(self.resolver, self._client, config.pii_salt)
        self.codec = SessionCodec(
            cookie_name=config.cookie_name,
            secure=config.cookie_secure,
            samesite=config.cookie_samesite,
            max_age=config.session_max_age,
        )

    async def __aenter__(self) -> "RelyingParty":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def startup(self) -> ProviderMetadata:
        """
        Resolves the provider metadata. Call once before serving traffic.

        Raises:
            DiscoveryFailedError: If the provider is unreachable or its metadata is invalid.
        """
        return await self.resolver.resolve()

    async def begin_login(self) -> LoginRedirect:
        return await self.flow.begin_login()

    async def complete_login(
        self, params: Mapping[str, str], bound_state: str | None
    ) -> tuple[TokenSet, UserProfile]:
        """
        Completes a login: verifies state, exchanges the code and fetches the profile.

        Args:
            params: The callback query parameters.
            bound_state: The state bound to the client at login.

        Returns:
            tuple[TokenSet, UserProfile]: The tokens and the freshly fetched profile.

        Raises:
            StateMismatchError: If the state check fails.
            ExchangeFailedError: If the code exchange fails, or the userinfo subject does not
                match the ID token subject.
            UnauthorizedError: If the provider rejects the fresh access token.
            ProviderUnavailableError: If the userinfo endpoint is unreachable.
        """
        token_set = await self.flow.complete_login(params, bound_state)
        profile = await self.userinfo.fetch(token_set.access_token.get_secret_value())

        # OIDC Core 5.3.2: userinfo 'sub' must match the ID token 'sub'
        if token_set.id_token_claims is not None and token_set.id_token_claims.get("sub") != profile.subject:
            raise ExchangeFailedError("Userinfo subject does not match the ID token subject")

        return token_set, profile

    async def fetch_profile(self, cookie_value: str | None) -> UserProfile:
        """
        Re-validates the session credential against the provider and returns the profile.

        Raises:
            MissingCredentialError: If there is no session cookie.
            UnauthorizedError: If the provider rejects the credential.
            ProviderUnavailableError: If the provider cannot be reached.
        """
        credential = self.codec.decode(cookie_value)
        return await self.userinfo.fetch(credential)
