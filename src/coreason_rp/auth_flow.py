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
AuthorizationFlow component for the OAuth 2.0 Authorization Code Grant (RFC 6749 section 4.1).
"""

import hmac
import re
import secrets
import time
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr, ValidationError

from coreason_rp.config import RelyingPartyConfig
from coreason_rp.exceptions import (
    AuthorizationDeniedError,
    CoreasonRPError,
    ExchangeFailedError,
    StateMismatchError,
)
from coreason_rp.id_token import IDTokenVerifier
from coreason_rp.models import LoginRedirect, PendingAuthorization, TokenSet
from coreason_rp.models_internal import TokenEndpointResponse
from coreason_rp.oidc_provider import ProviderMetadataResolver
from coreason_rp.state_store import StateStoreProtocol
from coreason_rp.transport import read_json_response
from coreason_rp.utils.logger import logger

tracer = trace.get_tracer(__name__)

# 32 bytes = 256 bits of entropy, URL-safe
STATE_BYTES = 32

# RFC 6749 section 4.1.2.1: error codes are printable ASCII without quote or backslash
OAUTH_ERROR_CODE = re.compile(r"[\x20\x21\x23-\x5B\x5D-\x7E]{1,64}")


def sanitize_error_code(value: object) -> str | None:
    """Returns the OAuth error code if it is well formed, else a placeholder. None if absent."""
    if value is None or value == "":
        return None
    if isinstance(value, str) and OAUTH_ERROR_CODE.fullmatch(value):
        return value
    return "unrecognized_error"


class AuthorizationFlow:
    """
    Builds authorization redirects and completes them by exchanging the returned code.

    Attributes:
        config (RelyingPartyConfig): Client credentials and flow settings.
        resolver (ProviderMetadataResolver): Source of the provider endpoints.
        store (StateStoreProtocol): Registry of pending login attempts.
    """

    def __init__(
        self,
        config: RelyingPartyConfig,
        resolver: ProviderMetadataResolver,
        client: httpx.AsyncClient,
        store: StateStoreProtocol,
        id_token_verifier: IDTokenVerifier | None = None,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.client = client
        self.store = store
        self.id_token_verifier = id_token_verifier or IDTokenVerifier(
            client_id=config.client_id,
            allowed_algorithms=config.id_token_algorithms,
            leeway=config.clock_skew_leeway,
        )

    async def begin_login(self) -> LoginRedirect:
        """
        Starts a login attempt.

        Generates a fresh state and nonce, records them as pending with a `state_ttl` expiry
        and returns the provider's authorization URL.

        Returns:
            LoginRedirect: The URL to redirect the browser to and the state to bind to the client.

        Raises:
            DiscoveryFailedError: If the provider metadata cannot be resolved.
        """
        metadata = await self.resolver.resolve()

        now = time.time()
        pending = PendingAuthorization(
            state=secrets.token_urlsafe(STATE_BYTES),
            nonce=secrets.token_urlsafe(STATE_BYTES),
            scopes=list(self.config.scopes),
            created_at=now,
            expires_at=now + self.config.state_ttl,
        )
        self.store.add(pending)

        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_url,
            "response_type": "code",
            "scope": " ".join(pending.scopes),
            "state": pending.state,
            "nonce": pending.nonce,
        }
        if self.config.offline_access:
            params["access_type"] = "offline"

        separator = "&" if "?" in metadata.authorization_endpoint else "?"
        url = f"{metadata.authorization_endpoint}{separator}{urlencode(params)}"
        logger.debug("Login attempt started")
        return LoginRedirect(url=url, state=pending.state)

    async def complete_login(self, params: Mapping[str, str], bound_state: str | None) -> TokenSet:
        """
        Completes a login attempt from the provider's callback.

        The state is checked and consumed before anything is sent to the provider.

        Args:
            params: The callback query parameters (`code`, `state`, or `error`).
            bound_state: The state bound to this client at login (from the state cookie).

        Returns:
            TokenSet: The tokens issued by the provider.

        Raises:
            StateMismatchError: If the state is absent, unbound, unknown, expired or already used.
            AuthorizationDeniedError: If the provider returned an error instead of a code.
            IDTokenValidationError: If the returned ID token fails verification.
            ExchangeFailedError: If the code exchange fails for any other reason.
        """
        pending = self._consume_state(params.get("state"), bound_state)

        error = sanitize_error_code(params.get("error"))
        if error:
            logger.warning(f"Provider returned authorization error: {error}")
            raise AuthorizationDeniedError(f"Authorization was not granted: {error}")

        code = params.get("code")
        if not code:
            raise ExchangeFailedError("Callback did not include an authorization code")

        with tracer.start_as_current_span("exchange_authorization_code") as span:
            try:
                token_set = await self._exchange(code, pending)
            except CoreasonRPError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, type(e).__name__))
                raise
            span.set_status(Status(StatusCode.OK))
            return token_set

    def _consume_state(self, state: str | None, bound_state: str | None) -> PendingAuthorization:
        # Every failure raises the same message so callers cannot tell which check failed.
        # Compared as bytes: compare_digest rejects non-ASCII str, and both values come from the client.
        if (
            not state
            or not bound_state
            or not hmac.compare_digest(state.encode("utf-8"), bound_state.encode("utf-8"))
        ):
            logger.warning("Callback rejected: state missing or not bound to this client")
            raise StateMismatchError("Invalid login state")

        pending = self.store.consume(state)
        if pending is None:
            logger.warning("Callback rejected: state unknown, expired or already used")
            raise StateMismatchError("Invalid login state")
        return pending

    async def _exchange(self, code: str, pending: PendingAuthorization) -> TokenSet:
        metadata = await self.resolver.resolve()

        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_url,
        }
        # Confidential client authentication: client_secret_basic
        auth = (self.config.client_id, self.config.client_secret.get_secret_value())

        try:
            status, body = await read_json_response(
                self.client,
                metadata.token_endpoint,
                method="POST",
                data=data,
                auth=auth,
                headers={"Accept": "application/json"},
            )
        except (httpx.HTTPError, CoreasonRPError) as e:
            logger.error(f"Token exchange failed: {type(e).__name__}")
            raise ExchangeFailedError(f"Token endpoint unreachable: {type(e).__name__}") from e

        if not 200 <= status < 300:
            oauth_error = sanitize_error_code(body.get("error")) if isinstance(body, dict) else None
            logger.error(f"Token exchange rejected with HTTP {status} ({oauth_error or 'no error code'})")
            raise ExchangeFailedError(f"Token endpoint returned HTTP {status}: {oauth_error or 'unknown_error'}")

        if not isinstance(body, dict):
            raise ExchangeFailedError("Token endpoint returned a non-JSON response")

        try:
            response = TokenEndpointResponse(**body)
        except ValidationError as e:
            # Field names only: the body holds raw tokens
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ExchangeFailedError(f"Invalid token response (fields: {fields})") from e

        if response.token_type.lower() != "bearer":
            raise ExchangeFailedError(f"Unsupported token type '{response.token_type}'")

        id_token_claims = None
        if response.id_token:
            id_token_claims = self.id_token_verifier.verify(response.id_token, metadata, pending.nonce)

        expires_at = None
        if response.expires_in is not None:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=response.expires_in)

        logger.info("Authorization code exchanged successfully")
        return TokenSet(
            access_token=SecretStr(response.access_token),
            token_type=response.token_type,
            id_token=SecretStr(response.id_token) if response.id_token else None,
            expires_at=expires_at,
            scope=response.scope,
            id_token_claims=id_token_claims,
        )
