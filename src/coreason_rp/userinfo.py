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
UserInfoGateway component: re-validates a bearer credential and maps the profile.
"""

from typing import Any

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr, ValidationError

from coreason_rp.exceptions import (
    CoreasonRPError,
    ProviderUnavailableError,
    UnauthorizedError,
)
from coreason_rp.models import UserProfile
from coreason_rp.models_internal import RawUserInfoClaims
from coreason_rp.oidc_provider import ProviderMetadataResolver
from coreason_rp.transport import read_json_response
from coreason_rp.utils.logger import anonymize, logger

tracer = trace.get_tracer(__name__)

# Statuses meaning the provider rejected the credential itself (RFC 6750 section 3.1)
REJECTED_STATUSES = frozenset({400, 401, 403})


class UserInfoGateway:
    """
    Calls the provider's userinfo endpoint. The provider's answer is the sole authority
    on whether a session credential is still valid.
    """

    def __init__(
        self,
        resolver: ProviderMetadataResolver,
        client: httpx.AsyncClient,
        pii_salt: SecretStr,
    ) -> None:
        self.resolver = resolver
        self.client = client
        self.pii_salt = pii_salt

    async def fetch(self, credential: str) -> UserProfile:
        """
        Fetches the user profile for a bearer credential.

        Args:
            credential: The bearer access token.

        Returns:
            UserProfile: The mapped profile.

        Raises:
            UnauthorizedError: If the provider rejects the credential (expired, revoked, malformed).
            ProviderUnavailableError: On network errors, timeouts, 5xx or malformed responses.
        """
        with tracer.start_as_current_span("fetch_userinfo") as span:
            try:
                profile = await self._fetch(credential)
            except CoreasonRPError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, type(e).__name__))
                raise

            user_hash = anonymize(profile.subject, self.pii_salt)
            span.set_attribute("enduser.id", user_hash)
            span.set_status(Status(StatusCode.OK))
            logger.info(f"Userinfo fetched for user {user_hash}")
            return profile

    async def _fetch(self, credential: str) -> UserProfile:
        metadata = await self.resolver.resolve()
        headers = {
            "Authorization": f"Bearer {credential}",
            "Accept": "application/json",
        }

        try:
            status, body = await read_json_response(self.client, metadata.userinfo_endpoint, headers=headers)
        except (httpx.HTTPError, CoreasonRPError) as e:
            logger.warning(f"Userinfo request failed: {type(e).__name__}")
            raise ProviderUnavailableError(f"Userinfo endpoint unreachable: {type(e).__name__}") from e

        if status in REJECTED_STATUSES:
            logger.info(f"Userinfo rejected the credential with HTTP {status}")
            raise UnauthorizedError("The session credential was rejected by the identity provider")

        if not 200 <= status < 300:
            logger.warning(f"Userinfo endpoint returned HTTP {status}")
            raise ProviderUnavailableError(f"Userinfo endpoint returned HTTP {status}")

        return self._map(body)

    def _map(self, body: Any) -> UserProfile:
        if not isinstance(body, dict):
            raise ProviderUnavailableError("Userinfo endpoint returned a non-JSON response")

        try:
            raw = RawUserInfoClaims(**body)
            return UserProfile(
                subject=raw.sub,
                email=raw.email,
                display_name=raw.display_name(),
                email_verified=raw.email_verified,
            )
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            logger.warning(f"Userinfo response failed validation (fields: {fields})")
            raise ProviderUnavailableError(f"Invalid userinfo response (fields: {fields})") from e
