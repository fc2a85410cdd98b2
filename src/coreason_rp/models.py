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
Data models for the coreason-rp package.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, SecretStr


class ProviderMetadata(BaseModel):
    """
    Resolved Identity Provider configuration. Immutable for the process lifetime.
    """

    model_config = ConfigDict(frozen=True)

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str
    signing_keys: dict[str, Any] = Field(..., description="The JWKS document used to verify ID tokens.")
    id_token_signing_alg_values_supported: list[str] = Field(default_factory=list)


class PendingAuthorization(BaseModel):
    """
    A login attempt awaiting its callback.

    Attributes:
        state (str): Anti-CSRF token echoed back by the provider.
        nonce (str): Value the provider must embed in the ID token.
        scopes (list[str]): The scopes requested.
        expires_at (float): Unix time after which the attempt is rejected.
    """

    model_config = ConfigDict(frozen=True)

    state: str
    nonce: str
    scopes: list[str]
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class LoginRedirect(BaseModel):
    """Where to send the browser to start a login, and the state to bind to it."""

    model_config = ConfigDict(frozen=True)

    url: str
    state: str


class TokenSet(BaseModel):
    """
    Tokens returned by a successful authorization code exchange.

    Raw tokens are SecretStr so they never leak through repr or logs.
    """

    model_config = ConfigDict(frozen=True)

    access_token: SecretStr
    token_type: str = "Bearer"
    id_token: SecretStr | None = None
    expires_at: datetime | None = None
    scope: str | None = None
    id_token_claims: dict[str, Any] | None = None

    def expires_in(self, now: datetime | None = None) -> int | None:
        """Seconds until the access token expires, or None if the provider gave no lifetime."""
        if self.expires_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return max(0, int((self.expires_at - now).total_seconds()))


class UserProfile(BaseModel):
    """
    The internal user profile shape, derived fresh from each userinfo call.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        json_schema_extra={
            "example": {
                "subject": "110169484474386276334",
                "email": "alice@coreason.ai",
                "display_name": "Alice",
                "email_verified": True,
            }
        },
    )

    subject: str = Field(..., description="The provider's stable unique identifier ('sub').")
    email: EmailStr | None = None
    display_name: str | None = None
    email_verified: bool = False

    def __repr__(self) -> str:
        # PII fields MUST be redacted in __repr__
        return (
            f"UserProfile(subject='<REDACTED>', "
            f"email='<REDACTED>', "
            f"display_name='<REDACTED>', "
            f"email_verified={self.email_verified!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()
