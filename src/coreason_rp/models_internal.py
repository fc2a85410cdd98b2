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
Internal data models for the coreason-rp package.
These parse raw provider responses and are not exposed in the public API.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DiscoveryDocument(BaseModel):
    """
    OIDC Configuration from .well-known/openid-configuration.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str = Field(..., description="The OIDC issuer URL.")
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str = Field(..., description="The URL to the JWKS.")
    id_token_signing_alg_values_supported: list[str] = Field(default_factory=list)


class TokenEndpointResponse(BaseModel):
    """
    Successful response from the token endpoint (RFC 6749 section 5.1).
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    token_type: str
    # A lifetime of zero would produce a session cookie the browser drops at once
    expires_in: int | None = Field(default=None, gt=0)
    id_token: str | None = None
    refresh_token: str | None = None
    scope: str | None = None


class RawUserInfoClaims(BaseModel):
    """
    Normalizes the userinfo response before it is mapped to a UserProfile.
    """

    model_config = ConfigDict(extra="allow")

    sub: str = Field(..., min_length=1)
    email: str | None = None
    email_verified: bool = False
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    preferred_username: str | None = None

    @field_validator("email_verified", mode="before")
    @classmethod
    def coerce_verified(cls, v: Any) -> Any:
        # Some providers send "true"/"false" strings, others omit the claim
        if v is None:
            return False
        if isinstance(v, str):
            return v.strip().lower() == "true"
        return v

    @field_validator("email", "name", "given_name", "family_name", "preferred_username", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def display_name(self) -> str | None:
        if self.name:
            return self.name
        full = " ".join(part for part in (self.given_name, self.family_name) if part)
        return full or self.preferred_username
