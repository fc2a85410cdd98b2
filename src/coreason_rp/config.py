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
Configuration for the coreason-rp package.
"""

import ipaddress
import socket
from pathlib import Path
from typing import Annotated, Any, Literal
from urllib.parse import urlparse

from pydantic import Field, SecretStr, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _split_list(v: Any) -> Any:
    if isinstance(v, str):
        return [item for item in v.replace(",", " ").split() if item]
    return v


class RelyingPartyConfig(BaseSettings):
    """
    Configuration settings for the relying party.

    Loaded once at process start and treated as immutable afterwards.

    Attributes:
        client_id (str): The OAuth2 client identifier registered at the provider.
        client_secret (SecretStr): The client secret. Never logged or echoed.
        issuer (str): The provider's issuer URL (e.g. https://accounts.google.com).
        redirect_url (str): The callback URL registered at the provider.
        scopes (list[str]): Scopes to request. Must include "openid".
        http_timeout (float): Timeout in seconds for all provider network operations.
        state_ttl (int): Lifetime in seconds of a pending login attempt.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_RP_",
        case_sensitive=False,
        frozen=True,
    )

    unsafe_local_dev: bool = False

    client_id: str = Field(..., min_length=1)
    client_secret: SecretStr
    issuer: str
    redirect_url: str
    scopes: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["openid", "profile", "email"])
    offline_access: bool = False

    http_timeout: float = Field(default=10.0, gt=0, description="Timeout in seconds for all IdP network operations.")
    state_ttl: int = Field(default=600, gt=0)
    max_pending_states: int = Field(default=10_000, gt=0)

    cookie_name: str = "jwt"
    state_cookie_name: str = "oidc_state"
    cookie_secure: bool = True
    cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    session_max_age: int = Field(default=3600, gt=0)
    post_login_redirect: str = "/"

    id_token_algorithms: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["RS256"])
    clock_skew_leeway: int = Field(default=30, ge=0)
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")

    landing_page: Path | None = None
    host: str = "127.0.0.1"
    port: int = 8080

    @field_validator("scopes", "id_token_algorithms", mode="before")
    @classmethod
    def split_list(cls, v: Any) -> Any:
        """Accepts comma or space separated strings from the environment."""
        return _split_list(v)

    @field_validator("scopes")
    @classmethod
    def require_openid_scope(cls, v: list[str]) -> list[str]:
        if "openid" not in v:
            raise ValueError("The 'openid' scope is required.")
        return v

    @field_validator("issuer", "redirect_url")
    @classmethod
    def validate_https(cls, v: str, info: ValidationInfo) -> str:
        """
        Ensures provider and callback URLs use HTTPS, unless strictly opted out for local dev.
        """
        v = v.strip()
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"'{info.field_name}' must be an absolute URL.")
        if parsed.scheme == "http" and not info.data.get("unsafe_local_dev", False):
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        return v

    @field_validator("issuer")
    @classmethod
    def validate_issuer_dns(cls, v: str, info: ValidationInfo) -> str:
        """
        Validates that the issuer host does not resolve to a prohibited IP address.
        Prevents SSRF attacks.

        Raises:
            ValueError: If the host resolves to a private, loopback, or reserved IP.
        """
        if info.data.get("unsafe_local_dev", False):
            return v

        host = urlparse(v).hostname or ""
        try:
            addr_infos = socket.getaddrinfo(host, None)
        except socket.gaierror as e:
            raise ValueError(f"Unable to resolve issuer host '{host}': {e}") from e

        for _, _, _, _, sockaddr in addr_infos:
            ip_str = sockaddr[0]
            try:
                ip_obj = ipaddress.ip_address(ip_str)
            except ValueError:
                continue

            if (
                ip_obj.is_private
                or ip_obj.is_loopback
                or ip_obj.is_link_local
                or ip_obj.is_reserved
                or ip_obj.is_multicast
            ):
                raise ValueError(f"Security violation: Issuer host '{host}' resolves to a prohibited IP ({ip_str})")

        return v

    @model_validator(mode="after")
    def validate_cookie_policy(self) -> "RelyingPartyConfig":
        # Browsers drop SameSite=None cookies that are not Secure
        if self.cookie_samesite == "none" and not self.cookie_secure:
            raise ValueError("cookie_samesite='none' requires cookie_secure=True.")
        return self

    @property
    def callback_path(self) -> str:
        return urlparse(self.redirect_url).path or "/"
