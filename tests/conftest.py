# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rp

import base64
import socket
import time
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from authlib.jose import JsonWebKey, jwt
from fastapi.testclient import TestClient

from coreason_rp.app import create_app
from coreason_rp.config import RelyingPartyConfig

ISSUER = "https://idp.example.com"
CLIENT_ID = "rp-client"
CLIENT_SECRET = "rp-client-secret-value"
REDIRECT_URL = "https://rp.example.com/callback"
KID = "stub-key-1"

# RSA key generation is slow; one key pair serves the whole session
SIGNING_KEY = JsonWebKey.generate_key("RSA", 2048, is_private=True)
OTHER_KEY = JsonWebKey.generate_key("RSA", 2048, is_private=True)


def sign_id_token(claims: dict[str, Any], key: Any = SIGNING_KEY, kid: str = KID, alg: str = "RS256") -> str:
    token = jwt.encode({"alg": alg, "kid": kid}, claims, key)
    return token.decode("ascii") if isinstance(token, bytes) else token


class StubProvider:
    """
    In-process identity provider behind an httpx.MockTransport.

    `authorize` plays the browser consenting at the authorization endpoint and returns the
    callback query the provider would redirect with.
    """

    def __init__(self) -> None:
        self.discovery: dict[str, Any] = {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/authorize",
            "token_endpoint": f"{ISSUER}/token",
            "userinfo_endpoint": f"{ISSUER}/userinfo",
            "jwks_uri": f"{ISSUER}/jwks",
            "id_token_signing_alg_values_supported": ["RS256"],
        }
        self.jwks: dict[str, Any] = {
            "keys": [SIGNING_KEY.as_dict(is_private=False, kid=KID, use="sig", alg="RS256")]
        }
        self.codes: dict[str, dict[str, str]] = {}
        self.tokens: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_network: set[str] = set()
        self.status_overrides: dict[str, int] = {}
        self.issue_id_token = True
        self.token_type = "Bearer"
        self.id_token_overrides: dict[str, Any] = {}
        self.expires_in: Any = 3599

    def authorize(
        self,
        location: str,
        code: str = "ABC",
        sub: str = "u1",
        email: str = "u1@example.com",
        access_token: str | None = None,
        **claims: Any,
    ) -> dict[str, str]:
        params = parse_qs(urlparse(location).query)
        access_token = access_token or f"access-{code}"
        self.codes[code] = {
            "access_token": access_token,
            "nonce": params["nonce"][0],
            "sub": sub,
            "redirect_uri": params["redirect_uri"][0],
        }
        self.tokens[access_token] = {"sub": sub, "email": email, "email_verified": True, **claims}
        return {"code": code, "state": params["state"][0]}

    def grant(self, access_token: str, sub: str = "u1", email: str = "u1@example.com", **claims: Any) -> None:
        """Registers a valid access token without going through a login."""
        self.tokens[access_token] = {"sub": sub, "email": email, **claims}

    def revoke(self, access_token: str) -> None:
        self.tokens.pop(access_token, None)

    def calls(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

    def id_token(self, sub: str, nonce: str) -> str:
        now = int(time.time())
        claims: dict[str, Any] = {
            "iss": ISSUER,
            "sub": sub,
            "aud": CLIENT_ID,
            "iat": now,
            "exp": now + 300,
            "nonce": nonce,
        }
        claims.update(self.id_token_overrides)
        return sign_id_token(claims)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.fail_network:
            raise httpx.ConnectError("stub network failure", request=request)
        if path in self.status_overrides:
            return httpx.Response(self.status_overrides[path], json={"error": "server_error"})

        if path == "/.well-known/openid-configuration":
            return httpx.Response(200, json=self.discovery)
        if path == "/jwks":
            return httpx.Response(200, json=self.jwks)
        if path == "/token":
            return self._token(request)
        if path == "/userinfo":
            return self._userinfo(request)
        return httpx.Response(404)

    def _token(self, request: httpx.Request) -> httpx.Response:
        expected = "Basic " + base64.b64encode(f"{CLIENT_ID}:{CLIENT_SECRET}".encode()).decode()
        if request.headers.get("Authorization") != expected:
            return httpx.Response(401, json={"error": "invalid_client"})

        form = parse_qs(request.content.decode())
        grant = self.codes.pop(form.get("code", [""])[0], None)
        if (
            grant is None
            or form.get("grant_type") != ["authorization_code"]
            or form.get("redirect_uri") != [grant["redirect_uri"]]
        ):
            return httpx.Response(400, json={"error": "invalid_grant"})

        body: dict[str, Any] = {
            "access_token": grant["access_token"],
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": "openid profile email",
        }
        if self.issue_id_token:
            body["id_token"] = self.id_token(grant["sub"], grant["nonce"])
        return httpx.Response(200, json=body)

    def _userinfo(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        claims = self.tokens.get(token)
        if claims is None:
            return httpx.Response(401, headers={"WWW-Authenticate": 'Bearer error="invalid_token"'})
        return httpx.Response(200, json=claims)


@pytest.fixture(autouse=True)
def mock_dns_resolution() -> Generator[MagicMock, None, None]:
    """
    Globally patches socket.getaddrinfo to return a safe public IP by default, so the
    issuer SSRF check in RelyingPartyConfig works offline with dummy hosts.
    """
    safe_response = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("8.8.8.8", 443))]

    with patch("socket.getaddrinfo", return_value=safe_response) as mock:
        yield mock


@pytest.fixture
def config() -> RelyingPartyConfig:
    return RelyingPartyConfig(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        issuer=ISSUER,
        redirect_url=REDIRECT_URL,
        http_timeout=5.0,
    )


@pytest.fixture
def stub() -> StubProvider:
    return StubProvider()


@pytest.fixture
def http_client(stub: StubProvider) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(stub.handle), timeout=5.0)


@pytest.fixture
def app_client(config: RelyingPartyConfig, http_client: httpx.AsyncClient) -> Generator[TestClient, None, None]:
    app = create_app(config, client=http_client)
    with TestClient(app, base_url="https://rp.example.com", follow_redirects=False) as client:
        yield client
