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
Provider Metadata Resolver: OIDC discovery and JWKS retrieval.
"""

from typing import Any
from urllib.parse import urlparse

import anyio
import httpx
from opentelemetry import trace
from pydantic import ValidationError

from coreason_rp.exceptions import CoreasonRPError, DiscoveryFailedError
from coreason_rp.models import ProviderMetadata
from coreason_rp.models_internal import DiscoveryDocument
from coreason_rp.transport import safe_json_fetch
from coreason_rp.utils.logger import logger

tracer = trace.get_tracer(__name__)


class ProviderMetadataResolver:
    """
    Fetches and caches the Identity Provider's configuration and signing keys.

    The result is cached for the process lifetime. There is no background refresh and no
    retry: a provider that cannot be resolved at startup stops the process.

    Attributes:
        issuer (str): The configured issuer URL.
        discovery_url (str): The OIDC discovery URL derived from the issuer.
    """

    def __init__(self, issuer: str, client: httpx.AsyncClient, allow_insecure: bool = False) -> None:
        """
        Initialize the ProviderMetadataResolver.

        Args:
            issuer: The expected issuer URL (e.g. https://accounts.google.com).
            client: The async HTTP client to use for requests.
            allow_insecure: Accept http:// endpoints. Only for local development.
        """
        self.issuer = issuer
        self.discovery_url = f"{issuer.rstrip('/')}/.well-known/openid-configuration"
        self.client = client
        self.allow_insecure = allow_insecure
        self._metadata: ProviderMetadata | None = None
        self._lock: anyio.Lock | None = None

    @property
    def metadata(self) -> ProviderMetadata:
        """
        The resolved metadata.

        Raises:
            DiscoveryFailedError: If resolve() has not completed successfully.
        """
        if self._metadata is None:
            raise DiscoveryFailedError("Provider metadata has not been resolved")
        return self._metadata

    async def resolve(self) -> ProviderMetadata:
        """
        Returns the provider metadata, performing discovery on first use.

        Concurrent first calls share a single fetch.

        Returns:
            ProviderMetadata: The resolved, immutable provider metadata.

        Raises:
            DiscoveryFailedError: If discovery or JWKS retrieval fails, or the document is invalid.
        """
        if self._metadata is not None:
            return self._metadata

        if self._lock is None:
            self._lock = anyio.Lock()

        async with self._lock:
            if self._metadata is None:
                self._metadata = await self._discover()
        return self._metadata

    async def _discover(self) -> ProviderMetadata:
        with tracer.start_as_current_span("resolve_provider_metadata") as span:
            span.set_attribute("oidc.issuer", self.issuer)

            data = await self._fetch(self.discovery_url, "OIDC configuration")
            try:
                document = DiscoveryDocument(**data)
            except ValidationError as e:
                raise DiscoveryFailedError(f"Invalid OIDC configuration from {self.discovery_url}: {e}") from e

            # A discovery document for another issuer is a spoofing attempt or a misconfiguration
            if document.issuer.rstrip("/") != self.issuer.rstrip("/"):
                raise DiscoveryFailedError(
                    f"Issuer mismatch: expected '{self.issuer}', discovery document declares '{document.issuer}'"
                )

            for name in ("authorization_endpoint", "token_endpoint", "userinfo_endpoint", "jwks_uri"):
                self._check_endpoint(name, getattr(document, name))

            jwks = await self._fetch(document.jwks_uri, "JWKS")
            if not isinstance(jwks.get("keys"), list):
                raise DiscoveryFailedError(f"JWKS from {document.jwks_uri} does not contain a 'keys' list")

            metadata = ProviderMetadata(
                issuer=document.issuer,
                authorization_endpoint=document.authorization_endpoint,
                token_endpoint=document.token_endpoint,
                userinfo_endpoint=document.userinfo_endpoint,
                jwks_uri=document.jwks_uri,
                signing_keys=jwks,
                id_token_signing_alg_values_supported=document.id_token_signing_alg_values_supported,
            )
            logger.info(f"Resolved provider metadata for {metadata.issuer} ({len(jwks['keys'])} signing keys)")
            return metadata

    async def _fetch(self, url: str, what: str) -> dict[str, Any]:
        try:
            return await safe_json_fetch(self.client, url)
        except (CoreasonRPError, httpx.HTTPError) as e:
            logger.error(f"Failed to fetch {what} from {url}: {e}")
            raise DiscoveryFailedError(f"Failed to fetch {what} from {url}: {e}") from e

    def _check_endpoint(self, name: str, url: str) -> None:
        parsed = urlparse(url)
        if parsed.scheme == "https" and parsed.netloc:
            return
        if parsed.scheme == "http" and parsed.netloc and self.allow_insecure:
            return
        raise DiscoveryFailedError(f"Discovery document has an invalid {name}: '{url}'")
