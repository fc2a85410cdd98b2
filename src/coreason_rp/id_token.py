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
IDTokenVerifier component for validating ID token signatures and claims.
"""

import hmac
from typing import Any, cast

from authlib.jose import JsonWebToken
from authlib.jose.errors import (
    BadSignatureError,
    ExpiredTokenError,
    InvalidClaimError,
    JoseError,
    MissingClaimError,
)

from coreason_rp.exceptions import IDTokenValidationError
from coreason_rp.models import ProviderMetadata
from coreason_rp.utils.logger import logger


class IDTokenVerifier:
    """
    Validates ID tokens against the provider's JWKS and the OIDC Core claim rules.

    Attributes:
        client_id (str): The expected audience.
        allowed_algorithms (list[str]): Accepted signing algorithms. Others are rejected.
        leeway (int): Acceptable clock skew in seconds.
    """

    def __init__(self, client_id: str, allowed_algorithms: list[str], leeway: int = 0) -> None:
        self.client_id = client_id
        self.allowed_algorithms = allowed_algorithms
        self.leeway = leeway
        # A dedicated JsonWebToken instance rejects any algorithm outside the allow-list ("none" included)
        self.jwt = JsonWebToken(self.allowed_algorithms)

    def verify(self, id_token: str, metadata: ProviderMetadata, nonce: str) -> dict[str, Any]:
        """
        Verifies the ID token and returns its claims.

        Args:
            id_token: The compact-serialized JWT from the token endpoint.
            metadata: The resolved provider metadata (issuer and signing keys).
            nonce: The nonce sent with the authorization request.

        Returns:
            dict[str, Any]: The validated claims.

        Raises:
            IDTokenValidationError: If the signature, issuer, audience, expiry, issue time or nonce
                is invalid.
        """
        claims_options = {
            "iss": {"essential": True, "value": metadata.issuer},
            "aud": {"essential": True, "value": self.client_id},
            "exp": {"essential": True},
            "iat": {"essential": True},
            "sub": {"essential": True},
        }

        try:
            jwt_any = cast("Any", self._jwt_for(metadata))
            claims = jwt_any.decode(id_token.strip(), metadata.signing_keys, claims_options=claims_options)
            claims.validate(leeway=self.leeway)
        except ExpiredTokenError as e:
            logger.warning("ID token rejected: expired")
            raise IDTokenValidationError("ID token has expired") from e
        except (InvalidClaimError, MissingClaimError) as e:
            logger.warning(f"ID token rejected: {e.error}")
            raise IDTokenValidationError(f"ID token has invalid claims: {e.description}") from e
        except BadSignatureError as e:
            logger.error("ID token rejected: bad signature")
            raise IDTokenValidationError("ID token signature is invalid") from e
        except JoseError as e:
            logger.error(f"ID token rejected: {e.error}")
            raise IDTokenValidationError(f"ID token could not be verified: {e.error}") from e
        except ValueError as e:
            # Authlib raises ValueError when no key in the JWKS matches the token's kid
            logger.error("ID token rejected: signing key not found")
            raise IDTokenValidationError("ID token signing key not found") from e

        payload = dict(claims)

        aud = payload.get("aud")
        if isinstance(aud, list) and len(aud) > 1 and payload.get("azp") != self.client_id:
            raise IDTokenValidationError("ID token has multiple audiences but 'azp' is not this client")

        token_nonce = payload.get("nonce")
        if not isinstance(token_nonce, str) or not hmac.compare_digest(
            token_nonce.encode("utf-8"), nonce.encode("utf-8")
        ):
            logger.warning("ID token rejected: nonce mismatch")
            raise IDTokenValidationError("ID token nonce does not match the login attempt")

        return payload

    def _jwt_for(self, metadata: ProviderMetadata) -> JsonWebToken:
        """
        The decoder for this provider: the allow-list narrowed to the algorithms the provider
        advertises. Providers that advertise nothing get the full allow-list.
        """
        advertised = metadata.id_token_signing_alg_values_supported
        if not advertised:
            return self.jwt

        algorithms = [alg for alg in self.allowed_algorithms if alg in advertised]
        if not algorithms:
            logger.error(f"No ID token algorithm in common with the provider (provider offers {advertised})")
            raise IDTokenValidationError("ID token signing algorithm is not supported by this client")
        if algorithms == self.allowed_algorithms:
            return self.jwt
        return JsonWebToken(algorithms)
