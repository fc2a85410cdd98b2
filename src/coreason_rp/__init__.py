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
Minimal OpenID Connect relying party: authorization code login, cookie session and
per-request re-validation against the identity provider.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .app import create_app
from .auth_flow import AuthorizationFlow
from .config import RelyingPartyConfig
from .exceptions import (
    CoreasonRPError,
    DiscoveryFailedError,
    ExchangeFailedError,
    MissingCredentialError,
    ProviderUnavailableError,
    StateMismatchError,
    UnauthorizedError,
)
from .manager import RelyingParty
from .models import ProviderMetadata, TokenSet, UserProfile
from .oidc_provider import ProviderMetadataResolver
from .session import SessionCodec
from .state_store import PendingStateRegistry
from .userinfo import UserInfoGateway

__all__ = [
    "AuthorizationFlow",
    "CoreasonRPError",
    "DiscoveryFailedError",
    "ExchangeFailedError",
    "MissingCredentialError",
    "PendingStateRegistry",
    "ProviderMetadata",
    "ProviderMetadataResolver",
    "ProviderUnavailableError",
    "RelyingParty",
    "RelyingPartyConfig",
    "SessionCodec",
    "StateMismatchError",
    "TokenSet",
    "UnauthorizedError",
    "UserInfoGateway",
    "UserProfile",
    "create_app",
]
