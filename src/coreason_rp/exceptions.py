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
Custom exceptions for the coreason-rp package.
"""


class CoreasonRPError(Exception):
    """Base exception for all coreason-rp errors."""


class DiscoveryFailedError(CoreasonRPError):
    """Raised when the provider metadata cannot be fetched or is invalid. Fatal at startup."""


class StateMismatchError(CoreasonRPError):
    """
    Raised when a callback's state is absent, unknown, expired or not bound to the client.
    The message never says which of these applied.
    """


class ExchangeFailedError(CoreasonRPError):
    """Raised when the authorization code cannot be exchanged for tokens."""


class AuthorizationDeniedError(ExchangeFailedError):
    """Raised when the provider redirects back with an OAuth error instead of a code."""


class IDTokenValidationError(ExchangeFailedError):
    """Raised when the ID token returned by the token endpoint fails verification."""


class MissingCredentialError(CoreasonRPError):
    """Raised when a request carries no session credential."""


class UnauthorizedError(CoreasonRPError):
    """Raised when the provider rejects the session credential. The session is dead."""


class ProviderUnavailableError(CoreasonRPError):
    """Raised on network or server errors talking to the provider. The session is kept."""


class OversizedResponseError(CoreasonRPError):
    """Raised when an HTTP response is too large."""


class SecurityError(CoreasonRPError):
    """Raised when an outbound request targets a blocked address."""
