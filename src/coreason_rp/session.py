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
Session Codec: the session representation carried in the browser cookie.
"""

from typing import Any, Literal

from coreason_rp.exceptions import MissingCredentialError
from coreason_rp.models import TokenSet


class SessionCodec:
    """
    Encodes the bearer access token into the session cookie and reads it back.

    The codec never decides whether a session is valid. Every protected request must
    present the decoded credential to the provider, which is the only authority.

    Attributes:
        cookie_name (str): Name of the session cookie. "jwt" for historical reasons,
            although the value is an opaque access token.
    """

    def __init__(
        self,
        cookie_name: str = "jwt",
        secure: bool = True,
        samesite: Literal["lax", "strict", "none"] = "lax",
        max_age: int = 3600,
    ) -> None:
        self.cookie_name = cookie_name
        self.secure = secure
        self.samesite = samesite
        self.max_age = max_age

    def encode(self, token_set: TokenSet) -> str:
        return token_set.access_token.get_secret_value()

    def decode(self, value: str | None) -> str:
        """
        Returns the credential carried by the cookie value.

        Raises:
            MissingCredentialError: If there is no cookie or it is empty.
        """
        if value is None or not value.strip():
            raise MissingCredentialError("No session credential")
        return value.strip()

    def cookie_params(self, token_set: TokenSet) -> dict[str, Any]:
        """
        Keyword arguments for `Response.set_cookie` carrying this token set.

        The cookie lives no longer than the access token, capped at `max_age`.
        """
        lifetime = token_set.expires_in()
        max_age = self.max_age if lifetime is None else min(lifetime, self.max_age)
        return {
            "key": self.cookie_name,
            "value": self.encode(token_set),
            "max_age": max_age,
            "path": "/",
            "secure": self.secure,
            "httponly": True,
            "samesite": self.samesite,
        }

    def delete_params(self) -> dict[str, Any]:
        """Keyword arguments for `Response.delete_cookie` matching `cookie_params`."""
        return {
            "key": self.cookie_name,
            "path": "/",
            "secure": self.secure,
            "httponly": True,
            "samesite": self.samesite,
        }
