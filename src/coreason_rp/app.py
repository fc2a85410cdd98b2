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
HTTP edge: routes browser requests to the relying party and maps errors to status codes.
"""

import html
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, RedirectResponse, Response

from coreason_rp.config import RelyingPartyConfig
from coreason_rp.exceptions import (
    CoreasonRPError,
    DiscoveryFailedError,
    ExchangeFailedError,
    MissingCredentialError,
    ProviderUnavailableError,
    StateMismatchError,
    UnauthorizedError,
)
from coreason_rp.manager import RelyingParty
from coreason_rp.models import UserProfile
from coreason_rp.utils.logger import logger

DEFAULT_LANDING_PAGE = Path(__file__).parent / "static" / "index.html"

# Bodies are deliberately generic: the browser never learns which check failed
ERROR_STATUS: list[tuple[type[CoreasonRPError], int, str]] = [
    (StateMismatchError, 400, "Authentication failed."),
    (ExchangeFailedError, 500, "Authentication failed."),
    (MissingCredentialError, 401, "Authentication required."),
    (UnauthorizedError, 401, "Session expired. Please log in again."),
    (ProviderUnavailableError, 502, "Identity provider unavailable. Please retry."),
    (DiscoveryFailedError, 503, "Identity provider not configured."),
]


def error_response(exc: CoreasonRPError, codec_delete: dict[str, object] | None = None) -> JSONResponse:
    """
    Maps a relying-party error to an HTTP response.

    An UnauthorizedError means the provider considers the session dead, so the session
    cookie is cleared. A ProviderUnavailableError leaves it in place.
    """
    status_code, detail = 500, "Internal error."
    for exc_type, code, message in ERROR_STATUS:
        if isinstance(exc, exc_type):
            status_code, detail = code, message
            break

    response = JSONResponse({"detail": detail}, status_code=status_code)
    if isinstance(exc, UnauthorizedError) and codec_delete is not None:
        response.delete_cookie(**codec_delete)  # type: ignore[arg-type]
    return response


def render_profile(profile: UserProfile) -> str:
    """Renders the profile as an HTML fragment for htmx swaps."""
    rows = [
        ("User", profile.display_name or profile.subject),
        ("Subject", profile.subject),
        ("Email", profile.email or ""),
        ("Email verified", "yes" if profile.email_verified else "no"),
    ]
    return "\n".join(f"<p>{html.escape(label)}: {html.escape(str(value))}</p>" for label, value in rows)


def get_relying_party(request: Request) -> RelyingParty:
    return request.app.state.relying_party  # type: ignore[no-any-return]


def create_app(config: RelyingPartyConfig, client: httpx.AsyncClient | None = None) -> FastAPI:
    """
    Builds the FastAPI application.

    Provider discovery runs during startup; if it fails the application does not start.

    Args:
        config: The relying party configuration.
        client: External async client (optional), e.g. one wired to a stub provider in tests.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with RelyingParty(config, client=client) as relying_party:
            try:
                await relying_party.startup()
            except DiscoveryFailedError as e:
                logger.critical(f"Provider discovery failed, refusing to start: {e}")
                raise
            app.state.relying_party = relying_party
            logger.info(f"Relying party ready for issuer {config.issuer}")
            yield

    app = FastAPI(title="coreason-rp", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    landing_page = config.landing_page or DEFAULT_LANDING_PAGE

    @app.exception_handler(CoreasonRPError)
    async def handle_rp_error(request: Request, exc: CoreasonRPError) -> JSONResponse:
        codec = get_relying_party(request).codec
        return error_response(exc, codec.delete_params())

    @app.get("/", include_in_schema=False)
    async def home() -> FileResponse:
        return FileResponse(landing_page, media_type="text/html")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/login")
    async def login(rp: RelyingParty = Depends(get_relying_party)) -> RedirectResponse:
        redirect = await rp.begin_login()
        response = RedirectResponse(redirect.url, status_code=302)
        # Binds the attempt to this browser; Lax so it survives the top-level redirect back
        response.set_cookie(
            key=config.state_cookie_name,
            value=redirect.state,
            max_age=config.state_ttl,
            path=config.callback_path,
            secure=config.cookie_secure,
            httponly=True,
            samesite="lax",
        )
        return response

    @app.get(config.callback_path)
    async def callback(request: Request, rp: RelyingParty = Depends(get_relying_party)) -> Response:
        bound_state = request.cookies.get(config.state_cookie_name)
        response: Response
        try:
            token_set, _ = await rp.complete_login(dict(request.query_params), bound_state)
        except StateMismatchError as e:
            logger.warning("Login failed: StateMismatchError")
            response = error_response(e)
        except CoreasonRPError as e:
            # Any other failure while completing a login is an authentication failure (500),
            # including userinfo rejections or outages after the code exchange
            logger.warning(f"Login failed: {type(e).__name__}")
            response = error_response(ExchangeFailedError(str(e)))
        else:
            response = RedirectResponse(config.post_login_redirect, status_code=301)
            response.set_cookie(**rp.codec.cookie_params(token_set))

        # The state is single use whatever the outcome
        response.delete_cookie(
            key=config.state_cookie_name,
            path=config.callback_path,
            secure=config.cookie_secure,
            httponly=True,
            samesite="lax",
        )
        return response

    @app.get("/userinfo")
    async def userinfo(request: Request, rp: RelyingParty = Depends(get_relying_party)) -> Response:
        profile = await rp.fetch_profile(request.cookies.get(rp.codec.cookie_name))

        wants_json = request.query_params.get("format") == "json" or "application/json" in request.headers.get(
            "accept", ""
        )
        if wants_json:
            return JSONResponse(profile.model_dump(mode="json"))
        return HTMLResponse(render_profile(profile))

    @app.get("/logout")
    async def logout(rp: RelyingParty = Depends(get_relying_party)) -> RedirectResponse:
        # Local logout only: the provider session and tokens are left untouched
        response = RedirectResponse("/", status_code=302)
        response.delete_cookie(**rp.codec.delete_params())
        return response

    return app
