from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from gatehouse.api.binding import bind_request, commit
from gatehouse.api.error_handling import error_response
from gatehouse.api.schemas import (
    Envelope,
    IdentityResponse,
    LoginStatusResponse,
    LogoutResponse,
)
from gatehouse.logging import get_logger
from gatehouse.service.context import CookieMutation
from gatehouse.service.errors import AuthenticationError, NotFoundError
from gatehouse.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter()


@router.get("/healthz", tags=["health"])
async def healthz():
    return Envelope(status="ok", data={"status": "healthy"})


@router.get("/auth/login", tags=["auth"])
async def begin_login(
    request: Request,
    version: Optional[str] = Query(None, max_length=64, description="Login provider version"),
):
    """Send the browser to the resolved provider's login entry point.

    For SSO this starts the authorization-code handshake directly.
    """
    runtime = get_runtime()
    bound = await bind_request(request, runtime)
    login = runtime.gateway.begin_login(bound.ctx, version)
    response = RedirectResponse(login.redirect_url, status_code=302)
    await commit(response, runtime, bound, login.session, CookieMutation())
    logger.info("login_redirect_issued", provider=login.provider)
    return response


@router.post("/auth/login", tags=["auth"])
async def password_login(request: Request):
    """Form login for the password and open providers."""
    runtime = get_runtime()
    form = await request.form()
    fields = {key: value for key, value in form.items() if isinstance(value, str)}
    bound = await bind_request(request, runtime, form=fields)
    outcome = await runtime.gateway.password_login(bound.ctx, fields.get("version") or None)
    response = RedirectResponse(outcome.redirect_url, status_code=302)
    await commit(response, runtime, bound, outcome.session, outcome.cookies)
    return response


@router.get("/auth/sso/login", tags=["auth"])
async def sso_login(request: Request):
    runtime = get_runtime()
    if not runtime.settings.oidc_enabled:
        raise NotFoundError("SSO login is not enabled")
    bound = await bind_request(request, runtime)
    step = runtime.sso_engine.begin(bound.ctx)
    response = RedirectResponse(step.redirect_url, status_code=302)
    await commit(response, runtime, bound, step.session, CookieMutation())
    return response


@router.get("/auth/sso/callback", tags=["auth"])
async def sso_callback(request: Request):
    """Complete the SSO handshake.

    Success redirects to the page the user started from. Failures return the
    error envelope; its details carry the upstream logout URL so an
    unknown or disabled user can end their identity-provider session.
    """
    runtime = get_runtime()
    bound = await bind_request(request, runtime)
    outcome = await runtime.gateway.handle_sso_callback(bound.ctx)
    if outcome.established:
        response = RedirectResponse(outcome.redirect_url or runtime.settings.site_url, status_code=302)
    else:
        error = outcome.error
        details = {**(error.detail if error else {}), **outcome.error_context}
        response = error_response(
            error.status_code if error else 401,
            error.message if error else "SSO login failed",
            details,
            code=error.error_code if error else "protocol_error",
        )
    await commit(response, runtime, bound, outcome.session, outcome.cookies)
    return response


@router.api_route("/auth/logout", methods=["GET", "POST"], tags=["auth"])
async def logout(request: Request):
    runtime = get_runtime()
    bound = await bind_request(request, runtime)
    outcome = runtime.gateway.logout(bound.ctx)
    response = JSONResponse(
        content=Envelope(status="ok", data=LogoutResponse(logout_url=outcome.logout_url)).model_dump()
    )
    await commit(response, runtime, bound, outcome.session, outcome.cookies)
    return response


@router.get("/auth/is_login", tags=["auth"])
async def is_login(request: Request):
    runtime = get_runtime()
    bound = await bind_request(request, runtime)
    result = await runtime.gateway.is_authenticated(bound.ctx)
    response = JSONResponse(
        content=Envelope(
            status="ok",
            data=LoginStatusResponse(
                result=result.authenticated,
                username=result.identity.username if result.identity else None,
            ),
        ).model_dump()
    )
    if result.forced_logout:
        await commit(response, runtime, bound, result.session, result.cookies)
    return response


@router.get("/api/v1/me", tags=["identity"])
async def whoami(request: Request):
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise AuthenticationError("not logged in")
    return Envelope(
        status="ok",
        data=IdentityResponse(
            username=identity.username,
            owner_id=identity.owner_id,
            display_name=identity.display_name,
            email=identity.email,
            role=identity.role,
            provider=identity.provider_version,
            multi_tenant=identity.multi_tenant,
            token_expiry=identity.token_expiry,
        ),
    )
