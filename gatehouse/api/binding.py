"""Translate between Starlette requests/responses and the authentication core."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Mapping, Optional

from fastapi import Request, Response

from gatehouse.logging import get_logger
from gatehouse.service.context import CookieMutation, RequestContext
from gatehouse.service.runtime import Runtime
from gatehouse.storage.errors import SessionStoreError
from gatehouse.storage.models import IdentitySession, SessionMutation

logger = get_logger(__name__)


@dataclass
class BoundRequest:
    session_id: Optional[str]
    ctx: RequestContext


def _current_url(request: Request, site_url: str) -> str:
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return f"{site_url}{path}"


async def bind_request(
    request: Request, runtime: Runtime, *, form: Optional[Mapping[str, str]] = None
) -> BoundRequest:
    """Load the identity session and build the core's view of the request.

    A session store that cannot be read yields an empty session, which the
    validator treats as unauthenticated.
    """
    settings = runtime.settings
    session_id = request.cookies.get(settings.session_cookie) or None
    session = IdentitySession()
    if session_id:
        try:
            data = await runtime.store.load(session_id)
        except SessionStoreError as exc:
            logger.error("session_load_failed", path=request.url.path, error=exc.message)
            data = None
        session = IdentitySession.from_dict(data)
    ctx = RequestContext(
        session=session,
        cookies=dict(request.cookies),
        query=dict(request.query_params),
        form=dict(form or {}),
        url=_current_url(request, settings.site_url),
        path=request.url.path,
    )
    return BoundRequest(session_id=session_id, ctx=ctx)


async def commit(
    response: Response,
    runtime: Runtime,
    bound: BoundRequest,
    session_mutation: SessionMutation,
    cookie_mutation: CookieMutation,
) -> None:
    """Persist a session mutation and write the resulting cookies onto ``response``."""
    settings = runtime.settings
    session_id = bound.session_id
    updated = bound.ctx.session.apply(session_mutation)

    if session_mutation.rotate and session_id:
        await runtime.store.delete(session_id)
        session_id = None

    if updated.is_empty:
        if session_id:
            await runtime.store.delete(session_id)
        if bound.session_id:
            response.delete_cookie(settings.session_cookie, path="/", domain=settings.cookie_domain)
    elif not session_mutation.is_noop:
        if not session_id:
            session_id = secrets.token_urlsafe(32)
        await runtime.store.save(session_id, updated.to_dict(), settings.session_ttl_seconds)
        if session_id != bound.session_id:
            response.set_cookie(
                settings.session_cookie,
                session_id,
                max_age=settings.session_ttl_seconds,
                path="/",
                domain=settings.cookie_domain,
                secure=settings.cookie_secure,
                httponly=True,
                samesite="lax",
            )

    for name in cookie_mutation.clear:
        if name == settings.session_cookie:
            continue
        response.delete_cookie(name, path="/", domain=settings.cookie_domain)
    for name, value in cookie_mutation.values.items():
        response.set_cookie(
            name,
            value,
            max_age=cookie_mutation.max_age or settings.session_ttl_seconds,
            path="/",
            domain=settings.cookie_domain,
            secure=settings.cookie_secure,
            httponly=name in (settings.token_cookie, settings.session_cookie),
            samesite="lax",
        )
    bound.session_id = session_id
    bound.ctx.session = updated
