from __future__ import annotations

import asyncio
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Set, Tuple
from urllib.parse import urlparse

from gatehouse.config import Settings
from gatehouse.logging import get_logger
from gatehouse.service.context import CookieMutation, IdentityClaims, RequestContext
from gatehouse.service.directory import (
    REVALIDATION_SEARCH_LIMIT,
    DirectoryClient,
    DirectoryRecord,
    find_exact_match,
)
from gatehouse.service.errors import AuthenticationError, DisabledAccount, UnknownAccount
from gatehouse.service.providers import Provider
from gatehouse.service.tokens import VerificationTokenCodec
from gatehouse.storage.models import IdentitySession, SessionMutation

logger = get_logger(__name__)

PostLoginHook = Callable[[IdentitySession], Awaitable[None]]


def safe_next_url(candidate: str | None, site_url: str) -> str:
    """Return ``candidate`` if it stays on this site, else an empty string.

    Relative paths are accepted (but not scheme-relative ``//host``);
    absolute URLs must share the site's scheme and host.
    """
    if not candidate:
        return ""
    candidate = candidate.strip()
    if candidate.startswith("/") and not candidate.startswith("//") and "\\" not in candidate:
        return candidate
    parsed = urlparse(candidate)
    site = urlparse(site_url)
    if parsed.scheme in {"http", "https"} and parsed.netloc and parsed.netloc == site.netloc:
        if parsed.scheme == site.scheme:
            return candidate
    return ""


class LoginCounter:
    """Post-login hook that tallies successful logins per user."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.counts: Counter[str] = Counter()

    async def __call__(self, session: IdentitySession) -> None:
        with self._lock:
            self.counts[session.username] += 1


@dataclass(frozen=True)
class EstablishOutcome:
    redirect_url: str
    session: SessionMutation
    cookies: CookieMutation
    claims: IdentityClaims


@dataclass
class SessionEstablisher:
    """Turns verified identity claims into a bound identity session.

    Shared by every provider: the directory decides whether the account may
    log in, the codec binds the session to the token cookie, and optional
    post-login hooks run once the outcome is fixed.
    """

    settings: Settings
    directory: DirectoryClient
    codec: VerificationTokenCodec
    post_login_hooks: Sequence[PostLoginHook] = ()
    clock: Callable[[], float] = time.time
    _pending: Set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    async def lookup(self, username: str) -> Optional[DirectoryRecord]:
        """Exact directory match for ``username``; raises ``DirectoryUnavailable`` on failure."""
        result = await self.directory.search(username, REVALIDATION_SEARCH_LIMIT)
        return find_exact_match(result.records, username)

    def build(
        self,
        claims: IdentityClaims,
        provider_version: str,
        *,
        access_token: str = "",
        id_token: str = "",
    ) -> Tuple[SessionMutation, CookieMutation]:
        now = int(self.clock())
        expiry = now + self.settings.session_ttl_seconds
        token = self.codec.encode(claims.username, expiry)
        owner_id = self.settings.default_owner_id
        values = {
            "username": claims.username,
            "owner_id": owner_id,
            "display_name": claims.display_name or claims.username,
            "email": claims.email,
            "phone": claims.phone,
            "avatar_url": claims.avatar_url,
            "role": "user",
            "multi_tenant": self.settings.multiple_owner,
            "provider_version": provider_version,
            "external_subject": claims.external_subject,
            "access_token": access_token,
            "id_token": id_token,
            "token_expiry": expiry,
            "verification_token": token,
            "login_at": now,
        }
        cookies = CookieMutation(
            values={
                self.settings.user_cookie: claims.username,
                self.settings.owner_cookie: owner_id,
                self.settings.token_cookie: token,
            },
            max_age=self.settings.session_ttl_seconds,
        )
        return SessionMutation(values=values, clear=True, rotate=True), cookies

    async def establish(self, ctx: RequestContext, provider: Provider) -> EstablishOutcome:
        """Authenticate through ``provider`` and bind the result to the session."""
        claims, ok = await provider.authenticate(ctx)
        if not ok or claims is None:
            raise AuthenticationError(
                "invalid credentials", detail={"login_url": provider.build_login_redirect(ctx)}
            )
        record = await self.lookup(claims.username)
        if record is None:
            logger.warning("login_rejected_unknown_account", username=claims.username)
            raise UnknownAccount("account is not registered in the directory")
        if not record.is_active:
            logger.warning("login_rejected_disabled_account", username=claims.username, status=record.status)
            raise DisabledAccount("account is not active", detail={"status": record.status})
        if record.email and not claims.email:
            claims = IdentityClaims(
                username=claims.username,
                email=record.email,
                display_name=claims.display_name,
                phone=claims.phone,
                avatar_url=claims.avatar_url,
                external_subject=claims.external_subject,
            )
        session, cookies = self.build(claims, provider.version)
        redirect_url = safe_next_url(ctx.param("c_url"), self.settings.site_url) or self.settings.site_url
        logger.info("session_established", username=claims.username, provider=provider.version)
        self.run_post_login_hooks(ctx.session.apply(session))
        return EstablishOutcome(redirect_url=redirect_url, session=session, cookies=cookies, claims=claims)

    def run_post_login_hooks(self, session: IdentitySession) -> List[asyncio.Task]:
        """Schedule hooks without awaiting them; failures are logged only."""
        tasks = []
        for hook in self.post_login_hooks:
            task = asyncio.create_task(hook(session))
            self._pending.add(task)
            task.add_done_callback(self._hook_finished)
            tasks.append(task)
        return tasks

    def _hook_finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "post_login_hook_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
