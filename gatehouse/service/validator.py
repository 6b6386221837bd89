from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from gatehouse.config import Settings
from gatehouse.logging import get_logger
from gatehouse.service.context import CookieMutation, RequestContext
from gatehouse.service.directory import REVALIDATION_SEARCH_LIMIT, DirectoryClient, find_exact_match
from gatehouse.service.errors import UpstreamUnavailable
from gatehouse.service.logout import LogoutCoordinator
from gatehouse.service.tokens import VerificationTokenCodec
from gatehouse.storage.models import IdentitySession, SessionMutation

logger = get_logger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    authenticated: bool
    reason: str = ""
    identity: Optional[IdentitySession] = None
    session: SessionMutation = field(default_factory=SessionMutation)
    cookies: CookieMutation = field(default_factory=CookieMutation)

    @property
    def forced_logout(self) -> bool:
        return self.session.clear


class SessionValidator:
    """Per-request session check with live directory revalidation.

    A session is only as good as the directory says it is right now: an
    account locked after login loses access on its next request. Directory
    outages fail closed without destroying the session.
    """

    def __init__(
        self,
        settings: Settings,
        directory: DirectoryClient,
        codec: VerificationTokenCodec,
        logout: LogoutCoordinator,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.directory = directory
        self.codec = codec
        self.logout = logout
        self.clock = clock

    async def is_authenticated(self, ctx: RequestContext) -> ValidationResult:
        token = ctx.cookies.get(self.settings.token_cookie)
        if not token:
            return ValidationResult(False, reason="missing_token")

        session = ctx.session
        if not session.has_identity:
            return ValidationResult(False, reason="no_identity")
        if session.token_expiry <= int(self.clock()):
            logger.info("session_token_expired", username=session.username)
            return ValidationResult(False, reason="expired")
        if not self.codec.matches(token, session.username, session.token_expiry):
            logger.warning("session_token_mismatch", username=session.username)
            return ValidationResult(False, reason="token_mismatch")

        try:
            result = await self.directory.search(session.username, REVALIDATION_SEARCH_LIMIT)
        except UpstreamUnavailable as exc:
            logger.error("session_revalidation_unavailable", username=session.username, error=exc.message)
            return ValidationResult(False, reason="directory_unavailable")

        record = find_exact_match(result.records, session.username)
        if record is None or not record.is_active:
            logger.warning(
                "session_forced_logout",
                username=session.username,
                status=record.status if record else "missing",
            )
            session_mutation, cookie_mutation = self.logout.clear_all()
            return ValidationResult(
                False,
                reason="account_missing" if record is None else "account_inactive",
                session=session_mutation,
                cookies=cookie_mutation,
            )

        return ValidationResult(True, identity=session)
