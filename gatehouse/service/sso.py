from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from gatehouse.config import LoginVersion, Settings
from gatehouse.logging import get_logger
from gatehouse.service.context import CookieMutation, IdentityClaims, RequestContext
from gatehouse.service.errors import (
    ConfigurationError,
    DisabledAccount,
    ProtocolError,
    ServiceError,
    UnknownAccount,
    UpstreamUnavailable,
)
from gatehouse.service.logout import LogoutCoordinator
from gatehouse.service.sessions import SessionEstablisher, safe_next_url
from gatehouse.storage.models import IdentitySession, SessionMutation

logger = get_logger(__name__)


class HandshakeState(str, Enum):
    AWAITING_CALLBACK = "awaiting_callback"
    FAILED = "failed"
    REJECTED_UNKNOWN_USER = "rejected_unknown_user"
    REJECTED_DISABLED_USER = "rejected_disabled_user"
    ESTABLISHED = "established"


@dataclass(frozen=True)
class HandshakeStep:
    state: HandshakeState
    redirect_url: str
    session: SessionMutation


@dataclass(frozen=True)
class CallbackOutcome:
    state: HandshakeState
    session: SessionMutation
    cookies: CookieMutation = field(default_factory=CookieMutation)
    redirect_url: Optional[str] = None
    error: Optional[ServiceError] = None
    error_context: Dict[str, str] = field(default_factory=dict)

    @property
    def established(self) -> bool:
        return self.state is HandshakeState.ESTABLISHED


def canonical_username(claims: Dict[str, Any]) -> str:
    """First non-empty of email, preferred_username, name; trimmed and lower-cased."""
    for key in ("email", "preferred_username", "name"):
        value = claims.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
    return ""


class SSOHandshakeEngine:
    """Runs the OIDC authorization-code round trip.

    ``begin`` stores a single-use nonce and returns the authorization
    redirect. ``handle_callback`` always consumes that nonce and checks it
    before any call to the identity provider, then exchanges the code,
    fetches claims and asks the directory whether the account may log in.
    """

    def __init__(
        self,
        settings: Settings,
        establisher: SessionEstablisher,
        logout: LogoutCoordinator,
    ) -> None:
        self.settings = settings
        self.establisher = establisher
        self.logout = logout

    def begin(self, ctx: RequestContext) -> HandshakeStep:
        if not self.settings.oidc_enabled:
            raise ConfigurationError("SSO is not configured")
        nonce = secrets.token_urlsafe(32)
        next_url = safe_next_url(ctx.param("c_url"), self.settings.site_url)
        params = {
            "response_type": "code",
            "client_id": self.settings.oidc_client_id,
            "redirect_uri": self.settings.oidc_redirect_uri or "",
            "scope": self.settings.oidc_scopes,
            "state": nonce,
        }
        auth_url = self.settings.oidc_auth_url or ""
        separator = "&" if "?" in auth_url else "?"
        logger.info("sso_handshake_started", has_next_url=bool(next_url))
        return HandshakeStep(
            state=HandshakeState.AWAITING_CALLBACK,
            redirect_url=f"{auth_url}{separator}{urlencode(params)}",
            session=SessionMutation(values={"sso_nonce": nonce, "next_url": next_url}),
        )

    async def handle_callback(self, ctx: RequestContext) -> CallbackOutcome:
        session = ctx.session
        expected_nonce = session.sso_nonce
        next_url = session.next_url
        consume = SessionMutation(drop=("sso_nonce", "next_url"))

        provider_error = ctx.query.get("error")
        if provider_error:
            return self._fail(
                ctx,
                consume,
                ProtocolError(
                    "identity provider returned an error",
                    detail={
                        "error": provider_error,
                        "error_description": ctx.query.get("error_description", ""),
                    },
                ),
            )
        code = (ctx.query.get("code") or "").strip()
        if not code:
            return self._fail(ctx, consume, ProtocolError("authorization code is missing"))
        state = ctx.query.get("state") or ""
        if not expected_nonce or not hmac.compare_digest(
            state.encode("utf-8"), expected_nonce.encode("utf-8")
        ):
            logger.warning("sso_nonce_mismatch", nonce_present=bool(expected_nonce))
            return self._fail(ctx, consume, ProtocolError("state parameter does not match"))

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.upstream_timeout_seconds, follow_redirects=False
            ) as client:
                tokens = await self._exchange_code(client, code)
                raw_claims = await self._fetch_claims(client, tokens["access_token"])
        except ServiceError as exc:
            return self._fail(ctx, consume, exc)

        username = canonical_username(raw_claims)
        if not username:
            return self._fail(ctx, consume, ProtocolError("identity claims carry no usable username"))
        id_token = str(tokens.get("id_token") or "")

        try:
            record = await self.establisher.lookup(username)
        except UpstreamUnavailable as exc:
            return self._fail(ctx, consume, exc)

        if record is None or not record.is_active:
            minimal = SessionMutation(
                values={"id_token": id_token, "external_subject": username}, clear=True
            )
            if record is None:
                outcome_state, error = HandshakeState.REJECTED_UNKNOWN_USER, UnknownAccount(
                    f"user {username} is not registered", detail={"username": username}
                )
            else:
                outcome_state, error = HandshakeState.REJECTED_DISABLED_USER, DisabledAccount(
                    f"user {username} is not active",
                    detail={"username": username, "status": record.status},
                )
            logger.warning("sso_login_rejected", username=username, state=outcome_state.value)
            return self._fail(
                ctx,
                minimal,
                error,
                state=outcome_state,
                cookies=CookieMutation(
                    clear=(
                        self.settings.user_cookie,
                        self.settings.owner_cookie,
                        self.settings.token_cookie,
                    )
                ),
            )

        claims = IdentityClaims(
            username=username,
            email=str(raw_claims.get("email") or record.email or ""),
            display_name=str(raw_claims.get("name") or username),
            phone=str(raw_claims.get("phone_number") or ""),
            avatar_url=str(raw_claims.get("picture") or ""),
            external_subject=username,
        )
        mutation, cookies = self.establisher.build(
            claims,
            LoginVersion.OIDC.value,
            access_token=str(tokens["access_token"]),
            id_token=id_token,
        )
        logger.info("sso_login_established", username=username)
        self.establisher.run_post_login_hooks(session.apply(mutation))
        return CallbackOutcome(
            state=HandshakeState.ESTABLISHED,
            session=mutation,
            cookies=cookies,
            redirect_url=next_url or self.settings.site_url,
        )

    async def _exchange_code(self, client: httpx.AsyncClient, code: str) -> Dict[str, Any]:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.oidc_redirect_uri or "",
            "client_id": self.settings.oidc_client_id or "",
            "client_secret": self.settings.oidc_client_secret or "",
        }
        response = await self._call(
            "token",
            client.post(
                self.settings.oidc_token_url or "",
                data=data,
                headers={"Accept": "application/json"},
            ),
        )
        payload = self._json_object("token", response)
        if not payload.get("access_token"):
            logger.error("sso_token_missing_access_token")
            raise ProtocolError("token response carries no access token")
        return payload

    async def _fetch_claims(self, client: httpx.AsyncClient, access_token: str) -> Dict[str, Any]:
        response = await self._call(
            "userinfo",
            client.get(
                self.settings.oidc_userinfo_url or "",
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            ),
        )
        return self._json_object("userinfo", response)

    @staticmethod
    async def _call(step: str, request) -> httpx.Response:
        try:
            response = await request
        except httpx.HTTPError as exc:
            logger.error("sso_upstream_request_failed", step=step, error_type=type(exc).__name__, error=str(exc))
            raise UpstreamUnavailable(f"identity provider {step} endpoint is unreachable") from exc
        if response.status_code >= 500:
            logger.error("sso_upstream_server_error", step=step, status_code=response.status_code)
            raise UpstreamUnavailable(
                f"identity provider {step} endpoint failed",
                detail={"status_code": response.status_code},
            )
        if response.status_code != 200:
            logger.warning("sso_upstream_rejected", step=step, status_code=response.status_code)
            raise ProtocolError(
                f"identity provider rejected the {step} request",
                detail={"status_code": response.status_code},
            )
        return response

    @staticmethod
    def _json_object(step: str, response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("sso_response_parse_error", step=step, error=str(exc))
            raise ProtocolError(f"identity provider {step} response is not JSON") from exc
        if not isinstance(payload, dict):
            raise ProtocolError(f"identity provider {step} response is not an object")
        return payload

    def _fail(
        self,
        ctx: RequestContext,
        mutation: SessionMutation,
        error: ServiceError,
        *,
        state: HandshakeState = HandshakeState.FAILED,
        cookies: Optional[CookieMutation] = None,
    ) -> CallbackOutcome:
        after: IdentitySession = ctx.session.apply(mutation)
        context = {
            "message": error.message,
            "logout_url": self.logout.build_logout_destination(after),
            "login_url": self.logout.plain_login_url(),
        }
        if state is HandshakeState.FAILED:
            logger.warning("sso_callback_failed", error_code=error.error_code, message=error.message)
        return CallbackOutcome(
            state=state,
            session=mutation,
            cookies=cookies or CookieMutation(),
            error=error,
            error_context=context,
        )
