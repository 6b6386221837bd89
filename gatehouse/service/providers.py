from __future__ import annotations

import hmac
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple
from urllib.parse import urlencode

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerifyMismatchError

from gatehouse.config import LoginVersion, Settings
from gatehouse.logging import get_logger
from gatehouse.service.context import IdentityClaims, RequestContext

SSO_LOGIN_PATH = "/auth/sso/login"


@dataclass(frozen=True)
class KnownAccount:
    username: str
    display_name: str = ""


AuthResult = Tuple[Optional[IdentityClaims], bool]


class Provider(Protocol):
    """A login method the registry can hand a request to."""

    version: str

    def is_configured(self) -> bool:
        ...

    async def authenticate(self, ctx: RequestContext) -> AuthResult:
        ...

    def build_login_redirect(self, ctx: RequestContext) -> str:
        ...

    def list_known_accounts(self) -> Tuple[KnownAccount, ...]:
        ...


def login_url(site_url: str, path: str, current_url: str = "") -> str:
    """Build ``{site}{path}?c_url=...`` so the user lands back where they started."""
    target = current_url or site_url
    return f"{site_url}{path}?{urlencode({'c_url': target})}"


class PasswordFormProvider:
    """Username/password form checked against the configured account table."""

    version = LoginVersion.PASSWORD.value

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self.logger = get_logger(__name__)

    def is_configured(self) -> bool:
        return bool(self.settings.account_table())

    def _verify_secret(self, username: str, stored: str, presented: str) -> bool:
        if stored.startswith("$argon2"):
            try:
                return self._pwd_hasher.verify(stored, presented)
            except (InvalidHash, VerifyMismatchError):
                self.logger.warning("password_verification_failed", username=username)
                return False
        return hmac.compare_digest(stored.encode("utf-8"), presented.encode("utf-8"))

    async def authenticate(self, ctx: RequestContext) -> AuthResult:
        username = (ctx.form.get("username") or "").strip()
        password = ctx.form.get("password") or ""
        if not username or not password:
            return None, False
        stored = self.settings.account_table().get(username)
        if stored is None:
            self.logger.warning("password_login_unknown_user", username=username)
            return None, False
        if not self._verify_secret(username, stored, password):
            self.logger.warning("password_login_rejected", username=username)
            return None, False
        return IdentityClaims(username=username, display_name=username), True

    def build_login_redirect(self, ctx: RequestContext) -> str:
        return login_url(self.settings.site_url, self.settings.login_page_path, ctx.url)

    def list_known_accounts(self) -> Tuple[KnownAccount, ...]:
        return tuple(KnownAccount(name, name) for name in self.settings.account_table())


class SSOProvider:
    """OIDC authorization-code login.

    The handshake itself lives in the SSO engine; this provider only
    re-validates SSO state already bound to the session and says where the
    handshake starts.
    """

    version = LoginVersion.OIDC.value

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def is_configured(self) -> bool:
        return self.settings.oidc_enabled

    async def authenticate(self, ctx: RequestContext) -> AuthResult:
        session = ctx.session
        if not session.username or not session.access_token:
            return None, False
        if session.token_expiry <= int(time.time()):
            return None, False
        if ctx.cookies.get(self.settings.user_cookie) != session.username:
            return None, False
        claims = IdentityClaims(
            username=session.username,
            email=session.email,
            display_name=session.display_name,
            external_subject=session.external_subject,
        )
        return claims, True

    def build_login_redirect(self, ctx: RequestContext) -> str:
        return login_url(self.settings.site_url, SSO_LOGIN_PATH, ctx.url)

    def list_known_accounts(self) -> Tuple[KnownAccount, ...]:
        return tuple(KnownAccount(name, name) for name in self.settings.allowed_users())


class OpenFallbackProvider:
    """Legacy open login: trusts a listed username without a secret.

    Only reachable when configured as the default or fallback version.
    """

    version = LoginVersion.OPEN.value

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.logger = get_logger(__name__)

    def is_configured(self) -> bool:
        return True

    async def authenticate(self, ctx: RequestContext) -> AuthResult:
        username = (ctx.form.get("username") or ctx.cookies.get(self.settings.user_cookie) or "").strip()
        if not username:
            return None, False
        if username not in self.settings.account_table():
            self.logger.warning("open_login_unknown_user", username=username)
            return None, False
        return IdentityClaims(username=username, display_name=username), True

    def build_login_redirect(self, ctx: RequestContext) -> str:
        return login_url(self.settings.site_url, self.settings.login_page_path, ctx.url)

    def list_known_accounts(self) -> Tuple[KnownAccount, ...]:
        return tuple(KnownAccount(name, name) for name in self.settings.account_table())
