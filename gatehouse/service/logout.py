from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from gatehouse.config import Settings
from gatehouse.logging import get_logger
from gatehouse.service.context import CookieMutation, RequestContext
from gatehouse.service.registry import ProviderRegistry
from gatehouse.storage.models import IdentitySession, SessionMutation

logger = get_logger(__name__)


def _with_params(url: str, params: dict) -> str:
    """Append ``params`` to ``url``, keeping any query it already carries."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query = [(k, v) for k, v in query if k not in params] + list(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass(frozen=True)
class LogoutOutcome:
    logout_url: str
    session: SessionMutation
    cookies: CookieMutation


class LogoutCoordinator:
    """Ends sessions locally and, for SSO sessions, at the identity provider."""

    def __init__(self, settings: Settings, registry: ProviderRegistry) -> None:
        self.settings = settings
        self.registry = registry

    def identity_cookie_names(self) -> Tuple[str, ...]:
        return (
            self.settings.user_cookie,
            self.settings.owner_cookie,
            self.settings.token_cookie,
            self.settings.session_cookie,
        )

    def plain_login_url(self, session: IdentitySession | None = None) -> str:
        requested = session.provider_version if session is not None else None
        provider = self.registry.resolve(requested or None)
        return provider.build_login_redirect(RequestContext(url=self.settings.site_url))

    def build_logout_destination(self, session: IdentitySession) -> str:
        """Where the browser goes after logout.

        An SSO session gets the provider's end-session endpoint with the
        id_token hint so the upstream session ends too; anything else goes to
        the plain login page.
        """
        if session.id_token and self.settings.oidc_logout_url:
            return _with_params(
                self.settings.oidc_logout_url,
                {
                    "id_token_hint": session.id_token,
                    "post_logout_redirect_uri": self.settings.effective_post_logout_redirect_uri,
                },
            )
        return self.plain_login_url(session)

    def clear_all(self) -> Tuple[SessionMutation, CookieMutation]:
        return SessionMutation(clear=True), CookieMutation(clear=self.identity_cookie_names())

    def logout(self, ctx: RequestContext) -> LogoutOutcome:
        # Destination must be computed before the id_token is cleared
        destination = self.build_logout_destination(ctx.session)
        session_mutation, cookie_mutation = self.clear_all()
        logger.info(
            "logout_completed",
            username=ctx.session.username or None,
            upstream_logout=bool(ctx.session.id_token and self.settings.oidc_logout_url),
        )
        return LogoutOutcome(
            logout_url=destination, session=session_mutation, cookies=cookie_mutation
        )
