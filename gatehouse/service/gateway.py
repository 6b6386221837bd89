from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from gatehouse.logging import get_logger
from gatehouse.service.context import RequestContext
from gatehouse.service.errors import ConfigurationError, ValidationError
from gatehouse.service.logout import LogoutCoordinator, LogoutOutcome
from gatehouse.service.registry import ProviderRegistry
from gatehouse.service.sessions import EstablishOutcome, SessionEstablisher
from gatehouse.service.sso import CallbackOutcome, SSOHandshakeEngine
from gatehouse.service.validator import SessionValidator, ValidationResult
from gatehouse.storage.models import SessionMutation

logger = get_logger(__name__)


@dataclass(frozen=True)
class LoginRedirect:
    provider: str
    redirect_url: str
    session: SessionMutation = field(default_factory=SessionMutation)


class AuthGateway:
    """Single entry point the web layer calls for every authentication decision."""

    def __init__(
        self,
        registry: ProviderRegistry,
        engine: SSOHandshakeEngine,
        validator: SessionValidator,
        logout_coordinator: LogoutCoordinator,
        establisher: SessionEstablisher,
    ) -> None:
        self.registry = registry
        self.engine = engine
        self.validator = validator
        self.logout_coordinator = logout_coordinator
        self.establisher = establisher

    async def is_authenticated(self, ctx: RequestContext) -> ValidationResult:
        return await self.validator.is_authenticated(ctx)

    def login_redirect_url(self, ctx: RequestContext) -> str:
        return self.registry.resolve().build_login_redirect(ctx)

    def begin_login(self, ctx: RequestContext, requested_version: Optional[str] = None) -> LoginRedirect:
        provider = self.registry.resolve(requested_version or None)
        if provider.version == self.registry.sso_version:
            if not provider.is_configured():
                logger.warning("sso_login_requested_but_unconfigured", requested=requested_version)
                raise ConfigurationError(
                    "SSO login is not configured",
                    detail={"provider": provider.version},
                )
            step = self.engine.begin(ctx)
            return LoginRedirect(provider.version, step.redirect_url, step.session)
        return LoginRedirect(provider.version, provider.build_login_redirect(ctx))

    async def handle_sso_callback(self, ctx: RequestContext) -> CallbackOutcome:
        return await self.engine.handle_callback(ctx)

    def logout(self, ctx: RequestContext) -> LogoutOutcome:
        return self.logout_coordinator.logout(ctx)

    async def password_login(
        self, ctx: RequestContext, requested_version: Optional[str] = None
    ) -> EstablishOutcome:
        """Form login for the non-SSO providers."""
        provider = self.registry.resolve(requested_version or self.registry.default_version)
        if provider.version == self.registry.sso_version:
            raise ValidationError(
                "this login method requires the SSO flow",
                detail={"login_url": provider.build_login_redirect(ctx)},
            )
        logger.info("form_login_attempt", provider=provider.version)
        return await self.establisher.establish(ctx, provider)
