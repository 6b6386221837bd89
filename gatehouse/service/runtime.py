from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from gatehouse.config import SessionBackend, Settings, get_settings, reset_settings_cache
from gatehouse.logging import get_logger
from gatehouse.service.directory import (
    DirectoryClient,
    DirectoryRecord,
    HttpDirectoryClient,
    StaticDirectoryClient,
)
from gatehouse.service.gateway import AuthGateway
from gatehouse.service.logout import LogoutCoordinator
from gatehouse.service.providers import OpenFallbackProvider, PasswordFormProvider, SSOProvider
from gatehouse.service.registry import ProviderRegistry
from gatehouse.service.sessions import LoginCounter, SessionEstablisher
from gatehouse.service.sso import SSOHandshakeEngine
from gatehouse.service.tokens import VerificationTokenCodec
from gatehouse.service.validator import SessionValidator
from gatehouse.storage.memory import MemorySessionStore
from gatehouse.storage.redis_cache import RedisSessionStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


def build_directory(settings: Settings) -> DirectoryClient:
    if settings.directory_url:
        return HttpDirectoryClient(
            settings.directory_url,
            owner_id=settings.default_owner_id,
            timeout=settings.upstream_timeout_seconds,
        )
    if settings.directory_static_users:
        return StaticDirectoryClient.from_config(settings.directory_static_users)
    # Without a directory every configured account is treated as active
    names = list(settings.account_table()) + settings.allowed_users()
    return StaticDirectoryClient(DirectoryRecord(username=name) for name in dict.fromkeys(names))


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            session_backend=self.settings.session_backend.value,
            sso_enabled=self.settings.oidc_enabled,
            test_mode=self.settings.test_mode,
        )

        if self.settings.session_backend is SessionBackend.REDIS:
            self.store = RedisSessionStore(self.settings.redis_url)
            logger.info("runtime_store_initialized", store_type="redis", url=_mask_url_password(self.settings.redis_url))
        else:
            self.store = MemorySessionStore()
            logger.info("runtime_store_initialized", store_type="memory")

        self.directory = build_directory(self.settings)
        self.codec = VerificationTokenCodec(self.settings.session_secret or "")
        self.registry = ProviderRegistry(
            [
                PasswordFormProvider(self.settings),
                SSOProvider(self.settings),
                OpenFallbackProvider(self.settings),
            ],
            default_version=self.settings.login_version,
            fallback_version=self.settings.fallback_login_version,
        )
        self.login_counter = LoginCounter()
        self.establisher = SessionEstablisher(
            self.settings,
            self.directory,
            self.codec,
            post_login_hooks=(self.login_counter,),
        )
        self.logout = LogoutCoordinator(self.settings, self.registry)
        self.sso_engine = SSOHandshakeEngine(self.settings, self.establisher, self.logout)
        self.validator = SessionValidator(self.settings, self.directory, self.codec, self.logout)
        self.gateway = AuthGateway(
            self.registry, self.sso_engine, self.validator, self.logout, self.establisher
        )

    async def close(self) -> None:
        await self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
