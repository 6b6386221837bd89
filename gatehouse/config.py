from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from gatehouse.logging import get_logger

logger = get_logger(__name__)


class SessionBackend(str, Enum):
    """Where identity sessions are held between requests."""

    MEMORY = "memory"
    REDIS = "redis"


class LoginVersion(str, Enum):
    """Registered provider version identifiers."""

    PASSWORD = "password"
    OIDC = "oidc"
    OPEN = "open"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _split_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    """Runtime settings for the authentication gateway."""

    model_config = ConfigDict(extra="ignore")

    site_url: str = env_field("http://localhost:8000", "SITE_URL")
    login_page_path: str = env_field("/login", "LOGIN_PAGE_PATH")
    login_version: str = env_field(LoginVersion.PASSWORD.value, "LOGIN_VERSION")
    fallback_login_version: str = env_field(
        LoginVersion.OPEN.value, "FALLBACK_LOGIN_VERSION"
    )
    default_owner_id: str = env_field("0", "DEFAULT_OWNER_ID")
    multiple_owner: bool = env_field(False, "MULTIPLE_OWNER")
    # "user:secret,user2:secret2"; a secret may be an argon2 hash
    accounts: str = env_field("", "ACCOUNTS")

    session_secret: str | None = env_field(None, "SESSION_SECRET", validate_default=True)
    session_ttl_seconds: int = env_field(
        86400, "SESSION_TTL_SECONDS", description="Identity session and cookie lifetime"
    )
    session_backend: SessionBackend = env_field(SessionBackend.MEMORY, "SESSION_BACKEND")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")

    session_cookie: str = env_field("session_id", "SESSION_COOKIE")
    user_cookie: str = env_field("bk_user", "USER_COOKIE")
    owner_cookie: str = env_field("http_scheme_supplier_account", "OWNER_COOKIE")
    token_cookie: str = env_field("bk_token", "TOKEN_COOKIE")
    cookie_secure: bool = env_field(False, "COOKIE_SECURE")
    cookie_domain: str | None = env_field(None, "COOKIE_DOMAIN")

    # OIDC authorization-code provider
    oidc_issuer: str | None = env_field(None, "OIDC_ISSUER")
    oidc_client_id: str | None = env_field(None, "OIDC_CLIENT_ID")
    oidc_client_secret: str | None = env_field(None, "OIDC_CLIENT_SECRET")
    oidc_redirect_uri: str | None = env_field(None, "OIDC_REDIRECT_URI")
    oidc_auth_url: str | None = env_field(None, "OIDC_AUTH_URL")
    oidc_token_url: str | None = env_field(None, "OIDC_TOKEN_URL")
    oidc_userinfo_url: str | None = env_field(None, "OIDC_USERINFO_URL")
    oidc_logout_url: str | None = env_field(None, "OIDC_LOGOUT_URL")
    oidc_scopes: str = env_field("openid profile email", "OIDC_SCOPES")
    oidc_allowed_users: str = env_field("", "OIDC_ALLOWED_USERS")
    oidc_post_logout_redirect_uri: str | None = env_field(
        None, "OIDC_POST_LOGOUT_REDIRECT_URI"
    )

    # User directory
    directory_url: str | None = env_field(None, "DIRECTORY_URL")
    # "user:email:status,..." served when DIRECTORY_URL is unset
    directory_static_users: str = env_field("", "DIRECTORY_STATIC_USERS")
    upstream_timeout_seconds: float = env_field(10.0, "UPSTREAM_TIMEOUT_SECONDS")

    auth_exempt_prefixes: str = env_field("/auth,/healthz,/static", "AUTH_EXEMPT_PREFIXES")
    test_mode: bool = env_field(
        False, "TEST_MODE", description="Toggle deterministic behavior for tests"
    )

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("session_backend")
    @classmethod
    def _validate_backend(cls, value: SessionBackend) -> SessionBackend:
        return SessionBackend(value)

    @field_validator("site_url", "oidc_logout_url", "directory_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.rstrip("/")

    @field_validator("login_page_path")
    @classmethod
    def _validate_login_page(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("LOGIN_PAGE_PATH must start with '/'")
        return value

    @field_validator("session_ttl_seconds")
    @classmethod
    def _validate_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("SESSION_TTL_SECONDS must be positive")
        return value

    @field_validator("session_secret")
    @classmethod
    def _ensure_session_secret(cls, value: str | None) -> str:
        if value:
            return value
        # Tokens signed with a generated secret do not survive a restart
        logger.warning(
            "session_secret_generated",
            message="SESSION_SECRET is unset; generated an ephemeral secret",
        )
        return secrets.token_urlsafe(64)

    @property
    def oidc_enabled(self) -> bool:
        return all(
            [
                self.oidc_client_id,
                self.oidc_auth_url,
                self.oidc_token_url,
                self.oidc_userinfo_url,
            ]
        )

    @property
    def effective_post_logout_redirect_uri(self) -> str:
        return self.oidc_post_logout_redirect_uri or self.oidc_redirect_uri or self.site_url

    @property
    def site_netloc(self) -> str:
        return urlparse(self.site_url).netloc

    def account_table(self) -> dict[str, str]:
        """Parse ACCOUNTS into a username -> secret mapping.

        Argon2 hashes carry commas in their parameter block; pieces without
        a colon that follow an argon2 secret are joined back onto it.
        """
        entries: list[str] = []
        for piece in (self.accounts or "").split(","):
            if entries and ":" not in piece and entries[-1].partition(":")[2].startswith("$argon2"):
                entries[-1] = f"{entries[-1]},{piece}"
            else:
                entries.append(piece)
        table: dict[str, str] = {}
        for entry in (e.strip() for e in entries):
            if not entry:
                continue
            username, sep, secret = entry.partition(":")
            if not sep or not username.strip():
                logger.warning("account_entry_malformed", entry=username)
                continue
            table[username.strip()] = secret
        return table

    def allowed_users(self) -> list[str]:
        """Parse OIDC_ALLOWED_USERS. Entries may use the "user:password" form."""
        return [entry.partition(":")[0] for entry in _split_csv(self.oidc_allowed_users)]

    def exempt_prefixes(self) -> tuple[str, ...]:
        return tuple(_split_csv(self.auth_exempt_prefixes))


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
