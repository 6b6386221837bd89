import asyncio
import inspect
import os
import sys
from pathlib import Path

# Must be set before any gatehouse import builds settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-for-testing-only")
os.environ.setdefault("SESSION_BACKEND", "memory")
os.environ.setdefault("SITE_URL", "http://testserver")
os.environ.setdefault("ACCOUNTS", "alice:wonderland,carol:opensesame")
os.environ.setdefault(
    "DIRECTORY_STATIC_USERS",
    "alice:alice@example.com:active,carol:carol@example.com:active,"
    "bob:Bob@Example.com:active,mallory:mallory@example.com:locked",
)
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from gatehouse.config import Settings  # noqa: E402
from gatehouse.service.runtime import reset_runtime_for_tests  # noqa: E402

IDP = "https://idp.example.com"

OIDC_SETTINGS = {
    "oidc_issuer": IDP,
    "oidc_client_id": "gatehouse-client",
    "oidc_client_secret": "gatehouse-client-secret",
    "oidc_redirect_uri": "http://testserver/auth/sso/callback",
    "oidc_auth_url": f"{IDP}/authorize",
    "oidc_token_url": f"{IDP}/token",
    "oidc_userinfo_url": f"{IDP}/userinfo",
    "oidc_logout_url": f"{IDP}/logout",
}

OIDC_ENV = {
    "OIDC_ISSUER": IDP,
    "OIDC_CLIENT_ID": "gatehouse-client",
    "OIDC_CLIENT_SECRET": "gatehouse-client-secret",
    "OIDC_REDIRECT_URI": "http://testserver/auth/sso/callback",
    "OIDC_AUTH_URL": f"{IDP}/authorize",
    "OIDC_TOKEN_URL": f"{IDP}/token",
    "OIDC_USERINFO_URL": f"{IDP}/userinfo",
    "OIDC_LOGOUT_URL": f"{IDP}/logout",
}


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def make_settings():
    """Factory for explicit settings that ignore the process environment."""

    def _make(**overrides):
        values = {
            "session_secret": "unit-test-secret",
            "site_url": "http://testserver",
            "accounts": "alice:wonderland,carol:opensesame",
            "test_mode": True,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def sso_settings(make_settings):
    return make_settings(**OIDC_SETTINGS)


@pytest.fixture
def sso_env(monkeypatch):
    """Enable SSO for the app runtime used by integration tests."""
    for key, value in OIDC_ENV.items():
        monkeypatch.setenv(key, value)
    return reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
