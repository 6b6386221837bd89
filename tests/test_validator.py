"""Tests for per-request session validation with directory revalidation."""

import httpx
import pytest
import respx

from gatehouse.service.context import RequestContext
from gatehouse.service.directory import DirectoryRecord, HttpDirectoryClient, StaticDirectoryClient
from gatehouse.service.logout import LogoutCoordinator
from gatehouse.service.providers import PasswordFormProvider
from gatehouse.service.registry import ProviderRegistry
from gatehouse.service.tokens import VerificationTokenCodec
from gatehouse.service.validator import SessionValidator
from gatehouse.storage.models import IdentitySession

NOW = 1_800_000_000


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def codec(settings):
    return VerificationTokenCodec(settings.session_secret)


@pytest.fixture
def directory():
    return StaticDirectoryClient(
        [
            DirectoryRecord("alice", "alice@example.com", "active"),
            DirectoryRecord("alicia", "alicia@example.com", "active"),
        ]
    )


def _validator(settings, directory, codec):
    registry = ProviderRegistry(
        [PasswordFormProvider(settings)], default_version="password", fallback_version="open"
    )
    return SessionValidator(
        settings,
        directory,
        codec,
        LogoutCoordinator(settings, registry),
        clock=lambda: NOW,
    )


@pytest.fixture
def validator(settings, directory, codec):
    return _validator(settings, directory, codec)


def _ctx(settings, codec, username="alice", expiry=NOW + 3600, token=None):
    token = codec.encode(username, expiry) if token is None else token
    session = IdentitySession(username=username, owner_id="0", token_expiry=expiry, verification_token=token)
    return RequestContext(session=session, cookies={settings.token_cookie: token, settings.user_cookie: username})


class TestValidSession:
    async def test_active_account_is_authenticated(self, validator, settings, codec):
        result = await validator.is_authenticated(_ctx(settings, codec))
        assert result.authenticated
        assert result.identity.username == "alice"
        assert result.session.is_noop
        assert result.cookies.is_noop

    async def test_status_change_takes_effect_on_next_request(self, validator, settings, codec, directory):
        ctx = _ctx(settings, codec)
        assert (await validator.is_authenticated(ctx)).authenticated

        directory.set_status("alice", "locked")
        result = await validator.is_authenticated(ctx)

        assert not result.authenticated
        assert result.forced_logout
        assert ctx.session.apply(result.session).is_empty
        assert set(result.cookies.clear) == {
            settings.user_cookie,
            settings.owner_cookie,
            settings.token_cookie,
            settings.session_cookie,
        }


class TestRejectedSession:
    async def test_missing_token_cookie(self, validator, settings, codec):
        ctx = _ctx(settings, codec)
        ctx.cookies = {}
        result = await validator.is_authenticated(ctx)
        assert not result.authenticated
        assert result.reason == "missing_token"
        assert not result.forced_logout

    async def test_missing_owner(self, validator, settings, codec):
        ctx = _ctx(settings, codec)
        ctx.session.owner_id = ""
        assert not (await validator.is_authenticated(ctx)).authenticated

    async def test_expired_session(self, validator, settings, codec):
        result = await validator.is_authenticated(_ctx(settings, codec, expiry=NOW - 1))
        assert result.reason == "expired"

    async def test_forged_token(self, validator, settings, codec):
        result = await validator.is_authenticated(_ctx(settings, codec, token="0" * 64))
        assert result.reason == "token_mismatch"
        assert not result.forced_logout

    async def test_partial_match_is_not_enough(self, validator, settings, codec):
        # "ali" is a substring of both directory users but neither's exact name
        result = await validator.is_authenticated(_ctx(settings, codec, username="ali"))
        assert not result.authenticated
        assert result.reason == "account_missing"
        assert result.forced_logout

    async def test_email_identity_matches_record_email(self, validator, settings, codec):
        result = await validator.is_authenticated(_ctx(settings, codec, username="ALICE@example.com"))
        assert result.authenticated


class TestDirectoryOutage:
    async def test_directory_error_fails_closed_without_logout(self, make_settings, codec):
        settings = make_settings(directory_url="http://directory.local")
        directory = HttpDirectoryClient(settings.directory_url, timeout=1)
        validator = _validator(settings, directory, codec)

        with respx.mock() as router:
            router.get("http://directory.local/api/v3/usermgmt/users").mock(
                return_value=httpx.Response(500)
            )
            result = await validator.is_authenticated(_ctx(settings, codec))

        assert not result.authenticated
        assert result.reason == "directory_unavailable"
        assert not result.forced_logout

    async def test_directory_consulted_on_every_request(self, make_settings, codec):
        settings = make_settings(directory_url="http://directory.local")
        validator = _validator(settings, HttpDirectoryClient(settings.directory_url), codec)
        payload = {
            "result": True,
            "data": {"total": 1, "items": [{"user_id": "alice", "email": "alice@example.com", "status": "active"}]},
        }

        with respx.mock() as router:
            route = router.get("http://directory.local/api/v3/usermgmt/users").mock(
                return_value=httpx.Response(200, json=payload)
            )
            ctx = _ctx(settings, codec)
            for _ in range(3):
                assert (await validator.is_authenticated(ctx)).authenticated

        assert route.call_count == 3
        assert route.calls.last.request.url.params["search"] == "alice"
        assert route.calls.last.request.url.params["limit"] == "10"

