"""Tests for the logout coordinator."""

from urllib.parse import parse_qs, urlparse

import pytest

from conftest import IDP, OIDC_SETTINGS
from gatehouse.service.context import RequestContext
from gatehouse.service.logout import LogoutCoordinator
from gatehouse.service.providers import OpenFallbackProvider, PasswordFormProvider, SSOProvider
from gatehouse.service.registry import ProviderRegistry
from gatehouse.storage.models import IdentitySession


def _coordinator(settings):
    registry = ProviderRegistry(
        [PasswordFormProvider(settings), SSOProvider(settings), OpenFallbackProvider(settings)],
        default_version="password",
        fallback_version="open",
    )
    return LogoutCoordinator(settings, registry)


@pytest.fixture
def coordinator(sso_settings):
    return _coordinator(sso_settings)


class TestBuildLogoutDestination:
    def test_sso_session_gets_end_session_url(self, coordinator):
        session = IdentitySession(username="bob@example.com", owner_id="0", id_token="abc.def+ghi/=")
        url = urlparse(coordinator.build_logout_destination(session))
        params = parse_qs(url.query)

        assert f"{url.scheme}://{url.netloc}{url.path}" == f"{IDP}/logout"
        assert params["id_token_hint"] == ["abc.def+ghi/="]
        assert params["post_logout_redirect_uri"] == ["http://testserver/auth/sso/callback"]

    def test_explicit_post_logout_redirect_preferred(self, make_settings):
        settings = make_settings(
            **OIDC_SETTINGS, oidc_post_logout_redirect_uri="http://testserver/goodbye?x=1&y=2"
        )
        url = _coordinator(settings).build_logout_destination(IdentitySession(id_token="t"))
        assert parse_qs(urlparse(url).query)["post_logout_redirect_uri"] == [
            "http://testserver/goodbye?x=1&y=2"
        ]

    def test_logout_endpoint_with_existing_query(self, make_settings):
        settings = make_settings(**{**OIDC_SETTINGS, "oidc_logout_url": f"{IDP}/logout?client_id=gh"})
        url = urlparse(_coordinator(settings).build_logout_destination(IdentitySession(id_token="idt")))
        params = parse_qs(url.query)

        assert url.path == "/logout"
        assert params["client_id"] == ["gh"]
        assert params["id_token_hint"] == ["idt"]
        assert params["post_logout_redirect_uri"] == ["http://testserver/auth/sso/callback"]

    def test_partial_sso_session_still_ends_upstream(self, coordinator):
        session = IdentitySession(id_token="only-token", external_subject="s-1")
        assert coordinator.build_logout_destination(session).startswith(f"{IDP}/logout?")

    def test_non_sso_session_gets_login_page(self, make_settings):
        coordinator = _coordinator(make_settings())
        url = coordinator.build_logout_destination(
            IdentitySession(username="alice", owner_id="0", provider_version="password")
        )
        assert url.startswith("http://testserver/login?c_url=")

    def test_no_logout_endpoint_configured(self, make_settings):
        settings = make_settings(**{**OIDC_SETTINGS, "oidc_logout_url": None})
        url = _coordinator(settings).build_logout_destination(IdentitySession(id_token="t"))
        assert url.startswith("http://testserver/auth/sso/login?c_url=")


class TestLogout:
    def test_destination_computed_before_clear(self, coordinator, sso_settings):
        session = IdentitySession(username="bob@example.com", owner_id="0", id_token="idt")
        outcome = coordinator.logout(RequestContext(session=session))

        assert "id_token_hint=idt" in outcome.logout_url
        assert outcome.session.clear
        assert session.apply(outcome.session).is_empty
        assert set(outcome.cookies.clear) == {
            sso_settings.user_cookie,
            sso_settings.owner_cookie,
            sso_settings.token_cookie,
            sso_settings.session_cookie,
        }

    def test_logout_without_session(self, coordinator):
        outcome = coordinator.logout(RequestContext())
        assert outcome.logout_url.startswith("http://testserver/auth/sso/login")
        assert outcome.session.clear
