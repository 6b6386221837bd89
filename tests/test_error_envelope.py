"""Tests for the error envelope and exception-to-response mapping.

Error responses share one shape:
{
    "status": "error",
    "error": {"code": "<stable_code>", "message": "<text>", "details": <object|null>},
    "request_id": "<id>"
}
"""

import json

import pytest
from pydantic import ValidationError

from gatehouse.api.error_handling import _STATUS_TO_CODE, _error_code_for_status, error_response
from gatehouse.api.schemas import Envelope, ErrorBody
from gatehouse.logging import set_correlation_id
from gatehouse.service.errors import (
    AuthenticationError,
    ConfigurationError,
    DirectoryUnavailable,
    DisabledAccount,
    ProtocolError,
    ProviderNotFound,
    UnknownAccount,
    UpstreamUnavailable,
)


class TestErrorBody:
    def test_known_code_accepted(self):
        body = ErrorBody(code="unknown_account", message="who are you")
        assert body.details is None

    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="short and stout")


class TestEnvelope:
    def test_request_id_follows_correlation_id(self):
        set_correlation_id("req-123")
        assert Envelope(status="ok").request_id == "req-123"

    def test_status_restricted(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")


class TestErrorTaxonomy:
    @pytest.mark.parametrize(
        "exc_type, status, code",
        [
            (AuthenticationError, 401, "unauthorized"),
            (ProtocolError, 401, "protocol_error"),
            (UnknownAccount, 403, "unknown_account"),
            (DisabledAccount, 403, "disabled_account"),
            (ConfigurationError, 500, "configuration_error"),
            (ProviderNotFound, 500, "configuration_error"),
            (UpstreamUnavailable, 503, "upstream_unavailable"),
            (DirectoryUnavailable, 503, "upstream_unavailable"),
        ],
    )
    def test_status_and_code(self, exc_type, status, code):
        exc = exc_type("boom")
        assert exc.status_code == status
        assert exc.error_code == code

    def test_overrides(self):
        exc = ProtocolError("bad", status_code=400, error_code="validation_error", detail={"a": 1})
        assert (exc.status_code, exc.error_code, exc.detail) == (400, "validation_error", {"a": 1})


class TestErrorResponse:
    def test_envelope_shape(self):
        response = error_response(403, "not active", {"status": "locked"}, code="disabled_account")
        body = json.loads(response.body)
        assert response.status_code == 403
        assert body["status"] == "error"
        assert body["error"] == {
            "code": "disabled_account",
            "message": "not active",
            "details": {"status": "locked"},
        }
        assert body["request_id"]

    def test_code_derived_from_status(self):
        body = json.loads(error_response(503, "down").body)
        assert body["error"]["code"] == "upstream_unavailable"
        assert _error_code_for_status(418) == "server_error"
        assert _STATUS_TO_CODE[401] == "unauthorized"

    def test_server_error_messages_sanitized(self):
        body = json.loads(error_response(500, "failed with client_secret=hunter2").body)
        assert "hunter2" not in body["error"]["message"]
