from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from gatehouse.logging import get_correlation_id

_VALID_ERROR_CODES = frozenset(
    {
        "validation_error",
        "unauthorized",
        "protocol_error",
        "unknown_account",
        "disabled_account",
        "forbidden",
        "not_found",
        "configuration_error",
        "upstream_unavailable",
        "server_error",
    }
)


class ErrorBody(BaseModel):
    """Error envelope body with a stable code value."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: get_correlation_id() or str(uuid4()))


class LogoutResponse(BaseModel):
    logout_url: str


class LoginStatusResponse(BaseModel):
    result: bool
    username: Optional[str] = None


class IdentityResponse(BaseModel):
    username: str
    owner_id: str
    display_name: str = ""
    email: str = ""
    role: str = "user"
    provider: str = ""
    multi_tenant: bool = False
    token_expiry: int = 0
