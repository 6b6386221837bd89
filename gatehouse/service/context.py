from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from gatehouse.storage.models import IdentitySession, SessionMutation


@dataclass(frozen=True)
class CookieMutation:
    """Cookies to write (``values``) and cookies to expire (``clear``)."""

    values: Dict[str, str] = field(default_factory=dict)
    clear: Tuple[str, ...] = ()
    max_age: Optional[int] = None

    @property
    def is_noop(self) -> bool:
        return not (self.values or self.clear)


@dataclass
class RequestContext:
    """The parts of an inbound request the authentication core reads.

    Built by the web layer; the core never touches the framework request.
    """

    session: IdentitySession = field(default_factory=IdentitySession)
    cookies: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    form: Mapping[str, str] = field(default_factory=dict)
    url: str = ""
    path: str = "/"

    def param(self, name: str) -> str:
        return (self.query.get(name) or self.form.get(name) or "").strip()


@dataclass(frozen=True)
class IdentityClaims:
    """Who a provider says the caller is."""

    username: str
    email: str = ""
    display_name: str = ""
    phone: str = ""
    avatar_url: str = ""
    external_subject: str = ""


__all__ = [
    "CookieMutation",
    "IdentityClaims",
    "RequestContext",
    "SessionMutation",
]
