from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class SessionMutation:
    """Changes to apply to the identity session bound to a request.

    ``clear`` wipes every field before ``values`` are written; ``drop`` resets
    individual fields; ``rotate`` asks the web layer to issue a fresh session id.
    """

    values: Dict[str, Any] = field(default_factory=dict)
    clear: bool = False
    drop: Tuple[str, ...] = ()
    rotate: bool = False

    @property
    def is_noop(self) -> bool:
        return not (self.values or self.clear or self.drop or self.rotate)


@dataclass
class IdentitySession:
    username: str = ""
    owner_id: str = ""
    display_name: str = ""
    email: str = ""
    phone: str = ""
    avatar_url: str = ""
    role: str = "user"
    multi_tenant: bool = False
    provider_version: str = ""
    # SSO sub-state
    external_subject: str = ""
    access_token: str = ""
    id_token: str = ""
    token_expiry: int = 0
    verification_token: str = ""
    # handshake scratch
    sso_nonce: str = ""
    next_url: str = ""
    login_at: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "IdentitySession":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def is_empty(self) -> bool:
        return self == IdentitySession()

    @property
    def has_identity(self) -> bool:
        return bool(self.username and self.owner_id)

    def apply(self, mutation: SessionMutation) -> "IdentitySession":
        base = IdentitySession() if mutation.clear else self
        if mutation.drop:
            defaults = IdentitySession()
            base = replace(base, **{name: getattr(defaults, name) for name in mutation.drop})
        if mutation.values:
            base = replace(base, **mutation.values)
        return base
