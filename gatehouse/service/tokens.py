from __future__ import annotations

import hashlib
import hmac


class VerificationTokenCodec:
    """Derives the token that binds a session cookie to (username, expiry).

    The token is a keyed digest, so it cannot be forged without the session
    secret, and it is recomputed on every request instead of being stored
    as the source of truth.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("verification token secret must be non-empty")
        self._key = secret.encode("utf-8")

    def encode(self, username: str, expiry: int) -> str:
        message = f"sso:{username}:{int(expiry)}".encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def matches(self, token: str | None, username: str, expiry: int) -> bool:
        if not token:
            return False
        expected = self.encode(username, expiry)
        return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))
