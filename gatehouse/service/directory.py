from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Protocol, Sequence

import httpx

from gatehouse.logging import get_logger
from gatehouse.service.errors import DirectoryUnavailable

logger = get_logger(__name__)

REVALIDATION_SEARCH_LIMIT = 10


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    LOCKED = "locked"


@dataclass(frozen=True)
class DirectoryRecord:
    username: str
    email: str = ""
    status: str = AccountStatus.ACTIVE.value

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE.value

    def matches(self, identifier: str) -> bool:
        needle = identifier.strip().lower()
        if not needle:
            return False
        return self.username.lower() == needle or (bool(self.email) and self.email.lower() == needle)


@dataclass(frozen=True)
class DirectorySearchResult:
    total: int = 0
    records: List[DirectoryRecord] = field(default_factory=list)


class DirectoryClient(Protocol):
    """Read-only view of the user directory."""

    async def search(self, query: str, limit: int) -> DirectorySearchResult:
        ...


def find_exact_match(records: Sequence[DirectoryRecord], identifier: str) -> Optional[DirectoryRecord]:
    """Return the record whose username or email equals ``identifier``, ignoring case.

    Directory search is a partial match, so a hit for "bob" may also return
    "bobby"; only an exact match binds the identity.
    """
    for record in records:
        if record.matches(identifier):
            return record
    return None


class HttpDirectoryClient:
    """Directory client for the user-management HTTP service."""

    def __init__(
        self,
        base_url: str,
        *,
        owner_id: str = "0",
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.owner_id = owner_id
        self.timeout = timeout

    async def search(self, query: str, limit: int) -> DirectorySearchResult:
        url = f"{self.base_url}/api/v3/usermgmt/users"
        headers = {
            "Accept": "application/json",
            "BK_User": "admin",
            "HTTP_BLUEKING_SUPPLIER_ID": self.owner_id,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=False
            ) as client:
                response = await client.get(
                    url, params={"search": query, "limit": limit}, headers=headers
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "directory_http_error",
                status_code=exc.response.status_code,
                error=str(exc),
            )
            raise DirectoryUnavailable(
                "user directory returned an error",
                detail={"status_code": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("directory_request_failed", error_type=type(exc).__name__, error=str(exc))
            raise DirectoryUnavailable("user directory is unreachable") from exc
        except ValueError as exc:
            logger.error("directory_response_parse_error", error=str(exc))
            raise DirectoryUnavailable("user directory returned malformed data") from exc

        if not isinstance(payload, dict) or not payload.get("result", False):
            message = payload.get("bk_error_msg") if isinstance(payload, dict) else None
            logger.error("directory_search_rejected", message=message)
            raise DirectoryUnavailable("user directory rejected the search")

        data = payload.get("data")
        if not isinstance(data, dict):
            data = {}
        items = data.get("items") or []
        total = data.get("total")
        if not isinstance(items, list) or not (total is None or isinstance(total, int)):
            logger.error(
                "directory_response_malformed",
                items_type=type(items).__name__,
                total_type=type(total).__name__,
            )
            raise DirectoryUnavailable("user directory returned malformed data")
        records = [
            DirectoryRecord(
                username=str(item.get("user_id") or item.get("username") or ""),
                email=str(item.get("email") or ""),
                status=str(item.get("status") or AccountStatus.INACTIVE.value),
            )
            for item in items
            if isinstance(item, dict)
        ]
        return DirectorySearchResult(total=len(records) if total is None else total, records=records)


class StaticDirectoryClient:
    """Directory backed by a fixed record list.

    Search mirrors the HTTP service: a case-insensitive substring match on
    username or email, truncated to ``limit``.
    """

    def __init__(self, records: Iterable[DirectoryRecord] = ()) -> None:
        self._records = list(records)

    @classmethod
    def from_config(cls, raw: str) -> "StaticDirectoryClient":
        """Build from "user:email:status,..." entries; status defaults to active."""
        records = []
        for entry in (raw or "").split(","):
            entry = entry.strip()
            if not entry:
                continue
            parts = [part.strip() for part in entry.split(":")]
            username = parts[0]
            email = parts[1] if len(parts) > 1 else ""
            status = parts[2] if len(parts) > 2 and parts[2] else AccountStatus.ACTIVE.value
            records.append(DirectoryRecord(username=username, email=email, status=status))
        return cls(records)

    def upsert(self, record: DirectoryRecord) -> None:
        self._records = [r for r in self._records if r.username != record.username]
        self._records.append(record)

    def set_status(self, username: str, status: str) -> None:
        for index, record in enumerate(self._records):
            if record.username == username:
                self._records[index] = DirectoryRecord(record.username, record.email, status)
                return
        raise KeyError(username)

    async def search(self, query: str, limit: int) -> DirectorySearchResult:
        needle = query.strip().lower()
        hits = [
            record
            for record in self._records
            if needle and (needle in record.username.lower() or needle in record.email.lower())
        ]
        return DirectorySearchResult(total=len(hits), records=hits[:limit])
