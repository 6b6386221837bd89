from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from gatehouse.config import LoginVersion
from gatehouse.service.errors import ProviderNotFound
from gatehouse.service.providers import Provider


class ProviderRegistry:
    """Immutable version -> provider table with the login resolution policy.

    Resolution order, first match wins:
    1. an explicitly requested, registered version
    2. the SSO provider, when it is registered and fully configured
    3. the configured default version
    4. the configured fallback version
    5. ``ProviderNotFound``
    """

    def __init__(
        self,
        providers: Iterable[Provider],
        *,
        default_version: str,
        fallback_version: str,
        sso_version: str = LoginVersion.OIDC.value,
    ) -> None:
        table = {}
        for provider in providers:
            if provider.version in table:
                raise ValueError(f"duplicate provider version '{provider.version}'")
            table[provider.version] = provider
        self._entries: Mapping[str, Provider] = MappingProxyType(table)
        self.default_version = default_version
        self.fallback_version = fallback_version
        self.sso_version = sso_version

    @property
    def entries(self) -> Mapping[str, Provider]:
        return self._entries

    def get(self, version: str) -> Optional[Provider]:
        return self._entries.get(version)

    def resolve(self, requested_version: Optional[str] = None) -> Provider:
        if requested_version and requested_version in self._entries:
            return self._entries[requested_version]
        sso = self._entries.get(self.sso_version)
        if sso is not None and sso.is_configured():
            return sso
        if self.default_version in self._entries:
            return self._entries[self.default_version]
        if self.fallback_version in self._entries:
            return self._entries[self.fallback_version]
        raise ProviderNotFound(
            "no login provider is registered for this request",
            detail={
                "requested_version": requested_version,
                "default_version": self.default_version,
                "fallback_version": self.fallback_version,
            },
        )
