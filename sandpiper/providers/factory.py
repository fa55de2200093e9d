"""ProviderFactory — builds a fresh provider for the configured backend.

Construction failures (unknown backend, missing credentials) propagate to
the caller unchanged.
"""

from __future__ import annotations

from typing import Callable

from sandpiper.config import settings
from sandpiper.providers.base import SandboxProvider
from sandpiper.utils import get_logger

logger = get_logger("providers.factory")

ProviderBuilder = Callable[[], SandboxProvider]


def _build_local() -> SandboxProvider:
    from sandpiper.providers.local import LocalProvider
    return LocalProvider(base_dir=settings.local_sandbox_root)


def _build_e2b() -> SandboxProvider:
    from sandpiper.providers.e2b import E2BProvider
    return E2BProvider()


_DEFAULT_BUILDERS: dict[str, ProviderBuilder] = {
    "local": _build_local,
    "e2b": _build_e2b,
}


class ProviderFactory:
    """Maps backend names to provider builders.

    Usage:
        factory = ProviderFactory()                  # settings.sandbox_provider
        factory = ProviderFactory(backend="e2b")
        factory = ProviderFactory(builders={"fake": FakeProvider}, backend="fake")
    """

    def __init__(
        self,
        backend: str | None = None,
        builders: dict[str, ProviderBuilder] | None = None,
    ) -> None:
        self.backend = (backend or settings.sandbox_provider).lower()
        self._builders = dict(_DEFAULT_BUILDERS)
        if builders:
            self._builders.update(builders)

    @property
    def backends(self) -> list[str]:
        return sorted(self._builders)

    def create(self) -> SandboxProvider:
        builder = self._builders.get(self.backend)
        if builder is None:
            raise ValueError(
                f"Unknown sandbox provider {self.backend!r} (available: {', '.join(self.backends)})"
            )
        provider = builder()
        logger.debug("provider_created", backend=self.backend)
        return provider
