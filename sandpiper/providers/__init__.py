"""Sandbox provider implementations and interfaces."""

from sandpiper.providers.base import SandboxProvider, SupportsReconnect, supports_reconnect
from sandpiper.providers.factory import ProviderFactory
from sandpiper.providers.local import LocalProvider

__all__ = [
    "LocalProvider",
    "ProviderFactory",
    "SandboxProvider",
    "SupportsReconnect",
    "supports_reconnect",
]
