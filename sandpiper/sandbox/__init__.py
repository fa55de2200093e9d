"""Sandbox session bookkeeping: the registry and per-session file tracker."""

from sandpiper.sandbox.registry import SandboxRegistry
from sandpiper.sandbox.tracker import ExistingFileTracker

__all__ = ["ExistingFileTracker", "SandboxRegistry"]
