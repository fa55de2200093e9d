"""Unit-test conftest — MockProvider, RecordingLogger, and shared fixtures.

All fixtures here are available to every test under tests/unit/ without import.
"""

from __future__ import annotations

import asyncio
import base64
from typing import Any, Callable, Sequence

import pytest

from sandpiper.models.sandbox import CommandResult
from sandpiper.providers.factory import ProviderFactory
from sandpiper.sandbox.registry import SandboxRegistry


# ─────────────────────────────────────────────────────────────────────────────
# MockProvider: drop-in replacement for a sandbox backend
# ─────────────────────────────────────────────────────────────────────────────

class MockProvider:
    """Configurable fake SandboxProvider with an in-memory filesystem.

    Understands the two command shapes the file helpers emit
    (``sh -c '… base64 -d > "$1"' sh PATH CHUNK`` and ``cat PATH``) so
    written content can be asserted on directly via ``.files``.

    Args:
        exit_codes:       substring of "command args…" → exit code to return.
        raises:           substring → exception to raise (transport failure).
        delays:           substring → seconds to sleep before answering.
        fail_times:       substring → number of initial calls that fail (exit 1).
        terminate_raises: exception raised by terminate().
        on_call:          hook invoked after every answered call.
    """

    def __init__(
        self,
        *,
        exit_codes: dict[str, int] | None = None,
        raises: dict[str, Exception] | None = None,
        delays: dict[str, float] | None = None,
        fail_times: dict[str, int] | None = None,
        terminate_raises: Exception | None = None,
        on_call: Callable[[str, list[str]], None] | None = None,
    ) -> None:
        self.exit_codes = exit_codes or {}
        self.raises = raises or {}
        self.delays = delays or {}
        self.fail_times = dict(fail_times or {})
        self.terminate_raises = terminate_raises
        self.on_call = on_call
        self.files: dict[str, str] = {}
        self.calls: list[tuple[str, list[str]]] = []
        self.terminate_calls: int = 0

    @staticmethod
    def line(command: str, args: Sequence[str]) -> str:
        return " ".join([command, *args])

    async def run_command(self, command: str, args: Sequence[str] = ()) -> CommandResult:
        args = list(args)
        result = await self._answer(command, args)
        if self.on_call:
            self.on_call(command, args)
        return result

    async def _answer(self, command: str, args: list[str]) -> CommandResult:
        self.calls.append((command, args))
        line = self.line(command, args)

        for key, delay in self.delays.items():
            if key in line:
                await asyncio.sleep(delay)
        for key, exc in self.raises.items():
            if key in line:
                raise exc
        for key, remaining in self.fail_times.items():
            if key in line and remaining > 0:
                self.fail_times[key] = remaining - 1
                return CommandResult(exit_code=1, stderr=f"{key} flaked")

        if command == "sh" and len(args) == 5 and "base64 -d" in args[1]:
            path, chunk = args[3], args[4]
            data = base64.b64decode(chunk).decode("utf-8")
            if '>> "$1"' in args[1]:
                self.files[path] = self.files.get(path, "") + data
            else:
                self.files[path] = data
            return CommandResult(exit_code=0)

        if command == "cat" and args:
            if args[0] in self.files:
                return CommandResult(exit_code=0, stdout=self.files[args[0]])
            return CommandResult(exit_code=1, stderr=f"cat: {args[0]}: No such file or directory")

        for key, code in self.exit_codes.items():
            if key in line:
                return CommandResult(exit_code=code, stderr=f"{key} failed")
        return CommandResult(exit_code=0, stdout="ok")

    async def terminate(self) -> None:
        self.terminate_calls += 1
        if self.terminate_raises:
            raise self.terminate_raises

    def commands_run(self) -> list[str]:
        """Every call as a single line, file writes abbreviated to ``write PATH``."""
        out = []
        for command, args in self.calls:
            if command == "sh" and len(args) == 5 and "base64 -d" in args[1]:
                out.append(f"write {args[3]}")
            else:
                out.append(self.line(command, args))
        return out


class ReconnectingProvider(MockProvider):
    """MockProvider that also implements the reconnect capability."""

    def __init__(self, *, reconnect_result: bool = True,
                 reconnect_raises: Exception | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.reconnect_result = reconnect_result
        self.reconnect_raises = reconnect_raises
        self.reconnect_calls: list[str] = []

    async def reconnect(self, sandbox_id: str) -> bool:
        self.reconnect_calls.append(sandbox_id)
        await asyncio.sleep(0)
        if self.reconnect_raises:
            raise self.reconnect_raises
        return self.reconnect_result


# ─────────────────────────────────────────────────────────────────────────────
# RecordingLogger: injected structured logger that keeps every event
# ─────────────────────────────────────────────────────────────────────────────

class RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def bind(self, **kwargs) -> "RecordingLogger":
        return self

    def _record(self, level: str, event: str, **kwargs) -> None:
        self.events.append((level, event, kwargs))

    def debug(self, event: str, **kwargs) -> None:
        self._record("debug", event, **kwargs)

    def info(self, event: str, **kwargs) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs) -> None:
        self._record("error", event, **kwargs)

    def named(self, event: str) -> list[dict[str, Any]]:
        return [kw for _, name, kw in self.events if name == event]


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_provider():
    """Factory for MockProviders: ``make_provider(exit_codes={"npm test": 1})``."""
    return MockProvider


@pytest.fixture
def make_reconnecting_provider():
    return ReconnectingProvider


@pytest.fixture
def mock_provider():
    """A MockProvider where every command succeeds."""
    return MockProvider()


@pytest.fixture
def recording_logger():
    return RecordingLogger()


@pytest.fixture
def make_registry(recording_logger):
    """Build a SandboxRegistry whose factory calls ``builder`` for each provider."""
    def _make(builder=MockProvider, logger=None) -> SandboxRegistry:
        factory = ProviderFactory(backend="mock", builders={"mock": builder})
        return SandboxRegistry(factory, logger=logger or recording_logger)
    return _make


@pytest.fixture
def registry(make_registry):
    """A registry whose factory builds plain (non-reconnecting) MockProviders."""
    return make_registry()
