"""Sandbox provider interface.

A provider runs commands inside one sandbox and can terminate it.
Reconnection to a previously provisioned environment is a separate,
optional capability: check it with :func:`supports_reconnect`, never by
looking at the concrete class.

File reads and writes are built on top of ``run_command`` only, so every
backend gets them for free.
"""

from __future__ import annotations

import base64
import shlex
from typing import Protocol, Sequence, runtime_checkable

from sandpiper.errors import ProviderCommandError
from sandpiper.models.sandbox import CommandResult

# Linux caps a single argv string at 128 KiB; stay well under it.
WRITE_CHUNK_CHARS = 64 * 1024


@runtime_checkable
class SandboxProvider(Protocol):
    async def run_command(self, command: str, args: Sequence[str] = ()) -> CommandResult:
        ...

    async def terminate(self) -> None:
        """Tear down the sandbox. Calling it twice is a no-op."""
        ...


@runtime_checkable
class SupportsReconnect(Protocol):
    async def reconnect(self, sandbox_id: str) -> bool:
        """Reattach to a previously provisioned sandbox. False if it is gone."""
        ...


def supports_reconnect(provider: object) -> bool:
    return isinstance(provider, SupportsReconnect)


async def write_file(provider: SandboxProvider, path: str, content: str) -> None:
    """Create parent directories and write ``content`` to ``path``.

    Content travels base64-encoded in fixed-size chunks so quoting and
    argv limits never corrupt it.
    """
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    chunks = [
        encoded[i:i + WRITE_CHUNK_CHARS]
        for i in range(0, len(encoded), WRITE_CHUNK_CHARS)
    ] or [""]

    for index, chunk in enumerate(chunks):
        redirect = ">" if index == 0 else ">>"
        script = (
            'mkdir -p "$(dirname "$1")" && '
            f'printf %s "$2" | base64 -d {redirect} "$1"'
        )
        result = await provider.run_command("sh", ["-c", script, "sh", path, chunk])
        if not result.ok:
            raise ProviderCommandError(
                f"Failed to write {path}: {result.stderr.strip() or 'unknown error'}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )


async def read_file(provider: SandboxProvider, path: str) -> str:
    result = await provider.run_command("cat", [path])
    if not result.ok:
        raise ProviderCommandError(
            f"Failed to read {path}: {result.stderr.strip() or 'unknown error'}",
            exit_code=result.exit_code,
            stderr=result.stderr,
        )
    return result.stdout


def render_command(command: str, args: Sequence[str] = ()) -> str:
    """Join command + args into one shell-safe string for shell-only backends."""
    return shlex.join([command, *args])
