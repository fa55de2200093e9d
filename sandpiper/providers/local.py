"""Local sandbox provider — a working directory on this machine.

Isolation model:
  - Each provider owns one directory under ``base_dir`` (a fresh tempdir
    when no base is configured)
  - Commands run via asyncio subprocess with that directory as cwd
  - stdout + stderr captured separately, in full
  - Cancellation (e.g. a caller-side timeout) kills the child process
  - ``reconnect(id)`` reattaches to ``base_dir/<id>`` if it still exists

No resource limits and no network isolation: meant for development and
tests, not for untrusted code.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
import time
from pathlib import Path
from typing import Sequence
from uuid import uuid4

from sandpiper.errors import ProviderCommandError
from sandpiper.models.sandbox import CommandResult
from sandpiper.utils import get_logger

logger = get_logger("providers.local")


class LocalProvider:
    """Runs sandbox commands as local subprocesses inside a private directory."""

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._base_dir = Path(base_dir) if base_dir else Path(
            tempfile.mkdtemp(prefix="sandpiper-local-")
        )
        self.sandbox_id = f"sandbox-{uuid4().hex[:8]}"
        self._root: Path | None = None
        self._terminated = False

    @property
    def root(self) -> Path:
        """The sandbox directory, created on first use."""
        if self._root is None:
            self._root = self._base_dir / self.sandbox_id
            self._root.mkdir(parents=True, exist_ok=True)
        return self._root

    async def reconnect(self, sandbox_id: str) -> bool:
        candidate = self._base_dir / sandbox_id
        if not candidate.is_dir():
            if self._root is None:
                # Not provisioned yet: provision under the requested name later
                self.sandbox_id = sandbox_id
            return False
        self.sandbox_id = sandbox_id
        self._root = candidate
        self._terminated = False
        logger.info("local_sandbox_reconnected", sandbox_id=sandbox_id, root=str(candidate))
        return True

    async def run_command(self, command: str, args: Sequence[str] = ()) -> CommandResult:
        if self._terminated:
            raise ProviderCommandError(f"Sandbox {self.sandbox_id} has been terminated")

        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.root,
            )
        except OSError as e:
            raise ProviderCommandError(f"Could not start {command!r}: {e}") from e

        try:
            stdout_b, stderr_b = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            logger.warning("local_command_cancelled", command=command)
            raise

        duration_ms = int((time.monotonic() - start) * 1000)
        return CommandResult(
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout_b.decode("utf-8", errors="replace"),
            stderr=stderr_b.decode("utf-8", errors="replace"),
            duration_ms=duration_ms,
        )

    async def terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        if self._root is not None:
            shutil.rmtree(self._root, ignore_errors=True)
        logger.info("local_sandbox_terminated", sandbox_id=self.sandbox_id)
