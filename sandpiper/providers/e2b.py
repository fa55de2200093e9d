"""E2B sandbox provider — remote Firecracker microVMs via the e2b SDK.

The remote sandbox is provisioned lazily on the first command, so a
provider built only to attempt ``reconnect()`` never creates a VM it
does not use. Commands run as shell strings in ``settings.project_dir``.
"""

from __future__ import annotations

import time
from typing import Any, Sequence

from sandpiper.config import settings
from sandpiper.errors import ProviderCommandError
from sandpiper.models.sandbox import CommandResult
from sandpiper.providers.base import render_command
from sandpiper.utils import get_logger

logger = get_logger("providers.e2b")


class E2BProvider:
    """SandboxProvider backed by an E2B ``AsyncSandbox``. Supports reconnect."""

    def __init__(
        self,
        api_key: str | None = None,
        template: str | None = None,
        timeout_seconds: int | None = None,
        workdir: str | None = None,
    ) -> None:
        self.api_key = api_key or settings.e2b_api_key
        if not self.api_key:
            raise ValueError("E2B API key is required (set E2B_API_KEY).")
        self.template = template or settings.e2b_template
        self.timeout_seconds = timeout_seconds or settings.e2b_timeout_seconds
        self.workdir = workdir or settings.project_dir
        self._sandbox: Any = None
        self._terminated = False

    @property
    def sandbox_id(self) -> str | None:
        return getattr(self._sandbox, "sandbox_id", None)

    async def _get_sandbox(self) -> Any:
        if self._terminated:
            raise ProviderCommandError("E2B sandbox has been terminated")
        if self._sandbox is not None:
            return self._sandbox
        from e2b import AsyncSandbox

        self._sandbox = await AsyncSandbox.create(
            template=self.template,
            api_key=self.api_key,
            timeout=self.timeout_seconds,
        )
        logger.info("e2b_sandbox_created", sandbox_id=self.sandbox_id, template=self.template)
        await self._sandbox.commands.run(f"mkdir -p {self.workdir}")
        return self._sandbox

    async def reconnect(self, sandbox_id: str) -> bool:
        from e2b import AsyncSandbox

        try:
            self._sandbox = await AsyncSandbox.connect(sandbox_id, api_key=self.api_key)
        except Exception as e:
            logger.info("e2b_reconnect_missed", sandbox_id=sandbox_id, error=str(e))
            self._sandbox = None
            return False
        self._terminated = False
        logger.info("e2b_sandbox_reconnected", sandbox_id=sandbox_id)
        return True

    async def run_command(self, command: str, args: Sequence[str] = ()) -> CommandResult:
        from e2b import CommandExitException

        sandbox = await self._get_sandbox()
        cmd = render_command(command, args)
        start = time.monotonic()
        try:
            result = await sandbox.commands.run(cmd, cwd=self.workdir, timeout=0)
        except CommandExitException as e:
            # Non-zero exits surface as an exception carrying the full result
            return CommandResult(
                exit_code=getattr(e, "exit_code", 1),
                stdout=getattr(e, "stdout", "") or "",
                stderr=getattr(e, "stderr", "") or "",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except Exception as e:
            raise ProviderCommandError(f"E2B transport failure running {cmd!r}: {e}") from e

        return CommandResult(
            exit_code=result.exit_code,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    async def terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        if self._sandbox is None:
            return
        sandbox_id = self.sandbox_id
        await self._sandbox.kill()
        self._sandbox = None
        logger.info("e2b_sandbox_terminated", sandbox_id=sandbox_id)
