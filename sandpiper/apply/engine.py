"""ApplicationEngine — executes a Plan against a sandbox provider.

Pipeline (fixed order — later stages may rely on earlier ones):
    1. packages  — batched installs, retried (installs are idempotent)
    2. files     — full writes, or smart merge for already-known files in edit mode
    3. commands  — run one by one, continue on error

Every stage isolates failures to its own items; a later stage always runs.
Each file/package/command ends up in exactly one of its success list or
``errors``. Items skipped because of cancellation are recorded as errors too.

Timeouts:
    Every provider call is bounded by ``timeout`` seconds. A timed-out call
    is recorded as an error and is never retried.

Retries (bounded, linear backoff):
    - package installs: on transport failure or non-zero exit
    - retry-safe commands (``ls``, ``git status`` …): on transport failure only
    - anything else: never
"""

from __future__ import annotations

import asyncio
import re
import shlex
from typing import Sequence

from sandpiper.apply.merge import SmartMerger
from sandpiper.config import settings
from sandpiper.errors import CommandTimeout, ProviderCommandError, ProviderUnavailable
from sandpiper.models.sandbox import CommandResult
from sandpiper.models.schemas import ApplyResult, CommandOutput, Plan, Stage
from sandpiper.providers.base import SandboxProvider, read_file, write_file
from sandpiper.sandbox.tracker import ExistingFileTracker
from sandpiper.utils import get_logger

logger = get_logger("apply.engine")

_SHELL_METACHARS = set("|&;<>$`*?(){}~[!#\n")
_ENV_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_STDERR_TAIL_CHARS = 500


def _tail(text: str, limit: int = _STDERR_TAIL_CHARS) -> str:
    text = text.strip()
    return text if len(text) <= limit else "…" + text[-limit:]


class _GuardedProvider:
    """Bounds every ``run_command`` on the wrapped provider with a timeout."""

    def __init__(self, provider: SandboxProvider, timeout: float | None) -> None:
        self._provider = provider
        self._timeout = timeout

    async def run_command(self, command: str, args: Sequence[str] = ()) -> CommandResult:
        try:
            return await asyncio.wait_for(
                self._provider.run_command(command, list(args)), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise CommandTimeout(f"Command {command!r} timed out after {self._timeout}s") from e
        except ProviderCommandError:
            raise
        except Exception as e:
            raise ProviderCommandError(f"Provider failure running {command!r}: {e}") from e

    async def terminate(self) -> None:
        await self._provider.terminate()


class ApplicationEngine:
    """Applies parsed plans to a sandbox in three failure-isolated stages."""

    def __init__(
        self,
        merger: SmartMerger | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        install_command: str | None = None,
        batch_size: int | None = None,
        retry_safe_commands: list[str] | None = None,
    ) -> None:
        self.merger = merger
        self.timeout = timeout if timeout is not None else settings.command_timeout_seconds
        self.max_retries = max(1, max_retries if max_retries is not None else settings.max_retries)
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.retry_backoff_seconds
        )
        self.install_command = install_command or settings.package_install_command
        self.batch_size = batch_size if batch_size is not None else settings.package_batch_size
        self.retry_safe_commands = (
            retry_safe_commands if retry_safe_commands is not None
            else settings.retry_safe_commands
        )

    async def apply(
        self,
        provider: SandboxProvider | None,
        plan: Plan,
        *,
        tracker: ExistingFileTracker | None = None,
        is_edit: bool = False,
        smart_merge: bool = False,
        raw_text: str = "",
        cancel: asyncio.Event | None = None,
    ) -> ApplyResult:
        """Run all three stages and return the per-item report.

        Raises:
            ProviderUnavailable: no provider — nothing is attempted.
        """
        if provider is None:
            raise ProviderUnavailable()

        tracker = tracker if tracker is not None else ExistingFileTracker()
        guarded = _GuardedProvider(provider, self.timeout)
        result = ApplyResult()

        for issue in plan.parse_errors:
            result.record_error(Stage.PARSE, issue.item, issue.message)

        await self._install_packages(guarded, plan.packages, result, cancel)
        await self._write_files(guarded, plan, result, tracker, is_edit, smart_merge, raw_text, cancel)
        await self._run_commands(guarded, plan.commands, result, cancel)

        logger.info(
            "apply_complete",
            files=len(result.files_created),
            packages=len(result.packages_installed),
            commands=len(result.commands_executed),
            errors=len(result.errors),
        )
        return result

    # ── Stage 1: packages ─────────────────────────────────────────────────────

    def _batches(self, packages: list[str]) -> list[list[str]]:
        if not packages:
            return []
        size = self.batch_size if self.batch_size > 0 else len(packages)
        return [packages[i:i + size] for i in range(0, len(packages), size)]

    async def _install_packages(
        self,
        provider: _GuardedProvider,
        packages: list[str],
        result: ApplyResult,
        cancel: asyncio.Event | None,
    ) -> None:
        command, *base_args = shlex.split(self.install_command)
        for batch in self._batches(packages):
            if _is_cancelled(cancel):
                for spec in batch:
                    result.record_error(Stage.PACKAGES, spec, "cancelled")
                continue

            logger.info("installing_packages", packages=batch)
            try:
                outcome = await self._run_with_retry(
                    provider, command, [*base_args, *batch], retry_on_exit=True
                )
            except ProviderCommandError as e:
                for spec in batch:
                    result.record_error(Stage.PACKAGES, spec, e.message)
                continue

            if outcome.ok:
                result.packages_installed.extend(batch)
            else:
                message = f"install failed (exit {outcome.exit_code}): {_tail(outcome.stderr)}"
                for spec in batch:
                    result.record_error(Stage.PACKAGES, spec, message)

    # ── Stage 2: files ────────────────────────────────────────────────────────

    async def _write_files(
        self,
        provider: _GuardedProvider,
        plan: Plan,
        result: ApplyResult,
        tracker: ExistingFileTracker,
        is_edit: bool,
        smart_merge: bool,
        raw_text: str,
        cancel: asyncio.Event | None,
    ) -> None:
        for spec in plan.files:
            if _is_cancelled(cancel):
                result.record_error(Stage.FILES, spec.path, "cancelled")
                continue

            merge = is_edit and smart_merge and self.merger is not None and spec.path in tracker
            try:
                content = spec.content
                if merge:
                    original = await read_file(provider, spec.path)
                    content = await self.merger.merge(
                        spec.path, original, spec.content, instruction=raw_text
                    )
                await write_file(provider, spec.path, content)
            except Exception as e:
                logger.warning("file_write_failed", path=spec.path, merge=merge, error=str(e))
                message = e.message if isinstance(e, ProviderCommandError) else str(e)
                result.record_error(Stage.FILES, spec.path, message or type(e).__name__)
                continue

            tracker.add(spec.path)
            result.files_created.append(spec.path)
            logger.debug("file_written", path=spec.path, merged=merge, size=len(content))

    # ── Stage 3: commands ─────────────────────────────────────────────────────

    async def _run_commands(
        self,
        provider: _GuardedProvider,
        commands: list[str],
        result: ApplyResult,
        cancel: asyncio.Event | None,
    ) -> None:
        for command in commands:
            if _is_cancelled(cancel):
                result.record_error(Stage.COMMANDS, command, "cancelled")
                continue

            try:
                parts = self._split_command(command)
            except ValueError as e:
                result.record_error(Stage.COMMANDS, command, f"invalid command syntax: {e}")
                continue

            try:
                if self._is_retry_safe(parts):
                    outcome = await self._run_with_retry(
                        provider, parts[0], parts[1:], retry_on_exit=False
                    )
                else:
                    outcome = await provider.run_command(parts[0], parts[1:])
            except ProviderCommandError as e:
                logger.warning("command_failed", command=command, error=e.message)
                result.record_error(Stage.COMMANDS, command, e.message)
                continue

            result.command_outputs.append(CommandOutput(
                command=command,
                exit_code=outcome.exit_code,
                stdout=outcome.stdout,
                stderr=outcome.stderr,
            ))
            if outcome.ok:
                result.commands_executed.append(command)
            else:
                logger.warning("command_nonzero_exit", command=command, exit_code=outcome.exit_code)
                result.record_error(
                    Stage.COMMANDS,
                    command,
                    f"exit code {outcome.exit_code}: {_tail(outcome.stderr) or '(no stderr)'}",
                )

    def _split_command(self, command: str) -> list[str]:
        """Split into argv; anything needing a shell runs through ``sh -c``."""
        parts = shlex.split(command)
        if not parts:
            raise ValueError("empty command")
        if any(ch in _SHELL_METACHARS for ch in command) or _ENV_ASSIGNMENT_RE.match(parts[0]):
            return ["sh", "-c", command]
        return parts

    def _is_retry_safe(self, parts: list[str]) -> bool:
        if parts[:2] == ["sh", "-c"]:
            return False
        joined = " ".join(parts)
        return any(
            joined == prefix or joined.startswith(prefix + " ")
            for prefix in self.retry_safe_commands
        )

    # ── Retry helper ──────────────────────────────────────────────────────────

    async def _run_with_retry(
        self,
        provider: _GuardedProvider,
        command: str,
        args: list[str],
        retry_on_exit: bool,
    ) -> CommandResult:
        """Bounded retries with linear backoff. Timeouts are never retried."""
        for attempt in range(1, self.max_retries + 1):
            try:
                outcome = await provider.run_command(command, args)
            except CommandTimeout:
                raise
            except ProviderCommandError as e:
                if attempt == self.max_retries:
                    raise
                logger.warning("provider_call_retrying", command=command, attempt=attempt, error=e.message)
            else:
                if outcome.ok or not retry_on_exit or attempt == self.max_retries:
                    return outcome
                logger.warning(
                    "provider_call_retrying", command=command, attempt=attempt,
                    exit_code=outcome.exit_code,
                )
            if self.backoff_seconds > 0:
                await asyncio.sleep(self.backoff_seconds * attempt)
        raise AssertionError("unreachable")


def _is_cancelled(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()
