"""Data models for sandbox sessions and provider command results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from sandpiper.utils.clock import now_utc

if TYPE_CHECKING:
    from sandpiper.providers.base import SandboxProvider
    from sandpiper.sandbox.tracker import ExistingFileTracker


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one provider command: exit code plus full captured streams."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class SandboxSession:
    """A registered sandbox. Owned exclusively by the SandboxRegistry."""

    sandbox_id: str
    provider: SandboxProvider
    tracker: ExistingFileTracker
    created_at: datetime = field(default_factory=now_utc)
    last_accessed: datetime = field(default_factory=now_utc)

    def touch(self) -> None:
        self.last_accessed = now_utc()


class SoftFailure(BaseModel):
    """A swallowed reconnect/terminate failure, surfaced only through logging."""

    operation: Literal["reconnect", "terminate"]
    sandbox_id: str
    error: str
    error_type: str = Field(default="", description="Exception class name")

    @classmethod
    def from_exception(
        cls, operation: Literal["reconnect", "terminate"], sandbox_id: str, exc: BaseException
    ) -> SoftFailure:
        return cls(
            operation=operation,
            sandbox_id=sandbox_id,
            error=str(exc),
            error_type=type(exc).__name__,
        )
