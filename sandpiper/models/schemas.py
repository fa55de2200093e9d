"""Core schemas — Plan, ApplyResult, and the apply request/response envelope.

Field names are snake_case in Python and camelCase on the wire
(``model_dump(by_alias=True)``), so responses keep the shape existing
HTTP clients expect: ``filesCreated``, ``packagesInstalled`` …
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Stage(str, enum.Enum):
    """Where an item failed."""

    PARSE = "parse"
    PACKAGES = "packages"
    FILES = "files"
    COMMANDS = "commands"


class FileSpec(_WireModel):
    """One file block extracted from model output."""

    path: str = Field(description="Project-relative, normalized POSIX path")
    content: str = Field(default="", description="Full file content (or edit fragment)")


class ParseIssue(_WireModel):
    """A rejected or malformed entry — isolated, never aborts the parse."""

    item: str = Field(description="The offending path or directive text")
    message: str


class Plan(_WireModel):
    """Structured result of parsing raw model text."""

    files: list[FileSpec] = Field(default_factory=list)
    packages: list[str] = Field(default_factory=list)
    commands: list[str] = Field(default_factory=list)
    explanation: str = ""
    structure: str | None = None
    parse_errors: list[ParseIssue] = Field(default_factory=list)

    @property
    def item_count(self) -> int:
        return len(self.files) + len(self.packages) + len(self.commands)


class ApplyErrorItem(_WireModel):
    stage: Stage
    item: str
    message: str


class CommandOutput(_WireModel):
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class ApplyResult(_WireModel):
    """Per-item outcome of applying a Plan.

    Every file/package/command in the Plan lands in exactly one of its
    success list or ``errors``.
    """

    files_created: list[str] = Field(default_factory=list)
    packages_installed: list[str] = Field(default_factory=list)
    commands_executed: list[str] = Field(default_factory=list)
    errors: list[ApplyErrorItem] = Field(default_factory=list)
    command_outputs: list[CommandOutput] = Field(default_factory=list)

    def record_error(self, stage: Stage, item: str, message: str) -> None:
        self.errors.append(ApplyErrorItem(stage=stage, item=item, message=message))

    def errors_for(self, stage: Stage) -> list[ApplyErrorItem]:
        return [e for e in self.errors if e.stage == stage]

    @property
    def ok(self) -> bool:
        return not self.errors


class ApplyRequest(_WireModel):
    """Inbound apply request: raw model text plus flags."""

    response: str = Field(min_length=1, description="Raw model output to parse and apply")
    is_edit: bool = False
    packages: list[str] = Field(default_factory=list)
    sandbox_id: str | None = None


class ApplyResponse(_WireModel):
    """Success envelope — returned even when individual items failed."""

    success: bool = True
    results: ApplyResult
    explanation: str = ""
    structure: str | None = None
    message: str = ""

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
