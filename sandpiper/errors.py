"""Error taxonomy.

Every error carries a machine-readable ``code`` and an HTTP-equivalent
``status_code`` so a request boundary can render it without a lookup table:

    ValidationError        400  VALIDATION_ERROR        abort the request
    ParseError             422  PARSE_ERROR             empty / non-text payload
    ProviderUnavailable    400  NO_ACTIVE_SANDBOX       no sandbox to apply into
    ProviderCommandError   502  PROVIDER_COMMAND_ERROR  non-zero exit / transport
    CommandTimeout         504  COMMAND_TIMEOUT         never retried
    TerminationError       500  TERMINATION_ERROR       logged, never raised out

Per-item parse and apply failures are not raised to callers; they are
collected into ``ApplyResult.errors``.
"""

from __future__ import annotations

from typing import Any


class SandpiperError(Exception):
    """Base class for all Sandpiper errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_envelope(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "code": self.code, "details": self.details}


class ValidationError(SandpiperError):
    code = "VALIDATION_ERROR"
    status_code = 400


class ParseError(SandpiperError):
    code = "PARSE_ERROR"
    status_code = 422


class ProviderUnavailable(SandpiperError):
    code = "NO_ACTIVE_SANDBOX"
    status_code = 400

    def __init__(self, message: str = "No active sandbox available", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ProviderCommandError(SandpiperError):
    code = "PROVIDER_COMMAND_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        stderr: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.exit_code = exit_code
        self.stderr = stderr


class CommandTimeout(ProviderCommandError):
    code = "COMMAND_TIMEOUT"
    status_code = 504


class TerminationError(SandpiperError):
    code = "TERMINATION_ERROR"
    status_code = 500
