"""ApplyService — the request boundary and the object that owns the pipeline.

One ApplyService is constructed per process and handed to whatever serves
requests (the CLI here). It owns the SandboxRegistry, the parser and the
engine; nothing is kept in module globals.

    raw text ─► ResponseParser ─► Plan ─► ApplicationEngine ─► ApplyResult
                                              ▲
                          SandboxRegistry ────┘  (provider + file tracker)

``handle_apply`` never raises: it returns ``(status_code, body)`` where
validation problems are 4xx with a structured code and anything
unanticipated is 500 / INTERNAL_ERROR. Per-item failures still yield a
200 success envelope with the failures enumerated.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pydantic

from sandpiper.apply.engine import ApplicationEngine
from sandpiper.apply.merge import MorphMerger, SmartMerger
from sandpiper.apply.parser import ResponseParser
from sandpiper.archive import ArchiveBuilder, ArchiveResult
from sandpiper.config import settings
from sandpiper.conversation import ConversationStateManager
from sandpiper.errors import ProviderUnavailable, SandpiperError, ValidationError
from sandpiper.models.schemas import ApplyRequest, ApplyResponse
from sandpiper.providers.base import SandboxProvider
from sandpiper.sandbox.registry import SandboxRegistry
from sandpiper.sandbox.tracker import ExistingFileTracker
from sandpiper.utils import get_logger

logger = get_logger("apply.service")


class ApplyService:
    """Parses model output and applies it to the right sandbox."""

    def __init__(
        self,
        registry: SandboxRegistry | None = None,
        engine: ApplicationEngine | None = None,
        parser: ResponseParser | None = None,
        merger: SmartMerger | None = None,
        smart_merge_enabled: bool | None = None,
    ) -> None:
        self.smart_merge_enabled = (
            smart_merge_enabled if smart_merge_enabled is not None
            else settings.smart_merge_available
        )
        if merger is None and self.smart_merge_enabled:
            merger = MorphMerger()
        self.merger = merger
        self.registry = registry if registry is not None else SandboxRegistry()
        self.engine = engine if engine is not None else ApplicationEngine(merger=merger)
        self.parser = parser if parser is not None else ResponseParser()
        self.archiver = ArchiveBuilder()
        self.conversation = ConversationStateManager()

    # ── Transport-agnostic entry point ────────────────────────────────────────

    async def handle_apply(self, payload: Any) -> tuple[int, dict[str, Any]]:
        try:
            request = self._validate(payload)
            response = await self.apply(request)
            return 200, response.to_wire()
        except SandpiperError as e:
            logger.warning("apply_rejected", code=e.code, error=e.message)
            return e.status_code, e.to_envelope()
        except Exception as e:
            logger.error("apply_unexpected_error", error=str(e), exc_info=True)
            return 500, {"success": False, "error": str(e), "code": "INTERNAL_ERROR"}

    def _validate(self, payload: Any) -> ApplyRequest:
        if isinstance(payload, ApplyRequest):
            return payload
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")
        if not payload.get("response"):
            raise ValidationError("response is required")
        try:
            return ApplyRequest.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Invalid request data",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    # ── Core operation ────────────────────────────────────────────────────────

    async def apply(
        self, request: ApplyRequest, cancel: asyncio.Event | None = None
    ) -> ApplyResponse:
        plan = self.parser.parse(request.response)
        for spec in request.packages:
            spec = spec.strip()
            if spec and spec not in plan.packages:
                plan.packages.append(spec)

        provider, tracker = await self._resolve_sandbox(request.sandbox_id)
        if provider is None:
            raise ProviderUnavailable(
                "No active sandbox available",
                details={
                    "parsedFiles": [f.path for f in plan.files],
                    "message": f"Parsed {len(plan.files)} files. Create a sandbox to apply them.",
                },
            )

        results = await self.engine.apply(
            provider,
            plan,
            tracker=tracker,
            is_edit=request.is_edit,
            smart_merge=request.is_edit and self.smart_merge_enabled,
            raw_text=request.response,
            cancel=cancel,
        )

        self.conversation.record_edit(results.files_created, request.is_edit, plan.explanation)

        message = f"Applied {len(results.files_created)} files successfully"
        if results.errors:
            message += f" ({len(results.errors)} items failed)"
        return ApplyResponse(
            results=results,
            explanation=plan.explanation,
            structure=plan.structure,
            message=message,
        )

    async def _resolve_sandbox(
        self, sandbox_id: str | None
    ) -> tuple[SandboxProvider | None, ExistingFileTracker | None]:
        """Named sandbox: get or create and register it. Otherwise the active one."""
        if sandbox_id:
            provider = await self.registry.get_or_create_provider(sandbox_id)
            session = self.registry.get_session(sandbox_id)
            if session is None or session.provider is not provider:
                session = await self.registry.register_sandbox(sandbox_id, provider)
            else:
                self.registry.set_active(sandbox_id)
            return provider, session.tracker
        return self.registry.get_active_provider(), self.registry.active_tracker()

    # ── Archive ───────────────────────────────────────────────────────────────

    async def create_archive(self, sandbox_id: str | None = None) -> ArchiveResult:
        if sandbox_id:
            session = self.registry.get_session(sandbox_id)
            provider = session.provider if session else None
        else:
            provider = self.registry.get_active_provider()
        if provider is None:
            raise ProviderUnavailable()
        return await self.archiver.build(provider)

    async def shutdown(self) -> None:
        await self.registry.terminate_all()
        if isinstance(self.merger, MorphMerger):
            await self.merger.close()
