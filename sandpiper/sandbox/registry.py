"""SandboxRegistry — multiplexes sandbox sessions by caller-supplied id.

State: ``id → SandboxSession`` plus one optional active id. The active id
always names a registered session; it is cleared when that session goes.

Failure policy:
    - Provider construction errors (factory) propagate to the caller.
    - Reconnect errors are swallowed: a fresh, unregistered provider is
      returned instead.
    - Termination errors are swallowed: the session is removed anyway.
  Swallowed failures are emitted as ``SoftFailure`` records through the
  injected logger and nowhere else.

All map mutation happens under an ``asyncio.Lock``. ``get_or_create_provider``
additionally serialises per id so two concurrent callers for the same id
cannot both reconnect and double-register.
"""

from __future__ import annotations

import asyncio
from typing import Any

from sandpiper.models.sandbox import SandboxSession, SoftFailure
from sandpiper.providers.base import SandboxProvider, supports_reconnect
from sandpiper.providers.factory import ProviderFactory
from sandpiper.sandbox.tracker import ExistingFileTracker
from sandpiper.utils import get_logger


class SandboxRegistry:
    """Owns every sandbox session for one operator process.

    Usage:
        registry = SandboxRegistry(ProviderFactory())
        provider = await registry.get_or_create_provider("sb-123")
        ...
        await registry.terminate_all()
    """

    def __init__(self, factory: ProviderFactory | None = None, logger: Any = None) -> None:
        self._factory = factory or ProviderFactory()
        self._log = logger or get_logger("sandbox.registry")
        self._sessions: dict[str, SandboxSession] = {}
        self._active_id: str | None = None
        self._lock = asyncio.Lock()
        self._id_locks: dict[str, asyncio.Lock] = {}
        self._id_callers: dict[str, int] = {}

    # ── Lookup ────────────────────────────────────────────────────────────────

    @property
    def active_id(self) -> str | None:
        return self._active_id

    def get_session(self, sandbox_id: str) -> SandboxSession | None:
        return self._sessions.get(sandbox_id)

    def list_sessions(self) -> list[SandboxSession]:
        """Sessions ordered by most recent access first."""
        return sorted(self._sessions.values(), key=lambda s: s.last_accessed, reverse=True)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, sandbox_id: object) -> bool:
        return sandbox_id in self._sessions

    def get_active_provider(self) -> SandboxProvider | None:
        session = self._active_session()
        if session is None:
            return None
        session.touch()
        return session.provider

    def active_tracker(self) -> ExistingFileTracker | None:
        session = self._active_session()
        return session.tracker if session else None

    def _active_session(self) -> SandboxSession | None:
        if self._active_id is None:
            return None
        return self._sessions.get(self._active_id)

    # ── Creation ──────────────────────────────────────────────────────────────

    async def get_or_create_provider(self, sandbox_id: str) -> SandboxProvider:
        """Return the session's provider, reattaching or building one on a miss.

        A successful reconnect registers the provider and makes it active.
        Otherwise the freshly built provider comes back unregistered; the
        caller registers it once it has provisioned something worth keeping.
        """
        # Per-id locks live only while some caller is waiting on or holding them
        id_lock = self._id_locks.setdefault(sandbox_id, asyncio.Lock())
        self._id_callers[sandbox_id] = self._id_callers.get(sandbox_id, 0) + 1
        try:
            async with id_lock:
                return await self._get_or_create_locked(sandbox_id)
        finally:
            remaining = self._id_callers.get(sandbox_id, 1) - 1
            if remaining:
                self._id_callers[sandbox_id] = remaining
            else:
                self._id_callers.pop(sandbox_id, None)
                self._id_locks.pop(sandbox_id, None)

    async def _get_or_create_locked(self, sandbox_id: str) -> SandboxProvider:
        existing = self._sessions.get(sandbox_id)
        if existing is not None:
            existing.touch()
            return existing.provider

        provider = self._factory.create()

        if supports_reconnect(provider):
            try:
                reconnected = await provider.reconnect(sandbox_id)
            except Exception as e:
                self._soft_fail(SoftFailure.from_exception("reconnect", sandbox_id, e))
                reconnected = False
            if reconnected:
                await self.register_sandbox(sandbox_id, provider)
                self._log.info("sandbox_reconnected", sandbox_id=sandbox_id)
                return provider

        self._log.info("sandbox_provider_created", sandbox_id=sandbox_id)
        return provider

    async def register_sandbox(self, sandbox_id: str, provider: SandboxProvider) -> SandboxSession:
        """Insert or overwrite the session for ``sandbox_id`` and make it active."""
        async with self._lock:
            previous = self._sessions.get(sandbox_id)
            # Same provider re-registered: keep what we know about its files
            tracker = (
                previous.tracker
                if previous is not None and previous.provider is provider
                else ExistingFileTracker()
            )
            session = SandboxSession(sandbox_id=sandbox_id, provider=provider, tracker=tracker)
            self._sessions[sandbox_id] = session
            self._active_id = sandbox_id
        self._log.debug("sandbox_registered", sandbox_id=sandbox_id, sessions=len(self._sessions))
        return session

    def set_active(self, sandbox_id: str) -> None:
        if sandbox_id not in self._sessions:
            raise KeyError(f"Unknown sandbox id: {sandbox_id}")
        self._active_id = sandbox_id

    # ── Teardown ──────────────────────────────────────────────────────────────

    async def terminate_sandbox(self, sandbox_id: str) -> None:
        """Best-effort terminate; the session is removed whatever happens."""
        session = self._sessions.get(sandbox_id)
        if session is None:
            return
        await self._terminate_quietly(session)
        async with self._lock:
            self._sessions.pop(sandbox_id, None)
            if self._active_id == sandbox_id:
                self._active_id = None
        self._log.info("sandbox_removed", sandbox_id=sandbox_id)

    async def terminate_all(self) -> None:
        """Terminate every session concurrently; one failure never blocks another."""
        sessions = list(self._sessions.values())
        await asyncio.gather(
            *(self._terminate_quietly(s) for s in sessions),
            return_exceptions=True,
        )
        async with self._lock:
            self._sessions.clear()
            self._active_id = None
        self._log.info("sandboxes_terminated", count=len(sessions))

    async def _terminate_quietly(self, session: SandboxSession) -> None:
        try:
            await session.provider.terminate()
        except Exception as e:
            self._soft_fail(SoftFailure.from_exception("terminate", session.sandbox_id, e))

    def _soft_fail(self, failure: SoftFailure) -> None:
        self._log.warning(f"sandbox_{failure.operation}_failed", **failure.model_dump())
