"""ConversationStateManager — in-memory conversation bookkeeping.

Process lifetime only; nothing is written to disk. Actions:
    reset      start a fresh conversation
    clear_old  trim history (last 5 messages, 3 edits, 2 major changes)
    update     set the current topic / merge user preferences
    clear      drop the conversation entirely
"""

from __future__ import annotations

from typing import Any

from sandpiper.errors import SandpiperError
from sandpiper.models.conversation import ConversationState
from sandpiper.utils import get_logger
from sandpiper.utils.clock import now_ms

logger = get_logger("conversation")

KEEP_MESSAGES = 5
KEEP_EDITS = 3
KEEP_MAJOR_CHANGES = 2


class NoActiveConversation(SandpiperError):
    code = "NO_ACTIVE_CONVERSATION"
    status_code = 400


def _fresh_state() -> ConversationState:
    stamp = now_ms()
    return ConversationState(conversation_id=f"conv-{stamp}", started_at=stamp, last_updated=stamp)


class ConversationStateManager:
    def __init__(self) -> None:
        self._state: ConversationState | None = None

    def get(self) -> ConversationState | None:
        return self._state

    def reset(self) -> ConversationState:
        self._state = _fresh_state()
        logger.info("conversation_reset", conversation_id=self._state.conversation_id)
        return self._state

    def clear_old(self) -> ConversationState:
        if self._state is None:
            logger.info("conversation_initialized_for_clear_old")
            return self.reset()
        context = self._state.context
        context.messages = context.messages[-KEEP_MESSAGES:]
        context.edits = context.edits[-KEEP_EDITS:]
        context.project_evolution.major_changes = (
            context.project_evolution.major_changes[-KEEP_MAJOR_CHANGES:]
        )
        logger.info("conversation_trimmed", messages=len(context.messages))
        return self._state

    def update(
        self,
        current_topic: str | None = None,
        user_preferences: dict[str, Any] | None = None,
    ) -> ConversationState:
        if self._state is None:
            raise NoActiveConversation("No active conversation to update")
        if current_topic:
            self._state.context.current_topic = current_topic
        if user_preferences:
            self._state.context.user_preferences = {
                **self._state.context.user_preferences,
                **user_preferences,
            }
        if current_topic or user_preferences:
            self._state.last_updated = now_ms()
        logger.info("conversation_updated", topic=current_topic)
        return self._state

    def clear(self) -> None:
        self._state = None
        logger.info("conversation_cleared")

    def record_edit(self, files: list[str], is_edit: bool, explanation: str = "") -> None:
        """Log an applied change on the active conversation; no-op without one."""
        if self._state is None:
            return
        stamp = now_ms()
        self._state.context.edits.append({
            "timestamp": stamp,
            "isEdit": is_edit,
            "files": list(files),
            "explanation": explanation,
        })
        if not is_edit and files:
            self._state.context.project_evolution.major_changes.append({
                "timestamp": stamp,
                "description": explanation or f"Created {len(files)} files",
                "files": list(files),
            })
        self._state.last_updated = stamp
