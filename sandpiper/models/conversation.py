"""Conversation state shape.

Maintained by the request layer; the apply pipeline never mutates it.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from sandpiper.models.schemas import _WireModel


class ProjectEvolution(_WireModel):
    major_changes: list[Any] = Field(default_factory=list)


class ConversationContext(_WireModel):
    messages: list[Any] = Field(default_factory=list)
    edits: list[Any] = Field(default_factory=list)
    project_evolution: ProjectEvolution = Field(default_factory=ProjectEvolution)
    user_preferences: dict[str, Any] = Field(default_factory=dict)
    current_topic: str | None = None


class ConversationState(_WireModel):
    conversation_id: str
    started_at: int = Field(description="Epoch milliseconds")
    last_updated: int = Field(description="Epoch milliseconds")
    context: ConversationContext = Field(default_factory=ConversationContext)
