from __future__ import annotations

import time
from enum import Enum
from typing import Any, Mapping, Sequence

from pydantic import BaseModel, Field


class InteractionType(str, Enum):
    page_view = "page_view"
    section_view = "section_view"
    click = "click"
    chat_message = "chat_message"
    role_select = "role_select"
    scroll = "scroll"


class InteractionEvent(BaseModel):
    type: InteractionType
    target: str | None = None
    value: str | None = None
    timestamp: float = Field(default_factory=time.time)
    metadata: Mapping[str, Any] | None = None


class SignalSource(str, Enum):
    self_identified = "self_identified"
    inferred = "inferred"
    chat_analysis = "chat_analysis"
    behavior = "behavior"


class PersonaSignal(BaseModel):
    persona_id: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: SignalSource
    timestamp: float = Field(default_factory=time.time)


class ContentVariant(BaseModel):
    id: str
    target_personas: Sequence[str]
    content: Mapping[str, Any]
    priority: int = 0


class SessionState(str, Enum):
    unidentified = "unidentified"
    inferred = "inferred"
    confirmed = "confirmed"


class PersonaSession(BaseModel):
    session_id: str
    active_persona_id: str | None = None
    active_persona_label: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    signals: list[PersonaSignal] = Field(default_factory=list)
    interactions: list[InteractionEvent] = Field(default_factory=list)
    self_identified: bool = False
    last_activity_at: float = Field(default_factory=time.time)

    @property
    def state(self) -> SessionState:
        if self.self_identified and self.active_persona_id:
            return SessionState.confirmed
        if self.active_persona_id:
            return SessionState.inferred
        return SessionState.unidentified


class ResolvedSectionContent(BaseModel):
    section_id: str
    content: Mapping[str, Any]
    persona_id: str | None = None
    transition: str | None = Field(
        default=None,
        description="Animation preset to announce a persona-driven content swap",
    )


__all__ = [
    "InteractionType",
    "InteractionEvent",
    "SignalSource",
    "PersonaSignal",
    "ContentVariant",
    "SessionState",
    "PersonaSession",
    "ResolvedSectionContent",
]
