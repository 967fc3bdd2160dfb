from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Mapping, Sequence

from pydantic import BaseModel, Field

TrackingEventType = Literal[
    "page_view",
    "click",
    "scroll",
    "section_enter",
    "section_exit",
    "form_start",
    "form_field_focus",
    "form_submit",
    "search",
    "session_start",
    "session_end",
    "chat_message",
]


class TrackingEvent(BaseModel):
    type: TrackingEventType
    timestamp: datetime
    page_url: str = ""
    element_id: str | None = None
    element_type: str | None = None
    section_id: str | None = None
    scroll_depth: float | None = Field(default=None, ge=0.0, le=100.0)
    visible_time: float | None = Field(default=None, ge=0.0, description="seconds")
    value: str | None = None


class TrackingBatch(BaseModel):
    website_id: str
    visitor_id: str
    session_id: str
    events: Sequence[TrackingEvent]


class VisitorSession(BaseModel):
    session_id: str
    website_id: str
    visitor_id: str
    click_history: list[Mapping[str, Any]] = Field(default_factory=list)
    navigation_path: list[str] = Field(default_factory=list)
    max_scroll_depth: dict[str, float] = Field(default_factory=dict)
    time_on_sections: dict[str, float] = Field(default_factory=dict)
    chat_messages: list[str] = Field(default_factory=list)
    detected_persona_id: str | None = None
    persona_confidence: float | None = None
    last_detection_at: datetime | None = None
    last_event_at: datetime | None = None

    @property
    def total_time_seconds(self) -> float:
        return sum(self.time_on_sections.values())


class DetectionResult(BaseModel):
    persona_id: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    alternatives: Sequence[Mapping[str, Any]] = Field(default_factory=list)
    detector: str = "keyword"


class TrackingBatchResult(BaseModel):
    processed_events: int
    failed_event_types: Sequence[str] = Field(default_factory=list)
    skipped_event_types: Sequence[str] = Field(default_factory=list)
    detection_triggered: bool = False
    detected_persona_id: str | None = None
    persona_confidence: float | None = None


__all__ = [
    "TrackingEventType",
    "TrackingEvent",
    "TrackingBatch",
    "VisitorSession",
    "DetectionResult",
    "TrackingBatchResult",
]
