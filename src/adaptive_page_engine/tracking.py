from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Mapping, Protocol, Sequence

from pydantic import ValidationError

from .detection import DetectionService, as_utc
from .errors import InputValidationError
from .models.tracking import TrackingBatch, TrackingBatchResult, TrackingEvent, VisitorSession

logger = logging.getLogger(__name__)

EventHandler = Callable[[VisitorSession, Sequence[TrackingEvent]], None]


class VisitorSessionStore(Protocol):
    def get(self, session_id: str) -> VisitorSession | None:
        ...

    def save(self, session: VisitorSession) -> None:
        ...


class InMemoryVisitorSessionStore:
    def __init__(self) -> None:
        self._sessions: Dict[str, VisitorSession] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> VisitorSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def save(self, session: VisitorSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session.model_copy(deep=True)


def _apply_clicks(session: VisitorSession, events: Sequence[TrackingEvent]) -> None:
    for event in events:
        session.click_history.append(
            {
                "element_id": event.element_id,
                "element_type": event.element_type,
                "section_id": event.section_id,
                "page_url": event.page_url,
                "timestamp": event.timestamp.isoformat(),
            }
        )


def _apply_page_views(session: VisitorSession, events: Sequence[TrackingEvent]) -> None:
    for event in events:
        if event.page_url and (not session.navigation_path or session.navigation_path[-1] != event.page_url):
            session.navigation_path.append(event.page_url)


def _apply_scrolls(session: VisitorSession, events: Sequence[TrackingEvent]) -> None:
    for event in events:
        if event.scroll_depth is None:
            continue
        key = event.page_url or "/"
        session.max_scroll_depth[key] = max(session.max_scroll_depth.get(key, 0.0), event.scroll_depth)


def _apply_section_exits(session: VisitorSession, events: Sequence[TrackingEvent]) -> None:
    for event in events:
        if not event.section_id or event.visible_time is None:
            continue
        session.time_on_sections[event.section_id] = (
            session.time_on_sections.get(event.section_id, 0.0) + event.visible_time
        )


def _apply_chat_messages(session: VisitorSession, events: Sequence[TrackingEvent]) -> None:
    session.chat_messages.extend(event.value for event in events if event.value)


DEFAULT_HANDLERS: Mapping[str, EventHandler] = {
    "click": _apply_clicks,
    "page_view": _apply_page_views,
    "scroll": _apply_scrolls,
    "section_exit": _apply_section_exits,
    "chat_message": _apply_chat_messages,
}


class TrackingIngestor:
    """Aggregates batched visitor events into a per-session summary."""

    def __init__(
        self,
        *,
        sessions: VisitorSessionStore,
        detection: DetectionService | None = None,
        handlers: Mapping[str, EventHandler] = DEFAULT_HANDLERS,
    ) -> None:
        self._sessions = sessions
        self._detection = detection
        self._handlers = dict(handlers)

    def ingest(self, batch: TrackingBatch | Mapping[str, Any]) -> TrackingBatchResult:
        batch = self._validate(batch)
        session = self._sessions.get(batch.session_id) or VisitorSession(
            session_id=batch.session_id,
            website_id=batch.website_id,
            visitor_id=batch.visitor_id,
        )

        # Client timestamps; delivery order is not trusted.
        events = sorted(batch.events, key=lambda event: as_utc(event.timestamp))
        by_type: dict[str, list[TrackingEvent]] = {}
        for event in events:
            by_type.setdefault(event.type, []).append(event)

        processed = 0
        failed: list[str] = []
        skipped: list[str] = []
        for event_type, typed_events in by_type.items():
            handler = self._handlers.get(event_type)
            if handler is None:
                skipped.append(event_type)
                continue
            working = session.model_copy(deep=True)
            try:
                handler(working, typed_events)
            except Exception:
                logger.warning(
                    "Failed to process tracking events",
                    exc_info=True,
                    extra={"session_id": batch.session_id, "event_type": event_type},
                )
                failed.append(event_type)
                continue
            session = working
            processed += len(typed_events)

        latest = as_utc(events[-1].timestamp)
        if session.last_event_at is None or as_utc(session.last_event_at) < latest:
            session.last_event_at = latest

        result = TrackingBatchResult(
            processed_events=processed,
            failed_event_types=failed,
            skipped_event_types=skipped,
        )
        if self._detection is not None:
            outcome = self._detection.maybe_detect(session)
            session = outcome.session
            result.detection_triggered = outcome.triggered
        result.detected_persona_id = session.detected_persona_id
        result.persona_confidence = session.persona_confidence

        self._sessions.save(session)
        return result

    @staticmethod
    def _validate(batch: TrackingBatch | Mapping[str, Any]) -> TrackingBatch:
        if not isinstance(batch, TrackingBatch):
            try:
                batch = TrackingBatch.model_validate(batch)
            except ValidationError as exc:
                raise InputValidationError.from_pydantic("tracking", exc) from exc
        if not (batch.website_id and batch.visitor_id and batch.session_id):
            raise InputValidationError("website_id, visitor_id and session_id are required")
        if not batch.events:
            raise InputValidationError("Tracking batch has no events")
        return batch


__all__ = [
    "VisitorSessionStore",
    "InMemoryVisitorSessionStore",
    "TrackingIngestor",
    "DEFAULT_HANDLERS",
]
