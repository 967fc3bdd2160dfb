from datetime import datetime, timedelta, timezone

import pytest

from adaptive_page_engine.detection import DetectionService, KeywordPersonaDetector
from adaptive_page_engine.errors import InputValidationError
from adaptive_page_engine.tracking import DEFAULT_HANDLERS, InMemoryVisitorSessionStore, TrackingIngestor

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def at(seconds: float) -> str:
    return (START + timedelta(seconds=seconds)).isoformat()


def batch(*events, session_id="s-1"):
    return {"website_id": "w-1", "visitor_id": "v-1", "session_id": session_id, "events": list(events)}


def test_out_of_order_events_are_applied_by_timestamp():
    sessions = InMemoryVisitorSessionStore()
    ingestor = TrackingIngestor(sessions=sessions)

    result = ingestor.ingest(
        batch(
            {"type": "page_view", "timestamp": at(20), "page_url": "/pricing"},
            {"type": "page_view", "timestamp": at(0), "page_url": "/"},
            {"type": "page_view", "timestamp": at(10), "page_url": "/docs"},
        )
    )

    session = sessions.get("s-1")
    assert result.processed_events == 3
    assert session.navigation_path == ["/", "/docs", "/pricing"]
    assert session.last_event_at == START + timedelta(seconds=20)


def test_batches_accumulate_into_one_session():
    sessions = InMemoryVisitorSessionStore()
    ingestor = TrackingIngestor(sessions=sessions)

    ingestor.ingest(
        batch(
            {"type": "scroll", "timestamp": at(1), "page_url": "/", "scroll_depth": 40},
            {"type": "section_exit", "timestamp": at(2), "section_id": "hero", "visible_time": 12.5},
        )
    )
    ingestor.ingest(
        batch(
            {"type": "scroll", "timestamp": at(3), "page_url": "/", "scroll_depth": 25},
            {"type": "section_exit", "timestamp": at(4), "section_id": "hero", "visible_time": 7.5},
            {"type": "click", "timestamp": at(5), "element_id": "cta", "section_id": "hero"},
        )
    )

    session = sessions.get("s-1")
    assert session.max_scroll_depth == {"/": 40}
    assert session.time_on_sections == {"hero": 20.0}
    assert len(session.click_history) == 1


def test_late_batch_does_not_move_last_event_backwards():
    sessions = InMemoryVisitorSessionStore()
    ingestor = TrackingIngestor(sessions=sessions)

    ingestor.ingest(batch({"type": "page_view", "timestamp": at(60), "page_url": "/"}))
    ingestor.ingest(batch({"type": "page_view", "timestamp": at(5), "page_url": "/docs"}))

    assert sessions.get("s-1").last_event_at == START + timedelta(seconds=60)


def test_failing_handler_only_drops_its_event_type():
    def explode(session, events):
        session.chat_messages.append("partial write")
        raise RuntimeError("handler bug")

    handlers = dict(DEFAULT_HANDLERS, chat_message=explode)
    sessions = InMemoryVisitorSessionStore()
    ingestor = TrackingIngestor(sessions=sessions, handlers=handlers)

    result = ingestor.ingest(
        batch(
            {"type": "chat_message", "timestamp": at(1), "value": "hello"},
            {"type": "click", "timestamp": at(2), "element_id": "buy"},
        )
    )

    session = sessions.get("s-1")
    assert list(result.failed_event_types) == ["chat_message"]
    assert result.processed_events == 1
    assert session.chat_messages == []
    assert len(session.click_history) == 1


def test_engaged_session_triggers_detection():
    sessions = InMemoryVisitorSessionStore()
    ingestor = TrackingIngestor(
        sessions=sessions,
        detection=DetectionService(detector=KeywordPersonaDetector(), clock=lambda: START + timedelta(minutes=5)),
    )
    events = [
        {"type": "page_view", "timestamp": at(0), "page_url": "/"},
        {"type": "page_view", "timestamp": at(5), "page_url": "/docs"},
        {"type": "click", "timestamp": at(6), "element_id": "api-reference", "section_id": "features"},
        {"type": "section_exit", "timestamp": at(40), "section_id": "features", "visible_time": 35},
        {"type": "chat_message", "timestamp": at(50), "value": "Is there an SDK for the API?"},
    ]

    result = ingestor.ingest(batch(*events))

    assert result.detection_triggered is True
    assert result.detected_persona_id == "developer"
    assert sessions.get("s-1").last_detection_at is not None


@pytest.mark.parametrize(
    "payload",
    [
        batch(),
        batch({"type": "page_view", "timestamp": at(0)}, session_id=""),
        batch({"type": "teleport", "timestamp": at(0)}),
        batch({"type": "scroll", "timestamp": at(0), "scroll_depth": 140}),
    ],
)
def test_malformed_batches_are_rejected(payload):
    with pytest.raises(InputValidationError):
        TrackingIngestor(sessions=InMemoryVisitorSessionStore()).ingest(payload)


def test_unhandled_event_types_are_skipped_without_dropping_the_batch():
    sessions = InMemoryVisitorSessionStore()
    ingestor = TrackingIngestor(sessions=sessions)

    result = ingestor.ingest(
        batch(
            {"type": "session_start", "timestamp": at(0), "page_url": "/"},
            {"type": "click", "timestamp": at(1), "element_id": "buy", "section_id": "hero"},
            {"type": "section_enter", "timestamp": at(2), "section_id": "pricing"},
            {"type": "form_submit", "timestamp": at(3), "page_url": "/contact"},
        )
    )

    assert result.processed_events == 1
    assert list(result.failed_event_types) == []
    assert list(result.skipped_event_types) == ["session_start", "section_enter", "form_submit"]
    assert len(sessions.get("s-1").click_history) == 1
    assert sessions.get("s-1").last_event_at == START + timedelta(seconds=3)
