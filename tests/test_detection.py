from datetime import datetime, timedelta, timezone

import pytest

from adaptive_page_engine.detection import (
    DetectionService,
    DetectionTriggerPolicy,
    KeywordPersonaDetector,
    should_trigger_detection,
)
from adaptive_page_engine.errors import DetectionError
from adaptive_page_engine.knowledge import DEFAULT_PERSONAS
from adaptive_page_engine.models.tracking import VisitorSession

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class BrokenDetector:
    name = "broken"

    def detect(self, session, personas):
        raise DetectionError("classifier offline")


def engaged_session(**updates) -> VisitorSession:
    session = VisitorSession(
        session_id="s-1",
        website_id="w-1",
        visitor_id="v-1",
        click_history=[{"element_id": "api-docs", "element_type": "link", "section_id": "features"}] * 4,
        navigation_path=["/", "/docs", "/pricing"],
        time_on_sections={"hero": 40.0, "features": 50.0},
        chat_messages=["Does the SDK support webhooks?", "Where is the API documentation?"],
    )
    return session.model_copy(update=updates)


def test_engaged_visitor_triggers_detection():
    assert should_trigger_detection(15, 4, 120, None, now=NOW) is True


def test_recent_detection_suppresses_trigger():
    recent = NOW - timedelta(seconds=5)

    assert should_trigger_detection(15, 4, 120, recent, now=NOW) is False
    assert should_trigger_detection(15, 4, 120, NOW - timedelta(seconds=61), now=NOW) is True


def test_naive_timestamps_are_treated_as_utc():
    recent = NOW.replace(tzinfo=None) - timedelta(seconds=5)

    assert should_trigger_detection(15, 4, 120, recent, now=NOW) is False


@pytest.mark.parametrize(
    "clicks, pages, seconds, expected",
    [
        (0, 0, 300, False),
        (3, 0, 30, True),
        (0, 2, 30, True),
        (10, 10, 29, False),
    ],
)
def test_engagement_thresholds(clicks, pages, seconds, expected):
    assert should_trigger_detection(clicks, pages, seconds, now=NOW) is expected


def test_trigger_is_monotonic_in_engagement():
    policy = DetectionTriggerPolicy()
    for clicks in range(0, 6):
        for pages in range(0, 4):
            for seconds in (0, 29, 30, 90):
                if policy.should_trigger_detection(clicks, pages, seconds, now=NOW):
                    assert policy.should_trigger_detection(clicks + 1, pages, seconds, now=NOW)
                    assert policy.should_trigger_detection(clicks, pages + 1, seconds, now=NOW)
                    assert policy.should_trigger_detection(clicks, pages, seconds + 10, now=NOW)


def test_keyword_detector_picks_developer():
    result = KeywordPersonaDetector().detect(engaged_session(), list(DEFAULT_PERSONAS.values()))

    assert result.persona_id == "developer"
    assert result.confidence == 1.0
    assert result.detector == "keyword"


def test_keyword_detector_returns_empty_result_below_threshold():
    session = engaged_session(chat_messages=[], click_history=[], navigation_path=["/"])

    result = KeywordPersonaDetector().detect(session, list(DEFAULT_PERSONAS.values()))

    assert result.persona_id is None
    assert result.confidence is None


def test_service_updates_session_and_cooldown():
    service = DetectionService(detector=KeywordPersonaDetector(), clock=lambda: NOW)

    outcome = service.maybe_detect(engaged_session())

    assert outcome.triggered is True
    assert outcome.session.detected_persona_id == "developer"
    assert outcome.session.last_detection_at == NOW

    again = service.maybe_detect(outcome.session)
    assert again.triggered is False


def test_detection_failure_keeps_prior_persona():
    service = DetectionService(detector=BrokenDetector(), clock=lambda: NOW)
    session = engaged_session(detected_persona_id="enterprise", persona_confidence=0.7)

    outcome = service.maybe_detect(session)

    assert outcome.triggered is True
    assert outcome.result is None
    assert outcome.session.detected_persona_id == "enterprise"
    assert outcome.session.persona_confidence == 0.7
    assert outcome.session.last_detection_at == NOW
    assert session.last_detection_at is None
