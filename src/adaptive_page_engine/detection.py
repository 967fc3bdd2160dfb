from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Protocol, Sequence

from .errors import DetectionError
from .knowledge import DEFAULT_PERSONAS, tokenize
from .models.knowledge import PersonaDefinition
from .models.tracking import DetectionResult, VisitorSession

logger = logging.getLogger(__name__)

MIN_CLICKS = 3
MIN_PAGES = 2
MIN_TIME_SECONDS = 30
REDETECT_INTERVAL_SECONDS = 60

DEFAULT_MIN_CONFIDENCE = 0.5
DEFAULT_MAX_ALTERNATIVES = 2
ALTERNATIVE_RATIO = 0.7


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DetectionTriggerPolicy:
    """Engagement and cooldown gate in front of persona detection.

    Monotonic in clicks, pages and time; a detection newer than the
    re-detect interval always suppresses triggering.
    """

    min_clicks: int = MIN_CLICKS
    min_pages: int = MIN_PAGES
    min_time_seconds: float = MIN_TIME_SECONDS
    redetect_interval_seconds: float = REDETECT_INTERVAL_SECONDS

    def should_trigger_detection(
        self,
        total_clicks: int,
        total_pages: int,
        total_time: float,
        last_detection_at: datetime | None = None,
        *,
        now: datetime | None = None,
    ) -> bool:
        if total_clicks < self.min_clicks and total_pages < self.min_pages:
            return False
        if total_time < self.min_time_seconds:
            return False
        if last_detection_at is not None:
            elapsed = as_utc(now or utcnow()) - as_utc(last_detection_at)
            if elapsed < timedelta(seconds=self.redetect_interval_seconds):
                return False
        return True


DEFAULT_POLICY = DetectionTriggerPolicy()


def should_trigger_detection(
    total_clicks: int,
    total_pages: int,
    total_time: float,
    last_detection_at: datetime | None = None,
    *,
    now: datetime | None = None,
) -> bool:
    return DEFAULT_POLICY.should_trigger_detection(
        total_clicks, total_pages, total_time, last_detection_at, now=now
    )


class PersonaDetector(Protocol):
    name: str

    def detect(
        self, session: VisitorSession, personas: Sequence[PersonaDefinition]
    ) -> DetectionResult:
        ...


def behaviour_text(session: VisitorSession) -> dict[str, str]:
    clicks = " ".join(
        " ".join(str(click.get(key) or "") for key in ("element_id", "element_type", "section_id"))
        for click in session.click_history
    )
    return {
        "chat": " ".join(session.chat_messages),
        "clicks": clicks,
        "navigation": " ".join(session.navigation_path),
        "sections": " ".join(session.time_on_sections),
    }


class KeywordPersonaDetector:
    """Scores personas by keyword hits across chat, clicks, navigation and viewed sections."""

    name = "keyword"

    def __init__(
        self,
        *,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        max_alternatives: int = DEFAULT_MAX_ALTERNATIVES,
        channel_weights: Mapping[str, float] | None = None,
        saturation: float = 4.0,
    ) -> None:
        self._min_confidence = min_confidence
        self._max_alternatives = max_alternatives
        self._channel_weights = dict(
            channel_weights or {"chat": 2.0, "clicks": 1.0, "navigation": 1.0, "sections": 0.5}
        )
        self._saturation = saturation

    def detect(
        self, session: VisitorSession, personas: Sequence[PersonaDefinition]
    ) -> DetectionResult:
        channels = {name: tokenize(text) for name, text in behaviour_text(session).items()}
        scored = []
        for persona in personas:
            hits = 0.0
            for keyword in persona.keywords:
                keyword_tokens = tokenize(keyword)
                if not keyword_tokens:
                    continue
                for channel, tokens in channels.items():
                    if keyword_tokens <= tokens:
                        hits += self._channel_weights.get(channel, 1.0)
            confidence = round(min(1.0, hits / self._saturation), 4)
            scored.append((confidence, persona.priority, persona.id))
        scored.sort(key=lambda item: (-item[0], -item[1], item[2]))

        if not scored or scored[0][0] < self._min_confidence:
            return DetectionResult(detector=self.name)
        best_confidence, _, best_id = scored[0]
        alternatives = [
            {"persona_id": persona_id, "confidence": confidence}
            for confidence, _, persona_id in scored[1:]
            if confidence >= self._min_confidence * ALTERNATIVE_RATIO
        ][: self._max_alternatives]
        return DetectionResult(
            persona_id=best_id,
            confidence=best_confidence,
            alternatives=alternatives,
            detector=self.name,
        )


@dataclass
class DetectionOutcome:
    triggered: bool
    session: VisitorSession
    result: DetectionResult | None = None


class DetectionService:
    def __init__(
        self,
        *,
        detector: PersonaDetector,
        policy: DetectionTriggerPolicy = DEFAULT_POLICY,
        personas: Mapping[str, PersonaDefinition] = DEFAULT_PERSONAS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._detector = detector
        self._policy = policy
        self._personas = list(personas.values())
        self._clock = clock

    def maybe_detect(self, session: VisitorSession) -> DetectionOutcome:
        now = self._clock()
        total_pages = len(set(session.navigation_path))
        if not self._policy.should_trigger_detection(
            len(session.click_history),
            total_pages,
            session.total_time_seconds,
            session.last_detection_at,
            now=now,
        ):
            return DetectionOutcome(triggered=False, session=session)

        session = session.model_copy(deep=True)
        session.last_detection_at = now
        try:
            result = self._detector.detect(session, self._personas)
        except DetectionError:
            logger.warning(
                "Persona detection failed; keeping prior persona",
                exc_info=True,
                extra={"session_id": session.session_id},
            )
            return DetectionOutcome(triggered=True, session=session)

        if result.persona_id:
            session.detected_persona_id = result.persona_id
            session.persona_confidence = result.confidence
        logger.info(
            "Persona detection completed",
            extra={
                "session_id": session.session_id,
                "persona_id": result.persona_id,
                "confidence": result.confidence,
                "detector": result.detector,
            },
        )
        return DetectionOutcome(triggered=True, session=session, result=result)


__all__ = [
    "DetectionTriggerPolicy",
    "DEFAULT_POLICY",
    "should_trigger_detection",
    "PersonaDetector",
    "KeywordPersonaDetector",
    "DetectionService",
    "DetectionOutcome",
]
