from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Mapping, Protocol, Sequence, Tuple
from uuid import uuid4

from pydantic import ValidationError

from .knowledge import DEFAULT_PERSONAS
from .models.knowledge import PersonaDefinition
from .models.page import AnimationConfig
from .models.session import (
    ContentVariant,
    InteractionEvent,
    InteractionType,
    PersonaSession,
    PersonaSignal,
    ResolvedSectionContent,
    SessionState,
    SignalSource,
)

logger = logging.getLogger(__name__)

STORAGE_KEY = "persona_session"
SESSION_TTL_SECONDS = 24 * 60 * 60
MAX_INTERACTIONS = 50
MAX_SIGNALS = 20
CHAT_SIGNAL_BASE = 0.2
CHAT_SIGNAL_STEP = 0.15
CHAT_SIGNAL_CAP = 0.8
RECENT_VIEWS_WINDOW = 5

DEFAULT_GREETING = "Welcome! How can we help you today?"
GREETINGS: Mapping[str, str] = {
    "developer": "Hey there, developer! Ready to dive into the technical details?",
    "business-owner": "Welcome! Let's explore how we can grow your business.",
    "enterprise": "Welcome! Let's discuss how we can support your organization at scale.",
    "student": "Hi there! Great to have you here. Let's learn together!",
}


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str, *, ttl_seconds: float | None = None) -> None:
        ...

    def clear(self, key: str) -> None:
        ...


class InMemoryKeyValueStore:
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._items: Dict[str, Tuple[str, float | None]] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and self._clock() >= expires_at:
                del self._items[key]
                return None
            return value

    def set(self, key: str, value: str, *, ttl_seconds: float | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        with self._lock:
            self._items[key] = (value, expires_at)

    def clear(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


def chat_signal_confidence(match_count: int) -> float:
    return min(CHAT_SIGNAL_CAP, CHAT_SIGNAL_BASE + CHAT_SIGNAL_STEP * match_count)


class PersonaResolver:
    """Per-visitor persona state machine.

    ``unidentified`` -> ``inferred`` as signals arrive; ``set_persona`` moves to
    ``confirmed``, which inferred signals never override. Every transition is
    persisted best-effort through the key-value store.
    """

    def __init__(
        self,
        *,
        store: KeyValueStore | None = None,
        personas: Mapping[str, PersonaDefinition] = DEFAULT_PERSONAS,
        animation: AnimationConfig | None = None,
        storage_key: str = STORAGE_KEY,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        session_id_factory: Callable[[], str] = lambda: f"session_{uuid4().hex}",
    ) -> None:
        self._store = store if store is not None else InMemoryKeyValueStore(clock=clock)
        self._personas = dict(personas)
        self._animation = animation or AnimationConfig()
        self._storage_key = storage_key
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._session_id_factory = session_id_factory
        self._rendered: dict[str, Mapping[str, Any]] = {}
        self._session = self._load() or self._new_session()

    @property
    def session(self) -> PersonaSession:
        return self._session.model_copy(deep=True)

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def active_persona_id(self) -> str | None:
        return self._session.active_persona_id

    @property
    def active_persona_label(self) -> str | None:
        return self._session.active_persona_label

    @property
    def confidence(self) -> float:
        return self._session.confidence

    @property
    def self_identified(self) -> bool:
        return self._session.self_identified

    def add_signal(
        self,
        persona_id: str,
        confidence: float,
        source: SignalSource = SignalSource.inferred,
    ) -> None:
        self._expire_if_stale()
        session = self._session
        signal = PersonaSignal(
            persona_id=persona_id,
            confidence=min(1.0, max(0.0, confidence)),
            source=source,
            timestamp=self._clock(),
        )
        session.signals = [*session.signals, signal][-MAX_SIGNALS:]
        session.last_activity_at = self._clock()
        if not session.self_identified:
            self._recompute()
        self._persist()

    def set_persona(self, persona_id: str, label: str | None = None) -> None:
        self._expire_if_stale()
        session = self._session
        now = self._clock()
        session.signals = [
            *session.signals,
            PersonaSignal(
                persona_id=persona_id, confidence=1.0, source=SignalSource.self_identified, timestamp=now
            ),
        ][-MAX_SIGNALS:]
        session.active_persona_id = persona_id
        session.active_persona_label = label or self._label(persona_id)
        session.confidence = 1.0
        session.self_identified = True
        session.last_activity_at = now
        logger.info("Persona self-identified", extra={"persona_id": persona_id})
        self._persist()

    def record_interaction(self, event: InteractionEvent) -> None:
        self._expire_if_stale()
        session = self._session
        session.interactions = [*session.interactions, event][-MAX_INTERACTIONS:]
        session.last_activity_at = self._clock()

        if event.type == InteractionType.chat_message and event.value:
            text = event.value.lower()
            for persona in self._personas.values():
                matches = sum(1 for keyword in persona.keywords if keyword.lower() in text)
                if matches:
                    self.add_signal(
                        persona.id, chat_signal_confidence(matches), SignalSource.chat_analysis
                    )
        elif event.type == InteractionType.role_select and event.value in self._personas:
            self.set_persona(event.value)
        self._persist()

    def clear_persona(self) -> None:
        session = self._session
        session.active_persona_id = None
        session.active_persona_label = None
        session.confidence = 0.0
        session.self_identified = False
        session.signals = []
        self._rendered.clear()
        self._persist()

    def get_content_variant(
        self, base: Mapping[str, Any], variants: Sequence[ContentVariant]
    ) -> Mapping[str, Any]:
        """Shallow-merge the highest-priority variant for the active persona over ``base``."""
        persona_id = self._session.active_persona_id
        if not persona_id:
            return base
        matching = [variant for variant in variants if persona_id in variant.target_personas]
        if not matching:
            return base
        top = sorted(matching, key=lambda variant: -variant.priority)[0]
        return {**base, **top.content}

    def matches_persona(self, target_persona_ids: Sequence[str]) -> bool:
        persona_id = self._session.active_persona_id
        return bool(persona_id) and persona_id in target_persona_ids

    def resolve_section(
        self,
        section_id: str,
        base: Mapping[str, Any],
        variants: Sequence[ContentVariant],
    ) -> ResolvedSectionContent:
        """Resolve content for a section and report whether the swap must animate."""
        content = dict(self.get_content_variant(base, variants))
        previous = self._rendered.get(section_id)
        transition = None
        if previous is not None and previous != content:
            transition = self._animation.swap
        self._rendered[section_id] = content
        return ResolvedSectionContent(
            section_id=section_id,
            content=content,
            persona_id=self._session.active_persona_id,
            transition=transition,
        )

    def greeting(self) -> str:
        return GREETINGS.get(self._session.active_persona_id or "", DEFAULT_GREETING)

    def adaptation_hints(self) -> str:
        session = self._session
        hints: list[str] = []
        if session.active_persona_id:
            label = session.active_persona_label or session.active_persona_id
            hints.append(f"User persona: {label}")
            if session.self_identified:
                hints.append("(self-identified)")
            else:
                hints.append(f"(inferred with {round(session.confidence * 100)}% confidence)")
        viewed = [
            event.target
            for event in session.interactions[-RECENT_VIEWS_WINDOW:]
            if event.type == InteractionType.section_view and event.target
        ]
        if viewed:
            hints.append(f"Recently viewed: {', '.join(viewed)}")
        return " ".join(hints)

    def _recompute(self) -> None:
        session = self._session
        signals = session.signals
        if not signals:
            return
        total = len(signals)
        scores: dict[str, float] = {}
        for index, signal in enumerate(signals):
            weight = 0.5 + 0.5 * (index / total)
            scores[signal.persona_id] = scores.get(signal.persona_id, 0.0) + signal.confidence * weight
        best_id, best_score = None, 0.0
        for persona_id, score in scores.items():
            if score > best_score:
                best_id, best_score = persona_id, score
        if best_id is None:
            return
        previous = session.active_persona_id
        session.active_persona_id = best_id
        session.active_persona_label = self._label(best_id)
        session.confidence = min(1.0, best_score / total)
        if previous != best_id:
            logger.info(
                "Persona inferred",
                extra={"persona_id": best_id, "confidence": session.confidence},
            )

    def _label(self, persona_id: str) -> str:
        persona = self._personas.get(persona_id)
        return persona.label if persona else persona_id

    def _new_session(self) -> PersonaSession:
        return PersonaSession(session_id=self._session_id_factory(), last_activity_at=self._clock())

    def _expire_if_stale(self) -> None:
        if self._clock() - self._session.last_activity_at < self._ttl_seconds:
            return
        logger.info("Persona session expired", extra={"session_id": self._session.session_id})
        self._rendered.clear()
        self._session = self._new_session()
        try:
            self._store.clear(self._storage_key)
        except Exception:
            logger.warning("Failed to clear expired persona session", exc_info=True)

    def _load(self) -> PersonaSession | None:
        try:
            raw = self._store.get(self._storage_key)
        except Exception:
            logger.warning("Failed to load persona session", exc_info=True)
            return None
        if not raw:
            return None
        try:
            session = PersonaSession.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable persona session")
            return None
        if self._clock() - session.last_activity_at >= self._ttl_seconds:
            return None
        return session

    def _persist(self) -> None:
        session = self._session
        session.interactions = session.interactions[-MAX_INTERACTIONS:]
        session.signals = session.signals[-MAX_SIGNALS:]
        try:
            self._store.set(
                self._storage_key, session.model_dump_json(), ttl_seconds=self._ttl_seconds
            )
        except Exception:
            logger.warning(
                "Failed to persist persona session",
                exc_info=True,
                extra={"session_id": session.session_id},
            )


__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "PersonaResolver",
    "chat_signal_confidence",
    "GREETINGS",
    "DEFAULT_GREETING",
    "MAX_INTERACTIONS",
    "MAX_SIGNALS",
    "SESSION_TTL_SECONDS",
]
