from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable, Mapping, Protocol, Sequence

from .models.knowledge import KnowledgeExcerpt, PersonaDefinition

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")

DEFAULT_PERSONAS: Mapping[str, PersonaDefinition] = {
    persona.id: persona
    for persona in (
        PersonaDefinition(
            id="developer",
            label="Developer",
            description="Technical users looking for API docs and integration details",
            keywords=["api", "sdk", "integration", "code", "documentation", "technical"],
            priority=1,
            communication_style="technical",
            goals=["ship integrations quickly"],
            pain_points=["poor documentation", "fragile integrations"],
        ),
        PersonaDefinition(
            id="business-owner",
            label="Business Owner",
            description="Decision makers focused on ROI and business value",
            keywords=["pricing", "roi", "cost", "growth", "revenue", "customers"],
            priority=1,
            communication_style="business",
            goals=["grow revenue", "reduce cost"],
            pain_points=["unclear return on investment"],
        ),
        PersonaDefinition(
            id="enterprise",
            label="Enterprise",
            description="Large organizations needing scale and security",
            keywords=["security", "compliance", "scale", "enterprise", "sso", "sla"],
            priority=2,
            communication_style="executive",
            goals=["meet compliance requirements", "scale safely"],
            pain_points=["vendor risk", "security reviews"],
        ),
        PersonaDefinition(
            id="student",
            label="Student",
            description="Learners exploring the platform",
            keywords=["learn", "tutorial", "free", "educational", "getting started"],
            priority=0,
            communication_style="business",
            goals=["learn the basics"],
            pain_points=["steep learning curve"],
        ),
    )
}


def tokenize(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


def similarity(query_tokens: set[str], text: str) -> float:
    """Share of query tokens present in ``text``."""
    if not query_tokens:
        return 0.0
    return len(query_tokens & tokenize(text)) / len(query_tokens)


class KnowledgeSource(Protocol):
    def search(
        self, query: str, *, knowledge_base_id: str, limit: int = 10
    ) -> list[KnowledgeExcerpt]:
        ...

    def personas(self, workspace_id: str, persona_ids: Sequence[str]) -> list[PersonaDefinition]:
        ...


class LocalKnowledgeSource:
    """Knowledge base backed by JSON fixtures.

    Layout under ``base_path``::

        <knowledge_base_id>.json        {"excerpts": [...]}
        personas/<workspace_id>.json    [{"id": ..., "label": ...}, ...]
    """

    def __init__(
        self,
        *,
        base_path: Path,
        fallback_personas: Mapping[str, PersonaDefinition] = DEFAULT_PERSONAS,
    ) -> None:
        self._base_path = base_path
        self._fallback_personas = dict(fallback_personas)

    def search(
        self, query: str, *, knowledge_base_id: str, limit: int = 10
    ) -> list[KnowledgeExcerpt]:
        excerpts = self._load_excerpts(knowledge_base_id)
        query_tokens = tokenize(query)
        scored = []
        for excerpt in excerpts:
            haystack = " ".join([excerpt.entity_type, excerpt.text, *map(str, excerpt.metadata.values())])
            score = similarity(query_tokens, haystack)
            if score > 0:
                scored.append((score, excerpt))
        scored.sort(key=lambda item: (-item[0], -item[1].confidence, item[1].id))
        return [excerpt for _, excerpt in scored[:limit]]

    def all_excerpts(self, knowledge_base_id: str) -> list[KnowledgeExcerpt]:
        return self._load_excerpts(knowledge_base_id)

    def personas(self, workspace_id: str, persona_ids: Sequence[str]) -> list[PersonaDefinition]:
        if not persona_ids:
            return []
        catalogue = dict(self._fallback_personas)
        file_path = self._base_path / "personas" / f"{workspace_id}.json"
        if file_path.exists():
            with file_path.open("r", encoding="utf-8") as fp:
                data = json.load(fp)
            catalogue.update(
                {persona.id: persona for persona in _parse_personas(data)}
            )
        resolved = []
        for persona_id in persona_ids:
            persona = catalogue.get(persona_id)
            if persona is None:
                logger.warning(
                    "Unknown persona requested",
                    extra={"workspace_id": workspace_id, "persona_id": persona_id},
                )
                persona = PersonaDefinition(id=persona_id, label=persona_id.replace("-", " ").title())
            resolved.append(persona)
        return resolved

    def _load_excerpts(self, knowledge_base_id: str) -> list[KnowledgeExcerpt]:
        file_path = self._base_path / f"{knowledge_base_id}.json"
        if not file_path.exists():
            logger.warning(
                "Knowledge base payload not found",
                extra={"knowledge_base_id": knowledge_base_id, "path": str(file_path)},
            )
            return []
        with file_path.open("r", encoding="utf-8") as fp:
            data = json.load(fp)
        return [KnowledgeExcerpt.model_validate(item) for item in data.get("excerpts", [])]


def _parse_personas(data: Iterable[Mapping[str, object]]) -> list[PersonaDefinition]:
    return [PersonaDefinition.model_validate(item) for item in data]


__all__ = [
    "DEFAULT_PERSONAS",
    "KnowledgeSource",
    "LocalKnowledgeSource",
    "tokenize",
    "similarity",
]
