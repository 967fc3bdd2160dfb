from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Protocol, Sequence

from .components import ComponentDefinition
from .knowledge import similarity, tokenize
from .models.knowledge import KnowledgeExcerpt, PersonaDefinition
from .models.layout import ComponentKind, NarrativeRole, PageType

DEFAULT_SCORE_WEIGHTS: Mapping[str, float] = {
    "content": 0.4,
    "use_case": 0.3,
    "recommended": 0.2,
    "simplicity": 0.1,
}


@dataclass(frozen=True)
class ScoringContext:
    page_type: PageType
    hints: Mapping[str, Any] = field(default_factory=dict)
    excerpts: Sequence[KnowledgeExcerpt] = ()
    personas: Sequence[str] = ()
    recommended: Sequence[ComponentKind] = ()

    def hint_text(self) -> str:
        parts: list[str] = [self.page_type.value, *self.personas]
        for value in self.hints.values():
            if isinstance(value, str):
                parts.append(value)
            elif isinstance(value, (list, tuple)):
                parts.extend(str(item) for item in value)
        return " ".join(parts)


@dataclass(frozen=True)
class CompletionRequest:
    section_id: str
    component: ComponentDefinition
    narrative_role: NarrativeRole
    page_type: PageType
    excerpts: Sequence[KnowledgeExcerpt] = ()
    persona: PersonaDefinition | None = None
    hints: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class OracleCompletion:
    fields: dict[str, Any]
    tokens_used: int = 0
    grounded_fields: Sequence[str] = ()
    source_excerpt_ids: Sequence[str] = ()
    model: str = "heuristic"


class GenerationOracle(Protocol):
    def score_component(self, definition: ComponentDefinition, context: ScoringContext) -> float:
        ...

    def complete_section(self, request: CompletionRequest) -> OracleCompletion:
        ...


class HeuristicOracle:
    """Deterministic oracle: keyword-overlap ranking and excerpt-driven field extraction."""

    def __init__(
        self,
        *,
        weights: Mapping[str, float] = DEFAULT_SCORE_WEIGHTS,
        max_items: int = 6,
    ) -> None:
        self._weights = dict(weights)
        self._max_items = max_items

    def score_component(self, definition: ComponentDefinition, context: ScoringContext) -> float:
        available_types = {excerpt.entity_type for excerpt in context.excerpts}
        if definition.source_entity_types:
            matched = sum(1 for kind in definition.source_entity_types if kind in available_types)
            content = matched / len(definition.source_entity_types)
        else:
            content = 0.0
        use_case = similarity(tokenize(" ".join(definition.use_cases)), context.hint_text())
        recommended = 1.0 if definition.kind in context.recommended else 0.0
        simplicity = 1.0 / max(1, definition.complexity)
        score = (
            self._weights["content"] * content
            + self._weights["use_case"] * use_case
            + self._weights["recommended"] * recommended
            + self._weights["simplicity"] * simplicity
        )
        return round(min(1.0, max(0.0, score)), 4)

    def complete_section(self, request: CompletionRequest) -> OracleCompletion:
        excerpts = _rank_for_persona(request.excerpts, request.persona)
        fields: dict[str, Any] = {}
        grounded: list[str] = []
        used: list[str] = []

        for name in request.component.fields:
            extractor = _EXTRACTORS.get(name)
            if extractor is None:
                continue
            value, sources = extractor(excerpts, request, self._max_items)
            if value in (None, "", []):
                continue
            fields[name] = value
            grounded.append(name)
            used.extend(source for source in sources if source not in used)

        if "headline" not in fields and "section_title" in fields:
            fields["headline"] = fields["section_title"]
            grounded.append("headline")

        return OracleCompletion(
            fields=fields,
            tokens_used=0,
            grounded_fields=grounded,
            source_excerpt_ids=used,
            model="heuristic",
        )


def _rank_for_persona(
    excerpts: Sequence[KnowledgeExcerpt], persona: PersonaDefinition | None
) -> list[KnowledgeExcerpt]:
    if persona is None:
        return list(excerpts)
    persona_tokens = tokenize(" ".join([*persona.keywords, *persona.goals, *persona.pain_points]))
    indexed = list(enumerate(excerpts))
    indexed.sort(key=lambda item: (-similarity(persona_tokens, item[1].text), item[0]))
    return [excerpt for _, excerpt in indexed]


def _of_type(excerpts: Sequence[KnowledgeExcerpt], *types: str) -> list[KnowledgeExcerpt]:
    return [excerpt for excerpt in excerpts if excerpt.entity_type in types]


def _first_text(
    excerpts: Sequence[KnowledgeExcerpt], types: Sequence[str], *, skip: int = 0, limit: int = 160
) -> tuple[str | None, list[str]]:
    pool = _of_type(excerpts, *types)
    if len(pool) <= skip:
        return None, []
    excerpt = pool[skip]
    return excerpt.text[:limit].strip(), [excerpt.id]


Extractor = Callable[[Sequence[KnowledgeExcerpt], CompletionRequest, int], tuple[Any, list[str]]]


def _headline(excerpts, request, max_items):
    return _first_text(excerpts, ("tagline", "headline", "value_proposition"), limit=90)


def _subheadline(excerpts, request, max_items):
    return _first_text(excerpts, ("value_proposition", "benefit", "company", "about"), limit=160)


def _description(excerpts, request, max_items):
    return _first_text(excerpts, ("company", "about", "benefit", "value_proposition", "feature"), limit=280)


def _bullets(excerpts, request, max_items):
    types = tuple(request.component.source_entity_types) or ("benefit", "feature")
    pool = _of_type(excerpts, *types)[:max_items]
    return [excerpt.label() for excerpt in pool], [excerpt.id for excerpt in pool]


def _features(excerpts, request, max_items):
    pool = _of_type(excerpts, "feature", "capability", "benefit", "integration", "value", "case_study")
    pool = pool[:max_items]
    items = [
        {
            "title": str(excerpt.metadata.get("name") or excerpt.label()),
            "description": excerpt.text,
            "icon": excerpt.metadata.get("icon"),
        }
        for excerpt in pool
    ]
    return items, [excerpt.id for excerpt in pool]


def _testimonials(excerpts, request, max_items):
    pool = _of_type(excerpts, "testimonial")[:max_items]
    items = [
        {
            "quote": excerpt.text,
            "author": str(excerpt.metadata.get("author", "Customer")),
            "role": str(excerpt.metadata.get("role", "")),
            "company": str(excerpt.metadata.get("company", "")),
        }
        for excerpt in pool
    ]
    return items, [excerpt.id for excerpt in pool]


def _statistics(excerpts, request, max_items):
    pool = _of_type(excerpts, "statistic", "metric")[:max_items]
    items = [
        {
            "value": str(excerpt.metadata.get("value") or excerpt.text.split(" ", 1)[0]),
            "label": str(excerpt.metadata.get("label") or excerpt.text),
        }
        for excerpt in pool
    ]
    return items, [excerpt.id for excerpt in pool]


def _faqs(excerpts, request, max_items):
    pool = [e for e in _of_type(excerpts, "faq") if e.metadata.get("question")][:max_items]
    items = [{"question": str(e.metadata["question"]), "answer": e.text} for e in pool]
    return items, [excerpt.id for excerpt in pool]


def _pricing(excerpts, request, max_items):
    pool = _of_type(excerpts, "pricing", "plan")[:max_items]
    items = [
        {
            "name": str(excerpt.metadata.get("name") or excerpt.label()),
            "price": str(excerpt.metadata.get("price", "Contact us")),
            "description": excerpt.text,
            "features": list(excerpt.metadata.get("features", [])),
            "highlighted": bool(excerpt.metadata.get("highlighted", False)),
        }
        for excerpt in pool
    ]
    return items, [excerpt.id for excerpt in pool]


def _cta(skip: int) -> Extractor:
    def extract(excerpts, request, max_items):
        pool = _of_type(excerpts, "offer")
        if len(pool) <= skip:
            return None, []
        excerpt = pool[skip]
        cta = {
            "text": str(excerpt.metadata.get("cta") or excerpt.label()),
            "link": str(excerpt.metadata.get("link", "#contact")),
            "variant": "primary" if skip == 0 else "secondary",
        }
        return cta, [excerpt.id]

    return extract


def _section_title(excerpts, request, max_items):
    pool = _of_type(excerpts, *request.component.source_entity_types)
    if not pool:
        return None, []
    title = pool[0].metadata.get("section_title")
    if not title:
        title = _ROLE_TITLES.get(request.narrative_role, request.component.label)
    return str(title), [pool[0].id]


def _section_description(excerpts, request, max_items):
    return _first_text(excerpts, ("value_proposition", "benefit"), skip=1, limit=200)


_ROLE_TITLES: Mapping[NarrativeRole, str] = {
    NarrativeRole.problem: "The challenges you face",
    NarrativeRole.solution: "How it works for you",
    NarrativeRole.proof: "Results our customers see",
    NarrativeRole.action: "Choose your next step",
}

_EXTRACTORS: Mapping[str, Extractor] = {
    "headline": _headline,
    "subheadline": _subheadline,
    "description": _description,
    "bullets": _bullets,
    "features": _features,
    "testimonials": _testimonials,
    "statistics": _statistics,
    "faqs": _faqs,
    "pricing_tiers": _pricing,
    "primary_cta": _cta(0),
    "secondary_cta": _cta(1),
    "section_title": _section_title,
    "section_description": _section_description,
}


__all__ = [
    "ScoringContext",
    "CompletionRequest",
    "OracleCompletion",
    "GenerationOracle",
    "HeuristicOracle",
    "DEFAULT_SCORE_WEIGHTS",
]
