from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from .components import ComponentDefinition, get_component
from .errors import GenerationDegraded, InputValidationError, OracleError
from .knowledge import KnowledgeSource, similarity, tokenize
from .models.content import (
    ContentGenerationInput,
    ContentSectionSpec,
    PersonaContentVariation,
    PopulatedContent,
    PopulatedSection,
    SectionMetadata,
)
from .models.knowledge import KnowledgeExcerpt, PersonaDefinition
from .models.layout import NarrativeRole
from .narrative_templates import STAGE_TONES, get_template
from .oracle import CompletionRequest, GenerationOracle, OracleCompletion

logger = logging.getLogger(__name__)

DEFAULT_USABILITY_THRESHOLD = 0.3
DEFAULT_EXCERPTS_PER_SECTION = 8

R = NarrativeRole

_ROLE_COPY: Mapping[NarrativeRole, Mapping[str, str]] = {
    R.hook: {
        "headline": "Transform Your Business",
        "subheadline": "Discover how we can help you achieve your goals",
        "description": "Everything you need to move faster, in one place.",
        "cta_text": "Get Started",
        "cta_link": "#contact",
    },
    R.problem: {
        "headline": "The Challenges You Face",
        "subheadline": "You are not alone in dealing with these problems",
        "description": "Teams lose time and money to manual, disconnected work.",
        "cta_text": "See How We Help",
        "cta_link": "#solution",
    },
    R.solution: {
        "headline": "A Better Way to Work",
        "subheadline": "Tools designed around the way your team works",
        "description": "Our platform brings your work together so you can focus on what matters.",
        "cta_text": "Learn More",
        "cta_link": "#features",
    },
    R.proof: {
        "headline": "Trusted by Teams Like Yours",
        "subheadline": "See the results our customers achieve",
        "description": "Organizations of every size rely on us every day.",
        "cta_text": "Read Customer Stories",
        "cta_link": "#customers",
    },
    R.action: {
        "headline": "Ready to Get Started?",
        "subheadline": "Join the teams already seeing results",
        "description": "Start today and see the difference for yourself.",
        "cta_text": "Start Free Trial",
        "cta_link": "#signup",
    },
}


def fallback_value(name: str, role: NarrativeRole) -> Any:
    """Templated generic value for one content field."""
    copy = _ROLE_COPY[role]
    if name in ("headline", "section_title"):
        return copy["headline"]
    if name in ("subheadline", "section_description"):
        return copy["subheadline"]
    if name == "description":
        return copy["description"]
    if name == "primary_cta":
        return {"text": copy["cta_text"], "link": copy["cta_link"], "variant": "primary"}
    if name == "secondary_cta":
        return {"text": "Learn More", "link": "#features", "variant": "secondary"}
    if name == "bullets":
        return ["Save time on everyday work", "Keep your team aligned", "Grow with confidence"]
    if name == "features":
        return [
            {"title": "Easy to Use", "description": "Get up and running in minutes."},
            {"title": "Reliable", "description": "Built to keep working when you need it."},
            {"title": "Supported", "description": "Help is there whenever you need it."},
        ]
    if name == "testimonials":
        return [{"quote": "Working with this team changed how we operate.", "author": "Customer"}]
    if name == "statistics":
        return [{"value": "24/7", "label": "Support availability"}]
    if name == "faqs":
        return [
            {
                "question": "How do I get started?",
                "answer": "Reach out and our team will guide you through setup.",
            }
        ]
    if name == "pricing_tiers":
        return [
            {"name": "Starter", "price": "Contact us", "description": "For small teams"},
            {"name": "Business", "price": "Contact us", "description": "For growing teams", "highlighted": True},
            {"name": "Enterprise", "price": "Contact us", "description": "For large organizations"},
        ]
    return None


@dataclass
class ContentGenerationResult:
    sections: list[PopulatedSection]
    degradations: list[GenerationDegraded] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def fallbacks_used(self) -> int:
        return len(self.degradations)


@dataclass
class _Populated:
    content: PopulatedContent
    confidence: float
    tokens: int
    model: str
    source_excerpt_ids: list[str]
    degraded_fields: list[str]


class ContentGenerator:
    def __init__(
        self,
        *,
        oracle: GenerationOracle,
        knowledge: KnowledgeSource | None = None,
        usability_threshold: float = DEFAULT_USABILITY_THRESHOLD,
        excerpts_per_section: int = DEFAULT_EXCERPTS_PER_SECTION,
    ) -> None:
        self._oracle = oracle
        self._knowledge = knowledge
        self._usability_threshold = usability_threshold
        self._excerpts_per_section = excerpts_per_section

    def generate(self, request: ContentGenerationInput | Mapping[str, Any]) -> ContentGenerationResult:
        request = self._validate(request)
        result = ContentGenerationResult(sections=[])
        for spec in sorted(request.sections, key=lambda s: s.order):
            section = self._generate_section(request, spec, result)
            result.sections.append(section)
        logger.info(
            "Generated section content",
            extra={
                "workspace_id": request.workspace_id,
                "sections": len(result.sections),
                "fallbacks": result.fallbacks_used,
                "tokens": result.tokens_used,
            },
        )
        return result

    def _validate(self, request: ContentGenerationInput | Mapping[str, Any]) -> ContentGenerationInput:
        if not isinstance(request, ContentGenerationInput):
            try:
                request = ContentGenerationInput.model_validate(request)
            except ValidationError as exc:
                raise InputValidationError.from_pydantic("content", exc) from exc
        ids = [spec.section_id for spec in request.sections]
        if len(set(ids)) != len(ids):
            raise InputValidationError("Duplicate section ids in content request")
        orders = [spec.order for spec in request.sections]
        if len(set(orders)) != len(orders):
            raise InputValidationError("Duplicate section order in content request")
        persona_ids = [persona.id for persona in request.personas]
        if len(set(persona_ids)) != len(persona_ids):
            raise InputValidationError("Duplicate persona ids in content request")
        return request

    def _generate_section(
        self,
        request: ContentGenerationInput,
        spec: ContentSectionSpec,
        result: ContentGenerationResult,
    ) -> PopulatedSection:
        definition = get_component(spec.component_id)
        excerpts = self._excerpts_for(request, spec, definition)

        base = self._populate(request, spec, definition, excerpts, None, result)
        variations: dict[str, PersonaContentVariation] = {}
        for persona in request.personas:
            populated = self._populate(request, spec, definition, excerpts, persona, result)
            variations[persona.id] = PersonaContentVariation(
                persona_id=persona.id,
                content=populated.content,
                confidence_score=populated.confidence,
                emotional_tone=STAGE_TONES[spec.narrative_role],
            )

        return PopulatedSection(
            section_id=spec.section_id,
            component_id=spec.component_id,
            order=spec.order,
            narrative_role=spec.narrative_role,
            content=base.content,
            persona_variations=variations,
            metadata=SectionMetadata(
                model_used=base.model,
                tokens_used=base.tokens,
                confidence_score=base.confidence,
                source_excerpt_ids=base.source_excerpt_ids,
                degraded_fields=base.degraded_fields,
            ),
        )

    def _excerpts_for(
        self,
        request: ContentGenerationInput,
        spec: ContentSectionSpec,
        definition: ComponentDefinition,
    ) -> list[KnowledgeExcerpt]:
        guidance = get_template(request.page_type).guidance[spec.narrative_role]
        wanted = {*definition.source_entity_types, *guidance.content_types}
        query = " ".join([spec.narrative_role.value, *definition.use_cases, *wanted])

        if request.excerpts is not None:
            pool = list(request.excerpts)
        elif self._knowledge is not None and request.knowledge_base_id:
            pool = self._knowledge.search(
                query,
                knowledge_base_id=request.knowledge_base_id,
                limit=self._excerpts_per_section * 2,
            )
        else:
            pool = []

        query_tokens = tokenize(query)
        ranked = sorted(
            enumerate(pool),
            key=lambda item: (
                item[1].entity_type not in wanted,
                -similarity(query_tokens, item[1].text),
                item[0],
            ),
        )
        return [excerpt for _, excerpt in ranked[: self._excerpts_per_section]]

    def _populate(
        self,
        request: ContentGenerationInput,
        spec: ContentSectionSpec,
        definition: ComponentDefinition,
        excerpts: Sequence[KnowledgeExcerpt],
        persona: PersonaDefinition | None,
        result: ContentGenerationResult,
    ) -> _Populated:
        completion_request = CompletionRequest(
            section_id=spec.section_id,
            component=definition,
            narrative_role=spec.narrative_role,
            page_type=request.page_type,
            excerpts=tuple(excerpts),
            persona=persona,
            hints=request.hints,
        )
        degradations: list[GenerationDegraded] = []
        try:
            completion = self._oracle.complete_section(completion_request)
        except OracleError as exc:
            degradations.append(
                GenerationDegraded(section_id=spec.section_id, reason=f"oracle call failed: {exc}")
            )
            completion = OracleCompletion(fields={}, model="fallback")

        fields: dict[str, Any] = {}
        for name, value in completion.fields.items():
            if value in (None, "", [], {}):
                continue
            try:
                PopulatedContent.model_validate({name: value})
            except ValidationError:
                degradations.append(
                    GenerationDegraded(
                        section_id=spec.section_id, field=name, reason="malformed field value"
                    )
                )
                continue
            fields[name] = value

        grounded = set(completion.grounded_fields) & set(fields) if excerpts else set()
        required = list(definition.required_fields)
        confidence = self._confidence(required, grounded, excerpts, completion.source_excerpt_ids)

        if confidence < self._usability_threshold:
            for name in [name for name in fields if name not in grounded]:
                value = fallback_value(name, spec.narrative_role)
                if value is None:
                    del fields[name]
                else:
                    fields[name] = value
                degradations.append(
                    GenerationDegraded(
                        section_id=spec.section_id, field=name, reason="low grounding confidence"
                    )
                )

        for name in [*required, "headline"]:
            if name in fields:
                continue
            value = fallback_value(name, spec.narrative_role)
            if value is None:
                continue
            fields[name] = value
            degradations.append(
                GenerationDegraded(section_id=spec.section_id, field=name, reason="no grounded content")
            )

        if degradations:
            logger.warning(
                "Section content degraded",
                extra={
                    "section_id": spec.section_id,
                    "persona_id": persona.id if persona else None,
                    "fields": [d.field for d in degradations if d.field],
                    "confidence": confidence,
                },
            )
        result.degradations.extend(degradations)
        result.tokens_used += completion.tokens_used

        return _Populated(
            content=PopulatedContent.model_validate(fields),
            confidence=confidence,
            tokens=completion.tokens_used,
            model=completion.model,
            source_excerpt_ids=list(completion.source_excerpt_ids),
            degraded_fields=list(dict.fromkeys(d.field for d in degradations if d.field)),
        )

    @staticmethod
    def _confidence(
        required: Sequence[str],
        grounded: set[str],
        excerpts: Sequence[KnowledgeExcerpt],
        source_ids: Sequence[str],
    ) -> float:
        if not excerpts or not required:
            return 0.0
        coverage = sum(1 for name in required if name in grounded) / len(required)
        used = [excerpt for excerpt in excerpts if excerpt.id in set(source_ids)] or list(excerpts)
        reliability = sum(excerpt.confidence for excerpt in used) / len(used)
        return round(min(1.0, coverage * reliability), 4)


__all__ = [
    "ContentGenerator",
    "ContentGenerationResult",
    "fallback_value",
    "DEFAULT_USABILITY_THRESHOLD",
]
