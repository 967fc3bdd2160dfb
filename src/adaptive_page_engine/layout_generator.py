from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence
from uuid import uuid4

from pydantic import ValidationError

from .components import COMPONENT_REGISTRY, PAGE_TYPE_CONFIGS, ComponentDefinition, PageTypeConfig
from .errors import InputValidationError, InsufficientContentError, OracleError
from .knowledge import KnowledgeSource
from .models.knowledge import KnowledgeExcerpt
from .models.layout import (
    ComponentKind,
    ComponentSelection,
    LayoutGenerationInput,
    NarrativeRole,
    PageLayout,
    PageMetadata,
    PageType,
)
from .narrative_templates import stage_rank
from .oracle import GenerationOracle, ScoringContext

logger = logging.getLogger(__name__)

DEFAULT_EXCERPT_LIMIT = 20

# Selection tiers; truncation removes the lowest tier first.
_FILLER = 0
_COVERAGE = 1
_MANDATORY = 2


@dataclass
class _Pick:
    definition: ComponentDefinition
    score: float
    tier: int

    @property
    def kind(self) -> ComponentKind:
        return self.definition.kind

    @property
    def role(self) -> NarrativeRole:
        return self.definition.narrative_role


def resolve_section_bounds(config: PageTypeConfig, request: LayoutGenerationInput) -> tuple[int, int]:
    constraints = request.constraints
    min_sections = constraints.min_sections or config.min_sections
    max_sections = constraints.max_sections or config.max_sections
    if constraints.min_sections is not None and constraints.max_sections is None:
        max_sections = max(max_sections, min_sections)
    if constraints.max_sections is not None and constraints.min_sections is None:
        min_sections = min(min_sections, max_sections)
    return min_sections, max_sections


def page_slug(page_type: PageType, hints: Mapping[str, Any]) -> str:
    if hints.get("slug"):
        return str(hints["slug"])
    return "/" if page_type == PageType.home else f"/{page_type.value}"


class LayoutGenerator:
    def __init__(
        self,
        *,
        oracle: GenerationOracle,
        knowledge: KnowledgeSource | None = None,
        registry: Mapping[ComponentKind, ComponentDefinition] = COMPONENT_REGISTRY,
        page_configs: Mapping[PageType, PageTypeConfig] = PAGE_TYPE_CONFIGS,
        excerpt_limit: int = DEFAULT_EXCERPT_LIMIT,
        id_factory: Callable[[], str] = lambda: uuid4().hex,
    ) -> None:
        self._oracle = oracle
        self._knowledge = knowledge
        self._registry = registry
        self._page_configs = page_configs
        self._excerpt_limit = excerpt_limit
        self._id_factory = id_factory

    def generate(
        self,
        request: LayoutGenerationInput | Mapping[str, Any],
        *,
        excerpts: Sequence[KnowledgeExcerpt] | None = None,
    ) -> PageLayout:
        """Select and order component variants for one page.

        Args:
            request: Layout request; mappings are validated into ``LayoutGenerationInput``
            excerpts: Pre-fetched knowledge; searched through the knowledge source when omitted

        Raises:
            InputValidationError: the request is malformed or its constraints cannot hold
            InsufficientContentError: fewer than the minimum sections could be selected
        """
        request = self._validate(request)
        config = self._page_configs[request.page_type]
        min_sections, max_sections = resolve_section_bounds(config, request)
        constraints = request.constraints

        mandatory = list(dict.fromkeys([*constraints.required_components, *constraints.forced_order]))
        if len(mandatory) > max_sections:
            raise InputValidationError(
                f"{len(mandatory)} required or forced components exceed max_sections={max_sections}"
            )

        if excerpts is None:
            excerpts = self._fetch_excerpts(request)
        context = ScoringContext(
            page_type=request.page_type,
            hints=request.content_hints,
            excerpts=tuple(excerpts),
            personas=tuple(request.personas),
            recommended=tuple(config.recommended_components),
        )

        excluded = set(constraints.excluded_components)
        pool = list(request.candidates) if request.candidates is not None else list(self._registry)
        pool = [kind for kind in dict.fromkeys([*pool, *mandatory]) if kind not in excluded]

        scoring_failures: list[str] = []
        scores = {kind: self._score(self._registry[kind], context, scoring_failures) for kind in pool}

        picks: dict[ComponentKind, _Pick] = {}
        for kind in mandatory:
            picks[kind] = _Pick(self._registry[kind], scores[kind], _MANDATORY)

        by_role: dict[NarrativeRole, list[ComponentDefinition]] = {}
        for kind in pool:
            definition = self._registry[kind]
            by_role.setdefault(definition.narrative_role, []).append(definition)
        for candidates in by_role.values():
            candidates.sort(key=lambda d: (-scores[d.kind], d.complexity, d.kind.value))

        covered = {pick.role for pick in picks.values()}
        for role in config.required_roles:
            if role in covered or not by_role.get(role):
                continue
            best = by_role[role][0]
            picks[best.kind] = _Pick(best, scores[best.kind], _COVERAGE)
            covered.add(role)

        role_counts: dict[NarrativeRole, int] = {}
        for pick in picks.values():
            role_counts[pick.role] = role_counts.get(pick.role, 0) + 1
        fillers = sorted(
            (self._registry[kind] for kind in pool if kind not in picks),
            key=lambda d: (-scores[d.kind], d.complexity, d.kind.value),
        )
        for definition in fillers:
            if len(picks) >= max_sections:
                break
            role = definition.narrative_role
            if role_counts.get(role, 0) >= config.role_limits.get(role, max_sections):
                continue
            picks[definition.kind] = _Pick(definition, scores[definition.kind], _FILLER)
            role_counts[role] = role_counts.get(role, 0) + 1

        # Role limits are preferences; the minimum only fails once the pool is exhausted.
        for definition in fillers:
            if len(picks) >= min_sections:
                break
            if definition.kind not in picks:
                picks[definition.kind] = _Pick(definition, scores[definition.kind], _FILLER)

        selected = self._truncate(list(picks.values()), max_sections)
        if len(selected) < min_sections:
            raise InsufficientContentError(
                f"Only {len(selected)} sections available for {request.page_type.value} "
                f"page; at least {min_sections} required"
            )

        ordered = self._order(selected, constraints.forced_order)
        sections = [
            ComponentSelection(
                section_id=f"section-{index}-{pick.kind.value}",
                component_variant=pick.kind,
                order=index,
                narrative_role=pick.role,
                score=pick.score,
            )
            for index, pick in enumerate(ordered)
        ]

        selected_roles = {pick.role for pick in ordered}
        uncovered = [role.value for role in config.required_roles if role not in selected_roles]
        hints = request.content_hints
        layout = PageLayout(
            page_id=str(hints.get("page_id") or self._id_factory()),
            slug=page_slug(request.page_type, hints),
            page_type=request.page_type,
            sections=sections,
            metadata=PageMetadata(
                title=str(hints.get("title") or config.name),
                description=str(hints.get("description") or config.description),
                keywords=list(hints.get("keywords", [])),
            ),
            constraints_satisfied=not uncovered,
            generation_metadata={
                "candidates_considered": len(pool),
                "excerpts_used": len(excerpts),
                "min_sections": min_sections,
                "max_sections": max_sections,
                "uncovered_roles": uncovered,
                "scoring_failures": scoring_failures,
            },
        )
        logger.info(
            "Generated page layout",
            extra={
                "page_type": request.page_type.value,
                "sections": len(sections),
                "uncovered_roles": uncovered,
            },
        )
        return layout

    def _validate(self, request: LayoutGenerationInput | Mapping[str, Any]) -> LayoutGenerationInput:
        if isinstance(request, LayoutGenerationInput):
            return request
        try:
            return LayoutGenerationInput.model_validate(request)
        except ValidationError as exc:
            raise InputValidationError.from_pydantic("layout", exc) from exc

    def _fetch_excerpts(self, request: LayoutGenerationInput) -> list[KnowledgeExcerpt]:
        if self._knowledge is None or not request.knowledge_base_id:
            return []
        query_parts = [request.page_type.value, *request.personas]
        query_parts.extend(str(value) for value in request.content_hints.values())
        return self._knowledge.search(
            " ".join(query_parts),
            knowledge_base_id=request.knowledge_base_id,
            limit=self._excerpt_limit,
        )

    def _score(
        self,
        definition: ComponentDefinition,
        context: ScoringContext,
        failures: list[str],
    ) -> float:
        try:
            return self._oracle.score_component(definition, context)
        except OracleError as exc:
            logger.warning(
                "Component scoring failed, using zero score",
                extra={"component": definition.kind.value, "error": str(exc)},
            )
            failures.append(definition.kind.value)
            return 0.0

    @staticmethod
    def _truncate(picks: list[_Pick], max_sections: int) -> list[_Pick]:
        if len(picks) <= max_sections:
            return picks
        ranked = sorted(picks, key=lambda p: (-p.tier, -p.score, p.definition.complexity, p.kind.value))
        return ranked[:max_sections]

    @staticmethod
    def _order(picks: list[_Pick], forced_order: Sequence[ComponentKind]) -> list[_Pick]:
        ordered = sorted(
            picks,
            key=lambda p: (stage_rank(p.role), -p.score, p.definition.complexity, p.kind.value),
        )
        if not forced_order:
            return ordered
        forced = [kind for kind in forced_order if any(p.kind == kind for p in ordered)]
        slots = [index for index, pick in enumerate(ordered) if pick.kind in forced]
        by_kind = {pick.kind: pick for pick in ordered}
        for slot, kind in zip(slots, forced):
            ordered[slot] = by_kind[kind]
        return ordered


__all__ = ["LayoutGenerator", "resolve_section_bounds", "page_slug"]
