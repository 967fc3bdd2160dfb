from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from .errors import InputValidationError
from .knowledge import DEFAULT_PERSONAS
from .models.layout import NarrativeRole, PageLayout, PageType
from .models.storyline import (
    ContentBlock,
    CoreNarrative,
    EmotionalJourney,
    EmotionalPoint,
    EmotionalTone,
    PersonaFlowVariation,
    Severity,
    Storyline,
    StorylineGenerationInput,
    StorylineValidation,
    StorylineViolation,
)
from .narrative_templates import (
    EMOTIONAL_JOURNEYS,
    STAGE_TONES,
    NarrativeTemplate,
    get_template,
    peak_position,
    stage_rank,
)

logger = logging.getLogger(__name__)

R = NarrativeRole

SEVERITY_PENALTY: Mapping[Severity, int] = {
    Severity.error: 20,
    Severity.warning: 10,
    Severity.info: 5,
}

ARC_HINTS: Mapping[str, str] = {
    "urgent": "Keep the path to the call to action short and repeat it near the top.",
    "dramatic": "Build tension in the problem stage before revealing the solution.",
}


class StorylineGenerator:
    def __init__(self, *, persona_styles: Mapping[str, str] | None = None) -> None:
        if persona_styles is None:
            persona_styles = {pid: p.communication_style for pid, p in DEFAULT_PERSONAS.items()}
        self._persona_styles = dict(persona_styles)

    def generate(self, request: StorylineGenerationInput | Mapping[str, Any]) -> Storyline:
        request = self._validate(request)
        layout = request.layout
        template = get_template(layout.page_type)

        default_flow = [section.section_id for section in sorted(layout.sections, key=lambda s: s.order)]
        roles = {section.section_id: section.narrative_role for section in layout.sections}

        content_blocks = [
            ContentBlock(
                id=f"block-{section_id}",
                section_id=section_id,
                stage=roles[section_id],
                priority=index + 1,
                emotional_tone=STAGE_TONES[roles[section_id]],
                purpose=template.guidance[roles[section_id]].purpose,
            )
            for index, section_id in enumerate(default_flow)
        ]

        variations = {}
        for persona_id in request.personas:
            style = request.persona_styles.get(persona_id) or self._persona_styles.get(persona_id, "business")
            variations[persona_id] = _persona_flow(persona_id, style, default_flow, roles)

        personas_label = ", ".join(request.personas) if request.personas else "general"
        storyline = Storyline(
            narrative=CoreNarrative(
                central_theme=layout.metadata.title,
                value_proposition=layout.metadata.description or layout.metadata.title,
                target_audience=personas_label,
                stage_order=list(template.stage_order),
            ),
            default_flow=default_flow,
            content_blocks=content_blocks,
            persona_variations=variations,
            emotional_journey=_journey(template, default_flow),
        )
        logger.info(
            "Generated storyline",
            extra={
                "page_id": layout.page_id,
                "arc_type": template.arc,
                "persona_variations": len(variations),
            },
        )
        return storyline

    def validate(
        self, storyline: Storyline, page_type: PageType, *, layout: PageLayout | None = None
    ) -> StorylineValidation:
        return validate_storyline(storyline, page_type, layout=layout)

    def optimize(
        self, storyline: Storyline, page_type: PageType, *, layout: PageLayout | None = None
    ) -> Storyline:
        return optimize_storyline(storyline, page_type, layout=layout)

    @staticmethod
    def _validate(request: StorylineGenerationInput | Mapping[str, Any]) -> StorylineGenerationInput:
        if isinstance(request, StorylineGenerationInput):
            parsed = request
        else:
            try:
                parsed = StorylineGenerationInput.model_validate(request)
            except ValidationError as exc:
                raise InputValidationError.from_pydantic("storyline", exc) from exc
        if not parsed.layout.sections:
            raise InputValidationError("Storyline requires a layout with at least one section")
        ids = parsed.layout.section_ids
        if len(set(ids)) != len(ids):
            raise InputValidationError("Layout contains duplicate section ids")
        return parsed


def _journey(template: NarrativeTemplate, flow: Sequence[str]) -> EmotionalJourney:
    points = list(EMOTIONAL_JOURNEYS[template.arc])
    tones: dict[str, EmotionalTone] = {}
    last = max(1, len(flow) - 1)
    for index, section_id in enumerate(flow):
        position = round(100 * index / last) if len(flow) > 1 else 0
        tones[section_id] = _nearest(points, position).primary_emotion
    return EmotionalJourney(
        arc_type=template.arc,
        points=points,
        peak_position=peak_position(points),
        section_tones=tones,
    )


def _nearest(points: Sequence[EmotionalPoint], position: int) -> EmotionalPoint:
    return min(points, key=lambda point: (abs(point.position - position), point.position))


def _persona_flow(
    persona_id: str,
    style: str,
    default_flow: Sequence[str],
    roles: Mapping[str, NarrativeRole],
) -> PersonaFlowVariation:
    def of(role: NarrativeRole) -> list[str]:
        return [sid for sid in default_flow if roles[sid] == role]

    hooks, actions = of(R.hook), of(R.action)
    if style == "executive":
        lead = of(R.proof)
        reason = "Executive readers look for evidence and risk reduction early"
    elif style == "technical":
        lead = of(R.solution)
        reason = "Technical readers want capabilities before claims"
    else:
        lead = []
        reason = "Business readers follow the default value narrative"

    middle = [sid for sid in default_flow if sid not in hooks and sid not in lead and sid not in actions]
    flow = [*hooks, *lead, *middle, *actions]
    emphasis = lead or actions
    return PersonaFlowVariation(persona_id=persona_id, flow=flow, emphasis=emphasis, reason=reason)


def validate_storyline(
    storyline: Storyline,
    page_type: PageType,
    *,
    layout: PageLayout | None = None,
    auto_fix: bool = False,
) -> StorylineValidation:
    """Grade a storyline's narrative order.

    Violations are advisory; this never raises for a poorly ordered flow. With
    ``auto_fix`` the content blocks are also returned re-sorted into stage order
    whenever any violation was found.
    """
    template = get_template(page_type)
    stages = {block.section_id: block.stage for block in storyline.content_blocks}
    if layout is not None:
        stages.update({section.section_id: section.narrative_role for section in layout.sections})
    flow = [sid for sid in storyline.default_flow if sid in stages]
    flow_roles = [stages[sid] for sid in flow]

    violations: list[StorylineViolation] = []

    def positions(*roles: NarrativeRole) -> list[int]:
        return [index for index, role in enumerate(flow_roles) if role in roles]

    if layout is not None:
        expected = set(layout.section_ids)
        counts = Counter(storyline.default_flow)
        missing = sorted(expected - set(counts))
        extra = sorted(set(counts) - expected)
        duplicated = sorted(sid for sid, count in counts.items() if count > 1)
        if missing or extra or duplicated:
            violations.append(
                StorylineViolation(
                    rule_id="flow-integrity",
                    severity=Severity.error,
                    message="Default flow is not a permutation of the layout sections",
                    affected_section_ids=[*missing, *extra, *duplicated],
                    suggested_fix="Regenerate the storyline from the current layout",
                )
            )

    present = set(flow_roles)
    for stage in template.required_stages:
        if stage not in present:
            violations.append(
                StorylineViolation(
                    rule_id="required-stages",
                    severity=Severity.error,
                    message=f"Missing required '{stage.value}' stage for {page_type.value} pages",
                    suggested_fix=f"Add a {stage.value} section",
                )
            )

    action_at = positions(R.action)
    value_at = positions(R.hook, R.solution)
    proof_at = positions(R.proof)
    if action_at:
        first_action = action_at[0]
        if not value_at or first_action < value_at[0]:
            violations.append(
                StorylineViolation(
                    rule_id="cta-after-value",
                    severity=Severity.error,
                    message="Call to action appears before any value has been established",
                    affected_section_ids=[flow[first_action]],
                    suggested_fix="Move the call to action after the hook and solution sections",
                )
            )
        if proof_at and first_action < proof_at[0]:
            violations.append(
                StorylineViolation(
                    rule_id="cta-before-proof",
                    severity=Severity.error,
                    message="Call to action precedes every proof section",
                    affected_section_ids=[flow[first_action], flow[proof_at[0]]],
                    suggested_fix="Place at least one proof section before the call to action",
                )
            )
    else:
        violations.append(
            StorylineViolation(
                rule_id="clear-cta",
                severity=Severity.warning,
                message="Page has no call to action",
                suggested_fix="End the page with a clear call to action",
            )
        )

    hook_at = positions(R.hook)
    if hook_at and hook_at[0] != 0:
        violations.append(
            StorylineViolation(
                rule_id="hook-engagement",
                severity=Severity.error,
                message="The page does not open with its hook",
                affected_section_ids=[flow[hook_at[0]]],
                suggested_fix="Move the hook section to the top of the page",
            )
        )
    elif len(hook_at) > 2:
        violations.append(
            StorylineViolation(
                rule_id="hook-engagement",
                severity=Severity.info,
                message="More than two hook sections dilute the opening",
                affected_section_ids=[flow[i] for i in hook_at[2:]],
                suggested_fix="Keep one or two hook sections",
            )
        )

    problem_at = positions(R.problem)
    if problem_at and not any(index > problem_at[-1] for index in proof_at):
        violations.append(
            StorylineViolation(
                rule_id="proof-after-problem",
                severity=Severity.warning,
                message="No proof follows the problem statement",
                affected_section_ids=[flow[problem_at[-1]]],
                suggested_fix="Follow the problem with evidence that it can be solved",
            )
        )

    inversions = [
        flow[index + 1]
        for index in range(len(flow_roles) - 1)
        if stage_rank(flow_roles[index + 1], template.stage_order)
        < stage_rank(flow_roles[index], template.stage_order)
    ]
    if inversions:
        violations.append(
            StorylineViolation(
                rule_id="stage-order",
                severity=Severity.warning,
                message="Sections break the recommended stage order",
                affected_section_ids=inversions,
                suggested_fix="Order sections as " + " > ".join(s.value for s in template.stage_order),
            )
        )

    if len(flow_roles) >= 4:
        role, count = Counter(flow_roles).most_common(1)[0]
        if count * 2 > len(flow_roles):
            violations.append(
                StorylineViolation(
                    rule_id="content-density-balance",
                    severity=Severity.info,
                    message=f"'{role.value}' sections make up more than half of the page",
                    affected_section_ids=[flow[i] for i in positions(role)],
                    suggested_fix="Balance the page across narrative stages",
                )
            )

    if layout is not None and len(proof_at) >= 2:
        families = {
            section.component_variant.value.split("-")[0]
            for section in layout.sections
            if section.narrative_role == R.proof
        }
        if len(families) == 1:
            violations.append(
                StorylineViolation(
                    rule_id="proof-variety",
                    severity=Severity.info,
                    message="Proof sections all use the same kind of evidence",
                    affected_section_ids=[flow[i] for i in proof_at],
                    suggested_fix="Mix testimonials with statistics or case studies",
                )
            )

    penalty = sum(SEVERITY_PENALTY[violation.severity] for violation in violations)
    suggestions = list(dict.fromkeys(v.suggested_fix for v in violations if v.suggested_fix))
    arc_hint = ARC_HINTS.get(storyline.emotional_journey.arc_type)
    if arc_hint:
        suggestions.append(arc_hint)

    optimized = None
    if auto_fix and violations:
        optimized = sort_content_blocks(storyline.content_blocks, page_type)

    return StorylineValidation(
        is_optimal=not any(v.severity == Severity.error for v in violations),
        score=max(0, 100 - penalty),
        violations=violations,
        suggestions=suggestions,
        optimized_blocks=optimized,
    )


def sort_content_blocks(blocks: Sequence[ContentBlock], page_type: PageType) -> list[ContentBlock]:
    """Order blocks by the page type's stage order, then by priority within a stage."""
    order = get_template(page_type).stage_order
    return sorted(blocks, key=lambda block: (stage_rank(block.stage, order), block.priority))


def optimize_persona_variations(
    variations: Mapping[str, PersonaFlowVariation],
    stages: Mapping[str, NarrativeRole],
) -> dict[str, PersonaFlowVariation]:
    """Pin hooks to the top and actions to the bottom of every persona flow.

    The persona-specific middle of each flow keeps its order.
    """
    optimized = {}
    for persona_id, variation in variations.items():
        flow = [sid for sid in variation.flow if sid in stages]
        hooks = [sid for sid in flow if stages[sid] == R.hook]
        actions = [sid for sid in flow if stages[sid] == R.action]
        middle = [sid for sid in flow if sid not in hooks and sid not in actions]
        optimized[persona_id] = variation.model_copy(update={"flow": [*hooks, *middle, *actions]})
    return optimized


def optimize_storyline(
    storyline: Storyline,
    page_type: PageType,
    *,
    layout: PageLayout | None = None,
) -> Storyline:
    """Return a storyline re-sorted into stage order when validation finds violations.

    Section ids are never added or dropped: with a layout, the flow covers exactly the
    layout's sections. Block priorities and section tones follow the new order.
    """
    validation = validate_storyline(storyline, page_type, layout=layout, auto_fix=True)
    if validation.optimized_blocks is None:
        return storyline

    template = get_template(page_type)
    stages = {block.section_id: block.stage for block in storyline.content_blocks}
    priorities = {block.section_id: block.priority for block in storyline.content_blocks}
    if layout is not None:
        stages.update({section.section_id: section.narrative_role for section in layout.sections})
        candidates = list(layout.section_ids)
    else:
        candidates = list(dict.fromkeys([*storyline.default_flow, *stages]))
    known = [sid for sid in candidates if sid in stages]
    flow = sorted(
        known,
        key=lambda sid: (
            stage_rank(stages[sid], template.stage_order),
            priorities.get(sid, len(known) + 1),
            known.index(sid),
        ),
    )

    blocks_by_section = {block.section_id: block for block in storyline.content_blocks}
    blocks = [
        blocks_by_section[sid].model_copy(update={"priority": index + 1})
        for index, sid in enumerate(flow)
        if sid in blocks_by_section
    ]
    optimized = storyline.model_copy(
        update={
            "default_flow": flow,
            "content_blocks": blocks,
            "persona_variations": optimize_persona_variations(storyline.persona_variations, stages),
            "emotional_journey": _journey(template, flow),
        }
    )
    logger.info(
        "Optimized storyline flow",
        extra={"page_type": page_type.value, "violations": len(validation.violations)},
    )
    return optimized


__all__ = [
    "StorylineGenerator",
    "validate_storyline",
    "sort_content_blocks",
    "optimize_persona_variations",
    "optimize_storyline",
    "SEVERITY_PENALTY",
]
