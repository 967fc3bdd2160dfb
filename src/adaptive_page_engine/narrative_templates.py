from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence

from .models.layout import NarrativeRole, PageType
from .models.storyline import ArcType, EmotionalPoint, EmotionalTone

R = NarrativeRole

STAGE_ORDER: Sequence[NarrativeRole] = (R.hook, R.problem, R.solution, R.proof, R.action)

STAGE_TONES: Mapping[NarrativeRole, EmotionalTone] = {
    R.hook: "curiosity",
    R.problem: "empathy",
    R.solution: "hope",
    R.proof: "confidence",
    R.action: "excitement",
}


@dataclass(frozen=True)
class StageGuidance:
    purpose: str
    emotional_goal: str
    content_types: Sequence[str] = ()


@dataclass(frozen=True)
class NarrativeTemplate:
    page_type: PageType
    required_stages: Sequence[NarrativeRole]
    arc: ArcType
    stage_order: Sequence[NarrativeRole] = STAGE_ORDER
    guidance: Mapping[NarrativeRole, StageGuidance] = field(default_factory=dict)


DEFAULT_GUIDANCE: Mapping[NarrativeRole, StageGuidance] = {
    R.hook: StageGuidance(
        "Capture attention and establish relevance immediately",
        "Spark curiosity and interest",
        ("value_proposition", "statistic"),
    ),
    R.problem: StageGuidance(
        "Acknowledge visitor pain points to build empathy",
        "Create recognition and validation",
        ("pain_point", "statistic"),
    ),
    R.solution: StageGuidance(
        "Present offerings as the answer to their needs",
        "Generate hope and excitement",
        ("feature", "benefit", "process"),
    ),
    R.proof: StageGuidance(
        "Build credibility with evidence and social proof",
        "Establish trust and confidence",
        ("testimonial", "case_study", "statistic"),
    ),
    R.action: StageGuidance(
        "Guide visitors to take the next step",
        "Create excitement and momentum",
        ("offer",),
    ),
}


def _template(
    page_type: PageType,
    required: Sequence[NarrativeRole],
    arc: ArcType,
    **overrides: StageGuidance,
) -> NarrativeTemplate:
    guidance = dict(DEFAULT_GUIDANCE)
    guidance.update({NarrativeRole(stage): value for stage, value in overrides.items()})
    return NarrativeTemplate(
        page_type=page_type, required_stages=tuple(required), arc=arc, guidance=guidance
    )


P = PageType

NARRATIVE_TEMPLATES: Mapping[PageType, NarrativeTemplate] = {
    P.home: _template(P.home, (R.hook, R.solution, R.proof, R.action), "standard"),
    P.landing: _template(
        P.landing,
        (R.hook, R.solution, R.action),
        "urgent",
        hook=StageGuidance(
            "Immediately capture attention with a compelling offer",
            "Create immediate interest and urgency",
            ("value_proposition", "statistic"),
        ),
        action=StageGuidance(
            "Drive conversion with a clear, compelling call to action",
            "Create urgency to act now",
            ("offer",),
        ),
    ),
    P.product: _template(P.product, (R.hook, R.solution, R.proof), "standard"),
    P.pricing: _template(
        P.pricing,
        (R.solution, R.action),
        "reassuring",
        proof=StageGuidance(
            "Answer pricing objections before the decision",
            "Remove doubt",
            ("faq", "testimonial"),
        ),
    ),
    P.about: _template(P.about, (R.hook, R.proof), "reassuring"),
    P.contact: _template(P.contact, (R.action,), "reassuring"),
    P.features: _template(P.features, (R.hook, R.solution), "dramatic"),
    P.solutions: _template(P.solutions, (R.problem, R.solution, R.proof), "standard"),
    P.careers: _template(P.careers, (R.hook, R.solution), "standard"),
    P.custom: _template(P.custom, (), "standard"),
}


def _points(*rows: tuple[int, EmotionalTone, int, str]) -> tuple[EmotionalPoint, ...]:
    return tuple(
        EmotionalPoint(position=position, primary_emotion=emotion, intensity=intensity, pacing=pacing)
        for position, emotion, intensity, pacing in rows
    )


EMOTIONAL_JOURNEYS: Mapping[ArcType, Sequence[EmotionalPoint]] = {
    "standard": _points(
        (0, "curiosity", 85, "fast"),
        (15, "empathy", 70, "medium"),
        (30, "urgency", 75, "medium"),
        (50, "hope", 90, "medium"),
        (70, "confidence", 85, "slow"),
        (85, "trust", 80, "slow"),
        (100, "excitement", 90, "fast"),
    ),
    "dramatic": _points(
        (0, "curiosity", 95, "fast"),
        (15, "empathy", 60, "slow"),
        (25, "urgency", 90, "fast"),
        (40, "hope", 50, "slow"),
        (55, "hope", 95, "fast"),
        (75, "confidence", 90, "medium"),
        (100, "excitement", 100, "fast"),
    ),
    "reassuring": _points(
        (0, "trust", 80, "slow"),
        (20, "confidence", 75, "slow"),
        (40, "hope", 80, "medium"),
        (60, "confidence", 85, "medium"),
        (80, "trust", 90, "slow"),
        (100, "relief", 85, "slow"),
    ),
    "urgent": _points(
        (0, "curiosity", 90, "fast"),
        (10, "urgency", 85, "fast"),
        (25, "urgency", 95, "fast"),
        (45, "hope", 90, "fast"),
        (65, "confidence", 85, "medium"),
        (80, "excitement", 95, "fast"),
        (100, "excitement", 100, "fast"),
    ),
}


def get_template(page_type: PageType) -> NarrativeTemplate:
    return NARRATIVE_TEMPLATES.get(page_type, NARRATIVE_TEMPLATES[PageType.custom])


def stage_rank(role: NarrativeRole, order: Sequence[NarrativeRole] = STAGE_ORDER) -> int:
    try:
        return list(order).index(role)
    except ValueError:
        return len(order)


def peak_position(points: Sequence[EmotionalPoint]) -> int:
    peak = max(points, key=lambda point: point.intensity)
    return peak.position


__all__ = [
    "STAGE_ORDER",
    "STAGE_TONES",
    "StageGuidance",
    "NarrativeTemplate",
    "NARRATIVE_TEMPLATES",
    "EMOTIONAL_JOURNEYS",
    "get_template",
    "stage_rank",
    "peak_position",
]
