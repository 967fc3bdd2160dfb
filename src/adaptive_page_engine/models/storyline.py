from __future__ import annotations

from enum import Enum
from typing import Literal, Mapping, Sequence

from pydantic import BaseModel, Field

from .layout import NarrativeRole, PageLayout

EmotionalTone = Literal[
    "curiosity", "empathy", "urgency", "hope", "confidence", "excitement", "trust", "relief"
]
ArcType = Literal["standard", "dramatic", "reassuring", "urgent"]
Pacing = Literal["slow", "medium", "fast"]


class StorylineGenerationInput(BaseModel):
    layout: PageLayout
    personas: Sequence[str] = Field(default_factory=list)
    persona_styles: Mapping[str, str] = Field(
        default_factory=dict,
        description="persona id -> communication style (technical, business, executive)",
    )


class CoreNarrative(BaseModel):
    central_theme: str
    value_proposition: str
    target_audience: str = "general"
    stage_order: Sequence[NarrativeRole] = Field(default_factory=list)


class ContentBlock(BaseModel):
    id: str
    section_id: str
    stage: NarrativeRole
    priority: int = 0
    emotional_tone: EmotionalTone
    purpose: str


class PersonaFlowVariation(BaseModel):
    persona_id: str
    flow: Sequence[str]
    emphasis: Sequence[str] = Field(default_factory=list)
    reason: str = ""


class EmotionalPoint(BaseModel):
    position: int = Field(ge=0, le=100)
    primary_emotion: EmotionalTone
    intensity: int = Field(ge=0, le=100)
    pacing: Pacing


class EmotionalJourney(BaseModel):
    arc_type: ArcType
    points: Sequence[EmotionalPoint]
    peak_position: int
    section_tones: Mapping[str, EmotionalTone] = Field(default_factory=dict)


class Storyline(BaseModel):
    narrative: CoreNarrative
    default_flow: Sequence[str]
    content_blocks: Sequence[ContentBlock]
    persona_variations: Mapping[str, PersonaFlowVariation] = Field(default_factory=dict)
    emotional_journey: EmotionalJourney

    def referenced_section_ids(self) -> set[str]:
        ids = set(self.default_flow)
        for variation in self.persona_variations.values():
            ids.update(variation.flow)
            ids.update(variation.emphasis)
        return ids


class Severity(str, Enum):
    error = "error"
    warning = "warning"
    info = "info"


class StorylineViolation(BaseModel):
    rule_id: str
    severity: Severity
    message: str
    affected_section_ids: Sequence[str] = Field(default_factory=list)
    suggested_fix: str | None = None


class StorylineValidation(BaseModel):
    is_optimal: bool
    score: int = Field(ge=0, le=100)
    violations: Sequence[StorylineViolation] = Field(default_factory=list)
    suggestions: Sequence[str] = Field(default_factory=list)
    optimized_blocks: Sequence[ContentBlock] | None = None


__all__ = [
    "EmotionalTone",
    "ArcType",
    "Pacing",
    "StorylineGenerationInput",
    "CoreNarrative",
    "ContentBlock",
    "PersonaFlowVariation",
    "EmotionalPoint",
    "EmotionalJourney",
    "Storyline",
    "Severity",
    "StorylineViolation",
    "StorylineValidation",
]
