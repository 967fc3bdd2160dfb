from __future__ import annotations

from typing import Any, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .knowledge import KnowledgeExcerpt, PersonaDefinition
from .layout import ComponentKind, NarrativeRole, PageType
from .storyline import EmotionalTone


class CTAContent(BaseModel):
    text: str
    link: str = "#"
    variant: str = "primary"


class FeatureItem(BaseModel):
    title: str
    description: str = ""
    icon: str | None = None


class Testimonial(BaseModel):
    quote: str
    author: str = "Customer"
    role: str = ""
    company: str = ""


class StatisticItem(BaseModel):
    value: str
    label: str


class FAQItem(BaseModel):
    question: str
    answer: str


class PricingTier(BaseModel):
    name: str
    price: str = "Contact us"
    description: str = ""
    features: Sequence[str] = Field(default_factory=list)
    highlighted: bool = False


class PopulatedContent(BaseModel):
    """Field payload for one section. Extra component-specific fields are kept."""

    model_config = ConfigDict(extra="allow")

    headline: str | None = None
    subheadline: str | None = None
    description: str | None = None
    bullets: Sequence[str] | None = None
    primary_cta: CTAContent | None = None
    secondary_cta: CTAContent | None = None
    features: Sequence[FeatureItem] | None = None
    testimonials: Sequence[Testimonial] | None = None
    statistics: Sequence[StatisticItem] | None = None
    faqs: Sequence[FAQItem] | None = None
    pricing_tiers: Sequence[PricingTier] | None = None
    section_title: str | None = None
    section_description: str | None = None

    def filled_fields(self) -> list[str]:
        filled = []
        for key, value in self.model_dump(exclude_none=True).items():
            if value in ("", [], {}):
                continue
            filled.append(key)
        return filled

    def is_empty(self) -> bool:
        return not self.filled_fields()


class PersonaContentVariation(BaseModel):
    persona_id: str
    content: PopulatedContent
    confidence_score: float = Field(ge=0.0, le=1.0)
    emotional_tone: EmotionalTone | None = None


class SectionMetadata(BaseModel):
    model_used: str = "heuristic"
    tokens_used: int = 0
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    source_excerpt_ids: Sequence[str] = Field(default_factory=list)
    degraded_fields: Sequence[str] = Field(default_factory=list)


class PopulatedSection(BaseModel):
    section_id: str
    component_id: ComponentKind
    order: int = Field(ge=0)
    narrative_role: NarrativeRole
    content: PopulatedContent
    persona_variations: Mapping[str, PersonaContentVariation] = Field(default_factory=dict)
    metadata: SectionMetadata = Field(default_factory=SectionMetadata)


class ContentSectionSpec(BaseModel):
    section_id: str = Field(min_length=1)
    component_id: ComponentKind
    order: int = Field(ge=0)
    narrative_role: NarrativeRole


class ContentGenerationInput(BaseModel):
    workspace_id: str = Field(min_length=1)
    page_type: PageType
    sections: Sequence[ContentSectionSpec] = Field(min_length=1)
    personas: Sequence[PersonaDefinition] = Field(default_factory=list)
    excerpts: Sequence[KnowledgeExcerpt] | None = None
    knowledge_base_id: str | None = None
    hints: Mapping[str, Any] = Field(default_factory=dict)


__all__ = [
    "CTAContent",
    "FeatureItem",
    "Testimonial",
    "StatisticItem",
    "FAQItem",
    "PricingTier",
    "PopulatedContent",
    "PersonaContentVariation",
    "SectionMetadata",
    "PopulatedSection",
    "ContentSectionSpec",
    "ContentGenerationInput",
]
