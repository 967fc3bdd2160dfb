from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Sequence

from pydantic import BaseModel, Field, model_validator


class PageType(str, Enum):
    home = "home"
    landing = "landing"
    product = "product"
    pricing = "pricing"
    about = "about"
    contact = "contact"
    features = "features"
    solutions = "solutions"
    careers = "careers"
    custom = "custom"


class NarrativeRole(str, Enum):
    """Rhetorical function of a section in the page's persuasion arc."""

    hook = "hook"
    problem = "problem"
    solution = "solution"
    proof = "proof"
    action = "action"


class ComponentKind(str, Enum):
    hero_split = "hero-split"
    hero_centered = "hero-centered"
    hero_product = "hero-product"
    hero_minimal = "hero-minimal"
    hero_stats = "hero-stats"
    features_grid = "features-grid"
    features_alternating = "features-alternating"
    features_tabs = "features-tabs"
    features_comparison = "features-comparison"
    content_steps = "content-steps"
    content_faq = "content-faq"
    content_rich_text = "content-rich-text"
    content_columns = "content-columns"
    problem_statement = "problem-statement"
    testimonials_carousel = "testimonials-carousel"
    testimonials_grid = "testimonials-grid"
    logo_cloud = "logo-cloud"
    stats_section = "stats-section"
    case_studies = "case-studies"
    pricing_cards = "pricing-cards"
    pricing_table = "pricing-table"
    cta_banner = "cta-banner"
    cta_demo = "cta-demo"
    cta_inline = "cta-inline"
    form_contact = "form-contact"
    form_demo_request = "form-demo-request"


class PageMetadata(BaseModel):
    title: str
    description: str = ""
    keywords: Sequence[str] = Field(default_factory=list)
    og_image: str | None = None


class LayoutConstraints(BaseModel):
    min_sections: int | None = Field(default=None, ge=1, le=20)
    max_sections: int | None = Field(default=None, ge=1, le=20)
    required_components: Sequence[ComponentKind] = Field(default_factory=list)
    excluded_components: Sequence[ComponentKind] = Field(default_factory=list)
    forced_order: Sequence[ComponentKind] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_consistency(self) -> "LayoutConstraints":
        if (
            self.min_sections is not None
            and self.max_sections is not None
            and self.min_sections > self.max_sections
        ):
            raise ValueError("min_sections cannot exceed max_sections")
        clash = set(self.excluded_components) & (
            set(self.required_components) | set(self.forced_order)
        )
        if clash:
            names = ", ".join(sorted(kind.value for kind in clash))
            raise ValueError(f"components both required and excluded: {names}")
        if len(set(self.forced_order)) != len(self.forced_order):
            raise ValueError("forced_order must not repeat a component")
        return self


class LayoutGenerationInput(BaseModel):
    workspace_id: str = Field(min_length=1)
    page_type: PageType
    personas: Sequence[str] = Field(default_factory=list)
    knowledge_base_id: str | None = None
    content_hints: Mapping[str, Any] = Field(default_factory=dict)
    constraints: LayoutConstraints = Field(default_factory=LayoutConstraints)
    candidates: Sequence[ComponentKind] | None = Field(
        default=None,
        description="Candidate pool; defaults to every registered component",
    )


class ComponentSelection(BaseModel):
    section_id: str
    component_variant: ComponentKind
    order: int = Field(ge=0)
    narrative_role: NarrativeRole
    score: float = 0.0


class PageLayout(BaseModel):
    page_id: str
    slug: str
    page_type: PageType
    sections: Sequence[ComponentSelection]
    metadata: PageMetadata
    constraints_satisfied: bool = True
    generation_metadata: Mapping[str, Any] = Field(default_factory=dict)

    @property
    def section_ids(self) -> list[str]:
        return [section.section_id for section in self.sections]

    def section(self, section_id: str) -> ComponentSelection | None:
        return next((s for s in self.sections if s.section_id == section_id), None)


__all__ = [
    "PageType",
    "NarrativeRole",
    "ComponentKind",
    "PageMetadata",
    "LayoutConstraints",
    "LayoutGenerationInput",
    "ComponentSelection",
    "PageLayout",
]
