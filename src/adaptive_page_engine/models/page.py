from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .content import PopulatedContent, PopulatedSection
from .layout import ComponentKind, LayoutConstraints, NarrativeRole, PageMetadata, PageType
from .storyline import Storyline, StorylineValidation

AnimationPreset = Literal[
    "fadeIn", "slideUp", "slideDown", "slideInLeft", "slideInRight", "scaleIn", "none"
]

PIPELINE_VERSION = "1.0.0"


class BrandConfig(BaseModel):
    name: str = "Brand"
    colors: Mapping[str, str] = Field(default_factory=dict)
    typography: Mapping[str, str] = Field(default_factory=dict)
    tone: str = "professional"


class AnimationConfig(BaseModel):
    entrance: AnimationPreset = "fadeIn"
    swap: AnimationPreset = "fadeIn"
    duration: float = Field(default=0.5, ge=0.0)
    stagger_delay: float = Field(default=0.1, ge=0.0)


class StageTiming(BaseModel):
    stage: str
    time_ms: int = 0
    tokens_used: int = 0
    status: Literal["completed", "failed", "skipped"] = "completed"


class PipelineMetadata(BaseModel):
    pipeline_version: str = PIPELINE_VERSION
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    stage_timings: Sequence[StageTiming] = Field(default_factory=list)
    total_time_ms: int = 0
    total_tokens_used: int = 0
    overall_confidence: float = 0.0
    stages_completed: Sequence[str] = Field(default_factory=list)
    degradations: Sequence[Mapping[str, Any]] = Field(default_factory=list)
    storyline_validation: StorylineValidation | None = None


class GenerationStats(BaseModel):
    total_sections: int = 0
    sections_generated: int = 0
    persona_variations: int = 0
    average_confidence: float = 0.0
    fallbacks_used: int = 0
    tokens_used: int = 0


class PageGenerationRequest(BaseModel):
    """One end-to-end page generation request."""

    workspace_id: str = Field(min_length=1)
    page_type: PageType
    personas: Sequence[str] = Field(default_factory=list)
    knowledge_base_id: str | None = None
    content_hints: Mapping[str, Any] = Field(default_factory=dict)
    constraints: LayoutConstraints = Field(default_factory=LayoutConstraints)
    candidates: Sequence[ComponentKind] | None = None
    brand_config: BrandConfig | None = None
    page_id: str | None = None


class PageContentStructure(BaseModel):
    """The persisted source of truth for one generated page."""

    page_id: str
    page_type: PageType
    sections: Sequence[PopulatedSection]
    page_metadata: PageMetadata
    pipeline_metadata: PipelineMetadata = Field(default_factory=PipelineMetadata)
    generation_stats: GenerationStats = Field(default_factory=GenerationStats)
    storyline: Storyline | None = None
    brand_config: BrandConfig = Field(default_factory=BrandConfig)
    animation_config: AnimationConfig = Field(default_factory=AnimationConfig)


class PageVersionDiff(BaseModel):
    sections_added: Sequence[str] = Field(default_factory=list)
    sections_removed: Sequence[str] = Field(default_factory=list)
    sections_modified: Sequence[str] = Field(default_factory=list)
    metadata_changed: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(
            self.sections_added or self.sections_removed or self.sections_modified or self.metadata_changed
        )


class RuntimeSection(BaseModel):
    model_config = ConfigDict(frozen=True)

    section_id: str
    component_id: ComponentKind
    order: int
    narrative_role: NarrativeRole
    default_content: PopulatedContent
    persona_variants: Mapping[str, PopulatedContent] = Field(default_factory=dict)


class RuntimePageData(BaseModel):
    model_config = ConfigDict(frozen=True)

    page_id: str
    sections: Sequence[RuntimeSection]
    metadata: PageMetadata
    available_personas: Sequence[str] = Field(default_factory=list)
    persona_flows: Mapping[str, Sequence[str]] = Field(default_factory=dict)
    brand_config: BrandConfig = Field(default_factory=BrandConfig)
    animation_config: AnimationConfig = Field(default_factory=AnimationConfig)


class ResolvedRenderSection(BaseModel):
    model_config = ConfigDict(frozen=True)

    section_id: str
    component_id: ComponentKind
    order: int
    layout_order: int
    narrative_role: NarrativeRole
    content: PopulatedContent
    personalized: bool = False


__all__ = [
    "AnimationPreset",
    "PIPELINE_VERSION",
    "BrandConfig",
    "AnimationConfig",
    "StageTiming",
    "PipelineMetadata",
    "GenerationStats",
    "PageGenerationRequest",
    "PageContentStructure",
    "PageVersionDiff",
    "RuntimeSection",
    "RuntimePageData",
    "ResolvedRenderSection",
]
