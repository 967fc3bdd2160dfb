from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Mapping

from pydantic import ValidationError

from .assembler import PageAssembler, compute_stats, validate_page_content
from .content_generator import ContentGenerator
from .errors import InputValidationError
from .knowledge import DEFAULT_PERSONAS, KnowledgeSource
from .layout_generator import LayoutGenerator
from .models.content import ContentGenerationInput, ContentSectionSpec
from .models.job import GenerationStage
from .models.knowledge import PersonaDefinition
from .models.layout import LayoutGenerationInput
from .models.page import (
    BrandConfig,
    PageContentStructure,
    PageGenerationRequest,
    PipelineMetadata,
    RuntimePageData,
    StageTiming,
)
from .models.storyline import StorylineGenerationInput, StorylineValidation
from .oracle import GenerationOracle, HeuristicOracle
from .render_data import extract_render_data
from .snapshot_store import SnapshotStore
from .storyline_generator import StorylineGenerator, validate_storyline

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[GenerationStage], None]


@dataclass
class PipelineResult:
    structure: PageContentStructure
    render_data: RuntimePageData
    validation: StorylineValidation
    snapshot_version: int | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def total_time_ms(self) -> int:
        return self.structure.pipeline_metadata.total_time_ms

    @property
    def total_tokens(self) -> int:
        return self.structure.pipeline_metadata.total_tokens_used

    @property
    def overall_confidence(self) -> float:
        return self.structure.pipeline_metadata.overall_confidence

    def model_dump(self) -> dict[str, object]:
        return {
            "structure": self.structure.model_dump(mode="json"),
            "render_data": self.render_data.model_dump(mode="json"),
            "validation": self.validation.model_dump(mode="json"),
            "snapshot_version": self.snapshot_version,
            "warnings": list(self.warnings),
        }


class PagePipeline:
    """Runs layout, storyline, content and assembly for one page."""

    def __init__(
        self,
        *,
        layout_generator: LayoutGenerator,
        storyline_generator: StorylineGenerator,
        content_generator: ContentGenerator,
        assembler: PageAssembler,
        knowledge: KnowledgeSource | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._layout_generator = layout_generator
        self._storyline_generator = storyline_generator
        self._content_generator = content_generator
        self._assembler = assembler
        self._knowledge = knowledge
        self._clock = clock

    def generate(
        self,
        request: PageGenerationRequest | Mapping[str, Any],
        *,
        on_progress: ProgressCallback | None = None,
    ) -> PipelineResult:
        request = self._validate(request)
        notify = on_progress or (lambda stage: None)
        timings: list[StageTiming] = []
        started = self._clock()

        hints = dict(request.content_hints)
        if request.page_id:
            hints["page_id"] = request.page_id
        layout_input = self._stage_input(
            "layout",
            LayoutGenerationInput,
            {
                "workspace_id": request.workspace_id,
                "page_type": request.page_type,
                "personas": list(request.personas),
                "knowledge_base_id": request.knowledge_base_id,
                "content_hints": hints,
                "constraints": request.constraints,
                "candidates": request.candidates,
            },
        )
        personas = self._resolve_personas(request)

        notify(GenerationStage.layout)
        with self._timed(GenerationStage.layout, timings):
            layout = self._layout_generator.generate(layout_input)

        notify(GenerationStage.storyline)
        with self._timed(GenerationStage.storyline, timings):
            storyline = self._storyline_generator.generate(
                StorylineGenerationInput(
                    layout=layout,
                    personas=[persona.id for persona in personas],
                    persona_styles={persona.id: persona.communication_style for persona in personas},
                )
            )
            validation = validate_storyline(storyline, layout.page_type, layout=layout)
        if not validation.is_optimal:
            logger.warning(
                "Storyline is not optimal",
                extra={
                    "page_id": layout.page_id,
                    "score": validation.score,
                    "violations": [v.rule_id for v in validation.violations],
                },
            )

        notify(GenerationStage.content)
        with self._timed(GenerationStage.content, timings) as timing:
            content = self._content_generator.generate(
                ContentGenerationInput(
                    workspace_id=request.workspace_id,
                    page_type=request.page_type,
                    sections=[
                        ContentSectionSpec(
                            section_id=section.section_id,
                            component_id=section.component_variant,
                            order=section.order,
                            narrative_role=section.narrative_role,
                        )
                        for section in layout.sections
                    ],
                    personas=personas,
                    knowledge_base_id=request.knowledge_base_id,
                    hints=request.content_hints,
                )
            )
            timing["tokens_used"] = content.tokens_used

        notify(GenerationStage.assembling)
        with self._timed(GenerationStage.assembling, timings):
            stats = compute_stats(
                content.sections,
                fallbacks_used=content.fallbacks_used,
                tokens_used=content.tokens_used,
            )
            metadata = PipelineMetadata(
                generated_at=datetime.utcnow(),
                stage_timings=list(timings),
                total_time_ms=int((self._clock() - started) * 1000),
                total_tokens_used=sum(t.tokens_used for t in timings),
                overall_confidence=stats.average_confidence,
                stages_completed=[t.stage for t in timings],
                degradations=[d.as_record() for d in content.degradations],
                storyline_validation=validation,
            )
            structure = self._assembler.assemble(
                layout,
                storyline,
                content.sections,
                pipeline_metadata=metadata,
                generation_stats=stats,
                brand_config=request.brand_config,
            )

        notify(GenerationStage.saving)
        with self._timed(GenerationStage.saving, timings):
            version = self._assembler.commit(structure)

        warnings = validate_page_content(structure)
        result = PipelineResult(
            structure=structure,
            render_data=extract_render_data(structure),
            validation=validation,
            snapshot_version=version,
            warnings=warnings,
        )
        logger.info(
            "Generated page",
            extra={
                "page_id": structure.page_id,
                "page_type": structure.page_type.value,
                "sections": len(structure.sections),
                "snapshot_version": version,
                "total_time_ms": int((self._clock() - started) * 1000),
                "overall_confidence": result.overall_confidence,
                "fallbacks_used": stats.fallbacks_used,
            },
        )
        notify(GenerationStage.complete)
        return result

    def _validate(self, request: PageGenerationRequest | Mapping[str, Any]) -> PageGenerationRequest:
        if isinstance(request, PageGenerationRequest):
            return request
        return self._stage_input("page", PageGenerationRequest, request)

    @staticmethod
    def _stage_input(stage: str, model, payload: Mapping[str, Any]):
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise InputValidationError.from_pydantic(stage, exc) from exc

    def _resolve_personas(self, request: PageGenerationRequest) -> list[PersonaDefinition]:
        persona_ids = list(dict.fromkeys(request.personas))
        if self._knowledge is not None:
            return self._knowledge.personas(request.workspace_id, persona_ids)
        return [
            DEFAULT_PERSONAS.get(pid) or PersonaDefinition(id=pid, label=pid.replace("-", " ").title())
            for pid in persona_ids
        ]

    @contextmanager
    def _timed(self, stage: GenerationStage, timings: list[StageTiming]) -> Iterator[dict[str, int]]:
        extra = {"tokens_used": 0}
        started = self._clock()
        status = "failed"
        try:
            yield extra
            status = "completed"
        finally:
            timings.append(
                StageTiming(
                    stage=stage.value,
                    time_ms=int((self._clock() - started) * 1000),
                    tokens_used=extra["tokens_used"],
                    status=status,
                )
            )
            if status == "failed":
                logger.error("Pipeline stage failed", extra={"stage": stage.value})


def create_pipeline(
    *,
    oracle: GenerationOracle | None = None,
    knowledge: KnowledgeSource | None = None,
    snapshot_store: SnapshotStore | None = None,
    brand_config: BrandConfig | None = None,
) -> PagePipeline:
    """Wire the default stage implementations around one oracle."""
    oracle = oracle or HeuristicOracle()
    return PagePipeline(
        layout_generator=LayoutGenerator(oracle=oracle, knowledge=knowledge),
        storyline_generator=StorylineGenerator(),
        content_generator=ContentGenerator(oracle=oracle, knowledge=knowledge),
        assembler=PageAssembler(snapshot_store=snapshot_store, brand_config=brand_config),
        knowledge=knowledge,
    )


__all__ = ["PagePipeline", "PipelineResult", "ProgressCallback", "create_pipeline"]
