from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from .errors import InputValidationError, PipelineInconsistencyError
from .models.content import PopulatedContent, PopulatedSection
from .models.layout import NarrativeRole, PageLayout
from .models.page import (
    AnimationConfig,
    BrandConfig,
    GenerationStats,
    PageContentStructure,
    PageVersionDiff,
    PipelineMetadata,
)
from .models.storyline import Storyline
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.5


def compute_stats(
    sections: Sequence[PopulatedSection], *, fallbacks_used: int = 0, tokens_used: int = 0
) -> GenerationStats:
    confidences = [section.metadata.confidence_score for section in sections]
    return GenerationStats(
        total_sections=len(sections),
        sections_generated=sum(1 for section in sections if not section.content.is_empty()),
        persona_variations=sum(len(section.persona_variations) for section in sections),
        average_confidence=round(sum(confidences) / len(confidences), 4) if confidences else 0.0,
        fallbacks_used=fallbacks_used,
        tokens_used=tokens_used,
    )


class PageAssembler:
    def __init__(
        self,
        *,
        snapshot_store: SnapshotStore | None = None,
        brand_config: BrandConfig | None = None,
        animation_config: AnimationConfig | None = None,
    ) -> None:
        self._snapshot_store = snapshot_store
        self._brand_config = brand_config or BrandConfig()
        self._animation_config = animation_config or AnimationConfig()

    def assemble(
        self,
        layout: PageLayout,
        storyline: Storyline,
        sections: Sequence[PopulatedSection],
        *,
        pipeline_metadata: PipelineMetadata | None = None,
        generation_stats: GenerationStats | None = None,
        brand_config: BrandConfig | None = None,
    ) -> PageContentStructure:
        """Merge stage outputs keyed by section id.

        Raises:
            PipelineInconsistencyError: a section id is referenced by one stage but
                missing from another, or a section's component disagrees with the layout
        """
        layout_ids = layout.section_ids
        populated = {section.section_id: section for section in sections}

        duplicated = [sid for sid, count in Counter(layout_ids).items() if count > 1]
        duplicated += [sid for sid, count in Counter(s.section_id for s in sections).items() if count > 1]
        flow_counts = Counter(storyline.default_flow)
        duplicated += [sid for sid, count in flow_counts.items() if count > 1]

        known = set(layout_ids)
        missing = set(storyline.referenced_section_ids()) - (known & set(populated))
        missing |= known ^ set(populated)
        missing |= known - set(flow_counts)
        if missing or duplicated:
            problems = sorted(missing | set(duplicated))
            logger.error(
                "Stage outputs disagree on section ids",
                extra={"page_id": layout.page_id, "section_ids": problems},
            )
            raise PipelineInconsistencyError(
                f"Section ids inconsistent across stages: {', '.join(problems)}",
                missing=problems,
            )

        merged: list[PopulatedSection] = []
        for selection in sorted(layout.sections, key=lambda s: s.order):
            section = populated[selection.section_id]
            if section.component_id != selection.component_variant:
                raise PipelineInconsistencyError(
                    f"Section {selection.section_id} populated as {section.component_id.value}, "
                    f"layout selected {selection.component_variant.value}",
                    missing=[selection.section_id],
                )
            if section.content.is_empty():
                raise PipelineInconsistencyError(
                    f"Section {selection.section_id} has no base content",
                    missing=[selection.section_id],
                )
            merged.append(
                section.model_copy(
                    update={"order": selection.order, "narrative_role": selection.narrative_role}
                )
            )

        structure = PageContentStructure(
            page_id=layout.page_id,
            page_type=layout.page_type,
            sections=merged,
            page_metadata=layout.metadata,
            pipeline_metadata=pipeline_metadata or PipelineMetadata(),
            generation_stats=generation_stats or compute_stats(merged),
            storyline=storyline,
            brand_config=brand_config or self._brand_config,
            animation_config=self._animation_config,
        )
        return structure

    def commit(self, structure: PageContentStructure) -> int | None:
        """Persist the structure as a new snapshot version; no-op without a store."""
        if self._snapshot_store is None:
            return None
        return self._snapshot_store.commit(structure.page_id, structure)

    def compare_versions(
        self, page_id: str, old_version: int, new_version: int | None = None
    ) -> PageVersionDiff:
        """Diff two persisted snapshots of a page; the latest one when ``new_version`` is omitted."""
        if self._snapshot_store is None:
            raise PipelineInconsistencyError("No snapshot store configured")
        old = self._snapshot_store.get(page_id, old_version)
        new = self._snapshot_store.get(page_id, new_version)
        if old is None or new is None:
            raise PipelineInconsistencyError(f"Snapshot not found for page {page_id}")
        return compare_page_versions(old, new)


def validate_page_content(structure: PageContentStructure) -> list[str]:
    """Advisory warnings about an assembled page."""
    warnings: list[str] = []
    roles = {section.narrative_role for section in structure.sections}
    if NarrativeRole.hook not in roles:
        warnings.append("Page has no hook section")
    if NarrativeRole.action not in roles:
        warnings.append("Page has no call-to-action section")
    for section in structure.sections:
        if section.metadata.confidence_score < LOW_CONFIDENCE_THRESHOLD:
            warnings.append(
                f"Section {section.section_id} has low grounding confidence "
                f"({section.metadata.confidence_score:.2f})"
            )
    return warnings


def compare_page_versions(old: PageContentStructure, new: PageContentStructure) -> PageVersionDiff:
    """Section-level diff of two page structures.

    A kept section counts as modified when its component or headline changed.
    """
    old_sections = {section.section_id: section for section in old.sections}
    new_ids = [section.section_id for section in new.sections]

    modified = [
        section.section_id
        for section in new.sections
        if section.section_id in old_sections
        and (
            old_sections[section.section_id].component_id != section.component_id
            or old_sections[section.section_id].content.headline != section.content.headline
        )
    ]
    return PageVersionDiff(
        sections_added=[sid for sid in new_ids if sid not in old_sections],
        sections_removed=[sid for sid in old_sections if sid not in new_ids],
        sections_modified=modified,
        metadata_changed=(
            old.page_metadata.title != new.page_metadata.title
            or old.page_metadata.description != new.page_metadata.description
        ),
    )


def merge_content_edits(
    generated: PopulatedContent, edits: PopulatedContent | Mapping[str, Any]
) -> PopulatedContent:
    """Overlay user edits on generated content.

    Edited fields replace generated ones; fields the edit leaves unset or ``None``
    keep their generated value.
    """
    if isinstance(edits, PopulatedContent):
        edits = edits.model_dump(exclude_unset=True)
    merged = generated.model_dump(exclude_none=True)
    merged.update({key: value for key, value in edits.items() if value is not None})
    try:
        return PopulatedContent.model_validate(merged)
    except ValidationError as exc:
        raise InputValidationError.from_pydantic("content edit", exc) from exc


__all__ = [
    "PageAssembler",
    "compute_stats",
    "validate_page_content",
    "compare_page_versions",
    "merge_content_edits",
    "LOW_CONFIDENCE_THRESHOLD",
]
