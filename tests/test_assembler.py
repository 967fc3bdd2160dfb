import pytest

from adaptive_page_engine.assembler import (
    PageAssembler,
    compare_page_versions,
    merge_content_edits,
    validate_page_content,
)
from adaptive_page_engine.content_generator import ContentGenerator
from adaptive_page_engine.errors import InputValidationError, PipelineInconsistencyError
from adaptive_page_engine.layout_generator import LayoutGenerator
from adaptive_page_engine.models.content import ContentSectionSpec, PopulatedContent
from adaptive_page_engine.models.knowledge import KnowledgeExcerpt
from adaptive_page_engine.models.layout import ComponentKind
from adaptive_page_engine.oracle import HeuristicOracle
from adaptive_page_engine.snapshot_store import InMemorySnapshotStore
from adaptive_page_engine.storyline_generator import StorylineGenerator

EXCERPTS = [
    KnowledgeExcerpt(id="t1", entity_type="tagline", text="Launch pages faster"),
    KnowledgeExcerpt(id="f1", entity_type="feature", text="Smart layouts", metadata={"name": "Layouts"}),
    KnowledgeExcerpt(id="o1", entity_type="offer", text="Try it free", metadata={"cta": "Try Free"}),
]


def build_stages():
    oracle = HeuristicOracle()
    layout = LayoutGenerator(oracle=oracle, id_factory=lambda: "page-1").generate(
        {
            "workspace_id": "ws-1",
            "page_type": "landing",
            "candidates": ["hero-centered", "features-grid", "testimonials-grid", "cta-banner"],
        },
        excerpts=EXCERPTS,
    )
    storyline = StorylineGenerator().generate({"layout": layout, "personas": ["developer"]})
    content = ContentGenerator(oracle=oracle).generate(
        {
            "workspace_id": "ws-1",
            "page_type": "landing",
            "excerpts": EXCERPTS,
            "sections": [
                ContentSectionSpec(
                    section_id=section.section_id,
                    component_id=section.component_variant,
                    order=section.order,
                    narrative_role=section.narrative_role,
                )
                for section in layout.sections
            ],
        }
    )
    return layout, storyline, content.sections


def test_assemble_merges_sections_in_layout_order():
    layout, storyline, sections = build_stages()
    structure = PageAssembler().assemble(layout, storyline, list(reversed(sections)))

    assert [s.section_id for s in structure.sections] == layout.section_ids
    assert [s.order for s in structure.sections] == list(range(len(layout.sections)))
    assert structure.page_id == "page-1"
    assert structure.storyline.model_dump() == storyline.model_dump()
    assert structure.generation_stats.total_sections == len(layout.sections)


def test_missing_populated_section_raises():
    layout, storyline, sections = build_stages()
    with pytest.raises(PipelineInconsistencyError) as excinfo:
        PageAssembler().assemble(layout, storyline, sections[:-1])

    assert sections[-1].section_id in excinfo.value.missing


def test_storyline_reference_to_unknown_section_raises():
    layout, storyline, sections = build_stages()
    broken = storyline.model_copy(update={"default_flow": [*storyline.default_flow, "section-99-ghost"]})

    with pytest.raises(PipelineInconsistencyError) as excinfo:
        PageAssembler().assemble(layout, broken, sections)

    assert "section-99-ghost" in excinfo.value.missing


def test_component_mismatch_raises():
    layout, storyline, sections = build_stages()
    first = sections[0]
    replacement = ComponentKind.cta_inline if first.component_id != ComponentKind.cta_inline else ComponentKind.cta_banner
    swapped = first.model_copy(update={"component_id": replacement})

    with pytest.raises(PipelineInconsistencyError):
        PageAssembler().assemble(layout, storyline, [swapped, *sections[1:]])


def test_commit_appends_versions_without_touching_prior_snapshot():
    layout, storyline, sections = build_stages()
    store = InMemorySnapshotStore()
    assembler = PageAssembler(snapshot_store=store)

    first = assembler.assemble(layout, storyline, sections)
    assert assembler.commit(first) == 1

    retitled = first.model_copy(update={"page_metadata": first.page_metadata.model_copy(update={"title": "New"})})
    assert assembler.commit(retitled) == 2

    assert store.versions("page-1") == [1, 2]
    assert store.get("page-1", 1).model_dump() == first.model_dump()
    assert store.get("page-1").page_metadata.title == "New"
    assert store.get("page-1", 3) is None


def test_commit_without_store_is_a_no_op():
    layout, storyline, sections = build_stages()
    assembler = PageAssembler()

    assert assembler.commit(assembler.assemble(layout, storyline, sections)) is None


def test_validate_page_content_flags_low_confidence():
    layout, storyline, sections = build_stages()
    structure = PageAssembler().assemble(layout, storyline, sections)

    warnings = validate_page_content(structure)

    low = [s for s in structure.sections if s.metadata.confidence_score < 0.5]
    assert len([w for w in warnings if "low grounding confidence" in w]) == len(low)
    assert not [w for w in warnings if "no hook" in w]


def test_compare_page_versions_reports_section_changes():
    layout, storyline, sections = build_stages()
    old = PageAssembler().assemble(layout, storyline, sections)

    first, second = old.sections[0], old.sections[1]
    rewritten = first.model_copy(update={"content": first.content.model_copy(update={"headline": "Rewritten headline"})})
    extra = second.model_copy(update={"section_id": "section-9-extra"})
    new = old.model_copy(update={"sections": [rewritten, *old.sections[1:-1], extra]})

    diff = compare_page_versions(old, new)

    assert list(diff.sections_added) == ["section-9-extra"]
    assert list(diff.sections_removed) == [old.sections[-1].section_id]
    assert list(diff.sections_modified) == [first.section_id]
    assert diff.metadata_changed is False
    assert diff.has_changes is True
    assert compare_page_versions(old, old).has_changes is False


def test_compare_versions_reads_persisted_snapshots():
    layout, storyline, sections = build_stages()
    assembler = PageAssembler(snapshot_store=InMemorySnapshotStore())
    first = assembler.assemble(layout, storyline, sections)
    assembler.commit(first)
    assembler.commit(first.model_copy(update={"page_metadata": first.page_metadata.model_copy(update={"title": "New"})}))

    diff = assembler.compare_versions("page-1", 1)

    assert diff.metadata_changed is True
    assert list(diff.sections_modified) == []
    with pytest.raises(PipelineInconsistencyError):
        assembler.compare_versions("page-1", 1, 7)


def test_merge_content_edits_keeps_unedited_fields():
    generated = PopulatedContent(
        headline="Generated",
        description="Generated description",
        bullets=["fast", "grounded"],
        primary_cta={"text": "Start", "link": "#start"},
    )

    merged = merge_content_edits(generated, {"headline": "Edited", "bullets": None, "badge": "New"})

    assert merged.headline == "Edited"
    assert list(merged.bullets) == ["fast", "grounded"]
    assert merged.description == "Generated description"
    assert merged.primary_cta.link == "#start"
    assert merged.model_extra["badge"] == "New"
    assert generated.headline == "Generated"


def test_merge_content_edits_accepts_content_models_and_rejects_bad_fields():
    generated = PopulatedContent(headline="Generated", subheadline="Sub")

    merged = merge_content_edits(generated, PopulatedContent(subheadline="Edited sub"))

    assert merged.headline == "Generated"
    assert merged.subheadline == "Edited sub"
    with pytest.raises(InputValidationError):
        merge_content_edits(generated, {"primary_cta": 5})
