from pathlib import Path

import pytest

from adaptive_page_engine.errors import InputValidationError, InsufficientContentError
from adaptive_page_engine.knowledge import LocalKnowledgeSource
from adaptive_page_engine.models.job import GenerationStage
from adaptive_page_engine.pipeline import create_pipeline
from adaptive_page_engine.render_data import get_render_data_for_persona
from adaptive_page_engine.snapshot_store import InMemorySnapshotStore

KNOWLEDGE_DIR = Path("data/knowledge")


def make_pipeline(store=None):
    return create_pipeline(
        knowledge=LocalKnowledgeSource(base_path=KNOWLEDGE_DIR),
        snapshot_store=store or InMemorySnapshotStore(),
    )


def landing_request(**overrides):
    request = {
        "workspace_id": "demo-workspace",
        "page_type": "landing",
        "personas": ["developer", "marketing-lead"],
        "knowledge_base_id": "demo-kb",
        "page_id": "launch",
    }
    request.update(overrides)
    return request


def test_pipeline_generates_and_commits_a_page():
    store = InMemorySnapshotStore()
    stages = []

    result = make_pipeline(store).generate(landing_request(), on_progress=stages.append)

    structure = result.structure
    assert structure.page_id == "launch"
    assert result.snapshot_version == 1
    assert store.get("launch").model_dump() == structure.model_dump()
    assert stages == [
        GenerationStage.layout,
        GenerationStage.storyline,
        GenerationStage.content,
        GenerationStage.assembling,
        GenerationStage.saving,
        GenerationStage.complete,
    ]
    assert [t.stage for t in structure.pipeline_metadata.stage_timings] == ["layout", "storyline", "content"]
    assert structure.pipeline_metadata.storyline_validation is not None
    assert 0.0 <= result.overall_confidence <= 1.0


def test_every_section_has_content_and_persona_variations():
    result = make_pipeline().generate(landing_request())

    for section in result.structure.sections:
        assert not section.content.is_empty()
        assert set(section.persona_variations) == {"developer", "marketing-lead"}
    assert list(result.render_data.available_personas) == ["developer", "marketing-lead"]


def test_render_data_matches_structure_order():
    result = make_pipeline().generate(landing_request())

    default_view = get_render_data_for_persona(result.render_data, None)

    assert [s.section_id for s in default_view] == [s.section_id for s in result.structure.sections]
    assert default_view[0].narrative_role.value == "hook"


def test_regenerating_creates_a_new_version():
    store = InMemorySnapshotStore()
    pipeline = make_pipeline(store)

    pipeline.generate(landing_request())
    second = pipeline.generate(landing_request(content_hints={"title": "Launch v2"}))

    assert second.snapshot_version == 2
    assert store.get("launch", 1).page_metadata.title != "Launch v2"
    assert store.get("launch").page_metadata.title == "Launch v2"


def test_missing_knowledge_base_still_produces_a_page():
    result = make_pipeline().generate(landing_request(knowledge_base_id="does-not-exist"))

    assert result.structure.generation_stats.fallbacks_used > 0
    assert any("low grounding confidence" in warning for warning in result.warnings)


def test_invalid_request_is_rejected_before_generation():
    stages = []
    with pytest.raises(InputValidationError):
        make_pipeline().generate({"workspace_id": "", "page_type": "landing"}, on_progress=stages.append)
    assert stages == []


def test_insufficient_content_propagates():
    with pytest.raises(InsufficientContentError):
        make_pipeline().generate(landing_request(candidates=["hero-split"], constraints={"min_sections": 3}))
