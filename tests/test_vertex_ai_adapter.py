from types import SimpleNamespace

import pytest

from adaptive_page_engine import vertex_ai_adapter
from adaptive_page_engine.components import get_component
from adaptive_page_engine.detection import DetectionService
from adaptive_page_engine.errors import DetectionError, OracleError
from adaptive_page_engine.knowledge import DEFAULT_PERSONAS
from adaptive_page_engine.models.layout import ComponentKind, NarrativeRole, PageType
from adaptive_page_engine.models.knowledge import KnowledgeExcerpt
from adaptive_page_engine.models.tracking import VisitorSession
from adaptive_page_engine.oracle import CompletionRequest, ScoringContext
from adaptive_page_engine.vertex_ai_adapter import VertexAIAdapter, VertexAIOracle, VertexPersonaDetector

PERSONAS = list(DEFAULT_PERSONAS.values())


class FakeModel:
    """Stands in for GenerativeModel; replays responses or raises exceptions in order."""

    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls = 0

    def generate_content(self, prompt, generation_config=None):
        self.calls += 1
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return SimpleNamespace(text=item, usage_metadata=SimpleNamespace(total_token_count=42))


class FakeAdapter:
    model_name = "fake-gemini"

    def __init__(self, result=None, error=None):
        self._result = result
        self._error = error

    def generate_json(self, prompt, **kwargs):
        if self._error is not None:
            raise self._error
        return self._result, 7


@pytest.fixture
def make_adapter(monkeypatch):
    monkeypatch.setattr(vertex_ai_adapter.vertexai, "init", lambda **kwargs: None)
    monkeypatch.setattr("time.sleep", lambda seconds: None)

    def build(model: FakeModel) -> VertexAIAdapter:
        monkeypatch.setattr(vertex_ai_adapter, "GenerativeModel", lambda name: model)
        return VertexAIAdapter(project_id="test-project", timeout_seconds=5)

    return build


def session(**updates) -> VisitorSession:
    return VisitorSession(session_id="s-1", website_id="w-1", visitor_id="v-1", **updates)


def test_generate_json_strips_code_fences(make_adapter):
    adapter = make_adapter(FakeModel('```json\n{"score": 0.8}\n```'))

    result, tokens = adapter.generate_json("rank this")

    assert result == {"score": 0.8}
    assert tokens == 42


def test_invalid_json_raises_oracle_error_without_retrying(make_adapter):
    model = FakeModel("this is not json")
    adapter = make_adapter(model)

    with pytest.raises(OracleError):
        adapter.generate_json("rank this")
    assert model.calls == 1


def test_transient_model_failure_is_retried(make_adapter):
    model = FakeModel(RuntimeError("503 unavailable"), '{"ok": true}')
    adapter = make_adapter(model)

    result, _ = adapter.generate_json("rank this")

    assert result == {"ok": True}
    assert model.calls == 2


def test_persistent_model_failure_surfaces_as_oracle_error(make_adapter):
    model = FakeModel(RuntimeError("503 unavailable"))
    adapter = make_adapter(model)

    with pytest.raises(OracleError):
        adapter.generate_json("rank this")
    assert model.calls == 3


def test_oracle_score_is_clamped_and_validated():
    context = ScoringContext(page_type=PageType.landing)
    definition = get_component(ComponentKind.hero_split)

    assert VertexAIOracle(adapter=FakeAdapter({"score": 1.7})).score_component(definition, context) == 1.0
    with pytest.raises(OracleError):
        VertexAIOracle(adapter=FakeAdapter({"rank": "high"})).score_component(definition, context)


def test_oracle_completion_keeps_only_known_source_ids():
    request = CompletionRequest(
        section_id="section-0-hero-split",
        component=get_component(ComponentKind.hero_split),
        narrative_role=NarrativeRole.hook,
        page_type=PageType.landing,
        excerpts=[KnowledgeExcerpt(id="t1", entity_type="tagline", text="Ship pages faster")],
    )
    adapter = FakeAdapter(
        {
            "fields": {"headline": "Ship pages faster"},
            "grounded_fields": ["headline"],
            "source_excerpt_ids": ["t1", "invented"],
        }
    )

    completion = VertexAIOracle(adapter=adapter).complete_section(request)

    assert completion.fields == {"headline": "Ship pages faster"}
    assert list(completion.source_excerpt_ids) == ["t1"]
    assert completion.tokens_used == 7
    assert completion.model == "fake-gemini"


def test_detector_filters_unknown_alternatives():
    adapter = FakeAdapter(
        {
            "persona_id": "developer",
            "confidence": 0.8,
            "alternatives": [
                {"persona_id": "ghost", "confidence": 0.7},
                {"persona_id": "student", "confidence": 0.6},
                {"persona_id": "enterprise", "confidence": 0.1},
            ],
        }
    )

    result = VertexPersonaDetector(adapter=adapter).detect(session(), PERSONAS)

    assert result.persona_id == "developer"
    assert result.confidence == 0.8
    assert [alt["persona_id"] for alt in result.alternatives] == ["student"]
    assert result.detector == "vertex"


@pytest.mark.parametrize(
    "payload",
    [
        {"persona_id": "ghost", "confidence": 0.9},
        {"persona_id": "developer", "confidence": 0.2},
        {"persona_id": None, "confidence": 0.0},
    ],
)
def test_detector_returns_empty_result_for_unknown_or_weak_answers(payload):
    result = VertexPersonaDetector(adapter=FakeAdapter(payload)).detect(session(), PERSONAS)

    assert result.persona_id is None
    assert result.confidence is None


def test_detector_converts_model_failures_to_detection_errors():
    with pytest.raises(DetectionError):
        VertexPersonaDetector(adapter=FakeAdapter(error=OracleError("quota"))).detect(session(), PERSONAS)
    with pytest.raises(DetectionError):
        VertexPersonaDetector(adapter=FakeAdapter({"persona_id": "developer", "confidence": "high"})).detect(
            session(), PERSONAS
        )


def test_detection_service_keeps_prior_persona_when_model_fails():
    service = DetectionService(detector=VertexPersonaDetector(adapter=FakeAdapter(error=OracleError("quota"))))
    prior = session(
        detected_persona_id="enterprise",
        persona_confidence=0.7,
        click_history=[{"element_id": "pricing"}] * 5,
        navigation_path=["/", "/pricing", "/security"],
        time_on_sections={"hero": 60.0},
    )

    outcome = service.maybe_detect(prior)

    assert outcome.triggered is True
    assert outcome.session.detected_persona_id == "enterprise"
    assert outcome.session.persona_confidence == 0.7
