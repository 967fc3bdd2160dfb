import pytest

from adaptive_page_engine.errors import InputValidationError, InsufficientContentError, OracleError
from adaptive_page_engine.layout_generator import LayoutGenerator
from adaptive_page_engine.models.knowledge import KnowledgeExcerpt
from adaptive_page_engine.models.layout import ComponentKind, NarrativeRole, PageType
from adaptive_page_engine.oracle import HeuristicOracle

K = ComponentKind

CANDIDATES = [
    K.hero_split,
    K.hero_centered,
    K.features_grid,
    K.testimonials_grid,
    K.stats_section,
    K.pricing_cards,
    K.cta_banner,
    K.content_faq,
]

EXCERPTS = [
    KnowledgeExcerpt(id="t1", entity_type="tagline", text="Ship pages faster"),
    KnowledgeExcerpt(id="f1", entity_type="feature", text="Smart layouts", metadata={"name": "Layouts"}),
    KnowledgeExcerpt(id="s1", entity_type="statistic", text="3x more leads"),
    KnowledgeExcerpt(id="p1", entity_type="pricing", text="Starter plan", metadata={"price": "$29"}),
]


class FailingScoreOracle(HeuristicOracle):
    def __init__(self, failing: set[ComponentKind]) -> None:
        super().__init__()
        self._failing = failing

    def score_component(self, definition, context):
        if definition.kind in self._failing:
            raise OracleError("ranking unavailable")
        return super().score_component(definition, context)


def make_generator(oracle=None) -> LayoutGenerator:
    return LayoutGenerator(oracle=oracle or HeuristicOracle(), id_factory=lambda: "page-1")


def landing_request(**constraints):
    return {
        "workspace_id": "ws-1",
        "page_type": "landing",
        "candidates": [kind.value for kind in CANDIDATES],
        "constraints": {
            "required_components": ["hero-split", "pricing-cards"],
            "min_sections": 3,
            "max_sections": 6,
            **constraints,
        },
    }


def test_layout_respects_bounds_and_required_components():
    layout = make_generator().generate(landing_request(), excerpts=EXCERPTS)

    kinds = [section.component_variant for section in layout.sections]
    assert 3 <= len(kinds) <= 6
    assert K.hero_split in kinds
    assert K.pricing_cards in kinds
    assert set(kinds) <= set(CANDIDATES)
    assert [section.order for section in layout.sections] == list(range(len(kinds)))
    assert len({section.section_id for section in layout.sections}) == len(kinds)
    assert layout.constraints_satisfied is True
    assert layout.page_id == "page-1"
    assert layout.slug == "/landing"


def test_layout_opens_with_hook_and_ends_with_action():
    layout = make_generator().generate(landing_request(), excerpts=EXCERPTS)

    roles = [section.narrative_role for section in layout.sections]
    assert roles[0] == NarrativeRole.hook
    assert roles[-1] == NarrativeRole.action


def test_excluded_components_never_selected():
    request = landing_request(excluded_components=["stats-section", "cta-banner"])
    layout = make_generator().generate(request, excerpts=EXCERPTS)

    kinds = {section.component_variant for section in layout.sections}
    assert K.stats_section not in kinds
    assert K.cta_banner not in kinds


def test_forced_order_is_a_subsequence_of_the_result():
    request = landing_request(forced_order=["features-grid", "hero-split"])
    layout = make_generator().generate(request, excerpts=EXCERPTS)

    kinds = [section.component_variant for section in layout.sections]
    assert kinds.index(K.features_grid) < kinds.index(K.hero_split)
    assert [section.order for section in layout.sections] == list(range(len(kinds)))


def test_required_roles_are_covered_when_candidates_allow():
    layout = make_generator().generate(
        {"workspace_id": "ws-1", "page_type": "home"}, excerpts=EXCERPTS
    )

    roles = {section.narrative_role for section in layout.sections}
    assert {NarrativeRole.hook, NarrativeRole.solution, NarrativeRole.proof, NarrativeRole.action} <= roles
    assert 5 <= len(layout.sections) <= 10
    assert layout.slug == "/"


def test_uncovered_role_is_reported_not_raised():
    request = {
        "workspace_id": "ws-1",
        "page_type": "landing",
        "candidates": ["hero-split", "hero-centered", "pricing-cards", "cta-banner"],
        "constraints": {"min_sections": 2},
    }
    layout = make_generator().generate(request, excerpts=EXCERPTS)

    assert layout.constraints_satisfied is False
    assert layout.generation_metadata["uncovered_roles"] == ["solution"]


def test_insufficient_candidates_raise():
    request = {
        "workspace_id": "ws-1",
        "page_type": "landing",
        "candidates": ["hero-split"],
        "constraints": {"min_sections": 3},
    }
    with pytest.raises(InsufficientContentError):
        make_generator().generate(request, excerpts=EXCERPTS)


def test_role_limits_give_way_when_minimum_needs_more_sections():
    request = {
        "workspace_id": "ws-1",
        "page_type": "home",
        "constraints": {"min_sections": 12, "max_sections": 15},
    }

    layout = make_generator().generate(request, excerpts=EXCERPTS)

    assert 12 <= len(layout.sections) <= 15
    assert [section.order for section in layout.sections] == list(range(len(layout.sections)))
    assert len({section.component_variant for section in layout.sections}) == len(layout.sections)


def test_too_many_required_components_is_invalid():
    request = landing_request(
        required_components=["hero-split", "pricing-cards", "features-grid"],
        min_sections=1,
        max_sections=2,
    )
    with pytest.raises(InputValidationError):
        make_generator().generate(request, excerpts=EXCERPTS)


@pytest.mark.parametrize(
    "request_payload",
    [
        {"workspace_id": "", "page_type": "home"},
        {"workspace_id": "ws-1", "page_type": "blog"},
        {"workspace_id": "ws-1", "page_type": "home", "candidates": ["hero-unknown"]},
        {
            "workspace_id": "ws-1",
            "page_type": "home",
            "constraints": {"required_components": ["cta-banner"], "excluded_components": ["cta-banner"]},
        },
        {"workspace_id": "ws-1", "page_type": "home", "constraints": {"min_sections": 6, "max_sections": 3}},
    ],
)
def test_malformed_requests_are_rejected(request_payload):
    with pytest.raises(InputValidationError):
        make_generator().generate(request_payload, excerpts=EXCERPTS)


def test_scoring_failure_degrades_to_zero_score():
    oracle = FailingScoreOracle({K.stats_section})
    layout = make_generator(oracle).generate(landing_request(), excerpts=EXCERPTS)

    assert layout.generation_metadata["scoring_failures"] == ["stats-section"]
    for section in layout.sections:
        if section.component_variant == K.stats_section:
            assert section.score == 0.0


def test_same_input_gives_same_layout():
    generator = make_generator()
    first = generator.generate(landing_request(), excerpts=EXCERPTS)
    second = generator.generate(landing_request(), excerpts=EXCERPTS)

    assert first.model_dump() == second.model_dump()


def test_page_id_and_title_come_from_hints():
    request = {
        "workspace_id": "ws-1",
        "page_type": PageType.pricing,
        "content_hints": {"page_id": "pricing-2026", "title": "Plans", "slug": "/plans"},
    }
    layout = make_generator().generate(request, excerpts=EXCERPTS)

    assert layout.page_id == "pricing-2026"
    assert layout.metadata.title == "Plans"
    assert layout.slug == "/plans"
