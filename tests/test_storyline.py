import pytest

from adaptive_page_engine.errors import InputValidationError
from adaptive_page_engine.models.layout import (
    ComponentKind,
    ComponentSelection,
    NarrativeRole,
    PageLayout,
    PageMetadata,
    PageType,
)
from adaptive_page_engine.models.storyline import PersonaFlowVariation, Severity, StorylineGenerationInput
from adaptive_page_engine.storyline_generator import (
    StorylineGenerator,
    optimize_persona_variations,
    optimize_storyline,
    sort_content_blocks,
    validate_storyline,
)

K = ComponentKind
R = NarrativeRole


def make_layout(sections, page_type=PageType.landing) -> PageLayout:
    return PageLayout(
        page_id="page-1",
        slug="/landing",
        page_type=page_type,
        metadata=PageMetadata(title="Launch", description="Launch faster"),
        sections=[
            ComponentSelection(
                section_id=f"s{index}",
                component_variant=kind,
                order=index,
                narrative_role=role,
            )
            for index, (kind, role) in enumerate(sections)
        ],
    )


WELL_ORDERED = [
    (K.hero_split, R.hook),
    (K.problem_statement, R.problem),
    (K.features_grid, R.solution),
    (K.testimonials_grid, R.proof),
    (K.stats_section, R.proof),
    (K.cta_banner, R.action),
]


def test_default_flow_is_a_permutation_of_layout_sections():
    layout = make_layout(WELL_ORDERED)
    storyline = StorylineGenerator().generate(StorylineGenerationInput(layout=layout))

    assert sorted(storyline.default_flow) == sorted(layout.section_ids)
    assert len(storyline.default_flow) == len(set(storyline.default_flow))
    assert [block.section_id for block in storyline.content_blocks] == list(storyline.default_flow)
    assert storyline.emotional_journey.arc_type == "urgent"
    assert set(storyline.emotional_journey.section_tones) == set(layout.section_ids)


def test_well_ordered_storyline_is_optimal():
    layout = make_layout(WELL_ORDERED)
    storyline = StorylineGenerator().generate({"layout": layout})
    validation = validate_storyline(storyline, PageType.landing, layout=layout)

    assert validation.is_optimal is True
    assert not [v for v in validation.violations if v.severity == Severity.error]
    assert validation.score >= 90


def test_cta_before_value_and_proof_is_flagged():
    layout = make_layout(
        [
            (K.cta_banner, R.action),
            (K.hero_split, R.hook),
            (K.features_grid, R.solution),
            (K.testimonials_grid, R.proof),
        ]
    )
    storyline = StorylineGenerator().generate({"layout": layout})
    validation = validate_storyline(storyline, PageType.landing, layout=layout)

    errors = {v.rule_id for v in validation.violations if v.severity == Severity.error}
    assert {"cta-after-value", "cta-before-proof", "hook-engagement"} <= errors
    assert validation.is_optimal is False
    assert validation.score < 50
    assert validation.suggestions


def test_validation_grades_without_raising_on_missing_stages():
    layout = make_layout([(K.testimonials_grid, R.proof)])
    storyline = StorylineGenerator().generate({"layout": layout})
    validation = validate_storyline(storyline, PageType.landing, layout=layout)

    rule_ids = [v.rule_id for v in validation.violations]
    assert rule_ids.count("required-stages") == 3
    assert "clear-cta" in rule_ids
    assert 0 <= validation.score <= 100


def test_flow_integrity_detects_tampered_flow():
    layout = make_layout(WELL_ORDERED)
    storyline = StorylineGenerator().generate({"layout": layout})
    tampered = storyline.model_copy(update={"default_flow": list(storyline.default_flow)[:-1]})

    validation = validate_storyline(tampered, PageType.landing, layout=layout)

    assert "flow-integrity" in {v.rule_id for v in validation.violations}


def test_persona_flows_reorder_by_communication_style():
    layout = make_layout(WELL_ORDERED)
    storyline = StorylineGenerator().generate(
        {
            "layout": layout,
            "personas": ["cto", "ceo", "owner"],
            "persona_styles": {"cto": "technical", "ceo": "executive", "owner": "business"},
        }
    )

    technical = storyline.persona_variations["cto"]
    executive = storyline.persona_variations["ceo"]
    business = storyline.persona_variations["owner"]
    assert list(technical.flow) == ["s0", "s2", "s1", "s3", "s4", "s5"]
    assert list(executive.flow) == ["s0", "s3", "s4", "s1", "s2", "s5"]
    assert list(business.flow) == list(storyline.default_flow)
    for variation in (technical, executive, business):
        assert sorted(variation.flow) == sorted(layout.section_ids)
        assert variation.flow[-1] == "s5"
    assert list(executive.emphasis) == ["s3", "s4"]


def test_known_persona_styles_are_used_by_default():
    layout = make_layout(WELL_ORDERED)
    storyline = StorylineGenerator().generate({"layout": layout, "personas": ["developer"]})

    assert list(storyline.persona_variations["developer"].flow)[:2] == ["s0", "s2"]


def test_duplicate_section_ids_are_rejected():
    layout = make_layout(WELL_ORDERED)
    duplicated = layout.model_copy(
        update={"sections": [*layout.sections, layout.sections[0].model_copy(update={"order": 6})]}
    )
    with pytest.raises(InputValidationError):
        StorylineGenerator().generate({"layout": duplicated})


def test_empty_layout_is_rejected():
    with pytest.raises(InputValidationError):
        StorylineGenerator().generate({"layout": make_layout([])})


CTA_FIRST = [
    (K.cta_banner, R.action),
    (K.hero_split, R.hook),
    (K.features_grid, R.solution),
    (K.testimonials_grid, R.proof),
]


def test_auto_fix_returns_blocks_in_stage_order():
    layout = make_layout(CTA_FIRST)
    storyline = StorylineGenerator().generate({"layout": layout})

    graded = validate_storyline(storyline, PageType.landing, layout=layout)
    fixed = validate_storyline(storyline, PageType.landing, layout=layout, auto_fix=True)

    assert graded.optimized_blocks is None
    assert [block.section_id for block in fixed.optimized_blocks] == ["s1", "s2", "s3", "s0"]
    assert [block.section_id for block in sort_content_blocks(storyline.content_blocks, PageType.landing)] == [
        "s1",
        "s2",
        "s3",
        "s0",
    ]


def test_optimize_storyline_repairs_cta_first_flow():
    layout = make_layout(CTA_FIRST)
    storyline = StorylineGenerator().generate({"layout": layout})

    optimized = optimize_storyline(storyline, PageType.landing, layout=layout)
    validation = validate_storyline(optimized, PageType.landing, layout=layout)

    assert list(optimized.default_flow) == ["s1", "s2", "s3", "s0"]
    assert [block.priority for block in optimized.content_blocks] == [1, 2, 3, 4]
    assert [block.section_id for block in optimized.content_blocks] == list(optimized.default_flow)
    assert set(optimized.emotional_journey.section_tones) == set(layout.section_ids)
    assert validation.is_optimal is True
    assert list(storyline.default_flow) == ["s0", "s1", "s2", "s3"]


def test_optimize_keeps_a_well_ordered_flow():
    layout = make_layout(WELL_ORDERED)
    storyline = StorylineGenerator().generate({"layout": layout})

    optimized = StorylineGenerator().optimize(storyline, PageType.landing, layout=layout)

    assert list(optimized.default_flow) == list(storyline.default_flow)


def test_persona_variations_keep_hook_first_and_action_last():
    stages = {"s0": R.action, "s1": R.hook, "s2": R.solution, "s3": R.proof}
    variations = {
        "cto": PersonaFlowVariation(persona_id="cto", flow=["s0", "s3", "s1", "s2"], emphasis=["s2"]),
    }

    optimized = optimize_persona_variations(variations, stages)

    assert list(optimized["cto"].flow) == ["s1", "s3", "s2", "s0"]
    assert list(optimized["cto"].emphasis) == ["s2"]
    assert list(variations["cto"].flow) == ["s0", "s3", "s1", "s2"]
