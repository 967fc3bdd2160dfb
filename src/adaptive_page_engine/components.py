from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence

from .errors import InputValidationError
from .models.layout import ComponentKind, NarrativeRole, PageType
from .models.page import AnimationPreset


@dataclass(frozen=True)
class ComponentDefinition:
    kind: ComponentKind
    label: str
    category: str
    narrative_role: NarrativeRole
    required_fields: Sequence[str]
    optional_fields: Sequence[str] = ()
    use_cases: Sequence[str] = ()
    source_entity_types: Sequence[str] = ()
    animation: AnimationPreset = "fadeIn"

    @property
    def complexity(self) -> int:
        return len(self.required_fields)

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(self.required_fields) + tuple(self.optional_fields)


def _define(
    kind: ComponentKind,
    label: str,
    category: str,
    role: NarrativeRole,
    required: Sequence[str],
    optional: Sequence[str] = (),
    *,
    use_cases: Sequence[str] = (),
    sources: Sequence[str] = (),
    animation: AnimationPreset = "fadeIn",
) -> ComponentDefinition:
    return ComponentDefinition(
        kind=kind,
        label=label,
        category=category,
        narrative_role=role,
        required_fields=tuple(required),
        optional_fields=tuple(optional),
        use_cases=tuple(use_cases),
        source_entity_types=tuple(sources),
        animation=animation,
    )


K = ComponentKind
R = NarrativeRole

COMPONENT_REGISTRY: Mapping[ComponentKind, ComponentDefinition] = {
    definition.kind: definition
    for definition in (
        _define(K.hero_split, "Split Hero", "hero", R.hook,
                ("headline", "subheadline", "primary_cta"), ("secondary_cta", "description"),
                use_cases=("saas", "product", "launch", "visual"),
                sources=("tagline", "headline", "company"), animation="slideUp"),
        _define(K.hero_centered, "Centered Hero", "hero", R.hook,
                ("headline", "primary_cta"), ("subheadline", "description"),
                use_cases=("campaign", "landing", "simple", "conversion"),
                sources=("tagline", "headline"), animation="fadeIn"),
        _define(K.hero_product, "Product Hero", "hero", R.hook,
                ("headline", "subheadline", "features"), ("primary_cta",),
                use_cases=("product", "ecommerce", "showcase"),
                sources=("tagline", "feature"), animation="scaleIn"),
        _define(K.hero_minimal, "Minimal Hero", "hero", R.hook,
                ("headline",), ("subheadline",),
                use_cases=("about", "blog", "careers", "minimal"),
                sources=("tagline", "company"), animation="fadeIn"),
        _define(K.hero_stats, "Stats Hero", "hero", R.proof,
                ("headline", "statistics"), ("subheadline", "primary_cta"),
                use_cases=("metrics", "results", "growth", "enterprise"),
                sources=("statistic", "metric"), animation="slideUp"),
        _define(K.problem_statement, "Problem Statement", "content", R.problem,
                ("section_title", "bullets"), ("section_description",),
                use_cases=("pain", "challenge", "problem", "cost"),
                sources=("pain_point", "challenge"), animation="fadeIn"),
        _define(K.features_grid, "Features Grid", "features", R.solution,
                ("section_title", "features"), ("section_description",),
                use_cases=("features", "capabilities", "overview", "saas"),
                sources=("feature", "capability"), animation="slideUp"),
        _define(K.features_alternating, "Alternating Features", "features", R.solution,
                ("section_title", "features", "description"), (),
                use_cases=("storytelling", "benefits", "detail"),
                sources=("feature", "benefit"), animation="slideInLeft"),
        _define(K.features_tabs, "Tabbed Features", "features", R.solution,
                ("section_title", "features"), ("section_description",),
                use_cases=("technical", "api", "integration", "developer"),
                sources=("feature", "integration"), animation="fadeIn"),
        _define(K.features_comparison, "Comparison Table", "features", R.solution,
                ("section_title", "features", "bullets"), (),
                use_cases=("comparison", "versus", "alternative", "migration"),
                sources=("feature", "competitor"), animation="fadeIn"),
        _define(K.content_steps, "Process Steps", "content", R.solution,
                ("section_title", "bullets"), ("section_description",),
                use_cases=("onboarding", "process", "how", "getting started"),
                sources=("process", "step"), animation="slideUp"),
        _define(K.content_rich_text, "Rich Text", "content", R.solution,
                ("headline", "description"), (),
                use_cases=("story", "mission", "legal", "about"),
                sources=("company", "about"), animation="none"),
        _define(K.content_columns, "Content Columns", "content", R.solution,
                ("section_title", "features"), (),
                use_cases=("culture", "values", "resources", "overview"),
                sources=("value", "feature"), animation="fadeIn"),
        _define(K.content_faq, "FAQ", "content", R.proof,
                ("section_title", "faqs"), ("section_description",),
                use_cases=("objection", "questions", "support", "pricing"),
                sources=("faq",), animation="fadeIn"),
        _define(K.testimonials_carousel, "Testimonial Carousel", "social-proof", R.proof,
                ("section_title", "testimonials"), (),
                use_cases=("trust", "customers", "reviews", "social proof"),
                sources=("testimonial",), animation="slideInRight"),
        _define(K.testimonials_grid, "Testimonial Grid", "social-proof", R.proof,
                ("section_title", "testimonials", "section_description"), (),
                use_cases=("trust", "customers", "community"),
                sources=("testimonial",), animation="fadeIn"),
        _define(K.logo_cloud, "Logo Cloud", "social-proof", R.proof,
                ("section_title", "bullets"), (),
                use_cases=("enterprise", "customers", "brands", "trust"),
                sources=("customer", "partner"), animation="fadeIn"),
        _define(K.stats_section, "Stats Section", "social-proof", R.proof,
                ("section_title", "statistics"), (),
                use_cases=("metrics", "results", "roi", "numbers"),
                sources=("statistic", "metric"), animation="scaleIn"),
        _define(K.case_studies, "Case Studies", "social-proof", R.proof,
                ("section_title", "features", "statistics"), ("testimonials",),
                use_cases=("enterprise", "results", "roi", "industry"),
                sources=("case_study", "statistic"), animation="slideUp"),
        _define(K.pricing_cards, "Pricing Cards", "pricing", R.action,
                ("section_title", "pricing_tiers"), ("section_description",),
                use_cases=("pricing", "plans", "cost", "subscription"),
                sources=("pricing", "plan"), animation="slideUp"),
        _define(K.pricing_table, "Pricing Table", "pricing", R.action,
                ("section_title", "pricing_tiers", "features"), (),
                use_cases=("pricing", "comparison", "enterprise", "plans"),
                sources=("pricing", "plan", "feature"), animation="fadeIn"),
        _define(K.cta_banner, "CTA Banner", "cta", R.action,
                ("headline", "primary_cta"), ("description", "secondary_cta"),
                use_cases=("conversion", "signup", "trial", "growth"),
                sources=("offer",), animation="scaleIn"),
        _define(K.cta_demo, "Demo CTA", "cta", R.action,
                ("headline", "primary_cta"), ("description",),
                use_cases=("demo", "enterprise", "sales", "b2b"),
                sources=("offer",), animation="slideUp"),
        _define(K.cta_inline, "Inline CTA", "cta", R.action,
                ("description", "primary_cta"), (),
                use_cases=("conversion", "simple", "signup"),
                sources=("offer",), animation="fadeIn"),
        _define(K.form_contact, "Contact Form", "forms", R.action,
                ("headline", "description", "primary_cta"), (),
                use_cases=("contact", "support", "inquiry", "sales"),
                sources=("contact",), animation="fadeIn"),
        _define(K.form_demo_request, "Demo Request Form", "forms", R.action,
                ("headline", "description", "bullets", "primary_cta"), (),
                use_cases=("demo", "enterprise", "lead", "b2b"),
                sources=("offer", "contact"), animation="slideUp"),
    )
}

_missing = set(ComponentKind) - set(COMPONENT_REGISTRY)
if _missing:  # pragma: no cover - import-time guard
    raise RuntimeError(f"component registry incomplete: {sorted(k.value for k in _missing)}")


def get_component(kind: ComponentKind | str) -> ComponentDefinition:
    """Resolve a component id to its definition; unknown ids are rejected."""
    try:
        resolved = kind if isinstance(kind, ComponentKind) else ComponentKind(kind)
    except ValueError as exc:
        raise InputValidationError(f"Unknown component id: {kind!r}") from exc
    return COMPONENT_REGISTRY[resolved]


def components_for_role(role: NarrativeRole) -> list[ComponentDefinition]:
    return [d for d in COMPONENT_REGISTRY.values() if d.narrative_role == role]


@dataclass(frozen=True)
class PageTypeConfig:
    page_type: PageType
    name: str
    description: str
    required_roles: Sequence[NarrativeRole]
    recommended_components: Sequence[ComponentKind]
    min_sections: int
    max_sections: int
    role_limits: Mapping[NarrativeRole, int] = field(default_factory=dict)


_DEFAULT_LIMITS: Mapping[NarrativeRole, int] = {
    R.hook: 1,
    R.problem: 2,
    R.solution: 3,
    R.proof: 3,
    R.action: 2,
}


def _page(
    page_type: PageType,
    name: str,
    description: str,
    roles: Sequence[NarrativeRole],
    recommended: Sequence[ComponentKind],
    min_sections: int,
    max_sections: int,
    **limits: int,
) -> PageTypeConfig:
    role_limits = dict(_DEFAULT_LIMITS)
    role_limits.update({NarrativeRole(role): value for role, value in limits.items()})
    return PageTypeConfig(
        page_type=page_type,
        name=name,
        description=description,
        required_roles=tuple(roles),
        recommended_components=tuple(recommended),
        min_sections=min_sections,
        max_sections=max_sections,
        role_limits=role_limits,
    )


P = PageType

PAGE_TYPE_CONFIGS: Mapping[PageType, PageTypeConfig] = {
    P.home: _page(P.home, "Homepage", "Main page with the full storytelling flow",
                  (R.hook, R.solution, R.proof, R.action),
                  (K.hero_split, K.features_grid, K.testimonials_carousel, K.cta_banner), 5, 10),
    P.landing: _page(P.landing, "Landing Page", "Focused conversion page for campaigns",
                     (R.hook, R.solution, R.action),
                     (K.hero_centered, K.features_alternating, K.form_demo_request), 4, 8,
                     action=3),
    P.product: _page(P.product, "Product Page", "Detailed product showcase",
                     (R.hook, R.solution, R.proof),
                     (K.hero_product, K.features_tabs, K.pricing_cards, K.testimonials_grid),
                     5, 12, solution=4),
    P.pricing: _page(P.pricing, "Pricing Page", "Pricing plans and comparison",
                     (R.solution, R.action),
                     (K.pricing_cards, K.content_faq, K.cta_inline), 3, 6),
    P.about: _page(P.about, "About Page", "Company story and team",
                   (R.hook, R.proof),
                   (K.hero_minimal, K.content_rich_text, K.stats_section), 4, 8),
    P.contact: _page(P.contact, "Contact Page", "Contact information and form",
                     (R.action,), (K.form_contact, K.content_columns), 2, 4),
    P.features: _page(P.features, "Features Page", "Complete feature overview",
                      (R.hook, R.solution),
                      (K.hero_centered, K.features_grid, K.features_comparison), 4, 10,
                      solution=4),
    P.solutions: _page(P.solutions, "Solutions Page", "Industry or use-case solutions",
                       (R.problem, R.solution, R.proof),
                       (K.hero_centered, K.features_grid, K.case_studies, K.cta_demo), 5, 10),
    P.careers: _page(P.careers, "Careers Page", "Job listings and company culture",
                     (R.hook, R.solution),
                     (K.hero_centered, K.content_columns, K.testimonials_grid), 4, 8),
    P.custom: _page(P.custom, "Custom Page", "Fully customizable page",
                    (), (), 1, 20, hook=2, problem=4, solution=8, proof=6, action=4),
}


__all__ = [
    "ComponentDefinition",
    "COMPONENT_REGISTRY",
    "get_component",
    "components_for_role",
    "PageTypeConfig",
    "PAGE_TYPE_CONFIGS",
]
