from __future__ import annotations

from .models.layout import NarrativeRole
from .models.page import PageContentStructure, ResolvedRenderSection, RuntimePageData, RuntimeSection


def extract_render_data(structure: PageContentStructure) -> RuntimePageData:
    """Flatten a page structure into render data.

    Pure: the same structure always yields an equal, identically serialised result.
    """
    sections = []
    personas: set[str] = set()
    for section in sorted(structure.sections, key=lambda s: (s.order, s.section_id)):
        variants = {
            persona_id: section.persona_variations[persona_id].content
            for persona_id in sorted(section.persona_variations)
        }
        personas.update(variants)
        sections.append(
            RuntimeSection(
                section_id=section.section_id,
                component_id=section.component_id,
                order=section.order,
                narrative_role=section.narrative_role,
                default_content=section.content,
                persona_variants=variants,
            )
        )

    flows: dict[str, list[str]] = {}
    if structure.storyline is not None:
        for persona_id in sorted(structure.storyline.persona_variations):
            flows[persona_id] = list(structure.storyline.persona_variations[persona_id].flow)

    return RuntimePageData(
        page_id=structure.page_id,
        sections=sections,
        metadata=structure.page_metadata,
        available_personas=sorted(personas),
        persona_flows=flows,
        brand_config=structure.brand_config,
        animation_config=structure.animation_config,
    )


def get_render_data_for_persona(
    render_data: RuntimePageData, persona_id: str | None
) -> list[ResolvedRenderSection]:
    """Resolve every section's content for one persona.

    Sections without a variant for ``persona_id`` (or any unknown persona) use
    their default content. Sections follow the persona's flow when one exists and
    ``order`` is renumbered to the render position; ``layout_order`` keeps the
    position in the persisted layout.
    """
    sections = list(render_data.sections)
    flow = render_data.persona_flows.get(persona_id) if persona_id else None
    if flow:
        rank = {section_id: index for index, section_id in enumerate(flow)}
        sections.sort(key=lambda s: (rank.get(s.section_id, len(rank)), s.order))

    resolved = []
    for position, section in enumerate(sections):
        variant = section.persona_variants.get(persona_id) if persona_id else None
        resolved.append(
            ResolvedRenderSection(
                section_id=section.section_id,
                component_id=section.component_id,
                order=position,
                layout_order=section.order,
                narrative_role=section.narrative_role,
                content=variant if variant is not None else section.default_content,
                personalized=variant is not None,
            )
        )
    return resolved


def validate_render_data(render_data: RuntimePageData) -> list[str]:
    warnings: list[str] = []
    if not render_data.sections:
        warnings.append("Render data has no sections")
        return warnings
    roles = {section.narrative_role for section in render_data.sections}
    if NarrativeRole.hook not in roles:
        warnings.append("Render data has no hook section")
    if NarrativeRole.action not in roles:
        warnings.append("Render data has no call-to-action section")
    for section in render_data.sections:
        if section.default_content.is_empty():
            warnings.append(f"Section {section.section_id} has empty default content")
    orders = [section.order for section in render_data.sections]
    if orders != list(range(len(orders))):
        warnings.append("Section order is not contiguous")
    return warnings


__all__ = ["extract_render_data", "get_render_data_for_persona", "validate_render_data"]
