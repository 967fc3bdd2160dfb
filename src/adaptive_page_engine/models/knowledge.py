from __future__ import annotations

from typing import Any, Literal, Mapping, Sequence

from pydantic import BaseModel, Field

CommunicationStyle = Literal["technical", "business", "executive"]


class KnowledgeExcerpt(BaseModel):
    """A grounded fact or entity pulled from the knowledge base."""

    id: str
    entity_type: str = Field(description="feature, testimonial, statistic, faq, pricing, ...")
    text: str
    metadata: Mapping[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)

    def label(self) -> str:
        name = self.metadata.get("name") or self.metadata.get("title")
        return str(name) if name else self.text[:80]


class PersonaDefinition(BaseModel):
    id: str
    label: str
    description: str | None = None
    keywords: Sequence[str] = Field(default_factory=list)
    priority: int = 0
    communication_style: CommunicationStyle = "business"
    goals: Sequence[str] = Field(default_factory=list)
    pain_points: Sequence[str] = Field(default_factory=list)


__all__ = ["KnowledgeExcerpt", "PersonaDefinition", "CommunicationStyle"]
