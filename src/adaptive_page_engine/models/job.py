from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Sequence

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    queued = "QUEUED"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"
    failed = "FAILED"


class GenerationStage(str, Enum):
    pending = "pending"
    layout = "layout"
    storyline = "storyline"
    content = "content"
    assembling = "assembling"
    saving = "saving"
    complete = "complete"
    failed = "failed"


STAGE_PROGRESS: Mapping[GenerationStage, float] = {
    GenerationStage.pending: 0.0,
    GenerationStage.layout: 0.1,
    GenerationStage.storyline: 0.3,
    GenerationStage.content: 0.5,
    GenerationStage.assembling: 0.8,
    GenerationStage.saving: 0.9,
    GenerationStage.complete: 1.0,
    GenerationStage.failed: 1.0,
}


class JobOutputs(BaseModel):
    page_id: str | None = None
    snapshot_version: int | None = None
    sections_count: int | None = None
    overall_confidence: float | None = None
    storyline_score: int | None = None
    stats: Mapping[str, Any] | None = None


class GenerationJob(BaseModel):
    id: str
    status: JobStatus
    stage: GenerationStage = GenerationStage.pending
    progress: float = 0.0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    workspace_id: str | None = None
    page_type: str | None = None
    errors: Sequence[str] = Field(default_factory=list)
    outputs: JobOutputs = Field(default_factory=JobOutputs)


__all__ = ["GenerationJob", "GenerationStage", "JobStatus", "JobOutputs", "STAGE_PROGRESS"]
