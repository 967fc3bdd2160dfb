from __future__ import annotations

import threading
import uuid
from datetime import datetime
from typing import Dict, Protocol, Sequence

from .models.job import STAGE_PROGRESS, GenerationJob, GenerationStage, JobOutputs, JobStatus


class GenerationJobStore(Protocol):
    def create_job(self, *, workspace_id: str, page_type: str) -> GenerationJob:
        ...

    def get_job(self, job_id: str) -> GenerationJob | None:
        ...

    def update_job(
        self,
        job_id: str,
        *,
        status: JobStatus | None = None,
        stage: GenerationStage | None = None,
        progress: float | None = None,
        outputs: JobOutputs | None = None,
        errors: Sequence[str] | None = None,
    ) -> GenerationJob:
        ...


def generate_job_id(workspace_id: str | None, suffix: str | None = None) -> str:
    suffix = suffix or uuid.uuid4().hex[:6]
    if workspace_id:
        safe = workspace_id.replace("/", "-")
        return f"job_{safe}_{suffix}"
    ts = datetime.utcnow().strftime("%Y%m%d%H%M%S")
    return f"job_{ts}_{suffix}"


def resolve_progress(stage: GenerationStage | None, progress: float | None) -> float | None:
    if progress is not None:
        return progress
    if stage is not None:
        return STAGE_PROGRESS[stage]
    return None


class JobStore:
    def __init__(self) -> None:
        self._jobs: Dict[str, GenerationJob] = {}
        self._lock = threading.Lock()

    def create_job(self, *, workspace_id: str, page_type: str) -> GenerationJob:
        with self._lock:
            job_id = generate_job_id(workspace_id)
            job = GenerationJob(
                id=job_id,
                status=JobStatus.queued,
                workspace_id=workspace_id,
                page_type=page_type,
            )
            self._jobs[job_id] = job
            return job.model_copy(deep=True)

    def get_job(self, job_id: str) -> GenerationJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def update_job(
        self,
        job_id: str,
        *,
        status: JobStatus | None = None,
        stage: GenerationStage | None = None,
        progress: float | None = None,
        outputs: JobOutputs | None = None,
        errors: Sequence[str] | None = None,
    ) -> GenerationJob:
        with self._lock:
            job = self._jobs[job_id]
            if status is not None:
                job.status = status
            if stage is not None:
                job.stage = stage
            progress = resolve_progress(stage, progress)
            if progress is not None:
                job.progress = progress
            if outputs is not None:
                job.outputs = outputs
            if errors is not None:
                job.errors = list(errors)
            job.updated_at = datetime.utcnow()
            return job.model_copy(deep=True)


__all__ = ["GenerationJobStore", "JobStore", "generate_job_id", "resolve_progress"]
