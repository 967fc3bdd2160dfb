from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from adaptive_page_engine.detection import DetectionService, KeywordPersonaDetector
from adaptive_page_engine.errors import InputValidationError, PageEngineError
from adaptive_page_engine.firestore_store import FirestoreJobStore, FirestoreSnapshotStore
from adaptive_page_engine.job_store import JobStore
from adaptive_page_engine.knowledge import LocalKnowledgeSource
from adaptive_page_engine.logging_config import setup_logging
from adaptive_page_engine.models.job import GenerationJob, GenerationStage, JobOutputs, JobStatus
from adaptive_page_engine.models.page import PageGenerationRequest, ResolvedRenderSection
from adaptive_page_engine.models.tracking import TrackingBatch, TrackingBatchResult
from adaptive_page_engine.pipeline import PipelineResult, create_pipeline
from adaptive_page_engine.pubsub_client import PubSubClient
from adaptive_page_engine.render_data import extract_render_data, get_render_data_for_persona
from adaptive_page_engine.snapshot_store import InMemorySnapshotStore
from adaptive_page_engine.tracking import InMemoryVisitorSessionStore, TrackingIngestor


class GeneratePageResponse(BaseModel):
    job_id: str
    status: JobStatus


class JobResponse(BaseModel):
    id: str
    status: JobStatus
    stage: GenerationStage
    progress: float
    outputs: JobOutputs
    errors: list[str]

    @staticmethod
    def from_record(record: GenerationJob) -> "JobResponse":
        return JobResponse(
            id=record.id,
            status=record.status,
            stage=record.stage,
            progress=record.progress,
            outputs=record.outputs,
            errors=list(record.errors),
        )


class RenderDataResponse(BaseModel):
    page_id: str
    persona: str | None
    available_personas: list[str]
    sections: list[ResolvedRenderSection]
    render_data: dict[str, Any]


# Environment configuration
ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")
PROJECT_ID = os.getenv("PROJECT_ID")
VERTEX_LOCATION = os.getenv("VERTEX_LOCATION", "us-central1")
VERTEX_MODEL = os.getenv("VERTEX_MODEL", "gemini-1.5-pro")
ORACLE_TIMEOUT_SECONDS = float(os.getenv("ORACLE_TIMEOUT_SECONDS", "30"))
KNOWLEDGE_DIR = os.getenv("KNOWLEDGE_DIR", "data/knowledge")
PUBSUB_TOPIC_GENERATION_REQUESTS = os.getenv("PUBSUB_TOPIC_GENERATION_REQUESTS", "page-generation-requests")
PUBSUB_TOPIC_PAGE_GENERATED = os.getenv("PUBSUB_TOPIC_PAGE_GENERATED", "page-generated")

setup_logging(environment=ENVIRONMENT, project_id=PROJECT_ID)
logger = logging.getLogger(__name__)

app = FastAPI(title="Adaptive Page Engine API", version="0.1.0")

# Use Firestore in production, in-memory for dev
if ENVIRONMENT == "dev":
    job_store = JobStore()
    snapshot_store = InMemorySnapshotStore()
else:
    job_store = FirestoreJobStore(project_id=PROJECT_ID)
    snapshot_store = FirestoreSnapshotStore(project_id=PROJECT_ID)

pubsub_client = (
    PubSubClient(
        project_id=PROJECT_ID,
        generation_topic=PUBSUB_TOPIC_GENERATION_REQUESTS,
        generated_topic=PUBSUB_TOPIC_PAGE_GENERATED,
    )
    if PROJECT_ID and ENVIRONMENT != "dev"
    else None
)

knowledge = LocalKnowledgeSource(base_path=Path(KNOWLEDGE_DIR).resolve())

if PROJECT_ID and ENVIRONMENT != "dev":
    from adaptive_page_engine.vertex_ai_adapter import VertexAIAdapter, VertexAIOracle, VertexPersonaDetector

    vertex_adapter = VertexAIAdapter(
        project_id=PROJECT_ID,
        location=VERTEX_LOCATION,
        model_name=VERTEX_MODEL,
        timeout_seconds=ORACLE_TIMEOUT_SECONDS,
    )
    oracle = VertexAIOracle(adapter=vertex_adapter)
    persona_detector = VertexPersonaDetector(adapter=vertex_adapter)
else:
    oracle = None
    persona_detector = KeywordPersonaDetector()

pipeline = create_pipeline(oracle=oracle, knowledge=knowledge, snapshot_store=snapshot_store)
tracking_ingestor = TrackingIngestor(
    sessions=InMemoryVisitorSessionStore(),
    detection=DetectionService(detector=persona_detector),
)


@app.post("/v1/pages:generate", response_model=GeneratePageResponse)
async def generate_page(request: PageGenerationRequest, background_tasks: BackgroundTasks) -> GeneratePageResponse:
    job = job_store.create_job(workspace_id=request.workspace_id, page_type=request.page_type.value)

    # In production, publish to Pub/Sub; in dev, use background task
    if pubsub_client and ENVIRONMENT != "dev":
        pubsub_client.publish_generation_request(job_id=job.id, request=request.model_dump(mode="json"))
    else:
        background_tasks.add_task(_run_job, job.id, request)

    return GeneratePageResponse(job_id=job.id, status=job.status)


@app.get("/v1/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str) -> JobResponse:
    record = job_store.get_job(job_id)
    if not record:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.from_record(record)


@app.get("/v1/pages/{page_id}/render-data", response_model=RenderDataResponse)
async def get_render_data(page_id: str, persona: str | None = None) -> RenderDataResponse:
    structure = snapshot_store.get(page_id)
    if structure is None:
        raise HTTPException(status_code=404, detail="Page not found")
    render_data = extract_render_data(structure)
    return RenderDataResponse(
        page_id=page_id,
        persona=persona,
        available_personas=list(render_data.available_personas),
        sections=get_render_data_for_persona(render_data, persona),
        render_data=render_data.model_dump(mode="json"),
    )


@app.post("/v1/tracking/events", response_model=TrackingBatchResult)
async def ingest_tracking_events(batch: TrackingBatch) -> TrackingBatchResult:
    try:
        return tracking_ingestor.ingest(batch)
    except InputValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


def job_outputs(result: PipelineResult) -> JobOutputs:
    structure = result.structure
    return JobOutputs(
        page_id=structure.page_id,
        snapshot_version=result.snapshot_version,
        sections_count=len(structure.sections),
        overall_confidence=result.overall_confidence,
        storyline_score=result.validation.score,
        stats=structure.generation_stats.model_dump(),
    )


async def _run_job(job_id: str, request: PageGenerationRequest) -> None:
    job_store.update_job(job_id, status=JobStatus.in_progress, stage=GenerationStage.pending)

    def on_progress(stage: GenerationStage) -> None:
        job_store.update_job(job_id, stage=stage)

    try:
        result = await asyncio.to_thread(pipeline.generate, request, on_progress=on_progress)
    except PageEngineError as exc:
        logger.warning("Page generation failed", extra={"job_id": job_id, "error": str(exc)})
        job_store.update_job(job_id, status=JobStatus.failed, stage=GenerationStage.failed, errors=[str(exc)])
        return
    except Exception as exc:  # pragma: no cover - safety net
        logger.error("Page generation crashed", exc_info=True, extra={"job_id": job_id})
        job_store.update_job(job_id, status=JobStatus.failed, stage=GenerationStage.failed, errors=[str(exc)])
        return

    job_store.update_job(
        job_id,
        status=JobStatus.completed,
        stage=GenerationStage.complete,
        outputs=job_outputs(result),
    )


@app.get("/health")
async def healthcheck() -> JSONResponse:
    return JSONResponse({"status": "ok"})
