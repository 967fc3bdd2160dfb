from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from adaptive_page_engine.errors import PageEngineError
from adaptive_page_engine.firestore_store import FirestoreJobStore, FirestoreSnapshotStore
from adaptive_page_engine.job_store import JobStore
from adaptive_page_engine.knowledge import LocalKnowledgeSource
from adaptive_page_engine.logging_config import set_trace_id, setup_logging
from adaptive_page_engine.models.job import GenerationStage, JobOutputs, JobStatus
from adaptive_page_engine.models.page import PageGenerationRequest
from adaptive_page_engine.pipeline import create_pipeline
from adaptive_page_engine.pubsub_client import PubSubClient
from adaptive_page_engine.snapshot_store import InMemorySnapshotStore

# Environment configuration
ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")
PROJECT_ID = os.getenv("PROJECT_ID")
VERTEX_LOCATION = os.getenv("VERTEX_LOCATION", "us-central1")
VERTEX_MODEL = os.getenv("VERTEX_MODEL", "gemini-1.5-pro")
ORACLE_TIMEOUT_SECONDS = float(os.getenv("ORACLE_TIMEOUT_SECONDS", "30"))
KNOWLEDGE_DIR = os.getenv("KNOWLEDGE_DIR", "data/knowledge")
PUBSUB_TOPIC_PAGE_GENERATED = os.getenv("PUBSUB_TOPIC_PAGE_GENERATED", "page-generated")

setup_logging(environment=ENVIRONMENT, project_id=PROJECT_ID)
logger = logging.getLogger(__name__)

if ENVIRONMENT == "dev":
    job_store = JobStore()
    snapshot_store = InMemorySnapshotStore()
else:
    job_store = FirestoreJobStore(project_id=PROJECT_ID)
    snapshot_store = FirestoreSnapshotStore(project_id=PROJECT_ID)

pubsub_client = (
    PubSubClient(project_id=PROJECT_ID, generated_topic=PUBSUB_TOPIC_PAGE_GENERATED)
    if PROJECT_ID and ENVIRONMENT != "dev"
    else None
)

if PROJECT_ID and ENVIRONMENT != "dev":
    from adaptive_page_engine.vertex_ai_adapter import VertexAIAdapter, VertexAIOracle

    oracle = VertexAIOracle(
        adapter=VertexAIAdapter(
            project_id=PROJECT_ID,
            location=VERTEX_LOCATION,
            model_name=VERTEX_MODEL,
            timeout_seconds=ORACLE_TIMEOUT_SECONDS,
        )
    )
else:
    oracle = None

pipeline = create_pipeline(
    oracle=oracle,
    knowledge=LocalKnowledgeSource(base_path=Path(KNOWLEDGE_DIR).resolve()),
    snapshot_store=snapshot_store,
)

app = FastAPI(title="Adaptive Page Engine Worker", version="0.1.0")


class PubSubMessage(BaseModel):
    """Pub/Sub push message format."""

    message: dict[str, Any]
    subscription: str


@app.post("/v1/worker/process")
async def process_generation_request(request: Request) -> JSONResponse:
    """Process a page generation request pushed by Pub/Sub."""
    trace_id = str(uuid.uuid4())
    set_trace_id(trace_id)

    body = await request.json()
    try:
        pubsub_message = PubSubMessage.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid Pub/Sub envelope: {exc}")

    message_data = pubsub_message.message.get("data", "")
    if not message_data:
        raise HTTPException(status_code=400, detail="No message data")
    payload = json.loads(base64.b64decode(message_data).decode("utf-8"))

    job_id = payload.get("job_id")
    if not job_id or not isinstance(payload.get("request"), dict):
        raise HTTPException(status_code=400, detail="Missing required fields: job_id, request")

    try:
        generation_request = PageGenerationRequest.model_validate(payload["request"])
    except ValidationError as exc:
        # Redelivery cannot fix a malformed request; acknowledge and fail the job.
        job_store.update_job(
            job_id, status=JobStatus.failed, stage=GenerationStage.failed, errors=[str(exc)]
        )
        return JSONResponse({"status": "rejected", "job_id": job_id})

    logger.info(
        "Processing page generation request",
        extra={
            "job_id": job_id,
            "workspace_id": generation_request.workspace_id,
            "page_type": generation_request.page_type.value,
            "trace_id": trace_id,
        },
    )

    try:
        await _process_job(job_id, generation_request)
    except PageEngineError as exc:
        return JSONResponse({"status": "failed", "job_id": job_id, "error": str(exc)})
    except Exception as exc:
        logger.error(
            "Failed to process page generation request",
            exc_info=True,
            extra={"trace_id": trace_id, "error": str(exc)},
        )
        raise HTTPException(status_code=500, detail=str(exc))

    return JSONResponse({"status": "success", "job_id": job_id})


async def _process_job(job_id: str, request: PageGenerationRequest) -> None:
    """Run the pipeline for one job and publish the result.

    Args:
        job_id: Job ID
        request: Validated page generation request
    """
    job_store.update_job(job_id, status=JobStatus.in_progress, stage=GenerationStage.pending)

    def on_progress(stage: GenerationStage) -> None:
        job_store.update_job(job_id, stage=stage)

    try:
        result = await asyncio.to_thread(pipeline.generate, request, on_progress=on_progress)
    except Exception as exc:
        logger.error(
            "Page generation failed",
            exc_info=True,
            extra={"job_id": job_id, "error": str(exc)},
        )
        job_store.update_job(
            job_id, status=JobStatus.failed, stage=GenerationStage.failed, errors=[str(exc)]
        )
        raise

    structure = result.structure
    outputs = JobOutputs(
        page_id=structure.page_id,
        snapshot_version=result.snapshot_version,
        sections_count=len(structure.sections),
        overall_confidence=result.overall_confidence,
        storyline_score=result.validation.score,
        stats=structure.generation_stats.model_dump(),
    )
    job_store.update_job(
        job_id, status=JobStatus.completed, stage=GenerationStage.complete, outputs=outputs
    )

    if pubsub_client is not None:
        pubsub_client.publish_page_generated(
            job_id=job_id,
            page_id=structure.page_id,
            version=result.snapshot_version,
            outputs=outputs.model_dump(mode="json"),
        )

    logger.info("Page generation completed", extra={"job_id": job_id, "page_id": structure.page_id})


@app.get("/health")
async def healthcheck() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({"status": "ok"})
