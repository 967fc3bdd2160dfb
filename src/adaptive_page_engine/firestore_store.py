from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from .job_store import generate_job_id, resolve_progress
from .models.job import GenerationJob, GenerationStage, JobOutputs, JobStatus
from .models.page import PageContentStructure

logger = logging.getLogger(__name__)


class FirestoreJobStore:
    """Firestore-backed job store for production use."""

    COLLECTION_NAME = "generation_jobs"

    def __init__(self, project_id: str | None = None, *, client: firestore.Client | None = None) -> None:
        self._db = client or firestore.Client(project=project_id)
        self._collection = self._db.collection(self.COLLECTION_NAME)

    def create_job(self, *, workspace_id: str, page_type: str) -> GenerationJob:
        """Create a new job record in Firestore."""
        job_id = generate_job_id(workspace_id, self._collection.document().id[:6])
        now = datetime.utcnow()
        job = GenerationJob(
            id=job_id,
            status=JobStatus.queued,
            workspace_id=workspace_id,
            page_type=page_type,
            created_at=now,
            updated_at=now,
        )
        self._collection.document(job_id).set(self._to_firestore_dict(job))
        logger.info(
            "Created job",
            extra={"job_id": job_id, "workspace_id": workspace_id, "page_type": page_type},
        )
        return job

    def get_job(self, job_id: str) -> GenerationJob | None:
        doc = self._collection.document(job_id).get()
        if not doc.exists:
            return None
        return self._from_firestore_dict(doc.id, doc.to_dict())

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
        """Update job fields in Firestore."""
        doc_ref = self._collection.document(job_id)
        update_data: dict = {"updated_at": datetime.utcnow()}
        if status is not None:
            update_data["status"] = status.value
        if stage is not None:
            update_data["stage"] = stage.value
        progress = resolve_progress(stage, progress)
        if progress is not None:
            update_data["progress"] = progress
        if outputs is not None:
            update_data["outputs"] = outputs.model_dump(mode="json")
        if errors is not None:
            update_data["errors"] = list(errors)

        doc_ref.update(update_data)
        logger.info(
            "Updated job",
            extra={
                "job_id": job_id,
                "status": status.value if status else None,
                "stage": stage.value if stage else None,
                "progress": progress,
            },
        )
        updated_doc = doc_ref.get()
        return self._from_firestore_dict(updated_doc.id, updated_doc.to_dict())

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        workspace_id: str | None = None,
        limit: int = 100,
    ) -> list[GenerationJob]:
        query = self._collection
        if status is not None:
            query = query.where(filter=FieldFilter("status", "==", status.value))
        if workspace_id is not None:
            query = query.where(filter=FieldFilter("workspace_id", "==", workspace_id))
        query = query.order_by("created_at", direction=firestore.Query.DESCENDING).limit(limit)
        return [self._from_firestore_dict(doc.id, doc.to_dict()) for doc in query.stream()]

    def _to_firestore_dict(self, job: GenerationJob) -> dict:
        data = job.model_dump(mode="json", exclude={"id", "created_at", "updated_at"})
        data["created_at"] = job.created_at
        data["updated_at"] = job.updated_at
        return data

    def _from_firestore_dict(self, job_id: str, data: dict) -> GenerationJob:
        return GenerationJob.model_validate({**data, "id": job_id})


class FirestoreSnapshotStore:
    """Versioned page snapshots in Firestore.

    ``pages/{page_id}`` holds the version counter and
    ``pages/{page_id}/versions/{n}`` holds each structure. Both are written in
    one transaction.
    """

    COLLECTION_NAME = "pages"

    def __init__(self, project_id: str | None = None, *, client: firestore.Client | None = None) -> None:
        self._db = client or firestore.Client(project=project_id)
        self._collection = self._db.collection(self.COLLECTION_NAME)

    def commit(self, page_id: str, structure: PageContentStructure) -> int:
        payload = structure.model_dump(mode="json")
        page_ref = self._collection.document(page_id)

        @firestore.transactional
        def _commit(transaction: firestore.Transaction) -> int:
            snapshot = page_ref.get(transaction=transaction)
            current = snapshot.get("current_version") if snapshot.exists else 0
            version = int(current or 0) + 1
            now = datetime.utcnow()
            transaction.set(
                page_ref.collection("versions").document(str(version)),
                {"version": version, "structure": payload, "created_at": now},
            )
            transaction.set(
                page_ref,
                {"current_version": version, "page_type": structure.page_type.value, "updated_at": now},
                merge=True,
            )
            return version

        version = _commit(self._db.transaction())
        logger.info("Committed page snapshot", extra={"page_id": page_id, "version": version})
        return version

    def get(self, page_id: str, version: int | None = None) -> PageContentStructure | None:
        page_ref = self._collection.document(page_id)
        if version is None:
            page = page_ref.get()
            if not page.exists:
                return None
            version = page.get("current_version")
        doc = page_ref.collection("versions").document(str(version)).get()
        if not doc.exists:
            return None
        return PageContentStructure.model_validate(doc.to_dict()["structure"])

    def versions(self, page_id: str) -> list[int]:
        docs = self._collection.document(page_id).collection("versions").stream()
        return sorted(int(doc.to_dict()["version"]) for doc in docs)


__all__ = ["FirestoreJobStore", "FirestoreSnapshotStore"]
