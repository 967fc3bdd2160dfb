from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from google.cloud import pubsub_v1

logger = logging.getLogger(__name__)

DEFAULT_GENERATION_TOPIC = "page-generation-requests"
DEFAULT_GENERATED_TOPIC = "page-generated"


class PubSubClient:
    """Wrapper for Google Cloud Pub/Sub operations."""

    def __init__(
        self,
        project_id: str,
        *,
        generation_topic: str = DEFAULT_GENERATION_TOPIC,
        generated_topic: str = DEFAULT_GENERATED_TOPIC,
        publisher: Any | None = None,
    ) -> None:
        self.project_id = project_id
        self.generation_topic = generation_topic
        self.generated_topic = generated_topic
        self.publisher = publisher or pubsub_v1.PublisherClient()

    def publish(
        self,
        topic_id: str,
        message: Mapping[str, Any],
        *,
        attributes: dict[str, str] | None = None,
    ) -> str:
        """Publish a message to a Pub/Sub topic.

        Args:
            topic_id: The topic ID (e.g., "page-generation-requests")
            message: The message payload as a dictionary
            attributes: Optional message attributes

        Returns:
            Message ID from Pub/Sub
        """
        topic_path = self.publisher.topic_path(self.project_id, topic_id)
        data = json.dumps(message, default=str).encode("utf-8")
        future = self.publisher.publish(topic_path, data, **(attributes or {}))
        message_id = future.result()

        logger.info(
            "Published message to Pub/Sub",
            extra={"topic_id": topic_id, "message_id": message_id, "attributes": attributes},
        )
        return message_id

    def publish_generation_request(self, *, job_id: str, request: Mapping[str, Any]) -> str:
        """Queue a page generation request for the worker.

        Args:
            job_id: Job ID for tracking
            request: JSON-ready page generation request

        Returns:
            Message ID from Pub/Sub
        """
        attributes = {"job_id": job_id, "page_type": str(request.get("page_type", ""))}
        return self.publish(
            self.generation_topic,
            {"job_id": job_id, "request": dict(request)},
            attributes=attributes,
        )

    def publish_page_generated(
        self,
        *,
        job_id: str,
        page_id: str,
        version: int | None,
        outputs: Mapping[str, Any],
    ) -> str:
        message = {
            "job_id": job_id,
            "page_id": page_id,
            "version": version,
            "outputs": dict(outputs),
        }
        attributes = {"job_id": job_id, "page_id": page_id, "event_type": "page_generated"}
        return self.publish(self.generated_topic, message, attributes=attributes)


__all__ = ["PubSubClient", "DEFAULT_GENERATION_TOPIC", "DEFAULT_GENERATED_TOPIC"]
