from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Sequence

import vertexai
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from vertexai.generative_models import GenerationConfig, GenerativeModel

from .components import ComponentDefinition
from .detection import ALTERNATIVE_RATIO, DEFAULT_MAX_ALTERNATIVES, DEFAULT_MIN_CONFIDENCE, behaviour_text
from .errors import DetectionError, OracleError
from .models.knowledge import PersonaDefinition
from .models.tracking import DetectionResult, VisitorSession
from .oracle import CompletionRequest, OracleCompletion, ScoringContext

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class VertexAIAdapter:
    """Adapter for Vertex AI Gemini models."""

    def __init__(
        self,
        *,
        project_id: str,
        location: str = "us-central1",
        model_name: str = "gemini-1.5-pro",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize Vertex AI adapter.

        Args:
            project_id: GCP project ID
            location: Vertex AI location
            model_name: Model name (e.g., "gemini-1.5-pro")
            timeout_seconds: Upper bound for one generation call
        """
        self.project_id = project_id
        self.location = location
        self.model_name = model_name
        self.timeout_seconds = timeout_seconds

        vertexai.init(project=project_id, location=location)
        self.model = GenerativeModel(model_name)
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="vertex")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=2, min=2, max=8),
        retry=retry_if_exception_type((TimeoutError, ConnectionError, OracleError)),
        reraise=True,
    )
    def generate_content(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_output_tokens: int = 8192,
        response_format: str | None = None,
    ) -> tuple[str, int]:
        """Generate content using Vertex AI.

        Args:
            prompt: Input prompt
            temperature: Sampling temperature (0.0 - 1.0)
            max_output_tokens: Maximum output tokens
            response_format: Optional response format ("json" for JSON mode)

        Returns:
            Generated text and the total token count reported by the model
        """
        generation_config = GenerationConfig(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
        if response_format == "json":
            prompt = f"{prompt}\n\nPlease respond with valid JSON only."

        future = self._executor.submit(
            self.model.generate_content, prompt, generation_config=generation_config
        )
        try:
            response = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            future.cancel()
            logger.warning(
                "Vertex AI call timed out",
                extra={"model": self.model_name, "timeout_seconds": self.timeout_seconds},
            )
            raise TimeoutError(f"Vertex AI call exceeded {self.timeout_seconds}s") from exc
        except Exception as exc:
            logger.warning(
                "Vertex AI call failed",
                extra={"model": self.model_name, "error": str(exc)},
            )
            raise OracleError(f"Vertex AI call failed: {exc}") from exc

        generated_text = response.text
        usage = getattr(response, "usage_metadata", None)
        tokens = int(getattr(usage, "total_token_count", 0) or 0)

        logger.info(
            "Generated content with Vertex AI",
            extra={
                "model": self.model_name,
                "temperature": temperature,
                "input_length": len(prompt),
                "output_length": len(generated_text),
                "tokens": tokens,
            },
        )
        return generated_text, tokens

    def generate_json(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_output_tokens: int = 8192,
    ) -> tuple[Any, int]:
        """Generate a structured JSON response.

        Raises:
            OracleError: the call failed after retries or returned invalid JSON
        """
        try:
            response, tokens = self.generate_content(
                prompt,
                temperature=temperature,
                max_output_tokens=max_output_tokens,
                response_format="json",
            )
        except (TimeoutError, ConnectionError, RetryError) as exc:
            raise OracleError(f"Vertex AI call failed: {exc}") from exc

        response = response.strip()
        if response.startswith("```json"):
            response = response[7:]
        if response.startswith("```"):
            response = response[3:]
        if response.endswith("```"):
            response = response[:-3]

        try:
            return json.loads(response.strip()), tokens
        except json.JSONDecodeError as exc:
            logger.error(
                "Failed to parse JSON response",
                exc_info=True,
                extra={"response": response[:500]},
            )
            raise OracleError(f"Invalid JSON response: {exc}") from exc


class VertexAIOracle:
    """Generation oracle backed by Gemini."""

    def __init__(self, *, adapter: VertexAIAdapter, temperature: float = 0.4) -> None:
        self._adapter = adapter
        self._temperature = temperature

    def score_component(self, definition: ComponentDefinition, context: ScoringContext) -> float:
        excerpt_lines = "\n".join(
            f"- [{excerpt.entity_type}] {excerpt.text[:200]}" for excerpt in context.excerpts[:10]
        )
        prompt = f"""You rank website section components for a {context.page_type.value} page.

Component: {definition.kind.value} ({definition.label})
Narrative role: {definition.narrative_role.value}
Required fields: {", ".join(definition.required_fields)}
Use cases: {", ".join(definition.use_cases)}

Content hints: {context.hint_text()}
Available knowledge:
{excerpt_lines or "- none"}

Return {{"score": <number between 0 and 1>}} describing how well the knowledge can fill this component.
"""
        result, _ = self._adapter.generate_json(prompt, temperature=0.0, max_output_tokens=64)
        try:
            score = float(result["score"])
        except (KeyError, TypeError, ValueError) as exc:
            raise OracleError(f"Unexpected score payload: {result!r}") from exc
        return min(1.0, max(0.0, score))

    def complete_section(self, request: CompletionRequest) -> OracleCompletion:
        excerpt_lines = "\n".join(
            f"- id={excerpt.id} [{excerpt.entity_type}] {excerpt.text}" for excerpt in request.excerpts
        )
        persona_block = "General audience."
        if request.persona is not None:
            persona_block = (
                f"{request.persona.label} ({request.persona.communication_style} tone). "
                f"Goals: {', '.join(request.persona.goals) or 'n/a'}. "
                f"Pain points: {', '.join(request.persona.pain_points) or 'n/a'}."
            )
        prompt = f"""You write marketing copy for one section of a {request.page_type.value} page.

Component: {request.component.kind.value}
Narrative role: {request.narrative_role.value}
Fields to fill: {", ".join(request.component.fields)}
Audience: {persona_block}

Use only facts from this knowledge:
{excerpt_lines or "- none"}

Return JSON: {{"fields": {{<field>: <value>}}, "grounded_fields": [<fields backed by knowledge>],
"source_excerpt_ids": [<ids used>]}}.
CTA fields are objects with "text" and "link". List fields are arrays of objects.
"""
        result, tokens = self._adapter.generate_json(prompt, temperature=self._temperature)
        if not isinstance(result, dict) or not isinstance(result.get("fields"), dict):
            raise OracleError(f"Unexpected completion payload for {request.section_id}")

        known_ids = {excerpt.id for excerpt in request.excerpts}
        return OracleCompletion(
            fields=dict(result["fields"]),
            tokens_used=tokens,
            grounded_fields=[str(name) for name in result.get("grounded_fields", [])],
            source_excerpt_ids=[
                str(item) for item in result.get("source_excerpt_ids", []) if item in known_ids
            ],
            model=self._adapter.model_name,
        )


class VertexPersonaDetector:
    name = "vertex"

    def __init__(
        self,
        *,
        adapter: VertexAIAdapter,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        max_alternatives: int = DEFAULT_MAX_ALTERNATIVES,
    ) -> None:
        self._adapter = adapter
        self._min_confidence = min_confidence
        self._max_alternatives = max_alternatives

    def detect(
        self, session: VisitorSession, personas: Sequence[PersonaDefinition]
    ) -> DetectionResult:
        catalogue = "\n".join(
            f"- {p.id}: {p.label}. {p.description or ''} Keywords: {', '.join(p.keywords)}"
            for p in personas
        )
        behaviour = behaviour_text(session)
        prompt = f"""Classify a website visitor into one of these personas:
{catalogue}

Clicked elements: {behaviour["clicks"] or "none"}
Pages visited: {behaviour["navigation"] or "none"}
Sections read: {behaviour["sections"] or "none"}
Chat messages: {behaviour["chat"] or "none"}

Return JSON: {{"persona_id": <id or null>, "confidence": <0-1>,
"alternatives": [{{"persona_id": <id>, "confidence": <0-1>}}]}}
"""
        try:
            result, _ = self._adapter.generate_json(prompt, temperature=0.0, max_output_tokens=256)
        except OracleError as exc:
            raise DetectionError(f"Vertex persona detection failed: {exc}") from exc

        known = {persona.id for persona in personas}
        try:
            persona_id = result.get("persona_id")
            persona_id = str(persona_id) if persona_id is not None else None
            confidence = float(result.get("confidence") or 0.0)
            alternatives = [
                {"persona_id": alt["persona_id"], "confidence": float(alt["confidence"])}
                for alt in result.get("alternatives", [])
                if alt.get("persona_id") in known
                and float(alt["confidence"]) >= self._min_confidence * ALTERNATIVE_RATIO
            ][: self._max_alternatives]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise DetectionError(f"Unexpected detection payload: {result!r}") from exc

        if persona_id not in known or confidence < self._min_confidence:
            return DetectionResult(detector=self.name)
        return DetectionResult(
            persona_id=persona_id,
            confidence=min(1.0, max(0.0, confidence)),
            alternatives=alternatives,
            detector=self.name,
        )


__all__ = ["VertexAIAdapter", "VertexAIOracle", "VertexPersonaDetector", "DEFAULT_TIMEOUT_SECONDS"]
