"""
Span classifier clients.

The labeling model is a black box behind :class:`SpanClassifier`: it takes
a :class:`LabelingRequest` and answers ``{spans, meta}``. Two backends ship
with the service, Gemini (prompted through the versioned prompt templates)
and a remote HTTP endpoint speaking the same camelCase contract.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

import httpx
from google import genai
from google.genai import types

from spanlight.core.exceptions import (
    ClassifierCircuitOpenError,
    ClassifierError,
    ClassifierNotConfiguredError,
    ClassifierRateLimitError,
    ClassifierResponseError,
    ClassifierTimeoutError,
)
from spanlight.core.metrics import track_classifier_call
from spanlight.core.settings import settings
from spanlight.core.taxonomy import get_all_parent_categories, get_attributes_for_parent, get_category
from spanlight.prompts.loader import render_prompt, validate_prompt_output
from spanlight.services.contracts import LabelingRequest, LabelingResult
from spanlight.services.json_parsing import parse_json_text, parse_span_response
from spanlight.services.scheduler import CancellationToken

logger = logging.getLogger(__name__)

LABEL_SPANS_PROMPT = "prompt_label_spans"


class SpanClassifier(Protocol):
    name: str

    async def label(
        self,
        request: LabelingRequest,
        token: CancellationToken | None = None,
    ) -> LabelingResult: ...


@dataclass
class CircuitBreakerState:
    """Failure counter that stops classifier calls after repeated errors.

    ``failure_threshold`` consecutive failures open the circuit for
    ``recovery_timeout_seconds``. Once that window passes, calls are let
    through again (half-open); ``half_open_success_threshold`` successes in a
    row close it, while any failure reopens it for another window.
    """

    failure_count: int = 0
    last_failure_time: datetime | None = None
    circuit_open_until: datetime | None = None
    consecutive_successes: int = 0

    failure_threshold: int = 5
    recovery_timeout_seconds: int = 60
    half_open_success_threshold: int = 2

    def record_failure(self) -> None:
        now = datetime.now(timezone.utc)
        self.failure_count += 1
        self.consecutive_successes = 0
        self.last_failure_time = now
        if self.failure_count < self.failure_threshold:
            return
        self.circuit_open_until = now + timedelta(seconds=self.recovery_timeout_seconds)
        logger.warning(
            "classifier_circuit_open",
            extra={"failure_count": self.failure_count, "retry_after": self.circuit_open_until.isoformat()},
        )

    def record_success(self) -> None:
        """Count a success; enough of them while half-open close the circuit."""
        self.consecutive_successes += 1
        if self.is_half_open and self.consecutive_successes >= self.half_open_success_threshold:
            logger.info("classifier_circuit_closed", extra={"successes": self.consecutive_successes})
            self.reset()

    def reset(self) -> None:
        self.failure_count = 0
        self.last_failure_time = None
        self.circuit_open_until = None
        self.consecutive_successes = 0

    @property
    def is_open(self) -> bool:
        """True while the recovery window is running; no calls go through."""
        if self.circuit_open_until is None:
            return False
        return datetime.now(timezone.utc) < self.circuit_open_until

    @property
    def is_half_open(self) -> bool:
        """True after the recovery window, until the circuit closes again."""
        if self.circuit_open_until is None:
            return False
        return datetime.now(timezone.utc) >= self.circuit_open_until and self.failure_count > 0

    def check_circuit(self) -> None:
        if not self.is_open:
            return
        retry_after = self.circuit_open_until.isoformat() if self.circuit_open_until else "unknown"
        raise ClassifierCircuitOpenError(
            f"Classifier circuit is open after {self.failure_count} consecutive failures; retry after {retry_after}",
            retry_after=self.circuit_open_until,
        )


def _taxonomy_listing() -> list[dict[str, Any]]:
    listing = []
    for parent_id in get_all_parent_categories():
        category = get_category(parent_id)
        listing.append(
            {
                "id": parent_id,
                "label": category.label if category else parent_id,
                "description": category.description if category else "",
                "attributes": get_attributes_for_parent(parent_id),
            }
        )
    return listing


def build_label_prompt(request: LabelingRequest) -> str:
    policy = request.policy or {}
    return render_prompt(
        LABEL_SPANS_PROMPT,
        validate=True,
        text=request.text,
        categories=_taxonomy_listing(),
        max_spans=request.max_spans,
        min_confidence=request.min_confidence,
        non_technical_word_limit=policy.get("nonTechnicalWordLimit", settings.span_non_technical_word_limit),
        allow_overlap=policy.get("allowOverlap") is True,
        template_version=request.template_version,
    )


class GeminiSpanClassifier:
    name = "gemini"

    def __init__(
        self,
        project: str | None,
        location: str | None,
        api_key: str | None,
        text_model: str,
        max_retries: int = 3,
        initial_backoff_seconds: float = 0.8,
        rate_limit_backoff_seconds: list[float] | None = None,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60,
        client: Any | None = None,
    ):
        if client is None and not api_key and (not project or not location):
            raise ClassifierNotConfiguredError()

        self._text_model = text_model
        self._max_retries = max_retries
        self._initial_backoff_seconds = initial_backoff_seconds
        self._rate_limit_backoff_seconds = rate_limit_backoff_seconds or [2, 5, 10]

        self.last_request_id: str | None = None
        self.last_usage: dict | None = None
        self.last_error_type: str | None = None

        self._circuit_breaker = CircuitBreakerState(
            failure_threshold=circuit_breaker_threshold,
            recovery_timeout_seconds=circuit_breaker_timeout,
        )

        if client is not None:
            self._client = client
        elif project and location and not api_key:
            self._client = genai.Client(vertexai=True, project=project, location=location)
        else:
            self._client = genai.Client(api_key=api_key)

    @property
    def circuit_breaker(self) -> CircuitBreakerState:
        return self._circuit_breaker

    def _classify_error(self, exc: Exception, error_text: str) -> tuple[str, bool]:
        """Classify error type and determine if retryable.

        Returns:
            Tuple of (error_type, is_retryable)
        """
        if "RESOURCE_EXHAUSTED" in error_text or "429" in error_text:
            return "rate_limit", True
        if "timeout" in error_text.lower() or "deadline" in error_text.lower():
            return "timeout", True
        if "unavailable" in error_text.lower() or "503" in error_text:
            return "model_unavailable", True
        if "invalid" in error_text.lower() or "400" in error_text:
            return "invalid_request", False
        return "unknown", True

    def _retry(self, func: Callable[[], Any]) -> Any:
        """Execute ``func`` with retry, backoff and the circuit breaker."""
        self._circuit_breaker.check_circuit()

        last_exc: Exception | None = None
        last_error_type = "unknown"
        request_id = str(uuid.uuid4())
        attempt = 0
        max_attempts = self._max_retries

        while attempt < max_attempts:
            try:
                response = func()
                self.last_request_id = getattr(response, "response_id", None) or request_id
                self.last_error_type = None
                usage = getattr(response, "usage_metadata", None)
                self.last_usage = usage.model_dump() if usage is not None else {"model": self._text_model}
                self._circuit_breaker.record_success()
                return response
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                error_type, is_retryable = self._classify_error(exc, str(exc))
                last_error_type = error_type
                self.last_error_type = error_type

                if not is_retryable:
                    logger.error(
                        "gemini.label_spans non-retryable error request_id=%s model=%s type=%s error=%s",
                        request_id,
                        self._text_model,
                        error_type,
                        repr(exc),
                    )
                    break

                if error_type == "rate_limit":
                    idx = min(attempt, len(self._rate_limit_backoff_seconds) - 1)
                    backoff = self._rate_limit_backoff_seconds[idx]
                else:
                    backoff = self._initial_backoff_seconds * (2**attempt)

                logger.warning(
                    "gemini.label_spans failed request_id=%s model=%s attempt=%s/%s type=%s error=%s",
                    request_id,
                    self._text_model,
                    attempt + 1,
                    max_attempts,
                    error_type,
                    repr(exc),
                )

                if attempt + 1 >= max_attempts:
                    break

                time.sleep(backoff)
                attempt += 1

        self._circuit_breaker.record_failure()
        self.last_request_id = request_id

        if last_error_type == "rate_limit":
            raise ClassifierRateLimitError(
                f"Rate limit exceeded after {attempt + 1} attempts",
                request_id=request_id,
                model=self._text_model,
            )
        if last_error_type == "timeout":
            raise ClassifierTimeoutError(
                f"Request timed out after {attempt + 1} attempts",
                request_id=request_id,
                model=self._text_model,
            )
        raise ClassifierError(
            f"Gemini span labeling failed after {attempt + 1} attempts: {last_exc!r}",
            request_id=request_id,
            model=self._text_model,
        )

    def _extract_text_from_response(self, response: Any) -> str:
        candidate = (getattr(response, "candidates", None) or [None])[0]
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None)
        if not parts:
            raise ClassifierResponseError("Gemini returned empty content", model=self._text_model)

        texts = [part.text for part in parts if getattr(part, "text", None)]
        if not texts:
            raise ClassifierResponseError("Gemini returned no textual content", model=self._text_model)
        return "\n".join(texts).strip()

    def generate_text(self, prompt: str) -> str:
        response = self._retry(
            lambda: self._client.models.generate_content(
                model=self._text_model,
                contents=[prompt],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    temperature=0.0,
                ),
            )
        )
        return self._extract_text_from_response(response)

    async def label(
        self,
        request: LabelingRequest,
        token: CancellationToken | None = None,
    ) -> LabelingResult:
        prompt = build_label_prompt(request)
        with track_classifier_call(self.name):
            raw_text = await asyncio.to_thread(self.generate_text, prompt)
        if token is not None:
            token.raise_if_cancelled()

        data = parse_json_text(raw_text)
        if isinstance(data, dict):
            try:
                validate_prompt_output(LABEL_SPANS_PROMPT, data)
            except ValueError as exc:
                raise ClassifierResponseError(str(exc), model=self._text_model) from exc
        spans, meta = parse_span_response(data)
        meta = {
            "version": request.template_version,
            "notes": "",
            **(meta or {}),
            "model": self._text_model,
            "requestId": self.last_request_id,
        }
        return LabelingResult(spans=spans, meta=meta)

    def get_circuit_breaker_status(self) -> dict[str, Any]:
        cb = self._circuit_breaker
        return {
            "failure_count": cb.failure_count,
            "is_open": cb.is_open,
            "is_half_open": cb.is_half_open,
            "circuit_open_until": cb.circuit_open_until.isoformat() if cb.circuit_open_until else None,
            "consecutive_successes": cb.consecutive_successes,
        }


class HttpSpanClassifier:
    """Posts the labeling contract to a remote span labeling endpoint."""

    name = "http"

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["X-API-Key"] = self._api_key
        return headers

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> httpx.Response:
        return await client.post(self._url, json=payload, headers=self._headers(), timeout=self._timeout_seconds)

    async def label(
        self,
        request: LabelingRequest,
        token: CancellationToken | None = None,
    ) -> LabelingResult:
        if token is not None:
            token.raise_if_cancelled()
        payload = request.to_payload()
        try:
            with track_classifier_call(self.name):
                if self._client is not None:
                    response = await self._post(self._client, payload)
                else:
                    async with httpx.AsyncClient() as client:
                        response = await self._post(client, payload)
        except httpx.TimeoutException as exc:
            raise ClassifierTimeoutError(f"Span classifier timed out after {self._timeout_seconds}s") from exc
        except httpx.HTTPError as exc:
            raise ClassifierError(f"Span classifier request failed: {exc}") from exc

        if token is not None:
            token.raise_if_cancelled()
        if response.status_code == 429:
            raise ClassifierRateLimitError("Span classifier rate limit exceeded")
        if response.status_code >= 400:
            raise ClassifierError(
                f"Span classifier returned HTTP {response.status_code}",
                detail=response.text[:300],
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ClassifierResponseError("Span classifier returned invalid JSON") from exc
        spans, meta = parse_span_response(data)
        return LabelingResult(spans=spans, meta=meta)


def build_classifier() -> SpanClassifier:
    """Build the configured classifier backend from application settings.

    Raises:
        ClassifierNotConfiguredError: If the backend or its credentials are missing.
    """
    backend = (settings.classifier_backend or "").strip().lower()
    if backend == "gemini":
        if not settings.google_cloud_project and not settings.gemini_api_key:
            raise ClassifierNotConfiguredError()
        return GeminiSpanClassifier(
            project=settings.google_cloud_project,
            location=settings.google_cloud_location,
            api_key=settings.gemini_api_key,
            text_model=settings.gemini_text_model,
            max_retries=settings.gemini_max_retries,
            initial_backoff_seconds=settings.gemini_initial_backoff_seconds,
            circuit_breaker_threshold=settings.gemini_circuit_breaker_threshold,
            circuit_breaker_timeout=settings.gemini_circuit_breaker_timeout,
        )
    if backend == "http":
        if not settings.classifier_url:
            raise ClassifierNotConfiguredError()
        return HttpSpanClassifier(
            url=settings.classifier_url,
            api_key=settings.classifier_api_key,
            timeout_seconds=settings.classifier_timeout_seconds,
        )
    raise ClassifierNotConfiguredError()
