"""
Application-level exception types.

Malformed spans and tree drift are handled locally and never raise; these
types cover the failures that do cross a component boundary (classifier
calls, cache tiers, configuration).
"""

from __future__ import annotations

from datetime import datetime


class AppError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        self.detail = detail or message
        super().__init__(message)


class ConfigurationError(AppError):
    """Raised when required configuration is missing or invalid."""


class CacheError(AppError):
    """Raised when a persistent cache tier cannot be read or written."""


class RenderError(AppError):
    """Raised when an HTML fragment cannot be parsed for highlighting."""


class ClassifierError(AppError):
    """Base exception for span classifier failures."""

    def __init__(
        self,
        message: str,
        *,
        detail: str | None = None,
        request_id: str | None = None,
        model: str | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.request_id = request_id
        self.model = model


class ClassifierTimeoutError(ClassifierError):
    """Raised when the classifier does not answer within the caller's timeout."""


class ClassifierRateLimitError(ClassifierError):
    """Raised when the classifier backend rejects calls for quota reasons."""


class ClassifierResponseError(ClassifierError):
    """Raised when the classifier answer cannot be parsed into spans."""


class ClassifierCircuitOpenError(ClassifierError):
    """Raised when the circuit breaker is open after repeated failures."""

    def __init__(self, message: str, retry_after: datetime | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ClassifierNotConfiguredError(ClassifierError):
    """Raised when no classifier backend is configured."""

    def __init__(self) -> None:
        super().__init__(
            "Span classifier is not configured. Set CLASSIFIER_BACKEND and its credentials.",
            detail="classifier not configured",
        )
