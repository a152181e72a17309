from __future__ import annotations

from typing import Any, Optional


class RecommendationError(Exception):
    """
    Base class for failures that map onto a structured JSON error response.

    Every response body has the shape {"error": <label>, "details": <text>}.
    """

    status_code = 500
    label = "Internal server error"

    def __init__(self, details: str = "", *, label: Optional[str] = None):
        super().__init__(details or label or self.label)
        if label:
            self.label = label
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.label}
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigurationError(RecommendationError):
    status_code = 500
    label = "Configuration Error"

    def __init__(self, service: str, details: str = ""):
        super().__init__(details, label=f"Configuration Error ({service})")
        self.service = service


class ValidationError(RecommendationError):
    status_code = 400

    def __init__(self, message: str):
        super().__init__("", label=message)


class GenerationParseError(RecommendationError):
    status_code = 500
    label = "Failed to parse movie recommendations"

    def __init__(self, details: str, raw_text: str = ""):
        super().__init__(details)
        self.raw_text = raw_text

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        # Only this error carries the raw upstream text back to the caller.
        payload["response"] = self.raw_text
        return payload


class UpstreamError(RecommendationError):
    status_code = 502
    label = "Upstream service error"

    def __init__(self, details: str, *, status: Optional[int] = None):
        super().__init__(details)
        self.status = status


class NoResultsError(RecommendationError):
    status_code = 404
    label = "No movies found matching your criteria"


class PersistenceError(RecommendationError):
    status_code = 500
    label = "Failed to save data"


class ListNotFoundError(PersistenceError):
    status_code = 404
    label = "Movie list not found"
