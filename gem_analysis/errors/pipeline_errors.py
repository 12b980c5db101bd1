"""
Pipeline error types with structured payloads for run records and logs.

Per-item errors are converted into a terminal run status at the worker
boundary; configuration errors are raised at startup before any worker runs.
"""

from typing import Any, Dict, List, Optional


class PipelineError(Exception):
    """Base exception for analysis pipeline errors."""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason or "pipeline_error"
        self.error_type = self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for structured logging."""
        return {
            "error_type": self.error_type,
            "reason": self.reason,
            "error_message": str(self),
        }


class ConfigurationError(PipelineError):
    """Raised for operator-facing configuration problems (fatal at startup)."""

    def __init__(self, message: str, suggestions: Optional[List[str]] = None):
        super().__init__(message, reason="configuration_error")
        self.suggestions = suggestions or []

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["suggestions"] = self.suggestions
        return payload


class UnknownModelError(ConfigurationError):
    """Raised when a model identifier has no entry in the price table."""

    def __init__(self, model: str, available: Optional[List[str]] = None):
        available = available or []
        message = f"Unknown model: {model}"
        if available:
            message += f". Available: {', '.join(available)}"
        super().__init__(
            message,
            suggestions=[
                "Add the model with input/output prices to config/models.yaml",
                "Select a configured model with --model or OPENAI_VISION_MODEL",
            ],
        )
        self.reason = "unknown_model"
        self.model = model
        self.available = available


class ImageDownloadError(PipelineError):
    """Raised when an image cannot be fetched from its location."""

    def __init__(
        self,
        message: str,
        location: Optional[str] = None,
        transient: bool = False,
        retry_count: int = 0,
    ):
        super().__init__(message, reason="image_download_failed")
        self.location = location
        self.transient = transient
        self.retry_count = retry_count

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "location": self.location,
                "transient": self.transient,
                "retry_count": self.retry_count,
            }
        )
        return payload


class VisionProviderError(PipelineError):
    """Raised when the vision provider call fails."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        transient: bool = False,
        retry_count: int = 0,
    ):
        super().__init__(message, reason="provider_error")
        self.error_code = error_code
        self.transient = transient
        self.retry_count = retry_count

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "error_code": self.error_code,
                "transient": self.transient,
                "retry_count": self.retry_count,
            }
        )
        return payload


class UnparseableResponseError(PipelineError):
    """Raised when a provider response cannot be recovered as a JSON object."""

    def __init__(self, message: str = "Response is not recoverable JSON"):
        super().__init__(message, reason="unparseable_response")
