"""
Error types for the analysis pipeline.
"""

from .pipeline_errors import (
    ConfigurationError,
    ImageDownloadError,
    PipelineError,
    UnknownModelError,
    UnparseableResponseError,
    VisionProviderError,
)

__all__ = [
    "PipelineError",
    "ConfigurationError",
    "UnknownModelError",
    "ImageDownloadError",
    "VisionProviderError",
    "UnparseableResponseError",
]
