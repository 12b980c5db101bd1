"""
Vision module for multi-image gemstone analysis requests.

Provides image preprocessing, request construction, the retrying provider
client and cost accounting against the per-model price table.
"""

from .cost_accountant import CostAccountant, ModelConfig, ModelTable
from .image_preprocessor import ImagePreprocessor, PreprocessedImage
from .image_source import ImageDownloader
from .prompts import PromptSet, PromptTemplate, load_prompts
from .request_builder import VisionRequestBuilder
from .vision_client import VisionClient, VisionResponse

__all__ = [
    "CostAccountant",
    "ImageDownloader",
    "ImagePreprocessor",
    "ModelConfig",
    "ModelTable",
    "PreprocessedImage",
    "PromptSet",
    "PromptTemplate",
    "VisionClient",
    "VisionRequestBuilder",
    "VisionResponse",
    "load_prompts",
]
