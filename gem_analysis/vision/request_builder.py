"""
Assemble one multi-image chat completion request per item.

Building a request is pure: the same images, model config and prompts always
produce an identical body.
"""

from typing import Any, Dict, List, Optional, Sequence

from .cost_accountant import ModelConfig
from .image_preprocessor import PreprocessedImage
from .prompts import PromptSet


class VisionRequestBuilder:
    """Build the provider request body for one item's image set."""

    def __init__(
        self,
        prompts: PromptSet,
        detail_mode: str = "auto",
        max_output_tokens: Optional[int] = None,
    ):
        """
        Args:
            prompts: System and analysis prompt templates
            detail_mode: Image detail level sent with each image part
            max_output_tokens: Optional cap below the model's own budget
        """
        self.prompts = prompts
        self.detail_mode = detail_mode
        self.max_output_tokens = max_output_tokens

    def build(self, images: Sequence[PreprocessedImage], model: ModelConfig) -> Dict[str, Any]:
        if not images:
            raise ValueError("Cannot build a vision request without images")

        content: List[Dict[str, Any]] = [
            {
                "type": "text",
                "text": self.prompts.analysis.render(image_count=len(images)),
            }
        ]
        for image in images:
            content.append(
                {
                    "type": "image_url",
                    "image_url": {
                        "url": image.to_data_url(),
                        "detail": self.detail_mode,
                    },
                }
            )

        request: Dict[str, Any] = {
            "model": model.name,
            "messages": [
                {"role": "system", "content": self.prompts.system.render()},
                {"role": "user", "content": content},
            ],
            "max_completion_tokens": self._output_budget(model),
            "response_format": {"type": "json_object"},
        }

        if model.reasoning_effort:
            request["reasoning_effort"] = model.reasoning_effort

        return request

    def _output_budget(self, model: ModelConfig) -> int:
        if self.max_output_tokens is None:
            return model.max_output_tokens
        return min(self.max_output_tokens, model.max_output_tokens)
