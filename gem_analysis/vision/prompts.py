"""
Prompt templates for the analysis request, loaded from config/prompts.yaml.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from config.constants import PROMPTS_PATH

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

_VARIABLE_PATTERN = re.compile(r"\{(\w+)\}")


@dataclass
class PromptTemplate:
    """
    A prompt with ``{variable}`` placeholders.

    Substitution replaces only declared variables, so JSON examples with
    literal braces inside the template survive rendering.
    """

    name: str
    template: str
    description: str = ""
    variables: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.variables:
            self.variables = sorted(set(_VARIABLE_PATTERN.findall(self.template)))

    def render(self, **values) -> str:
        missing = [name for name in self.variables if name not in values]
        if missing:
            raise ValueError(f"Missing variables for prompt '{self.name}': {missing}")

        rendered = self.template
        for name in self.variables:
            rendered = rendered.replace("{" + name + "}", str(values[name]))
        return rendered


@dataclass
class PromptSet:
    """System message plus the per-item analysis instruction."""

    system: PromptTemplate
    analysis: PromptTemplate


def load_prompts(path: Optional[Union[str, Path]] = None) -> PromptSet:
    """
    Load prompt templates from YAML.

    Raises:
        ConfigurationError: If the file is missing or lacks a required prompt
    """
    yaml_path = Path(path) if path else PROMPTS_PATH
    if not yaml_path.exists():
        raise ConfigurationError(
            f"Prompt configuration not found at {yaml_path}",
            suggestions=["Ensure config/prompts.yaml exists or set PROMPTS_PATH"],
        )

    try:
        with open(yaml_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse prompts from {yaml_path}: {e}")

    templates: Dict[str, PromptTemplate] = {}
    for name, entry in (data.get("prompts") or {}).items():
        templates[name] = PromptTemplate(
            name=name,
            template=entry["template"],
            description=entry.get("description", ""),
            variables=list(entry.get("variables") or []),
        )

    for required in ("system", "gem_analysis"):
        if required not in templates:
            raise ConfigurationError(f"Prompt '{required}' missing from {yaml_path}")

    logger.info(f"Loaded {len(templates)} prompts from {yaml_path}")
    return PromptSet(system=templates["system"], analysis=templates["gem_analysis"])
