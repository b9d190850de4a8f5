"""Diagram type detection: asks the model which registered type fits a prompt."""

import logging
from typing import Optional, Union

import httpx
from pydantic_ai import Agent
from pydantic_ai.exceptions import AgentRunError
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

from .config import get_model_name
from .errors import DetectionFailedError, DiagramTypeNotDetectedError
from .log_utils import preview
from .models import DiagramTypeDefinition
from .prompts import DETECT_TYPE_TEMPLATE, fill_template, type_catalog
from .registry import DiagramTypeRegistry, get_default_registry

log = logging.getLogger(__name__)

DETECT_TEMPERATURE = 0.3
DETECT_MAX_TOKENS = 50


def parse_type_answer(answer: str, registry: DiagramTypeRegistry) -> Optional[DiagramTypeDefinition]:
    """Map the model's one-word answer onto a registered type, or None."""
    lines = answer.strip().splitlines()
    if not lines:
        return None
    return registry.find(lines[0].strip().strip("`\"'.").strip())


class TypeDetector:
    """Picks a diagram type for a free-text request."""

    def __init__(
        self,
        registry: Optional[DiagramTypeRegistry] = None,
        model: Optional[Union[str, Model]] = None,
    ):
        self.registry = registry or get_default_registry()
        self.model = model
        self._agent: Optional[Agent] = None

    def get_agent(self) -> Agent:
        if self._agent is None:
            system = fill_template(DETECT_TYPE_TEMPLATE, catalog=type_catalog(self.registry))
            self._agent = Agent(self.model or get_model_name(), instructions=system)
        return self._agent

    async def detect(self, prompt: str) -> DiagramTypeDefinition:
        try:
            result = await self.get_agent().run(
                prompt,
                model_settings=ModelSettings(temperature=DETECT_TEMPERATURE, max_tokens=DETECT_MAX_TOKENS),
            )
        except (AgentRunError, httpx.HTTPError) as e:
            log.warning("detect.failed", extra={"error": str(e)})
            raise DetectionFailedError("Failed to detect diagram type") from e

        answer = str(result.output)
        definition = parse_type_answer(answer, self.registry)
        if definition is None:
            log.info("detect.undetermined", extra={"answer": preview(answer, 100)})
            raise DiagramTypeNotDetectedError(answer)
        log.info("detect.type", extra={"diagram_type": definition.id, "prompt": preview(prompt, 100)})
        return definition
