"""
Model handler for analyze/generate steps.

Renders the step prompt, selects the model for the job's optimize mode and
sends one completion request through the ModelClient collaborator.

Analyze steps are planning work and use the planning model; generate steps
use the execution model (see JobConfig.select_model).
"""

import logging
from typing import Optional

from chakravarti.handlers.base import (
    ModelClient,
    ModelRequest,
    StepContext,
    StepHandler,
    StepOutput,
)
from chakravarti.prompts import build_messages
from chakravarti.schemas import ModelTask, Step, StepKind

logger = logging.getLogger(__name__)


class ModelHandler(StepHandler):
    """
    Handler for model-backed steps.

    Outputs:
        content: The completion text
        model: The model that produced it
        finish_reason: Provider finish reason, when reported
    """

    def __init__(
        self,
        client: ModelClient,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self._client = client
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def client(self) -> ModelClient:
        return self._client

    async def execute(self, step: Step, context: StepContext) -> StepOutput:
        task = ModelTask.PLANNING if step.kind == StepKind.ANALYZE else ModelTask.EXECUTION
        model = context.config.select_model(task)
        messages = build_messages(step, context.spec, context.outputs, context.feedback)

        logger.debug("Step %s: requesting completion from %s", step.id, model)
        response = await self._client.complete(ModelRequest(
            model=model,
            messages=messages,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        ))

        outputs = {"content": response.content, "model": model}
        if response.finish_reason:
            outputs["finish_reason"] = response.finish_reason
        return StepOutput(outputs=outputs, stdout=response.content)
