"""
Build a PipelineDefinition from a validated config dict.
"""

from typing import Any, Dict

from pydantic import ValidationError

from controller.src.errors import PipelineConfigError
from controller.src.models.step import PipelineDefinition
from controller.src.services.actions import render_action

def _normalize_step(step: Dict[str, Any], index: int) -> Dict[str, Any]:
    if not isinstance(step, dict):
        raise PipelineConfigError(f"Step {index} must be a dictionary")

    step = dict(step)
    if step.get("uses"):
        step["commands"] = render_action(step["uses"], step.get("with") or {})
    elif "run" in step:
        step["commands"] = [step.pop("run")]

    if not step.get("commands"):
        raise PipelineConfigError(f"Step {index} has no commands")
    return step

def load_definition(config: Dict[str, Any]) -> PipelineDefinition:
    """Raises PipelineConfigError if the config does not describe a pipeline."""
    if not config:
        raise PipelineConfigError("Empty pipeline configuration")

    steps = [_normalize_step(s, i) for i, s in enumerate(config.get("steps") or [])]
    if not steps:
        raise PipelineConfigError("Pipeline must have at least one step")

    try:
        return PipelineDefinition.model_validate({**config, "steps": steps})
    except ValidationError as e:
        raise PipelineConfigError(f"Invalid pipeline configuration: {e}")
