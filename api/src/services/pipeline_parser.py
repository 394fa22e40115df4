"""
Pipeline YAML parser and validator.
"""

import re
import yaml
from typing import List, Dict, Any, Optional

MATCH_POLICIES = ("exact", "prefix", "glob")
REF_TYPES = ("branch", "tag")
BUILTIN_ACTIONS = ("shell", "sync", "archive")
SECRET_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
SECRET_REF = re.compile(r"^\$\{\{\s*secrets\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}$")
ARTIFACT_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*\Z")

class PipelineConfigError(Exception):
    """Raised when pipeline configuration is invalid."""
    pass

def parse_pipeline_config(yaml_content: str) -> Dict[str, Any]:
    """Parse pipeline YAML configuration from string."""
    try:
        config = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise PipelineConfigError(f"Invalid YAML: {e}")

    return validate_config(config)

def parse_pipeline_dict(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate pipeline configuration from dict."""
    return validate_config(config)

def validate_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate pipeline configuration structure."""
    if not config:
        raise PipelineConfigError("Empty pipeline configuration")

    if not isinstance(config, dict):
        raise PipelineConfigError("Pipeline configuration must be a dictionary")

    # Validate name (optional but recommended)
    name = config.get("name", "Unnamed Pipeline")
    if not isinstance(name, str):
        raise PipelineConfigError("Pipeline 'name' must be a string")

    trigger = validate_trigger(config.get("trigger"))

    env = config.get("env", {})
    _check_string_map(env, "Pipeline 'env'")
    refs = sorted(k for k, v in env.items() if SECRET_REF.match(v))
    if refs:
        raise PipelineConfigError(
            f"Pipeline 'env' cannot reference secrets ({', '.join(refs)}); "
            "declare them on the steps that use them"
        )

    # Validate steps
    if "steps" not in config:
        raise PipelineConfigError("Pipeline must have 'steps' defined")

    steps = config["steps"]
    if not isinstance(steps, list):
        raise PipelineConfigError("Pipeline 'steps' must be a list")

    if len(steps) == 0:
        raise PipelineConfigError("Pipeline must have at least one step")

    validated_steps = []
    for i, step in enumerate(steps):
        validated_step = validate_step(step, i)
        validated_steps.append(validated_step)

    names = [s["name"] for s in validated_steps]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise PipelineConfigError(f"Duplicate step names: {', '.join(duplicates)}")

    return {
        "name": name,
        "trigger": trigger,
        "steps": validated_steps,
        "env": env,
    }

def validate_trigger(trigger: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate the trigger rule.
    A pipeline without a trigger only runs for pushes to main.
    """
    if trigger is None:
        trigger = {"branches": ["main"]}

    if not isinstance(trigger, dict):
        raise PipelineConfigError("Pipeline 'trigger' must be a dictionary")

    branches = trigger.get("branches", [])
    if isinstance(branches, str):
        branches = [branches]
    if not isinstance(branches, list) or not all(isinstance(b, str) for b in branches):
        raise PipelineConfigError("Trigger 'branches' must be a list of strings")

    match = trigger.get("match", "exact")
    if match not in MATCH_POLICIES:
        raise PipelineConfigError(
            f"Trigger 'match' must be one of {', '.join(MATCH_POLICIES)}"
        )

    ref_types = trigger.get("ref_types", ["branch"])
    if not isinstance(ref_types, list) or any(r not in REF_TYPES for r in ref_types):
        raise PipelineConfigError(
            f"Trigger 'ref_types' must be a list of {', '.join(REF_TYPES)}"
        )

    return {"branches": branches, "match": match, "ref_types": ref_types}

def validate_step(step: Dict[str, Any], index: int) -> Dict[str, Any]:
    """Validate a single pipeline step."""
    if not isinstance(step, dict):
        raise PipelineConfigError(f"Step {index} must be a dictionary")

    # Required fields
    if "name" not in step:
        raise PipelineConfigError(f"Step {index} missing 'name'")

    if not isinstance(step["name"], str):
        raise PipelineConfigError(f"Step {index} 'name' must be a string")

    # Exactly one of run / commands / uses
    kinds = [k for k in ("run", "commands", "uses") if k in step]
    if not kinds:
        raise PipelineConfigError(f"Step {index} missing 'run', 'commands' or 'uses'")
    if len(kinds) > 1:
        raise PipelineConfigError(f"Step {index} may only use one of {', '.join(kinds)}")

    validated = {"name": step["name"]}

    if "run" in step:
        if not isinstance(step["run"], str):
            raise PipelineConfigError(f"Step {index} 'run' must be a string")
        validated["commands"] = [step["run"]]
    elif "commands" in step:
        if not isinstance(step["commands"], list) or not step["commands"]:
            raise PipelineConfigError(f"Step {index} 'commands' must be a non-empty list")
        for j, cmd in enumerate(step["commands"]):
            if not isinstance(cmd, str):
                raise PipelineConfigError(f"Step {index} command {j} must be a string")
        validated["commands"] = step["commands"]
    else:
        if step["uses"] not in BUILTIN_ACTIONS:
            raise PipelineConfigError(f"Step {index} uses unknown action '{step['uses']}'")
        inputs = step.get("with", {})
        if not isinstance(inputs, dict):
            raise PipelineConfigError(f"Step {index} 'with' must be a dictionary")
        validated["uses"] = step["uses"]
        validated["with"] = inputs

    env = step.get("env", {})
    _check_string_map(env, f"Step {index} 'env'")

    secrets = step.get("secrets", [])
    if not isinstance(secrets, list) or not all(
        isinstance(s, str) and SECRET_NAME.match(s) for s in secrets
    ):
        raise PipelineConfigError(f"Step {index} 'secrets' must be a list of secret names")

    publishes = step.get("publishes", {})
    _check_string_map(publishes, f"Step {index} 'publishes'")
    for name in publishes:
        _check_artifact_name(name, index)

    consumes = step.get("consumes", [])
    if not isinstance(consumes, list) or not all(isinstance(c, str) for c in consumes):
        raise PipelineConfigError(f"Step {index} 'consumes' must be a list of artifact names")
    for name in consumes:
        _check_artifact_name(name, index)

    timeout = step.get("timeout")
    if timeout is not None and (not isinstance(timeout, int) or isinstance(timeout, bool) or timeout <= 0):
        raise PipelineConfigError(f"Step {index} 'timeout' must be a positive integer")

    validated.update({
        "env": env,
        "secrets": secrets,
        "publishes": publishes,
        "consumes": consumes,
        "timeout": timeout,
    })
    return validated

def _check_artifact_name(name: str, index: int):
    if not ARTIFACT_NAME.match(name):
        raise PipelineConfigError(
            f"Step {index} artifact name '{name}' must be letters, digits, '.', '_' or '-'"
        )

def _check_string_map(value: Any, label: str):
    if not isinstance(value, dict):
        raise PipelineConfigError(f"{label} must be a dictionary")
    for key, item in value.items():
        if not isinstance(key, str) or not isinstance(item, str):
            raise PipelineConfigError(f"{label} must map strings to strings")

def declared_secrets(config: Dict[str, Any]) -> List[str]:
    """Secret names a validated pipeline requires."""
    names = set()
    for step in config["steps"]:
        names.update(step["secrets"])
        for value in step["env"].values():
            match = SECRET_REF.match(value)
            if match:
                names.add(match.group(1))
    return sorted(names)
