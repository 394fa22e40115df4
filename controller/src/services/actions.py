"""
Reusable step actions.

A step either lists its own commands or names an action with `uses:` and
passes inputs with `with:`. Actions render to plain shell commands, so the
executor treats both kinds of step the same way.
"""

import shlex
from typing import Any, Callable, Dict, List

from controller.src.errors import PipelineConfigError

ActionRenderer = Callable[[Dict[str, Any]], List[str]]

_ACTIONS: Dict[str, ActionRenderer] = {}

def register_action(name: str):
    """Decorator registering a renderer under `name`."""
    def decorator(func: ActionRenderer) -> ActionRenderer:
        _ACTIONS[name] = func
        return func
    return decorator

def available_actions() -> List[str]:
    return sorted(_ACTIONS)

def _require(inputs: Dict[str, Any], key: str, action: str) -> str:
    value = inputs.get(key)
    if value is None or value == "":
        raise PipelineConfigError(f"Action '{action}' requires input '{key}'")
    return str(value)

def _flag(inputs: Dict[str, Any], key: str) -> bool:
    value = inputs.get(key, False)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)

@register_action("shell")
def shell_action(inputs: Dict[str, Any]) -> List[str]:
    return [_require(inputs, "script", "shell")]

@register_action("sync")
def sync_action(inputs: Dict[str, Any]) -> List[str]:
    """Mirror a directory to a target. `delete` removes files missing from source."""
    source = _require(inputs, "source", "sync").rstrip("/") + "/"
    target = _require(inputs, "target", "sync")

    args = ["rsync", "-a"]
    if _flag(inputs, "delete"):
        args.append("--delete")
    if _flag(inputs, "dry_run"):
        args.extend(["--dry-run", "--itemize-changes"])
    args.extend([source, target])
    return [" ".join(shlex.quote(a) for a in args)]

@register_action("archive")
def archive_action(inputs: Dict[str, Any]) -> List[str]:
    source = _require(inputs, "source", "archive")
    output = _require(inputs, "output", "archive")
    return [f"tar -czf {shlex.quote(output)} -C {shlex.quote(source)} ."]

def render_action(name: str, inputs: Dict[str, Any]) -> List[str]:
    try:
        renderer = _ACTIONS[name]
    except KeyError:
        raise PipelineConfigError(
            f"Unknown action '{name}' (available: {', '.join(available_actions())})"
        )
    return renderer(inputs or {})
