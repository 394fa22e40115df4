"""
Trigger evaluation: decides whether an event starts a run.
"""

from fnmatch import fnmatchcase
from typing import Optional

from controller.src.models.run import Event
from controller.src.models.step import MatchPolicy, TriggerRule

def _matches(branch: str, pattern: str, policy: MatchPolicy) -> bool:
    if policy == MatchPolicy.EXACT:
        return branch == pattern
    if policy == MatchPolicy.PREFIX:
        return branch.startswith(pattern)
    return fnmatchcase(branch, pattern)

def match_pattern(event: Event, rule: TriggerRule) -> Optional[str]:
    """Return the first branch pattern that matches the event, or None."""
    if event.ref_type not in rule.ref_types:
        return None
    if not event.branch:
        return None

    for pattern in rule.branches:
        if _matches(event.branch, pattern, rule.match):
            return pattern
    return None

def evaluate(event: Event, rule: TriggerRule) -> bool:
    """Default deny: an event matches only if some declared pattern allows it."""
    return match_pattern(event, rule) is not None
