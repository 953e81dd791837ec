# rentalsaber/scenarios/scenario_manager.py
"""
Scenarios are named overlays on a base project: a nested dict holding only
the fields that differ. Resolving a scenario merges its overlay onto the
base tree's dict form and rebuilds a ProjectInputs.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List

from ..core.inputs import ProjectInputs, to_dict, from_dict
from ..core.validation import validate_inputs

logger = logging.getLogger(__name__)


@dataclass
class Scenario:
    id: str
    name: str
    description: str = ""
    is_base: bool = False
    overrides: Dict[str, Any] = field(default_factory=dict) # Nested overlay on the base project's dict


def deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """
    Returns a new dict with overlay merged onto base.
    Nested dicts merge key by key; lists and leaves in the overlay replace the base's.
    """
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def resolve_scenario_inputs(base_inputs: ProjectInputs, scenario: Scenario) -> ProjectInputs:
    """
    Builds the full inputs of a scenario.

    Args:
        base_inputs: The project's base tree.
        scenario: The scenario to resolve. A base scenario returns base_inputs as is.

    Returns:
        A validated ProjectInputs with the overlay applied.
    """
    if scenario.is_base or not scenario.overrides:
        return base_inputs
    merged = deep_merge(to_dict(base_inputs), scenario.overrides)
    resolved = validate_inputs(from_dict(merged))
    logger.info(f"Resolved scenario '{scenario.name}' ({len(scenario.overrides)} top-level override(s)).")
    return resolved


_UNCHANGED = object()


def _diff(base: Any, other: Any) -> Any:
    if isinstance(base, dict) and isinstance(other, dict):
        overlay = {}
        for key, value in other.items():
            if key not in base:
                overlay[key] = copy.deepcopy(value)
                continue
            child = _diff(base[key], value)
            if child is not _UNCHANGED:
                overlay[key] = child
        return overlay or _UNCHANGED
    return _UNCHANGED if base == other else copy.deepcopy(other)


def diff_inputs(base_inputs: ProjectInputs, other: ProjectInputs) -> Dict[str, Any]:
    """Minimal overlay such that resolving it against base_inputs reproduces other."""
    overlay = _diff(to_dict(base_inputs), to_dict(other))
    return {} if overlay is _UNCHANGED else overlay


def create_scenario(base_inputs: ProjectInputs, modified: ProjectInputs, scenario_id: str,
                    name: str, description: str = "") -> Scenario:
    """Captures modified as a scenario overlay on base_inputs."""
    return Scenario(
        id=scenario_id,
        name=name,
        description=description,
        overrides=diff_inputs(base_inputs, modified),
    )


def list_scenario_names(scenarios: List[Scenario]) -> List[str]:
    """Scenario names with the base scenario first."""
    return [s.name for s in sorted(scenarios, key=lambda s: not s.is_base)]
