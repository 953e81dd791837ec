# rentalsaber/core/sensitivity.py
"""
One- and two-parameter sensitivity sweeps.

A 1D sweep moves one parameter across its range with everything else held at
the base tree and reports how far the objective moves at the extremes
(tornado data). A 2D sweep evaluates the objective over a grid of two
parameters (heatmap data).
"""

import time
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from .constants import DEFAULT_SENSITIVITY_STEPS_1D, MAX_SENSITIVITY_STEPS
from .inputs import ProjectInputs
from .paths import set_value_by_path, parse_path
from .calculations import calculate_kpis, validate_metric_name
from .utils import engine_error_handler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParameterRange:
    path: str
    label: str
    min: float
    base: float # Reference point of the tornado bars
    max: float
    steps: int = DEFAULT_SENSITIVITY_STEPS_1D # Intervals; the sweep has steps + 1 points


@dataclass(frozen=True)
class SensitivityImpact:
    path: str
    label: str
    impact_low: float # objective(min) - reference_value
    impact_high: float # objective(max) - reference_value
    relative_impact: float # max(|impact_low|, |impact_high|)
    critical_point: Optional[float] = None # Parameter value where the objective crosses zero
    reference_value: float = 0.0 # Objective with the parameter at its base value


@dataclass
class SensitivitySweep:
    path: str
    parameter_values: List[float]
    objective_values: List[float]


@dataclass
class Sensitivity1DResult:
    objective: str
    base_value: float
    impacts: List[SensitivityImpact]
    sweeps: List[SensitivitySweep] = field(default_factory=list)

    def to_frame(self) -> pd.DataFrame:
        """Tornado table, one row per parameter in impact order."""
        return pd.DataFrame([
            {
                "path": i.path,
                "label": i.label,
                "impact_low": i.impact_low,
                "impact_high": i.impact_high,
                "relative_impact": i.relative_impact,
                "critical_point": i.critical_point,
                "reference_value": i.reference_value,
            }
            for i in self.impacts
        ])


@dataclass
class Sensitivity2DResult:
    objective: str
    x_path: str
    y_path: str
    x_values: List[float]
    y_values: List[float]
    grid: List[List[float]] # grid[j][i] = objective at (x_values[i], y_values[j])

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.grid,
            index=pd.Index(self.y_values, name=self.y_path),
            columns=pd.Index(self.x_values, name=self.x_path),
        )


def _check_parameter(param: ParameterRange) -> None:
    parse_path(param.path)
    if param.min > param.max:
        raise ValueError(f"Parameter '{param.path}': min ({param.min}) is greater than max ({param.max})")
    if not param.min <= param.base <= param.max:
        raise ValueError(f"Parameter '{param.path}': base ({param.base}) lies outside [{param.min}, {param.max}]")
    if not 1 <= param.steps <= MAX_SENSITIVITY_STEPS:
        raise ValueError(f"Parameter '{param.path}': steps must be between 1 and {MAX_SENSITIVITY_STEPS}, got {param.steps}")


def sweep_values(param: ParameterRange) -> List[float]:
    """steps + 1 evenly spaced values from min to max inclusive."""
    return [param.min + (param.max - param.min) * i / param.steps for i in range(param.steps + 1)]


def _objective_at(base_inputs: ProjectInputs, objective: str, *writes: Tuple[str, float]) -> float:
    inputs = base_inputs
    for path, value in writes:
        inputs = set_value_by_path(inputs, path, value)
    return calculate_kpis(inputs).get(objective)


def find_critical_point(parameter_values: List[float], objective_values: List[float]) -> Optional[float]:
    """
    First parameter value at which the objective reaches zero, by linear
    interpolation between consecutive sweep points. None if it never crosses.
    """
    for (x0, y0), (x1, y1) in zip(zip(parameter_values, objective_values),
                                  zip(parameter_values[1:], objective_values[1:])):
        if y0 == 0:
            return x0
        if y0 * y1 < 0:
            return x0 + (x1 - x0) * (-y0) / (y1 - y0)
    if objective_values and objective_values[-1] == 0:
        return parameter_values[-1]
    return None


@engine_error_handler
def run_sensitivity_1d(base_inputs: ProjectInputs, parameters: List[ParameterRange],
                       objective: str) -> Sensitivity1DResult:
    """
    Tornado analysis: one independent sweep per parameter.

    Impacts are measured from the objective with the parameter set to its
    base value, so a parameter can be centred away from the tree's current value.

    Args:
        base_inputs: Baseline tree; every sweep starts from it.
        parameters: Parameters to move, each with its own range, base value and step count.
        objective: KPI name to observe.

    Returns:
        Sensitivity1DResult with impacts sorted by decreasing relative impact
        and the full sweep of each parameter.
    """
    start_time = time.time()
    validate_metric_name(objective)
    for param in parameters:
        _check_parameter(param)

    base_value = calculate_kpis(base_inputs).get(objective)
    impacts, sweeps = [], []
    for param in parameters:
        xs = sweep_values(param)
        ys = [_objective_at(base_inputs, objective, (param.path, x)) for x in xs]
        sweeps.append(SensitivitySweep(path=param.path, parameter_values=xs, objective_values=ys))
        reference = _objective_at(base_inputs, objective, (param.path, param.base))

        # First and last sweep points are exactly min and max.
        impact_low = ys[0] - reference
        impact_high = ys[-1] - reference
        impacts.append(SensitivityImpact(
            path=param.path,
            label=param.label,
            impact_low=impact_low,
            impact_high=impact_high,
            relative_impact=max(abs(impact_low), abs(impact_high)),
            critical_point=find_critical_point(xs, ys),
            reference_value=reference,
        ))
        logger.debug(f"Sensitivity '{param.path}': low={impact_low:.2f}, high={impact_high:.2f}")

    impacts.sort(key=lambda i: i.relative_impact, reverse=True)
    logger.info(f"1D sensitivity on '{objective}' finished: {len(parameters)} parameter(s). Time: {time.time() - start_time:.2f}s.")
    return Sensitivity1DResult(objective=objective, base_value=base_value, impacts=impacts, sweeps=sweeps)


@engine_error_handler
def run_sensitivity_2d(base_inputs: ProjectInputs, parameter_x: ParameterRange, parameter_y: ParameterRange,
                       objective: str) -> Sensitivity2DResult:
    """Heatmap analysis: objective over the grid of two parameters' sweep values."""
    start_time = time.time()
    validate_metric_name(objective)
    _check_parameter(parameter_x)
    _check_parameter(parameter_y)

    x_values = sweep_values(parameter_x)
    y_values = sweep_values(parameter_y)
    grid = np.empty((len(y_values), len(x_values)))
    for j, y in enumerate(y_values):
        for i, x in enumerate(x_values):
            grid[j, i] = _objective_at(base_inputs, objective, (parameter_x.path, x), (parameter_y.path, y))

    logger.info(
        f"2D sensitivity on '{objective}' finished: {len(x_values)}x{len(y_values)} grid. "
        f"Time: {time.time() - start_time:.2f}s."
    )
    return Sensitivity2DResult(
        objective=objective,
        x_path=parameter_x.path,
        y_path=parameter_y.path,
        x_values=x_values,
        y_values=y_values,
        grid=grid.tolist(),
    )
