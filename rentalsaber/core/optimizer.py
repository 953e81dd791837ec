# rentalsaber/core/optimizer.py
"""
Brute-force grid search over parameter paths.

run_optimization() builds an evenly spaced grid per unlocked variable,
enumerates the cartesian product (capped at max_iterations), evaluates
every point with calculate_kpis(), checks the constraints and ranks
feasible solutions ahead of infeasible ones.
"""

import math
import time
import logging
from dataclasses import dataclass, field
from datetime import datetime
from itertools import islice, product
from typing import List, Dict, Any, Optional

import pandas as pd
from joblib import Parallel, delayed

from .constants import (
    OBJECTIVE_MAXIMIZE, OBJECTIVES, CONSTRAINT_OPERATORS,
    OPERATOR_GREATER_EQUAL, OPERATOR_LESS_EQUAL, OPERATOR_EQUAL,
    DEFAULT_MAX_ITERATIONS, MAX_OPTIMIZATION_ITERATIONS, DEFAULT_TOP_K,
    MIN_POINTS_PER_VARIABLE, EQUALITY_TOLERANCE, FLOAT_ATOL,
)
from .inputs import ProjectInputs
from .paths import get_value_by_path, apply_values, parse_path
from .calculations import KPIResults, calculate_kpis, validate_metric_name
from .utils import engine_error_handler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizationVariable:
    path: str
    min: float
    max: float
    step: Optional[float] = None # Explicit grid spacing; evenly spaced points when None
    locked: bool = False
    label: Optional[str] = None


@dataclass(frozen=True)
class OptimizationConstraint:
    metric: str
    operator: str # '>=', '<=' or '='
    value: float


@dataclass
class OptimizationConfig:
    target_metric: str
    objective: str = OBJECTIVE_MAXIMIZE
    variables: List[OptimizationVariable] = field(default_factory=list)
    constraints: List[OptimizationConstraint] = field(default_factory=list)
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    top_k: int = DEFAULT_TOP_K
    n_jobs: int = 1 # joblib workers used to evaluate grid points
    id: Optional[str] = None


@dataclass
class OptimizationSolution:
    rank: int
    values: Dict[str, float]
    kpis: KPIResults
    objective_value: float
    feasible: bool


@dataclass
class OptimizationResult:
    solutions: List[OptimizationSolution]
    iterations: int
    duration: float # seconds
    config_id: Optional[str] = None
    completed_at: datetime = field(default_factory=datetime.now)

    def to_frame(self) -> pd.DataFrame:
        """One row per returned solution: rank, feasibility, objective and the variable values."""
        rows = [
            {"rank": s.rank, "feasible": s.feasible, "objective_value": s.objective_value, **s.values}
            for s in self.solutions
        ]
        return pd.DataFrame(rows)


def _validate_config(config: OptimizationConfig) -> None:
    validate_metric_name(config.target_metric)
    if config.objective not in OBJECTIVES:
        raise ValueError(f"Unknown objective '{config.objective}'. Expected one of: {', '.join(OBJECTIVES)}")
    for constraint in config.constraints:
        validate_metric_name(constraint.metric)
        if constraint.operator not in CONSTRAINT_OPERATORS:
            raise ValueError(f"Unknown constraint operator '{constraint.operator}'")
    for variable in config.variables:
        parse_path(variable.path)
        if variable.min > variable.max:
            raise ValueError(f"Variable '{variable.path}': min ({variable.min}) is greater than max ({variable.max})")
        if variable.step is not None and variable.step <= 0:
            raise ValueError(f"Variable '{variable.path}': step must be positive, got {variable.step}")
    if config.max_iterations < 1:
        raise ValueError(f"max_iterations must be at least 1, got {config.max_iterations}")
    if config.max_iterations > MAX_OPTIMIZATION_ITERATIONS:
        logger.warning(f"max_iterations={config.max_iterations} exceeds the recommended ceiling of {MAX_OPTIMIZATION_ITERATIONS}.")


def check_constraints(kpis: KPIResults, constraints: List[OptimizationConstraint]) -> bool:
    """True when every constraint holds ('=' uses an absolute tolerance of 0.01)."""
    for constraint in constraints:
        value = kpis.get(constraint.metric)
        if constraint.operator == OPERATOR_GREATER_EQUAL:
            ok = value >= constraint.value
        elif constraint.operator == OPERATOR_LESS_EQUAL:
            ok = value <= constraint.value
        elif constraint.operator == OPERATOR_EQUAL:
            ok = abs(value - constraint.value) < EQUALITY_TOLERANCE
        else:
            raise ValueError(f"Unknown constraint operator '{constraint.operator}'")
        if not ok:
            return False
    return True


def points_per_variable(max_iterations: int, n_variables: int) -> int:
    """floor(max_iterations ** (1/n)), at least 2."""
    raw = max_iterations ** (1.0 / n_variables)
    return max(MIN_POINTS_PER_VARIABLE, int(math.floor(raw + FLOAT_ATOL)))


def build_grid(variable: OptimizationVariable, n_points: int) -> List[float]:
    """
    Grid of trial values for one variable.

    Uses the variable's step when given, otherwise n_points evenly spaced
    values. Never more than n_points from the stepping, and max is always the
    last point.
    """
    span = variable.max - variable.min
    if span <= FLOAT_ATOL:
        return [variable.min]
    step = variable.step if variable.step else span / (n_points - 1)
    n_steps = int(math.floor(span / step + FLOAT_ATOL)) + 1

    points = [min(variable.min + step * i, variable.max) for i in range(min(n_steps, n_points))]
    if abs(points[-1] - variable.max) <= FLOAT_ATOL * max(1.0, abs(variable.max)):
        points[-1] = variable.max
    else:
        points.append(variable.max)
    return points


def _evaluate_point(base_inputs: ProjectInputs, values: Dict[str, float], config: OptimizationConfig) -> OptimizationSolution:
    kpis = calculate_kpis(apply_values(base_inputs, values))
    return OptimizationSolution(
        rank=0,
        values=values,
        kpis=kpis,
        objective_value=kpis.get(config.target_metric),
        feasible=check_constraints(kpis, config.constraints),
    )


def rank_solutions(solutions: List[OptimizationSolution], objective: str) -> List[OptimizationSolution]:
    """Feasible first, then by objective value (descending for MAXIMIZE). Assigns 1-based ranks."""
    sign = -1.0 if objective == OBJECTIVE_MAXIMIZE else 1.0
    ranked = sorted(solutions, key=lambda s: (not s.feasible, sign * s.objective_value))
    for i, solution in enumerate(ranked):
        solution.rank = i + 1
    return ranked


@engine_error_handler
def run_optimization(base_inputs: ProjectInputs, config: OptimizationConfig) -> OptimizationResult:
    """
    Searches the grid defined by config's unlocked variables.

    Args:
        base_inputs: Baseline tree. Never modified; each point is applied to it independently.
        config: Target metric, objective, variables, constraints and limits.

    Returns:
        OptimizationResult with the top_k ranked solutions and the number of points evaluated.
    """
    start_time = time.time()
    _validate_config(config)
    active = [v for v in config.variables if not v.locked]

    if not active:
        logger.info("No unlocked variables. Evaluating the base inputs only.")
        solution = _evaluate_point(base_inputs, {}, config)
        solution.rank = 1
        return OptimizationResult(
            solutions=[solution],
            iterations=1,
            duration=time.time() - start_time,
            config_id=config.id,
        )

    n_points = points_per_variable(config.max_iterations, len(active))
    grids = [build_grid(v, n_points) for v in active]
    grid_size = math.prod(len(g) for g in grids)
    logger.info(
        f"Starting optimization: {len(active)} variable(s), {n_points} points per variable, "
        f"grid size {grid_size}, cap {config.max_iterations}."
    )
    if grid_size > config.max_iterations:
        logger.info(f"Grid truncated to the first {config.max_iterations} points.")

    # Depth-first over variables in listed order: the last variable varies fastest.
    points = [
        {v.path: value for v, value in zip(active, combination)}
        for combination in islice(product(*grids), config.max_iterations)
    ]

    if config.n_jobs == 1:
        solutions = [_evaluate_point(base_inputs, values, config) for values in points]
    else:
        with Parallel(n_jobs=config.n_jobs, backend="loky") as parallel:
            solutions = parallel(delayed(_evaluate_point)(base_inputs, values, config) for values in points)

    ranked = rank_solutions(list(solutions), config.objective)
    feasible_count = sum(1 for s in ranked if s.feasible)
    duration = time.time() - start_time
    logger.info(f"Optimization finished. Evaluated: {len(ranked)}, feasible: {feasible_count}. Time: {duration:.2f}s.")

    return OptimizationResult(
        solutions=ranked[:config.top_k],
        iterations=len(ranked),
        duration=duration,
        config_id=config.id,
    )


def create_inputs_from_solution(base_inputs: ProjectInputs, solution: OptimizationSolution) -> ProjectInputs:
    """Applies a solution's variable values to a base tree."""
    return apply_values(base_inputs, solution.values)


# --- Manual exploration ---

@dataclass
class ManualExplorationState:
    current_values: Dict[str, float]
    kpis: KPIResults
    history: List[Dict[str, Any]] = field(default_factory=list)


def initialize_manual_exploration(base_inputs: ProjectInputs, variables: List[OptimizationVariable]) -> ManualExplorationState:
    """Starts an exploration from the variables' current effective values."""
    current_values = {v.path: get_value_by_path(base_inputs, v.path, strict=True) for v in variables}
    kpis = calculate_kpis(base_inputs)
    return ManualExplorationState(
        current_values=current_values,
        kpis=kpis,
        history=[{"values": dict(current_values), "kpis": kpis, "timestamp": datetime.now()}],
    )


def update_manual_exploration(base_inputs: ProjectInputs, state: ManualExplorationState,
                              path: str, new_value: float) -> ManualExplorationState:
    """Changes one variable, recomputes the KPIs and appends the step to the history."""
    new_values = {**state.current_values, path: new_value}
    kpis = calculate_kpis(apply_values(base_inputs, new_values))
    return ManualExplorationState(
        current_values=new_values,
        kpis=kpis,
        history=state.history + [{"values": dict(new_values), "kpis": kpis, "timestamp": datetime.now()}],
    )
