# rentalsaber/core/montecarlo.py
"""
Monte Carlo analysis over every range-enabled input.

- extract_range_parameters: finds the inputs whose range is enabled.
- BoxMullerSampler: normal draws with the second Box-Muller output cached.
  One sampler belongs to one run (or one chunk of a parallel run).
- run_monte_carlo: samples every parameter per trial, writes it through
  the path addressor, computes the KPIs and aggregates the objective.
"""

import math
import time
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed, effective_n_jobs

from .constants import PARAMETER_LABELS, SIGMA_SPAN, P10, P90, DEFAULT_NUM_SIMULATIONS
from .inputs import ProjectInputs, iter_inputs
from .paths import set_value_by_path
from .calculations import calculate_kpis, validate_metric_name
from .utils import engine_error_handler, percentile_at, median_of_sorted

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RangeParameter:
    path: str
    label: str
    min: float
    max: float
    default: float


@dataclass
class MonteCarloConfig:
    objective: str
    iterations: int = DEFAULT_NUM_SIMULATIONS
    seed: Optional[int] = None # Reproducible runs when set
    n_jobs: int = 1


@dataclass(frozen=True)
class MonteCarloStatistics:
    mean: float
    median: float # P50
    std_dev: float # Population standard deviation
    p10: float
    p90: float
    min: float
    max: float


@dataclass
class MonteCarloResult:
    objective: str
    samples: List[float]
    statistics: MonteCarloStatistics
    parameters: List[RangeParameter] = field(default_factory=list)
    duration: float = 0.0 # seconds

    @property
    def is_degenerate(self) -> bool:
        """True when the distribution has no spread (e.g. no range-enabled inputs)."""
        return self.statistics.min == self.statistics.max

    def to_series(self) -> pd.Series:
        return pd.Series(self.samples, name=self.objective)


class BoxMullerSampler:
    """
    Standard normal generator using the Box-Muller transform.

    Each transform yields two independent draws; the second is cached and
    returned by the next call.
    """

    def __init__(self, rng: Optional[np.random.Generator] = None, seed=None):
        self._rng = rng if rng is not None else np.random.default_rng(seed)
        self._cached_z: Optional[float] = None

    def standard_normal(self) -> float:
        if self._cached_z is not None:
            z = self._cached_z
            self._cached_z = None
            return z
        u1 = 1.0 - self._rng.random() # (0, 1], keeps log() finite
        u2 = self._rng.random()
        radius = math.sqrt(-2.0 * math.log(u1))
        z0 = radius * math.cos(2.0 * math.pi * u2)
        self._cached_z = radius * math.sin(2.0 * math.pi * u2)
        return z0


def sample_normal_distribution(sampler: BoxMullerSampler, mean: float, minimum: float, maximum: float) -> float:
    """
    Draws from N(mean, ((max - min) / 6)^2) and clamps the draw to [min, max].
    Out-of-range draws are truncated, not redrawn.
    """
    std_dev = (maximum - minimum) / SIGMA_SPAN
    value = mean + sampler.standard_normal() * std_dev
    return max(minimum, min(maximum, value))


def extract_range_parameters(inputs: ProjectInputs) -> List[RangeParameter]:
    """
    Lists every input whose range is enabled.

    Record fields are walked generically. Expense lines are added afterwards
    as expenses[i].amount, labelled with the expense name.
    """
    parameters = [
        RangeParameter(
            path=path,
            label=PARAMETER_LABELS.get(path, path),
            min=node.range.min,
            max=node.range.max,
            default=node.range.default,
        )
        for path, node in iter_inputs(inputs)
        if node.range_enabled
    ]
    for i, line in enumerate(inputs.expenses):
        if line.amount.range_enabled:
            parameters.append(RangeParameter(
                path=f"expenses[{i}].amount",
                label=line.name,
                min=line.amount.range.min,
                max=line.amount.range.max,
                default=line.amount.range.default,
            ))
    return parameters


def calculate_statistics(samples: List[float]) -> MonteCarloStatistics:
    """
    Mean, median, population std dev, P10, P90, min and max.
    Percentiles take index floor(n * p) of the sorted samples.
    """
    if not samples:
        raise ValueError("Cannot compute statistics of an empty sample.")
    sorted_samples = np.sort(np.asarray(samples, dtype=float))
    lowest, highest = float(sorted_samples[0]), float(sorted_samples[-1])

    if lowest == highest:
        logger.warning(f"All {len(samples)} samples equal {lowest}. Distribution has no spread.")
        mean, std_dev = lowest, 0.0
    else:
        mean = float(np.mean(sorted_samples))
        std_dev = float(np.std(sorted_samples))

    return MonteCarloStatistics(
        mean=mean,
        median=median_of_sorted(sorted_samples),
        std_dev=std_dev,
        p10=percentile_at(sorted_samples, P10),
        p90=percentile_at(sorted_samples, P90),
        min=lowest,
        max=highest,
    )


def _run_chunk(base_inputs: ProjectInputs, parameters: List[RangeParameter], objective: str,
               iterations: int, seed_sequence: np.random.SeedSequence) -> List[float]:
    """Runs a block of trials with its own sampler."""
    sampler = BoxMullerSampler(np.random.default_rng(seed_sequence))
    samples = []
    for _ in range(iterations):
        trial_inputs = base_inputs
        for param in parameters:
            value = sample_normal_distribution(sampler, param.default, param.min, param.max)
            trial_inputs = set_value_by_path(trial_inputs, param.path, value)
        samples.append(calculate_kpis(trial_inputs).get(objective))
    return samples


def _split(total: int, parts: int) -> List[int]:
    """Chunk sizes differing by at most one; empty chunks are dropped."""
    base, extra = divmod(total, parts)
    sizes = [base + 1 if i < extra else base for i in range(parts)]
    return [s for s in sizes if s > 0]


@engine_error_handler
def run_monte_carlo(base_inputs: ProjectInputs, config: MonteCarloConfig) -> MonteCarloResult:
    """
    Samples every range-enabled input and aggregates the objective KPI.

    Args:
        base_inputs: Baseline tree. Each trial applies its draws to it independently.
        config: Objective KPI, number of iterations, optional seed and worker count.

    Returns:
        MonteCarloResult with the raw samples, statistics and the sampled parameters.
    """
    start_time = time.time()
    validate_metric_name(config.objective)
    if config.iterations < 1:
        raise ValueError(f"iterations must be at least 1, got {config.iterations}")

    parameters = extract_range_parameters(base_inputs)
    logger.info(f"Starting Monte Carlo: {config.iterations} iterations over {len(parameters)} ranged parameter(s), objective '{config.objective}'.")
    if not parameters:
        logger.warning("No range-enabled parameters. Every sample will equal the deterministic result.")

    root_seed = np.random.SeedSequence(config.seed)
    if config.n_jobs == 1:
        samples = _run_chunk(base_inputs, parameters, config.objective, config.iterations, root_seed)
    else:
        chunk_sizes = _split(config.iterations, effective_n_jobs(config.n_jobs))
        child_seeds = root_seed.spawn(len(chunk_sizes))
        logger.info(f"Starting parallel execution: {len(chunk_sizes)} chunks...")
        with Parallel(n_jobs=config.n_jobs, backend="loky") as parallel:
            chunks = parallel(
                delayed(_run_chunk)(base_inputs, parameters, config.objective, size, seed)
                for size, seed in zip(chunk_sizes, child_seeds)
            )
        samples = [s for chunk in chunks for s in chunk]

    statistics = calculate_statistics(samples)
    duration = time.time() - start_time
    logger.info(
        f"Monte Carlo finished. mean={statistics.mean:.2f}, p10={statistics.p10:.2f}, "
        f"p90={statistics.p90:.2f}, std={statistics.std_dev:.2f}. Time: {duration:.2f}s."
    )
    return MonteCarloResult(
        objective=config.objective,
        samples=samples,
        statistics=statistics,
        parameters=parameters,
        duration=duration,
    )
