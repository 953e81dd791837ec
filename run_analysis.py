"""
Command-line entry point for RentalSaber.
Runs the deterministic KPIs, a grid optimization, a Monte Carlo run, a
tornado and heatmap sensitivity and a multi-year projection on the reference
project and prints the results.
"""

import argparse
import dataclasses
import logging

import pandas as pd

# --- Basic Configuration ---
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')
logger = logging.getLogger(__name__)

from rentalsaber.core.constants import (
    KPI_KEYS, KPI_LABELS, PARAMETER_LABELS, OBJECTIVE_MAXIMIZE, OPERATOR_GREATER_EQUAL,
    DEFAULT_NUM_SIMULATIONS, DEFAULT_MAX_ITERATIONS, DEFAULT_SENSITIVITY_STEPS_2D, DEFAULT_PROJECTION_YEARS,
)
from rentalsaber.core.inputs import default_project_inputs
from rentalsaber.core.validation import validate_inputs
from rentalsaber.core.calculations import calculate_kpis
from rentalsaber.core.optimizer import (
    OptimizationConfig, OptimizationVariable, OptimizationConstraint, run_optimization,
)
from rentalsaber.core.montecarlo import MonteCarloConfig, run_monte_carlo
from rentalsaber.core.sensitivity import ParameterRange, run_sensitivity_1d, run_sensitivity_2d
from rentalsaber.core.paths import get_value_by_path
from rentalsaber.core.projections import calculate_projections


def _parse_args():
    parser = argparse.ArgumentParser(description="What-if analysis of the reference rental project.")
    parser.add_argument("--objective", default="total_roi", choices=KPI_KEYS, help="KPI to optimize and simulate.")
    parser.add_argument("--simulations", type=int, default=DEFAULT_NUM_SIMULATIONS)
    parser.add_argument("--max-iterations", type=int, default=DEFAULT_MAX_ITERATIONS)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--n-jobs", type=int, default=1)
    parser.add_argument("--years", type=int, default=DEFAULT_PROJECTION_YEARS, help="Projection horizon in years.")
    return parser.parse_args()


def main():
    args = _parse_args()
    pd.set_option("display.width", 160)
    inputs = validate_inputs(default_project_inputs())
    logger.info(f"Analysing '{inputs.name}' on objective '{args.objective}'.")

    kpis = calculate_kpis(inputs)
    print("\n=== Deterministic KPIs ===")
    print(pd.Series({KPI_LABELS.get(k, k): v for k, v in kpis.metrics().items()}).to_string())

    variables = [
        OptimizationVariable("revenue.average_daily_rate", 150.0, 300.0),
        OptimizationVariable("revenue.occupancy_rate", 50.0, 90.0),
        OptimizationVariable("financing.purchase_price", 500_000.0, 600_000.0),
    ]
    opt_config = OptimizationConfig(
        target_metric=args.objective,
        objective=OBJECTIVE_MAXIMIZE,
        variables=variables,
        constraints=[OptimizationConstraint("annual_cashflow", OPERATOR_GREATER_EQUAL, 0.0)],
        max_iterations=args.max_iterations,
        n_jobs=args.n_jobs,
    )
    opt_result = run_optimization(inputs, opt_config)
    print(f"\n=== Top solutions ({opt_result.iterations} points evaluated) ===")
    print(opt_result.to_frame().to_string(index=False))

    mc_result = run_monte_carlo(
        inputs, MonteCarloConfig(objective=args.objective, iterations=args.simulations, seed=args.seed, n_jobs=args.n_jobs)
    )
    print(f"\n=== Monte Carlo on {args.objective} ({len(mc_result.parameters)} ranged parameters) ===")
    print(mc_result.to_series().describe(percentiles=[0.1, 0.5, 0.9]).to_string())

    parameters = []
    for param in mc_result.parameters:
        parameters.append(ParameterRange(
            path=param.path,
            label=PARAMETER_LABELS.get(param.path, param.label),
            min=param.min,
            base=get_value_by_path(inputs, param.path, strict=True),
            max=param.max,
        ))
    sensitivity = run_sensitivity_1d(inputs, parameters, args.objective)
    print(f"\n=== Sensitivity of {args.objective} ===")
    print(sensitivity.to_frame().to_string(index=False))

    if len(parameters) >= 2:
        x, y = (dataclasses.replace(p, steps=DEFAULT_SENSITIVITY_STEPS_2D) for p in parameters[:2])
        heatmap = run_sensitivity_2d(inputs, x, y, args.objective)
        print(f"\n=== {args.objective} by {x.label} (columns) and {y.label} (rows) ===")
        print(heatmap.to_frame().round(2).to_string())

    projection = calculate_projections(inputs, args.years)
    print(f"\n=== Projection over {args.years} years (IRR {projection.irr:.2f}%, NPV {projection.npv:,.2f}) ===")
    print(projection.to_frame()[["revenue", "expenses", "noi", "debt_service", "cashflow", "mortgage_balance", "equity", "roi_total"]].to_string())
    print(projection.exit_frame().to_string())


if __name__ == "__main__":
    main()
