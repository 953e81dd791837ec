import sys

import run_analysis
from rentalsaber.core.calculations import calculate_kpis
from rentalsaber.core.inputs import default_project_inputs
from rentalsaber.core.montecarlo import MonteCarloConfig, run_monte_carlo
from rentalsaber.core.optimizer import (
    OptimizationConfig, OptimizationConstraint, OptimizationVariable, create_inputs_from_solution, run_optimization,
)
from rentalsaber.core.sensitivity import ParameterRange, run_sensitivity_1d
from rentalsaber.core.validation import validate_inputs
from rentalsaber.scenarios.scenario_manager import create_scenario, resolve_scenario_inputs


def test_optimized_solution_becomes_scenario():
    base = validate_inputs(default_project_inputs())
    config = OptimizationConfig(
        target_metric="total_roi",
        variables=[
            OptimizationVariable("revenue.average_daily_rate", 150.0, 300.0),
            OptimizationVariable("financing.interest_rate", 4.5, 7.0),
        ],
        constraints=[OptimizationConstraint("cash_on_cash", ">=", 10.0)],
        max_iterations=25,
    )
    result = run_optimization(base, config)
    best = result.solutions[0]
    assert best.feasible
    assert best.values == {"revenue.average_daily_rate": 300.0, "financing.interest_rate": 4.5}

    optimized = create_inputs_from_solution(base, best)
    scenario = create_scenario(base, optimized, "best", "Best total ROI")
    resolved = resolve_scenario_inputs(base, scenario)
    assert resolved == optimized
    assert calculate_kpis(resolved).total_roi == best.objective_value


def test_monte_carlo_centres_on_deterministic_result():
    base = default_project_inputs()
    deterministic = calculate_kpis(base).annual_revenue
    result = run_monte_carlo(base, MonteCarloConfig("annual_revenue", iterations=2_000, seed=99))
    stats = result.statistics
    assert stats.p10 < deterministic < stats.p90
    assert abs(stats.median - deterministic) / deterministic < 0.05
    # ADR and occupancy bounds
    assert stats.min >= 150.0 * 182.5
    assert stats.max <= 300.0 * 328.5


def test_sensitivity_ranks_purchase_price_for_cap_rate():
    base = default_project_inputs()
    parameters = [
        ParameterRange("financing.interest_rate", "Interest rate", 4.5, 5.5, 7.0),
        ParameterRange("financing.purchase_price", "Purchase price", 500_000.0, 550_000.0, 600_000.0),
    ]
    result = run_sensitivity_1d(base, parameters, "cap_rate")
    assert result.impacts[0].path == "financing.purchase_price"
    # Cap rate excludes debt service
    assert result.impacts[1].relative_impact == 0.0


def test_command_line_run(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["run_analysis", "--simulations", "20", "--max-iterations", "8", "--seed", "1"])
    run_analysis.main()
    out = capsys.readouterr().out
    assert "Deterministic KPIs" in out
    assert "Top solutions (8 points evaluated)" in out
    assert "Monte Carlo on total_roi" in out
    assert "Sensitivity of total_roi" in out
    assert "Projection over 10 years" in out
