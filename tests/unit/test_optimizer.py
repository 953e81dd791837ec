import pytest

from rentalsaber.core.calculations import calculate_kpis
from rentalsaber.core.inputs import default_project_inputs
from rentalsaber.core.paths import get_value_by_path
from rentalsaber.core.optimizer import (
    OptimizationConfig, OptimizationConstraint, OptimizationSolution, OptimizationVariable,
    build_grid, check_constraints, create_inputs_from_solution, initialize_manual_exploration,
    points_per_variable, rank_solutions, run_optimization, update_manual_exploration,
)


@pytest.mark.parametrize("max_iterations, n_variables, expected", [
    (10_000, 1, 10_000),
    (10_000, 2, 100),
    (1_000, 3, 10),
    (10_000, 4, 10),
    (3, 2, 2),
    (1, 5, 2),
])
def test_points_per_variable(max_iterations, n_variables, expected):
    assert points_per_variable(max_iterations, n_variables) == expected


def test_build_grid_even_spacing():
    assert build_grid(OptimizationVariable("x", 0.0, 100.0), 5) == [0.0, 25.0, 50.0, 75.0, 100.0]


def test_build_grid_with_step_always_ends_on_max():
    assert build_grid(OptimizationVariable("x", 0.0, 10.0, step=3.0), 10) == [0.0, 3.0, 6.0, 9.0, 10.0]


def test_build_grid_step_capped_by_points():
    grid = build_grid(OptimizationVariable("x", 0.0, 100.0, step=1.0), 4)
    assert grid == [0.0, 1.0, 2.0, 3.0, 100.0]


def test_build_grid_degenerate_range():
    assert build_grid(OptimizationVariable("x", 5.0, 5.0), 10) == [5.0]


def test_check_constraints_operators():
    kpis = calculate_kpis(default_project_inputs())
    assert check_constraints(kpis, [OptimizationConstraint("cap_rate", ">=", 7.0)])
    assert not check_constraints(kpis, [OptimizationConstraint("cap_rate", "<=", 7.0)])
    assert check_constraints(kpis, [OptimizationConstraint("cap_rate", "=", 7.005)])
    assert not check_constraints(kpis, [OptimizationConstraint("cap_rate", "=", 7.03)])
    assert check_constraints(kpis, [])


def test_rank_solutions_feasible_first():
    kpis = calculate_kpis(default_project_inputs())
    solutions = [
        OptimizationSolution(0, {"x": 1.0}, kpis, 50.0, False),
        OptimizationSolution(0, {"x": 2.0}, kpis, 10.0, True),
        OptimizationSolution(0, {"x": 3.0}, kpis, 20.0, True),
    ]
    ranked = rank_solutions(solutions, "MAXIMIZE")
    assert [s.values["x"] for s in ranked] == [3.0, 2.0, 1.0]
    assert [s.rank for s in ranked] == [1, 2, 3]

    ranked = rank_solutions(solutions, "MINIMIZE")
    assert [s.values["x"] for s in ranked] == [2.0, 3.0, 1.0]


def test_single_variable_grid_is_evaluated_in_full():
    config = OptimizationConfig(
        target_metric="total_roi",
        variables=[OptimizationVariable("financing.annual_appreciation_rate", 0.0, 100.0)],
        max_iterations=5,
    )
    result = run_optimization(default_project_inputs(), config)
    assert result.iterations == 5
    assert sorted(s.values["financing.annual_appreciation_rate"] for s in result.solutions) == [0.0, 25.0, 50.0, 75.0, 100.0]
    # Appreciation only raises total ROI
    assert result.solutions[0].values["financing.annual_appreciation_rate"] == 100.0


def test_feasible_solutions_rank_ahead_of_infeasible():
    config = OptimizationConfig(
        target_metric="annual_revenue",
        variables=[
            OptimizationVariable("revenue.average_daily_rate", 150.0, 300.0),
            OptimizationVariable("revenue.occupancy_rate", 50.0, 90.0),
        ],
        constraints=[OptimizationConstraint("annual_cashflow", "<=", 0.0)],
        max_iterations=100,
        top_k=100,
    )
    result = run_optimization(default_project_inputs(), config)
    assert result.iterations == 100
    flags = [s.feasible for s in result.solutions]
    assert any(flags) and not all(flags)
    assert flags == sorted(flags, reverse=True)
    feasible = [s.objective_value for s in result.solutions if s.feasible]
    assert feasible == sorted(feasible, reverse=True)
    for solution in result.solutions:
        assert solution.objective_value == solution.kpis.annual_revenue


def test_iterations_capped_at_max():
    config = OptimizationConfig(
        target_metric="cap_rate",
        variables=[
            OptimizationVariable("revenue.average_daily_rate", 150.0, 300.0),
            OptimizationVariable("revenue.occupancy_rate", 50.0, 90.0),
        ],
        max_iterations=3,
    )
    assert run_optimization(default_project_inputs(), config).iterations == 3


def test_top_k_limits_returned_solutions():
    config = OptimizationConfig(
        target_metric="cap_rate",
        variables=[OptimizationVariable("revenue.average_daily_rate", 150.0, 300.0)],
        max_iterations=20,
        top_k=3,
    )
    result = run_optimization(default_project_inputs(), config)
    assert result.iterations == 20
    assert [s.rank for s in result.solutions] == [1, 2, 3]


def test_locked_variables_only_evaluate_base():
    inputs = default_project_inputs()
    config = OptimizationConfig(
        target_metric="cap_rate",
        variables=[OptimizationVariable("revenue.average_daily_rate", 150.0, 300.0, locked=True)],
    )
    result = run_optimization(inputs, config)
    assert result.iterations == 1
    assert result.solutions[0].objective_value == calculate_kpis(inputs).cap_rate


def test_base_inputs_left_untouched():
    inputs = default_project_inputs()
    config = OptimizationConfig(
        target_metric="cap_rate",
        variables=[OptimizationVariable("financing.purchase_price", 500_000.0, 600_000.0)],
        max_iterations=10,
    )
    run_optimization(inputs, config)
    assert inputs == default_project_inputs()


@pytest.mark.parametrize("config, error", [
    (OptimizationConfig(target_metric="irr"), KeyError),
    (OptimizationConfig(target_metric="cap_rate", objective="BEST"), ValueError),
    (OptimizationConfig(target_metric="cap_rate", constraints=[OptimizationConstraint("irr", ">=", 0.0)]), KeyError),
    (OptimizationConfig(target_metric="cap_rate", constraints=[OptimizationConstraint("cap_rate", ">", 0.0)]), ValueError),
    (OptimizationConfig(target_metric="cap_rate", variables=[OptimizationVariable("revenue.occupancy_rate", 90.0, 50.0)]), ValueError),
    (OptimizationConfig(target_metric="cap_rate", max_iterations=0), ValueError),
])
def test_invalid_config_raises(config, error):
    with pytest.raises(error):
        run_optimization(default_project_inputs(), config)


def test_result_frame_and_solution_inputs():
    inputs = default_project_inputs()
    config = OptimizationConfig(
        target_metric="cash_on_cash",
        variables=[OptimizationVariable("financing.interest_rate", 4.0, 7.0)],
        max_iterations=4,
        id="rates",
    )
    result = run_optimization(inputs, config)
    frame = result.to_frame()
    assert list(frame.columns) == ["rank", "feasible", "objective_value", "financing.interest_rate"]
    assert len(frame) == 4
    assert result.config_id == "rates"

    best = result.solutions[0]
    assert best.values["financing.interest_rate"] == 4.0
    applied = create_inputs_from_solution(inputs, best)
    assert get_value_by_path(applied, "financing.interest_rate") == 4.0
    assert calculate_kpis(applied).cash_on_cash == best.objective_value


def test_parallel_matches_sequential():
    variables = [OptimizationVariable("revenue.occupancy_rate", 50.0, 90.0)]
    base = default_project_inputs()
    sequential = run_optimization(base, OptimizationConfig("total_roi", variables=variables, max_iterations=6))
    parallel = run_optimization(base, OptimizationConfig("total_roi", variables=variables, max_iterations=6, n_jobs=2))
    assert [s.values for s in sequential.solutions] == [s.values for s in parallel.solutions]
    assert [s.objective_value for s in sequential.solutions] == [s.objective_value for s in parallel.solutions]


def test_manual_exploration_tracks_history():
    inputs = default_project_inputs()
    variables = [OptimizationVariable("revenue.occupancy_rate", 50.0, 90.0)]
    state = initialize_manual_exploration(inputs, variables)
    assert state.current_values == {"revenue.occupancy_rate": 75.0}
    assert len(state.history) == 1

    updated = update_manual_exploration(inputs, state, "revenue.occupancy_rate", 80.0)
    assert updated.current_values == {"revenue.occupancy_rate": 80.0}
    assert updated.kpis.nights_sold == 292.0
    assert len(updated.history) == 2
    assert len(state.history) == 1


def test_build_grid_explicit_step_covers_exact_points():
    grid = build_grid(OptimizationVariable("x", 0.0, 100.0, step=25.0), points_per_variable(10_000, 1))
    assert grid == [0.0, 25.0, 50.0, 75.0, 100.0]
