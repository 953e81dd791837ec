import pytest

from rentalsaber.core.calculations import calculate_kpis
from rentalsaber.core.inputs import default_project_inputs
from rentalsaber.core.paths import apply_values
from rentalsaber.core.sensitivity import (
    ParameterRange, find_critical_point, run_sensitivity_1d, run_sensitivity_2d, sweep_values,
)

ADR = ParameterRange("revenue.average_daily_rate", "Average daily rate", 150.0, 215.0, 300.0)
OCCUPANCY = ParameterRange("revenue.occupancy_rate", "Occupancy rate", 50.0, 75.0, 90.0, steps=4)


def test_sweep_values_include_both_ends():
    assert sweep_values(OCCUPANCY) == [50.0, 60.0, 70.0, 80.0, 90.0]
    assert len(sweep_values(ADR)) == 11


def test_tornado_impacts_sorted_by_relative_impact():
    result = run_sensitivity_1d(default_project_inputs(), [OCCUPANCY, ADR], "annual_revenue")
    assert result.base_value == 58856.25
    assert [i.path for i in result.impacts] == ["revenue.average_daily_rate", "revenue.occupancy_rate"]

    adr, occupancy = result.impacts
    assert adr.impact_low == pytest.approx(-17793.75)
    assert adr.impact_high == pytest.approx(23268.75)
    assert adr.relative_impact == pytest.approx(23268.75)
    assert occupancy.impact_low == pytest.approx(-19618.75)
    assert occupancy.impact_high == pytest.approx(11771.25)
    assert occupancy.critical_point is None


def test_tornado_measures_impacts_from_parameter_base():
    centred = ParameterRange("revenue.average_daily_rate", "Average daily rate", 150.0, 200.0, 300.0)
    result = run_sensitivity_1d(default_project_inputs(), [centred], "annual_revenue")
    impact = result.impacts[0]
    # The tree keeps its own value, the bars start from ADR = 200
    assert result.base_value == 58856.25
    assert impact.reference_value == pytest.approx(54750.0)
    assert impact.impact_low == pytest.approx(-13687.5)
    assert impact.impact_high == pytest.approx(27375.0)


def test_sweeps_keep_parameter_order():
    result = run_sensitivity_1d(default_project_inputs(), [OCCUPANCY, ADR], "nights_sold")
    assert [s.path for s in result.sweeps] == ["revenue.occupancy_rate", "revenue.average_daily_rate"]
    assert result.sweeps[0].objective_values == [182.5, 219.0, 255.5, 292.0, 328.5]


def test_critical_point_found_for_cashflow():
    result = run_sensitivity_1d(default_project_inputs(), [ADR], "annual_cashflow")
    sweep = result.sweeps[0]
    assert sweep.objective_values[0] < 0 < sweep.objective_values[-1]
    point = result.impacts[0].critical_point
    assert 150.0 < point < 300.0


def test_find_critical_point_interpolates():
    assert find_critical_point([0.0, 1.0, 2.0], [-1.0, 1.0, 3.0]) == 0.5
    assert find_critical_point([0.0, 1.0, 2.0], [2.0, 0.0, -2.0]) == 1.0
    assert find_critical_point([0.0, 1.0], [1.0, 2.0]) is None


def test_tornado_frame():
    frame = run_sensitivity_1d(default_project_inputs(), [ADR, OCCUPANCY], "cap_rate").to_frame()
    assert list(frame["path"]) == ["revenue.average_daily_rate", "revenue.occupancy_rate"]
    assert {"impact_low", "impact_high", "relative_impact", "critical_point"} <= set(frame.columns)


@pytest.mark.parametrize("parameter, error", [
    (ParameterRange("revenue.occupancy_rate", "Occupancy", 90.0, 75.0, 50.0), ValueError),
    (ParameterRange("revenue.occupancy_rate", "Occupancy", 50.0, 75.0, 90.0, steps=0), ValueError),
    (ParameterRange("revenue.occupancy_rate", "Occupancy", 50.0, 75.0, 90.0, steps=51), ValueError),
    (ParameterRange("revenue.occupancy_rate", "Occupancy", 50.0, 95.0, 90.0), ValueError),
    (ParameterRange("revenue..occupancy_rate", "Occupancy", 50.0, 75.0, 90.0), KeyError),
])
def test_invalid_parameters_raise(parameter, error):
    with pytest.raises(error):
        run_sensitivity_1d(default_project_inputs(), [parameter], "annual_revenue")


def test_heatmap_grid_shape_and_values():
    x = ParameterRange("revenue.average_daily_rate", "ADR", 150.0, 215.0, 300.0, steps=3)
    result = run_sensitivity_2d(default_project_inputs(), x, OCCUPANCY, "annual_revenue")
    assert len(result.grid) == 5
    assert all(len(row) == 4 for row in result.grid)
    assert result.x_values == [150.0, 200.0, 250.0, 300.0]

    expected = calculate_kpis(apply_values(default_project_inputs(), {
        "revenue.average_daily_rate": 200.0,
        "revenue.occupancy_rate": 80.0,
    })).annual_revenue
    assert result.grid[3][1] == expected

    frame = result.to_frame()
    assert frame.shape == (5, 4)
    assert frame.index.name == "revenue.occupancy_rate"
    assert frame.loc[80.0, 200.0] == expected


def test_unknown_objective_raises():
    with pytest.raises(KeyError):
        run_sensitivity_2d(default_project_inputs(), ADR, OCCUPANCY, "irr")
