import dataclasses

import pytest

from rentalsaber.core.constants import KPI_KEYS
from rentalsaber.core.calculations import (
    NOTE_KEY, KPIResults, annualize_expense, calculate_kpis, calculate_nights_sold,
    calculate_transfer_duties, transfer_duty_for, validate_metric_name,
)
from rentalsaber.core.inputs import ExpenseLine, InputWithSource, default_project_inputs
from rentalsaber.core.paths import apply_values, set_value_by_path


@pytest.fixture
def kpis():
    return calculate_kpis(default_project_inputs())


def test_default_project_revenue_and_expenses(kpis):
    assert kpis.nights_sold == 273.75
    assert kpis.annual_revenue == 58856.25
    assert kpis.total_expenses == 20283.44
    assert kpis.noi == 38572.81
    assert kpis.expenses_by_category == pytest.approx({
        "Services": 875.0,
        "Management": 8828.44,
        "Maintenance": 800.0,
        "Utilities": 3600.0,
        "Taxes": 3180.0,
        "Insurance": 3000.0,
    })


def test_default_project_financing(kpis):
    assert kpis.loan_amount == 522500.0
    assert kpis.transfer_duties == 6666.0
    assert kpis.total_acquisition_fees == 8166.0
    assert kpis.initial_investment == 35666.0
    assert kpis.property_appreciation == 11000.0
    assert kpis.appreciation_roi == 30.84
    assert kpis.cap_rate == 7.01
    assert kpis.annual_debt_service == round(kpis.periodic_payment * 12, 2)


def test_default_project_cashflow_chain(kpis):
    assert kpis.periodic_payment == 2966.70
    assert kpis.annual_debt_service == 35600.40
    assert kpis.annual_cashflow == 2972.41
    assert kpis.principal_paid_first_year == 7038.57
    assert kpis.total_annual_profit == 21010.98
    assert kpis.cashflow_roi == 8.33
    assert kpis.capitalization_roi == 19.73
    assert kpis.total_roi == 58.91
    assert kpis.cash_on_cash == 8.33
    assert kpis.annual_cashflow == pytest.approx(
        kpis.annual_revenue - kpis.total_expenses - kpis.annual_debt_service, abs=0.005
    )
    assert kpis.total_annual_profit == pytest.approx(
        kpis.annual_cashflow + kpis.principal_paid_first_year + kpis.property_appreciation, abs=0.005
    )
    assert 0 < kpis.principal_paid_first_year < kpis.annual_debt_service


def test_every_metric_has_matching_trace(kpis):
    assert set(kpis.traces) == set(KPI_KEYS)
    for key in KPI_KEYS:
        assert kpis.traces[key].result == kpis.get(key), key


def test_expense_trace_lists_every_line(kpis):
    variables = kpis.traces["total_expenses"].variables
    assert list(variables) == [f"line_{i}" for i in range(1, 9)]
    assert variables["line_2"] == 8828.44
    assert len(kpis.expense_traces) == 8


def test_calculation_is_deterministic():
    inputs = default_project_inputs()
    assert calculate_kpis(inputs) == calculate_kpis(inputs)


def test_kpis_use_range_default_when_enabled():
    inputs = set_value_by_path(default_project_inputs(), "revenue.average_daily_rate", 250.0)
    kpis = calculate_kpis(inputs)
    assert inputs.revenue.average_daily_rate.value == 215.0
    assert kpis.annual_revenue == 68437.5


def test_get_unknown_metric_raises(kpis):
    with pytest.raises(KeyError):
        kpis.get("irr")
    with pytest.raises(KeyError):
        validate_metric_name("irr")


def test_metrics_has_every_key(kpis):
    assert list(kpis.metrics()) == list(KPI_KEYS)
    assert isinstance(kpis, KPIResults)


def test_nights_sold_rounded():
    nights, trace = calculate_nights_sold(33.3333, 365)
    assert nights == 121.67
    assert trace.result == nights


@pytest.mark.parametrize("expense_type, amount, expected", [
    ("FIXED_ANNUAL", 1200.0, 1200.0),
    ("FIXED_MONTHLY", 150.0, 1800.0),
    ("PERCENTAGE_REVENUE", 15.0, 7500.0),
    ("PERCENTAGE_PROPERTY_VALUE", 1.0, 4000.0),
])
def test_annualize_expense(expense_type, amount, expected):
    line = ExpenseLine("1", "Test", expense_type, InputWithSource(amount))
    annual, trace = annualize_expense(line, annual_revenue=50_000.0, purchase_price=400_000.0)
    assert annual == expected
    assert trace.result == expected


def test_annualize_unknown_type_raises():
    line = ExpenseLine("1", "Test", "PER_NIGHT", InputWithSource(10.0))
    with pytest.raises(ValueError):
        annualize_expense(line, 1.0, 1.0)


@pytest.mark.parametrize("base, expected", [
    (0.0, 0.0),
    (52_800.0, 264.0),
    (264_000.0, 2_376.0),
    (550_000.0, 6_666.0),
    (600_000.0, 7_416.0),
])
def test_transfer_duty_brackets(base, expected):
    assert transfer_duty_for(base) == pytest.approx(expected)


def test_transfer_duties_use_higher_assessment():
    duty, trace = calculate_transfer_duties(500_000.0, 600_000.0)
    assert duty == 7_416.0
    assert trace.variables["base_amount"] == 600_000.0
    assert NOTE_KEY in trace.variables


def test_transfer_duties_ignore_lower_assessment():
    duty, trace = calculate_transfer_duties(550_000.0, 400_000.0)
    assert duty == 6_666.0
    assert trace.variables["base_amount"] == 550_000.0


def test_zero_purchase_price_guards_cap_rate():
    inputs = set_value_by_path(default_project_inputs(), "financing.purchase_price", 0.0)
    kpis = calculate_kpis(inputs)
    assert kpis.cap_rate == 0.0
    assert NOTE_KEY in kpis.traces["cap_rate"].variables
    assert kpis.transfer_duties == 0.0


def test_zero_initial_investment_guards_returns():
    inputs = apply_values(default_project_inputs(), {
        "financing.purchase_price": 0.0,
        "financing.down_payment": 0.0,
        "acquisition_fees.notary_fees": 0.0,
    })
    kpis = calculate_kpis(inputs)
    assert kpis.initial_investment == 0.0
    for key in ("cashflow_roi", "capitalization_roi", "appreciation_roi", "total_roi", "cash_on_cash"):
        assert kpis.get(key) == 0.0
        assert NOTE_KEY in kpis.traces[key].variables


def test_zero_interest_rate_is_straight_line():
    inputs = set_value_by_path(default_project_inputs(), "financing.interest_rate", 0.0)
    kpis = calculate_kpis(inputs)
    assert kpis.periodic_payment == 1451.39
    assert kpis.annual_debt_service == 17416.68
    assert kpis.principal_paid_first_year == 17416.68
    assert NOTE_KEY in kpis.traces["periodic_payment"].variables


def test_zero_amortization_gives_zero_payment():
    inputs = set_value_by_path(default_project_inputs(), "financing.amortization_years", 0.0)
    kpis = calculate_kpis(inputs)
    assert kpis.periodic_payment == 0.0
    assert kpis.annual_debt_service == 0.0
    assert NOTE_KEY in kpis.traces["periodic_payment"].variables


def test_zero_days_per_year_falls_back_to_calendar_year():
    inputs = default_project_inputs()
    inputs = dataclasses.replace(inputs, revenue=dataclasses.replace(inputs.revenue, days_per_year=0))
    assert calculate_kpis(inputs).nights_sold == 273.75
