import dataclasses

import pytest

from rentalsaber.core.inputs import InputWithSource, RangeValue, default_project_inputs
from rentalsaber.core.paths import set_value_by_path
from rentalsaber.core.validation import (
    InvalidRangeError, InputValidationError, validate_range, validate_inputs,
)


def test_default_project_is_valid():
    inputs = default_project_inputs()
    assert validate_inputs(inputs) is inputs


@pytest.mark.parametrize("range_value", [
    RangeValue(10.0, 10.0, 10.0),
    RangeValue(20.0, 10.0, 15.0),
    RangeValue(0.0, 10.0, 11.0),
    RangeValue(0.0, 10.0, -1.0),
])
def test_validate_range_rejects_malformed(range_value):
    with pytest.raises(InvalidRangeError) as excinfo:
        validate_range(range_value, "revenue.occupancy_rate")
    assert excinfo.value.path == "revenue.occupancy_rate"
    assert isinstance(excinfo.value, ValueError)


def test_validate_range_accepts_bounds():
    validate_range(RangeValue(0.0, 10.0, 0.0))
    validate_range(RangeValue(0.0, 10.0, 10.0))


def test_validate_inputs_collects_every_error():
    inputs = default_project_inputs()
    inputs = set_value_by_path(inputs, "revenue.occupancy_rate", 120.0) # outside 50..90
    bad_line = dataclasses.replace(inputs.expenses[0], type="per_night")
    inputs = dataclasses.replace(
        inputs,
        expenses=(bad_line,) + inputs.expenses[1:],
        financing=dataclasses.replace(inputs.financing, payment_frequency="DAILY"),
    )
    with pytest.raises(InputValidationError) as excinfo:
        validate_inputs(inputs)
    errors = excinfo.value.errors
    assert len(errors) == 3
    assert any("revenue.occupancy_rate" in e for e in errors)
    assert any("expenses[0].type" in e for e in errors)
    assert any("payment_frequency" in e for e in errors)


def test_validate_inputs_rejects_non_finite_value():
    inputs = default_project_inputs()
    inputs = dataclasses.replace(
        inputs,
        acquisition_fees=dataclasses.replace(inputs.acquisition_fees, notary_fees=InputWithSource(float("nan"))),
    )
    with pytest.raises(InputValidationError, match="acquisition_fees.notary_fees"):
        validate_inputs(inputs)


def test_validate_inputs_rejects_negative_days():
    inputs = default_project_inputs()
    inputs = dataclasses.replace(inputs, revenue=dataclasses.replace(inputs.revenue, days_per_year=-1))
    with pytest.raises(InputValidationError, match="days_per_year"):
        validate_inputs(inputs)
