# rentalsaber/core/validation.py
"""
Boundary validation of a parameter tree.

The calculation engine assumes well-formed ranges and known enum values.
Trees coming from storage, imports or user edits should pass through
validate_inputs() before they reach it.
"""

import logging
from typing import List

import numpy as np

from .constants import EXPENSE_TYPES, PAYMENT_FREQUENCIES
from .inputs import ProjectInputs, InputWithSource, RangeValue, iter_inputs

logger = logging.getLogger(__name__)


class InvalidRangeError(ValueError):
    """A range violates min < max or min <= default <= max."""

    def __init__(self, path: str, range_value: RangeValue, reason: str):
        self.path = path
        self.range_value = range_value
        super().__init__(f"Invalid range at '{path}': {reason} (min={range_value.min}, max={range_value.max}, default={range_value.default})")


class InputValidationError(ValueError):
    """One or more problems found in a parameter tree."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid project inputs:\n- " + "\n- ".join(errors))


def validate_range(range_value: RangeValue, path: str = "<range>") -> None:
    """Raises InvalidRangeError if the range is malformed."""
    if not range_value.min < range_value.max:
        raise InvalidRangeError(path, range_value, "min must be strictly less than max")
    if not range_value.min <= range_value.default <= range_value.max:
        raise InvalidRangeError(path, range_value, "default must lie within [min, max]")


def _check_input(path: str, node: InputWithSource, errors: List[str]) -> None:
    if not np.isfinite(node.value):
        errors.append(f"'{path}': value must be finite, got {node.value}")
    if node.range is not None:
        try:
            validate_range(node.range, path)
        except InvalidRangeError as e:
            errors.append(str(e))


def validate_inputs(inputs: ProjectInputs) -> ProjectInputs:
    """
    Checks every numeric input, expense line and enum of the tree.

    Args:
        inputs: The tree to check.

    Returns:
        The same tree, so the call can be chained.

    Raises:
        InputValidationError: listing every problem found.
    """
    errors: List[str] = []

    for path, node in iter_inputs(inputs):
        _check_input(path, node, errors)

    for i, line in enumerate(inputs.expenses):
        _check_input(f"expenses[{i}].amount", line.amount, errors)
        if line.type not in EXPENSE_TYPES:
            errors.append(f"'expenses[{i}].type': unknown expense type '{line.type}'")

    if inputs.financing.payment_frequency not in PAYMENT_FREQUENCIES:
        errors.append(f"'financing.payment_frequency': unknown frequency '{inputs.financing.payment_frequency}'")

    if inputs.revenue.days_per_year < 0:
        errors.append(f"'revenue.days_per_year': must not be negative, got {inputs.revenue.days_per_year}")

    if errors:
        logger.warning(f"Validation failed with {len(errors)} error(s).")
        raise InputValidationError(errors)
    logger.debug("Project inputs validated.")
    return inputs

