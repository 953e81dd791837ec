# rentalsaber/core/utils.py
"""
Utility functions shared by the calculation, optimization and Monte Carlo modules.
"""
import math
import logging
from functools import wraps
from typing import Sequence

import numpy as np

from .constants import MONEY_DECIMALS

logger = logging.getLogger(__name__)


def round_value(value: float, decimals: int = MONEY_DECIMALS) -> float:
    """
    Rounds half-up on the scaled value: floor(value * 10**decimals + 0.5) / 10**decimals.

    Every stored metric goes through this function before it is fed to a
    downstream stage, so the rounding points are part of the engine's output.

    Args:
        value: The number to round.
        decimals: Number of decimal places to keep.

    Returns:
        The rounded float. Non-finite input is returned unchanged.
    """
    if not np.isfinite(value):
        return value
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def percentile_at(sorted_values: Sequence[float], p: float) -> float:
    """
    Returns the element at index floor(n * p) of an already sorted sequence (no interpolation).
    The index is capped at n - 1.
    """
    n = len(sorted_values)
    index = min(int(math.floor(n * p)), n - 1)
    return float(sorted_values[index])


def median_of_sorted(sorted_values: Sequence[float]) -> float:
    """Median of a sorted sequence: middle value, or mean of the two middle values for even n."""
    n = len(sorted_values)
    mid = n // 2
    if n % 2 == 0:
        return (float(sorted_values[mid - 1]) + float(sorted_values[mid])) / 2
    return float(sorted_values[mid])


def engine_error_handler(func):
    """
    Decorator to consistently log errors raised by engine entry points.
    The exception is logged with its traceback and re-raised to the caller.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {e}", exc_info=True)
            raise
    return wrapper
