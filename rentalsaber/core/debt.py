# rentalsaber/core/debt.py
"""
Loan arithmetic: payments per year, the amortizing annuity payment and the
first-year amortization walk.
"""

import numpy as np
import numpy_financial as npf
import logging

from .constants import PAYMENTS_PER_YEAR, FREQUENCY_MONTHLY

logger = logging.getLogger(__name__)


def payments_per_year(frequency: str) -> int:
    """12, 26, 52 or 1 for monthly, bi-weekly, weekly and annual payments."""
    if frequency not in PAYMENTS_PER_YEAR:
        logger.warning(f"Unknown payment frequency '{frequency}', using {FREQUENCY_MONTHLY}.")
        return PAYMENTS_PER_YEAR[FREQUENCY_MONTHLY]
    return PAYMENTS_PER_YEAR[frequency]


def periodic_rate(annual_rate_pct: float, frequency: str) -> float:
    """Per-period interest rate (decimal) from an annual percentage."""
    return annual_rate_pct / 100 / payments_per_year(frequency)


def annuity_payment(principal: float, rate_per_period: float, total_payments: float) -> float:
    """
    Standard amortizing payment: P * r * (1+r)^n / ((1+r)^n - 1).

    A rate of exactly zero gives principal / total_payments. A schedule with no
    payments returns 0.0 (the caller records the guard in its trace).
    """
    if total_payments <= 0:
        return 0.0
    if rate_per_period == 0:
        return principal / total_payments
    payment = npf.pmt(rate_per_period, total_payments, -principal)
    if not np.isfinite(payment):
        logger.error(f"npf.pmt returned non-finite payment. Rate={rate_per_period}, Periods={total_payments}, PV={-principal}")
        raise ValueError("Annuity payment is not finite.")
    return float(payment)


def principal_paid_in_first_year(loan_amount: float, rate_per_period: float, payment: float, n_payments: int) -> float:
    """
    Walks the first year's payments against the declining balance and sums the principal.

    Each period: interest = balance * rate, principal = payment - interest,
    balance -= principal. This matches an amortization schedule, not a closed form.
    """
    balance = loan_amount
    principal_total = 0.0
    for _ in range(n_payments):
        interest = balance * rate_per_period
        principal = payment - interest
        principal_total += principal
        balance -= principal
    logger.debug(f"First-year walk: {n_payments} payments, principal={principal_total:.2f}, ending balance={balance:.2f}")
    return principal_total
