# rentalsaber/core/projections.py
"""
Multi-year projection of a project.

- generate_amortization_schedule: yearly principal, interest and closing
  balance of the loan, walked payment by payment.
- calculate_projections: escalates year 1's revenue and expenses, appreciates
  the property, tracks equity and cumulative returns, and values exit
  scenarios with their IRR.

Year 1 starts from calculate_kpis(): its revenue, loan, payment and initial
investment are reused as is, so the first projected year lines up with the
single-year KPIs.
"""

import math
import time
import logging
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Sequence

import numpy as np
import numpy_financial as npf
import pandas as pd

from .constants import (
    FLOAT_ATOL, DEFAULT_DAYS_PER_YEAR, DEFAULT_PROJECTION_YEARS, MIN_PROJECTION_YEARS,
    MAX_PROJECTION_YEARS, DEFAULT_REVENUE_ESCALATION_RATE, DEFAULT_EXPENSE_ESCALATION_RATE,
    DEFAULT_CAPEX_RATE, DEFAULT_DISCOUNT_RATE, DEFAULT_SALE_COSTS_RATE, EXIT_YEARS, DSCR_NO_DEBT,
    EXPENSE_FIXED_ANNUAL, EXPENSE_FIXED_MONTHLY,
)
from .inputs import ProjectInputs, ExpenseLine, effective_value
from .debt import payments_per_year, periodic_rate, annuity_payment
from .calculations import calculate_kpis, annualize_expense
from .utils import round_value, engine_error_handler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionSettings:
    """Growth and exit assumptions, all in percent per year (sale costs: percent of the sale price)."""
    revenue_escalation_rate: float = DEFAULT_REVENUE_ESCALATION_RATE
    expense_escalation_rate: float = DEFAULT_EXPENSE_ESCALATION_RATE
    capex_rate: float = DEFAULT_CAPEX_RATE
    discount_rate: float = DEFAULT_DISCOUNT_RATE
    sale_costs_rate: float = DEFAULT_SALE_COSTS_RATE


@dataclass(frozen=True)
class AmortizationYear:
    year: int
    payment: float # Total paid during the year (principal + interest)
    principal: float
    interest: float
    balance: float # Closing balance


@dataclass(frozen=True)
class YearProjection:
    year: int
    revenue: float
    expenses: float
    capex: float
    noi: float
    debt_service: float
    interest_paid: float
    principal_paid: float
    cashflow: float # After debt service and CAPEX
    cumulative_cashflow: float
    cumulative_principal_paid: float
    mortgage_balance: float
    property_value: float
    equity: float
    dscr: float
    ltv: float # %
    appreciation: float
    cumulative_appreciation: float
    total_profit: float
    cumulative_total_profit: float
    roi_cashflow: float # Cumulative, % of initial investment
    roi_total: float # Cumulative, % of initial investment
    roe: float # Year's total profit, % of equity
    discounted_cashflow: float


@dataclass(frozen=True)
class ExitScenario:
    year: int
    property_value: float
    sale_price: float # Net of sale costs
    mortgage_balance: float
    net_proceeds: float
    total_invested: float # Initial investment + CAPEX spent up to the exit
    net_profit: float
    moic: float
    irr: float # %, NaN when it cannot be computed


@dataclass
class ProjectionResult:
    years: List[YearProjection]
    exit_scenarios: List[ExitScenario]
    settings: ProjectionSettings
    initial_investment: float
    irr: float # % over the whole horizon, NaN when it cannot be computed
    npv: float
    payback_period_cashflow: Optional[int]
    payback_period_total: Optional[int]
    total_return: float
    average_annual_return: float
    average_roe: float
    min_dscr: float
    max_ltv: float
    break_even_occupancy: float
    amortization: List[AmortizationYear] = field(default_factory=list)
    duration: float = 0.0 # seconds

    def to_frame(self) -> pd.DataFrame:
        """One row per projected year, indexed by year."""
        return pd.DataFrame([asdict(y) for y in self.years]).set_index("year")

    def exit_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(e) for e in self.exit_scenarios]).set_index("year")


# --- Debt ---

def generate_amortization_schedule(loan_amount: float, annual_rate: float, amortization_years: float,
                                   frequency: str, years: int,
                                   payment: Optional[float] = None) -> List[AmortizationYear]:
    """
    Walks the loan payment by payment and totals each year.

    Args:
        loan_amount: Opening balance.
        annual_rate: Annual interest rate (%).
        amortization_years: Amortization period. The balance is cleared by its last payment.
        frequency: Payment frequency.
        years: Number of years to tabulate. Years after payoff show zero payments.
        payment: Periodic payment. Defaults to the rounded annuity payment.

    Returns:
        One AmortizationYear per year, balances floored at zero.
    """
    n_per_year = payments_per_year(frequency)
    rate = periodic_rate(annual_rate, frequency)
    total_payments = int(math.ceil(amortization_years * n_per_year - FLOAT_ATOL))
    if payment is None:
        payment = round_value(annuity_payment(loan_amount, rate, amortization_years * n_per_year))

    schedule = []
    balance = loan_amount
    period = 0
    for year in range(1, years + 1):
        year_principal = 0.0
        year_interest = 0.0
        for _ in range(n_per_year):
            if balance <= FLOAT_ATOL or period >= total_payments:
                break
            period += 1
            interest = balance * rate
            principal = min(payment - interest, balance)
            if period == total_payments:
                principal = balance # Last payment absorbs the residue of the rounded payment
            year_interest += interest
            year_principal += principal
            balance -= principal
        schedule.append(AmortizationYear(
            year=year,
            payment=round_value(year_principal + year_interest),
            principal=round_value(year_principal),
            interest=round_value(year_interest),
            balance=round_value(max(0.0, balance)),
        ))
    logger.debug(f"Amortization schedule: {years} years, {period} payments made, closing balance={balance:.2f}")
    return schedule


# --- Returns ---

def calculate_irr(cashflows: Sequence[float]) -> float:
    """
    Internal rate of return of a yearly stream, in percent rounded to 2 decimals.

    cashflows[0] is the outlay at t=0. Returns NaN (and logs why) when the
    stream is non-finite, has no sign change or numpy-financial cannot solve it.
    """
    if len(cashflows) < 2 or not all(np.isfinite(cf) for cf in cashflows):
        logger.warning(f"Non-finite or too short cash-flow stream for IRR ({len(cashflows)} values).")
        return np.nan
    if not min(cashflows) < 0 < max(cashflows):
        logger.warning("IRR needs both a negative and a positive cash flow.")
        return np.nan
    try:
        irr = npf.irr(cashflows)
    except ValueError as e:
        logger.debug(f"IRR ValueError: {e}")
        return np.nan
    if not np.isfinite(irr):
        logger.warning("IRR did not converge.")
        return np.nan
    return round_value(float(irr) * 100)


def calculate_npv(discount_rate: float, cashflows: Sequence[float]) -> float:
    """Net present value at discount_rate (%), cashflows[0] undiscounted."""
    return round_value(float(npf.npv(discount_rate / 100, cashflows)))


def calculate_expenses_for_year(expense_lines: Sequence[ExpenseLine], revenue: float,
                                property_value: float, expense_factor: float) -> float:
    """
    Total expenses of a projected year.

    Fixed lines are escalated by expense_factor. Percentage lines follow the
    year's revenue or property value, which already carry their own growth.
    """
    total = 0.0
    for line in expense_lines:
        amount, _ = annualize_expense(line, revenue, property_value)
        if line.type in (EXPENSE_FIXED_ANNUAL, EXPENSE_FIXED_MONTHLY):
            amount = round_value(amount * expense_factor)
        total += amount
    return round_value(total)


def calculate_break_even_occupancy(inputs: ProjectInputs, total_expenses: float, annual_debt_service: float) -> float:
    """
    Occupancy (%) at which revenue covers expenses and debt service, clamped to [0, 100].
    Expenses are taken at their year 1 level.
    """
    adr = effective_value(inputs.revenue.average_daily_rate)
    days_per_year = inputs.revenue.days_per_year or DEFAULT_DAYS_PER_YEAR
    if adr <= 0:
        logger.warning(f"Average daily rate is {adr}. Break-even occupancy set to 100%.")
        return 100.0
    rate = (total_expenses + annual_debt_service) / adr / days_per_year * 100
    return round_value(min(100.0, max(0.0, rate)))


def _pct(numerator: float, denominator: float) -> float:
    return round_value(numerator / denominator * 100) if denominator > 0 else 0.0


def _exit_scenario(year: int, years: List[YearProjection], initial_investment: float,
                   sale_costs_rate: float) -> ExitScenario:
    data = years[year - 1]
    sale_price = round_value(data.property_value * (1 - sale_costs_rate / 100))
    net_proceeds = round_value(sale_price - data.mortgage_balance)
    total_invested = round_value(initial_investment + sum(y.capex for y in years[:year]))
    # Yearly cashflows are already net of CAPEX
    net_profit = round_value(net_proceeds + data.cumulative_cashflow - initial_investment)
    if initial_investment > 0:
        moic = round_value((net_proceeds + data.cumulative_cashflow) / initial_investment)
    else:
        logger.warning(f"Initial investment is {initial_investment}. MOIC of the year {year} exit set to 0.")
        moic = 0.0
    stream = [-initial_investment] + [y.cashflow for y in years[:year]]
    stream[-1] += net_proceeds
    return ExitScenario(
        year=year,
        property_value=data.property_value,
        sale_price=sale_price,
        mortgage_balance=data.mortgage_balance,
        net_proceeds=net_proceeds,
        total_invested=total_invested,
        net_profit=net_profit,
        moic=moic,
        irr=calculate_irr(stream),
    )


def exit_years_for(horizon: int) -> List[int]:
    """Standard holding periods within the horizon, plus the horizon itself."""
    return sorted({y for y in EXIT_YEARS if y <= horizon} | {horizon})


# --- Projection ---

@engine_error_handler
def calculate_projections(inputs: ProjectInputs, years: int = DEFAULT_PROJECTION_YEARS,
                          settings: Optional[ProjectionSettings] = None) -> ProjectionResult:
    """
    Projects the project year by year over the horizon.

    Args:
        inputs: A validated parameter tree. Ranged inputs use their default.
        years: Horizon, between MIN_PROJECTION_YEARS and MAX_PROJECTION_YEARS.
        settings: Escalation, CAPEX, discount and sale-cost rates. Defaults apply when None.

    Returns:
        ProjectionResult with the yearly rows, exit scenarios, IRR, NPV and aggregates.
    """
    start_time = time.time()
    if not MIN_PROJECTION_YEARS <= years <= MAX_PROJECTION_YEARS:
        raise ValueError(f"years must be between {MIN_PROJECTION_YEARS} and {MAX_PROJECTION_YEARS}, got {years}")
    settings = settings or ProjectionSettings()

    fin = inputs.financing
    purchase_price = effective_value(fin.purchase_price)
    appreciation_rate = effective_value(fin.annual_appreciation_rate)

    year1 = calculate_kpis(inputs)
    initial_investment = year1.initial_investment
    schedule = generate_amortization_schedule(
        year1.loan_amount,
        effective_value(fin.interest_rate),
        effective_value(fin.amortization_years),
        fin.payment_frequency,
        years,
        payment=year1.periodic_payment,
    )
    logger.info(f"Projecting '{inputs.name}' over {years} years. Initial investment={initial_investment:.2f}.")

    rows: List[YearProjection] = []
    cumulative_cashflow = cumulative_principal = cumulative_appreciation = cumulative_profit = 0.0
    previous_value = purchase_price
    for debt in schedule:
        year = debt.year
        revenue_factor = (1 + settings.revenue_escalation_rate / 100) ** (year - 1)
        expense_factor = (1 + settings.expense_escalation_rate / 100) ** (year - 1)

        property_value = round_value(purchase_price * (1 + appreciation_rate / 100) ** year)
        revenue = round_value(year1.annual_revenue * revenue_factor)
        expenses = calculate_expenses_for_year(inputs.expenses, revenue, property_value, expense_factor)
        capex = round_value(property_value * settings.capex_rate / 100)
        noi = round_value(revenue - expenses)
        cashflow = round_value(noi - debt.payment - capex)
        appreciation = round_value(property_value - previous_value)
        equity = round_value(property_value - debt.balance)
        total_profit = round_value(cashflow + debt.principal + appreciation)

        cumulative_cashflow = round_value(cumulative_cashflow + cashflow)
        cumulative_principal = round_value(cumulative_principal + debt.principal)
        cumulative_appreciation = round_value(cumulative_appreciation + appreciation)
        cumulative_profit = round_value(cumulative_profit + total_profit)

        rows.append(YearProjection(
            year=year,
            revenue=revenue,
            expenses=expenses,
            capex=capex,
            noi=noi,
            debt_service=debt.payment,
            interest_paid=debt.interest,
            principal_paid=debt.principal,
            cashflow=cashflow,
            cumulative_cashflow=cumulative_cashflow,
            cumulative_principal_paid=cumulative_principal,
            mortgage_balance=debt.balance,
            property_value=property_value,
            equity=equity,
            dscr=round_value(noi / debt.payment) if debt.payment > 0 else DSCR_NO_DEBT,
            ltv=round_value(debt.balance / property_value * 100) if property_value > 0 else 0.0,
            appreciation=appreciation,
            cumulative_appreciation=cumulative_appreciation,
            total_profit=total_profit,
            cumulative_total_profit=cumulative_profit,
            roi_cashflow=_pct(cumulative_cashflow, initial_investment),
            roi_total=_pct(cumulative_profit, initial_investment),
            roe=_pct(total_profit, equity),
            discounted_cashflow=round_value(cashflow / (1 + settings.discount_rate / 100) ** year),
        ))
        previous_value = property_value

    exit_scenarios = [
        _exit_scenario(y, rows, initial_investment, settings.sale_costs_rate) for y in exit_years_for(years)
    ]
    horizon_stream = [-initial_investment] + [r.cashflow for r in rows]
    horizon_stream[-1] += exit_scenarios[-1].net_proceeds

    payback_cashflow = next((r.year for r in rows if r.cumulative_cashflow > 0), None)
    payback_total = next((r.year for r in rows if r.cumulative_total_profit > initial_investment), None)
    if payback_cashflow is None:
        logger.warning(f"Cumulative cashflow stays non-positive over {years} years.")

    total_return = rows[-1].cumulative_total_profit
    duration = time.time() - start_time
    result = ProjectionResult(
        years=rows,
        exit_scenarios=exit_scenarios,
        settings=settings,
        initial_investment=initial_investment,
        irr=calculate_irr(horizon_stream),
        npv=calculate_npv(settings.discount_rate, horizon_stream),
        payback_period_cashflow=payback_cashflow,
        payback_period_total=payback_total,
        total_return=total_return,
        average_annual_return=round_value(total_return / years),
        average_roe=round_value(sum(r.roe for r in rows) / years),
        min_dscr=min(r.dscr for r in rows),
        max_ltv=max(r.ltv for r in rows),
        break_even_occupancy=calculate_break_even_occupancy(inputs, year1.total_expenses, year1.annual_debt_service),
        amortization=schedule,
        duration=duration,
    )
    logger.info(
        f"Projection finished. IRR={result.irr:.2f}%, NPV={result.npv:.2f}, "
        f"total return={total_return:.2f}. Time: {duration:.2f}s."
    )
    return result
