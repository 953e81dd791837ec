# rentalsaber/core/calculations.py
"""
Cascading KPI calculation for a short-term rental project.

calculate_kpis() runs a fixed pipeline. Each stage takes already rounded
upstream values, rounds its own result and returns it with a
CalculationTrace (formula text, the inputs actually used, the result).
Ranges never reach these functions: the pipeline reads every input through
effective_value() once, at the top.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Sequence, Tuple
import logging

from .constants import (
    KPI_KEYS, MONEY_DECIMALS, RATE_DECIMALS, MONTHS_PER_YEAR, DEFAULT_DAYS_PER_YEAR,
    EXPENSE_FIXED_ANNUAL, EXPENSE_FIXED_MONTHLY, EXPENSE_PERCENTAGE_REVENUE,
    EXPENSE_PERCENTAGE_PROPERTY_VALUE,
    TRANSFER_DUTY_TIER1_LIMIT, TRANSFER_DUTY_TIER2_LIMIT,
    TRANSFER_DUTY_TIER1_RATE, TRANSFER_DUTY_TIER2_RATE, TRANSFER_DUTY_TIER3_RATE,
)
from .inputs import ProjectInputs, ExpenseLine, SourceInfo, InputWithSource, effective_value, source_of
from .debt import payments_per_year, periodic_rate, annuity_payment, principal_paid_in_first_year
from .utils import round_value, engine_error_handler

logger = logging.getLogger(__name__)

NOTE_KEY = "note"


@dataclass(frozen=True)
class CalculationTrace:
    """How one metric was obtained."""
    formula: str
    variables: Dict[str, Any]
    result: float
    sources: Optional[List[SourceInfo]] = None


StageResult = Tuple[float, CalculationTrace]


@dataclass(frozen=True)
class KPIResults:
    """Flat metrics, expenses by category and one trace per metric."""
    nights_sold: float
    annual_revenue: float
    total_expenses: float
    noi: float
    loan_amount: float
    periodic_payment: float
    annual_debt_service: float
    transfer_duties: float
    total_acquisition_fees: float
    initial_investment: float
    annual_cashflow: float
    principal_paid_first_year: float
    property_appreciation: float
    total_annual_profit: float
    cashflow_roi: float
    capitalization_roi: float
    appreciation_roi: float
    total_roi: float
    cash_on_cash: float
    cap_rate: float
    expenses_by_category: Dict[str, float] = field(default_factory=dict)
    expense_traces: Tuple[CalculationTrace, ...] = ()
    traces: Dict[str, CalculationTrace] = field(default_factory=dict)

    def get(self, metric: str) -> float:
        """Value of a flat metric by name. Raises KeyError for unknown metrics."""
        if metric not in KPI_KEYS:
            raise KeyError(f"Unknown KPI '{metric}'")
        return getattr(self, metric)

    def metrics(self) -> Dict[str, float]:
        return {key: getattr(self, key) for key in KPI_KEYS}


def validate_metric_name(metric: str) -> str:
    """Returns metric if it names a flat KPI, raises KeyError otherwise."""
    if metric not in KPI_KEYS:
        raise KeyError(f"Unknown KPI '{metric}'. Expected one of: {', '.join(KPI_KEYS)}")
    return metric


def _sources(*nodes: Optional[InputWithSource]) -> Optional[List[SourceInfo]]:
    found = [s for s in (source_of(n) for n in nodes) if s is not None]
    return found or None


def _merge_sources(*groups: Optional[List[SourceInfo]]) -> Optional[List[SourceInfo]]:
    merged = [s for group in groups if group for s in group]
    return merged or None


# --- Revenue ---

def calculate_nights_sold(occupancy_rate: float, days_per_year: int = DEFAULT_DAYS_PER_YEAR) -> StageResult:
    nights = round_value(days_per_year * (occupancy_rate / 100))
    return nights, CalculationTrace(
        formula="Nights sold = Days per year × (Occupancy rate / 100)",
        variables={"days_per_year": days_per_year, "occupancy_rate_pct": occupancy_rate},
        result=nights,
    )


def calculate_annual_revenue(average_daily_rate: float, nights_sold: float,
                             sources: Optional[List[SourceInfo]] = None) -> StageResult:
    revenue = round_value(average_daily_rate * nights_sold)
    return revenue, CalculationTrace(
        formula="Gross annual revenue = Average daily rate × Nights sold",
        variables={"average_daily_rate": average_daily_rate, "nights_sold": nights_sold},
        result=revenue,
        sources=sources,
    )


# --- Expenses ---

def annualize_expense(line: ExpenseLine, annual_revenue: float, purchase_price: float) -> StageResult:
    """Annual amount of one expense line according to its type, rounded to cents."""
    amount = effective_value(line.amount)
    sources = _sources(line.amount)

    if line.type == EXPENSE_FIXED_ANNUAL:
        annual = amount
        formula = f"{line.name} = Annual amount"
        variables = {"annual_amount": amount}
    elif line.type == EXPENSE_FIXED_MONTHLY:
        annual = amount * MONTHS_PER_YEAR
        formula = f"{line.name} = Monthly amount × 12"
        variables = {"monthly_amount": amount}
    elif line.type == EXPENSE_PERCENTAGE_REVENUE:
        annual = annual_revenue * amount / 100
        formula = f"{line.name} = Gross annual revenue × (Percentage / 100)"
        variables = {"annual_revenue": annual_revenue, "percentage": amount}
    elif line.type == EXPENSE_PERCENTAGE_PROPERTY_VALUE:
        annual = purchase_price * amount / 100
        formula = f"{line.name} = Purchase price × (Percentage / 100)"
        variables = {"purchase_price": purchase_price, "percentage": amount}
    else:
        raise ValueError(f"Unknown expense type '{line.type}' on expense line '{line.id}'")

    annual = round_value(annual)
    return annual, CalculationTrace(formula=formula, variables=variables, result=annual, sources=sources)


def calculate_expenses(
    expense_lines: Sequence[ExpenseLine],
    annual_revenue: float,
    purchase_price: float,
) -> Tuple[float, Dict[str, float], List[CalculationTrace], CalculationTrace]:
    """
    Annualizes and sums every expense line.

    Returns:
        (total, by_category, per_line_traces, total_trace)
    """
    total = 0.0
    by_category: Dict[str, float] = {}
    line_traces: List[CalculationTrace] = []
    sources: List[SourceInfo] = []

    for line in expense_lines:
        annual, trace = annualize_expense(line, annual_revenue, purchase_price)
        total += annual
        category = line.category_or_default
        by_category[category] = by_category.get(category, 0.0) + annual
        line_traces.append(trace)
        if trace.sources:
            sources.extend(trace.sources)

    total = round_value(total)
    total_trace = CalculationTrace(
        formula="Total expenses = Sum of all expense lines",
        variables={f"line_{i + 1}": t.result for i, t in enumerate(line_traces)},
        result=total,
        sources=sources or None,
    )
    return total, by_category, line_traces, total_trace


def calculate_noi(annual_revenue: float, total_expenses: float) -> StageResult:
    noi = round_value(annual_revenue - total_expenses)
    return noi, CalculationTrace(
        formula="NOI = Gross annual revenue - Total expenses (excluding debt service)",
        variables={"annual_revenue": annual_revenue, "total_expenses": total_expenses},
        result=noi,
    )


# --- Financing ---

def calculate_loan_amount(purchase_price: float, down_payment: float,
                          sources: Optional[List[SourceInfo]] = None) -> StageResult:
    loan = round_value(purchase_price - down_payment)
    return loan, CalculationTrace(
        formula="Loan amount = Purchase price - Down payment",
        variables={"purchase_price": purchase_price, "down_payment": down_payment},
        result=loan,
        sources=sources,
    )


def calculate_periodic_payment(loan_amount: float, annual_rate: float, amortization_years: float,
                               frequency: str, sources: Optional[List[SourceInfo]] = None) -> StageResult:
    n_per_year = payments_per_year(frequency)
    total_payments = amortization_years * n_per_year
    rate = periodic_rate(annual_rate, frequency)

    variables: Dict[str, Any] = {
        "loan_amount": loan_amount,
        "annual_rate_pct": annual_rate,
        "periodic_rate_pct": round_value(rate * 100, RATE_DECIMALS),
        "amortization_years": amortization_years,
        "payments_per_year": n_per_year,
        "total_payments": total_payments,
    }
    if total_payments <= 0:
        logger.warning(f"Amortization of {amortization_years} years gives no payments. Periodic payment set to 0.")
        variables[NOTE_KEY] = "Division by zero avoided - amortization period has no payments"
    elif rate == 0:
        variables[NOTE_KEY] = "Zero interest rate - payment = Loan / Number of payments"

    payment = round_value(annuity_payment(loan_amount, rate, total_payments))
    return payment, CalculationTrace(
        formula="Periodic payment = (Loan × r × (1+r)^n) / ((1+r)^n - 1)\nwhere r = periodic rate, n = number of payments",
        variables=variables,
        result=payment,
        sources=sources,
    )


def calculate_annual_debt_service(periodic_payment: float, frequency: str,
                                  sources: Optional[List[SourceInfo]] = None) -> StageResult:
    n_per_year = payments_per_year(frequency)
    annual = round_value(periodic_payment * n_per_year)
    return annual, CalculationTrace(
        formula="Annual debt service = Periodic payment × Payments per year",
        variables={"periodic_payment": periodic_payment, "payments_per_year": n_per_year},
        result=annual,
        sources=sources,
    )


# --- Acquisition ---

def transfer_duty_for(base_amount: float) -> float:
    """Progressive levy: each bracket's rate applies only to the part of the base inside it."""
    duty = min(base_amount, TRANSFER_DUTY_TIER1_LIMIT) * TRANSFER_DUTY_TIER1_RATE
    if base_amount > TRANSFER_DUTY_TIER1_LIMIT:
        duty += (min(base_amount, TRANSFER_DUTY_TIER2_LIMIT) - TRANSFER_DUTY_TIER1_LIMIT) * TRANSFER_DUTY_TIER2_RATE
    if base_amount > TRANSFER_DUTY_TIER2_LIMIT:
        duty += (base_amount - TRANSFER_DUTY_TIER2_LIMIT) * TRANSFER_DUTY_TIER3_RATE
    return duty


def calculate_transfer_duties(purchase_price: float, municipal_assessment: Optional[float] = None,
                              sources: Optional[List[SourceInfo]] = None) -> StageResult:
    has_assessment = municipal_assessment is not None and municipal_assessment > 0
    base_amount = max(purchase_price, municipal_assessment) if has_assessment else purchase_price
    duty = round_value(transfer_duty_for(base_amount))

    variables: Dict[str, Any] = {"purchase_price": purchase_price}
    if has_assessment:
        variables["municipal_assessment"] = municipal_assessment
        variables["base_amount"] = base_amount
        variables[NOTE_KEY] = ("Purchase price >= municipal assessment" if base_amount == purchase_price
                               else "Municipal assessment >= purchase price")
    else:
        variables[NOTE_KEY] = "No municipal assessment, purchase price used as base"

    return duty, CalculationTrace(
        formula=(
            "Transfer duties (progressive brackets):\n"
            f"- {TRANSFER_DUTY_TIER1_RATE:.1%} up to {TRANSFER_DUTY_TIER1_LIMIT:,.0f}\n"
            f"- {TRANSFER_DUTY_TIER2_RATE:.1%} from {TRANSFER_DUTY_TIER1_LIMIT:,.0f} to {TRANSFER_DUTY_TIER2_LIMIT:,.0f}\n"
            f"- {TRANSFER_DUTY_TIER3_RATE:.1%} above {TRANSFER_DUTY_TIER2_LIMIT:,.0f}"
        ),
        variables=variables,
        result=duty,
        sources=sources,
    )


def calculate_total_acquisition_fees(transfer_duties: float, notary_fees: float, other: float,
                                     sources: Optional[List[SourceInfo]] = None) -> StageResult:
    total = round_value(transfer_duties + notary_fees + other)
    return total, CalculationTrace(
        formula="Acquisition fees = Transfer duties + Notary fees + Other",
        variables={"transfer_duties": transfer_duties, "notary_fees": notary_fees, "other": other},
        result=total,
        sources=sources,
    )


def calculate_initial_investment(down_payment: float, acquisition_fees: float,
                                 sources: Optional[List[SourceInfo]] = None) -> StageResult:
    initial = round_value(down_payment + acquisition_fees)
    return initial, CalculationTrace(
        formula="Initial investment = Down payment + Acquisition fees",
        variables={"down_payment": down_payment, "acquisition_fees": acquisition_fees},
        result=initial,
        sources=sources,
    )


# --- Returns ---

def calculate_annual_cashflow(annual_revenue: float, total_expenses: float, annual_debt_service: float,
                              sources: Optional[List[SourceInfo]] = None) -> StageResult:
    cashflow = round_value(annual_revenue - total_expenses - annual_debt_service)
    return cashflow, CalculationTrace(
        formula="Annual cashflow = Gross revenue - Total expenses - Debt service",
        variables={
            "annual_revenue": annual_revenue,
            "total_expenses": total_expenses,
            "annual_debt_service": annual_debt_service,
        },
        result=cashflow,
        sources=sources,
    )


def calculate_principal_paid_first_year(loan_amount: float, annual_rate: float, frequency: str,
                                        periodic_payment: float,
                                        sources: Optional[List[SourceInfo]] = None) -> StageResult:
    n_per_year = payments_per_year(frequency)
    principal = round_value(principal_paid_in_first_year(
        loan_amount, periodic_rate(annual_rate, frequency), periodic_payment, n_per_year
    ))
    return principal, CalculationTrace(
        formula="Capitalization = Sum of principal repaid over the first year's payments",
        variables={
            "loan_amount": loan_amount,
            "annual_rate_pct": annual_rate,
            "periodic_payment": periodic_payment,
            "payments_per_year": n_per_year,
        },
        result=principal,
        sources=sources,
    )


def calculate_property_appreciation(purchase_price: float, appreciation_rate: float,
                                    sources: Optional[List[SourceInfo]] = None) -> StageResult:
    appreciation = round_value(purchase_price * (appreciation_rate / 100))
    return appreciation, CalculationTrace(
        formula="Appreciation = Purchase price × (Appreciation rate / 100)",
        variables={"purchase_price": purchase_price, "appreciation_rate_pct": appreciation_rate},
        result=appreciation,
        sources=sources,
    )


def calculate_total_annual_profit(cashflow: float, capitalization: float, appreciation: float) -> StageResult:
    total = round_value(cashflow + capitalization + appreciation)
    return total, CalculationTrace(
        formula="Total annual profit = Cashflow + Capitalization + Appreciation",
        variables={"cashflow": cashflow, "capitalization": capitalization, "appreciation": appreciation},
        result=total,
    )


def _ratio_pct(numerator: float, denominator: float, formula: str, variables: Dict[str, Any],
               guard_note: str, sources: Optional[List[SourceInfo]] = None) -> StageResult:
    """numerator / denominator × 100, or 0 with a note when denominator <= 0."""
    if denominator <= 0:
        logger.warning(f"Zero guard hit for '{formula.splitlines()[0]}' (denominator={denominator}).")
        return 0.0, CalculationTrace(
            formula=formula,
            variables={**variables, NOTE_KEY: guard_note},
            result=0.0,
            sources=sources,
        )
    value = round_value(numerator / denominator * 100, MONEY_DECIMALS)
    return value, CalculationTrace(formula=formula, variables=variables, result=value, sources=sources)


def calculate_roi(profit: float, initial_investment: float, label: str,
                  sources: Optional[List[SourceInfo]] = None) -> StageResult:
    return _ratio_pct(
        profit, initial_investment,
        formula=f"{label} ROI (%) = ({label} / Initial investment) × 100",
        variables={label.lower(): profit, "initial_investment": initial_investment},
        guard_note="Division by zero avoided - initial investment is not positive",
        sources=sources,
    )


def calculate_cash_on_cash(annual_cashflow: float, initial_investment: float,
                           sources: Optional[List[SourceInfo]] = None) -> StageResult:
    return _ratio_pct(
        annual_cashflow, initial_investment,
        formula="Cash-on-cash (%) = (Annual cashflow / Initial investment) × 100",
        variables={"annual_cashflow": annual_cashflow, "initial_investment": initial_investment},
        guard_note="Division by zero avoided - initial investment is not positive",
        sources=sources,
    )


def calculate_cap_rate(annual_revenue: float, total_expenses: float, purchase_price: float,
                       sources: Optional[List[SourceInfo]] = None) -> StageResult:
    noi = annual_revenue - total_expenses
    return _ratio_pct(
        noi, purchase_price,
        formula="Cap rate (%) = (NOI / Purchase price) × 100\nwhere NOI = Gross revenue - Expenses (excluding debt service)",
        variables={
            "annual_revenue": annual_revenue,
            "total_expenses": total_expenses,
            "noi": round_value(noi),
            "purchase_price": purchase_price,
        },
        guard_note="Division by zero avoided - purchase price is not positive",
        sources=sources,
    )


# --- Pipeline ---

@engine_error_handler
def calculate_kpis(inputs: ProjectInputs) -> KPIResults:
    """
    Computes every KPI of a project in dependency order.

    Pure: the same tree always yields an identical result.

    Args:
        inputs: A validated parameter tree.

    Returns:
        KPIResults with a trace for every flat metric.
    """
    revenue_in = inputs.revenue
    fin = inputs.financing
    fees = inputs.acquisition_fees

    # Resolve every input once (range default or scalar value)
    adr = effective_value(revenue_in.average_daily_rate)
    occupancy = effective_value(revenue_in.occupancy_rate)
    days_per_year = revenue_in.days_per_year or DEFAULT_DAYS_PER_YEAR
    purchase_price = effective_value(fin.purchase_price)
    municipal_assessment = effective_value(fin.municipal_assessment) if fin.municipal_assessment is not None else None
    down_payment = effective_value(fin.down_payment)
    interest_rate = effective_value(fin.interest_rate)
    amortization = effective_value(fin.amortization_years)
    frequency = fin.payment_frequency
    appreciation_rate = effective_value(fin.annual_appreciation_rate)
    notary_fees = effective_value(fees.notary_fees)
    other_fees = effective_value(fees.other)

    revenue_sources = _sources(revenue_in.average_daily_rate, revenue_in.occupancy_rate)
    financing_sources = _sources(fin.purchase_price, fin.down_payment, fin.interest_rate, fin.amortization_years)
    appreciation_sources = _sources(fin.purchase_price, fin.annual_appreciation_rate)
    duty_sources = _sources(fin.purchase_price, fin.municipal_assessment)
    fee_sources = _sources(fees.notary_fees, fees.other)

    nights_sold, nights_trace = calculate_nights_sold(occupancy, days_per_year)
    annual_revenue, revenue_trace = calculate_annual_revenue(adr, nights_sold, revenue_sources)
    total_expenses, by_category, line_traces, expenses_trace = calculate_expenses(
        inputs.expenses, annual_revenue, purchase_price
    )
    noi, noi_trace = calculate_noi(annual_revenue, total_expenses)
    loan_amount, loan_trace = calculate_loan_amount(purchase_price, down_payment, financing_sources)
    periodic_payment, payment_trace = calculate_periodic_payment(
        loan_amount, interest_rate, amortization, frequency, financing_sources
    )
    debt_service, debt_trace = calculate_annual_debt_service(periodic_payment, frequency, financing_sources)
    duty, duty_trace = calculate_transfer_duties(purchase_price, municipal_assessment, duty_sources)
    acquisition_fees, fees_trace = calculate_total_acquisition_fees(
        duty, notary_fees, other_fees, _merge_sources(duty_sources, fee_sources)
    )
    initial_investment, investment_trace = calculate_initial_investment(
        down_payment, acquisition_fees, _merge_sources(financing_sources, fee_sources)
    )
    cashflow, cashflow_trace = calculate_annual_cashflow(annual_revenue, total_expenses, debt_service)
    principal, principal_trace = calculate_principal_paid_first_year(
        loan_amount, interest_rate, frequency, periodic_payment, financing_sources
    )
    appreciation, appreciation_trace = calculate_property_appreciation(
        purchase_price, appreciation_rate, appreciation_sources
    )
    total_profit, profit_trace = calculate_total_annual_profit(cashflow, principal, appreciation)

    cashflow_roi, cashflow_roi_trace = calculate_roi(cashflow, initial_investment, "Cashflow")
    capitalization_roi, capitalization_roi_trace = calculate_roi(principal, initial_investment, "Capitalization")
    appreciation_roi, appreciation_roi_trace = calculate_roi(appreciation, initial_investment, "Appreciation")
    total_roi, total_roi_trace = calculate_roi(total_profit, initial_investment, "Total")
    cash_on_cash, coc_trace = calculate_cash_on_cash(cashflow, initial_investment)
    cap_rate, cap_rate_trace = calculate_cap_rate(annual_revenue, total_expenses, purchase_price)

    logger.debug(f"KPIs computed: revenue={annual_revenue:.2f}, cashflow={cashflow:.2f}, cap_rate={cap_rate:.2f}")

    return KPIResults(
        nights_sold=nights_sold,
        annual_revenue=annual_revenue,
        total_expenses=total_expenses,
        noi=noi,
        loan_amount=loan_amount,
        periodic_payment=periodic_payment,
        annual_debt_service=debt_service,
        transfer_duties=duty,
        total_acquisition_fees=acquisition_fees,
        initial_investment=initial_investment,
        annual_cashflow=cashflow,
        principal_paid_first_year=principal,
        property_appreciation=appreciation,
        total_annual_profit=total_profit,
        cashflow_roi=cashflow_roi,
        capitalization_roi=capitalization_roi,
        appreciation_roi=appreciation_roi,
        total_roi=total_roi,
        cash_on_cash=cash_on_cash,
        cap_rate=cap_rate,
        expenses_by_category=by_category,
        expense_traces=tuple(line_traces),
        traces={
            "nights_sold": nights_trace,
            "annual_revenue": revenue_trace,
            "total_expenses": expenses_trace,
            "noi": noi_trace,
            "loan_amount": loan_trace,
            "periodic_payment": payment_trace,
            "annual_debt_service": debt_trace,
            "transfer_duties": duty_trace,
            "total_acquisition_fees": fees_trace,
            "initial_investment": investment_trace,
            "annual_cashflow": cashflow_trace,
            "principal_paid_first_year": principal_trace,
            "property_appreciation": appreciation_trace,
            "total_annual_profit": profit_trace,
            "cashflow_roi": cashflow_roi_trace,
            "capitalization_roi": capitalization_roi_trace,
            "appreciation_roi": appreciation_roi_trace,
            "total_roi": total_roi_trace,
            "cash_on_cash": coc_trace,
            "cap_rate": cap_rate_trace,
        },
    )
