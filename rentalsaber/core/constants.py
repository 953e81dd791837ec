# rentalsaber/core/constants.py
"""
Define constants and default configuration for the scenario analysis engine.
Logging setup lives in run_analysis.py; library modules only get their own logger.
"""

import logging
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

# --- Expense Line Types ---
EXPENSE_FIXED_ANNUAL = "FIXED_ANNUAL"
EXPENSE_FIXED_MONTHLY = "FIXED_MONTHLY"
EXPENSE_PERCENTAGE_REVENUE = "PERCENTAGE_REVENUE"
EXPENSE_PERCENTAGE_PROPERTY_VALUE = "PERCENTAGE_PROPERTY_VALUE"
EXPENSE_TYPES = [
    EXPENSE_FIXED_ANNUAL,
    EXPENSE_FIXED_MONTHLY,
    EXPENSE_PERCENTAGE_REVENUE,
    EXPENSE_PERCENTAGE_PROPERTY_VALUE,
]

# --- Expense Categories ---
CATEGORY_MAINTENANCE = "Maintenance"
CATEGORY_SERVICES = "Services"
CATEGORY_INSURANCE = "Insurance"
CATEGORY_TAXES = "Taxes"
CATEGORY_UTILITIES = "Utilities"
CATEGORY_MANAGEMENT = "Management"
CATEGORY_OTHER = "Other"
EXPENSE_CATEGORIES = [
    CATEGORY_MAINTENANCE, CATEGORY_SERVICES, CATEGORY_INSURANCE, CATEGORY_TAXES,
    CATEGORY_UTILITIES, CATEGORY_MANAGEMENT, CATEGORY_OTHER,
]
# DEFAULT_EXPENSE_CATEGORY: Bucket used when an expense line has no category.
DEFAULT_EXPENSE_CATEGORY = CATEGORY_OTHER

# --- Payment Frequencies ---
FREQUENCY_MONTHLY = "MONTHLY"
FREQUENCY_BI_WEEKLY = "BI_WEEKLY"
FREQUENCY_WEEKLY = "WEEKLY"
FREQUENCY_ANNUAL = "ANNUAL"
# PAYMENTS_PER_YEAR: Number of loan payments per year for each frequency.
PAYMENTS_PER_YEAR: Dict[str, int] = {
    FREQUENCY_MONTHLY: 12,
    FREQUENCY_BI_WEEKLY: 26,
    FREQUENCY_WEEKLY: 52,
    FREQUENCY_ANNUAL: 1,
}
PAYMENT_FREQUENCIES = list(PAYMENTS_PER_YEAR)

# --- Calendar ---
DEFAULT_DAYS_PER_YEAR: int = 365
MONTHS_PER_YEAR: int = 12

# --- Transfer Duty Brackets (progressive, marginal) ---
TRANSFER_DUTY_TIER1_LIMIT = 52_800.0
TRANSFER_DUTY_TIER2_LIMIT = 264_000.0
TRANSFER_DUTY_TIER1_RATE = 0.005
TRANSFER_DUTY_TIER2_RATE = 0.010
TRANSFER_DUTY_TIER3_RATE = 0.015

# --- Numerical Constants ---
# FLOAT_ATOL: Absolute tolerance for floating-point comparisons.
FLOAT_ATOL = 1e-9
# MONEY_DECIMALS: Precision of every stored metric (currency, counts and percentages).
MONEY_DECIMALS: int = 2
# RATE_DECIMALS: Precision of intermediate rates shown in traces (e.g. periodic rate %).
RATE_DECIMALS: int = 4
# EQUALITY_TOLERANCE: Absolute tolerance for the '=' optimizer constraint.
EQUALITY_TOLERANCE = 0.01

# --- Optimizer ---
OBJECTIVE_MAXIMIZE = "MAXIMIZE"
OBJECTIVE_MINIMIZE = "MINIMIZE"
OBJECTIVES = [OBJECTIVE_MAXIMIZE, OBJECTIVE_MINIMIZE]
OPERATOR_GREATER_EQUAL = ">="
OPERATOR_LESS_EQUAL = "<="
OPERATOR_EQUAL = "="
CONSTRAINT_OPERATORS = [OPERATOR_GREATER_EQUAL, OPERATOR_LESS_EQUAL, OPERATOR_EQUAL]
DEFAULT_MAX_ITERATIONS = 10_000
MAX_OPTIMIZATION_ITERATIONS = 50_000
DEFAULT_TOP_K = 10
MIN_POINTS_PER_VARIABLE = 2

# --- Monte Carlo ---
DEFAULT_NUM_SIMULATIONS = 1000
# SIGMA_SPAN: Range width expressed in standard deviations ((max - min) / 6 -> 3 sigma each side).
SIGMA_SPAN = 6.0
P10 = 0.1
P90 = 0.9

# --- Sensitivity ---
DEFAULT_SENSITIVITY_STEPS_1D = 10
DEFAULT_SENSITIVITY_STEPS_2D = 15
MAX_SENSITIVITY_STEPS = 50

# --- Multi-Year Projections ---
DEFAULT_PROJECTION_YEARS = 10
MIN_PROJECTION_YEARS = 1
MAX_PROJECTION_YEARS = 50
# Annual escalation of revenue and of fixed expenses (%). Year 1 is unescalated.
DEFAULT_REVENUE_ESCALATION_RATE = 2.0
DEFAULT_EXPENSE_ESCALATION_RATE = 2.5
# CAPEX reserve as a share of the year's property value (%).
DEFAULT_CAPEX_RATE = 1.0
DEFAULT_DISCOUNT_RATE = 8.0
# Broker and closing costs on sale, as a share of the sale price (%).
DEFAULT_SALE_COSTS_RATE = 5.0
# EXIT_YEARS: Candidate holding periods for exit scenarios. The horizon itself is always added.
EXIT_YEARS: Tuple[int, ...] = (5, 10, 15, 20)
# DSCR_NO_DEBT: Reported coverage ratio for a year without debt service.
DSCR_NO_DEBT = 999.0

# --- KPI Keys ---
# KPI_KEYS: Flat metrics of a KPIResults, in pipeline order. Each has a trace.
KPI_KEYS: Tuple[str, ...] = (
    "nights_sold",
    "annual_revenue",
    "total_expenses",
    "noi",
    "loan_amount",
    "periodic_payment",
    "annual_debt_service",
    "transfer_duties",
    "total_acquisition_fees",
    "initial_investment",
    "annual_cashflow",
    "principal_paid_first_year",
    "property_appreciation",
    "total_annual_profit",
    "cashflow_roi",
    "capitalization_roi",
    "appreciation_roi",
    "total_roi",
    "cash_on_cash",
    "cap_rate",
)

# --- Labels ---
# PARAMETER_LABELS: Display labels for the addressable parameter paths.
PARAMETER_LABELS: Dict[str, str] = {
    "revenue.average_daily_rate": "Average daily rate",
    "revenue.occupancy_rate": "Occupancy rate",
    "financing.purchase_price": "Purchase price",
    "financing.municipal_assessment": "Municipal assessment",
    "financing.down_payment": "Down payment",
    "financing.interest_rate": "Interest rate",
    "financing.amortization_years": "Amortization",
    "financing.annual_appreciation_rate": "Annual appreciation rate",
    "acquisition_fees.transfer_duties": "Transfer duties",
    "acquisition_fees.notary_fees": "Notary fees",
    "acquisition_fees.other": "Other acquisition fees",
}

KPI_LABELS: Dict[str, str] = {
    "annual_cashflow": "Annual cashflow",
    "cash_on_cash": "Cash-on-cash",
    "cap_rate": "Cap rate",
    "annual_revenue": "Gross annual revenue",
    "total_expenses": "Total expenses",
    "noi": "Net operating income",
    "nights_sold": "Nights sold",
    "loan_amount": "Loan amount",
    "periodic_payment": "Periodic payment",
    "annual_debt_service": "Annual debt service",
    "total_acquisition_fees": "Acquisition fees",
    "initial_investment": "Initial investment",
    "total_roi": "Total ROI",
}
