# rentalsaber/core/inputs.py
"""
Define the parameter tree of a short-term rental project.

Every numeric input is an InputWithSource: a scalar value plus an optional
range (min/max/default) and provenance metadata. The tree is immutable;
changes go through rentalsaber.core.paths, which copies the nodes it touches.
"""

from dataclasses import dataclass, field, asdict, fields, is_dataclass
from typing import Dict, Any, List, Optional, Tuple, Union
import logging

from .constants import (
    DEFAULT_DAYS_PER_YEAR, DEFAULT_EXPENSE_CATEGORY, FREQUENCY_MONTHLY,
    EXPENSE_FIXED_ANNUAL, EXPENSE_FIXED_MONTHLY, EXPENSE_PERCENTAGE_REVENUE,
    CATEGORY_SERVICES, CATEGORY_MANAGEMENT, CATEGORY_MAINTENANCE,
    CATEGORY_UTILITIES, CATEGORY_TAXES, CATEGORY_INSURANCE,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceInfo:
    """Provenance of an input. Carried into traces, never used in arithmetic."""
    source: Optional[str] = None # URL, document, broker quote...
    remarks: Optional[str] = None


@dataclass(frozen=True)
class RangeValue:
    """Bounded alternative to a scalar. Expected: min < max and min <= default <= max."""
    min: float
    max: float
    default: float
    use_range: bool = False # When True the default replaces the scalar value


@dataclass(frozen=True)
class InputWithSource:
    """A scalar-or-range numeric input."""
    value: float = 0.0
    range: Optional[RangeValue] = None
    source_info: Optional[SourceInfo] = None

    @property
    def effective_value(self) -> float:
        return effective_value(self)

    @property
    def range_enabled(self) -> bool:
        return self.range is not None and self.range.use_range


Numeric = Union[InputWithSource, int, float]


def effective_value(node: Numeric) -> float:
    """
    Resolves the number an input stands for.

    If a range is present and enabled the effective value is range.default,
    otherwise it is the scalar value. Plain numbers resolve to themselves.
    This is the only place the scalar/range rule is implemented.
    """
    if isinstance(node, InputWithSource):
        if node.range is not None and node.range.use_range:
            return node.range.default
        return node.value
    return node


def source_of(node: Optional[Numeric]) -> Optional[SourceInfo]:
    """Returns the SourceInfo attached to an input, if any."""
    if isinstance(node, InputWithSource):
        return node.source_info
    return None


@dataclass(frozen=True)
class ExpenseLine:
    """One operating expense. amount is a currency amount or a percentage depending on type."""
    id: str
    name: str
    type: str = EXPENSE_FIXED_ANNUAL
    amount: InputWithSource = field(default_factory=InputWithSource)
    category: Optional[str] = None

    @property
    def category_or_default(self) -> str:
        return self.category or DEFAULT_EXPENSE_CATEGORY


@dataclass(frozen=True)
class RevenueInputs:
    average_daily_rate: InputWithSource = field(default_factory=InputWithSource) # ADR ($/night)
    occupancy_rate: InputWithSource = field(default_factory=InputWithSource) # %
    days_per_year: int = DEFAULT_DAYS_PER_YEAR


@dataclass(frozen=True)
class FinancingInputs:
    purchase_price: InputWithSource = field(default_factory=InputWithSource)
    down_payment: InputWithSource = field(default_factory=InputWithSource) # $
    interest_rate: InputWithSource = field(default_factory=InputWithSource) # Annual %
    amortization_years: InputWithSource = field(default_factory=lambda: InputWithSource(25.0))
    payment_frequency: str = FREQUENCY_MONTHLY
    annual_appreciation_rate: InputWithSource = field(default_factory=InputWithSource) # %
    municipal_assessment: Optional[InputWithSource] = None # Falls back to purchase price
    down_payment_percent: Optional[InputWithSource] = None # Informational only


@dataclass(frozen=True)
class AcquisitionFees:
    transfer_duties: InputWithSource = field(default_factory=InputWithSource) # Informational, duty is computed
    notary_fees: InputWithSource = field(default_factory=InputWithSource)
    other: InputWithSource = field(default_factory=InputWithSource)


@dataclass(frozen=True)
class ProjectInputs:
    """Root of the parameter tree."""
    name: str = "Project"
    revenue: RevenueInputs = field(default_factory=RevenueInputs)
    expenses: Tuple[ExpenseLine, ...] = ()
    financing: FinancingInputs = field(default_factory=FinancingInputs)
    acquisition_fees: AcquisitionFees = field(default_factory=AcquisitionFees)

    def to_dict(self) -> Dict[str, Any]:
        return to_dict(self)


# --- Dict conversion ---

def to_dict(inputs: ProjectInputs) -> Dict[str, Any]:
    """Converts the tree to nested plain dicts (expense lines become a list)."""
    data = asdict(inputs)
    data["expenses"] = list(data["expenses"])
    return data


def _input_from_dict(data: Any) -> InputWithSource:
    if isinstance(data, InputWithSource):
        return data
    if isinstance(data, (int, float)) and not isinstance(data, bool):
        return InputWithSource(value=float(data))
    if not isinstance(data, dict) or "value" not in data:
        raise ValueError(f"Expected a numeric input with a 'value' key, got {data!r}")
    range_data = data.get("range")
    source_data = data.get("source_info")
    return InputWithSource(
        value=data["value"],
        range=RangeValue(**range_data) if range_data is not None else None,
        source_info=SourceInfo(**source_data) if source_data is not None else None,
    )


def _optional_input(data: Any) -> Optional[InputWithSource]:
    return _input_from_dict(data) if data is not None else None


def from_dict(data: Dict[str, Any]) -> ProjectInputs:
    """
    Builds a ProjectInputs from nested dicts as produced by to_dict().
    Numeric leaves may also be given as bare numbers. Missing sections take the dataclass defaults.
    """
    revenue = data.get("revenue", {})
    financing = data.get("financing", {})
    fees = data.get("acquisition_fees", {})

    expenses = tuple(
        ExpenseLine(
            id=str(line["id"]),
            name=line["name"],
            type=line.get("type", EXPENSE_FIXED_ANNUAL),
            amount=_input_from_dict(line["amount"]),
            category=line.get("category"),
        )
        for line in data.get("expenses", [])
    )

    revenue_defaults = RevenueInputs()
    financing_defaults = FinancingInputs()
    fees_defaults = AcquisitionFees()
    return ProjectInputs(
        name=data.get("name", ProjectInputs.name),
        revenue=RevenueInputs(
            average_daily_rate=_input_from_dict(revenue.get("average_daily_rate", revenue_defaults.average_daily_rate)),
            occupancy_rate=_input_from_dict(revenue.get("occupancy_rate", revenue_defaults.occupancy_rate)),
            days_per_year=revenue.get("days_per_year") or DEFAULT_DAYS_PER_YEAR,
        ),
        expenses=expenses,
        financing=FinancingInputs(
            purchase_price=_input_from_dict(financing.get("purchase_price", financing_defaults.purchase_price)),
            down_payment=_input_from_dict(financing.get("down_payment", financing_defaults.down_payment)),
            interest_rate=_input_from_dict(financing.get("interest_rate", financing_defaults.interest_rate)),
            amortization_years=_input_from_dict(financing.get("amortization_years", financing_defaults.amortization_years)),
            payment_frequency=financing.get("payment_frequency", financing_defaults.payment_frequency),
            annual_appreciation_rate=_input_from_dict(
                financing.get("annual_appreciation_rate", financing_defaults.annual_appreciation_rate)
            ),
            municipal_assessment=_optional_input(financing.get("municipal_assessment")),
            down_payment_percent=_optional_input(financing.get("down_payment_percent")),
        ),
        acquisition_fees=AcquisitionFees(
            transfer_duties=_input_from_dict(fees.get("transfer_duties", fees_defaults.transfer_duties)),
            notary_fees=_input_from_dict(fees.get("notary_fees", fees_defaults.notary_fees)),
            other=_input_from_dict(fees.get("other", fees_defaults.other)),
        ),
    )


def iter_inputs(node: Any, prefix: str = "") -> List[Tuple[str, InputWithSource]]:
    """
    Lists every (path, InputWithSource) pair of a record subtree, in field order.
    Expense lines are not walked here; callers address them as expenses[i].amount.
    """
    found: List[Tuple[str, InputWithSource]] = []
    for f in fields(node):
        child = getattr(node, f.name)
        path = f"{prefix}.{f.name}" if prefix else f.name
        if isinstance(child, InputWithSource):
            found.append((path, child))
        elif is_dataclass(child):
            found.extend(iter_inputs(child, path))
    return found


def _ranged(value: float, low: float, high: float, remarks: Optional[str] = None) -> InputWithSource:
    source = SourceInfo(source="", remarks=remarks or "")
    return InputWithSource(
        value=value,
        range=RangeValue(min=low, max=high, default=value, use_range=True),
        source_info=source if remarks is not None else None,
    )


def default_project_inputs() -> ProjectInputs:
    """The reference chalet project used as a starting point and in examples."""
    return ProjectInputs(
        name="My Project",
        revenue=RevenueInputs(
            average_daily_rate=_ranged(215.0, 150.0, 300.0, remarks=""),
            occupancy_rate=_ranged(75.0, 50.0, 90.0, remarks=""),
            days_per_year=DEFAULT_DAYS_PER_YEAR,
        ),
        expenses=(
            ExpenseLine("1", "Tourist lodging certificate", EXPENSE_FIXED_ANNUAL, InputWithSource(875.0), CATEGORY_SERVICES),
            ExpenseLine("2", "Management company", EXPENSE_PERCENTAGE_REVENUE, _ranged(15.0, 10.0, 20.0), CATEGORY_MANAGEMENT),
            ExpenseLine("3", "Snow removal and lawn", EXPENSE_FIXED_ANNUAL, InputWithSource(800.0), CATEGORY_MAINTENANCE),
            ExpenseLine("4", "Cable / Internet / Streaming", EXPENSE_FIXED_ANNUAL, InputWithSource(1200.0), CATEGORY_UTILITIES),
            ExpenseLine("5", "Municipal taxes", EXPENSE_FIXED_ANNUAL, InputWithSource(3000.0), CATEGORY_TAXES),
            ExpenseLine("6", "School taxes", EXPENSE_FIXED_ANNUAL, InputWithSource(180.0), CATEGORY_TAXES),
            ExpenseLine("7", "Energy", EXPENSE_FIXED_MONTHLY, _ranged(200.0, 150.0, 250.0), CATEGORY_UTILITIES),
            ExpenseLine("8", "Home insurance", EXPENSE_FIXED_ANNUAL, InputWithSource(3000.0), CATEGORY_INSURANCE),
        ),
        financing=FinancingInputs(
            purchase_price=_ranged(550_000.0, 500_000.0, 600_000.0),
            down_payment=InputWithSource(27_500.0),
            interest_rate=_ranged(5.5, 4.5, 7.0),
            amortization_years=InputWithSource(30.0),
            payment_frequency=FREQUENCY_MONTHLY,
            annual_appreciation_rate=_ranged(2.0, 0.0, 10.0, remarks=""),
        ),
        acquisition_fees=AcquisitionFees(
            transfer_duties=InputWithSource(6_666.0),
            notary_fees=InputWithSource(1_500.0),
            other=InputWithSource(0.0),
        ),
    )
