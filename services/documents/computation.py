"""Monetary computations for sales and purchase documents.

All prices are VAT-inclusive (gross) pesos under Chile's fixed 19% IVA.
Net amounts are derived by dividing by 1.19 and rounding half-up to whole
pesos; tax is the remainder, so ``net + tax == gross`` always holds.

Every function here is pure: the same input collection always yields the
same output, so results can be recomputed whenever a list is refreshed.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, date, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from zoneinfo import ZoneInfo

from services.documents.schema import Document, InventoryItem, LineItem

VAT_RATE = Decimal("0.19")
VAT_FACTOR = Decimal("1") + VAT_RATE

_PESO = Decimal("1")
_CENT = Decimal("0.01")
_ZERO = Decimal("0")

# Stock thresholds for inventory badges
LOW_STOCK_THRESHOLD = 3
WARNING_STOCK_THRESHOLD = 6


@dataclass(frozen=True)
class TaxBreakdown:
    """Gross amount split into net and VAT."""

    gross: Decimal
    net: Decimal
    tax: Decimal


@dataclass(frozen=True)
class PeriodTotals:
    """Aggregated amounts for documents in a reporting period."""

    total_gross: Decimal
    total_net: Decimal
    total_tax: Decimal
    count: int


@dataclass(frozen=True)
class ProfitMargin:
    """Profit and margin of sales over purchases."""

    profit: Decimal
    margin_percent: Decimal


@dataclass(frozen=True)
class TopSeller:
    """Best selling item by units."""

    name: str
    total_quantity: int


@dataclass(frozen=True)
class VatPosition:
    """IVA débito (sales) minus IVA crédito (purchases)."""

    debit: Decimal
    credit: Decimal
    payable: Decimal


@dataclass(frozen=True)
class PotentialProfit:
    """Profit obtainable by selling the current stock at current prices."""

    total: Decimal
    average_margin_percent: Decimal


class StockLevel(str, Enum):
    """Inventory stock badge."""

    LOW = "low"
    WARNING = "warning"
    OK = "ok"


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Convert a numeric value to Decimal without binary float artifacts.

    Args:
        value: Amount as Decimal, int, float or numeric string

    Returns:
        Decimal amount
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def resolve_timezone(name: str) -> tzinfo:
    """Resolve an IANA timezone name ("UTC" short-circuits)."""
    if name.upper() == "UTC":
        return UTC
    return ZoneInfo(name)


def total_gross(items: Iterable[LineItem]) -> Decimal:
    """Sum of quantity times gross unit price over all items.

    Args:
        items: Line items

    Returns:
        Exact gross total
    """
    return sum((item.quantity * item.unit_price for item in items), _ZERO)


def net_of(gross: Decimal | int | float | str) -> Decimal:
    """Net amount contained in a gross amount, rounded to whole pesos."""
    return (to_money(gross) / VAT_FACTOR).quantize(_PESO, rounding=ROUND_HALF_UP)


def gross_up(net: Decimal | int | float | str) -> Decimal:
    """Gross amount for a net amount (net times 1.19), unrounded."""
    return to_money(net) * VAT_FACTOR


def decompose(gross: Decimal | int | float | str) -> TaxBreakdown:
    """Split a gross amount into net and tax.

    Net is rounded first and tax is the remainder (not gross * 0.19 / 1.19),
    which keeps ``net + tax == gross`` exact.

    Args:
        gross: VAT-inclusive amount

    Returns:
        TaxBreakdown with gross, net and tax
    """
    amount = to_money(gross)
    net = net_of(amount)
    return TaxBreakdown(gross=amount, net=net, tax=amount - net)


def local_date(document: Document, tz: tzinfo = UTC) -> date:
    """Calendar date of a document in the reporting timezone."""
    return document.document_date.astimezone(tz).date()


def monthly_aggregate(
    documents: Iterable[Document], year: int, month: int, tz: tzinfo = UTC
) -> PeriodTotals:
    """Aggregate documents dated in a calendar month.

    The VAT split is applied to the aggregated gross, not per document.

    Args:
        documents: Documents to aggregate (typically all sales or all purchases)
        year: Calendar year
        month: Calendar month (1-12)
        tz: Reporting timezone used to place documents in a month

    Returns:
        PeriodTotals for the month
    """
    gross = _ZERO
    count = 0
    for document in documents:
        day = local_date(document, tz)
        if day.year == year and day.month == month:
            gross += document.total_gross
            count += 1

    breakdown = decompose(gross)
    return PeriodTotals(
        total_gross=breakdown.gross,
        total_net=breakdown.net,
        total_tax=breakdown.tax,
        count=count,
    )


def daily_total(documents: Iterable[Document], day: date, tz: tzinfo = UTC) -> Decimal:
    """Gross total of documents dated on a given local day."""
    return sum(
        (d.total_gross for d in documents if local_date(d, tz) == day),
        _ZERO,
    )


def monthly_totals(documents: Iterable[Document], tz: tzinfo = UTC) -> list[tuple[str, Decimal]]:
    """Gross totals per calendar month, oldest first.

    Args:
        documents: Documents to group
        tz: Reporting timezone

    Returns:
        List of (YYYY-MM, gross total) tuples
    """
    buckets: dict[str, Decimal] = {}
    for document in documents:
        key = local_date(document, tz).strftime("%Y-%m")
        buckets[key] = buckets.get(key, _ZERO) + document.total_gross
    return sorted(buckets.items())


def profit_and_margin(
    total_sales_gross: Decimal | int, total_purchases_gross: Decimal | int
) -> ProfitMargin:
    """Profit of sales over purchases and margin as a percentage of sales.

    Args:
        total_sales_gross: Gross sales for the period
        total_purchases_gross: Gross purchases for the period

    Returns:
        ProfitMargin (margin is 0 when there are no sales)
    """
    sales = to_money(total_sales_gross)
    profit = sales - to_money(total_purchases_gross)
    if sales > 0:
        margin = (profit / sales * 100).quantize(_CENT, rounding=ROUND_HALF_UP)
    else:
        margin = _ZERO
    return ProfitMargin(profit=profit, margin_percent=margin)


def top_selling_item(documents: Iterable[Document]) -> TopSeller | None:
    """Item with the most units across documents.

    Names are matched exactly (case-sensitive). Ties go to the name seen first.

    Args:
        documents: Documents whose items are counted

    Returns:
        TopSeller, or None when there are no items
    """
    quantities: dict[str, int] = {}
    for document in documents:
        for item in document.items:
            quantities[item.name] = quantities.get(item.name, 0) + item.quantity

    if not quantities:
        return None

    # max() keeps the first maximal key in insertion order
    name = max(quantities, key=lambda n: quantities[n])
    return TopSeller(name=name, total_quantity=quantities[name])


def per_unit_profit(
    unit_sell_price_gross: Decimal | int | float | str,
    unit_cost_net: Decimal | int | float | str,
) -> Decimal:
    """Profit per unit: gross sell price minus the grossed-up net cost."""
    return to_money(unit_sell_price_gross) - gross_up(unit_cost_net)


def vat_position(sales: PeriodTotals, purchases: PeriodTotals) -> VatPosition:
    """VAT payable for a period from sales and purchase totals."""
    return VatPosition(
        debit=sales.total_tax,
        credit=purchases.total_tax,
        payable=sales.total_tax - purchases.total_tax,
    )


def inventory_value(items: Iterable[InventoryItem]) -> Decimal:
    """Stock valued at gross sell price."""
    return sum((i.stock * i.unit_sell_price for i in items), _ZERO)


def inventory_net_value(items: Iterable[InventoryItem]) -> Decimal:
    """Stock valued at net sell price (per-unit net rounded to whole pesos)."""
    return sum((i.stock * net_of(i.unit_sell_price) for i in items), _ZERO)


def potential_profit(items: Iterable[InventoryItem]) -> PotentialProfit:
    """Profit from selling all stock, and average per-unit margin.

    Items without a sell price are left out of the margin average.

    Args:
        items: Inventory items

    Returns:
        PotentialProfit
    """
    total = _ZERO
    margins: list[Decimal] = []
    for item in items:
        unit_profit = per_unit_profit(item.unit_sell_price, item.unit_cost)
        total += unit_profit * item.stock
        if item.unit_sell_price > 0:
            margins.append(unit_profit / item.unit_sell_price * 100)

    average = _ZERO
    if margins:
        average = (sum(margins, _ZERO) / len(margins)).quantize(_CENT, rounding=ROUND_HALF_UP)
    return PotentialProfit(total=total, average_margin_percent=average)


def stock_level(stock: int) -> StockLevel:
    """Badge for a stock quantity."""
    if stock <= LOW_STOCK_THRESHOLD:
        return StockLevel.LOW
    if stock <= WARNING_STOCK_THRESHOLD:
        return StockLevel.WARNING
    return StockLevel.OK
