"""Unit tests for the document computation engine.

Tests cover:
- Gross totals and VAT decomposition
- Monthly aggregation in the reporting timezone
- Profit, margin and top seller
- Inventory valuation and stock badges
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from services.documents.computation import (
    PeriodTotals,
    StockLevel,
    daily_total,
    decompose,
    gross_up,
    inventory_net_value,
    inventory_value,
    monthly_aggregate,
    monthly_totals,
    net_of,
    per_unit_profit,
    potential_profit,
    profit_and_margin,
    resolve_timezone,
    stock_level,
    top_selling_item,
    total_gross,
    vat_position,
)
from services.documents.schema import Document, DocumentKind, InventoryItem, LineItem

SANTIAGO = ZoneInfo("America/Santiago")


def _item(name: str, quantity: int, price: int | str) -> LineItem:
    return LineItem(name=name, quantity=quantity, unit_price=Decimal(price))


def _sale(when: datetime, *items: LineItem, number: str = "COT-1000") -> Document:
    return Document(kind=DocumentKind.SALE, number=number, document_date=when, items=list(items))


def test_total_gross_exact() -> None:
    items = [_item("A", 2, 10000), _item("B", 1, 5000)]

    assert total_gross(items) == Decimal("25000")


def test_total_gross_empty() -> None:
    assert total_gross([]) == Decimal("0")


def test_decompose_reference_values() -> None:
    """25000 gross splits into 21008 net and 3992 VAT."""
    breakdown = decompose(Decimal("25000"))

    assert breakdown.gross == Decimal("25000")
    assert breakdown.net == Decimal("21008")
    assert breakdown.tax == Decimal("3992")


def test_decompose_rounds_half_up() -> None:
    # 119 / 1.19 = 100 exactly; 1.785 / 1.19 = 1.5 -> 2
    assert decompose(119).net == Decimal("100")
    assert net_of(Decimal("1.785")) == Decimal("2")


def test_decompose_net_plus_tax_equals_gross_over_range() -> None:
    for gross in range(0, 10_000_000, 9973):
        breakdown = decompose(gross)
        assert breakdown.net + breakdown.tax == Decimal(gross)


def test_decompose_accepts_float_without_drift() -> None:
    assert decompose(0.1 + 0.2).gross == Decimal("0.30000000000000004")
    assert decompose(1190.0).net == Decimal("1000")


def test_gross_up() -> None:
    assert gross_up(1000) == Decimal("1190.00")
    assert gross_up(Decimal("333")) == Decimal("396.27")


def test_monthly_aggregate_decomposes_aggregate() -> None:
    documents = [
        _sale(datetime(2024, 3, 5, 12, tzinfo=UTC), _item("A", 1, 10000)),
        _sale(datetime(2024, 3, 20, 12, tzinfo=UTC), _item("B", 1, 15000)),
        _sale(datetime(2024, 4, 1, 12, tzinfo=UTC), _item("C", 1, 99999)),
    ]

    totals = monthly_aggregate(documents, 2024, 3)

    assert totals == PeriodTotals(
        total_gross=Decimal("25000"),
        total_net=Decimal("21008"),
        total_tax=Decimal("3992"),
        count=2,
    )


def test_monthly_aggregate_uses_reporting_timezone() -> None:
    """A sale at 01:00 UTC on April 1st is still March in Santiago."""
    late_march = _sale(datetime(2024, 4, 1, 1, 0, tzinfo=UTC), _item("A", 1, 1190))

    assert monthly_aggregate([late_march], 2024, 4).count == 1
    assert monthly_aggregate([late_march], 2024, 4, SANTIAGO).count == 0
    assert monthly_aggregate([late_march], 2024, 3, SANTIAGO).count == 1


def test_monthly_aggregate_empty() -> None:
    totals = monthly_aggregate([], 2024, 1)

    assert totals.count == 0
    assert totals.total_gross == Decimal("0")


def test_daily_total() -> None:
    documents = [
        _sale(datetime(2024, 3, 5, 9, tzinfo=UTC), _item("A", 2, 500)),
        _sale(datetime(2024, 3, 5, 18, tzinfo=UTC), _item("B", 1, 1000)),
        _sale(datetime(2024, 3, 6, 9, tzinfo=UTC), _item("C", 1, 7000)),
    ]

    assert daily_total(documents, date(2024, 3, 5)) == Decimal("2000")


def test_monthly_totals_sorted() -> None:
    documents = [
        _sale(datetime(2024, 5, 2, tzinfo=UTC), _item("A", 1, 300)),
        _sale(datetime(2024, 3, 2, tzinfo=UTC), _item("A", 1, 100)),
        _sale(datetime(2024, 3, 9, tzinfo=UTC), _item("A", 1, 50)),
    ]

    assert monthly_totals(documents) == [
        ("2024-03", Decimal("150")),
        ("2024-05", Decimal("300")),
    ]


def test_profit_and_margin() -> None:
    result = profit_and_margin(Decimal("100000"), Decimal("60000"))

    assert result.profit == Decimal("40000")
    assert result.margin_percent == Decimal("40.00")


def test_profit_and_margin_without_sales() -> None:
    result = profit_and_margin(0, Decimal("5000"))

    assert result.profit == Decimal("-5000")
    assert result.margin_percent == Decimal("0")


def test_top_selling_item() -> None:
    documents = [
        _sale(datetime(2024, 3, 1, tzinfo=UTC), _item("A", 3, 100), _item("B", 5, 100)),
        _sale(datetime(2024, 3, 2, tzinfo=UTC), _item("A", 5, 100)),
    ]

    top = top_selling_item(documents)

    assert top is not None
    assert top.name == "A"
    assert top.total_quantity == 8


def test_top_selling_item_tie_goes_to_first_seen() -> None:
    documents = [_sale(datetime(2024, 3, 1, tzinfo=UTC), _item("B", 2, 1), _item("A", 2, 1))]

    top = top_selling_item(documents)

    assert top is not None
    assert top.name == "B"


def test_top_selling_item_is_case_sensitive() -> None:
    documents = [
        _sale(datetime(2024, 3, 1, tzinfo=UTC), _item("hongo", 2, 1), _item("Hongo", 2, 1)),
        _sale(datetime(2024, 3, 2, tzinfo=UTC), _item("Hongo", 1, 1)),
    ]

    top = top_selling_item(documents)

    assert top is not None
    assert (top.name, top.total_quantity) == ("Hongo", 3)


def test_top_selling_item_empty() -> None:
    assert top_selling_item([]) is None


def test_per_unit_profit_equivalent_forms() -> None:
    """sell - cost * 1.19 equals sell - (cost + cost * 0.19)."""
    sell, cost = Decimal("5000"), Decimal("2500")

    assert per_unit_profit(sell, cost) == Decimal("2025.00")
    assert per_unit_profit(sell, cost) == sell - (cost + cost * Decimal("0.19"))


def test_vat_position() -> None:
    sales = PeriodTotals(Decimal("25000"), Decimal("21008"), Decimal("3992"), 2)
    purchases = PeriodTotals(Decimal("11900"), Decimal("10000"), Decimal("1900"), 1)

    position = vat_position(sales, purchases)

    assert position.debit == Decimal("3992")
    assert position.credit == Decimal("1900")
    assert position.payable == Decimal("2092")


def test_inventory_valuation() -> None:
    items = [
        InventoryItem(
            name="A", stock=2, unit_cost=Decimal("1000"), unit_sell_price=Decimal("2380")
        ),
        InventoryItem(name="B", stock=0, unit_cost=Decimal("500"), unit_sell_price=Decimal("900")),
    ]

    assert inventory_value(items) == Decimal("4760")
    assert inventory_net_value(items) == Decimal("4000")


def test_potential_profit() -> None:
    items = [
        InventoryItem(
            name="A", stock=2, unit_cost=Decimal("1000"), unit_sell_price=Decimal("2380")
        ),
        InventoryItem(name="B", stock=1, unit_cost=Decimal("100")),
    ]

    result = potential_profit(items)

    # A: (2380 - 1190) * 2 = 2380; B: (0 - 119) * 1 = -119
    assert result.total == Decimal("2261.00")
    # Only A has a sell price: 1190 / 2380 = 50%
    assert result.average_margin_percent == Decimal("50.00")


@pytest.mark.parametrize(
    ("stock", "level"),
    [(0, StockLevel.LOW), (3, StockLevel.LOW), (4, StockLevel.WARNING), (6, StockLevel.WARNING),
     (7, StockLevel.OK)],
)
def test_stock_level(stock: int, level: StockLevel) -> None:
    assert stock_level(stock) == level


def test_resolve_timezone() -> None:
    assert resolve_timezone("UTC") is UTC
    assert resolve_timezone("America/Santiago") == SANTIAGO


def test_document_total_and_naive_dates() -> None:
    document = _sale(datetime(2024, 3, 1, 10), _item("A", 2, 10000), _item("B", 1, 5000))

    assert document.total_gross == Decimal("25000")
    assert document.document_date.tzinfo is UTC


def test_functions_are_pure() -> None:
    documents = [_sale(datetime(2024, 3, 1, tzinfo=UTC), _item("A", 1, 1190))]

    assert monthly_aggregate(documents, 2024, 3) == monthly_aggregate(documents, 2024, 3)
    assert top_selling_item(documents) == top_selling_item(documents)
