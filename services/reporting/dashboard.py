"""Dashboard and inventory-finance figures computed over a repository.

Every figure is recomputed from the repository on each call; there is no
cached state to invalidate when the change feed fires.
"""

import logging
from datetime import UTC, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from services.documents.computation import (
    PeriodTotals,
    StockLevel,
    daily_total,
    inventory_net_value,
    inventory_value,
    local_date,
    monthly_aggregate,
    monthly_totals,
    per_unit_profit,
    potential_profit,
    profit_and_margin,
    resolve_timezone,
    stock_level,
    top_selling_item,
    vat_position,
)
from services.documents.schema import Document, DocumentFilter, DocumentKind
from services.projection.schema import BusinessSnapshot, HistoryPoint
from services.repository.base import DocumentRepository
from services.shared.config import Settings
from services.shared.session import SessionContext

logger = logging.getLogger(__name__)


class DashboardSummary(BaseModel):
    """Figures shown on the main dashboard for the current month."""

    period: str = Field(..., description="YYYY-MM")
    sales: PeriodTotals
    purchases: PeriodTotals
    today_sales: Decimal
    profit: Decimal
    margin_percent: Decimal
    inventory_value: Decimal
    top_seller: str | None = None
    top_seller_quantity: int = 0
    vat_debit: Decimal
    vat_credit: Decimal
    vat_payable: Decimal


class InventoryFinanceRow(BaseModel):
    """Per-item profitability."""

    name: str
    stock: int
    unit_cost: Decimal
    unit_sell_price: Decimal
    unit_profit: Decimal
    stock_level: StockLevel


class FinanceOverview(BaseModel):
    """Inventory valuation and potential profit."""

    potential_profit: Decimal
    average_margin_percent: Decimal
    inventory_value: Decimal
    inventory_net_value: Decimal
    items: list[InventoryFinanceRow] = Field(default_factory=list)


class DashboardService:
    """Read-side aggregation used by the dashboard, finance view and narratives."""

    def __init__(
        self,
        repository: DocumentRepository,
        settings: Settings,
        session: SessionContext | None = None,
    ) -> None:
        """Initialize service.

        Args:
            repository: Repository to read documents and inventory from
            settings: Application settings (reporting timezone)
            session: Current session, source of the company name and logo
        """
        self.repository = repository
        self.settings = settings
        self.session = session or SessionContext()
        self.tz = resolve_timezone(settings.reporting_timezone)

    def summary(self, now: datetime | None = None) -> DashboardSummary:
        """Compute the current month's dashboard.

        Args:
            now: Reference instant (defaults to the current time)

        Returns:
            DashboardSummary for the month containing now
        """
        now = now or datetime.now(UTC)
        today = now.astimezone(self.tz).date()

        sales = self.repository.list_documents(DocumentFilter(kind=DocumentKind.SALE))
        purchases = self.repository.list_documents(DocumentFilter(kind=DocumentKind.PURCHASE))
        inventory = self.repository.list_inventory_items()

        sales_totals = monthly_aggregate(sales, today.year, today.month, self.tz)
        purchase_totals = monthly_aggregate(purchases, today.year, today.month, self.tz)
        result = profit_and_margin(sales_totals.total_gross, purchase_totals.total_gross)
        vat = vat_position(sales_totals, purchase_totals)

        month_sales = [s for s in sales if self._in_month(s, today.year, today.month)]
        top = top_selling_item(month_sales)

        return DashboardSummary(
            period=f"{today.year:04d}-{today.month:02d}",
            sales=sales_totals,
            purchases=purchase_totals,
            today_sales=daily_total(sales, today, self.tz),
            profit=result.profit,
            margin_percent=result.margin_percent,
            inventory_value=inventory_value(inventory),
            top_seller=top.name if top else None,
            top_seller_quantity=top.total_quantity if top else 0,
            vat_debit=vat.debit,
            vat_credit=vat.credit,
            vat_payable=vat.payable,
        )

    def finance_overview(self) -> FinanceOverview:
        """Valuation and profitability of the current inventory."""
        inventory = self.repository.list_inventory_items()
        potential = potential_profit(inventory)
        rows = [
            InventoryFinanceRow(
                name=item.name,
                stock=item.stock,
                unit_cost=item.unit_cost,
                unit_sell_price=item.unit_sell_price,
                unit_profit=per_unit_profit(item.unit_sell_price, item.unit_cost),
                stock_level=stock_level(item.stock),
            )
            for item in inventory
        ]
        return FinanceOverview(
            potential_profit=potential.total,
            average_margin_percent=potential.average_margin_percent,
            inventory_value=inventory_value(inventory),
            inventory_net_value=inventory_net_value(inventory),
            items=rows,
        )

    def sales_history(self) -> list[HistoryPoint]:
        """Gross sales per month, oldest first."""
        sales = self.repository.list_documents(DocumentFilter(kind=DocumentKind.SALE))
        history = [
            HistoryPoint(label=label, total=total)
            for label, total in monthly_totals(sales, self.tz)
        ]
        logger.debug(f"Sales history: {len(history)} months")
        return history

    def search_documents(self, kind: DocumentKind, text: str | None = None) -> list[Document]:
        """Documents of a kind whose number or counterparty name contains text."""
        return self.repository.list_documents(DocumentFilter(kind=kind, search=text or None))

    def snapshot(self, now: datetime | None = None) -> BusinessSnapshot:
        """Serializable figures for a narrative report."""
        summary = self.summary(now)
        logger.debug(f"Building business snapshot for {summary.period}")
        inventory = self.repository.list_inventory_items()
        low_stock = [i.name for i in inventory if stock_level(i.stock) != StockLevel.OK]
        return BusinessSnapshot(
            company_name=self.session.company_name,
            company_logo=self.session.company_logo,
            period=summary.period,
            sales_gross=summary.sales.total_gross,
            purchases_gross=summary.purchases.total_gross,
            profit=summary.profit,
            margin_percent=summary.margin_percent,
            vat_payable=summary.vat_payable,
            inventory_value=summary.inventory_value,
            top_seller=summary.top_seller,
            top_seller_quantity=summary.top_seller_quantity,
            low_stock_items=low_stock,
            history=self.sales_history(),
        )

    def _in_month(self, document: Document, year: int, month: int) -> bool:
        day = local_date(document, self.tz)
        return day.year == year and day.month == month
