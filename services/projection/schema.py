"""Sales projection and business narrative data models."""

from decimal import Decimal

from pydantic import BaseModel, Field

# Projection horizon label -> number of future months
PROJECTION_HORIZONS: dict[str, int] = {"1m": 1, "3m": 3, "6m": 6, "1y": 12}


class HistoryPoint(BaseModel):
    """Actual gross sales for one month."""

    label: str = Field(..., description="Month as YYYY-MM")
    total: Decimal


class ProjectionPoint(BaseModel):
    """One point of a projection chart.

    Context points repeat the actual value as the projected value; future
    points have no actual value.
    """

    label: str
    actual_value: Decimal | None = None
    projected_value: Decimal


class ProjectionResult(BaseModel):
    """Result of a sales projection.

    Attributes:
        points: Context points followed by projected points
        success: Whether operation succeeded
        error: Error message if the provider failed
        provider: Name of provider that produced the points
        fallback_used: Whether the deterministic fallback replaced a failed provider
    """

    points: list[ProjectionPoint] = Field(default_factory=list)
    success: bool
    error: str | None = None
    provider: str
    fallback_used: bool = False


class BusinessSnapshot(BaseModel):
    """Figures summarized by a narrative report."""

    company_name: str
    company_logo: str | None = Field(None, description="Data URL or remote URL of the logo")
    period: str = Field(..., description="Reporting month as YYYY-MM")
    sales_gross: Decimal
    purchases_gross: Decimal
    profit: Decimal
    margin_percent: Decimal
    vat_payable: Decimal
    inventory_value: Decimal
    top_seller: str | None = None
    top_seller_quantity: int = 0
    low_stock_items: list[str] = Field(default_factory=list)
    history: list[HistoryPoint] = Field(default_factory=list)


class NarrativeResult(BaseModel):
    """Result of a narrative (Markdown) business report.

    Attributes:
        markdown: Report body
        success: Whether operation succeeded
        error: Error message if the provider failed
        provider: Name of provider that wrote the report
        fallback_used: Whether the deterministic fallback replaced a failed provider
    """

    markdown: str | None = None
    success: bool
    error: str | None = None
    provider: str
    fallback_used: bool = False
