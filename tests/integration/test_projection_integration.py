"""Integration tests for the OpenAI projection provider.

These tests require:
- OPENAI_API_KEY environment variable set
- Internet connection to OpenAI API

Tests are skipped if OPENAI_API_KEY is not available.
Use pytest -v -m integration to run only integration tests.
"""

import os
from decimal import Decimal

import pytest

from services.projection.openai_provider import OpenAIProjectionProvider
from services.projection.schema import BusinessSnapshot, HistoryPoint
from services.projection.service import ProjectionService
from services.shared.config import Settings

# Skip all tests in this module if no API key available
pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not os.getenv("OPENAI_API_KEY"),
        reason="OPENAI_API_KEY not set - skipping integration tests",
    ),
]


@pytest.fixture
def settings() -> Settings:
    """Create settings for integration tests."""
    return Settings(projection_provider="openai")


@pytest.fixture
def history() -> list[HistoryPoint]:
    return [
        HistoryPoint(label="2024-01", total=Decimal("820000")),
        HistoryPoint(label="2024-02", total=Decimal("910000")),
        HistoryPoint(label="2024-03", total=Decimal("1005000")),
        HistoryPoint(label="2024-04", total=Decimal("1120000")),
    ]


def test_projection_from_real_api(settings: Settings, history: list[HistoryPoint]) -> None:
    """Test a three month projection against the live API."""
    result = OpenAIProjectionProvider(settings).project_sales(history, 3)

    assert result.success is True, f"Projection failed: {result.error}"
    assert len(result.points) >= 3
    assert all(point.projected_value >= 0 for point in result.points)
    assert result.points[-1].actual_value is None


def test_narrative_from_real_api(settings: Settings, history: list[HistoryPoint]) -> None:
    """Test a Markdown report against the live API."""
    snapshot = BusinessSnapshot(
        company_name="Fungus Mycelium Ltda",
        period="2024-04",
        sales_gross=Decimal("1120000"),
        purchases_gross=Decimal("480000"),
        profit=Decimal("640000"),
        margin_percent=Decimal("57.14"),
        vat_payable=Decimal("102185"),
        inventory_value=Decimal("2350000"),
        top_seller="Melena de León",
        top_seller_quantity=42,
        low_stock_items=["Reishi"],
        history=history,
    )

    result = ProjectionService(settings).narrative(snapshot, "¿Qué productos debo reponer?")

    assert result.success is True
    assert result.fallback_used is False, f"Fell back to template: {result.error}"
    assert result.markdown
