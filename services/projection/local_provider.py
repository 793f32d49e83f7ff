"""Deterministic projection provider.

Needs no network and always succeeds, so it doubles as the fallback when an
LLM provider fails. Sales are projected with compound growth from the last
actual month; the narrative is a fixed Markdown template over the figures.
"""

import logging
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

from services.projection.base import ProjectionProvider
from services.projection.schema import (
    BusinessSnapshot,
    HistoryPoint,
    NarrativeResult,
    ProjectionPoint,
    ProjectionResult,
)
from services.shared.config import Settings

logger = logging.getLogger(__name__)

# Actual months shown before the projected ones
CONTEXT_MONTHS = 3


def _money(value: Decimal) -> str:
    """Format pesos with Chilean thousands separators ($1.234.567)."""
    sign = "-" if value < 0 else ""
    whole = abs(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{sign}${whole:,}".replace(",", ".")


def month_labels_after(label: str | None, count: int) -> list[str]:
    """YYYY-MM labels for the months following label (or the current month)."""
    if label:
        year, month = (int(part) for part in label.split("-"))
    else:
        now = datetime.now(UTC)
        year, month = now.year, now.month - 1

    labels = []
    for _ in range(count):
        month += 1
        if month > 12:
            year, month = year + 1, 1
        labels.append(f"{year:04d}-{month:02d}")
    return labels


class LocalProjectionProvider(ProjectionProvider):
    """Compound-growth projection and templated narrative."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._growth = Decimal(str(settings.projection_growth_rate))

    @property
    def provider_name(self) -> str:
        return "local"

    def is_available(self) -> bool:
        return True

    def project_sales(self, history: list[HistoryPoint], periods: int) -> ProjectionResult:
        """Project sales as last_total * (1 + growth) ** i for i in 1..periods.

        Args:
            history: Actual monthly totals, oldest first
            periods: Number of future months

        Returns:
            ProjectionResult with up to three context points then the projection
        """
        if periods < 1:
            return ProjectionResult(
                success=False,
                error=f"periods must be at least 1 (got {periods})",
                provider=self.provider_name,
            )

        context = history[-CONTEXT_MONTHS:]
        points = [
            ProjectionPoint(label=h.label, actual_value=h.total, projected_value=h.total)
            for h in context
        ]

        base = context[-1].total if context else Decimal("0")
        last_label = context[-1].label if context else None
        factor = Decimal("1") + self._growth
        for i, label in enumerate(month_labels_after(last_label, periods), start=1):
            projected = (base * factor**i).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            points.append(ProjectionPoint(label=label, projected_value=projected))

        logger.debug(f"Local projection: {len(context)} context + {periods} projected points")
        return ProjectionResult(points=points, success=True, provider=self.provider_name)

    def generate_narrative(
        self, snapshot: BusinessSnapshot, instruction: str | None = None
    ) -> NarrativeResult:
        """Render the business figures as a Markdown report."""
        s = snapshot
        lines = [
            f"# Resumen {s.company_name} ({s.period})",
            "",
            "## Rentabilidad",
            f"- Ventas: {_money(s.sales_gross)}",
            f"- Compras: {_money(s.purchases_gross)}",
            f"- Utilidad: {_money(s.profit)} (margen {s.margin_percent}%)",
            f"- IVA a pagar: {_money(s.vat_payable)}",
            "",
            "## Inventario",
            f"- Valor de inventario: {_money(s.inventory_value)}",
        ]
        if s.company_logo:
            lines[1:1] = ["", f"![{s.company_name}]({s.company_logo})"]
        if s.low_stock_items:
            lines.append(f"- Reponer: {', '.join(s.low_stock_items)}")
        else:
            lines.append("- Sin productos con stock crítico")
        if s.top_seller:
            lines.append(f"- Más vendido: {s.top_seller} ({s.top_seller_quantity} unidades)")

        if s.history:
            lines += ["", "## Ventas mensuales"]
            lines += [f"- {h.label}: {_money(h.total)}" for h in s.history]

        if instruction:
            lines += ["", "## Solicitud", instruction.strip()]

        return NarrativeResult(
            markdown="\n".join(lines) + "\n", success=True, provider=self.provider_name
        )
