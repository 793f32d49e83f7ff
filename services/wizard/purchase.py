"""Purchase registration wizard.

Step 1 collects the provider and its tax document, step 2 the purchased
items with their net unit cost and expected sell price, step 3 saves the
purchase, which increments stock and refreshes inventory prices.
"""

from datetime import UTC, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from services.documents.computation import gross_up, per_unit_profit
from services.documents.schema import (
    Counterparty,
    CounterpartyKind,
    Document,
    DocumentKind,
    PaymentMethod,
    PurchaseDocType,
)
from services.repository.base import DocumentRepository
from services.rut.validator import format_rut, validate_rut
from services.shared.config import Settings
from services.shared.session import SessionContext
from services.wizard.base import DraftLine, OrderWizard


class ProviderDraft(BaseModel):
    """Provider and document fields captured on step 1."""

    rut: str = ""
    provider_name: str = ""
    address: str = ""
    giro: str = ""
    doc_type: PurchaseDocType = PurchaseDocType.FACTURA
    doc_number: str = ""
    document_date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    payment_method: PaymentMethod = PaymentMethod.TRANSFERENCIA


class PurchaseWizard(OrderWizard):
    """Wizard that registers a purchase from a provider.

    Lines are entered with a net unit cost; the stored gross unit price is
    the cost grossed up by VAT, so the purchase total is the net total x 1.19.
    """

    document_kind = DocumentKind.PURCHASE
    counterparty_kind = CounterpartyKind.PROVIDER

    def __init__(
        self,
        repository: DocumentRepository,
        session: SessionContext | None = None,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(repository, session, settings)
        self.provider = ProviderDraft()

    def add_purchase_item(
        self,
        name: str,
        quantity: int,
        unit_cost: Decimal | int | str,
        sell_price: Decimal | int | str,
    ) -> int:
        """Append a purchased item.

        Args:
            name: Item name (matched to inventory by exact name)
            quantity: Units purchased
            unit_cost: Net cost per unit
            sell_price: Expected gross sell price per unit

        Returns:
            Index of the new line
        """
        return self.add_item(
            name=name,
            quantity=quantity,
            unit_cost=Decimal(unit_cost),
            sell_price=Decimal(sell_price),
        )

    def estimated_unit_profit(self, index: int) -> Decimal:
        """Expected profit per unit of a draft line."""
        line = self.items[index]
        return per_unit_profit(line.sell_price or 0, line.unit_cost or 0)

    @property
    def net_total(self) -> Decimal:
        """Sum of quantity times net unit cost."""
        return sum((line.quantity * (line.unit_cost or 0) for line in self.items), Decimal("0"))

    def validate_party(self) -> list[str]:
        p = self.provider
        errors = []
        if not p.provider_name.strip():
            errors.append("Provider name is required")
        if not validate_rut(p.rut):
            errors.append("RUT is not valid")
        if not p.doc_number.strip():
            errors.append("Document number is required")
        return errors

    def _validate_line(self, line: DraftLine) -> list[str]:
        errors = []
        if not line.name.strip():
            errors.append("name is required")
        if line.quantity <= 0:
            errors.append("quantity must be greater than 0")
        if line.unit_cost is None or line.unit_cost <= 0:
            errors.append("net unit cost must be greater than 0")
        if line.sell_price is None or line.sell_price <= 0:
            errors.append("sell price must be greater than 0")
        return errors

    def build_counterparty(self) -> Counterparty:
        p = self.provider
        return Counterparty(
            kind=self.counterparty_kind,
            rut=format_rut(p.rut),
            is_company=True,
            business_name=p.provider_name.strip(),
            business_giro=p.giro.strip(),
            address=p.address.strip(),
        )

    def build_document(self) -> Document:
        p = self.provider
        return Document(
            kind=self.document_kind,
            number=p.doc_number.strip(),
            counterparty_rut=format_rut(p.rut),
            counterparty_name=p.provider_name.strip(),
            document_date=p.document_date,
            items=[line.to_line_item() for line in self.items],
            doc_type=p.doc_type,
            payment_method=p.payment_method,
        )

    def _normalize_line(self, line: DraftLine, changed: set[str] | None = None) -> DraftLine:
        # Gross unit price always follows the net cost
        return line.model_copy(update={"unit_price": gross_up(line.unit_cost or 0)})

    def _reset_party(self) -> None:
        self.provider = ProviderDraft()
