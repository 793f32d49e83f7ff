"""Sales quotation wizard.

Step 1 collects the customer, step 2 the ordered items (prices pre-filled
from inventory), step 3 reviews totals and saves the sale, which decrements
inventory stock.
"""

import logging
import random
from decimal import Decimal

from pydantic import BaseModel

from services.documents.schema import (
    CHILE_REGIONS,
    COURIERS,
    Counterparty,
    CounterpartyKind,
    Document,
    DocumentKind,
    SaleStatus,
    ShippingMethod,
)
from services.repository.base import DocumentRepository
from services.rut.validator import format_rut, validate_rut
from services.shared.config import Settings
from services.shared.session import SessionContext
from services.wizard.base import DraftLine, OrderWizard

logger = logging.getLogger(__name__)

DEFAULT_REGION = "Metropolitana de Santiago"


class CustomerDraft(BaseModel):
    """Customer fields captured on step 1."""

    rut: str = ""
    is_company: bool = False
    first_name: str = ""
    last_name: str = ""
    business_name: str = ""
    business_giro: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    commune: str = ""
    region: str = DEFAULT_REGION
    shipping_method: ShippingMethod = ShippingMethod.RETIRO
    sucursal_name: str = ""


def generate_order_number(prefix: str, rng: random.Random | None = None) -> str:
    """Quotation correlative: prefix plus a four digit number."""
    return f"{prefix}{(rng or random).randint(1000, 9999)}"


def shipping_label(method: ShippingMethod, sucursal_name: str) -> str:
    """Shipping description stored on the sale.

    Couriers are qualified with "(Sucursal)" when a branch office was given and
    "(A Domicilio)" otherwise; other methods are stored as-is.
    """
    if method in COURIERS:
        destination = "Sucursal" if sucursal_name.strip() else "A Domicilio"
        return f"{method.value} ({destination})"
    return method.value


class SalesOrderWizard(OrderWizard):
    """Wizard that produces a sale (quotation)."""

    document_kind = DocumentKind.SALE
    counterparty_kind = CounterpartyKind.CUSTOMER

    def __init__(
        self,
        repository: DocumentRepository,
        session: SessionContext | None = None,
        settings: Settings | None = None,
        order_number: str | None = None,
    ) -> None:
        super().__init__(repository, session, settings)
        self.customer = CustomerDraft()
        self.order_number = order_number or generate_order_number(
            self.settings.order_number_prefix
        )

    def load_customer(self, rut: str) -> bool:
        """Pre-fill step 1 from a saved customer.

        Args:
            rut: Customer RUT in any common shape

        Returns:
            True if a customer was found
        """
        self._require_active()
        existing = self.repository.find_counterparty_by_identifier(self.counterparty_kind, rut)
        if existing is None:
            return False

        try:
            shipping = ShippingMethod(existing.shipping_method)
        except ValueError:
            shipping = ShippingMethod.RETIRO
        self.customer = CustomerDraft(
            **existing.model_dump(include=set(CustomerDraft.model_fields) - {"shipping_method"}),
            shipping_method=shipping,
        )
        logger.debug(f"Loaded customer {existing.rut} into sales wizard")
        return True

    def validate_party(self) -> list[str]:
        c = self.customer
        errors = []
        if c.is_company:
            if not c.business_name.strip():
                errors.append("Business name is required")
        elif not c.first_name.strip() or not c.last_name.strip():
            errors.append("First and last name are required")
        if not validate_rut(c.rut):
            errors.append("RUT is not valid")
        if not c.email.strip():
            errors.append("Email is required")
        if not c.phone.strip():
            errors.append("Phone is required")
        if not c.address.strip():
            errors.append("Address is required")
        if not c.region.strip():
            errors.append("Region is required")
        elif c.region.strip() not in CHILE_REGIONS:
            errors.append(f"Unknown region '{c.region.strip()}'")
        return errors

    def build_counterparty(self) -> Counterparty:
        c = self.customer
        return Counterparty(
            kind=self.counterparty_kind,
            rut=format_rut(c.rut),
            first_name=c.first_name.strip(),
            last_name=c.last_name.strip(),
            is_company=c.is_company,
            business_name=c.business_name.strip(),
            business_giro=c.business_giro.strip(),
            email=c.email.strip(),
            phone=c.phone.strip(),
            address=c.address.strip(),
            commune=c.commune.strip(),
            region=c.region,
            shipping_method=c.shipping_method.value,
            sucursal_name=c.sucursal_name.strip(),
            last_order_number=self.order_number,
        )

    def build_document(self) -> Document:
        counterparty = self.build_counterparty()
        c = self.customer
        return Document(
            kind=self.document_kind,
            number=self.order_number,
            counterparty_rut=counterparty.rut,
            counterparty_name=counterparty.display_name,
            items=[line.to_line_item() for line in self.items],
            status=SaleStatus.COMPLETADO,
            shipping_method=shipping_label(c.shipping_method, c.sucursal_name),
        )

    def _reset_party(self) -> None:
        self.customer = CustomerDraft()

    def _normalize_line(self, line: DraftLine, changed: set[str] | None = None) -> DraftLine:
        # Choosing a known item pre-fills its current sell price
        if changed is None:
            prefill = line.unit_price == 0
        else:
            prefill = "name" in changed and "unit_price" not in changed
        if not prefill or not line.name:
            return line

        item = self.repository.find_inventory_item_by_name(line.name)
        if item is None or item.unit_sell_price <= Decimal("0"):
            return line
        return line.model_copy(update={"unit_price": item.unit_sell_price})
