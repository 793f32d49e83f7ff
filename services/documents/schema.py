"""Sales/purchase document data models.

Storage-agnostic entities shared by the computation engine, the order-entry
wizards and the repositories. Money is Decimal; prices entered by users are
VAT-inclusive (gross) unless the field says otherwise.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, computed_field, field_validator


class DocumentKind(str, Enum):
    """Kind of commercial document."""

    SALE = "sale"
    PURCHASE = "purchase"


class CounterpartyKind(str, Enum):
    """Role of the other party named on a document."""

    CUSTOMER = "customer"
    PROVIDER = "provider"


class SaleStatus(str, Enum):
    """Lifecycle status of a sale."""

    COMPLETADO = "Completado"
    PENDIENTE = "Pendiente"
    CANCELADO = "Cancelado"


class PurchaseDocType(str, Enum):
    """Tax document type received from a provider."""

    FACTURA = "Factura"
    BOLETA = "Boleta"


class PaymentMethod(str, Enum):
    """Accepted payment methods."""

    EFECTIVO = "Efectivo"
    TRANSFERENCIA = "Transferencia"
    TARJETA = "Tarjeta"


class ShippingMethod(str, Enum):
    """Delivery preference of a customer."""

    STARKEN = "Starken"
    CHILEXPRESS = "Chilexpress"
    BLUEXPRESS = "Bluexpress"
    RETIRO = "Retiro"
    SUCURSAL = "Sucursal"


# Couriers that deliver either to a branch office or to the customer's door
COURIERS = frozenset(
    {ShippingMethod.STARKEN, ShippingMethod.CHILEXPRESS, ShippingMethod.BLUEXPRESS}
)

CHILE_REGIONS = (
    "Arica y Parinacota",
    "Tarapacá",
    "Antofagasta",
    "Atacama",
    "Coquimbo",
    "Valparaíso",
    "Metropolitana de Santiago",
    "O'Higgins",
    "Maule",
    "Ñuble",
    "Biobío",
    "Araucanía",
    "Los Ríos",
    "Los Lagos",
    "Aysén",
    "Magallanes",
)

DEFAULT_INVENTORY_CATEGORY = "Insumos"


class LineItem(BaseModel):
    """A single line of a sale or purchase."""

    id: str | None = Field(None, description="Persisted line identifier")
    name: str = Field(..., min_length=1, description="Item name (matches inventory by name)")
    quantity: int = Field(..., gt=0, description="Units sold or purchased")
    unit_price: Decimal = Field(..., ge=0, description="Gross (VAT-inclusive) unit price")
    unit_cost: Decimal | None = Field(None, ge=0, description="Net unit acquisition cost")
    sell_price: Decimal | None = Field(
        None, ge=0, description="Gross sell price to apply to inventory (purchases only)"
    )

    @property
    def extended_price(self) -> Decimal:
        """Quantity times gross unit price."""
        return self.quantity * self.unit_price


class Counterparty(BaseModel):
    """Customer or provider, keyed by RUT."""

    id: str | None = None
    kind: CounterpartyKind
    rut: str = Field(..., description="Formatted RUT (body-check)")
    first_name: str = ""
    last_name: str = ""
    is_company: bool = False
    business_name: str = ""
    business_giro: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    commune: str = ""
    region: str = ""
    shipping_method: str = ShippingMethod.RETIRO.value
    sucursal_name: str = ""
    last_order_number: str | None = None

    @property
    def display_name(self) -> str:
        """Business name for companies, full name for people."""
        if self.is_company:
            return self.business_name
        return f"{self.first_name} {self.last_name}".strip()


class Document(BaseModel):
    """Sale or purchase header plus its ordered line items.

    The gross total is always derived from the items; net and tax are derived
    from the gross total (see services.documents.computation).
    """

    id: str | None = None
    kind: DocumentKind
    number: str = Field(..., description="Quotation correlative or provider document number")
    counterparty_id: str | None = None
    counterparty_rut: str = ""
    counterparty_name: str = ""
    document_date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    items: list[LineItem] = Field(default_factory=list)
    status: SaleStatus | None = None
    doc_type: PurchaseDocType | None = None
    payment_method: PaymentMethod | None = None
    shipping_method: str | None = None

    @field_validator("document_date")
    @classmethod
    def _normalize_to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_gross(self) -> Decimal:
        """Exact sum of the items' extended prices."""
        return sum((item.extended_price for item in self.items), Decimal("0"))


class InventoryItem(BaseModel):
    """Stock-keeping item matched to document lines by name."""

    id: str | None = None
    name: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    unit_cost: Decimal = Field(Decimal("0"), ge=0, description="Net acquisition cost")
    unit_sell_price: Decimal = Field(Decimal("0"), ge=0, description="Gross sell price")
    category: str = DEFAULT_INVENTORY_CATEGORY
    image_url: str | None = None


class DocumentFilter(BaseModel):
    """Criteria for listing documents. All criteria are optional and combined with AND."""

    kind: DocumentKind | None = None
    start: datetime | None = Field(None, description="Inclusive lower bound on document_date")
    end: datetime | None = Field(None, description="Exclusive upper bound on document_date")
    status: SaleStatus | None = None
    search: str | None = Field(
        None, description="Case-insensitive match on document number or counterparty name"
    )

    def matches(self, document: Document) -> bool:
        """Check a document against the filter in memory.

        Args:
            document: Document to test

        Returns:
            True if every set criterion matches
        """
        if self.kind is not None and document.kind != self.kind:
            return False
        if self.status is not None and document.status != self.status:
            return False
        if self.start is not None and document.document_date < as_utc(self.start):
            return False
        if self.end is not None and document.document_date >= as_utc(self.end):
            return False
        if self.search:
            needle = self.search.lower()
            haystacks = (document.number.lower(), document.counterparty_name.lower())
            if not any(needle in h for h in haystacks):
                return False
        return True


def as_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
