"""Unit tests for the sales and purchase wizards.

Tests cover:
- Guarded forward transitions and back/cancel
- Draft editing and live totals
- Confirmation through the transactional repository save
- Failure handling (nothing committed, error surfaced)
"""

import random
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import patch

import pytest

from services.documents.schema import (
    Counterparty,
    CounterpartyKind,
    DocumentKind,
    InventoryItem,
    PurchaseDocType,
    SaleStatus,
    ShippingMethod,
)
from services.repository.memory import InMemoryRepository
from services.shared.config import Settings
from services.shared.errors import PersistenceError, ValidationError, WizardStateError
from services.shared.session import SessionContext
from services.wizard.base import WizardStatus, WizardStep, documents_finalized_total
from services.wizard.purchase import PurchaseWizard
from services.wizard.sales import (
    CustomerDraft,
    SalesOrderWizard,
    generate_order_number,
    shipping_label,
)


@pytest.fixture
def settings() -> Settings:
    return Settings(order_number_prefix="COT-")


@pytest.fixture
def repository() -> InMemoryRepository:
    repo = InMemoryRepository()
    repo.upsert_inventory_item(
        InventoryItem(name="Melena de León", stock=10, unit_sell_price=Decimal("10000"))
    )
    repo.upsert_inventory_item(
        InventoryItem(name="Reishi", stock=5, unit_sell_price=Decimal("5000"))
    )
    return repo


@pytest.fixture
def wizard(repository: InMemoryRepository, settings: Settings) -> SalesOrderWizard:
    return SalesOrderWizard(repository, settings=settings, order_number="COT-4321")


def _valid_customer(**overrides: object) -> CustomerDraft:
    fields: dict[str, object] = {
        "rut": "12.345.678-5",
        "first_name": "Ana",
        "last_name": "Rojas",
        "email": "ana@example.cl",
        "phone": "+56911112222",
        "address": "Av. Providencia 123",
        "commune": "Providencia",
    }
    fields.update(overrides)
    return CustomerDraft(**fields)  # type: ignore[arg-type]


def _to_review(wizard: SalesOrderWizard) -> None:
    wizard.customer = _valid_customer()
    assert wizard.advance().success
    wizard.add_item(name="Melena de León", quantity=2)
    wizard.add_item(name="Reishi", quantity=1)
    assert wizard.advance().success


class TestSalesTransitions:
    """Step guards."""

    def test_starts_collecting_party(self, wizard: SalesOrderWizard) -> None:
        assert wizard.step == WizardStep.COLLECTING_PARTY
        assert wizard.status == WizardStatus.ACTIVE
        assert wizard.customer.region == "Metropolitana de Santiago"

    def test_empty_email_refused_then_accepted(self, wizard: SalesOrderWizard) -> None:
        wizard.customer = _valid_customer(email="")

        refused = wizard.advance()

        assert refused.success is False
        assert refused.step == WizardStep.COLLECTING_PARTY
        assert "Email is required" in refused.errors
        assert wizard.errors == refused.errors

        wizard.customer.email = "ana@example.cl"
        accepted = wizard.advance()

        assert accepted.success is True
        assert wizard.step == WizardStep.COLLECTING_ITEMS
        assert wizard.errors == []

    def test_party_guard_reports_every_failure(self, wizard: SalesOrderWizard) -> None:
        wizard.customer = CustomerDraft(region="")

        result = wizard.advance()

        assert result.errors == [
            "First and last name are required",
            "RUT is not valid",
            "Email is required",
            "Phone is required",
            "Address is required",
            "Region is required",
        ]

    def test_company_requires_business_name(self, wizard: SalesOrderWizard) -> None:
        wizard.customer = _valid_customer(is_company=True, first_name="", last_name="")
        assert wizard.advance().errors == ["Business name is required"]

        wizard.customer.business_name = "Hongos del Sur SpA"
        assert wizard.advance().success

    def test_invalid_rut_refused(self, wizard: SalesOrderWizard) -> None:
        wizard.customer = _valid_customer(rut="12345678-9")

        assert wizard.advance().errors == ["RUT is not valid"]

    def test_unknown_region_refused(self, wizard: SalesOrderWizard) -> None:
        wizard.customer = _valid_customer(region="Patagonia")
        assert wizard.advance().errors == ["Unknown region 'Patagonia'"]

        wizard.customer.region = "Valparaíso"
        assert wizard.advance().success

    def test_require_valid_raises_with_every_message(self, wizard: SalesOrderWizard) -> None:
        wizard.customer = _valid_customer(email="", phone="")

        with pytest.raises(ValidationError) as excinfo:
            wizard.require_valid()

        assert excinfo.value.messages == ["Email is required", "Phone is required"]
        assert wizard.step == WizardStep.COLLECTING_PARTY

        wizard.customer = _valid_customer()
        wizard.require_valid()
        wizard.advance()
        with pytest.raises(ValidationError, match="Add at least one item"):
            wizard.require_valid()

    def test_items_guard(self, wizard: SalesOrderWizard) -> None:
        wizard.customer = _valid_customer()
        wizard.advance()

        assert wizard.advance().errors == ["Add at least one item"]

        wizard.add_item(name="", quantity=0)
        errors = wizard.advance().errors
        assert "Item 1: name is required" in errors
        assert "Item 1: quantity must be greater than 0" in errors
        assert "Item 1: unit price must be greater than 0" in errors
        assert wizard.step == WizardStep.COLLECTING_ITEMS

    def test_back_keeps_draft(self, wizard: SalesOrderWizard) -> None:
        _to_review(wizard)

        wizard.back()
        wizard.back()
        wizard.back()

        assert wizard.step == WizardStep.COLLECTING_PARTY
        assert wizard.customer.first_name == "Ana"
        assert len(wizard.items) == 2

    def test_advance_on_review_step(self, wizard: SalesOrderWizard) -> None:
        _to_review(wizard)

        with pytest.raises(WizardStateError):
            wizard.advance()

    def test_cancel_discards_draft(
        self, wizard: SalesOrderWizard, repository: InMemoryRepository
    ) -> None:
        _to_review(wizard)

        wizard.cancel()

        assert wizard.status == WizardStatus.CANCELLED
        assert wizard.items == []
        assert wizard.customer == CustomerDraft()
        assert repository.list_documents() == []
        with pytest.raises(WizardStateError):
            wizard.add_item(name="Reishi")


class TestSalesDraft:
    """Draft editing."""

    def test_known_item_prefills_price(self, wizard: SalesOrderWizard) -> None:
        index = wizard.add_item(name="Reishi", quantity=3)

        assert wizard.items[index].unit_price == Decimal("5000")

    def test_explicit_price_is_kept(self, wizard: SalesOrderWizard) -> None:
        index = wizard.add_item(name="Reishi", quantity=1, unit_price=Decimal("4500"))

        assert wizard.items[index].unit_price == Decimal("4500")

    def test_renaming_line_prefills_price(self, wizard: SalesOrderWizard) -> None:
        index = wizard.add_item()

        wizard.update_item(index, name="Melena de León")

        assert wizard.items[index].unit_price == Decimal("10000")

    def test_unknown_item_keeps_zero_price(self, wizard: SalesOrderWizard) -> None:
        index = wizard.add_item(name="Shiitake")

        assert wizard.items[index].unit_price == Decimal("0")

    def test_remove_item(self, wizard: SalesOrderWizard) -> None:
        wizard.add_item(name="Reishi")
        wizard.add_item(name="Melena de León")

        wizard.remove_item(0)

        assert [line.name for line in wizard.items] == ["Melena de León"]

    def test_totals(self, wizard: SalesOrderWizard) -> None:
        wizard.add_item(name="Melena de León", quantity=2)
        wizard.add_item(name="Reishi", quantity=1)

        totals = wizard.totals

        assert (totals.gross, totals.net, totals.tax) == (
            Decimal("25000"),
            Decimal("21008"),
            Decimal("3992"),
        )


class TestSalesConfirm:
    """Final save."""

    def test_confirm_saves_sale_customer_and_stock(
        self, wizard: SalesOrderWizard, repository: InMemoryRepository
    ) -> None:
        _to_review(wizard)

        result = wizard.confirm()

        assert result.success is True
        assert result.document_number == "COT-4321"
        assert result.total == Decimal("25000")
        assert wizard.status == WizardStatus.COMPLETED

        assert result.document_id is not None
        sale = repository.get_document(result.document_id)
        assert sale is not None
        assert sale.kind == DocumentKind.SALE
        assert sale.status == SaleStatus.COMPLETADO
        assert sale.counterparty_name == "Ana Rojas"
        assert sale.total_gross == Decimal("25000")

        customer = repository.find_counterparty_by_identifier(
            CounterpartyKind.CUSTOMER, "12345678-5"
        )
        assert customer is not None
        assert customer.last_order_number == "COT-4321"

        assert repository.find_inventory_item_by_name("Melena de León").stock == 8
        assert repository.find_inventory_item_by_name("Reishi").stock == 4

    def test_cancel_after_confirm_is_refused(
        self, wizard: SalesOrderWizard, repository: InMemoryRepository
    ) -> None:
        _to_review(wizard)
        assert wizard.confirm().success

        with pytest.raises(WizardStateError, match="completed"):
            wizard.cancel()

        assert wizard.status == WizardStatus.COMPLETED
        assert len(repository.list_documents()) == 1

    def test_confirm_requires_review_step(self, wizard: SalesOrderWizard) -> None:
        with pytest.raises(WizardStateError):
            wizard.confirm()

    def test_confirm_failure_commits_nothing(
        self, wizard: SalesOrderWizard, repository: InMemoryRepository
    ) -> None:
        _to_review(wizard)
        failed_before = documents_finalized_total.labels(kind="sale", status="failed")._value.get()

        with patch.object(
            repository, "create_document", side_effect=PersistenceError("database offline")
        ):
            result = wizard.confirm()

        assert result.success is False
        assert result.error is not None
        assert "database offline" in result.error
        assert wizard.step == WizardStep.REVIEW_AND_CONFIRM
        assert wizard.status == WizardStatus.ACTIVE
        assert wizard.errors == ["database offline"]

        assert repository.list_documents() == []
        assert repository.list_counterparties() == []
        assert repository.find_inventory_item_by_name("Melena de León").stock == 10
        assert repository.find_inventory_item_by_name("Reishi").stock == 5
        assert (
            documents_finalized_total.labels(kind="sale", status="failed")._value.get()
            == failed_before + 1
        )

    def test_retry_after_failure(self, wizard: SalesOrderWizard) -> None:
        _to_review(wizard)
        with patch.object(
            wizard.repository, "create_document", side_effect=PersistenceError("timeout")
        ):
            assert wizard.confirm().success is False

        assert wizard.confirm().success is True

    def test_guest_cannot_confirm(self, repository: InMemoryRepository, settings: Settings) -> None:
        wizard = SalesOrderWizard(
            repository, session=SessionContext(guest_mode=True), settings=settings
        )
        _to_review(wizard)

        result = wizard.confirm()

        assert result.success is False
        assert repository.list_documents() == []

    def test_courier_shipping_label(
        self, wizard: SalesOrderWizard, repository: InMemoryRepository
    ) -> None:
        _to_review(wizard)
        wizard.customer.shipping_method = ShippingMethod.STARKEN
        wizard.customer.sucursal_name = "Starken Ñuñoa"

        result = wizard.confirm()

        assert result.document_id is not None
        sale = repository.get_document(result.document_id)
        assert sale is not None
        assert sale.shipping_method == "Starken (Sucursal)"


class TestSalesHelpers:
    def test_shipping_label(self) -> None:
        assert shipping_label(ShippingMethod.CHILEXPRESS, "") == "Chilexpress (A Domicilio)"
        assert (
            shipping_label(ShippingMethod.BLUEXPRESS, "Sucursal Centro") == "Bluexpress (Sucursal)"
        )
        assert shipping_label(ShippingMethod.RETIRO, "ignored") == "Retiro"

    def test_generate_order_number(self) -> None:
        number = generate_order_number("COT-", random.Random(7))

        assert number.startswith("COT-")
        assert 1000 <= int(number[4:]) <= 9999

    def test_default_order_number_uses_prefix(
        self, repository: InMemoryRepository
    ) -> None:
        wizard = SalesOrderWizard(repository, settings=Settings(order_number_prefix="Q-"))

        assert wizard.order_number.startswith("Q-")

    def test_load_customer(self, wizard: SalesOrderWizard, repository: InMemoryRepository) -> None:
        repository.upsert_counterparty(
            Counterparty(
                kind=CounterpartyKind.CUSTOMER,
                rut="11111111-1",
                first_name="Luis",
                last_name="Soto",
                email="luis@example.cl",
                shipping_method="Chilexpress",
            )
        )

        assert wizard.load_customer("11.111.111-1") is True
        assert wizard.customer.first_name == "Luis"
        assert wizard.customer.shipping_method == ShippingMethod.CHILEXPRESS
        assert wizard.load_customer("6-k") is False


class TestPurchaseWizard:
    """Purchase registration."""

    @pytest.fixture
    def purchase(self, repository: InMemoryRepository, settings: Settings) -> PurchaseWizard:
        wizard = PurchaseWizard(repository, settings=settings)
        wizard.provider.rut = "76543210-3"
        wizard.provider.provider_name = "Setas SpA"
        wizard.provider.doc_number = "F-2024-17"
        wizard.provider.document_date = datetime(2024, 3, 15, 12, tzinfo=UTC)
        return wizard

    def test_party_guard(self, repository: InMemoryRepository, settings: Settings) -> None:
        wizard = PurchaseWizard(repository, settings=settings)

        assert wizard.advance().errors == [
            "Provider name is required",
            "RUT is not valid",
            "Document number is required",
        ]

    def test_items_guard(self, purchase: PurchaseWizard) -> None:
        purchase.advance()
        purchase.add_purchase_item("Reishi", 1, 0, 0)

        errors = purchase.advance().errors

        assert "Item 1: net unit cost must be greater than 0" in errors
        assert "Item 1: sell price must be greater than 0" in errors

    def test_lines_are_grossed_up(self, purchase: PurchaseWizard) -> None:
        index = purchase.add_purchase_item("Reishi", 10, 1000, 3500)

        assert purchase.items[index].unit_price == Decimal("1190.00")
        assert purchase.net_total == Decimal("10000")
        assert purchase.total_gross == purchase.net_total * Decimal("1.19")
        assert purchase.estimated_unit_profit(index) == Decimal("2310.00")

        purchase.update_item(index, unit_cost=Decimal("2000"))
        assert purchase.items[index].unit_price == Decimal("2380.00")

    def test_confirm_updates_inventory(
        self, purchase: PurchaseWizard, repository: InMemoryRepository
    ) -> None:
        assert purchase.advance().success
        purchase.add_purchase_item("Reishi", 10, 1200, 3500)
        purchase.add_purchase_item("Cola de Pavo", 4, 500, 1500)
        assert purchase.advance().success

        result = purchase.confirm()

        assert result.success is True
        assert result.document_id is not None
        document = repository.get_document(result.document_id)
        assert document is not None
        assert document.kind == DocumentKind.PURCHASE
        assert document.doc_type == PurchaseDocType.FACTURA
        assert document.number == "F-2024-17"
        # (10 * 1200 + 4 * 500) * 1.19
        assert document.total_gross == Decimal("16660")

        reishi = repository.find_inventory_item_by_name("Reishi")
        assert reishi is not None
        assert reishi.stock == 15
        assert reishi.unit_cost == Decimal("1200")
        assert reishi.unit_sell_price == Decimal("3500")

        new_item = repository.find_inventory_item_by_name("Cola de Pavo")
        assert new_item is not None
        assert (new_item.stock, new_item.category) == (4, "Insumos")

        provider = repository.find_counterparty_by_identifier(
            CounterpartyKind.PROVIDER, "76543210-3"
        )
        assert provider is not None
        assert provider.display_name == "Setas SpA"
