"""Abstract persistence repository for documents, counterparties and inventory.

Backends implement the primitive operations; the multi-step save performed
when a wizard is confirmed lives here as ``finalize_document`` so every
backend runs it inside the same transactional boundary.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from decimal import Decimal

from pydantic import BaseModel, Field

from services.documents.schema import (
    DEFAULT_INVENTORY_CATEGORY,
    Counterparty,
    CounterpartyKind,
    Document,
    DocumentFilter,
    DocumentKind,
    InventoryItem,
    LineItem,
    SaleStatus,
)
from services.repository.events import ChangeEvent, ChangeFeed, ChangeKind, EntityType

logger = logging.getLogger(__name__)


class FinalizeRequest(BaseModel):
    """Everything needed to persist a confirmed wizard.

    Attributes:
        counterparty: Customer or provider to upsert (keyed by kind and RUT)
        document: Header and ordered line items; ids are assigned on save
    """

    counterparty: Counterparty
    document: Document


class FinalizedDocument(BaseModel):
    """Identifiers assigned by a successful finalize_document call."""

    document_id: str
    counterparty_id: str
    line_item_ids: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class StockMovement:
    """Inventory change derived from a single document line.

    Attributes:
        name: Inventory item name (exact match)
        delta: Units to add (negative for sales)
        unit_cost: Net cost to store, if prices are overwritten
        unit_sell_price: Gross sell price to store, if prices are overwritten
        overwrite_prices: Whether the line's prices replace the stored ones
    """

    name: str
    delta: int
    unit_cost: Decimal | None = None
    unit_sell_price: Decimal | None = None
    overwrite_prices: bool = False


def stock_movement_for(kind: DocumentKind, item: LineItem) -> StockMovement:
    """Derive the inventory movement caused by a document line.

    Sales decrement stock. Purchases increment stock and overwrite the stored
    net cost and gross sell price.

    Args:
        kind: Document kind
        item: Line item

    Returns:
        StockMovement for the item
    """
    if kind == DocumentKind.SALE:
        return StockMovement(name=item.name, delta=-item.quantity, unit_sell_price=item.unit_price)

    return StockMovement(
        name=item.name,
        delta=item.quantity,
        unit_cost=item.unit_cost,
        unit_sell_price=item.sell_price,
        overwrite_prices=True,
    )


def clamp_stock(current: int, delta: int, name: str) -> int:
    """Apply a delta to a stock count without going below zero."""
    new_stock = current + delta
    if new_stock < 0:
        logger.warning(
            f"Stock for '{name}' would drop to {new_stock} (had {current}, delta {delta}); "
            f"clamping to 0"
        )
        return 0
    return new_stock


class DocumentRepository(ABC):
    """Storage interface used by wizards, reporting and the API.

    Every failure of the underlying backend is raised as PersistenceError.
    Change events are published after a successful commit only.
    """

    def __init__(self, change_feed: ChangeFeed | None = None) -> None:
        self.change_feed = change_feed or ChangeFeed()
        # Transaction depth and pending events belong to the calling thread
        self._local = threading.local()

    # Counterparties

    @abstractmethod
    def find_counterparty_by_identifier(
        self, kind: CounterpartyKind, rut: str
    ) -> Counterparty | None:
        """Look up a customer or provider by formatted RUT."""

    @abstractmethod
    def upsert_counterparty(self, counterparty: Counterparty) -> Counterparty:
        """Insert or update a counterparty keyed by (kind, RUT); returns it with an id."""

    @abstractmethod
    def list_counterparties(self, kind: CounterpartyKind | None = None) -> list[Counterparty]:
        """List counterparties, optionally of a single kind."""

    @abstractmethod
    def delete_counterparty(self, counterparty_id: str) -> bool:
        """Delete a counterparty; returns False when it does not exist."""

    # Documents

    @abstractmethod
    def create_document(self, document: Document) -> Document:
        """Persist a document header (items are created separately)."""

    @abstractmethod
    def create_line_item(self, document_id: str, item: LineItem, position: int) -> LineItem:
        """Persist a line item under a document."""

    @abstractmethod
    def get_document(self, document_id: str) -> Document | None:
        """Fetch a document with its line items in order."""

    @abstractmethod
    def list_documents(self, document_filter: DocumentFilter | None = None) -> list[Document]:
        """List documents (newest first) matching the filter."""

    @abstractmethod
    def update_document_status(self, document_id: str, status: SaleStatus) -> Document | None:
        """Change the status of a sale; returns None when it does not exist."""

    @abstractmethod
    def delete_document(self, document_id: str) -> bool:
        """Delete a document and its line items; returns False when it does not exist."""

    # Inventory

    @abstractmethod
    def find_inventory_item_by_name(self, name: str) -> InventoryItem | None:
        """Look up an inventory item by exact name."""

    @abstractmethod
    def list_inventory_items(self) -> list[InventoryItem]:
        """List inventory items ordered by name."""

    @abstractmethod
    def upsert_inventory_item(self, item: InventoryItem) -> InventoryItem:
        """Insert or update an inventory item keyed by name."""

    @abstractmethod
    def adjust_inventory_stock(self, item_id: str, delta: int) -> InventoryItem:
        """Add delta to an item's stock, clamping at zero."""

    # Transactions

    @abstractmethod
    def _transaction_scope(self) -> AbstractContextManager[None]:
        """Backend-specific commit/rollback scope."""

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group several operations so they commit or roll back together.

        Nested calls join the outermost transaction. Change events raised
        inside are published once the outermost transaction commits and are
        dropped if it rolls back. Nesting is tracked per thread, so concurrent
        callers each get their own transaction.

        Example:
            >>> with repository.transaction():
            ...     repository.upsert_counterparty(customer)
            ...     repository.create_document(document)
        """
        state = self._local
        if self._transaction_depth:
            state.depth += 1
            try:
                yield
            finally:
                state.depth -= 1
            return

        state.depth = 1
        state.pending_events = []
        try:
            with self._transaction_scope():
                yield
        except BaseException:
            state.pending_events = []
            raise
        finally:
            state.depth = 0

        events, state.pending_events = state.pending_events, []
        for event in events:
            self.change_feed.publish(event)

    @property
    def _transaction_depth(self) -> int:
        """Nesting level of the calling thread's open transaction (0 when none)."""
        return getattr(self._local, "depth", 0)

    def _emit(
        self,
        kind: ChangeKind,
        entity: EntityType,
        entity_id: str,
        snapshot: dict | None = None,
    ) -> None:
        event = ChangeEvent(kind=kind, entity=entity, entity_id=entity_id, snapshot=snapshot)
        if self._transaction_depth:
            self._local.pending_events.append(event)
        else:
            self.change_feed.publish(event)

    # Composite operations

    def apply_stock_movement(self, movement: StockMovement) -> InventoryItem:
        """Apply a document line's stock movement to the inventory.

        Unknown items are created: purchases with category Insumos and the
        line's prices, sales with zero stock and the line's gross price.

        Args:
            movement: Movement to apply

        Returns:
            Updated inventory item
        """
        existing = self.find_inventory_item_by_name(movement.name)
        if existing is None:
            created = InventoryItem(
                name=movement.name,
                stock=0,
                unit_cost=movement.unit_cost or Decimal("0"),
                unit_sell_price=movement.unit_sell_price or Decimal("0"),
                category=DEFAULT_INVENTORY_CATEGORY,
            )
            existing = self.upsert_inventory_item(created)
            logger.info(f"Created inventory item '{movement.name}'")
        elif movement.overwrite_prices:
            updates: dict[str, Decimal] = {}
            if movement.unit_cost is not None:
                updates["unit_cost"] = movement.unit_cost
            if movement.unit_sell_price is not None:
                updates["unit_sell_price"] = movement.unit_sell_price
            if updates:
                existing = self.upsert_inventory_item(existing.model_copy(update=updates))

        if existing.id is None:
            raise ValueError(f"Inventory item '{movement.name}' has no id after upsert")
        return self.adjust_inventory_stock(existing.id, movement.delta)

    def finalize_document(self, request: FinalizeRequest) -> FinalizedDocument:
        """Persist a confirmed document in one transaction.

        Upserts the counterparty, creates the header, then creates each line
        and applies its inventory movement. Any failure rolls back every step.

        Args:
            request: Counterparty and document to persist

        Returns:
            Identifiers assigned to the saved records

        Raises:
            PersistenceError: If the backend fails; nothing is committed
        """
        document = request.document
        with self.transaction():
            counterparty = self.upsert_counterparty(request.counterparty)
            if counterparty.id is None:
                raise ValueError("Counterparty has no id after upsert")

            header = document.model_copy(
                update={
                    "counterparty_id": counterparty.id,
                    "counterparty_rut": counterparty.rut,
                    "counterparty_name": document.counterparty_name
                    or counterparty.display_name,
                    "items": [],
                }
            )
            created = self.create_document(header)
            if created.id is None:
                raise ValueError("Document has no id after create")

            line_ids: list[str] = []
            for position, item in enumerate(document.items):
                line = self.create_line_item(created.id, item, position)
                if line.id is not None:
                    line_ids.append(line.id)
                self.apply_stock_movement(stock_movement_for(document.kind, item))

        logger.info(
            f"Finalized {document.kind.value} {document.number} "
            f"({len(line_ids)} lines, total {document.total_gross})"
        )
        return FinalizedDocument(
            document_id=created.id,
            counterparty_id=counterparty.id,
            line_item_ids=line_ids,
        )
