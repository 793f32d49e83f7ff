"""Process-local repository backend.

Used for tests, demos and guest sessions. Transactions take a deep copy of
every table and restore it when the block raises. A re-entrant lock is held
for the whole of a transaction and for every read.
"""

import copy
import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from services.documents.schema import (
    Counterparty,
    CounterpartyKind,
    Document,
    DocumentFilter,
    InventoryItem,
    LineItem,
    SaleStatus,
)
from services.repository.base import DocumentRepository, clamp_stock
from services.repository.events import ChangeFeed, ChangeKind, EntityType
from services.rut.validator import format_rut
from services.shared.errors import PersistenceError

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryRepository(DocumentRepository):
    """Dictionary-backed repository."""

    def __init__(self, change_feed: ChangeFeed | None = None) -> None:
        super().__init__(change_feed)
        self._counterparties: dict[str, Counterparty] = {}
        self._documents: dict[str, Document] = {}
        self._line_items: dict[str, list[LineItem]] = {}
        self._inventory: dict[str, InventoryItem] = {}
        self._lock = threading.RLock()

    @contextmanager
    def _transaction_scope(self) -> Iterator[None]:
        with self._lock:
            snapshot = copy.deepcopy(
                (self._counterparties, self._documents, self._line_items, self._inventory)
            )
            try:
                yield
            except BaseException:
                (
                    self._counterparties,
                    self._documents,
                    self._line_items,
                    self._inventory,
                ) = snapshot
                logger.debug("In-memory transaction rolled back")
                raise

    # Counterparties

    def find_counterparty_by_identifier(
        self, kind: CounterpartyKind, rut: str
    ) -> Counterparty | None:
        key = format_rut(rut)
        with self._lock:
            for counterparty in self._counterparties.values():
                if counterparty.kind == kind and counterparty.rut == key:
                    return counterparty.model_copy()
        return None

    def upsert_counterparty(self, counterparty: Counterparty) -> Counterparty:
        with self.transaction():
            rut = format_rut(counterparty.rut)
            existing = self.find_counterparty_by_identifier(counterparty.kind, rut)
            if existing is not None and existing.id is not None:
                counterparty_id, change = existing.id, ChangeKind.UPDATED
            else:
                counterparty_id, change = _new_id(), ChangeKind.CREATED

            stored = counterparty.model_copy(update={"id": counterparty_id, "rut": rut})
            self._counterparties[counterparty_id] = stored
            self._emit(
                change, EntityType.COUNTERPARTY, counterparty_id, stored.model_dump(mode="json")
            )
        return stored.model_copy()

    def list_counterparties(self, kind: CounterpartyKind | None = None) -> list[Counterparty]:
        with self._lock:
            result = [
                c.model_copy()
                for c in self._counterparties.values()
                if kind is None or c.kind == kind
            ]
        return sorted(result, key=lambda c: c.display_name.lower())

    def delete_counterparty(self, counterparty_id: str) -> bool:
        with self.transaction():
            if self._counterparties.pop(counterparty_id, None) is None:
                return False
            self._emit(ChangeKind.DELETED, EntityType.COUNTERPARTY, counterparty_id)
        return True

    # Documents

    def create_document(self, document: Document) -> Document:
        with self.transaction():
            document_id = _new_id()
            self._documents[document_id] = document.model_copy(
                update={"id": document_id, "items": []}
            )
            self._line_items[document_id] = []
            for position, item in enumerate(document.items):
                self.create_line_item(document_id, item, position)
            self._emit(ChangeKind.CREATED, EntityType.DOCUMENT, document_id)
        return self._assemble(document_id)

    def create_line_item(self, document_id: str, item: LineItem, position: int) -> LineItem:
        with self.transaction():
            if document_id not in self._documents:
                raise PersistenceError(f"Document {document_id} does not exist")
            stored = item.model_copy(update={"id": _new_id()})
            self._line_items[document_id].insert(position, stored)
        return stored.model_copy()

    def get_document(self, document_id: str) -> Document | None:
        with self._lock:
            if document_id not in self._documents:
                return None
            return self._assemble(document_id)

    def list_documents(self, document_filter: DocumentFilter | None = None) -> list[Document]:
        document_filter = document_filter or DocumentFilter()
        with self._lock:
            documents = [self._assemble(doc_id) for doc_id in self._documents]
        matching = [d for d in documents if document_filter.matches(d)]
        return sorted(matching, key=lambda d: d.document_date, reverse=True)

    def update_document_status(self, document_id: str, status: SaleStatus) -> Document | None:
        with self.transaction():
            existing = self._documents.get(document_id)
            if existing is None:
                return None
            self._documents[document_id] = existing.model_copy(update={"status": status})
            self._emit(
                ChangeKind.UPDATED, EntityType.DOCUMENT, document_id, {"status": status.value}
            )
        return self._assemble(document_id)

    def delete_document(self, document_id: str) -> bool:
        with self.transaction():
            if self._documents.pop(document_id, None) is None:
                return False
            self._line_items.pop(document_id, None)
            self._emit(ChangeKind.DELETED, EntityType.DOCUMENT, document_id)
        return True

    # Inventory

    def find_inventory_item_by_name(self, name: str) -> InventoryItem | None:
        with self._lock:
            for item in self._inventory.values():
                if item.name == name:
                    return item.model_copy()
        return None

    def list_inventory_items(self) -> list[InventoryItem]:
        with self._lock:
            items = [i.model_copy() for i in self._inventory.values()]
        return sorted(items, key=lambda i: i.name)

    def upsert_inventory_item(self, item: InventoryItem) -> InventoryItem:
        with self.transaction():
            existing = self.find_inventory_item_by_name(item.name)
            if existing is not None and existing.id is not None:
                item_id, change = existing.id, ChangeKind.UPDATED
            else:
                item_id, change = item.id or _new_id(), ChangeKind.CREATED

            stored = item.model_copy(update={"id": item_id})
            self._inventory[item_id] = stored
            self._emit(change, EntityType.INVENTORY_ITEM, item_id, stored.model_dump(mode="json"))
        return stored.model_copy()

    def adjust_inventory_stock(self, item_id: str, delta: int) -> InventoryItem:
        with self.transaction():
            existing = self._inventory.get(item_id)
            if existing is None:
                raise PersistenceError(f"Inventory item {item_id} does not exist")
            stock = clamp_stock(existing.stock, delta, existing.name)
            stored = existing.model_copy(update={"stock": stock})
            self._inventory[item_id] = stored
            self._emit(ChangeKind.UPDATED, EntityType.INVENTORY_ITEM, item_id, {"stock": stock})
        return stored.model_copy()

    def _assemble(self, document_id: str) -> Document:
        header = self._documents[document_id]
        items = [i.model_copy() for i in self._line_items.get(document_id, [])]
        return header.model_copy(update={"items": items})
