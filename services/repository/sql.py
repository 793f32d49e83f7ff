"""SQLAlchemy-backed repository.

Works with any SQLAlchemy database URL (SQLite for single-user installs,
PostgreSQL for shared ones). Tables are created on first use; there is no
migration tooling.

Based on SQLAlchemy 2.0 ORM:
https://docs.sqlalchemy.org/en/20/orm/quickstart.html
"""

import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    TypeDecorator,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.engine import Dialect, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, relationship, sessionmaker

from services.documents.schema import (
    Counterparty,
    CounterpartyKind,
    Document,
    DocumentFilter,
    DocumentKind,
    InventoryItem,
    LineItem,
    PaymentMethod,
    PurchaseDocType,
    SaleStatus,
    as_utc,
)
from services.repository.base import DocumentRepository, clamp_stock
from services.repository.events import ChangeFeed, ChangeKind, EntityType
from services.rut.validator import format_rut
from services.shared.errors import PersistenceError

logger = logging.getLogger(__name__)


class Money(TypeDecorator):
    """Exact decimal amount stored as text.

    SQLite has no decimal type, so Numeric columns round-trip through float there.
    """

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: Dialect) -> str | None:
        return None if value is None else str(value)

    def process_result_value(self, value: str | None, dialect: Dialect) -> Decimal | None:
        return None if value is None else Decimal(value)


MONEY = Money()


class Base(DeclarativeBase):
    pass


class CounterpartyRow(Base):
    """Customer or provider (contact details kept as JSON)."""

    __tablename__ = "counterparties"
    __table_args__ = (UniqueConstraint("kind", "rut", name="uq_counterparty_kind_rut"),)

    id = Column(String(32), primary_key=True)
    kind = Column(String(16), nullable=False)
    rut = Column(String(16), nullable=False)
    is_company = Column(Boolean, nullable=False, default=False)
    details = Column(JSON, nullable=False, default=dict)


class DocumentRow(Base):
    """Sale or purchase header."""

    __tablename__ = "documents"

    id = Column(String(32), primary_key=True)
    kind = Column(String(16), nullable=False, index=True)
    number = Column(String(64), nullable=False)
    counterparty_id = Column(
        String(32), ForeignKey("counterparties.id", ondelete="SET NULL"), nullable=True
    )
    counterparty_rut = Column(String(16), nullable=False, default="")
    counterparty_name = Column(String(255), nullable=False, default="")
    document_date = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String(16), nullable=True)
    doc_type = Column(String(16), nullable=True)
    payment_method = Column(String(32), nullable=True)
    shipping_method = Column(String(64), nullable=True)

    lines = relationship(
        "LineItemRow",
        order_by="LineItemRow.position",
        cascade="all, delete-orphan",
    )


class LineItemRow(Base):
    """Line of a document."""

    __tablename__ = "line_items"

    id = Column(String(32), primary_key=True)
    document_id = Column(
        String(32), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(MONEY, nullable=False)
    unit_cost = Column(MONEY, nullable=True)
    sell_price = Column(MONEY, nullable=True)


class InventoryItemRow(Base):
    """Stock-keeping item."""

    __tablename__ = "inventory_items"

    id = Column(String(32), primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    stock = Column(Integer, nullable=False, default=0)
    unit_cost = Column(MONEY, nullable=False, default=Decimal("0"))
    unit_sell_price = Column(MONEY, nullable=False, default=Decimal("0"))
    category = Column(String(64), nullable=False)
    image_url = Column(String(1024), nullable=True)


def _new_id() -> str:
    return uuid.uuid4().hex


class SqlRepository(DocumentRepository):
    """Repository backed by a relational database through SQLAlchemy."""

    def __init__(
        self,
        database_url: str,
        change_feed: ChangeFeed | None = None,
        engine: Engine | None = None,
    ) -> None:
        """Initialize repository and create missing tables.

        Args:
            database_url: SQLAlchemy database URL
            change_feed: Feed receiving change events (a new one if None)
            engine: Pre-built engine (overrides database_url)

        Raises:
            PersistenceError: If the database cannot be reached
        """
        super().__init__(change_feed)
        self._engine = engine or create_engine(database_url)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        # SQLite allows a single writer, and read-then-write transactions from two
        # connections fail with "database is locked" instead of waiting
        self._write_lock = threading.RLock() if self._engine.dialect.name == "sqlite" else None

        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot initialize database: {e}") from e
        logger.info(f"SQL repository ready ({self._engine.url.render_as_string()})")

    @contextmanager
    def _transaction_scope(self) -> Iterator[None]:
        with self._write_lock or nullcontext():
            session = self._session_factory()
            self._local.session = session
            try:
                with session.begin():
                    yield
            except SQLAlchemyError as e:
                logger.error(f"Database transaction rolled back: {e}")
                raise PersistenceError(f"Database operation failed: {e}") from e
            finally:
                self._local.session = None
                session.close()

    @property
    def _db(self) -> Session:
        session = getattr(self._local, "session", None)
        if session is None:
            raise RuntimeError("No open transaction")
        return session

    # Counterparties

    def find_counterparty_by_identifier(
        self, kind: CounterpartyKind, rut: str
    ) -> Counterparty | None:
        with self.transaction():
            row = self._find_counterparty_row(kind, format_rut(rut))
            return _to_counterparty(row) if row is not None else None

    def upsert_counterparty(self, counterparty: Counterparty) -> Counterparty:
        rut = format_rut(counterparty.rut)
        details = counterparty.model_dump(
            mode="json", exclude={"id", "kind", "rut", "is_company"}
        )
        with self.transaction():
            row = self._find_counterparty_row(counterparty.kind, rut)
            if row is None:
                row = CounterpartyRow(id=_new_id(), kind=counterparty.kind.value, rut=rut)
                self._db.add(row)
                change = ChangeKind.CREATED
            else:
                change = ChangeKind.UPDATED
            row.is_company = counterparty.is_company
            row.details = details
            self._db.flush()

            stored = _to_counterparty(row)
            self._emit(change, EntityType.COUNTERPARTY, row.id, stored.model_dump(mode="json"))
        return stored

    def list_counterparties(self, kind: CounterpartyKind | None = None) -> list[Counterparty]:
        with self.transaction():
            query = select(CounterpartyRow)
            if kind is not None:
                query = query.where(CounterpartyRow.kind == kind.value)
            result = [_to_counterparty(row) for row in self._db.scalars(query)]
        return sorted(result, key=lambda c: c.display_name.lower())

    def delete_counterparty(self, counterparty_id: str) -> bool:
        with self.transaction():
            row = self._db.get(CounterpartyRow, counterparty_id)
            if row is None:
                return False
            self._db.delete(row)
            self._emit(ChangeKind.DELETED, EntityType.COUNTERPARTY, counterparty_id)
        return True

    # Documents

    def create_document(self, document: Document) -> Document:
        with self.transaction():
            row = DocumentRow(
                id=_new_id(),
                kind=document.kind.value,
                number=document.number,
                counterparty_id=document.counterparty_id,
                counterparty_rut=document.counterparty_rut,
                counterparty_name=document.counterparty_name,
                document_date=as_utc(document.document_date),
                status=document.status.value if document.status else None,
                doc_type=document.doc_type.value if document.doc_type else None,
                payment_method=document.payment_method.value if document.payment_method else None,
                shipping_method=document.shipping_method,
            )
            self._db.add(row)
            self._db.flush()
            for position, item in enumerate(document.items):
                self.create_line_item(row.id, item, position)
            self._emit(ChangeKind.CREATED, EntityType.DOCUMENT, row.id)
            created = self._load_document(row.id)
        return created

    def create_line_item(self, document_id: str, item: LineItem, position: int) -> LineItem:
        with self.transaction():
            document = self._db.get(DocumentRow, document_id)
            if document is None:
                raise PersistenceError(f"Document {document_id} does not exist")
            row = LineItemRow(
                id=_new_id(),
                document_id=document_id,
                position=position,
                name=item.name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                unit_cost=item.unit_cost,
                sell_price=item.sell_price,
            )
            self._db.add(row)
            self._db.flush()
            stored = _to_line_item(row)
        return stored

    def get_document(self, document_id: str) -> Document | None:
        with self.transaction():
            return self._load_document(document_id)

    def list_documents(self, document_filter: DocumentFilter | None = None) -> list[Document]:
        document_filter = document_filter or DocumentFilter()
        query = select(DocumentRow).order_by(DocumentRow.document_date.desc())
        if document_filter.kind is not None:
            query = query.where(DocumentRow.kind == document_filter.kind.value)
        if document_filter.status is not None:
            query = query.where(DocumentRow.status == document_filter.status.value)
        if document_filter.start is not None:
            query = query.where(DocumentRow.document_date >= as_utc(document_filter.start))
        if document_filter.end is not None:
            query = query.where(DocumentRow.document_date < as_utc(document_filter.end))

        with self.transaction():
            documents = [_to_document(row) for row in self._db.scalars(query)]
        return [d for d in documents if document_filter.matches(d)]

    def update_document_status(self, document_id: str, status: SaleStatus) -> Document | None:
        with self.transaction():
            row = self._db.get(DocumentRow, document_id)
            if row is None:
                return None
            row.status = status.value
            self._db.flush()
            self._emit(
                ChangeKind.UPDATED, EntityType.DOCUMENT, document_id, {"status": status.value}
            )
            updated = _to_document(row)
        return updated

    def delete_document(self, document_id: str) -> bool:
        with self.transaction():
            row = self._db.get(DocumentRow, document_id)
            if row is None:
                return False
            self._db.delete(row)
            self._emit(ChangeKind.DELETED, EntityType.DOCUMENT, document_id)
        return True

    # Inventory

    def find_inventory_item_by_name(self, name: str) -> InventoryItem | None:
        with self.transaction():
            row = self._db.scalars(
                select(InventoryItemRow).where(InventoryItemRow.name == name)
            ).first()
            return _to_inventory_item(row) if row is not None else None

    def list_inventory_items(self) -> list[InventoryItem]:
        with self.transaction():
            rows = self._db.scalars(select(InventoryItemRow).order_by(InventoryItemRow.name))
            return [_to_inventory_item(row) for row in rows]

    def upsert_inventory_item(self, item: InventoryItem) -> InventoryItem:
        with self.transaction():
            row = self._db.scalars(
                select(InventoryItemRow).where(InventoryItemRow.name == item.name)
            ).first()
            if row is None:
                row = InventoryItemRow(id=item.id or _new_id(), name=item.name)
                self._db.add(row)
                change = ChangeKind.CREATED
            else:
                change = ChangeKind.UPDATED
            row.stock = item.stock
            row.unit_cost = item.unit_cost
            row.unit_sell_price = item.unit_sell_price
            row.category = item.category
            row.image_url = item.image_url
            self._db.flush()

            stored = _to_inventory_item(row)
            self._emit(change, EntityType.INVENTORY_ITEM, row.id, stored.model_dump(mode="json"))
        return stored

    def adjust_inventory_stock(self, item_id: str, delta: int) -> InventoryItem:
        with self.transaction():
            row = self._db.get(InventoryItemRow, item_id)
            if row is None:
                raise PersistenceError(f"Inventory item {item_id} does not exist")
            row.stock = clamp_stock(row.stock, delta, row.name)
            self._db.flush()
            self._emit(ChangeKind.UPDATED, EntityType.INVENTORY_ITEM, item_id, {"stock": row.stock})
            stored = _to_inventory_item(row)
        return stored

    def _find_counterparty_row(self, kind: CounterpartyKind, rut: str) -> CounterpartyRow | None:
        return self._db.scalars(
            select(CounterpartyRow).where(
                CounterpartyRow.kind == kind.value, CounterpartyRow.rut == rut
            )
        ).first()

    def _load_document(self, document_id: str) -> Document | None:
        row = self._db.get(DocumentRow, document_id)
        if row is None:
            return None
        # Lines may have been added after the row was first loaded
        self._db.refresh(row, attribute_names=["lines"])
        return _to_document(row)


def _to_counterparty(row: CounterpartyRow) -> Counterparty:
    return Counterparty(
        id=row.id,
        kind=CounterpartyKind(row.kind),
        rut=row.rut,
        is_company=row.is_company,
        **(row.details or {}),
    )


def _to_line_item(row: LineItemRow) -> LineItem:
    return LineItem(
        id=row.id,
        name=row.name,
        quantity=row.quantity,
        unit_price=row.unit_price,
        unit_cost=row.unit_cost,
        sell_price=row.sell_price,
    )


def _to_document(row: DocumentRow) -> Document:
    return Document(
        id=row.id,
        kind=DocumentKind(row.kind),
        number=row.number,
        counterparty_id=row.counterparty_id,
        counterparty_rut=row.counterparty_rut,
        counterparty_name=row.counterparty_name,
        document_date=row.document_date,
        items=[_to_line_item(line) for line in row.lines],
        status=SaleStatus(row.status) if row.status else None,
        doc_type=PurchaseDocType(row.doc_type) if row.doc_type else None,
        payment_method=PaymentMethod(row.payment_method) if row.payment_method else None,
        shipping_method=row.shipping_method,
    )


def _to_inventory_item(row: InventoryItemRow) -> InventoryItem:
    return InventoryItem(
        id=row.id,
        name=row.name,
        stock=row.stock,
        unit_cost=row.unit_cost,
        unit_sell_price=row.unit_sell_price,
        category=row.category,
        image_url=row.image_url,
    )
