"""Order-entry wizard state machine shared by sales and purchases.

A wizard walks through three steps (party, items, review). Moving forward is
guarded by validation; moving back keeps the draft; cancelling discards it.
Confirming persists everything through the repository's transactional
``finalize_document`` so a failure leaves no partial records behind.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any

from prometheus_client import Counter
from pydantic import BaseModel, Field

from services.documents.computation import TaxBreakdown, decompose
from services.documents.schema import (
    Counterparty,
    CounterpartyKind,
    Document,
    DocumentKind,
    LineItem,
)
from services.repository.base import DocumentRepository, FinalizeRequest
from services.shared.config import Settings, get_settings
from services.shared.errors import PersistenceError, ValidationError, WizardStateError
from services.shared.session import SessionContext

logger = logging.getLogger(__name__)

documents_finalized_total = Counter(
    "documents_finalized_total",
    "Total wizard confirmations",
    ["kind", "status"],  # sale/purchase, success/failed
)


class WizardStep(IntEnum):
    """Wizard steps in order."""

    COLLECTING_PARTY = 1
    COLLECTING_ITEMS = 2
    REVIEW_AND_CONFIRM = 3


class WizardStatus(str, Enum):
    """Lifecycle status of a wizard."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DraftLine(BaseModel):
    """Line item being edited; may be incomplete until the items step is validated."""

    name: str = ""
    quantity: int = 1
    unit_price: Decimal = Decimal("0")
    unit_cost: Decimal | None = None
    sell_price: Decimal | None = None

    def to_line_item(self) -> LineItem:
        return LineItem(
            name=self.name.strip(),
            quantity=self.quantity,
            unit_price=self.unit_price,
            unit_cost=self.unit_cost,
            sell_price=self.sell_price,
        )


class StepResult(BaseModel):
    """Outcome of advance() or back().

    Attributes:
        success: Whether the transition happened
        step: Step the wizard is on after the call
        errors: Validation messages when the transition was refused
    """

    success: bool
    step: WizardStep
    errors: list[str] = Field(default_factory=list)


class FinalizeResult(BaseModel):
    """Outcome of confirm().

    Attributes:
        success: Whether the document was saved
        document_id: Identifier of the saved document
        counterparty_id: Identifier of the upserted customer or provider
        document_number: Quotation correlative or provider document number
        total: Gross total saved
        error: Error message if saving failed
    """

    success: bool
    document_id: str | None = None
    counterparty_id: str | None = None
    document_number: str | None = None
    total: Decimal | None = None
    error: str | None = None


class OrderWizard(ABC):
    """Base three-step wizard.

    Subclasses supply the party draft, its validation and how the draft is
    turned into a Counterparty and a Document.
    """

    document_kind: DocumentKind
    counterparty_kind: CounterpartyKind

    def __init__(
        self,
        repository: DocumentRepository,
        session: SessionContext | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize wizard.

        Args:
            repository: Repository used for lookups and the final save
            session: Session context (defaults to a writable anonymous session)
            settings: Application settings
        """
        self.repository = repository
        self.session = session or SessionContext()
        self.settings = settings or get_settings()
        self.step = WizardStep.COLLECTING_PARTY
        self.status = WizardStatus.ACTIVE
        self.items: list[DraftLine] = []
        self.errors: list[str] = []

    # Draft editing

    def add_item(self, **fields: Any) -> int:
        """Append a draft line.

        Args:
            **fields: DraftLine fields

        Returns:
            Index of the new line
        """
        self._require_active()
        self.items.append(self._normalize_line(DraftLine(**fields)))
        return len(self.items) - 1

    def update_item(self, index: int, **changes: Any) -> DraftLine:
        """Change fields of a draft line.

        Args:
            index: Line index
            **changes: DraftLine fields to replace

        Returns:
            Updated line

        Raises:
            IndexError: If there is no line at index
        """
        self._require_active()
        line = self.items[index]
        updated = DraftLine(**{**line.model_dump(), **changes})
        self.items[index] = self._normalize_line(updated, changed=set(changes))
        return self.items[index]

    def remove_item(self, index: int) -> None:
        """Remove a draft line.

        Raises:
            IndexError: If there is no line at index
        """
        self._require_active()
        del self.items[index]

    @property
    def total_gross(self) -> Decimal:
        return sum((line.quantity * line.unit_price for line in self.items), Decimal("0"))

    @property
    def totals(self) -> TaxBreakdown:
        """Live gross/net/tax of the draft."""
        return decompose(self.total_gross)

    # Transitions

    def advance(self) -> StepResult:
        """Move to the next step if the current step validates.

        Returns:
            StepResult; on refusal the step is unchanged and errors are set

        Raises:
            WizardStateError: If the wizard is closed or already on the review step
        """
        self._require_active()
        if self.step == WizardStep.REVIEW_AND_CONFIRM:
            raise WizardStateError("Already on the review step; confirm() to save")

        errors = self._step_errors()
        self.errors = errors
        if errors:
            logger.debug(f"{self.document_kind.value} wizard stays at step {self.step}: {errors}")
            return StepResult(success=False, step=self.step, errors=errors)

        self.step = WizardStep(self.step + 1)
        return StepResult(success=True, step=self.step)

    def require_valid(self) -> None:
        """Check the current step and raise instead of returning a result.

        On the review step both party and item checks run.

        Raises:
            ValidationError: With one message per failed check
            WizardStateError: If the wizard is closed
        """
        self._require_active()
        errors = self._step_errors()
        self.errors = errors
        if errors:
            raise ValidationError(errors)

    def back(self) -> StepResult:
        """Move to the previous step, keeping all draft data. No-op on step 1."""
        self._require_active()
        if self.step > WizardStep.COLLECTING_PARTY:
            self.step = WizardStep(self.step - 1)
        self.errors = []
        return StepResult(success=True, step=self.step)

    def cancel(self) -> None:
        """Discard the draft. Nothing is persisted.

        Raises:
            WizardStateError: If the wizard was already confirmed or cancelled
        """
        self._require_active()
        self._reset_party()
        self.items = []
        self.errors = []
        self.step = WizardStep.COLLECTING_PARTY
        self.status = WizardStatus.CANCELLED
        logger.debug(f"{self.document_kind.value} wizard cancelled")

    def confirm(self) -> FinalizeResult:
        """Persist the draft as a document.

        Guards are re-checked before saving. A persistence failure keeps the
        wizard on the review step so the user can retry.

        Returns:
            FinalizeResult

        Raises:
            WizardStateError: If the wizard is closed or not on the review step
        """
        self._require_active()
        if self.step != WizardStep.REVIEW_AND_CONFIRM:
            raise WizardStateError(f"confirm() requires the review step (current: {self.step})")

        if not self.session.can_write:
            self.errors = ["Guest sessions are read-only"]
            return FinalizeResult(success=False, error=self.errors[0])

        errors = self.validate_party() + self.validate_items()
        if errors:
            self.errors = errors
            return FinalizeResult(success=False, error="; ".join(errors))

        request = FinalizeRequest(
            counterparty=self.build_counterparty(), document=self.build_document()
        )
        try:
            saved = self.repository.finalize_document(request)
        except PersistenceError as e:
            kind = self.document_kind.value
            logger.error(f"Failed to save {kind} {request.document.number}: {e}")
            documents_finalized_total.labels(kind=kind, status="failed").inc()
            self.errors = [str(e)]
            return FinalizeResult(
                success=False, document_number=request.document.number, error=str(e)
            )

        documents_finalized_total.labels(kind=self.document_kind.value, status="success").inc()
        self.status = WizardStatus.COMPLETED
        self.errors = []
        return FinalizeResult(
            success=True,
            document_id=saved.document_id,
            counterparty_id=saved.counterparty_id,
            document_number=request.document.number,
            total=request.document.total_gross,
        )

    # Validation

    @abstractmethod
    def validate_party(self) -> list[str]:
        """Messages for every failed party check (empty when valid)."""

    def validate_items(self) -> list[str]:
        """Messages for every failed items check (empty when valid)."""
        if not self.items:
            return ["Add at least one item"]

        errors: list[str] = []
        for position, line in enumerate(self.items, start=1):
            errors.extend(f"Item {position}: {msg}" for msg in self._validate_line(line))
        return errors

    def _validate_line(self, line: DraftLine) -> list[str]:
        errors = []
        if not line.name.strip():
            errors.append("name is required")
        if line.quantity <= 0:
            errors.append("quantity must be greater than 0")
        if line.unit_price <= 0:
            errors.append("unit price must be greater than 0")
        return errors

    # Draft conversion

    @abstractmethod
    def build_counterparty(self) -> Counterparty:
        """Counterparty to upsert on confirm."""

    @abstractmethod
    def build_document(self) -> Document:
        """Document (with line items) to create on confirm."""

    @abstractmethod
    def _reset_party(self) -> None:
        """Clear the party draft."""

    def _normalize_line(self, line: DraftLine, changed: set[str] | None = None) -> DraftLine:
        return line

    def _require_active(self) -> None:
        if self.status != WizardStatus.ACTIVE:
            raise WizardStateError(f"Wizard is {self.status.value}")

    def _step_errors(self) -> list[str]:
        if self.step == WizardStep.COLLECTING_PARTY:
            return self.validate_party()
        if self.step == WizardStep.COLLECTING_ITEMS:
            return self.validate_items()
        return self.validate_party() + self.validate_items()
