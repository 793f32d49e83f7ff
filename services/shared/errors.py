"""Error taxonomy shared by the wizard, repositories and projection layer.

- ValidationError: bad user input; recoverable, never logged as a fault
- PersistenceError: a repository call failed; the in-progress save is aborted
- ExternalServiceError: an AI provider failed; callers degrade to a local result
"""


class DashboardError(Exception):
    """Base class for all domain errors raised by the core."""


class ValidationError(DashboardError):
    """Raised when user-supplied data fails a validation gate.

    Attributes:
        messages: Human readable messages, one per failed check
    """

    def __init__(self, messages: list[str] | str) -> None:
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))


class PersistenceError(DashboardError):
    """Raised when the persistence backend rejects or fails an operation."""


class ExternalServiceError(DashboardError):
    """Raised when an external AI service call fails."""


class WizardStateError(DashboardError):
    """Raised when a wizard operation is not allowed in its current state."""
