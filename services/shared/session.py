"""Session context passed explicitly to wizards and reporting components.

Replaces browser-local ambient state (cached role, company logo, guest flag)
with a single object that is loaded at session start and saved at session end.
"""

import json
import logging
from enum import Enum
from pathlib import Path

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


class UserRole(str, Enum):
    """Roles available to dashboard users."""

    VENDEDOR = "VENDEDOR"
    SUPERVISOR = "SUPERVISOR"
    ADMIN = "ADMIN"
    CEO = "CEO"


class SessionContext(BaseModel):
    """Per-user session state.

    Attributes:
        user_email: Email of the signed-in user (None for guests)
        role: Role of the signed-in user
        company_name: Company shown on quotations and reports
        company_logo: Logo as a data URL or remote URL
        guest_mode: Read-only browsing without persistence rights
    """

    user_email: str | None = None
    role: UserRole = UserRole.VENDEDOR
    company_name: str = "Fungus Mycelium Ltda"
    company_logo: str | None = None
    guest_mode: bool = False

    @property
    def can_write(self) -> bool:
        """Whether this session may persist documents."""
        return not self.guest_mode

    @property
    def is_admin(self) -> bool:
        """Whether this session may manage users and catalog data."""
        return self.role in (UserRole.ADMIN, UserRole.CEO)


def load_session(path: Path) -> SessionContext:
    """Load the session context saved at the end of the previous session.

    A missing or unreadable file yields a default context.

    Args:
        path: Session file path

    Returns:
        Loaded or default SessionContext
    """
    if not path.exists():
        return SessionContext()

    try:
        return SessionContext.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, PydanticValidationError) as e:
        logger.warning(f"Ignoring unreadable session file {path}: {e}")
        return SessionContext()


def save_session(context: SessionContext, path: Path) -> None:
    """Persist the session context.

    Args:
        context: Session context to save
        path: Session file path
    """
    path.write_text(json.dumps(context.model_dump(mode="json"), indent=2), encoding="utf-8")
    logger.debug(f"Session saved to {path}")


def clear_session(path: Path) -> None:
    """Remove persisted session state (sign out).

    Args:
        path: Session file path
    """
    if path.exists():
        path.unlink()
        logger.info("Session cleared")
