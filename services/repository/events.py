"""Change notifications for persisted documents, counterparties and inventory.

Views subscribe to refresh their lists when data changes. Delivery is
synchronous and best-effort: a failing subscriber is logged and skipped.
There is no conflict resolution; the last refresh wins.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    """What happened to the entity."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class EntityType(str, Enum):
    """Which collection the entity belongs to."""

    DOCUMENT = "document"
    COUNTERPARTY = "counterparty"
    INVENTORY_ITEM = "inventory_item"


@dataclass(frozen=True)
class ChangeEvent:
    """A single change notification."""

    kind: ChangeKind
    entity: EntityType
    entity_id: str
    snapshot: dict[str, Any] | None = field(default=None)


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by ChangeFeed.subscribe."""

    def __init__(self, feed: "ChangeFeed", callback: ChangeCallback) -> None:
        self._feed = feed
        self._callback = callback

    def unsubscribe(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        self._feed._remove(self._callback)


class ChangeFeed:
    """In-process publish/subscribe hub for change events."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[ChangeCallback, EntityType | None]] = []

    def subscribe(
        self, callback: ChangeCallback, entity: EntityType | None = None
    ) -> Subscription:
        """Register a callback.

        Args:
            callback: Called with each ChangeEvent
            entity: Only deliver events for this entity type (all if None)

        Returns:
            Subscription handle
        """
        self._subscribers.append((callback, entity))
        return Subscription(self, callback)

    def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to matching subscribers.

        Args:
            event: Event to deliver
        """
        for callback, entity in list(self._subscribers):
            if entity is not None and entity != event.entity:
                continue
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    f"Change subscriber failed for {event.entity.value} "
                    f"{event.kind.value} {event.entity_id}: {e}"
                )

    def _remove(self, callback: ChangeCallback) -> None:
        self._subscribers = [(cb, ent) for cb, ent in self._subscribers if cb is not callback]
