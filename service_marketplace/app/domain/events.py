"""
Entity lifecycle events emitted by the repositories.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List

from shared.logging import get_logger


class EntityAction(str, Enum):
    """Write operations observed on entities."""
    PERSIST = "persist"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(frozen=True)
class EntityEvent:
    """A committed-to-be write on one entity."""
    action: EntityAction
    entity_type: str
    entity_uuid: str


EventSubscriber = Callable[[EntityEvent], Awaitable[None]]


class EventDispatcher:
    """Synchronous, in-order delivery of lifecycle events to subscribers.

    Subscribers run inside the write transaction of the repository that
    dispatched the event, so any exception they raise aborts the write.
    """

    def __init__(self):
        self.logger = get_logger("marketplace.events")
        self._subscribers: List[EventSubscriber] = []

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers.append(subscriber)

    async def dispatch(self, event: EntityEvent) -> None:
        self.logger.debug(
            "Dispatching entity event",
            action=event.action.value,
            entity_type=event.entity_type,
            entity_uuid=event.entity_uuid
        )
        for subscriber in self._subscribers:
            await subscriber(event)
