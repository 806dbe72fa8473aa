"""Fire-and-forget delivery of domain events to audit and notification sinks"""
import asyncio
import logging
from typing import List, Sequence, Set

from domain.events import AuditSink, DomainEvent, EventSink, NotificationSink

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("reservation.audit")


class EventPublisher:
    """Schedules each sink's handler as its own task and returns immediately.

    A failing sink is logged and never propagates into the operation that
    emitted the event.
    """

    def __init__(self, sinks: Sequence[EventSink] = ()):
        self._sinks: List[EventSink] = list(sinks)
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def publish(self, event: DomainEvent) -> None:
        for sink in self._sinks:
            task = asyncio.get_running_loop().create_task(self._deliver(sink, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every delivery scheduled so far"""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    @staticmethod
    async def _deliver(sink: EventSink, event: DomainEvent) -> None:
        try:
            await sink.handle(event)
        except Exception:
            logger.warning(
                "Event sink %s failed on %s (%s)",
                type(sink).__name__, event.event_type, event.event_id,
                exc_info=True,
            )


class LoggingAuditSink(AuditSink):
    """Writes every event to the reservation.audit logger"""

    async def handle(self, event: DomainEvent) -> None:
        audit_logger.info(
            "%s hotel=%s actor=%s %s",
            event.event_type, event.hotel_id, event.actor,
            event.model_dump(mode="json", exclude={"event_type", "hotel_id", "actor"}),
        )


class InMemoryNotificationSink(NotificationSink):
    """Keeps notifications in memory for a notification panel to read"""

    def __init__(self):
        self.events: List[DomainEvent] = []

    async def handle(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[DomainEvent]:
        return [event for event in self.events if event.event_type == event_type]
