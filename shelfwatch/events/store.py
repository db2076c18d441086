"""Append-only event log with reactor dispatch."""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfwatch.db.models import StoredEventRecord, utcnow
from shelfwatch.events.events import Event, event_from_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredEvent:
    """An event together with its position in the log."""

    id: int
    aggregate_uuid: str
    event: Event
    created_at: datetime = field(default_factory=utcnow)


class EventHandler(Protocol):
    async def handle(self, stored: StoredEvent) -> None: ...


class EventStore(Protocol):
    async def append(self, aggregate_uuid: str, events: Sequence[Event]) -> List[StoredEvent]: ...

    async def events_for(self, aggregate_uuid: str) -> List[StoredEvent]: ...

    async def first_of_type(self, aggregate_uuid: str, event_name: str) -> Optional[Event]: ...


class EventDispatcher:
    """
    Delivers stored events to reactors in registration order.

    A reactor that raises is logged and skipped; the event is already durable
    and the remaining reactors still see it.
    """

    def __init__(self, handlers: Sequence[EventHandler] = ()):
        self._handlers: List[EventHandler] = list(handlers)

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    async def dispatch(self, stored_events: Sequence[StoredEvent]) -> None:
        for stored in stored_events:
            for handler in self._handlers:
                try:
                    await handler.handle(stored)
                except Exception as e:
                    logger.exception(
                        f"{type(handler).__name__} failed on {stored.event.name} "
                        f"(event {stored.id}, aggregate {stored.aggregate_uuid}): {e}"
                    )


class InMemoryEventStore:
    """Event log held in process memory."""

    def __init__(self, dispatcher: Optional[EventDispatcher] = None):
        self.dispatcher = dispatcher
        self._events: List[StoredEvent] = []
        self._ids = itertools.count(1)

    @property
    def all_events(self) -> List[StoredEvent]:
        return list(self._events)

    async def append(self, aggregate_uuid: str, events: Sequence[Event]) -> List[StoredEvent]:
        stored = [StoredEvent(next(self._ids), aggregate_uuid, event) for event in events]
        self._events.extend(stored)
        if self.dispatcher is not None:
            await self.dispatcher.dispatch(stored)
        return stored

    async def events_for(self, aggregate_uuid: str) -> List[StoredEvent]:
        return [s for s in self._events if s.aggregate_uuid == aggregate_uuid]

    async def first_of_type(self, aggregate_uuid: str, event_name: str) -> Optional[Event]:
        for stored in self._events:
            if stored.aggregate_uuid == aggregate_uuid and stored.event.name == event_name:
                return stored.event
        return None


class SqlEventStore:
    """Event log in the ``stored_events`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: Optional[EventDispatcher] = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher

    async def append(self, aggregate_uuid: str, events: Sequence[Event]) -> List[StoredEvent]:
        records = [
            StoredEventRecord(
                aggregate_uuid=aggregate_uuid,
                event_class=event.name,
                event_properties=event.to_payload(),
            )
            for event in events
        ]
        async with self.session_factory() as db:
            db.add_all(records)
            await db.commit()
            for record in records:
                await db.refresh(record)

        stored = [self._to_stored(record) for record in records]
        if self.dispatcher is not None:
            await self.dispatcher.dispatch(stored)
        return stored

    async def events_for(self, aggregate_uuid: str) -> List[StoredEvent]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(StoredEventRecord)
                .where(StoredEventRecord.aggregate_uuid == aggregate_uuid)
                .order_by(StoredEventRecord.id)
            )
            return [self._to_stored(record) for record in result.scalars().all()]

    async def first_of_type(self, aggregate_uuid: str, event_name: str) -> Optional[Event]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(StoredEventRecord)
                .where(
                    StoredEventRecord.aggregate_uuid == aggregate_uuid,
                    StoredEventRecord.event_class == event_name,
                )
                .order_by(StoredEventRecord.id)
                .limit(1)
            )
            record = result.scalar_one_or_none()
        return self._to_stored(record).event if record else None

    @staticmethod
    def _to_stored(record: StoredEventRecord) -> StoredEvent:
        properties: Dict = dict(record.event_properties or {})
        return StoredEvent(
            id=record.id,
            aggregate_uuid=record.aggregate_uuid,
            event=event_from_payload(record.event_class, properties),
            created_at=record.created_at,
        )
