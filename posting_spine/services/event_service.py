"""
EventService -- the append-only economic event log.

Responsibility:
    Appends immutable economic events and answers read-only questions about
    them (by id, by document, by tenant, reversal chain).

Architecture position:
    Spine > Services.  Called by PostingSpineTransaction; collaborators may
    read through it.

Invariants enforced:
    - Append-only: this service exposes no update or delete.  The one-time
      stamping of reversal_id on an original is done by ReversalService and
      guarded by db/immutability.py.
    - is_reversal == (reversed_from_id is not None), fixed at insert.

Failure modes:
    - EventCreationFailedError: the insert did not yield a persisted row.
    - EventNotFoundError: unknown event id in get_reversal_chain /
      validate_event_immutability.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import inspect, select

from posting_spine.domain.dtos import EventInput, EventType
from posting_spine.exceptions import EventCreationFailedError, EventNotFoundError
from posting_spine.logging_config import get_logger
from posting_spine.models.economic_event import EconomicEvent
from posting_spine.services.base import BaseService

logger = get_logger("services.event")

DEFAULT_PAGE_SIZE = 100


class EventService(BaseService):
    """
    Append and read economic events.

    Guarantees:
        - create_event stamps created_at from the injected clock and returns
          a flushed, persistent row.
        - Query methods never add, flush or mutate.
    """

    def create_event(self, event_input: EventInput) -> EconomicEvent:
        """Append one economic event.

        Postconditions:
            - Row is flushed; event.is_reversal iff reversed_from_id is set.

        Raises:
            EventCreationFailedError: flush did not yield a persistent row.
        """
        event = EconomicEvent(
            tenant_id=event_input.tenant_id,
            document_id=event_input.document_id,
            event_type=EventType(event_input.event_type).value,
            description=event_input.description[:500],
            event_date=event_input.event_date,
            amount=event_input.amount,
            currency=event_input.currency,
            entity_id=event_input.entity_id,
            data=dict(event_input.data),
            context_6w1h=event_input.context.to_dict(),
            is_reversal=event_input.is_reversal,
            reversed_from_id=event_input.reversed_from_id,
            created_by=event_input.created_by,
            created_at=self.clock.now(),
        )
        self.session.add(event)
        self.session.flush()

        if event.id is None or not inspect(event).persistent:
            logger.error(
                "event_creation_failed",
                extra={
                    "document_id": str(event_input.document_id),
                    "event_type": event.event_type,
                },
            )
            raise EventCreationFailedError(str(event_input.document_id), event.event_type)

        logger.info(
            "event_created",
            extra={
                "event_id": str(event.id),
                "document_id": str(event.document_id),
                "event_type": event.event_type,
                "is_reversal": event.is_reversal,
            },
        )
        return event

    def get_by_id(self, event_id: UUID, tenant_id: UUID | None = None) -> EconomicEvent | None:
        event = self.session.get(EconomicEvent, event_id)
        if event is None or (tenant_id is not None and event.tenant_id != tenant_id):
            return None
        return event

    def get_by_document(self, document_id: UUID, tenant_id: UUID | None = None) -> list[EconomicEvent]:
        """Events for a document, newest first."""
        stmt = select(EconomicEvent).where(EconomicEvent.document_id == document_id)
        if tenant_id is not None:
            stmt = stmt.where(EconomicEvent.tenant_id == tenant_id)
        stmt = stmt.order_by(EconomicEvent.created_at.desc(), EconomicEvent.is_reversal.desc())
        return list(self.session.scalars(stmt))

    def get_by_tenant(
        self,
        tenant_id: UUID,
        event_type: EventType | str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[EconomicEvent]:
        """Events for a tenant, newest first, optionally filtered by type."""
        stmt = select(EconomicEvent).where(EconomicEvent.tenant_id == tenant_id)
        if event_type is not None:
            stmt = stmt.where(EconomicEvent.event_type == EventType(event_type).value)
        stmt = (
            stmt.order_by(EconomicEvent.created_at.desc(), EconomicEvent.is_reversal.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt))

    def get_reversal_chain(self, event_id: UUID) -> list[EconomicEvent]:
        """``[original, *reversals]`` in creation order.

        Given a reversal, resolves to its original first.

        Raises:
            EventNotFoundError: unknown event id.
        """
        event = self.session.get(EconomicEvent, event_id)
        if event is None:
            raise EventNotFoundError(str(event_id))
        original = event
        if event.reversed_from_id is not None:
            original = self.session.get(EconomicEvent, event.reversed_from_id)
            if original is None:
                raise EventNotFoundError(str(event.reversed_from_id))

        reversals = self.session.scalars(
            select(EconomicEvent)
            .where(EconomicEvent.reversed_from_id == original.id)
            .order_by(EconomicEvent.created_at)
        )
        return [original, *reversals]

    def is_event_reversed(self, event_id: UUID) -> bool:
        reversal_id = self.session.execute(
            select(EconomicEvent.reversal_id).where(EconomicEvent.id == event_id)
        ).scalar_one_or_none()
        return reversal_id is not None

    def validate_event_immutability(self, event_id: UUID) -> bool:
        """Confirm the stored event carries no pending in-session edits.

        Returns True when the loaded row matches what the database holds.
        Any attempt to flush a change is rejected by db/immutability.py.

        Raises:
            EventNotFoundError: unknown event id.
        """
        event = self.session.get(EconomicEvent, event_id)
        if event is None:
            raise EventNotFoundError(str(event_id))
        state = inspect(event)
        dirty = [
            attr.key
            for attr in state.mapper.column_attrs
            if state.attrs[attr.key].history.has_changes()
        ]
        if dirty:
            logger.warning(
                "event_pending_modification",
                extra={"event_id": str(event_id), "fields": dirty},
            )
            return False
        return True
