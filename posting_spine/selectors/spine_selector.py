"""
Module: posting_spine.selectors.spine_selector
Responsibility: Read-only views across the spine -- postings of a document
    with their event context, event history with per-event totals, and the
    event-level reversal chain with postings.
Architecture position: Spine > Selectors.

Invariants enforced:
    - Per-event totals are recomputed from stored postings, never cached.
    - Reversal chains always start at the original, whichever end the caller
      passes in.

Failure modes:
    - EventNotFoundError from get_reversal_chain.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import select

from posting_spine.domain.decimal_math import sum_decimals
from posting_spine.domain.dtos import EventType, PostingDirection
from posting_spine.exceptions import EventNotFoundError
from posting_spine.models.document import Document
from posting_spine.models.economic_event import EconomicEvent
from posting_spine.models.ledger_posting import LedgerPosting
from posting_spine.selectors.base import BaseSelector


@dataclass(frozen=True)
class PostingWithContext:
    posting: LedgerPosting
    event: EconomicEvent
    document: Document


@dataclass(frozen=True)
class EventHistoryEntry:
    event: EconomicEvent
    posting_count: int
    total_debit: str
    total_credit: str
    document: Document | None

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit


@dataclass(frozen=True)
class EventWithPostings:
    event: EconomicEvent
    postings: tuple[LedgerPosting, ...]


@dataclass(frozen=True)
class EventReversalChain:
    original: EventWithPostings
    reversals: tuple[EventWithPostings, ...]


class SpineSelector(BaseSelector[EconomicEvent]):
    """Document, event and posting views for reporting and audit."""

    def get_postings_by_document(
        self,
        document_id: UUID,
        tenant_id: UUID | None = None,
    ) -> list[PostingWithContext]:
        """Every posting of every event of a document.

        Events newest first (reversal before its original when they share a
        timestamp); lines in line_seq order within each event.  Unknown or
        foreign-tenant documents yield an empty list.
        """
        document = self.session.get(Document, document_id)
        if document is None or (tenant_id is not None and document.tenant_id != tenant_id):
            return []

        stmt = (
            select(LedgerPosting, EconomicEvent)
            .join(EconomicEvent, LedgerPosting.economic_event_id == EconomicEvent.id)
            .where(EconomicEvent.document_id == document_id)
            .order_by(
                EconomicEvent.created_at.desc(),
                EconomicEvent.is_reversal.desc(),
                LedgerPosting.line_seq,
            )
        )
        return [
            PostingWithContext(posting=posting, event=event, document=document)
            for posting, event in self.session.execute(stmt)
        ]

    def get_event_history(
        self,
        tenant_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
        event_type: EventType | str | None = None,
        document_id: UUID | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[EventHistoryEntry]:
        """Events of a tenant with posting counts and debit/credit totals.

        Ordered by event_date descending, newest insert first within a date.
        """
        stmt = select(EconomicEvent).where(EconomicEvent.tenant_id == tenant_id)
        if start_date is not None:
            stmt = stmt.where(EconomicEvent.event_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(EconomicEvent.event_date <= end_date)
        if event_type is not None:
            stmt = stmt.where(EconomicEvent.event_type == EventType(event_type).value)
        if document_id is not None:
            stmt = stmt.where(EconomicEvent.document_id == document_id)
        stmt = stmt.order_by(
            EconomicEvent.event_date.desc(),
            EconomicEvent.created_at.desc(),
            EconomicEvent.is_reversal.desc(),
        ).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        events = list(self.session.scalars(stmt))
        if not events:
            return []

        lines: dict[UUID, dict[str, list[str]]] = defaultdict(lambda: defaultdict(list))
        posting_rows = self.session.execute(
            select(
                LedgerPosting.economic_event_id,
                LedgerPosting.direction,
                LedgerPosting.amount,
            ).where(LedgerPosting.economic_event_id.in_([e.id for e in events]))
        )
        for event_id, direction, amount in posting_rows:
            lines[event_id][direction].append(amount)

        documents = {
            d.id: d
            for d in self.session.scalars(
                select(Document).where(Document.id.in_({e.document_id for e in events}))
            )
        }

        history = []
        for event in events:
            by_direction = lines.get(event.id, {})
            debits = by_direction.get(PostingDirection.DEBIT.value, [])
            credits = by_direction.get(PostingDirection.CREDIT.value, [])
            history.append(
                EventHistoryEntry(
                    event=event,
                    posting_count=len(debits) + len(credits),
                    total_debit=sum_decimals(debits),
                    total_credit=sum_decimals(credits),
                    document=documents.get(event.document_id),
                )
            )
        return history

    def get_reversal_chain(self, event_id: UUID) -> EventReversalChain:
        """The original event and its reversals, each with its postings.

        Raises:
            EventNotFoundError: unknown event id, or a reversal whose original
                is missing.
        """
        event = self.session.get(EconomicEvent, event_id)
        if event is None:
            raise EventNotFoundError(str(event_id))

        original = event
        if event.reversed_from_id is not None:
            original = self.session.get(EconomicEvent, event.reversed_from_id)
            if original is None:
                raise EventNotFoundError(str(event.reversed_from_id))

        reversals = list(
            self.session.scalars(
                select(EconomicEvent)
                .where(
                    EconomicEvent.reversed_from_id == original.id,
                    EconomicEvent.is_reversal.is_(True),
                )
                .order_by(EconomicEvent.created_at)
            )
        )
        return EventReversalChain(
            original=self._with_postings(original),
            reversals=tuple(self._with_postings(r) for r in reversals),
        )

    def _with_postings(self, event: EconomicEvent) -> EventWithPostings:
        postings = self.session.scalars(
            select(LedgerPosting)
            .where(LedgerPosting.economic_event_id == event.id)
            .order_by(LedgerPosting.line_seq)
        )
        return EventWithPostings(event=event, postings=tuple(postings))
