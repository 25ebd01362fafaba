"""
Module: posting_spine.selectors.reversal_selector
Responsibility: Document-level reversal tracking -- chains, original lookup
    and a display status for user interfaces.
Architecture position: Spine > Selectors.

A document counts as reversed when any of these hold:

    documents.reversal_id IS NOT NULL     (reversed through the engine)
    documents.state = 'reversed'
    another document names it in reversed_from_id  (e.g. a credit note)

A document is a reversal when its own reversed_from_id is set.

Failure modes:
    - DocumentNotFoundError from get_document_reversal_chain,
      find_original_document and get_reversal_status.  The boolean
      predicates return False for unknown ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy import func, select

from posting_spine.domain.document_state import DocumentState
from posting_spine.exceptions import DocumentNotFoundError
from posting_spine.models.document import Document
from posting_spine.models.economic_event import EconomicEvent
from posting_spine.selectors.base import BaseSelector


class ReversalDisplayStatus(str, Enum):
    ACTIVE = "active"
    REVERSED = "reversed"
    REVERSAL = "reversal"


@dataclass(frozen=True)
class DocumentChainEntry:
    document: Document
    # Originating (earliest non-reversal) event; None before posting
    event: EconomicEvent | None
    is_reversal: bool
    is_reversed: bool


@dataclass(frozen=True)
class ReversalStatus:
    is_reversed: bool
    is_reversal: bool
    reversal_count: int
    original_document_id: UUID | None
    reversal_document_ids: tuple[UUID, ...]
    reversal_event_id: UUID | None
    display_status: ReversalDisplayStatus


class ReversalSelector(BaseSelector[Document]):
    """
    Reversal lookups over documents.

    Non-goals:
        - Event- and line-level chains live in SpineSelector and
          PostingService.
    """

    def get_document_reversal_chain(self, document_id: UUID) -> list[DocumentChainEntry]:
        """``[original, *reversal documents]`` in creation order.

        Given a reversal document, the chain still starts at its original.

        Raises:
            DocumentNotFoundError: unknown document, or missing original.
        """
        document = self._require(document_id)
        original = document
        if document.reversed_from_id is not None:
            original = self._require(document.reversed_from_id)

        chain = [self._entry(original)]
        chain.extend(self._entry(r) for r in self.get_reversals_for_document(original.id))
        return chain

    def is_document_reversed(self, document_id: UUID) -> bool:
        document = self.session.get(Document, document_id)
        if document is None:
            return False
        return document.is_reversed or self.get_reversal_count(document_id) > 0

    def is_document_reversal(self, document_id: UUID) -> bool:
        document = self.session.get(Document, document_id)
        return document is not None and document.reversed_from_id is not None

    def find_original_document(self, document_id: UUID) -> Document:
        """The original for a reversal document; the document itself otherwise.

        Raises:
            DocumentNotFoundError
        """
        document = self._require(document_id)
        if document.reversed_from_id is None:
            return document
        return self._require(document.reversed_from_id)

    def get_reversals_for_document(self, document_id: UUID) -> list[Document]:
        return list(
            self.session.scalars(
                select(Document)
                .where(Document.reversed_from_id == document_id)
                .order_by(Document.created_at)
            )
        )

    def get_reversal_count(self, document_id: UUID) -> int:
        return self.session.execute(
            select(func.count(Document.id)).where(Document.reversed_from_id == document_id)
        ).scalar_one()

    def get_reversal_status(self, document_id: UUID) -> ReversalStatus:
        """Everything a UI needs to badge a document.

        Raises:
            DocumentNotFoundError
        """
        document = self._require(document_id)
        reversals = self.get_reversals_for_document(document_id)
        is_reversal = document.reversed_from_id is not None
        is_reversed = document.is_reversed or bool(reversals)

        if is_reversal:
            display = ReversalDisplayStatus.REVERSAL
        elif is_reversed:
            display = ReversalDisplayStatus.REVERSED
        else:
            display = ReversalDisplayStatus.ACTIVE

        return ReversalStatus(
            is_reversed=is_reversed,
            is_reversal=is_reversal,
            reversal_count=len(reversals),
            original_document_id=document.reversed_from_id,
            reversal_document_ids=tuple(r.id for r in reversals),
            reversal_event_id=document.reversal_id,
            display_status=display,
        )

    # =========================================================================
    # Internal
    # =========================================================================

    def _require(self, document_id: UUID) -> Document:
        document = self.session.get(Document, document_id)
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def _entry(self, document: Document) -> DocumentChainEntry:
        event = self.session.scalars(
            select(EconomicEvent)
            .where(
                EconomicEvent.document_id == document.id,
                EconomicEvent.is_reversal.is_(False),
            )
            .order_by(EconomicEvent.created_at)
            .limit(1)
        ).first()
        return DocumentChainEntry(
            document=document,
            event=event,
            is_reversal=document.reversed_from_id is not None,
            is_reversed=(
                document.reversal_id is not None
                or document.state == DocumentState.REVERSED
                or self.get_reversal_count(document.id) > 0
            ),
        )
