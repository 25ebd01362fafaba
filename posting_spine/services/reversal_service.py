"""
ReversalService -- corrections by equal-and-opposite entries.

Responsibility:
    Reverses a posted economic event by synthesizing an offsetting batch
    (every line's direction flipped, same account and amount), appending it
    through the posting-spine primitive, and linking original <-> reversal at
    both event and line granularity.  The document-facing flow additionally
    moves the document to ``reversed``.

Architecture position:
    Spine > Services -- orchestrator over PostingSpineTransaction,
    DocumentService and EventService.

Invariants enforced:
    - At most one reversal per original event (AlreadyReversedError), and a
      reversal is never itself reversed (CannotReverseReversalError).
    - Each original line is linked to exactly the offsetting line with the
      same line_seq; the new line's reversed_from_id is fixed at insert and
      the original's reversal_id is stamped once.
    - Steps run inside one SAVEPOINT: either every row and link exists or
      none does.
    - The original event is loaded FOR UPDATE so concurrent reversals of the
      same event serialize; the loser sees reversal_id and fails.
    - Reversing a document's originating event by either flow leaves the
      document reversed. Both flows lock the document before the event.

Failure modes:
    - EventNotFoundError, AlreadyReversedError, CannotReverseReversalError,
      NoPostingsFoundError.
    - Document flow adds DocumentNotFoundError, TenantMismatchError and
      InvalidDocumentStateError (document not posted).

Audit relevance:
    The reversal event carries its own 6W1H context: who reversed, why
    (the reason), and how.  Original rows keep every financial field; only
    their reversal_id pointers are stamped.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from posting_spine.config import SpineSettings
from posting_spine.domain.audit_context import (
    AuditInput,
    build_audit_context,
    normalize_why,
)
from posting_spine.domain.clock import Clock
from posting_spine.domain.document_state import DocumentState
from posting_spine.domain.dtos import EventInput, PostingDirection, PostingLineInput
from posting_spine.exceptions import (
    AlreadyReversedError,
    CannotReverseReversalError,
    EventNotFoundError,
    InvalidDocumentStateError,
    NoPostingsFoundError,
)
from posting_spine.logging_config import LogContext, get_logger
from posting_spine.models.document import Document
from posting_spine.models.economic_event import EconomicEvent
from posting_spine.models.ledger_posting import LedgerPosting
from posting_spine.services.base import BaseService
from posting_spine.services.posting_transaction import PostingSpineTransaction

logger = get_logger("services.reversal")

REVERSAL_PREFIX = "REVERSAL: "
REVERSAL_WHERE = "reversal-service"
REVERSAL_HOW = "Reversal entry creation"


@dataclass(frozen=True)
class ReversalResult:
    """Outcome of a successful reversal."""

    event: EconomicEvent
    postings: tuple[LedgerPosting, ...]
    original_event: EconomicEvent
    original_postings: tuple[LedgerPosting, ...]
    is_balanced: bool
    batch_id: UUID
    document: Document | None = None


@dataclass(frozen=True)
class ReversalEligibility:
    """Pre-flight answer for a reversal request; never raises."""

    is_eligible: bool
    reason: str | None = None


class ReversalService(BaseService):
    """
    Create reversal entries for events and documents.

    Contract:
        Accepts an original event (or posted document) and a reason; writes
        the offsetting event and batch and the bidirectional links atomically.

    Non-goals:
        - Does NOT commit.
        - Does NOT support partial (line-subset) reversals.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: SpineSettings | None = None,
        spine: PostingSpineTransaction | None = None,
    ):
        super().__init__(session, clock, settings)
        self.spine = spine or PostingSpineTransaction(session, self.clock, self.settings)

    def create_reversal_entry(
        self,
        original_event_id: UUID,
        reason: str,
        reversal_date: date,
        user_id: UUID,
        tenant_id: UUID | None = None,
        context: AuditInput | None = None,
    ) -> ReversalResult:
        """Reverse one economic event.

        Preconditions:
            - Event exists, is not a reversal and has not been reversed.
            - Event has at least one posting.
            - Event is not the posting of a reversal document.

        Postconditions:
            - New reversal event with is_reversal=True and
              reversed_from_id=original_event_id.
            - New balanced batch, one line per original line, direction
              flipped; line-level links both ways.
            - original_event.reversal_id == new event id.
            - If the event is the originating posting of a posted document,
              that document is reversed in the same unit and returned on
              the result.

        Raises:
            EventNotFoundError, CannotReverseReversalError,
            AlreadyReversedError, NoPostingsFoundError.
        """
        with LogContext.bind(event_id=original_event_id, actor_id=user_id, tenant_id=tenant_id):
            with self.session.begin_nested():
                document = self._lock_owning_document(original_event_id)
                original = self._load_event_for_update(original_event_id, tenant_id)

                closes_document = (
                    document is not None
                    and self._originating_event_id(document.id) == original.id
                )
                if closes_document and document.reversed_from_id is not None:
                    raise CannotReverseReversalError(str(document.id), kind="document")

                result = self._reverse_event(original, reason, reversal_date, user_id, context)

                if closes_document and document.state == DocumentState.POSTED:
                    self._mark_document_reversed(document, result.event.id, user_id)
                    result = replace(result, document=document)

            if result.document is not None:
                with LogContext.bind_document(document, user_id):
                    logger.info(
                        "document_reversed",
                        extra={
                            "reversal_event_id": str(result.event.id),
                            "original_event_id": str(original.id),
                            "reason": reason,
                        },
                    )
            return result

    def create_document_reversal(
        self,
        document_id: UUID,
        reason: str,
        reversal_date: date,
        user_id: UUID,
        tenant_id: UUID | None = None,
        context: AuditInput | None = None,
    ) -> ReversalResult:
        """Reverse a posted document and its originating event.

        Postconditions:
            - Everything create_reversal_entry guarantees, plus
              document.state == reversed and document.reversal_id == the
              reversal event id.

        Raises:
            DocumentNotFoundError, TenantMismatchError,
            InvalidDocumentStateError (not posted), AlreadyReversedError,
            CannotReverseReversalError, EventNotFoundError,
            NoPostingsFoundError.
        """
        with LogContext.bind(document_id=document_id, actor_id=user_id, tenant_id=tenant_id):
            with self.session.begin_nested():
                document = self.spine.documents.load_for_update(document_id, tenant_id)

                if document.reversed_from_id is not None:
                    raise CannotReverseReversalError(str(document_id), kind="document")
                if document.reversal_id is not None or document.state == DocumentState.REVERSED:
                    raise AlreadyReversedError(
                        str(document_id),
                        str(document.reversal_id) if document.reversal_id else None,
                        kind="document",
                    )
                if document.state != DocumentState.POSTED:
                    raise InvalidDocumentStateError(
                        str(document_id), str(document.state), DocumentState.POSTED.value
                    )

                original_event_id = self._originating_event_id(document.id)
                if original_event_id is None:
                    raise EventNotFoundError(f"originating event of document {document_id}")

                original = self._load_event_for_update(original_event_id, document.tenant_id)
                result = self._reverse_event(original, reason, reversal_date, user_id, context)
                self._mark_document_reversed(document, result.event.id, user_id)

            logger.info(
                "document_reversed",
                extra={
                    "reversal_event_id": str(result.event.id),
                    "original_event_id": str(original.id),
                    "reason": reason,
                },
            )
            return replace(result, document=document)

    def validate_reversal_eligibility(self, event_id: UUID) -> ReversalEligibility:
        """Check whether an event could be reversed, without raising."""
        event = self.session.get(EconomicEvent, event_id)
        if event is None:
            return ReversalEligibility(False, "Event not found")
        if event.is_reversal:
            return ReversalEligibility(False, "Cannot reverse a reversal entry")
        if event.reversal_id is not None:
            return ReversalEligibility(False, "Event is already reversed")
        return ReversalEligibility(True)

    def is_event_reversed(self, event_id: UUID) -> bool:
        return self.spine.events.is_event_reversed(event_id)

    def find_original_event(self, event_id: UUID) -> EconomicEvent | None:
        """The event a reversal offsets; None for non-reversals or unknown ids."""
        event = self.session.get(EconomicEvent, event_id)
        if event is None or event.reversed_from_id is None:
            return None
        return self.session.get(EconomicEvent, event.reversed_from_id)

    # =========================================================================
    # Internal Implementation
    # =========================================================================

    def _lock_owning_document(self, event_id: UUID) -> Document | None:
        """Lock the event's document first so both flows take locks in one order."""
        document_id = self.session.execute(
            select(EconomicEvent.document_id).where(EconomicEvent.id == event_id)
        ).scalar_one_or_none()
        if document_id is None:
            return None
        return self.session.execute(
            select(Document).where(Document.id == document_id).with_for_update()
        ).scalar_one_or_none()

    def _originating_event_id(self, document_id: UUID) -> UUID | None:
        return self.session.execute(
            select(EconomicEvent.id)
            .where(
                EconomicEvent.document_id == document_id,
                EconomicEvent.is_reversal.is_(False),
            )
            .order_by(EconomicEvent.created_at)
            .limit(1)
        ).scalar_one_or_none()

    def _mark_document_reversed(
        self, document: Document, reversal_event_id: UUID, user_id: UUID
    ) -> None:
        document.reversal_id = reversal_event_id
        self.spine.documents.apply_transition(document, DocumentState.REVERSED, user_id)

    def _load_event_for_update(
        self, event_id: UUID, tenant_id: UUID | None
    ) -> EconomicEvent:
        """Load the original under a row lock and check reversal preconditions."""
        stmt = select(EconomicEvent).where(EconomicEvent.id == event_id).with_for_update()
        if tenant_id is not None:
            stmt = stmt.where(EconomicEvent.tenant_id == tenant_id)
        original = self.session.execute(stmt).scalar_one_or_none()

        if original is None:
            raise EventNotFoundError(str(event_id))
        if original.is_reversal:
            raise CannotReverseReversalError(str(event_id))
        if original.reversal_id is not None:
            raise AlreadyReversedError(str(event_id), str(original.reversal_id))
        return original

    def _reverse_event(
        self,
        original: EconomicEvent,
        reason: str,
        reversal_date: date,
        user_id: UUID,
        context: AuditInput | None,
    ) -> ReversalResult:
        """Write the offsetting event and batch and stamp the links.

        Steps:
            1. Load original lines in line_seq order.
            2. Build the reversal audit context.
            3. Flip every line; remember which original each offsets.
            4. Append event + batch via the spine primitive.
            5. Stamp original_event.reversal_id.
            6. Stamp each original line's reversal_id by line_seq.
        """
        original_postings = self.spine.postings.get_by_event(original.id)
        if not original_postings:
            raise NoPostingsFoundError(str(original.id))

        document_type = self.session.execute(
            select(Document.document_type).where(Document.id == original.document_id)
        ).scalar_one_or_none()

        audit = context or AuditInput()
        why = replace(normalize_why(audit.why), reason=reason)
        audit = replace(audit, why=why)
        reversal_context = build_audit_context(
            user_id=user_id,
            tenant_id=original.tenant_id,
            document_id=original.document_id,
            action=f"Reversal of {original.event_type}",
            description=f"{REVERSAL_PREFIX}{original.description}",
            timestamp=self.clock.now(),
            document_type=document_type,
            audit=audit,
            default_where=REVERSAL_WHERE,
            default_how=REVERSAL_HOW,
        )

        lines = [
            PostingLineInput(
                account_id=posting.account_id,
                direction=PostingDirection(posting.direction).flipped(),
                amount=posting.amount,
                description=f"{REVERSAL_PREFIX}{posting.description or original.description}",
                metadata={
                    **(posting.posting_metadata or {}),
                    "reversal_of": str(posting.id),
                    "reversal_reason": reason,
                },
            )
            for posting in original_postings
        ]

        written = self.spine.execute(
            EventInput(
                tenant_id=original.tenant_id,
                document_id=original.document_id,
                event_type=original.event_type,
                description=f"{REVERSAL_PREFIX}{original.description}",
                event_date=reversal_date,
                created_by=user_id,
                context=reversal_context,
                amount=original.amount,
                currency=original.currency,
                entity_id=original.entity_id,
                data={
                    **(original.data or {}),
                    "reversal_reason": reason,
                    "original_event_id": str(original.id),
                },
                reversed_from_id=original.id,
            ),
            lines=lines,
            posting_date=reversal_date,
            currency=original_postings[0].currency,
            created_by=user_id,
            reversed_from_ids=[p.id for p in original_postings],
            allow_inactive_accounts=True,
        )
        new_event = written.event
        new_postings = written.batch.postings

        original.reversal_id = new_event.id
        by_seq = {p.line_seq: p for p in new_postings}
        for posting in original_postings:
            posting.reversal_id = by_seq[posting.line_seq].id
        self.session.flush()

        with LogContext.bind(batch_id=written.batch.batch_id):
            logger.info(
                "reversal_completed",
                extra={
                    "original_event_id": str(original.id),
                    "reversal_event_id": str(new_event.id),
                    "line_count": len(new_postings),
                    "reason": reason,
                },
            )
        return ReversalResult(
            event=new_event,
            postings=new_postings,
            original_event=original,
            original_postings=tuple(original_postings),
            is_balanced=written.batch.is_balanced,
            batch_id=written.batch.batch_id,
        )
