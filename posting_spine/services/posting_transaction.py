"""
PostingSpineTransaction -- document -> event -> postings, atomically.

Responsibility:
    The single path by which business actions become ledger entries.
    ``post_document`` locks an approved document, appends its economic event,
    writes the balanced posting batch and flips the document to ``posted`` --
    all inside one SAVEPOINT.  ``execute`` is the event + batch primitive the
    reversal engine reuses.

Architecture position:
    Spine > Services -- orchestrator over DocumentService, EventService and
    PostingService.

Invariants enforced:
    - All validation happens before the first write.
    - All-or-nothing: any failure rolls back the savepoint, leaving document
      and ledger unchanged, and the original exception propagates unchanged.
    - Concurrent posts of the same document serialize on the document row
      lock; the loser observes ``posted`` and gets AlreadyPostedError.

Failure modes:
    - DocumentNotFoundError, TenantMismatchError.
    - AlreadyPostedError: document already posted.
    - InvalidDocumentStateError: document in any other non-approved state.
    - InvalidTransitionError: approved -> posted rejected by the table.
    - Any PostingService validation error (unbalanced, empty, ...).

Audit relevance:
    Every posted document carries exactly one originating event whose 6W1H
    context names the actor, tenant, document and posting channel.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from posting_spine.config import SpineSettings
from posting_spine.domain.audit_context import build_audit_context
from posting_spine.domain.clock import Clock
from posting_spine.domain.decimal_math import parse_amount, sum_decimals
from posting_spine.domain.document_state import DocumentState, validate_transition
from posting_spine.domain.dtos import (
    EventInput,
    PostDocumentInput,
    PostingDirection,
    PostingLineInput,
)
from posting_spine.exceptions import AlreadyPostedError, InvalidDocumentStateError
from posting_spine.logging_config import LogContext, get_logger, log_rejection
from posting_spine.models.document import Document
from posting_spine.models.economic_event import EconomicEvent
from posting_spine.models.ledger_posting import LedgerPosting
from posting_spine.services.base import BaseService
from posting_spine.services.document_service import DocumentService
from posting_spine.services.event_service import EventService
from posting_spine.services.posting_service import PostingBatchResult, PostingService

logger = get_logger("services.posting_transaction")

POST_ACTION = "post"
DEFAULT_POST_METHOD = "Document POST action"


@dataclass(frozen=True)
class SpineWriteResult:
    """Event plus its batch, as written by ``execute``."""

    event: EconomicEvent
    batch: PostingBatchResult


@dataclass(frozen=True)
class PostDocumentResult:
    """Outcome of a successful post_document."""

    document: Document
    event: EconomicEvent
    postings: tuple[LedgerPosting, ...]
    is_balanced: bool
    batch_id: UUID
    total_debit: str
    total_credit: str


class PostingSpineTransaction(BaseService):
    """
    Atomic unit combining event, postings and document-state update.

    Contract:
        Runs inside the caller's transaction; each call opens its own
        SAVEPOINT so a failure never leaves partial rows behind.

    Non-goals:
        - Does NOT commit.
        - Does NOT decide which accounts a document posts to; the
          collaborator supplies the lines.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: SpineSettings | None = None,
        document_service: DocumentService | None = None,
        event_service: EventService | None = None,
        posting_service: PostingService | None = None,
    ):
        super().__init__(session, clock, settings)
        self.documents = document_service or DocumentService(session, self.clock, self.settings)
        self.events = event_service or EventService(session, self.clock, self.settings)
        self.postings = posting_service or PostingService(session, self.clock, self.settings)

    def execute(
        self,
        event_input: EventInput,
        lines: Sequence[PostingLineInput],
        posting_date: date,
        currency: str,
        created_by: UUID,
        reversed_from_ids: Sequence[UUID] | None = None,
        allow_inactive_accounts: bool = False,
    ) -> SpineWriteResult:
        """Append an event and its balanced batch in one savepoint.

        Raises:
            Any EventService / PostingService error, unchanged.
        """
        self.postings.validate_postings(
            event_input.tenant_id, lines, currency, allow_inactive_accounts
        )
        with self.session.begin_nested():
            event = self.events.create_event(event_input)
            batch = self.postings.create_postings(
                tenant_id=event_input.tenant_id,
                economic_event_id=event.id,
                postings=lines,
                posting_date=posting_date,
                currency=currency,
                created_by=created_by,
                reversed_from_ids=reversed_from_ids,
                allow_inactive_accounts=allow_inactive_accounts,
            )
        return SpineWriteResult(event=event, batch=batch)

    def post_document(self, post_input: PostDocumentInput) -> PostDocumentResult:
        """Post an approved document to the ledger.

        Preconditions:
            - Document exists, belongs to post_input.tenant_id and is
              ``approved``.
            - post_input.postings balance.

        Postconditions:
            - One new economic event, one balanced batch referencing it,
              document.state == posted with posted_at / posted_by set.

        Raises:
            DocumentNotFoundError, TenantMismatchError, AlreadyPostedError,
            InvalidDocumentStateError, InvalidTransitionError, and any
            posting validation error.
        """
        with LogContext.bind(
            tenant_id=post_input.tenant_id,
            actor_id=post_input.user_id,
            document_id=post_input.document_id,
        ):
            logger.info(
                "post_document_started",
                extra={
                    "event_type": post_input.event_type,
                    "line_count": len(post_input.postings),
                },
            )
            try:
                with self.session.begin_nested():
                    result = self._post_locked(post_input)
            except Exception as exc:
                log_rejection(logger, "post_document_failed", exc)
                raise

            with LogContext.bind(event_id=result.event.id, batch_id=result.batch_id):
                logger.info(
                    "document_posted",
                    extra={
                        "event_type": result.event.event_type,
                        "total_debit": result.total_debit,
                        "total_credit": result.total_credit,
                    },
                )
            return result

    # =========================================================================
    # Internal
    # =========================================================================

    def _post_locked(self, post_input: PostDocumentInput) -> PostDocumentResult:
        document = self.documents.load_for_update(post_input.document_id, post_input.tenant_id)

        if document.state == DocumentState.POSTED:
            raise AlreadyPostedError(str(document.id))
        if document.state != DocumentState.APPROVED:
            raise InvalidDocumentStateError(
                str(document.id), str(document.state), DocumentState.APPROVED.value
            )
        validate_transition(document.state, DocumentState.POSTED, document_id=str(document.id))

        now = self.clock.now()
        context = build_audit_context(
            user_id=post_input.user_id,
            tenant_id=post_input.tenant_id,
            document_id=document.id,
            action=POST_ACTION,
            description=post_input.description,
            timestamp=now,
            document_type=document.document_type,
            audit=post_input.audit,
            default_where=self.settings.default_where_system,
            default_how=DEFAULT_POST_METHOD,
        )
        currency = post_input.currency or self.settings.default_currency
        if post_input.amount is not None:
            amount = parse_amount(post_input.amount)
        else:
            amount = sum_decimals(
                parse_amount(line.amount)
                for line in post_input.postings
                if line.direction == PostingDirection.DEBIT
            )

        written = self.execute(
            EventInput(
                tenant_id=post_input.tenant_id,
                document_id=document.id,
                event_type=post_input.event_type,
                description=post_input.description,
                event_date=post_input.posting_date,
                created_by=post_input.user_id,
                context=context,
                amount=amount,
                currency=currency,
                entity_id=post_input.entity_id or document.entity_id,
                data=post_input.data,
            ),
            lines=post_input.postings,
            posting_date=post_input.posting_date,
            currency=currency,
            created_by=post_input.user_id,
        )

        document.posted_at = now
        document.posted_by = post_input.user_id
        self.documents.apply_transition(document, DocumentState.POSTED, post_input.user_id)

        return PostDocumentResult(
            document=document,
            event=written.event,
            postings=written.batch.postings,
            is_balanced=written.batch.is_balanced,
            batch_id=written.batch.batch_id,
            total_debit=written.batch.total_debit,
            total_credit=written.batch.total_credit,
        )
