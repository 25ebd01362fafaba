"""
SpineService -- single entry point wiring the spine's services and selectors.

Responsibility:
    Creates every spine service and selector exactly once over one Session
    and Clock, and exposes the operations collaborators call: post, transition,
    reverse, and the balance and history queries.

Architecture position:
    Spine > Services -- top of the service layer; the only place services are
    composed.  No service constructs a sibling on its own when built here.

Invariants enforced:
    - Single-instance lifecycle: all collaborators share one Session, Clock
      and SpineSettings.
    - Does NOT commit; the caller owns the transaction.

Usage:
    with database.session_scope() as session:
        spine = SpineService(session, settings=settings)
        result = spine.post_document(post_input)
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from posting_spine.config import SpineSettings
from posting_spine.domain.audit_context import AuditInput
from posting_spine.domain.clock import Clock, SystemClock
from posting_spine.domain.document_state import DocumentState
from posting_spine.domain.dtos import EventType, PostDocumentInput
from posting_spine.models.document import Document
from posting_spine.selectors.ledger_selector import (
    AccountLedger,
    BalancedBooksResult,
    BalanceSheet,
    CashFlowStatement,
    IncomeStatement,
    LedgerSelector,
    TrialBalance,
)
from posting_spine.selectors.reversal_selector import (
    DocumentChainEntry,
    ReversalSelector,
    ReversalStatus,
)
from posting_spine.selectors.spine_selector import (
    EventHistoryEntry,
    EventReversalChain,
    PostingWithContext,
    SpineSelector,
)
from posting_spine.services.document_service import DocumentService
from posting_spine.services.event_service import EventService
from posting_spine.services.posting_service import PostingService
from posting_spine.services.posting_transaction import (
    PostDocumentResult,
    PostingSpineTransaction,
)
from posting_spine.services.reversal_service import ReversalResult, ReversalService


class SpineService:
    """Facade over the posting spine.

    Contract:
        Receives a Session and optional Clock / SpineSettings; constructs
        each service once, in dependency order, and exposes them as public
        attributes alongside the delegating operations below.

    Non-goals:
        - Does NOT manage transaction boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: SpineSettings | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.settings = settings or SpineSettings()

        self.documents = DocumentService(session, self.clock, self.settings)
        self.events = EventService(session, self.clock, self.settings)
        self.postings = PostingService(session, self.clock, self.settings)
        self.transaction = PostingSpineTransaction(
            session,
            self.clock,
            self.settings,
            document_service=self.documents,
            event_service=self.events,
            posting_service=self.postings,
        )
        self.reversals = ReversalService(
            session, self.clock, self.settings, spine=self.transaction
        )

        self.ledger = LedgerSelector(session)
        self.spine_queries = SpineSelector(session)
        self.reversal_queries = ReversalSelector(session)

    # -- writes ---------------------------------------------------------------

    def post_document(self, post_input: PostDocumentInput) -> PostDocumentResult:
        return self.transaction.post_document(post_input)

    def transition_document_state(
        self,
        document_id: UUID,
        target_state: DocumentState | str,
        actor_id: UUID | None = None,
        tenant_id: UUID | None = None,
    ) -> Document:
        return self.documents.transition_document_state(
            document_id, target_state, actor_id, tenant_id
        )

    def get_allowed_transitions(self, state: DocumentState | str) -> tuple[DocumentState, ...]:
        return self.documents.get_allowed_transitions(state)

    def create_reversal_entry(
        self,
        original_event_id: UUID,
        reason: str,
        reversal_date: date,
        user_id: UUID,
        tenant_id: UUID | None = None,
        context: AuditInput | None = None,
    ) -> ReversalResult:
        return self.reversals.create_reversal_entry(
            original_event_id, reason, reversal_date, user_id, tenant_id, context
        )

    def create_document_reversal(
        self,
        document_id: UUID,
        reason: str,
        reversal_date: date,
        user_id: UUID,
        tenant_id: UUID | None = None,
        context: AuditInput | None = None,
    ) -> ReversalResult:
        return self.reversals.create_document_reversal(
            document_id, reason, reversal_date, user_id, tenant_id, context
        )

    # -- queries --------------------------------------------------------------

    def get_postings_by_document(
        self, document_id: UUID, tenant_id: UUID | None = None
    ) -> list[PostingWithContext]:
        return self.spine_queries.get_postings_by_document(document_id, tenant_id)

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
        return self.spine_queries.get_event_history(
            tenant_id, start_date, end_date, event_type, document_id, limit, offset
        )

    def get_reversal_chain(self, event_id: UUID) -> EventReversalChain:
        return self.spine_queries.get_reversal_chain(event_id)

    def get_document_reversal_chain(self, document_id: UUID) -> list[DocumentChainEntry]:
        return self.reversal_queries.get_document_reversal_chain(document_id)

    def get_reversal_status(self, document_id: UUID) -> ReversalStatus:
        return self.reversal_queries.get_reversal_status(document_id)

    def verify_balanced_books(
        self,
        tenant_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> BalancedBooksResult:
        return self.ledger.verify_balanced_books(tenant_id, start_date, end_date)

    def get_trial_balance(
        self,
        tenant_id: UUID,
        as_of_date: date | None = None,
        start_date: date | None = None,
    ) -> TrialBalance:
        return self.ledger.get_trial_balance(tenant_id, as_of_date, start_date)

    def get_balance_sheet(self, tenant_id: UUID, as_of_date: date | None = None) -> BalanceSheet:
        return self.ledger.get_balance_sheet(tenant_id, as_of_date)

    def get_income_statement(
        self,
        tenant_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> IncomeStatement:
        return self.ledger.get_income_statement(tenant_id, start_date, end_date)

    def get_cash_flow_statement(
        self,
        tenant_id: UUID,
        start_date: date,
        end_date: date,
        cash_account_ids: tuple[UUID, ...] | None = None,
    ) -> CashFlowStatement:
        return self.ledger.get_cash_flow_statement(tenant_id, start_date, end_date, cash_account_ids)

    def get_account_ledger(
        self,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> AccountLedger:
        return self.ledger.get_account_ledger(account_id, start_date, end_date, limit, offset)
