"""
PostingSpineTransaction tests.

Tests cover:
- Happy path: document posted, one event, one balanced batch
- Event defaults: amount from debit total, configured currency
- 6W1H context contents for a post
- State preconditions: already posted, not yet approved, voided
- Atomicity: a failing post leaves no event, no postings and the
  document unchanged
- Structured log events
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from posting_spine.config import SpineSettings
from posting_spine.domain.audit_context import AuditInput
from posting_spine.domain.document_state import DocumentState
from posting_spine.domain.dtos import EventType, PostDocumentInput, PostingLineInput
from posting_spine.exceptions import (
    AlreadyPostedError,
    DocumentNotFoundError,
    InvalidDocumentStateError,
    TenantMismatchError,
    UnbalancedPostingsError,
)
from posting_spine.models.economic_event import EconomicEvent
from posting_spine.models.ledger_posting import LedgerPosting
from posting_spine.services.posting_transaction import PostingSpineTransaction


def _counts(session) -> tuple[int, int]:
    events = session.execute(select(func.count(EconomicEvent.id))).scalar_one()
    postings = session.execute(select(func.count(LedgerPosting.id))).scalar_one()
    return events, postings


class TestPostDocument:
    def test_happy_path(self, post_document, deterministic_clock, test_actor_id):
        result = post_document(amount="250.0000")

        assert result.is_balanced
        assert result.total_debit == result.total_credit == "250.0000"
        assert result.document.state == DocumentState.POSTED
        assert result.document.posted_at == deterministic_clock.now()
        assert result.document.posted_by == test_actor_id
        assert result.event.document_id == result.document.id
        assert result.event.is_reversal is False
        assert len(result.postings) == 2
        assert {p.economic_event_id for p in result.postings} == {result.event.id}
        assert {p.batch_id for p in result.postings} == {result.batch_id}

    def test_event_defaults(self, post_document):
        result = post_document(amount="75.5")

        assert result.event.amount == "75.5000"
        assert result.event.currency == "USD"
        assert result.event.event_type == EventType.REVENUE
        assert result.postings[0].currency == "USD"

    def test_explicit_amount_and_currency(
        self, spine_transaction, create_document, sale_lines, tenant_id, test_actor_id
    ):
        result = spine_transaction.post_document(
            PostDocumentInput(
                document_id=create_document().id,
                tenant_id=tenant_id,
                user_id=test_actor_id,
                posting_date=date(2024, 1, 15),
                event_type=EventType.REVENUE,
                description="Euro invoice with fee",
                postings=sale_lines("10"),
                currency="EUR",
                amount="12.00",
            )
        )

        assert result.event.currency == "EUR"
        assert result.event.amount == "12.0000"
        assert {p.currency for p in result.postings} == {"EUR"}

    def test_configured_default_currency(
        self, session, deterministic_clock, create_document, sale_lines, tenant_id, test_actor_id
    ):
        spine = PostingSpineTransaction(
            session, deterministic_clock, SpineSettings(default_currency="GBP")
        )
        document = create_document()

        result = spine.post_document(
            PostDocumentInput(
                document_id=document.id,
                tenant_id=tenant_id,
                user_id=test_actor_id,
                posting_date=date(2024, 1, 15),
                event_type=EventType.REVENUE,
                description="Sterling invoice",
                postings=sale_lines(),
            )
        )
        assert result.event.currency == "GBP"

    def test_multi_line_entry(self, post_document, standard_accounts):
        lines = (
            PostingLineInput.debit(standard_accounts["inventory"].id, "300.00"),
            PostingLineInput.debit(standard_accounts["expense"].id, "25.00"),
            PostingLineInput.credit(standard_accounts["ap"].id, "325.00"),
        )

        result = post_document(lines=lines, event_type=EventType.LIABILITY_INCURRED)

        assert result.total_debit == "325.0000"
        assert result.event.amount == "325.0000"
        assert [p.line_seq for p in result.postings] == [0, 1, 2]


class TestAuditContext:
    def test_default_context(self, post_document, tenant_id, test_actor_id, deterministic_clock):
        result = post_document()
        context = result.event.audit_context

        assert context.who.user_id == str(test_actor_id)
        assert context.who.role == "system"
        assert context.what.action == "post"
        assert context.what.description == "Invoice posting"
        assert context.what.document_type == "invoice"
        assert context.when.timestamp == deterministic_clock.now().isoformat()
        assert context.where.system == "posting-service"
        assert context.why.reason == "Business operation"
        assert context.which.tenant_id == str(tenant_id)
        assert context.which.document_id == str(result.document.id)
        assert context.how.method == "Document POST action"

    def test_caller_supplied_context(self, post_document):
        audit = AuditInput(
            user_name="Grace",
            role="accountant",
            where="ap-portal",
            why={"reason": "Vendor bill", "approval_ref": "APR-7"},
            how="Bulk import",
            fiscal_period="2024-01",
            related_entities=("PO-123",),
        )

        context = post_document(audit=audit).event.audit_context

        assert context.who.user_name == "Grace"
        assert context.who.role == "accountant"
        assert context.where.system == "ap-portal"
        assert context.why.reason == "Vendor bill"
        assert context.why.approval_ref == "APR-7"
        assert context.how.method == "Bulk import"
        assert context.when.fiscal_period == "2024-01"
        assert context.which.related_entities == ("PO-123",)


class TestPreconditions:
    def test_already_posted(self, post_document, session):
        first = post_document()
        before = _counts(session)

        with pytest.raises(AlreadyPostedError) as exc_info:
            post_document(document=first.document)

        assert exc_info.value.code == "ALREADY_POSTED"
        assert isinstance(exc_info.value, InvalidDocumentStateError)
        assert _counts(session) == before

    @pytest.mark.parametrize(
        "state", [DocumentState.DRAFT, DocumentState.SUBMITTED, DocumentState.VOIDED]
    )
    def test_not_approved(self, post_document, create_document, state):
        document = create_document(state=state)

        with pytest.raises(InvalidDocumentStateError) as exc_info:
            post_document(document=document)

        assert not isinstance(exc_info.value, AlreadyPostedError)
        assert exc_info.value.current_state == state.value
        assert exc_info.value.required_state == "approved"
        assert document.state == state

    def test_unknown_document(self, spine_transaction, sale_lines, tenant_id, test_actor_id):
        with pytest.raises(DocumentNotFoundError):
            spine_transaction.post_document(
                PostDocumentInput(
                    document_id=uuid4(),
                    tenant_id=tenant_id,
                    user_id=test_actor_id,
                    posting_date=date(2024, 1, 15),
                    event_type=EventType.REVENUE,
                    description="Ghost",
                    postings=sale_lines(),
                )
            )

    def test_foreign_tenant_document(self, post_document, create_document, other_tenant_id):
        document = create_document(tenant=other_tenant_id)

        with pytest.raises(TenantMismatchError):
            post_document(document=document)
        assert document.state == DocumentState.APPROVED


class TestAtomicity:
    def test_unbalanced_post_leaves_nothing(self, post_document, create_document, standard_accounts, session):
        document = create_document()
        before = _counts(session)
        lines = (
            PostingLineInput.debit(standard_accounts["ar"].id, "100.00"),
            PostingLineInput.credit(standard_accounts["revenue"].id, "99.99"),
        )

        with pytest.raises(UnbalancedPostingsError) as exc_info:
            post_document(lines=lines, document=document)

        assert exc_info.value.difference == "0.0100"
        assert _counts(session) == before
        session.refresh(document)
        assert document.state == DocumentState.APPROVED
        assert document.posted_at is None

    def test_failure_inside_batch_rolls_back_event(
        self, spine_transaction, post_document, create_document, session, monkeypatch
    ):
        document = create_document()
        before = _counts(session)

        def _explode(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(spine_transaction.postings, "create_postings", _explode)

        with pytest.raises(RuntimeError, match="disk full"):
            post_document(document=document)

        assert _counts(session) == before
        session.refresh(document)
        assert document.state == DocumentState.APPROVED

    def test_document_usable_after_failed_post(self, post_document, create_document, standard_accounts):
        document = create_document()
        bad = (
            PostingLineInput.debit(standard_accounts["ar"].id, "1"),
            PostingLineInput.credit(standard_accounts["revenue"].id, "2"),
        )
        with pytest.raises(UnbalancedPostingsError):
            post_document(lines=bad, document=document)

        result = post_document(document=document)
        assert result.document.state == DocumentState.POSTED


class TestLogging:
    def test_success_events(self, post_document, captured_logs, tenant_id):
        result = post_document()
        records = captured_logs()
        messages = [r["message"] for r in records]

        assert messages.index("post_document_started") < messages.index("document_posted")
        assert "event_created" in messages
        assert "postings_created" in messages
        posted = next(r for r in records if r["message"] == "document_posted")
        assert posted["document_id"] == str(result.document.id)
        assert posted["tenant_id"] == str(tenant_id)
        assert posted["total_debit"] == "100.0000"

    def test_failure_logged_with_code(self, post_document, captured_logs):
        first = post_document()
        with pytest.raises(AlreadyPostedError):
            post_document(document=first.document)

        failed = [r for r in captured_logs() if r["message"] == "post_document_failed"]
        assert failed[0]["error_code"] == "ALREADY_POSTED"
        assert failed[0]["level"] == "WARNING"
