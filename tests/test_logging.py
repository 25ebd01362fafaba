"""
Structured log records written by the posting spine.

Tests cover:
- Posting scope (tenant, actor, document, event, batch) on records from
  real posting, reversal and transition calls
- Rejections logged with the error's code and structured attributes
- Scope released once an engine call returns
- Canonical amounts and settings-driven log level
"""

import logging
from datetime import date
from decimal import Decimal

import pytest

from posting_spine.config import SpineSettings
from posting_spine.domain.document_state import DocumentState
from posting_spine.domain.dtos import PostingLineInput
from posting_spine.exceptions import (
    EngineOnlyTransitionError,
    ImmutabilityViolationError,
    InvalidTransitionError,
    UnbalancedPostingsError,
)
from posting_spine.logging_config import (
    LogContext,
    configure_logging,
    get_logger,
    reset_logging,
)

REVERSAL_DATE = date(2024, 1, 20)


def _one(records, message):
    matches = [r for r in records if r["message"] == message]
    assert len(matches) == 1, f"expected one {message} record, got {len(matches)}"
    return matches[0]


class TestPostingRecords:
    def test_document_posted_carries_full_scope(
        self, post_document, captured_logs, tenant_id, test_actor_id
    ):
        result = post_document()

        posted = _one(captured_logs(), "document_posted")
        assert posted["tenant_id"] == str(tenant_id)
        assert posted["actor_id"] == str(test_actor_id)
        assert posted["document_id"] == str(result.document.id)
        assert posted["event_id"] == str(result.event.id)
        assert posted["batch_id"] == str(result.batch_id)
        assert posted["event_type"] == "revenue"
        assert posted["total_debit"] == posted["total_credit"] == "100.0000"
        assert posted["logger"] == "posting_spine.services.posting_transaction"

    def test_postings_created_bound_to_batch(self, post_document, captured_logs, tenant_id):
        result = post_document()

        created = _one(captured_logs(), "postings_created")
        assert created["batch_id"] == str(result.batch_id)
        assert created["event_id"] == str(result.event.id)
        assert created["document_id"] == str(result.document.id)
        assert created["tenant_id"] == str(tenant_id)
        assert created["line_count"] == 2

    def test_event_created_names_new_event(self, post_document, captured_logs):
        result = post_document()

        created = _one(captured_logs(), "event_created")
        assert created["event_id"] == str(result.event.id)
        assert created["document_id"] == str(result.document.id)
        assert created["is_reversal"] is False

    def test_scope_released_after_posting(self, post_document):
        post_document()
        assert LogContext.get_all() == {}

    def test_unbalanced_lines_rejected_with_difference(
        self, post_document, create_document, standard_accounts, captured_logs
    ):
        document = create_document()
        lines = (
            PostingLineInput.debit(standard_accounts["ar"].id, "100.00"),
            PostingLineInput.credit(standard_accounts["revenue"].id, "99.99"),
        )

        with pytest.raises(UnbalancedPostingsError):
            post_document(lines=lines, document=document)

        records = captured_logs()
        unbalanced = _one(records, "postings_unbalanced")
        assert unbalanced["level"] == "WARNING"
        assert unbalanced["document_id"] == str(document.id)
        assert unbalanced["error_code"] == "UNBALANCED_POSTINGS"
        assert unbalanced["error_total_debit"] == "100.0000"
        assert unbalanced["error_total_credit"] == "99.9900"
        assert unbalanced["error_difference"] == "0.0100"

        failed = _one(records, "post_document_failed")
        assert failed["error_code"] == "UNBALANCED_POSTINGS"
        assert failed["document_id"] == str(document.id)
        assert "traceback" not in failed
        assert not any(r["message"] == "document_posted" for r in records)


class TestReversalRecords:
    def test_document_reversal(self, post_document, reversal_service, test_actor_id, captured_logs):
        posted = post_document()

        result = reversal_service.create_document_reversal(
            posted.document.id, "Cancelled order", REVERSAL_DATE, test_actor_id
        )

        records = captured_logs()
        completed = _one(records, "reversal_completed")
        assert completed["batch_id"] == str(result.batch_id)
        assert completed["document_id"] == str(posted.document.id)
        assert completed["original_event_id"] == str(posted.event.id)
        assert completed["reversal_event_id"] == str(result.event.id)
        assert completed["reason"] == "Cancelled order"

        reversed_record = _one(records, "document_reversed")
        assert reversed_record["document_id"] == str(posted.document.id)
        assert reversed_record["actor_id"] == str(test_actor_id)
        assert reversed_record["reversal_event_id"] == str(result.event.id)

    def test_entry_reversal_binds_owning_document(
        self, post_document, reversal_service, test_actor_id, captured_logs, tenant_id
    ):
        posted = post_document()

        result = reversal_service.create_reversal_entry(
            posted.event.id, "Duplicate", REVERSAL_DATE, test_actor_id
        )

        reversed_record = _one(captured_logs(), "document_reversed")
        assert reversed_record["document_id"] == str(posted.document.id)
        assert reversed_record["tenant_id"] == str(tenant_id)
        assert reversed_record["event_id"] == str(posted.event.id)
        assert reversed_record["reversal_event_id"] == str(result.event.id)

    def test_reversal_event_created_record(self, post_document, reversal_service, test_actor_id, captured_logs):
        posted = post_document()

        result = reversal_service.create_reversal_entry(
            posted.event.id, "Duplicate", REVERSAL_DATE, test_actor_id
        )

        created = [r for r in captured_logs() if r["message"] == "event_created"]
        reversal = next(r for r in created if r["is_reversal"])
        assert reversal["event_id"] == str(result.event.id)


class TestTransitionRecords:
    def test_engine_only_rejection(self, document_service, create_document, test_actor_id, tenant_id, captured_logs):
        document = create_document(state=DocumentState.APPROVED)

        with pytest.raises(EngineOnlyTransitionError):
            document_service.transition_document_state(document.id, DocumentState.POSTED, test_actor_id)

        rejected = _one(captured_logs(), "transition_rejected")
        assert rejected["level"] == "WARNING"
        assert rejected["reason"] == "engine_only_state"
        assert rejected["error_code"] == "ENGINE_ONLY_TRANSITION"
        assert rejected["error_operation"] == "post_document"
        assert rejected["error_current_state"] == "approved"
        assert rejected["document_id"] == str(document.id)
        assert rejected["tenant_id"] == str(tenant_id)
        assert rejected["actor_id"] == str(test_actor_id)

    def test_table_rejection_carries_allowed_targets(
        self, document_service, create_document, test_actor_id, captured_logs
    ):
        document = create_document(state=DocumentState.DRAFT)
        with pytest.raises(InvalidTransitionError):
            document_service.transition_document_state(document.id, DocumentState.APPROVED, test_actor_id)

        rejected = _one(captured_logs(), "transition_rejected")
        assert rejected["error_code"] == "INVALID_TRANSITION"
        assert rejected["error_target_state"] == "approved"
        assert "submitted" in rejected["error_allowed"]

    def test_transition_record(self, document_service, create_document, test_actor_id, captured_logs):
        document = create_document(state=DocumentState.DRAFT)

        document_service.transition_document_state(document.id, DocumentState.SUBMITTED, test_actor_id)

        transitioned = _one(captured_logs(), "document_transitioned")
        assert transitioned["from_state"] == "draft"
        assert transitioned["to_state"] == "submitted"
        assert transitioned["actor_id"] == str(test_actor_id)


class TestImmutabilityRecords:
    def test_violation_names_row(self, post_document, session, captured_logs):
        event = post_document().event
        event_id = str(event.id)

        with pytest.raises(ImmutabilityViolationError):
            with session.begin_nested():
                event.amount = "5.0000"
                session.flush()

        violation = _one(captured_logs(), "immutability_violation")
        assert violation["level"] == "ERROR"
        assert violation["entity_type"] == "EconomicEvent"
        assert violation["entity_id"] == event_id


class TestOutput:
    @pytest.fixture
    def fresh_logging(self):
        reset_logging()
        yield
        reset_logging()
        configure_logging(level=logging.DEBUG)

    def test_decimal_amount_rendered_canonical(self, captured_logs):
        get_logger("services.posting").info("amount_checked", extra={"amount": Decimal("12.5")})

        assert _one(captured_logs(), "amount_checked")["amount"] == "12.5000"

    def test_level_from_settings(self, fresh_logging):
        configure_logging(settings=SpineSettings(log_level="warning"), handler=logging.NullHandler())

        assert logging.getLogger("posting_spine").level == logging.WARNING

    def test_unknown_scope_field_rejected(self):
        with pytest.raises(TypeError):
            with LogContext.bind(trace_id="t-1"):
                pass
