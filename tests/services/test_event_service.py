"""
EventService tests.

Tests cover:
- Append with clock-stamped created_at and persisted 6W1H context
- is_reversal derived from reversed_from_id
- Query helpers (by id, by document, by tenant) and tenant scoping
- Event reversal chain lookup
- Pending in-session edits detected by validate_event_immutability
"""

from datetime import date
from uuid import uuid4

import pytest

from posting_spine.domain.audit_context import AuditInput, build_audit_context
from posting_spine.domain.dtos import EventInput, EventType
from posting_spine.exceptions import EventNotFoundError


@pytest.fixture
def make_event_input(create_document, tenant_id, test_actor_id, deterministic_clock):
    """Factory for EventInput rows attached to a fresh approved document."""

    def _make(
        event_type=EventType.REVENUE,
        document=None,
        reversed_from_id=None,
        tenant=None,
        audit=None,
        **kwargs,
    ):
        document = document or create_document(tenant=tenant)
        context = build_audit_context(
            user_id=test_actor_id,
            tenant_id=document.tenant_id,
            document_id=document.id,
            action="post",
            description=kwargs.get("description", "Invoice posting"),
            timestamp=deterministic_clock.now(),
            document_type=document.document_type,
            audit=audit,
        )
        return EventInput(
            tenant_id=document.tenant_id,
            document_id=document.id,
            event_type=event_type,
            description=kwargs.pop("description", "Invoice posting"),
            event_date=kwargs.pop("event_date", date(2024, 1, 15)),
            created_by=test_actor_id,
            context=context,
            amount=kwargs.pop("amount", "100.0000"),
            currency=kwargs.pop("currency", "USD"),
            reversed_from_id=reversed_from_id,
            **kwargs,
        )

    return _make


class TestCreateEvent:
    def test_append(self, event_service, make_event_input, deterministic_clock, test_actor_id):
        event = event_service.create_event(make_event_input(data={"invoice": "INV-1"}))

        assert event.id is not None
        assert event.event_type == EventType.REVENUE
        assert event.amount == "100.0000"
        assert event.currency == "USD"
        assert event.data == {"invoice": "INV-1"}
        assert event.created_at == deterministic_clock.now()
        assert event.created_by == test_actor_id
        assert event.is_reversal is False
        assert event.reversal_id is None

    def test_context_round_trips(self, event_service, make_event_input, test_actor_id):
        audit = AuditInput(user_name="Ada", why="Month-end billing", where={"system": "billing-ui"})
        event_input = make_event_input(audit=audit)

        event = event_service.create_event(event_input)

        context = event.audit_context
        assert context == event_input.context
        assert context.who.user_id == str(test_actor_id)
        assert context.who.user_name == "Ada"
        assert context.why.reason == "Month-end billing"
        assert context.where.system == "billing-ui"
        assert context.which.document_id == str(event.document_id)

    def test_reversal_flag_follows_source(self, event_service, make_event_input):
        original = event_service.create_event(make_event_input())
        reversal = event_service.create_event(
            make_event_input(document=original.document, reversed_from_id=original.id)
        )

        assert reversal.is_reversal is True
        assert reversal.reversed_from_id == original.id

    def test_long_description_truncated(self, event_service, make_event_input):
        event = event_service.create_event(make_event_input(description="x" * 600))
        assert len(event.description) == 500

    def test_logs_creation(self, event_service, make_event_input, captured_logs):
        event = event_service.create_event(make_event_input())

        created = [r for r in captured_logs() if r["message"] == "event_created"]
        assert len(created) == 1
        assert created[0]["event_id"] == str(event.id)
        assert created[0]["is_reversal"] is False


class TestQueries:
    def test_get_by_id(self, event_service, make_event_input, tenant_id, other_tenant_id):
        event = event_service.create_event(make_event_input())

        assert event_service.get_by_id(event.id) is event
        assert event_service.get_by_id(event.id, tenant_id) is event
        assert event_service.get_by_id(event.id, other_tenant_id) is None
        assert event_service.get_by_id(uuid4()) is None

    def test_get_by_document_newest_first(
        self, event_service, make_event_input, create_document, deterministic_clock
    ):
        document = create_document()
        first = event_service.create_event(make_event_input(document=document))
        deterministic_clock.advance()
        second = event_service.create_event(make_event_input(document=document))

        assert event_service.get_by_document(document.id) == [second, first]

    def test_get_by_tenant_filters(
        self, event_service, make_event_input, tenant_id, other_tenant_id, deterministic_clock
    ):
        revenue = event_service.create_event(make_event_input())
        deterministic_clock.advance()
        expense = event_service.create_event(make_event_input(event_type=EventType.EXPENSE))
        event_service.create_event(make_event_input(tenant=other_tenant_id))

        assert event_service.get_by_tenant(tenant_id) == [expense, revenue]
        assert event_service.get_by_tenant(tenant_id, event_type="revenue") == [revenue]
        assert event_service.get_by_tenant(tenant_id, limit=1, offset=1) == [revenue]

    def test_reversal_chain_from_either_end(self, event_service, make_event_input):
        original = event_service.create_event(make_event_input())
        reversal = event_service.create_event(
            make_event_input(document=original.document, reversed_from_id=original.id)
        )

        assert event_service.get_reversal_chain(original.id) == [original, reversal]
        assert event_service.get_reversal_chain(reversal.id) == [original, reversal]

    def test_reversal_chain_unknown_event(self, event_service):
        with pytest.raises(EventNotFoundError):
            event_service.get_reversal_chain(uuid4())

    def test_is_event_reversed(self, event_service, post_document, reversal_service, test_actor_id):
        event = post_document().event
        assert event_service.is_event_reversed(event.id) is False

        reversal_service.create_reversal_entry(event.id, "Duplicate", date(2024, 1, 20), test_actor_id)

        assert event_service.is_event_reversed(event.id) is True


class TestValidateEventImmutability:
    def test_clean_event(self, event_service, make_event_input):
        event = event_service.create_event(make_event_input())
        assert event_service.validate_event_immutability(event.id) is True

    def test_pending_edit_detected(self, event_service, make_event_input, session):
        event = event_service.create_event(make_event_input())
        with session.no_autoflush:
            event.amount = "999.0000"
            assert event_service.validate_event_immutability(event.id) is False
        session.expunge(event)

    def test_unknown_event(self, event_service):
        with pytest.raises(EventNotFoundError):
            event_service.validate_event_immutability(uuid4())
