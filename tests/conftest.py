"""
Pytest fixtures for the posting spine test suite.

Provides:
- One in-memory SQLite Database per test session (tables created once)
- A per-test Session joined to an outer transaction that is rolled back at
  teardown, so every test starts from an empty ledger
- Deterministic clock, tenant/actor ids, a standard chart of accounts
- Factories for documents at any lifecycle state and for posted documents
- Structured-log capture

Environment Variables:
- POSTING_SPINE_TEST_DATABASE_URL: run the suite against another database
  (e.g. PostgreSQL).  Defaults to in-memory SQLite.
"""

import json
import logging
import os
from datetime import date
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from posting_spine.config import SpineSettings
from posting_spine.db.engine import Database
from posting_spine.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from posting_spine.domain.clock import DeterministicClock
from posting_spine.domain.document_state import DocumentState
from posting_spine.domain.dtos import (
    DocumentType,
    EventType,
    PostDocumentInput,
    PostingLineInput,
)
from posting_spine.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from posting_spine.models.account import Account, AccountType
from posting_spine.services.document_service import DocumentService
from posting_spine.services.event_service import EventService
from posting_spine.services.posting_service import PostingService
from posting_spine.services.posting_transaction import PostingSpineTransaction
from posting_spine.services.reversal_service import ReversalService
from posting_spine.services.spine_service import SpineService

TEST_TENANT_ID = uuid4()
OTHER_TENANT_ID = uuid4()
TEST_ACTOR_ID = uuid4()

POSTING_DATE = date(2024, 1, 15)

DEFAULT_TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture posting_spine logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, post_document):
            post_document()
            logs = captured_logs()
            assert any(r["message"] == "document_posted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("posting_spine")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("POSTING_SPINE_TEST_DATABASE_URL", DEFAULT_TEST_DATABASE_URL)


@pytest.fixture(scope="session")
def database() -> Generator[Database, None, None]:
    """Single Database for the whole run; tables created once."""
    db = Database.from_url(get_database_url())
    db.drop_tables()
    db.create_tables()
    register_immutability_listeners()
    yield db
    unregister_immutability_listeners()
    db.drop_tables()
    db.dispose()


@pytest.fixture
def session(database: Database) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Uses the SQLAlchemy 2.0 join-transaction pattern:
    - Opens a connection with an outer transaction
    - The session *joins* it; session.commit() only releases a savepoint
    - At teardown the outer transaction is rolled back, undoing every write
    """
    conn = database.engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Identity, clock and settings
# =============================================================================


@pytest.fixture
def tenant_id() -> UUID:
    return TEST_TENANT_ID


@pytest.fixture
def other_tenant_id() -> UUID:
    return OTHER_TENANT_ID


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def settings() -> SpineSettings:
    return SpineSettings()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def document_service(session, deterministic_clock, settings):
    return DocumentService(session, deterministic_clock, settings)


@pytest.fixture
def event_service(session, deterministic_clock, settings):
    return EventService(session, deterministic_clock, settings)


@pytest.fixture
def posting_service(session, deterministic_clock, settings):
    return PostingService(session, deterministic_clock, settings)


@pytest.fixture
def spine_transaction(session, deterministic_clock, settings, document_service, event_service, posting_service):
    return PostingSpineTransaction(
        session,
        deterministic_clock,
        settings,
        document_service=document_service,
        event_service=event_service,
        posting_service=posting_service,
    )


@pytest.fixture
def reversal_service(session, deterministic_clock, settings, spine_transaction):
    return ReversalService(session, deterministic_clock, settings, spine=spine_transaction)


@pytest.fixture
def spine(session, deterministic_clock, settings):
    return SpineService(session, deterministic_clock, settings)


# =============================================================================
# Data factories
# =============================================================================


@pytest.fixture
def create_account(session: Session, tenant_id: UUID, test_actor_id: UUID):
    """Factory fixture to create test accounts."""

    def _create_account(
        code: str,
        name: str,
        account_type: AccountType = AccountType.ASSET,
        is_active: bool = True,
        currency: str | None = None,
        tenant: UUID | None = None,
    ) -> Account:
        account = Account(
            tenant_id=tenant or tenant_id,
            code=code,
            name=name,
            account_type=AccountType(account_type).value,
            is_active=is_active,
            currency=currency,
            created_by=test_actor_id,
        )
        session.add(account)
        session.flush()
        return account

    return _create_account


@pytest.fixture
def standard_accounts(create_account):
    """Create a standard set of test accounts."""
    return {
        "cash": create_account("1000", "Cash", AccountType.ASSET),
        "ar": create_account("1100", "Accounts Receivable", AccountType.ASSET),
        "inventory": create_account("1200", "Inventory", AccountType.ASSET),
        "ap": create_account("2000", "Accounts Payable", AccountType.LIABILITY),
        "equity": create_account("3000", "Owner Capital", AccountType.EQUITY),
        "revenue": create_account("4000", "Sales Revenue", AccountType.REVENUE),
        "expense": create_account("5000", "Operating Expense", AccountType.EXPENSE),
    }


@pytest.fixture
def create_document(document_service, tenant_id, test_actor_id):
    """Factory fixture: create a document and walk it to ``state``.

    Only the generic transitions are used, so ``state`` may be any of
    draft, submitted, approved or voided.
    """
    paths = {
        DocumentState.DRAFT: (),
        DocumentState.SUBMITTED: (DocumentState.SUBMITTED,),
        DocumentState.APPROVED: (DocumentState.SUBMITTED, DocumentState.APPROVED),
        DocumentState.VOIDED: (DocumentState.VOIDED,),
    }

    def _create_document(
        state: DocumentState = DocumentState.APPROVED,
        document_type: DocumentType = DocumentType.INVOICE,
        document_number: str | None = None,
        tenant: UUID | None = None,
        **kwargs,
    ):
        document = document_service.create_document(
            tenant_id=tenant or tenant_id,
            document_type=document_type,
            created_by=test_actor_id,
            document_number=document_number,
            **kwargs,
        )
        for target in paths[DocumentState(state)]:
            document_service.transition_document_state(document.id, target, test_actor_id)
        return document

    return _create_document


@pytest.fixture
def sale_lines(standard_accounts):
    """Factory for a balanced two-line sale: Dr AR / Cr Revenue."""

    def _sale_lines(amount: str = "100.0000"):
        return (
            PostingLineInput.debit(standard_accounts["ar"].id, amount, "Invoice receivable"),
            PostingLineInput.credit(standard_accounts["revenue"].id, amount, "Invoice revenue"),
        )

    return _sale_lines


@pytest.fixture
def post_document(spine_transaction, create_document, sale_lines, tenant_id, test_actor_id):
    """Factory fixture: create an approved document and post it."""

    def _post_document(
        lines=None,
        amount: str = "100.0000",
        event_type: EventType = EventType.REVENUE,
        posting_date: date = POSTING_DATE,
        document=None,
        **kwargs,
    ):
        document = document or create_document()
        return spine_transaction.post_document(
            PostDocumentInput(
                document_id=document.id,
                tenant_id=tenant_id,
                user_id=test_actor_id,
                posting_date=posting_date,
                event_type=event_type,
                description=kwargs.pop("description", "Invoice posting"),
                postings=lines if lines is not None else sale_lines(amount),
                **kwargs,
            )
        )

    return _post_document
