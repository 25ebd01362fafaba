"""
Posting spine -- the accounting core that turns approved business documents
into an immutable, always-balanced general-ledger record.

Layers (leaf first):

    domain/     Pure functional core: decimal arithmetic, document state
                machine, 6W1H audit context, clock, DTOs.  ZERO I/O.
    db/         Declarative base, portable column types, Database handle,
                ORM immutability guards.
    models/     Document, EconomicEvent, LedgerPosting, Account.
    services/   Imperative shell.  Flush within the caller's transaction,
                never commit.
    selectors/  Read-only queries returning DTOs.

Typical use::

    from posting_spine.db.engine import Database
    from posting_spine.services.spine_service import SpineService

    db = Database.from_url("postgresql://...")
    with db.session_scope() as session:
        result = SpineService(session).post_document(post_input)
"""

__version__ = "0.1.0"
