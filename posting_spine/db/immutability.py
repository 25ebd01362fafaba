"""
ORM-level immutability enforcement for the ledger tables.

SQLAlchemy fires ``before_update`` / ``before_delete`` before the SQL reaches
the database.  The listeners registered here inspect attribute history and
raise ImmutabilityViolationError, which aborts the flush.

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Entity          | Rule
----------------|----------------------------------------------------------
EconomicEvent   | Append-only.  Sole permitted update: reversal_id NULL -> id,
                | exactly once.  Never deleted.
LedgerPosting   | Same as EconomicEvent.
Document        | Never deleted.  Terminal states (reversed, voided) freeze
                | the row.  A posted document may only move to reversed and
                | receive its reversal_id.
Account         | account_type, code and currency are frozen once any posting
                | references the account.  name and is_active stay editable.

Services never expose an update path for events or postings; these
listeners catch any code that tries anyway.  Raw SQL bypasses the ORM and is
out of scope here.

Usage::

    from posting_spine.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent; Database() calls it
"""

from sqlalchemy import event, inspect, select

from posting_spine.exceptions import ImmutabilityViolationError
from posting_spine.logging_config import get_logger

logger = get_logger("db.immutability")

# Columns that may change on a posted document
_POSTED_DOCUMENT_MUTABLE = frozenset(
    {"state", "reversal_id", "updated_at", "updated_by", "version"}
)
_TERMINAL_DOCUMENT_STATES = frozenset({"reversed", "voided"})
# Columns that restate history if changed after the first posting
_ACCOUNT_STRUCTURAL = frozenset({"account_type", "code", "currency"})


def _changed_columns(mapper, target) -> list[str]:
    state = inspect(target)
    return [
        attr.key
        for attr in mapper.column_attrs
        if state.attrs[attr.key].history.has_changes()
    ]


def _stored_value(connection, mapper, target, column: str):
    """Read the committed value of ``column`` straight from the database."""
    table = mapper.local_table
    return connection.execute(
        select(table.c[column]).where(table.c.id == target.id)
    ).scalar_one_or_none()


def _raise(entity_type: str, target, reason: str):
    logger.error(
        "immutability_violation",
        extra={"entity_type": entity_type, "entity_id": str(target.id), "reason": reason},
    )
    raise ImmutabilityViolationError(entity_type, str(target.id), reason)


def _check_append_only(entity_type: str):
    """Build a before_update listener for an append-only ledger entity."""

    def _listener(mapper, connection, target):
        changed = _changed_columns(mapper, target)
        if not changed:
            return
        illegal = [c for c in changed if c != "reversal_id"]
        if illegal:
            _raise(entity_type, target, f"fields {sorted(illegal)} are immutable")
        if target.reversal_id is None:
            _raise(entity_type, target, "reversal_id cannot be cleared")
        if _stored_value(connection, mapper, target, "reversal_id") is not None:
            _raise(entity_type, target, "reversal_id is already set")

    return _listener


def _block_delete(entity_type: str):
    """Build a before_delete listener that always refuses."""

    def _listener(mapper, connection, target):
        _raise(entity_type, target, "records are never deleted")

    return _listener


def _check_document_update(mapper, connection, target):
    changed = _changed_columns(mapper, target)
    if not changed:
        return
    stored_state = _stored_value(connection, mapper, target, "state")
    if stored_state in _TERMINAL_DOCUMENT_STATES:
        _raise("Document", target, f"document is in terminal state '{stored_state}'")
    if stored_state == "posted":
        illegal = [c for c in changed if c not in _POSTED_DOCUMENT_MUTABLE]
        if illegal:
            _raise("Document", target, f"fields {sorted(illegal)} are frozen once posted")
        if "state" in changed and target.state != "reversed":
            _raise("Document", target, "a posted document can only become reversed")


def _check_account_update(mapper, connection, target):
    from posting_spine.models.ledger_posting import LedgerPosting

    changed = [c for c in _changed_columns(mapper, target) if c in _ACCOUNT_STRUCTURAL]
    if not changed:
        return
    referenced = connection.execute(
        select(LedgerPosting.id).where(LedgerPosting.account_id == target.id).limit(1)
    ).first()
    if referenced is not None:
        _raise(
            "Account",
            target,
            f"structural fields {sorted(changed)} are frozen once the account has postings",
        )


_check_event_update = _check_append_only("EconomicEvent")
_check_event_delete = _block_delete("EconomicEvent")
_check_posting_update = _check_append_only("LedgerPosting")
_check_posting_delete = _block_delete("LedgerPosting")
_check_document_delete = _block_delete("Document")


def _listener_table():
    from posting_spine.models.account import Account
    from posting_spine.models.document import Document
    from posting_spine.models.economic_event import EconomicEvent
    from posting_spine.models.ledger_posting import LedgerPosting

    return (
        (EconomicEvent, "before_update", _check_event_update),
        (EconomicEvent, "before_delete", _check_event_delete),
        (LedgerPosting, "before_update", _check_posting_update),
        (LedgerPosting, "before_delete", _check_posting_delete),
        (Document, "before_update", _check_document_update),
        (Document, "before_delete", _check_document_delete),
        (Account, "before_update", _check_account_update),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners.  Safe to call repeatedly."""
    for model, name, fn in _listener_table():
        if not event.contains(model, name, fn):
            event.listen(model, name, fn)


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners. FOR TESTING ONLY."""
    for model, name, fn in _listener_table():
        if event.contains(model, name, fn):
            event.remove(model, name, fn)
