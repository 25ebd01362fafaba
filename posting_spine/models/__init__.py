"""ORM models.  Importing this package registers every table on Base.metadata."""

from posting_spine.models.account import Account, AccountType
from posting_spine.models.document import Document
from posting_spine.models.economic_event import EconomicEvent
from posting_spine.models.ledger_posting import LedgerPosting

__all__ = [
    "Account",
    "AccountType",
    "Document",
    "EconomicEvent",
    "LedgerPosting",
]
