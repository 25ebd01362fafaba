"""Selectors for the posting spine (read side)."""

from posting_spine.selectors.ledger_selector import (
    AccountBalance,
    AccountLedger,
    BalancedBooksResult,
    BalanceSheet,
    CashFlowSection,
    CashFlowStatement,
    CashMovement,
    IncomeStatement,
    LedgerEntry,
    LedgerSelector,
    TrialBalance,
    UnbalancedBatch,
)
from posting_spine.selectors.reversal_selector import (
    DocumentChainEntry,
    ReversalDisplayStatus,
    ReversalSelector,
    ReversalStatus,
)
from posting_spine.selectors.spine_selector import (
    EventHistoryEntry,
    EventReversalChain,
    EventWithPostings,
    PostingWithContext,
    SpineSelector,
)

__all__ = [
    "AccountBalance",
    "AccountLedger",
    "BalanceSheet",
    "BalancedBooksResult",
    "CashFlowSection",
    "CashFlowStatement",
    "CashMovement",
    "DocumentChainEntry",
    "EventHistoryEntry",
    "EventReversalChain",
    "EventWithPostings",
    "IncomeStatement",
    "LedgerEntry",
    "LedgerSelector",
    "PostingWithContext",
    "ReversalDisplayStatus",
    "ReversalSelector",
    "ReversalStatus",
    "SpineSelector",
    "TrialBalance",
    "UnbalancedBatch",
]
