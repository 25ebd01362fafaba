"""
DTOs -- immutable inputs crossing into the posting spine.

Responsibility:
    Enumerations shared by models and services (event type, document type,
    posting direction) and the frozen request objects collaborators build:
    PostingLineInput, EventInput and PostDocumentInput.

Architecture position:
    Spine > Domain -- pure functional core, zero I/O.  No ORM imports.

Invariants enforced:
    - Amounts travel as decimal strings, never floats.
    - Line metadata is deep-copied into a read-only mapping at construction.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

from posting_spine.domain.audit_context import AuditContext, AuditInput


class PostingDirection(str, Enum):
    """Side of a ledger posting."""

    DEBIT = "debit"
    CREDIT = "credit"

    def flipped(self) -> "PostingDirection":
        return PostingDirection.CREDIT if self is PostingDirection.DEBIT else PostingDirection.DEBIT


class EventType(str, Enum):
    """Closed set of economic event types."""

    REVENUE = "revenue"
    EXPENSE = "expense"
    ASSET_ACQUIRED = "asset_acquired"
    ASSET_DISPOSED = "asset_disposed"
    LIABILITY_INCURRED = "liability_incurred"
    LIABILITY_SETTLED = "liability_settled"
    EQUITY_CONTRIBUTION = "equity_contribution"
    EQUITY_DISTRIBUTION = "equity_distribution"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class DocumentType(str, Enum):
    """Business document kinds that feed the spine."""

    INVOICE = "invoice"
    BILL = "bill"
    PAYMENT = "payment"
    RECEIPT = "receipt"
    CREDIT_NOTE = "credit_note"
    DEBIT_NOTE = "debit_note"
    JOURNAL_ENTRY = "journal_entry"


def _frozen(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(copy.deepcopy(dict(mapping or {})))


@dataclass(frozen=True)
class PostingLineInput:
    """One requested debit or credit line.

    ``amount`` is validated and canonicalized by the posting engine.
    """

    account_id: UUID
    direction: PostingDirection
    amount: str
    description: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "direction", PostingDirection(self.direction))
        object.__setattr__(self, "metadata", _frozen(self.metadata))

    @classmethod
    def debit(cls, account_id: UUID, amount: str, description: str | None = None, **metadata: Any) -> "PostingLineInput":
        return cls(account_id, PostingDirection.DEBIT, amount, description, metadata)

    @classmethod
    def credit(cls, account_id: UUID, amount: str, description: str | None = None, **metadata: Any) -> "PostingLineInput":
        return cls(account_id, PostingDirection.CREDIT, amount, description, metadata)


@dataclass(frozen=True)
class EventInput:
    """Everything needed to append one economic event."""

    tenant_id: UUID
    document_id: UUID
    event_type: EventType
    description: str
    event_date: date
    created_by: UUID
    context: AuditContext
    amount: str | None = None
    currency: str | None = None
    entity_id: UUID | None = None
    data: Mapping[str, Any] = field(default_factory=dict)
    reversed_from_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "event_type", EventType(self.event_type))
        object.__setattr__(self, "data", _frozen(self.data))

    @property
    def is_reversal(self) -> bool:
        return self.reversed_from_id is not None


@dataclass(frozen=True)
class PostDocumentInput:
    """A collaborator's request to post an approved document.

    Contract:
        ``postings`` must balance.  ``amount`` defaults to the debit total
        and ``currency`` to the configured default when omitted.
    """

    document_id: UUID
    tenant_id: UUID
    user_id: UUID
    posting_date: date
    event_type: EventType
    description: str
    postings: tuple[PostingLineInput, ...]
    audit: AuditInput | None = None
    currency: str | None = None
    amount: str | None = None
    entity_id: UUID | None = None
    data: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "event_type", EventType(self.event_type))
        object.__setattr__(self, "postings", tuple(self.postings))
        object.__setattr__(self, "data", _frozen(self.data))
