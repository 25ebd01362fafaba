"""
Module: posting_spine.models.ledger_posting
Responsibility: ORM persistence for one debit or credit line of a balanced
    posting batch.
Architecture position: Spine > Models.  Imports db/ and domain/ only.

Invariants enforced:
    - Append-only, same rule as EconomicEvent: only reversal_id may be
      stamped, once (db/immutability.py).
    - (batch_id, line_seq) is unique; line_seq fixes line order within a
      batch so reversal lines are matched to originals explicitly.
    - Each original line links 1:1 to its offsetting line
      (uq_posting_reversed_from).
    - Amount is a positive canonical 4-decimal string; the sign lives in
      direction.

Audit relevance:
    The balance invariant sum(debit) == sum(credit) holds per batch_id and is
    re-checked from stored rows by PostingService.validate_batch_balance.
"""

from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from posting_spine.db.base import TenantScopedBase, UUIDString
from posting_spine.db.types import FixedScaleAmount
from posting_spine.domain.dtos import PostingDirection

if TYPE_CHECKING:
    from posting_spine.models.account import Account
    from posting_spine.models.economic_event import EconomicEvent


class LedgerPosting(TenantScopedBase):
    """
    One side of a double-entry batch.

    Guarantees:
        - direction is "debit" or "credit".
        - is_reversal is true iff reversed_from_id is set.
    """

    __tablename__ = "ledger_postings"
    __table_args__ = (
        CheckConstraint(
            "direction IN ('debit', 'credit')",
            name="ck_posting_direction",
        ),
        CheckConstraint(
            "(is_reversal AND reversed_from_id IS NOT NULL) "
            "OR (NOT is_reversal AND reversed_from_id IS NULL)",
            name="ck_posting_reversal_flag",
        ),
        UniqueConstraint("batch_id", "line_seq", name="uq_posting_batch_line"),
        UniqueConstraint("reversed_from_id", name="uq_posting_reversed_from"),
        Index("idx_posting_event", "economic_event_id"),
        Index("idx_posting_batch", "batch_id"),
        Index("idx_posting_account", "account_id"),
        Index("idx_posting_tenant_date", "tenant_id", "posting_date"),
    )

    economic_event_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("economic_events.id"),
        nullable=False,
    )

    batch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    direction: Mapped[PostingDirection] = mapped_column(String(6), nullable=False)

    amount: Mapped[str] = mapped_column(FixedScaleAmount(), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    posting_date: Mapped[date] = mapped_column(nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    posting_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    is_reversal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    reversed_from_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_postings.id"),
        nullable=True,
    )

    reversal_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_postings.id"),
        nullable=True,
    )

    created_by: Mapped[UUID] = mapped_column(nullable=False)

    economic_event: Mapped["EconomicEvent"] = relationship(viewonly=True)

    account: Mapped["Account"] = relationship(viewonly=True)

    def __repr__(self) -> str:
        return (
            f"<LedgerPosting {self.direction} {self.amount} {self.currency} "
            f"account={self.account_id} batch={self.batch_id}#{self.line_seq}>"
        )

    @property
    def is_debit(self) -> bool:
        return self.direction == PostingDirection.DEBIT

    @property
    def is_reversed(self) -> bool:
        return self.reversal_id is not None
