"""
Module: posting_spine.models.economic_event
Responsibility: ORM persistence for the immutable "what happened" record of a
    document, with its full 6W1H audit context.
Architecture position: Spine > Models.  Imports db/ and domain/ only.

Invariants enforced:
    - Append-only.  The sole permitted update is stamping reversal_id on the
      original, once (db/immutability.py).
    - is_reversal is true iff reversed_from_id is set
      (ck_event_reversal_flag).
    - At most one reversal per original (uq_event_reversed_from).
    - A reversal event is never itself reversed (ck_event_reversal_final).

Failure modes:
    - ImmutabilityViolationError on any other UPDATE or any DELETE.
    - IntegrityError on a second reversal of the same original.
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
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from posting_spine.db.base import TenantScopedBase, UUIDString
from posting_spine.db.types import FixedScaleAmount
from posting_spine.domain.audit_context import AuditContext
from posting_spine.domain.dtos import EventType

if TYPE_CHECKING:
    from posting_spine.models.document import Document
    from posting_spine.models.ledger_posting import LedgerPosting


class EconomicEvent(TenantScopedBase):
    """
    Immutable economic fact about one document.

    Guarantees:
        - context_6w1h holds AuditContext.to_dict() and is never edited.
        - amount is a canonical 4-decimal string or None (non-monetary).
    """

    __tablename__ = "economic_events"
    __table_args__ = (
        CheckConstraint(
            "(is_reversal AND reversed_from_id IS NOT NULL) "
            "OR (NOT is_reversal AND reversed_from_id IS NULL)",
            name="ck_event_reversal_flag",
        ),
        CheckConstraint(
            "NOT (is_reversal AND reversal_id IS NOT NULL)",
            name="ck_event_reversal_final",
        ),
        UniqueConstraint("reversed_from_id", name="uq_event_reversed_from"),
        Index("idx_event_document", "document_id"),
        Index("idx_event_tenant_type", "tenant_id", "event_type"),
        Index("idx_event_tenant_date", "tenant_id", "event_date"),
        Index("idx_event_tenant_created", "tenant_id", "created_at"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id"),
        nullable=False,
    )

    event_type: Mapped[EventType] = mapped_column(String(50), nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    event_date: Mapped[date] = mapped_column(nullable=False)

    amount: Mapped[str | None] = mapped_column(FixedScaleAmount(), nullable=True)

    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    entity_id: Mapped[UUID | None] = mapped_column(nullable=True)

    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    context_6w1h: Mapped[dict] = mapped_column(JSON, nullable=False)

    is_reversal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    reversed_from_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("economic_events.id"),
        nullable=True,
    )

    reversal_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("economic_events.id"),
        nullable=True,
    )

    created_by: Mapped[UUID] = mapped_column(nullable=False)

    document: Mapped["Document"] = relationship(viewonly=True)

    postings: Mapped[list["LedgerPosting"]] = relationship(
        order_by="LedgerPosting.line_seq",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return f"<EconomicEvent {self.event_type} {self.id} reversal={self.is_reversal}>"

    @property
    def audit_context(self) -> AuditContext:
        return AuditContext.from_dict(self.context_6w1h)

    @property
    def is_reversed(self) -> bool:
        return self.reversal_id is not None
