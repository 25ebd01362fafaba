"""
Module: posting_spine.models.document
Responsibility: ORM persistence for the workflow representation of a business
    document (invoice, bill, payment, manual journal).
Architecture position: Spine > Models.  Imports db/ and domain enums only.

Invariants enforced:
    - state is a DocumentState value; created as draft.
    - reversed_from_id and reversal_id are mutually exclusive
      (ck_document_reversal_exclusive): a document is either an original
      that was reversed or a reversal of another, never both.
    - At most one document may name a given original in reversed_from_id
      (uq_document_reversed_from).
    - Documents are never deleted; terminal states freeze the row
      (db/immutability.py).

Audit relevance:
    posted_at / posted_by record the moment the document entered the ledger.
    reversal_id holds the id of the reversal economic event.
"""

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from posting_spine.db.base import TenantScopedBase, UUIDString
from posting_spine.domain.document_state import DocumentState
from posting_spine.domain.dtos import DocumentType

if TYPE_CHECKING:
    from posting_spine.models.economic_event import EconomicEvent


class Document(TenantScopedBase):
    """
    A business document moving through draft -> ... -> posted -> reversed.

    Contract:
        state changes only through DocumentService.transition_document_state,
        PostingSpineTransaction.post_document and
        ReversalService.create_document_reversal.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "NOT (reversal_id IS NOT NULL AND reversed_from_id IS NOT NULL)",
            name="ck_document_reversal_exclusive",
        ),
        UniqueConstraint("reversed_from_id", name="uq_document_reversed_from"),
        Index("idx_document_tenant_state", "tenant_id", "state"),
        Index("idx_document_tenant_type", "tenant_id", "document_type"),
        Index("idx_document_tenant_number", "tenant_id", "document_number"),
    )

    document_type: Mapped[DocumentType] = mapped_column(String(30), nullable=False)

    state: Mapped[DocumentState] = mapped_column(
        String(20),
        nullable=False,
        default=DocumentState.DRAFT.value,
    )

    document_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    document_date: Mapped[date | None] = mapped_column(nullable=True)

    entity_id: Mapped[UUID | None] = mapped_column(nullable=True)

    # Bumped on every state transition
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    reversed_from_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id"),
        nullable=True,
    )

    # Id of the reversal economic event
    reversal_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    created_by: Mapped[UUID] = mapped_column(nullable=False)

    updated_by: Mapped[UUID | None] = mapped_column(nullable=True)

    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    posted_by: Mapped[UUID | None] = mapped_column(nullable=True)

    events: Mapped[list["EconomicEvent"]] = relationship(
        order_by="EconomicEvent.created_at",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return f"<Document {self.document_type} {self.id} state={self.state}>"

    @property
    def is_reversal(self) -> bool:
        return self.reversed_from_id is not None

    @property
    def is_reversed(self) -> bool:
        return self.reversal_id is not None or self.state == DocumentState.REVERSED
