"""
Module: posting_spine.models.account
Responsibility: ORM persistence for a tenant's chart of accounts -- the target
    of every ledger posting.
Architecture position: Spine > Models.  Imports db/ only.

Invariants enforced:
    - code is unique per tenant (uq_account_tenant_code).
    - account_type is one of asset, liability, equity, revenue, expense and
      determines the natural sign used by balance queries.

Failure modes:
    - AccountNotFoundError / InactiveAccountError are raised by the posting
      engine, not by this model.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from posting_spine.db.base import TenantScopedBase


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"

    @property
    def is_debit_normal(self) -> bool:
        """Assets and expenses grow with debits; the rest with credits."""
        return self in (AccountType.ASSET, AccountType.EXPENSE)


class Account(TenantScopedBase):
    """
    Chart of accounts entry for one tenant.

    Guarantees:
        - (tenant_id, code) is unique.
        - is_active gates new postings; history is never affected.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_account_tenant_code"),
        Index("idx_account_tenant_type", "tenant_id", "account_type"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    # Currency restriction (null = any currency)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    account_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def type(self) -> AccountType:
        return AccountType(self.account_type)

    @property
    def is_debit_normal(self) -> bool:
        return self.type.is_debit_normal
