"""
PostingService -- creates balanced batches of ledger postings.

Responsibility:
    Validates a set of debit/credit lines for one economic event and writes
    them as one batch.  Also re-verifies the balance of stored batches
    independently of the write path, so post-hoc corruption is detectable.

Architecture position:
    Spine > Services.  Called by PostingSpineTransaction (original postings)
    and, through it, by ReversalService (offsetting postings).

Invariants enforced:
    - sum(debit) == sum(credit) per batch, compared as canonical 4-decimal
      strings.  Checked BEFORE any row is written.
    - Every line in a batch shares batch_id and economic_event_id and gets a
      distinct line_seq 0..n-1 in input order.
    - Lines target existing, active accounts of the same tenant.

Failure modes:
    - EmptyPostingSetError: no lines.
    - InvalidCurrencyError: currency is not 3 uppercase letters, or differs
      from a currency-restricted account.
    - InvalidAmountError: negative, malformed, or more than 4 decimals.
    - AccountNotFoundError / InactiveAccountError.
    - UnbalancedPostingsError(total_debit, total_credit, difference).
    - BatchNotFoundError: validate_batch_balance on an unknown batch.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import select

from posting_spine.domain.decimal_math import (
    parse_amount,
    subtract_decimal,
    sum_decimals,
)
from posting_spine.domain.dtos import PostingDirection, PostingLineInput
from posting_spine.exceptions import (
    AccountNotFoundError,
    BatchNotFoundError,
    EmptyPostingSetError,
    InactiveAccountError,
    InvalidCurrencyError,
    PostingNotFoundError,
    UnbalancedPostingsError,
)
from posting_spine.logging_config import LogContext, get_logger, log_rejection
from posting_spine.models.account import Account
from posting_spine.models.ledger_posting import LedgerPosting
from posting_spine.services.base import BaseService

logger = get_logger("services.posting")

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

DEFAULT_PAGE_SIZE = 100


@dataclass(frozen=True)
class PostingBatchResult:
    """Rows written by one create_postings call and their totals."""

    postings: tuple[LedgerPosting, ...]
    batch_id: UUID
    total_debit: str
    total_credit: str
    is_balanced: bool


@dataclass(frozen=True)
class BatchBalance:
    """Balance of a stored batch, recomputed from its rows."""

    batch_id: UUID
    total_debit: str
    total_credit: str
    difference: str
    posting_count: int

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit


def totals_by_direction(lines) -> tuple[str, str]:
    """Sum ``(direction, amount)`` pairs into canonical debit/credit totals."""
    debits, credits = [], []
    for direction, amount in lines:
        (debits if direction == PostingDirection.DEBIT else credits).append(amount)
    return sum_decimals(debits), sum_decimals(credits)


def validate_currency(currency: str) -> str:
    if not isinstance(currency, str) or not _CURRENCY_RE.match(currency):
        raise InvalidCurrencyError(str(currency))
    return currency


class PostingService(BaseService):
    """
    Write balanced posting batches; read postings back.

    Guarantees:
        - A batch is written completely or not at all.
        - No row is written when any line fails validation.
    """

    def create_postings(
        self,
        tenant_id: UUID,
        economic_event_id: UUID,
        postings: Sequence[PostingLineInput],
        posting_date: date,
        currency: str,
        created_by: UUID,
        reversed_from_ids: Sequence[UUID] | None = None,
        allow_inactive_accounts: bool = False,
    ) -> PostingBatchResult:
        """Validate and insert one balanced batch.

        Args:
            reversed_from_ids: For reversal batches, the original line id
                each new line offsets, aligned with ``postings``.
            allow_inactive_accounts: Reversals may offset lines on accounts
                deactivated since the original posting.

        Raises:
            EmptyPostingSetError, InvalidCurrencyError, InvalidAmountError,
            AccountNotFoundError, InactiveAccountError,
            UnbalancedPostingsError.
        """
        if reversed_from_ids is not None and len(reversed_from_ids) != len(postings):
            raise ValueError("reversed_from_ids must align with postings")

        amounts, total_debit, total_credit = self.validate_postings(
            tenant_id, postings, currency, allow_inactive_accounts
        )

        batch_id = uuid4()
        now = self.clock.now()
        rows = []
        for seq, (line, amount) in enumerate(zip(postings, amounts)):
            reversed_from_id = reversed_from_ids[seq] if reversed_from_ids else None
            rows.append(
                LedgerPosting(
                    tenant_id=tenant_id,
                    economic_event_id=economic_event_id,
                    batch_id=batch_id,
                    line_seq=seq,
                    account_id=line.account_id,
                    direction=PostingDirection(line.direction).value,
                    amount=amount,
                    currency=currency,
                    posting_date=posting_date,
                    description=line.description[:500] if line.description else None,
                    posting_metadata=dict(line.metadata) or None,
                    is_reversal=reversed_from_id is not None,
                    reversed_from_id=reversed_from_id,
                    created_by=created_by,
                    created_at=now,
                )
            )
        self.session.add_all(rows)
        self.session.flush()

        with LogContext.bind(batch_id=batch_id, event_id=economic_event_id):
            logger.info(
                "postings_created",
                extra={
                    "line_count": len(rows),
                    "total_debit": total_debit,
                    "total_credit": total_credit,
                },
            )
        return PostingBatchResult(
            postings=tuple(rows),
            batch_id=batch_id,
            total_debit=total_debit,
            total_credit=total_credit,
            is_balanced=True,
        )

    def validate_postings(
        self,
        tenant_id: UUID,
        postings: Sequence[PostingLineInput],
        currency: str,
        allow_inactive_accounts: bool = False,
    ) -> tuple[list[str], str, str]:
        """Validate lines without writing anything.

        Returns:
            (canonical amounts in input order, total_debit, total_credit).

        Raises:
            EmptyPostingSetError, InvalidCurrencyError, InvalidAmountError,
            AccountNotFoundError, InactiveAccountError,
            UnbalancedPostingsError.
        """
        if not postings:
            raise EmptyPostingSetError()

        validate_currency(currency)
        amounts = [parse_amount(line.amount) for line in postings]
        self._validate_accounts(
            tenant_id, {line.account_id for line in postings}, currency, allow_inactive_accounts
        )

        total_debit, total_credit = totals_by_direction(
            (line.direction, amount) for line, amount in zip(postings, amounts)
        )
        if total_debit != total_credit:
            difference = subtract_decimal(total_debit, total_credit)
            error = UnbalancedPostingsError(total_debit, total_credit, difference)
            log_rejection(logger, "postings_unbalanced", error, line_count=len(postings))
            raise error
        return amounts, total_debit, total_credit

    # =========================================================================
    # Reads
    # =========================================================================

    def get_by_id(self, posting_id: UUID) -> LedgerPosting:
        posting = self.session.get(LedgerPosting, posting_id)
        if posting is None:
            raise PostingNotFoundError(str(posting_id))
        return posting

    def get_by_event(self, economic_event_id: UUID) -> list[LedgerPosting]:
        """Postings of one event, in line order."""
        return list(
            self.session.scalars(
                select(LedgerPosting)
                .where(LedgerPosting.economic_event_id == economic_event_id)
                .order_by(LedgerPosting.batch_id, LedgerPosting.line_seq)
            )
        )

    def get_by_batch(self, batch_id: UUID) -> list[LedgerPosting]:
        return list(
            self.session.scalars(
                select(LedgerPosting)
                .where(LedgerPosting.batch_id == batch_id)
                .order_by(LedgerPosting.line_seq)
            )
        )

    def get_by_account(
        self,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[LedgerPosting]:
        """Postings on one account, newest posting date first."""
        stmt = select(LedgerPosting).where(LedgerPosting.account_id == account_id)
        if start_date is not None:
            stmt = stmt.where(LedgerPosting.posting_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(LedgerPosting.posting_date <= end_date)
        stmt = (
            stmt.order_by(
                LedgerPosting.posting_date.desc(),
                LedgerPosting.created_at.desc(),
                LedgerPosting.line_seq,
            )
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt))

    def validate_batch_balance(self, batch_id: UUID) -> BatchBalance:
        """Recompute a stored batch's totals from its rows.

        Raises:
            BatchNotFoundError: no postings carry ``batch_id``.
        """
        rows = self.session.execute(
            select(LedgerPosting.direction, LedgerPosting.amount).where(
                LedgerPosting.batch_id == batch_id
            )
        ).all()
        if not rows:
            raise BatchNotFoundError(str(batch_id))
        total_debit, total_credit = totals_by_direction(rows)
        balance = BatchBalance(
            batch_id=batch_id,
            total_debit=total_debit,
            total_credit=total_credit,
            difference=subtract_decimal(total_debit, total_credit),
            posting_count=len(rows),
        )
        if not balance.is_balanced:
            logger.error(
                "batch_unbalanced",
                extra={
                    "batch_id": str(batch_id),
                    "total_debit": total_debit,
                    "total_credit": total_credit,
                    "difference": balance.difference,
                },
            )
        return balance

    def is_posting_reversed(self, posting_id: UUID) -> bool:
        return self.get_by_id(posting_id).reversal_id is not None

    def get_posting_reversal_chain(self, posting_id: UUID) -> list[LedgerPosting]:
        """``[original, reversal]`` for a line; ``[original]`` if unreversed."""
        posting = self.get_by_id(posting_id)
        original = posting
        if posting.reversed_from_id is not None:
            original = self.get_by_id(posting.reversed_from_id)
        chain = [original]
        if original.reversal_id is not None:
            chain.append(self.get_by_id(original.reversal_id))
        return chain

    # =========================================================================
    # Internal
    # =========================================================================

    def _validate_accounts(
        self,
        tenant_id: UUID,
        account_ids: set[UUID],
        currency: str,
        allow_inactive: bool,
    ) -> None:
        accounts = {
            account.id: account
            for account in self.session.scalars(
                select(Account).where(
                    Account.id.in_(account_ids),
                    Account.tenant_id == tenant_id,
                )
            )
        }
        for account_id in account_ids:
            account = accounts.get(account_id)
            if account is None:
                raise AccountNotFoundError(str(account_id))
            if not account.is_active and not allow_inactive:
                raise InactiveAccountError(str(account_id), account.code)
            if account.currency is not None and account.currency != currency:
                raise InvalidCurrencyError(currency)
