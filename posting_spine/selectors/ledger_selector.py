"""
Module: posting_spine.selectors.ledger_selector
Responsibility: Read-only balance and reconciliation queries -- balanced-books
    verification, trial balance, balance sheet, income statement, cash flow
    statement and the per-account ledger with a running balance.
Architecture position: Spine > Selectors.  May import from models/, domain/
    and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - No stored balances.  Every figure is recomputed from ledger_postings at
      query time.
    - All arithmetic goes through domain.decimal_math on 4-decimal strings;
      amounts are never summed as floats or in SQL.
    - Natural sign: asset and expense balances are debit - credit; liability,
      equity and revenue balances are credit - debit.

Failure modes:
    - AccountNotFoundError from get_account_ledger for an unknown account.
    - Empty ledgers yield zero totals and is_balanced=True, never an error.

Audit relevance:
    verify_balanced_books is the read-side proof of the double-entry
    invariant.  An unbalanced batch can only appear through writes that
    bypassed the posting engine; it is reported with its event id so the
    offending write can be traced.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from posting_spine.domain.decimal_math import (
    ZERO_AMOUNT,
    add_decimal,
    is_zero,
    subtract_decimal,
    sum_decimals,
)
from posting_spine.domain.dtos import PostingDirection
from posting_spine.exceptions import AccountNotFoundError
from posting_spine.logging_config import get_logger
from posting_spine.models.account import Account, AccountType
from posting_spine.models.document import Document
from posting_spine.models.economic_event import EconomicEvent
from posting_spine.models.ledger_posting import LedgerPosting
from posting_spine.selectors.base import BaseSelector

logger = get_logger("selectors.ledger")


def natural_balance(account_type: AccountType | str, debit_total: str, credit_total: str) -> str:
    """Balance in the account's natural sign."""
    if AccountType(account_type).is_debit_normal:
        return subtract_decimal(debit_total, credit_total)
    return subtract_decimal(credit_total, debit_total)


@dataclass(frozen=True)
class UnbalancedBatch:
    batch_id: UUID
    economic_event_id: UUID
    total_debit: str
    total_credit: str
    difference: str
    posting_count: int


@dataclass(frozen=True)
class BalancedBooksResult:
    """Tenant-wide double-entry verification."""

    is_balanced: bool
    total_debit: str
    total_credit: str
    difference: str
    posting_count: int
    batch_count: int
    unbalanced_batches: tuple[UnbalancedBatch, ...]


@dataclass(frozen=True)
class AccountBalance:
    """Debit/credit totals and natural-sign balance for one account."""

    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    debit_total: str
    credit_total: str
    balance: str
    posting_count: int


@dataclass(frozen=True)
class TrialBalance:
    tenant_id: UUID
    as_of_date: date | None
    start_date: date | None
    rows: tuple[AccountBalance, ...]
    total_debit: str
    total_credit: str
    difference: str

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit


@dataclass(frozen=True)
class BalanceSheet:
    """
    Statement of financial position.

    Current-period earnings (revenue - expense) are folded into total_equity
    so the equation closes without a closing entry.
    """

    tenant_id: UUID
    as_of_date: date | None
    assets: tuple[AccountBalance, ...]
    liabilities: tuple[AccountBalance, ...]
    equity: tuple[AccountBalance, ...]
    total_assets: str
    total_liabilities: str
    total_equity: str
    net_income: str
    difference: str

    @property
    def is_balanced(self) -> bool:
        return is_zero(self.difference)


@dataclass(frozen=True)
class IncomeStatement:
    tenant_id: UUID
    start_date: date | None
    end_date: date | None
    revenue: tuple[AccountBalance, ...]
    expenses: tuple[AccountBalance, ...]
    total_revenue: str
    total_expenses: str
    net_income: str


@dataclass(frozen=True)
class LedgerEntry:
    """One posting on an account with the running balance after it."""

    posting_id: UUID
    posting_date: date
    economic_event_id: UUID
    document_id: UUID | None
    document_number: str | None
    document_type: str | None
    description: str | None
    debit: str
    credit: str
    balance: str
    is_reversal: bool


@dataclass(frozen=True)
class AccountLedger:
    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    start_date: date | None
    end_date: date | None
    opening_balance: str
    entries: tuple[LedgerEntry, ...]
    closing_balance: str
    total_debit: str
    total_credit: str


@dataclass(frozen=True)
class CashMovement:
    """One posting on a cash account inside the statement window."""

    posting_id: UUID
    account_id: UUID
    posting_date: date
    description: str | None
    amount: str


@dataclass(frozen=True)
class CashFlowSection:
    inflows: tuple[CashMovement, ...] = ()
    outflows: tuple[CashMovement, ...] = ()
    net: str = ZERO_AMOUNT


@dataclass(frozen=True)
class CashFlowStatement:
    """
    Cash movements over a posting-date window.

    Every cash posting is classed as operating; investing and financing are
    always empty.  ending_balance == beginning_balance + net_change.
    """

    tenant_id: UUID
    start_date: date
    end_date: date
    cash_account_ids: tuple[UUID, ...]
    operating: CashFlowSection
    investing: CashFlowSection
    financing: CashFlowSection
    net_change: str
    beginning_balance: str
    ending_balance: str


class LedgerSelector(BaseSelector[LedgerPosting]):
    """
    Balance computation over the posting log.

    Contract:
        Every query is scoped to one tenant (account ledgers are scoped by
        the account) and filters on posting_date.  ``as_of_date`` and
        ``end_date`` are inclusive upper bounds, ``start_date`` an inclusive
        lower bound.

    Guarantees:
        - All returned monetary values are canonical 4-decimal strings.
        - Accounts with no postings still appear with zero totals.

    Non-goals:
        - No currency conversion; amounts are summed as posted.
        - No period close or retained-earnings roll-forward.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    # =========================================================================
    # Balanced books
    # =========================================================================

    def verify_balanced_books(
        self,
        tenant_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> BalancedBooksResult:
        """Check sum(debit) == sum(credit) tenant-wide and per batch."""
        rows = self._posting_rows(tenant_id, start_date, end_date)
        total_debit, total_credit = _direction_totals(rows)
        difference = subtract_decimal(total_debit, total_credit)
        unbalanced = self._unbalanced_from_rows(rows)

        result = BalancedBooksResult(
            is_balanced=is_zero(difference) and not unbalanced,
            total_debit=total_debit,
            total_credit=total_credit,
            difference=difference,
            posting_count=len(rows),
            batch_count=len({row.batch_id for row in rows}),
            unbalanced_batches=unbalanced,
        )
        if not result.is_balanced:
            logger.error(
                "books_unbalanced",
                extra={
                    "tenant_id": str(tenant_id),
                    "difference": difference,
                    "unbalanced_batch_count": len(unbalanced),
                },
            )
        return result

    def find_unbalanced_batches(
        self,
        tenant_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> tuple[UnbalancedBatch, ...]:
        return self._unbalanced_from_rows(self._posting_rows(tenant_id, start_date, end_date))

    def get_total_debits_credits(
        self,
        tenant_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> tuple[str, str]:
        """``(total_debit, total_credit)`` for the tenant."""
        return _direction_totals(self._posting_rows(tenant_id, start_date, end_date))

    # =========================================================================
    # Account balances and statements
    # =========================================================================

    def get_account_balances(
        self,
        tenant_id: UUID,
        as_of_date: date | None = None,
        start_date: date | None = None,
        account_types: tuple[AccountType, ...] | None = None,
    ) -> list[AccountBalance]:
        """One AccountBalance per tenant account, ordered by account code."""
        accounts_stmt = select(Account).where(Account.tenant_id == tenant_id)
        if account_types is not None:
            accounts_stmt = accounts_stmt.where(
                Account.account_type.in_([AccountType(t).value for t in account_types])
            )
        accounts = list(self.session.scalars(accounts_stmt.order_by(Account.code)))

        totals: dict[UUID, dict[str, list[str]]] = defaultdict(
            lambda: {PostingDirection.DEBIT.value: [], PostingDirection.CREDIT.value: []}
        )
        for row in self._posting_rows(tenant_id, start_date, as_of_date):
            totals[row.account_id][row.direction].append(row.amount)

        balances = []
        for account in accounts:
            by_direction = totals.get(account.id)
            debits = by_direction[PostingDirection.DEBIT.value] if by_direction else []
            credits = by_direction[PostingDirection.CREDIT.value] if by_direction else []
            debit_total = sum_decimals(debits)
            credit_total = sum_decimals(credits)
            balances.append(
                AccountBalance(
                    account_id=account.id,
                    account_code=account.code,
                    account_name=account.name,
                    account_type=account.account_type,
                    debit_total=debit_total,
                    credit_total=credit_total,
                    balance=natural_balance(account.account_type, debit_total, credit_total),
                    posting_count=len(debits) + len(credits),
                )
            )
        return balances

    def get_trial_balance(
        self,
        tenant_id: UUID,
        as_of_date: date | None = None,
        start_date: date | None = None,
    ) -> TrialBalance:
        """Per-account totals plus grand totals; balanced iff debits == credits."""
        rows = tuple(self.get_account_balances(tenant_id, as_of_date, start_date))
        total_debit = sum_decimals(r.debit_total for r in rows)
        total_credit = sum_decimals(r.credit_total for r in rows)
        return TrialBalance(
            tenant_id=tenant_id,
            as_of_date=as_of_date,
            start_date=start_date,
            rows=rows,
            total_debit=total_debit,
            total_credit=total_credit,
            difference=subtract_decimal(total_debit, total_credit),
        )

    def get_balance_sheet(
        self,
        tenant_id: UUID,
        as_of_date: date | None = None,
    ) -> BalanceSheet:
        """Assets = liabilities + equity (+ current earnings) as of a date."""
        by_type = _group_by_type(self.get_account_balances(tenant_id, as_of_date))

        total_assets = _total(by_type[AccountType.ASSET])
        total_liabilities = _total(by_type[AccountType.LIABILITY])
        net_income = subtract_decimal(
            _total(by_type[AccountType.REVENUE]), _total(by_type[AccountType.EXPENSE])
        )
        total_equity = add_decimal(_total(by_type[AccountType.EQUITY]), net_income)

        return BalanceSheet(
            tenant_id=tenant_id,
            as_of_date=as_of_date,
            assets=tuple(by_type[AccountType.ASSET]),
            liabilities=tuple(by_type[AccountType.LIABILITY]),
            equity=tuple(by_type[AccountType.EQUITY]),
            total_assets=total_assets,
            total_liabilities=total_liabilities,
            total_equity=total_equity,
            net_income=net_income,
            difference=subtract_decimal(
                total_assets, add_decimal(total_liabilities, total_equity)
            ),
        )

    def get_income_statement(
        self,
        tenant_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> IncomeStatement:
        """Revenue - expenses over a posting-date range."""
        by_type = _group_by_type(
            self.get_account_balances(
                tenant_id,
                as_of_date=end_date,
                start_date=start_date,
                account_types=(AccountType.REVENUE, AccountType.EXPENSE),
            )
        )
        total_revenue = _total(by_type[AccountType.REVENUE])
        total_expenses = _total(by_type[AccountType.EXPENSE])
        return IncomeStatement(
            tenant_id=tenant_id,
            start_date=start_date,
            end_date=end_date,
            revenue=tuple(by_type[AccountType.REVENUE]),
            expenses=tuple(by_type[AccountType.EXPENSE]),
            total_revenue=total_revenue,
            total_expenses=total_expenses,
            net_income=subtract_decimal(total_revenue, total_expenses),
        )

    def get_cash_flow_statement(
        self,
        tenant_id: UUID,
        start_date: date,
        end_date: date,
        cash_account_ids: tuple[UUID, ...] | None = None,
    ) -> CashFlowStatement:
        """Beginning cash, inflows and outflows, and ending cash for a window.

        Cash accounts default to asset accounts whose code starts with
        ``111`` or whose name contains "cash".  The beginning balance covers
        postings dated strictly before start_date; the window is inclusive
        at both ends.
        """
        if cash_account_ids is None:
            cash_account_ids = self._cash_account_ids(tenant_id)
        cash_account_ids = tuple(cash_account_ids)

        inflows, outflows = [], []
        beginning = ZERO_AMOUNT
        if cash_account_ids:
            before = self.session.execute(
                select(LedgerPosting.direction, LedgerPosting.amount).where(
                    LedgerPosting.tenant_id == tenant_id,
                    LedgerPosting.account_id.in_(cash_account_ids),
                    LedgerPosting.posting_date < start_date,
                )
            ).all()
            beginning = natural_balance(AccountType.ASSET, *_direction_totals(before))

            window = self.session.scalars(
                select(LedgerPosting)
                .where(
                    LedgerPosting.tenant_id == tenant_id,
                    LedgerPosting.account_id.in_(cash_account_ids),
                    LedgerPosting.posting_date >= start_date,
                    LedgerPosting.posting_date <= end_date,
                )
                .order_by(
                    LedgerPosting.posting_date,
                    LedgerPosting.created_at,
                    LedgerPosting.batch_id,
                    LedgerPosting.line_seq,
                )
            )
            for posting in window:
                movement = CashMovement(
                    posting_id=posting.id,
                    account_id=posting.account_id,
                    posting_date=posting.posting_date,
                    description=posting.description,
                    amount=posting.amount,
                )
                if posting.direction == PostingDirection.DEBIT:
                    inflows.append(movement)
                else:
                    outflows.append(movement)

        operating = CashFlowSection(
            inflows=tuple(inflows),
            outflows=tuple(outflows),
            net=subtract_decimal(
                sum_decimals(m.amount for m in inflows),
                sum_decimals(m.amount for m in outflows),
            ),
        )
        return CashFlowStatement(
            tenant_id=tenant_id,
            start_date=start_date,
            end_date=end_date,
            cash_account_ids=cash_account_ids,
            operating=operating,
            investing=CashFlowSection(),
            financing=CashFlowSection(),
            net_change=operating.net,
            beginning_balance=beginning,
            ending_balance=add_decimal(beginning, operating.net),
        )

    def get_account_ledger(
        self,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> AccountLedger:
        """Postings on one account with a running natural-sign balance.

        The opening balance covers every posting dated before start_date.
        Pagination slices the entries after the running balance is computed,
        so each entry's balance is independent of the page requested.

        Raises:
            AccountNotFoundError: unknown account id.
        """
        account = self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))

        debit_normal = account.is_debit_normal
        opening = ZERO_AMOUNT
        if start_date is not None:
            before = self.session.execute(
                select(LedgerPosting.direction, LedgerPosting.amount).where(
                    LedgerPosting.account_id == account_id,
                    LedgerPosting.posting_date < start_date,
                )
            ).all()
            opening = natural_balance(account.account_type, *_direction_totals(before))

        stmt = (
            select(
                LedgerPosting,
                Document.id.label("document_id"),
                Document.document_number,
                Document.document_type,
            )
            .join(EconomicEvent, LedgerPosting.economic_event_id == EconomicEvent.id)
            .outerjoin(Document, EconomicEvent.document_id == Document.id)
            .where(LedgerPosting.account_id == account_id)
        )
        if start_date is not None:
            stmt = stmt.where(LedgerPosting.posting_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(LedgerPosting.posting_date <= end_date)
        stmt = stmt.order_by(
            LedgerPosting.posting_date,
            LedgerPosting.created_at,
            LedgerPosting.batch_id,
            LedgerPosting.line_seq,
        )

        running = opening
        entries = []
        debits, credits = [], []
        for posting, document_id, document_number, document_type in self.session.execute(stmt):
            is_debit = posting.direction == PostingDirection.DEBIT
            (debits if is_debit else credits).append(posting.amount)
            if is_debit == debit_normal:
                running = add_decimal(running, posting.amount)
            else:
                running = subtract_decimal(running, posting.amount)
            entries.append(
                LedgerEntry(
                    posting_id=posting.id,
                    posting_date=posting.posting_date,
                    economic_event_id=posting.economic_event_id,
                    document_id=document_id,
                    document_number=document_number,
                    document_type=document_type,
                    description=posting.description,
                    debit=posting.amount if is_debit else ZERO_AMOUNT,
                    credit=ZERO_AMOUNT if is_debit else posting.amount,
                    balance=running,
                    is_reversal=posting.is_reversal,
                )
            )

        page = entries[offset:] if limit is None else entries[offset:offset + limit]
        return AccountLedger(
            account_id=account.id,
            account_code=account.code,
            account_name=account.name,
            account_type=account.account_type,
            start_date=start_date,
            end_date=end_date,
            opening_balance=opening,
            entries=tuple(page),
            closing_balance=running,
            total_debit=sum_decimals(debits),
            total_credit=sum_decimals(credits),
        )

    # =========================================================================
    # Internal
    # =========================================================================

    def _posting_rows(
        self,
        tenant_id: UUID,
        start_date: date | None,
        end_date: date | None,
    ):
        stmt = select(
            LedgerPosting.batch_id,
            LedgerPosting.economic_event_id,
            LedgerPosting.account_id,
            LedgerPosting.direction,
            LedgerPosting.amount,
        ).where(LedgerPosting.tenant_id == tenant_id)
        if start_date is not None:
            stmt = stmt.where(LedgerPosting.posting_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(LedgerPosting.posting_date <= end_date)
        return self.session.execute(stmt).all()

    def _cash_account_ids(self, tenant_id: UUID) -> tuple[UUID, ...]:
        assets = self.session.scalars(
            select(Account)
            .where(
                Account.tenant_id == tenant_id,
                Account.account_type == AccountType.ASSET.value,
            )
            .order_by(Account.code)
        )
        return tuple(
            account.id
            for account in assets
            if account.code.startswith("111") or "cash" in account.name.lower()
        )

    def _unbalanced_from_rows(self, rows) -> tuple[UnbalancedBatch, ...]:
        batches: dict[UUID, list] = defaultdict(list)
        for row in rows:
            batches[row.batch_id].append(row)

        unbalanced = []
        for batch_id, batch_rows in batches.items():
            total_debit, total_credit = _direction_totals(batch_rows)
            difference = subtract_decimal(total_debit, total_credit)
            if not is_zero(difference):
                unbalanced.append(
                    UnbalancedBatch(
                        batch_id=batch_id,
                        economic_event_id=batch_rows[0].economic_event_id,
                        total_debit=total_debit,
                        total_credit=total_credit,
                        difference=difference,
                        posting_count=len(batch_rows),
                    )
                )
        return tuple(unbalanced)


def _direction_totals(rows) -> tuple[str, str]:
    debits = [r.amount for r in rows if r.direction == PostingDirection.DEBIT]
    credits = [r.amount for r in rows if r.direction == PostingDirection.CREDIT]
    return sum_decimals(debits), sum_decimals(credits)


def _group_by_type(balances: list[AccountBalance]) -> dict[AccountType, list[AccountBalance]]:
    grouped: dict[AccountType, list[AccountBalance]] = {t: [] for t in AccountType}
    for balance in balances:
        grouped[AccountType(balance.account_type)].append(balance)
    return grouped


def _total(balances: list[AccountBalance]) -> str:
    return sum_decimals(b.balance for b in balances)
