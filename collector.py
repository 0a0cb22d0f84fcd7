from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from context import UserContext
from models import (
    Account,
    AccountType,
    Tag,
    Transaction,
    TransactionJournal,
    TransactionType,
    tag_transaction_journal,
)


class FilterKind(str, Enum):
    accounts = "accounts"
    range = "range"
    types = "types"
    tags = "tags"
    budgets = "budgets"
    without_budget = "without_budget"
    categories = "categories"
    outflows_only = "outflows_only"
    inflows_only = "inflows_only"
    exclude_internal = "exclude_internal"


@dataclass(frozen=True)
class FilterClause:
    kind: FilterKind
    value: object = None


def _ids(values: Iterable[object]) -> tuple[int, ...]:
    out: set[int] = set()
    for value in values:
        out.add(int(getattr(value, "id", value)))
    return tuple(sorted(out))


@dataclass(frozen=True)
class JournalFilter:
    """An explicit, composable description of which transactions to collect.

    Every builder returns a new filter; clauses of the same kind are ANDed.
    Omitting ``with_accounts`` (or passing no accounts) selects all asset
    accounts of the user, and ``exclude_internal`` then treats any transfer
    between two of those asset accounts as internal.
    """

    clauses: tuple[FilterClause, ...] = ()

    def _with(self, kind: FilterKind, value: object = None) -> JournalFilter:
        return JournalFilter(self.clauses + (FilterClause(kind, value),))

    def with_accounts(self, accounts: Iterable[object]) -> JournalFilter:
        return self._with(FilterKind.accounts, _ids(accounts))

    def with_range(self, start: date, end: date) -> JournalFilter:
        if start > end:
            raise ValueError("Start date must be before end date")
        return self._with(FilterKind.range, (start, end))

    def with_types(self, types: Iterable[TransactionType]) -> JournalFilter:
        return self._with(FilterKind.types, tuple(TransactionType(t) for t in types))

    def with_tags(self, tags: Iterable[object]) -> JournalFilter:
        return self._with(FilterKind.tags, _ids(tags))

    def with_budgets(self, budgets: Iterable[object]) -> JournalFilter:
        return self._with(FilterKind.budgets, _ids(budgets))

    def without_budget(self) -> JournalFilter:
        return self._with(FilterKind.without_budget)

    def with_categories(self, categories: Iterable[object]) -> JournalFilter:
        return self._with(FilterKind.categories, _ids(categories))

    def outflows_only(self) -> JournalFilter:
        return self._with(FilterKind.outflows_only)

    def inflows_only(self) -> JournalFilter:
        return self._with(FilterKind.inflows_only)

    def exclude_internal(self) -> JournalFilter:
        return self._with(FilterKind.exclude_internal)

    def values(self, kind: FilterKind) -> list[object]:
        return [c.value for c in self.clauses if c.kind == kind]

    def has(self, kind: FilterKind) -> bool:
        return any(c.kind == kind for c in self.clauses)

    def account_ids(self) -> tuple[int, ...]:
        selected: Optional[set[int]] = None
        for ids in self.values(FilterKind.accounts):
            selected = set(ids) if selected is None else selected & set(ids)
        return tuple(sorted(selected or ()))


@dataclass(frozen=True)
class CollectedTransaction:
    transaction_id: int
    journal_id: int
    date: date
    type: TransactionType
    account_id: int
    opposing_account_id: Optional[int]
    amount: Decimal
    budget_id: Optional[int]
    category_id: Optional[int]
    tag_ids: tuple[int, ...]


class JournalCollector:
    def __init__(self, session: Session, context: UserContext) -> None:
        self.session = session
        self.context = context

    def collect(self, journal_filter: JournalFilter) -> list[CollectedTransaction]:
        Opposing = aliased(Transaction)
        opposing_account = (
            select(Opposing.account_id)
            .where(
                Opposing.transaction_journal_id == Transaction.transaction_journal_id,
                Opposing.id != Transaction.id,
            )
            .order_by(Opposing.id)
            .limit(1)
            .scalar_subquery()
        )
        stmt = (
            select(
                Transaction.id.label("transaction_id"),
                Transaction.transaction_journal_id.label("journal_id"),
                Transaction.account_id,
                Transaction.amount,
                TransactionJournal.date,
                TransactionJournal.type,
                TransactionJournal.budget_id,
                TransactionJournal.category_id,
                opposing_account.label("opposing_account_id"),
            )
            .join(
                TransactionJournal,
                Transaction.transaction_journal_id == TransactionJournal.id,
            )
            .join(Account, Transaction.account_id == Account.id)
            .where(
                TransactionJournal.user_id == self.context.user_id,
                Account.user_id == self.context.user_id,
            )
            .order_by(TransactionJournal.date.asc(), Transaction.id.asc())
        )

        account_ids = journal_filter.account_ids()
        if account_ids:
            stmt = stmt.where(Transaction.account_id.in_(account_ids))
        else:
            stmt = stmt.where(Account.type == AccountType.asset)

        for start, end in journal_filter.values(FilterKind.range):
            stmt = stmt.where(TransactionJournal.date.between(start, end))
        for types in journal_filter.values(FilterKind.types):
            stmt = stmt.where(TransactionJournal.type.in_(types))
        for tag_ids in journal_filter.values(FilterKind.tags):
            stmt = stmt.where(TransactionJournal.tags.any(Tag.id.in_(tag_ids)))
        for budget_ids in journal_filter.values(FilterKind.budgets):
            stmt = stmt.where(TransactionJournal.budget_id.in_(budget_ids))
        if journal_filter.has(FilterKind.without_budget):
            stmt = stmt.where(TransactionJournal.budget_id.is_(None))
        for category_ids in journal_filter.values(FilterKind.categories):
            stmt = stmt.where(TransactionJournal.category_id.in_(category_ids))

        rows = self.session.execute(stmt).all()
        tags_by_journal = self._tag_ids_for({row.journal_id for row in rows})

        # Amounts are stored as strings, so sign filters run after loading.
        outflows = journal_filter.has(FilterKind.outflows_only)
        inflows = journal_filter.has(FilterKind.inflows_only)
        internal: set[int] = set()
        if journal_filter.has(FilterKind.exclude_internal):
            internal = set(account_ids) if account_ids else self._asset_account_ids()

        collected: list[CollectedTransaction] = []
        for row in rows:
            amount = row.amount
            if outflows and amount >= 0:
                continue
            if inflows and amount <= 0:
                continue
            if row.opposing_account_id is not None and row.opposing_account_id in internal:
                continue
            collected.append(
                CollectedTransaction(
                    transaction_id=row.transaction_id,
                    journal_id=row.journal_id,
                    date=row.date,
                    type=row.type,
                    account_id=row.account_id,
                    opposing_account_id=row.opposing_account_id,
                    amount=amount,
                    budget_id=row.budget_id,
                    category_id=row.category_id,
                    tag_ids=tags_by_journal.get(row.journal_id, ()),
                )
            )
        return collected

    def sum(self, journal_filter: JournalFilter) -> Decimal:
        total = Decimal("0")
        for row in self.collect(journal_filter):
            total += row.amount
        return total

    def _asset_account_ids(self) -> set[int]:
        stmt = select(Account.id).where(
            Account.user_id == self.context.user_id,
            Account.type == AccountType.asset,
        )
        return set(self.session.scalars(stmt))

    def _tag_ids_for(self, journal_ids: set[int]) -> dict[int, tuple[int, ...]]:
        if not journal_ids:
            return {}
        stmt = (
            select(
                tag_transaction_journal.c.transaction_journal_id,
                tag_transaction_journal.c.tag_id,
            )
            .where(tag_transaction_journal.c.transaction_journal_id.in_(journal_ids))
            .order_by(tag_transaction_journal.c.tag_id)
        )
        grouped: dict[int, list[int]] = {}
        for journal_id, tag_id in self.session.execute(stmt):
            grouped.setdefault(journal_id, []).append(tag_id)
        return {journal_id: tuple(ids) for journal_id, ids in grouped.items()}
