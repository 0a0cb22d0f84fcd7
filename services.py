from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import ValidationError
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import Session, joinedload

from aggregation import (
    BucketKey,
    BucketReport,
    budget_keys,
    filter_amounts,
    period_report,
)
from cache import chart_cache
from collector import JournalCollector, JournalFilter
from context import UserContext
from models import (
    Account,
    AccountType,
    AvailableBudget,
    Budget,
    BudgetLimit,
    Category,
    Tag,
    Transaction,
    TransactionCurrency,
    TransactionJournal,
    TransactionType,
    tag_transaction_journal,
)
from periods import (
    ChartGranularity,
    end_of_period,
    local_today,
    preferred_granularity,
    start_of_period,
)
from schemas import (
    AccountIn,
    BudgetIn,
    BudgetUpdateIn,
    JournalIn,
    LimitIn,
    TagIn,
)

logger = logging.getLogger(__name__)

NO_BUDGET_LABEL = "No budget"


def first_validation_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    if location:
        return f"{location}: {error['msg']}"
    return str(error["msg"])


def limits_overlapping(start: date, end: date):
    """Rows whose [start_date, end_date] touches the window, boundaries included."""
    return or_(
        and_(BudgetLimit.end_date >= start, BudgetLimit.end_date <= end),
        and_(BudgetLimit.start_date >= start, BudgetLimit.start_date <= end),
        and_(BudgetLimit.start_date <= start, BudgetLimit.end_date >= end),
    )


class AccountService:
    def __init__(self, session: Session, context: UserContext) -> None:
        self.session = session
        self.context = context

    def list_all(self, account_type: Optional[AccountType] = None) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.context.user_id)
            .order_by(func.lower(Account.name))
        )
        if account_type:
            stmt = stmt.where(Account.type == account_type)
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.context.user_id:
            raise ValueError("Account not found")
        return account

    def get_many(self, account_ids: Iterable[int]) -> list[Account]:
        ids = sorted(set(account_ids))
        if not ids:
            return []
        stmt = (
            select(Account)
            .where(Account.user_id == self.context.user_id, Account.id.in_(ids))
            .order_by(Account.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.context.user_id, name=data.name.strip(), type=data.type
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account


class CategoryService:
    def __init__(self, session: Session, context: UserContext) -> None:
        self.session = session
        self.context = context

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.context.user_id)
            .order_by(func.lower(Category.name))
        )
        return self.session.scalars(stmt).all()

    def get_many(self, category_ids: Iterable[int]) -> list[Category]:
        ids = sorted(set(category_ids))
        if not ids:
            return []
        stmt = select(Category).where(
            Category.user_id == self.context.user_id, Category.id.in_(ids)
        )
        return self.session.scalars(stmt).all()

    def create(self, name: str) -> Category:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Category name cannot be empty")
        stmt = select(Category).where(
            Category.user_id == self.context.user_id,
            func.lower(Category.name) == clean_name.lower(),
        )
        if self.session.scalar(stmt):
            raise ValueError("Category already exists")
        category = Category(user_id=self.context.user_id, name=clean_name)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class CurrencyService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_code(self, code: str) -> Optional[TransactionCurrency]:
        stmt = select(TransactionCurrency).where(
            TransactionCurrency.code == code.strip().upper()
        )
        return self.session.scalar(stmt)

    def get_or_create(
        self, code: str, *, name: Optional[str] = None, symbol: Optional[str] = None
    ) -> TransactionCurrency:
        existing = self.find_by_code(code)
        if existing:
            return existing
        clean_code = code.strip().upper()
        currency = TransactionCurrency(
            code=clean_code,
            name=name or clean_code,
            symbol=symbol or clean_code,
            decimal_places=2,
        )
        self.session.add(currency)
        self.session.flush()
        return currency


class TagService:
    def __init__(self, session: Session, context: UserContext) -> None:
        self.session = session
        self.context = context

    def list_all(self) -> list[Tag]:
        stmt = (
            select(Tag)
            .where(Tag.user_id == self.context.user_id)
            .order_by(func.lower(Tag.tag))
        )
        return self.session.scalars(stmt).all()

    def get_many(self, tag_ids: Iterable[int]) -> list[Tag]:
        ids = sorted(set(tag_ids))
        if not ids:
            return []
        stmt = (
            select(Tag)
            .where(Tag.user_id == self.context.user_id, Tag.id.in_(ids))
            .order_by(Tag.id)
        )
        return self.session.scalars(stmt).all()

    def find(self, tag_id: int) -> Tag:
        tag = self.session.get(Tag, tag_id)
        if not tag or tag.user_id != self.context.user_id:
            return Tag()
        return tag

    def find_by_tag(self, name: str) -> Tag:
        stmt = select(Tag).where(
            Tag.user_id == self.context.user_id,
            func.lower(Tag.tag) == name.strip().lower(),
        )
        return self.session.scalar(stmt) or Tag()

    def get_or_create(self, name: str) -> Tag:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")

        existing = self.find_by_tag(clean_name)
        if existing.id is not None:
            return existing

        tag = Tag(user_id=self.context.user_id, tag=clean_name)
        self.session.add(tag)
        self.session.flush()
        return tag

    def create(self, data: TagIn) -> Tag:
        clean_name = data.tag.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")
        if self.find_by_tag(clean_name).id is not None:
            raise ValueError("Tag already exists")

        tag = Tag(
            user_id=self.context.user_id,
            tag=clean_name,
            date=data.date,
            description=data.description,
        )
        self.session.add(tag)
        self.session.commit()
        self.session.refresh(tag)
        return tag

    def update(self, tag_id: int, data: TagIn) -> Tag:
        tag = self.find(tag_id)
        if tag.id is None:
            raise ValueError("Tag not found")

        clean_name = data.tag.strip()
        duplicate = self.find_by_tag(clean_name)
        if duplicate.id is not None and duplicate.id != tag.id:
            raise ValueError("Tag with this name already exists")

        tag.tag = clean_name
        tag.date = data.date
        tag.description = data.description
        self.session.commit()
        self.session.refresh(tag)
        chart_cache.touch(self.context.user_id)
        return tag

    def delete(self, tag_id: int) -> None:
        tag = self.find(tag_id)
        if tag.id is None:
            raise ValueError("Tag not found")

        self.session.execute(
            delete(tag_transaction_journal).where(
                tag_transaction_journal.c.tag_id == tag.id
            )
        )
        self.session.delete(tag)
        self.session.commit()
        chart_cache.touch(self.context.user_id)

    def sum_for_tag(
        self, tag: Tag, accounts: Iterable[object], start: date, end: date
    ) -> Decimal:
        journal_filter = (
            JournalFilter().with_accounts(accounts).with_range(start, end).with_tags([tag])
        )
        return JournalCollector(self.session, self.context).sum(journal_filter)


class JournalService:
    def __init__(self, session: Session, context: UserContext) -> None:
        self.session = session
        self.context = context

    def get(self, journal_id: int) -> TransactionJournal:
        stmt = (
            select(TransactionJournal)
            .options(
                joinedload(TransactionJournal.transactions),
                joinedload(TransactionJournal.tags),
            )
            .where(
                TransactionJournal.id == journal_id,
                TransactionJournal.user_id == self.context.user_id,
            )
        )
        journal = self.session.scalars(stmt).unique().first()
        if not journal:
            raise ValueError("Journal not found")
        return journal

    def create(self, data: JournalIn) -> TransactionJournal:
        accounts = AccountService(self.session, self.context)
        for txn in data.transactions:
            accounts.get(txn.account_id)

        if data.budget_id is not None:
            budget = BudgetService(self.session, self.context).find(data.budget_id)
            if budget.id is None:
                raise ValueError("Budget not found")
        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if not category or category.user_id != self.context.user_id:
                raise ValueError("Category not found")

        journal = TransactionJournal(
            user_id=self.context.user_id,
            type=data.type,
            date=data.date,
            description=data.description.strip(),
            budget_id=data.budget_id,
            category_id=data.category_id,
        )
        tag_service = TagService(self.session, self.context)
        seen: set[str] = set()
        for name in data.tags:
            key = name.strip().lower()
            if not key or key in seen:
                continue
            seen.add(key)
            journal.tags.append(tag_service.get_or_create(name))

        for txn in data.transactions:
            journal.transactions.append(
                Transaction(
                    account_id=txn.account_id,
                    amount=txn.amount,
                    description=txn.description,
                )
            )
        self.session.add(journal)
        self.session.commit()
        self.session.refresh(journal)
        chart_cache.touch(self.context.user_id)
        return journal

    def delete(self, journal_id: int) -> None:
        journal = self.get(journal_id)
        journal.tags.clear()
        self.session.delete(journal)
        self.session.commit()
        chart_cache.touch(self.context.user_id)


class BudgetService:
    def __init__(self, session: Session, context: UserContext) -> None:
        self.session = session
        self.context = context
        self.collector = JournalCollector(session, context)

    def _touch(self) -> None:
        chart_cache.touch(self.context.user_id)

    def find(self, budget_id: int) -> Budget:
        stmt = select(Budget).where(
            Budget.id == budget_id, Budget.user_id == self.context.user_id
        )
        return self.session.scalar(stmt) or Budget()

    def find_by_name(self, name: str) -> Budget:
        stmt = select(Budget).where(
            Budget.user_id == self.context.user_id, Budget.name == name
        )
        return self.session.scalar(stmt) or Budget()

    def get_many(self, budget_ids: Iterable[int]) -> list[Budget]:
        ids = sorted(set(budget_ids))
        if not ids:
            return []
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.context.user_id, Budget.id.in_(ids))
            .order_by(func.lower(Budget.name))
        )
        return self.session.scalars(stmt).all()

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.context.user_id)
            .order_by(func.lower(Budget.name), Budget.id)
        )
        return self.session.scalars(stmt).all()

    def active_budgets(self) -> list[Budget]:
        return [b for b in self.list_all() if b.active]

    def inactive_budgets(self) -> list[Budget]:
        return [b for b in self.list_all() if not b.active]

    def store(self, data: BudgetIn, *, today: Optional[date] = None) -> Budget:
        name = data.name.strip()
        if self.find_by_name(name).id is not None:
            raise ValueError("Budget with this name already exists")

        budget = Budget(user_id=self.context.user_id, name=name, active=True)
        self.session.add(budget)
        self.session.flush()

        if data.amount > 0 and data.repeat_freq is not None:
            anchor = today or local_today()
            self.session.add(
                BudgetLimit(
                    budget_id=budget.id,
                    start_date=start_of_period(anchor, data.repeat_freq),
                    end_date=end_of_period(anchor, data.repeat_freq),
                    amount=data.amount,
                    repeat_freq=data.repeat_freq,
                    repeats=data.repeats,
                )
            )

        self.session.commit()
        self.session.refresh(budget)
        self._touch()
        return budget

    def update(self, budget: Budget, data: BudgetUpdateIn) -> Budget:
        if budget.id is None or budget.user_id != self.context.user_id:
            raise ValueError("Budget not found")
        name = data.name.strip()
        duplicate = self.find_by_name(name)
        if duplicate.id is not None and duplicate.id != budget.id:
            raise ValueError("Budget with this name already exists")

        budget.name = name
        budget.active = data.active
        self.session.commit()
        self.session.refresh(budget)
        self._touch()
        return budget

    def destroy(self, budget: Budget) -> None:
        if budget.id is None or budget.user_id != self.context.user_id:
            raise ValueError("Budget not found")
        self.session.execute(
            update(TransactionJournal)
            .where(
                TransactionJournal.user_id == self.context.user_id,
                TransactionJournal.budget_id == budget.id,
            )
            .values(budget_id=None)
        )
        self.session.delete(budget)
        self.session.commit()
        self._touch()

    def cleanup_budgets(self) -> int:
        """Delete every limit of this user whose amount is zero."""
        owned = select(Budget.id).where(Budget.user_id == self.context.user_id)
        result = self.session.execute(
            delete(BudgetLimit)
            .where(BudgetLimit.budget_id.in_(owned), BudgetLimit.amount == Decimal("0"))
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        if result.rowcount:
            logger.info(
                f"cleanup_budgets: user={self.context.user_id} deleted={result.rowcount}"
            )
            self._touch()
        return result.rowcount

    def first_use_date(self, budget: Budget, *, today: Optional[date] = None) -> date:
        """Oldest journal date of ``budget``, capped at the start of this year."""
        oldest = date((today or local_today()).year, 1, 1)
        first = self.session.scalar(
            select(func.min(TransactionJournal.date)).where(
                TransactionJournal.user_id == self.context.user_id,
                TransactionJournal.budget_id == budget.id,
            )
        )
        if first is not None and first < oldest:
            return first
        return oldest

    def budget_limits(self, budget: Budget, start: date, end: date) -> list[BudgetLimit]:
        stmt = (
            select(BudgetLimit)
            .join(Budget, Budget.id == BudgetLimit.budget_id)
            .where(
                Budget.user_id == self.context.user_id,
                BudgetLimit.budget_id == budget.id,
                limits_overlapping(start, end),
            )
            .order_by(BudgetLimit.start_date.desc(), BudgetLimit.id.desc())
        )
        return self.session.scalars(stmt).all()

    def all_budget_limits(self, start: date, end: date) -> list[BudgetLimit]:
        stmt = (
            select(BudgetLimit)
            .options(joinedload(BudgetLimit.budget))
            .join(Budget, Budget.id == BudgetLimit.budget_id)
            .where(Budget.user_id == self.context.user_id, limits_overlapping(start, end))
            .order_by(BudgetLimit.start_date.desc(), BudgetLimit.id.desc())
        )
        return self.session.scalars(stmt).all()

    def _available(
        self, currency: TransactionCurrency, start: date, end: date
    ) -> Optional[AvailableBudget]:
        stmt = select(AvailableBudget).where(
            AvailableBudget.user_id == self.context.user_id,
            AvailableBudget.transaction_currency_id == currency.id,
            AvailableBudget.start_date == start,
            AvailableBudget.end_date == end,
        )
        return self.session.scalar(stmt)

    def available_budget(
        self, currency: TransactionCurrency, start: date, end: date
    ) -> Decimal:
        existing = self._available(currency, start, end)
        if existing is None:
            return Decimal("0")
        return existing.amount

    def set_available_budget(
        self, currency: TransactionCurrency, start: date, end: date, amount: Decimal
    ) -> AvailableBudget:
        available = self._available(currency, start, end)
        if available is None:
            available = AvailableBudget(
                user_id=self.context.user_id,
                transaction_currency_id=currency.id,
                start_date=start,
                end_date=end,
            )
            self.session.add(available)
        available.amount = amount
        self.session.commit()
        self.session.refresh(available)
        return available

    def spent_in_period(
        self,
        budgets: Iterable[object],
        accounts: Iterable[object],
        start: date,
        end: date,
    ) -> Decimal:
        journal_filter = (
            JournalFilter()
            .with_accounts(accounts)
            .with_range(start, end)
            .with_types([TransactionType.withdrawal])
            .with_budgets(budgets)
        )
        return self.collector.sum(journal_filter)

    def spent_in_period_without_budget(
        self, accounts: Iterable[object], start: date, end: date
    ) -> Decimal:
        journal_filter = (
            JournalFilter()
            .with_accounts(accounts)
            .with_range(start, end)
            .with_types([TransactionType.withdrawal])
            .without_budget()
            .outflows_only()
        )
        return self.collector.sum(journal_filter)

    def budget_period_report(
        self,
        budgets: Iterable[Budget],
        accounts: Iterable[object],
        start: date,
        end: date,
        granularity: Optional[ChartGranularity] = None,
    ) -> dict[BucketKey, BucketReport]:
        """Per-budget sums for each sub-period of ``start``..``end``.

        Used by the year and multi-year budget overviews and their chart.
        """
        budgets = list(budgets)
        granularity = granularity or preferred_granularity(start, end)
        rows = self.collector.collect(
            JournalFilter()
            .with_accounts(accounts)
            .with_range(start, end)
            .with_budgets(budgets)
        )
        buckets = {BucketKey.budget(b.id): b.name for b in budgets}
        return period_report(rows, buckets, granularity, budget_keys)

    def no_budget_period_report(
        self,
        accounts: Iterable[object],
        start: date,
        end: date,
        granularity: Optional[ChartGranularity] = None,
    ) -> BucketReport:
        granularity = granularity or preferred_granularity(start, end)
        rows = self.collector.collect(
            JournalFilter()
            .with_accounts(accounts)
            .with_range(start, end)
            .with_types([TransactionType.withdrawal])
            .without_budget()
        )
        key = BucketKey.none()
        return period_report(rows, {key: NO_BUDGET_LABEL}, granularity, budget_keys)[
            key
        ]

    def filter_amounts(
        self,
        report: dict[BucketKey, BucketReport],
        budget_id: int,
        periods: Iterable[str],
    ) -> dict[str, Decimal]:
        bucket = report.get(BucketKey.budget(budget_id))
        return filter_amounts(bucket.entries if bucket else {}, periods)

    def update_limit_amount(
        self, budget: Budget, start: date, end: date, amount: Decimal
    ) -> BudgetLimit:
        """Create, update or delete the limit of ``budget`` for exactly start..end.

        An amount of zero or less deletes an existing limit. The returned
        object is a fresh, unsaved ``BudgetLimit`` whenever nothing is stored.
        """
        if budget.id is None or budget.user_id != self.context.user_id:
            self.context.flash("error", "No such budget.")
            return BudgetLimit()

        limit = self.session.scalar(
            select(BudgetLimit).where(
                BudgetLimit.budget_id == budget.id,
                BudgetLimit.start_date == start,
                BudgetLimit.end_date == end,
            )
        )

        if limit is not None and amount <= 0:
            self.session.delete(limit)
            self.session.commit()
            logger.info(
                f"budget_limit deleted: budget={budget.id} start={start} end={end}"
            )
            self._touch()
            return BudgetLimit()

        if limit is not None:
            limit.amount = amount
            self.session.commit()
            self.session.refresh(limit)
            self._touch()
            return limit

        limit = BudgetLimit(
            budget_id=budget.id,
            start_date=start,
            end_date=end,
            amount=amount,
        )
        self.session.add(limit)
        self.session.commit()
        self.session.refresh(limit)
        self._touch()
        return limit

    def store_limit(self, data: dict[str, object]) -> BudgetLimit:
        """Store a repeating limit whose start is snapped to its period.

        Problems are reported as flash messages on the context and an unsaved
        ``BudgetLimit`` is returned.
        """
        try:
            payload = LimitIn.model_validate(data)
        except ValidationError as exc:
            self.context.flash("error", f"Could not save: {first_validation_error(exc)}")
            return BudgetLimit()

        budget = self.find(payload.budget_id)
        if budget.id is None:
            self.context.flash("error", "No such budget.")
            return BudgetLimit()

        start = start_of_period(payload.startdate, payload.period)
        end = end_of_period(payload.startdate, payload.period)
        existing = self.session.scalar(
            select(func.count(BudgetLimit.id)).where(
                BudgetLimit.budget_id == budget.id,
                BudgetLimit.start_date == start,
                or_(
                    BudgetLimit.repeat_freq == payload.period,
                    BudgetLimit.end_date == end,
                ),
            )
        )
        if existing:
            self.context.flash("error", "There already is an entry for these parameters.")
            return BudgetLimit()

        limit = BudgetLimit(
            budget_id=budget.id,
            start_date=start,
            end_date=end,
            amount=payload.amount,
            repeat_freq=payload.period,
            repeats=payload.repeats,
        )
        self.session.add(limit)
        self.session.commit()
        self.session.refresh(limit)
        self._touch()
        return limit
