from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session

from aggregation import (
    BucketKey,
    BucketKind,
    account_keys,
    budget_keys,
    category_keys,
    decimal_sum,
    drop_empty_series,
    filter_amounts,
    group_by,
    group_by_tag,
    opposing_account_keys,
    tag_keys,
)
from cache import CacheProperties, ChartCache, chart_cache
from charts import ChartGenerator, ChartSeries
from collector import CollectedTransaction, JournalCollector, JournalFilter
from context import UserContext
from models import Account, Budget, Tag, TransactionType
from periods import (
    ChartGranularity,
    iter_subperiods,
    period_key,
    period_label,
    preferred_granularity,
)
from services import (
    NO_BUDGET_LABEL,
    AccountService,
    BudgetService,
    CategoryService,
    TagService,
)

logger = logging.getLogger(__name__)

EXPENSE_TYPES = [TransactionType.withdrawal, TransactionType.transfer]
INCOME_TYPES = [TransactionType.deposit, TransactionType.transfer]
OTHERS_LABEL = "Everything else"

KeyFunc = Callable[[CollectedTransaction], Iterable[BucketKey]]


class _CachedReport:
    def __init__(
        self,
        session: Session,
        context: UserContext,
        *,
        cache: Optional[ChartCache] = None,
        generator: Optional[ChartGenerator] = None,
    ) -> None:
        self.session = session
        self.context = context
        self.cache = chart_cache if cache is None else cache
        self.generator = ChartGenerator() if generator is None else generator
        self.collector = JournalCollector(session, context)

    def _properties(self, name: str, *props: object) -> CacheProperties:
        cache_props = self.cache.properties(self.context.user_id, name)
        for prop in props:
            cache_props.add(prop)
        return cache_props

    def _cached(
        self, props: CacheProperties, build: Callable[[], dict[str, object]]
    ) -> dict[str, object]:
        cached = self.cache.get(props)
        if cached is not None:
            return cached
        data = build()
        logger.debug(f"chart_built: user={self.context.user_id} size={len(data)}")
        self.cache.store(props, data)
        return data


class TagReportService(_CachedReport):
    """Charts for the tag report: a per-period income/expense chart plus pies."""

    def _expenses(
        self, accounts: list, tags: list, start: date, end: date
    ) -> list[CollectedTransaction]:
        journal_filter = (
            JournalFilter()
            .with_accounts(accounts)
            .with_range(start, end)
            .with_types(EXPENSE_TYPES)
            .with_tags(tags)
            .exclude_internal()
            .outflows_only()
        )
        return self.collector.collect(journal_filter)

    def _income(
        self, accounts: list, tags: list, start: date, end: date
    ) -> list[CollectedTransaction]:
        journal_filter = (
            JournalFilter()
            .with_accounts(accounts)
            .with_range(start, end)
            .with_types(INCOME_TYPES)
            .with_tags(tags)
            .exclude_internal()
            .inflows_only()
        )
        return self.collector.collect(journal_filter)

    def main_chart(
        self,
        accounts: Iterable[Account],
        tags: Iterable[Tag],
        start: date,
        end: date,
        granularity: Optional[ChartGranularity] = None,
    ) -> dict[str, object]:
        accounts, tags = list(accounts), list(tags)
        granularity = granularity or preferred_granularity(start, end)
        props = self._properties(
            "chart.tag.report.main", accounts, tags, start, end, granularity
        )
        return self._cached(
            props, lambda: self._build_main_chart(accounts, tags, start, end, granularity)
        )

    def _build_main_chart(
        self,
        accounts: list[Account],
        tags: list[Tag],
        start: date,
        end: date,
        granularity: ChartGranularity,
    ) -> dict[str, object]:
        series: dict[str, ChartSeries] = {}
        for tag in tags:
            series[f"{tag.id}-in"] = ChartSeries(
                label=f"{tag.tag} (income)", type="bar", y_axis_id="y-axis-0"
            )
            series[f"{tag.id}-out"] = ChartSeries(
                label=f"{tag.tag} (expenses)", type="bar", y_axis_id="y-axis-0"
            )
            series[f"{tag.id}-total-in"] = ChartSeries(
                label=f"{tag.tag} (sum of income)",
                type="line",
                fill=False,
                y_axis_id="y-axis-1",
            )
            series[f"{tag.id}-total-out"] = ChartSeries(
                label=f"{tag.tag} (sum of expenses)",
                type="line",
                fill=False,
                y_axis_id="y-axis-1",
            )

        sum_of_income: dict[int, Decimal] = {tag.id: Decimal("0") for tag in tags}
        sum_of_expense: dict[int, Decimal] = {tag.id: Decimal("0") for tag in tags}
        for current_start, current_end in iter_subperiods(start, end, granularity):
            expenses = group_by_tag(self._expenses(accounts, tags, current_start, current_end))
            income = group_by_tag(self._income(accounts, tags, current_start, current_end))
            label = period_label(current_start, granularity)
            for tag in tags:
                key = BucketKey.tag(tag.id)
                current_income = income.get(key, Decimal("0"))
                current_expense = expenses.get(key, Decimal("0"))
                sum_of_income[tag.id] += current_income
                sum_of_expense[tag.id] += current_expense

                series[f"{tag.id}-in"].entries[label] = current_income
                series[f"{tag.id}-out"].entries[label] = current_expense
                series[f"{tag.id}-total-in"].entries[label] = sum_of_income[tag.id]
                series[f"{tag.id}-total-out"].entries[label] = sum_of_expense[tag.id]

        # remove empty series to prevent cluttering
        kept = drop_empty_series(series)
        return self.generator.multi_set(kept.values())

    def _pie(
        self,
        name: str,
        direction: str,
        key_func: KeyFunc,
        accounts: Iterable[Account],
        tags: Iterable[Tag],
        start: date,
        end: date,
        others: bool,
    ) -> dict[str, object]:
        accounts, tags = list(accounts), list(tags)
        props = self._properties(name, direction, accounts, tags, start, end, others)

        def build() -> dict[str, object]:
            collect = self._expenses if direction == "expense" else self._income
            rows = collect(accounts, tags, start, end)
            grouped = group_by(rows, key_func)
            if key_func is tag_keys:
                selected = {BucketKey.tag(tag.id) for tag in tags}
                grouped = {k: v for k, v in grouped.items() if k in selected}
            entries = {
                self._bucket_label(key): amount for key, amount in grouped.items()
            }
            if others:
                everything = self._everything(direction, accounts, start, end)
                # tag buckets fan out, so subtract each journal once
                entries[OTHERS_LABEL] = everything - decimal_sum(r.amount for r in rows)
            return self.generator.pie_chart(entries)

        return self._cached(props, build)

    def _everything(
        self, direction: str, accounts: list, start: date, end: date
    ) -> Decimal:
        journal_filter = (
            JournalFilter()
            .with_accounts(accounts)
            .with_range(start, end)
            .exclude_internal()
        )
        if direction == "expense":
            journal_filter = journal_filter.with_types(EXPENSE_TYPES).outflows_only()
        else:
            journal_filter = journal_filter.with_types(INCOME_TYPES).inflows_only()
        return self.collector.sum(journal_filter)

    def _bucket_label(self, key: BucketKey) -> str:
        if key.kind == BucketKind.none:
            return "(none)"
        if key.kind == BucketKind.account:
            return AccountService(self.session, self.context).get(key.id).name
        if key.kind == BucketKind.budget:
            return BudgetService(self.session, self.context).find(key.id).name or "(none)"
        if key.kind == BucketKind.category:
            categories = CategoryService(self.session, self.context).get_many([key.id])
            return categories[0].name if categories else "(none)"
        return TagService(self.session, self.context).find(key.id).tag or "(none)"

    def account_expense(self, accounts, tags, start, end, others=False):
        return self._pie(
            "chart.tag.report.account-expense",
            "expense",
            opposing_account_keys,
            accounts,
            tags,
            start,
            end,
            others,
        )

    def account_income(self, accounts, tags, start, end, others=False):
        return self._pie(
            "chart.tag.report.account-income",
            "income",
            opposing_account_keys,
            accounts,
            tags,
            start,
            end,
            others,
        )

    def budget_expense(self, accounts, tags, start, end):
        return self._pie(
            "chart.tag.report.budget-expense",
            "expense",
            budget_keys,
            accounts,
            tags,
            start,
            end,
            False,
        )

    def category_expense(self, accounts, tags, start, end):
        return self._pie(
            "chart.tag.report.category-expense",
            "expense",
            category_keys,
            accounts,
            tags,
            start,
            end,
            False,
        )

    def tag_expense(self, accounts, tags, start, end, others=False):
        return self._pie(
            "chart.tag.report.tag-expense",
            "expense",
            tag_keys,
            accounts,
            tags,
            start,
            end,
            others,
        )

    def tag_income(self, accounts, tags, start, end, others=False):
        return self._pie(
            "chart.tag.report.tag-income",
            "income",
            tag_keys,
            accounts,
            tags,
            start,
            end,
            others,
        )

    def account_balance(self, accounts, tags, start, end):
        """Net flow per selected account for the selected tags."""
        accounts, tags = list(accounts), list(tags)
        props = self._properties("chart.tag.report.account", accounts, tags, start, end)

        def build() -> dict[str, object]:
            rows = self.collector.collect(
                JournalFilter()
                .with_accounts(accounts)
                .with_range(start, end)
                .with_tags(tags)
            )
            grouped = group_by(rows, account_keys)
            names = {BucketKey.account(a.id): a.name for a in accounts}
            return self.generator.pie_chart(
                {names.get(k) or self._bucket_label(k): v for k, v in grouped.items()}
            )

        return self._cached(props, build)


class BudgetReportService(_CachedReport):
    def period_chart(
        self,
        budgets: Iterable[Budget],
        accounts: Iterable[Account],
        start: date,
        end: date,
        granularity: Optional[ChartGranularity] = None,
    ) -> dict[str, object]:
        budgets, accounts = list(budgets), list(accounts)
        granularity = granularity or preferred_granularity(start, end)
        props = self._properties(
            "chart.budget.report.period", budgets, accounts, start, end, granularity
        )

        def build() -> dict[str, object]:
            repository = BudgetService(self.session, self.context)
            report = repository.budget_period_report(
                budgets, accounts, start, end, granularity
            )
            no_budget = repository.no_budget_period_report(
                accounts, start, end, granularity
            )
            periods = [
                (period_key(s, granularity), period_label(s, granularity))
                for s, _ in iter_subperiods(start, end, granularity)
            ]
            keys = [key for key, _ in periods]

            series: dict[str, ChartSeries] = {}
            for budget in budgets:
                amounts = repository.filter_amounts(report, budget.id, keys)
                series[str(BucketKey.budget(budget.id))] = ChartSeries(
                    label=budget.name,
                    type="bar",
                    entries={label: amounts[key] for key, label in periods},
                )
            no_budget_amounts = filter_amounts(no_budget.entries, keys)
            series[str(no_budget.key)] = ChartSeries(
                label=NO_BUDGET_LABEL,
                type="bar",
                entries={label: no_budget_amounts[key] for key, label in periods},
            )
            kept = drop_empty_series(series)
            return self.generator.multi_set(kept.values())

        return self._cached(props, build)
