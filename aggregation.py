"""Grouping and exact summation of collected transactions into buckets.

A bucket is identified by a :class:`BucketKey`, a tagged variant of
(kind, id) so that budget 3 and tag 3 never collide and "no budget" is a
distinct value rather than a magic string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Mapping, Optional, TypeVar

from collector import CollectedTransaction
from models import canonical_decimal
from periods import ChartGranularity, period_key

ZERO = Decimal("0")


class BucketKind(str, Enum):
    budget = "budget"
    tag = "tag"
    category = "category"
    account = "account"
    none = "none"


@dataclass(frozen=True)
class BucketKey:
    kind: BucketKind
    id: Optional[int] = None

    @classmethod
    def none(cls) -> BucketKey:
        return cls(BucketKind.none)

    @classmethod
    def budget(cls, budget_id: Optional[int]) -> BucketKey:
        return cls.none() if budget_id is None else cls(BucketKind.budget, budget_id)

    @classmethod
    def tag(cls, tag_id: int) -> BucketKey:
        return cls(BucketKind.tag, tag_id)

    @classmethod
    def category(cls, category_id: Optional[int]) -> BucketKey:
        if category_id is None:
            return cls.none()
        return cls(BucketKind.category, category_id)

    @classmethod
    def account(cls, account_id: Optional[int]) -> BucketKey:
        return cls.none() if account_id is None else cls(BucketKind.account, account_id)

    def __str__(self) -> str:
        if self.kind == BucketKind.none:
            return "none"
        return f"{self.kind.value}-{self.id}"


def decimal_sum(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for value in values:
        total += value
    return total


KeyFunc = Callable[[CollectedTransaction], Iterable[BucketKey]]


def tag_keys(row: CollectedTransaction) -> list[BucketKey]:
    # fan-out: the full amount goes to every tag on the journal
    return [BucketKey.tag(tag_id) for tag_id in row.tag_ids]


def budget_keys(row: CollectedTransaction) -> list[BucketKey]:
    return [BucketKey.budget(row.budget_id)]


def category_keys(row: CollectedTransaction) -> list[BucketKey]:
    return [BucketKey.category(row.category_id)]


def account_keys(row: CollectedTransaction) -> list[BucketKey]:
    return [BucketKey.account(row.account_id)]


def opposing_account_keys(row: CollectedTransaction) -> list[BucketKey]:
    return [BucketKey.account(row.opposing_account_id)]


def group_by(
    rows: Iterable[CollectedTransaction], key_func: KeyFunc
) -> dict[BucketKey, Decimal]:
    grouped: dict[BucketKey, Decimal] = {}
    for row in rows:
        for key in key_func(row):
            grouped[key] = grouped.get(key, ZERO) + row.amount
    return grouped


def group_by_tag(rows: Iterable[CollectedTransaction]) -> dict[BucketKey, Decimal]:
    return group_by(rows, tag_keys)


def group_by_budget(rows: Iterable[CollectedTransaction]) -> dict[BucketKey, Decimal]:
    return group_by(rows, budget_keys)


def group_by_category(
    rows: Iterable[CollectedTransaction],
) -> dict[BucketKey, Decimal]:
    return group_by(rows, category_keys)


def group_by_account(rows: Iterable[CollectedTransaction]) -> dict[BucketKey, Decimal]:
    return group_by(rows, account_keys)


def group_by_opposing_account(
    rows: Iterable[CollectedTransaction],
) -> dict[BucketKey, Decimal]:
    return group_by(rows, opposing_account_keys)


@dataclass
class BucketReport:
    key: BucketKey
    name: str
    entries: dict[str, Decimal] = field(default_factory=dict)
    total: Decimal = ZERO

    def add(self, period: str, amount: Decimal) -> None:
        self.entries[period] = self.entries.get(period, ZERO) + amount
        self.total += amount

    def as_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "sum": canonical_decimal(self.total),
            "entries": {k: canonical_decimal(v) for k, v in self.entries.items()},
        }


def period_report(
    rows: Iterable[CollectedTransaction],
    buckets: Mapping[BucketKey, str],
    granularity: ChartGranularity,
    key_func: KeyFunc,
) -> dict[BucketKey, BucketReport]:
    """Sum ``rows`` per bucket and per sub-period key.

    Every bucket in ``buckets`` is present in the result, even when nothing
    matched it. Rows whose keys are not in ``buckets`` are ignored.
    """
    report = {key: BucketReport(key, name) for key, name in buckets.items()}
    for row in rows:
        label = period_key(row.date, granularity)
        for key in key_func(row):
            bucket = report.get(key)
            if bucket is not None:
                bucket.add(label, row.amount)
    return report


def filter_amounts(
    entries: Mapping[str, Decimal], periods: Iterable[str]
) -> dict[str, Decimal]:
    """Project ``entries`` onto ``periods`` in order, padding gaps with zero."""
    return {period: entries.get(period, ZERO) for period in periods}


S = TypeVar("S")


def drop_empty_series(
    series: Mapping[str, S],
    entries: Callable[[S], Mapping[str, Decimal]] = lambda s: s.entries,
) -> dict[str, S]:
    """Drop series whose entries add up to exactly zero.

    When that would drop every series, all of them are kept so the chart
    still has something to draw.
    """
    kept = {
        key: value
        for key, value in series.items()
        if decimal_sum(entries(value).values()) != 0
    }
    if not kept:
        return dict(series)
    return kept
