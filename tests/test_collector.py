from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from collector import JournalCollector, JournalFilter
from context import UserContext
from database import Base
from models import AccountType, TransactionType
from schemas import AccountIn, JournalIn, TransactionIn
from services import AccountService, JournalService, TagService


def _journal(session, context, kind, day, legs, tags=(), budget_id=None):
    return JournalService(session, context).create(
        JournalIn(
            type=kind,
            date=day,
            description=f"{kind.value} on {day}",
            budget_id=budget_id,
            tags=list(tags),
            transactions=[
                TransactionIn(account_id=account.id, amount=Decimal(amount))
                for account, amount in legs
            ],
        )
    )


def _accounts(session, context):
    service = AccountService(session, context)
    return (
        service.create(AccountIn(name="Checking", type=AccountType.asset)),
        service.create(AccountIn(name="Savings", type=AccountType.asset)),
        service.create(AccountIn(name="Shop", type=AccountType.expense)),
    )


def test_default_selects_asset_accounts_only() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        checking, _, shop = _accounts(session, context)
        _journal(
            session,
            context,
            TransactionType.withdrawal,
            date(2017, 1, 5),
            [(checking, "-10"), (shop, "10")],
        )

        rows = JournalCollector(session, context).collect(JournalFilter())

        assert [(r.account_id, r.amount) for r in rows] == [(checking.id, Decimal("-10"))]
        assert rows[0].opposing_account_id == shop.id


def test_internal_transfers_are_excluded_between_selected_accounts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        checking, savings, shop = _accounts(session, context)
        _journal(
            session,
            context,
            TransactionType.transfer,
            date(2017, 1, 5),
            [(checking, "-50"), (savings, "50")],
        )
        _journal(
            session,
            context,
            TransactionType.withdrawal,
            date(2017, 1, 6),
            [(checking, "-10"), (shop, "10")],
        )
        collector = JournalCollector(session, context)

        both = JournalFilter().with_accounts([checking, savings])
        assert collector.sum(both.exclude_internal()) == Decimal("-10")
        assert collector.sum(both) == Decimal("-10")
        only_checking = JournalFilter().with_accounts([checking]).exclude_internal()
        assert collector.sum(only_checking) == Decimal("-60")


def test_internal_transfers_are_excluded_without_explicit_accounts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        checking, savings, shop = _accounts(session, context)
        _journal(
            session,
            context,
            TransactionType.transfer,
            date(2017, 1, 5),
            [(checking, "-50"), (savings, "50")],
        )
        _journal(
            session,
            context,
            TransactionType.withdrawal,
            date(2017, 1, 6),
            [(checking, "-10"), (shop, "10")],
        )
        collector = JournalCollector(session, context)

        rows = collector.collect(JournalFilter().exclude_internal())

        assert [(r.account_id, r.amount) for r in rows] == [(checking.id, Decimal("-10"))]
        assert collector.sum(JournalFilter().outflows_only()) == Decimal("-60")


def test_sign_range_and_tag_filters() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        checking, savings, shop = _accounts(session, context)
        _journal(
            session,
            context,
            TransactionType.withdrawal,
            date(2017, 1, 5),
            [(checking, "-10"), (shop, "10")],
            tags=["food"],
        )
        _journal(
            session,
            context,
            TransactionType.withdrawal,
            date(2017, 2, 5),
            [(checking, "-20"), (shop, "20")],
        )
        _journal(
            session,
            context,
            TransactionType.deposit,
            date(2017, 1, 31),
            [(shop, "-3"), (checking, "3")],
            tags=["food"],
        )
        collector = JournalCollector(session, context)
        january = JournalFilter().with_accounts([checking]).with_range(
            date(2017, 1, 1), date(2017, 1, 31)
        )

        assert collector.sum(january) == Decimal("-7")
        assert collector.sum(january.outflows_only()) == Decimal("-10")
        assert collector.sum(january.inflows_only()) == Decimal("3")
        food = TagService(session, context).find_by_tag("food")
        tagged = collector.collect(january.with_tags([food]))
        assert [r.amount for r in tagged] == [Decimal("-10"), Decimal("3")]
        assert {r.tag_ids for r in tagged} == {(food.id,)}
        withdrawals = JournalFilter().with_types([TransactionType.withdrawal])
        assert collector.sum(withdrawals.with_accounts([checking])) == Decimal("-30")


def test_other_users_rows_are_invisible() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    mine, theirs = UserContext(1), UserContext(2)

    with Session(engine) as session:
        checking, _, shop = _accounts(session, theirs)
        _journal(
            session,
            theirs,
            TransactionType.withdrawal,
            date(2017, 1, 5),
            [(checking, "-10"), (shop, "10")],
        )

        assert JournalCollector(session, mine).collect(JournalFilter()) == []
        assert JournalCollector(session, mine).sum(
            JournalFilter().with_accounts([checking])
        ) == Decimal("0")
