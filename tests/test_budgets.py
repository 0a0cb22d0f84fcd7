from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from aggregation import BucketKey
from context import UserContext
from database import Base
from models import AccountType, BudgetLimit, RepeatFrequency, TransactionJournal, TransactionType
from periods import ChartGranularity
from schemas import AccountIn, BudgetIn, BudgetUpdateIn, JournalIn, TransactionIn
from services import AccountService, BudgetService, CurrencyService, JournalService


def _limit_count(session: Session) -> int:
    return session.scalar(select(func.count(BudgetLimit.id)))


def test_update_limit_amount_creates_updates_and_deletes() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        service = BudgetService(session, context)
        budget = service.store(BudgetIn(name="Groceries"))
        start, end = date(2017, 1, 1), date(2017, 1, 31)

        created = service.update_limit_amount(budget, start, end, Decimal("100"))
        assert created.id is not None
        assert created.amount == Decimal("100")

        updated = service.update_limit_amount(budget, start, end, Decimal("250.50"))
        assert updated.id == created.id
        assert updated.amount == Decimal("250.50")
        assert _limit_count(session) == 1

        removed = service.update_limit_amount(budget, start, end, Decimal("0"))
        assert removed.id is None
        assert _limit_count(session) == 0
        assert context.messages == []


def test_zero_amount_without_existing_row_is_stored_and_cleaned_up() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        service = BudgetService(session, context)
        budget = service.store(BudgetIn(name="Groceries"))

        limit = service.update_limit_amount(
            budget, date(2017, 1, 1), date(2017, 1, 31), Decimal("0")
        )
        assert limit.id is not None
        assert _limit_count(session) == 1

        assert service.cleanup_budgets() == 1
        assert _limit_count(session) == 0


def test_update_limit_amount_rejects_foreign_budget() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        foreign = BudgetService(session, UserContext(2)).store(BudgetIn(name="Theirs"))
        context = UserContext(1)

        limit = BudgetService(session, context).update_limit_amount(
            foreign, date(2017, 1, 1), date(2017, 1, 31), Decimal("10")
        )

        assert limit.id is None
        assert context.errors() == ["No such budget."]
        assert _limit_count(session) == 0


def test_budget_limits_overlap_is_boundary_inclusive() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        service = BudgetService(session, context)
        budget = service.store(BudgetIn(name="Groceries"))
        january = service.update_limit_amount(
            budget, date(2017, 1, 1), date(2017, 1, 31), Decimal("1")
        )
        february = service.update_limit_amount(
            budget, date(2017, 2, 1), date(2017, 2, 28), Decimal("2")
        )
        service.update_limit_amount(
            budget, date(2017, 3, 1), date(2017, 3, 31), Decimal("3")
        )
        yearly = service.update_limit_amount(
            budget, date(2016, 12, 1), date(2017, 12, 31), Decimal("4")
        )

        limits = service.budget_limits(budget, date(2017, 1, 31), date(2017, 2, 1))
        assert [limit.id for limit in limits] == [february.id, january.id, yearly.id]

        inside = service.all_budget_limits(date(2017, 6, 1), date(2017, 6, 30))
        assert [limit.id for limit in inside] == [yearly.id]


def test_store_limit_snaps_to_half_year() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        service = BudgetService(session, context)
        budget = service.store(BudgetIn(name="Holidays"))

        limit = service.store_limit(
            {
                "budget_id": budget.id,
                "startdate": "2017-08-14",
                "period": "half-year",
                "amount": "600",
                "repeats": True,
            }
        )

        assert limit.start_date == date(2017, 7, 1)
        assert limit.end_date == date(2017, 12, 31)
        assert limit.repeat_freq == RepeatFrequency.half_year
        assert limit.repeats is True


def test_store_limit_reports_problems_as_messages() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        service = BudgetService(session, context)
        budget = service.store(BudgetIn(name="Holidays"))
        payload = {
            "budget_id": budget.id,
            "startdate": "2017-03-14",
            "period": "monthly",
            "amount": "50",
        }

        assert service.store_limit(payload).id is not None
        assert service.store_limit(payload).id is None
        assert service.store_limit({**payload, "budget_id": 999}).id is None
        assert service.store_limit({**payload, "amount": "0"}).id is None

        errors = context.errors()
        assert errors[0] == "There already is an entry for these parameters."
        assert errors[1] == "No such budget."
        assert errors[2].startswith("Could not save: amount")
        assert _limit_count(session) == 1


def test_store_with_amount_creates_snapped_limit() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        service = BudgetService(session, context)
        budget = service.store(
            BudgetIn(
                name="Groceries",
                amount=Decimal("300"),
                repeat_freq=RepeatFrequency.quarterly,
            ),
            today=date(2017, 5, 17),
        )

        limits = service.budget_limits(budget, date(2017, 1, 1), date(2017, 12, 31))
        assert [(l.start_date, l.end_date) for l in limits] == [
            (date(2017, 4, 1), date(2017, 6, 30))
        ]


def test_update_and_destroy_budget() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        service = BudgetService(session, context)
        accounts = AccountService(session, context)
        checking = accounts.create(AccountIn(name="Checking", type=AccountType.asset))
        shop = accounts.create(AccountIn(name="Shop", type=AccountType.expense))
        budget = service.store(BudgetIn(name="Groceries"))
        service.update_limit_amount(
            budget, date(2017, 1, 1), date(2017, 1, 31), Decimal("10")
        )
        journal = JournalService(session, context).create(
            JournalIn(
                type=TransactionType.withdrawal,
                date=date(2017, 1, 5),
                description="Market",
                budget_id=budget.id,
                transactions=[
                    TransactionIn(account_id=checking.id, amount=Decimal("-10")),
                    TransactionIn(account_id=shop.id, amount=Decimal("10")),
                ],
            )
        )

        service.update(budget, BudgetUpdateIn(name="Food", active=False))
        assert [b.name for b in service.inactive_budgets()] == ["Food"]
        assert service.active_budgets() == []

        budget_id = budget.id
        service.destroy(budget)

        assert service.find(budget_id).id is None
        assert _limit_count(session) == 0
        assert session.get(TransactionJournal, journal.id).budget_id is None


def test_spent_and_period_reports() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        service = BudgetService(session, context)
        accounts = AccountService(session, context)
        checking = accounts.create(AccountIn(name="Checking", type=AccountType.asset))
        shop = accounts.create(AccountIn(name="Shop", type=AccountType.expense))
        groceries = service.store(BudgetIn(name="Groceries"))
        rent = service.store(BudgetIn(name="Rent"))
        journals = JournalService(session, context)
        for day, amount, budget_id in [
            (date(2017, 1, 5), "12.25", groceries.id),
            (date(2017, 2, 5), "7.75", groceries.id),
            (date(2017, 2, 9), "3", None),
        ]:
            journals.create(
                JournalIn(
                    type=TransactionType.withdrawal,
                    date=day,
                    description="Shopping",
                    budget_id=budget_id,
                    transactions=[
                        TransactionIn(account_id=checking.id, amount=-Decimal(amount)),
                        TransactionIn(account_id=shop.id, amount=Decimal(amount)),
                    ],
                )
            )
        start, end = date(2017, 1, 1), date(2017, 3, 31)

        assert service.spent_in_period([groceries], [checking], start, end) == Decimal("-20")
        assert service.spent_in_period_without_budget([checking], start, end) == Decimal("-3")

        report = service.budget_period_report(
            [groceries, rent], [checking], start, end, ChartGranularity.month
        )
        assert report[BucketKey.budget(groceries.id)].entries == {
            "2017-01": Decimal("-12.25"),
            "2017-02": Decimal("-7.75"),
        }
        assert report[BucketKey.budget(rent.id)].total == 0
        assert service.filter_amounts(report, groceries.id, ["2017-02", "2017-03"]) == {
            "2017-02": Decimal("-7.75"),
            "2017-03": Decimal("0"),
        }

        no_budget = service.no_budget_period_report([checking], start, end)
        assert no_budget.key == BucketKey.none()
        assert no_budget.total == Decimal("-3")


def test_available_budget_round_trip() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        service = BudgetService(session, context)
        euro = CurrencyService(session).get_or_create("eur")
        start, end = date(2017, 1, 1), date(2017, 1, 31)

        assert service.available_budget(euro, start, end) == Decimal("0")
        service.set_available_budget(euro, start, end, Decimal("1500"))
        service.set_available_budget(euro, start, end, Decimal("1750.25"))

        assert euro.code == "EUR"
        assert service.available_budget(euro, start, end) == Decimal("1750.25")


def test_first_use_date_caps_at_start_of_year() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    context = UserContext(1)

    with Session(engine) as session:
        service = BudgetService(session, context)
        budget = service.store(BudgetIn(name="Groceries"))

        assert service.first_use_date(budget, today=date(2017, 5, 1)) == date(2017, 1, 1)
