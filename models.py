import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from database import Base


def canonical_decimal(value: object) -> str:
    """Render an amount as a plain decimal string without exponent or trailing zeros."""
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    if amount == 0:
        return "0"
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


class DecimalString(TypeDecorator):
    """Stores ``Decimal`` values as canonical strings so no backend rounds them."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return canonical_decimal(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class TransactionType(str, Enum):
    withdrawal = "withdrawal"
    deposit = "deposit"
    transfer = "transfer"
    opening_balance = "opening_balance"


class AccountType(str, Enum):
    asset = "asset"
    expense = "expense"
    revenue = "revenue"
    cash = "cash"


class RepeatFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    half_year = "half-year"
    yearly = "yearly"


REPEAT_FREQUENCY_ENUM = SAEnum(
    RepeatFrequency,
    name="repeatfrequency",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class TransactionCurrency(Base, TimestampMixin):
    __tablename__ = "transaction_currencies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(3), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    symbol: Mapped[str] = mapped_column(String(8), nullable=False)
    decimal_places: Mapped[int] = mapped_column(Integer, nullable=False, default=2)


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    __table_args__ = (Index("ix_accounts_user_type", "user_id", "type"),)


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_budget_user_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    limits: Mapped[list["BudgetLimit"]] = relationship(
        "BudgetLimit",
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetLimit.start_date",
    )
    journals: Mapped[list["TransactionJournal"]] = relationship(
        "TransactionJournal", back_populates="budget"
    )


class BudgetLimit(Base, TimestampMixin):
    __tablename__ = "budget_limits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalString(40), nullable=False)
    repeat_freq: Mapped[Optional[RepeatFrequency]] = mapped_column(
        REPEAT_FREQUENCY_ENUM
    )
    repeats: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="limits")

    __table_args__ = (
        UniqueConstraint(
            "budget_id", "start_date", "end_date", name="uq_budget_limit_period"
        ),
        Index("ix_budget_limits_dates", "start_date", "end_date"),
    )


class AvailableBudget(Base, TimestampMixin):
    __tablename__ = "available_budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_currency_id: Mapped[int] = mapped_column(
        ForeignKey("transaction_currencies.id"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalString(40), nullable=False)

    transaction_currency: Mapped["TransactionCurrency"] = relationship(
        "TransactionCurrency"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "transaction_currency_id",
            "start_date",
            "end_date",
            name="uq_available_budget_user_currency_period",
        ),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


tag_transaction_journal = Table(
    "tag_transaction_journal",
    Base.metadata,
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
    Column(
        "transaction_journal_id",
        Integer,
        ForeignKey("transaction_journals.id"),
        primary_key=True,
    ),
)


class Tag(Base, TimestampMixin):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("user_id", "tag", name="uq_tag_user_tag"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    tag: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[Optional[dt.date]] = mapped_column(Date)
    description: Mapped[Optional[str]] = mapped_column(Text)

    journals: Mapped[list["TransactionJournal"]] = relationship(
        "TransactionJournal", secondary=tag_transaction_journal, back_populates="tags"
    )


class TransactionJournal(Base, TimestampMixin):
    __tablename__ = "transaction_journals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(1024), nullable=False)
    budget_id: Mapped[Optional[int]] = mapped_column(ForeignKey("budgets.id"))
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    transaction_currency_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transaction_currencies.id")
    )

    budget: Mapped[Optional["Budget"]] = relationship(
        "Budget", back_populates="journals"
    )
    category: Mapped[Optional["Category"]] = relationship("Category")
    tags: Mapped[list["Tag"]] = relationship(
        "Tag", secondary=tag_transaction_journal, back_populates="journals"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="journal",
        cascade="all, delete-orphan",
        order_by="Transaction.id",
    )

    __table_args__ = (
        Index("ix_journals_user_date", "user_id", "date"),
        Index("ix_journals_user_type_date", "user_id", "type", "date"),
        Index("ix_journals_budget", "budget_id"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_journal_id: Mapped[int] = mapped_column(
        ForeignKey("transaction_journals.id"), nullable=False
    )
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalString(40), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(1024))

    journal: Mapped["TransactionJournal"] = relationship(
        "TransactionJournal", back_populates="transactions"
    )
    account: Mapped["Account"] = relationship("Account", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_journal", "transaction_journal_id"),
        Index("ix_transactions_account", "account_id"),
    )
