import datetime as dt
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import AccountType, RepeatFrequency, TransactionType


class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(default=Decimal("0"), max_digits=30, decimal_places=12)
    repeat_freq: Optional[RepeatFrequency] = None
    repeats: bool = False


class BudgetUpdateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    active: bool = True


class BudgetLimitIn(BaseModel):
    start: date
    end: date
    amount: Decimal = Field(..., max_digits=30, decimal_places=12)

    @model_validator(mode="after")
    def _check_range(self) -> "BudgetLimitIn":
        if self.start > self.end:
            raise ValueError("Start date must be before end date")
        return self


class LimitIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    budget_id: int
    startdate: date
    period: RepeatFrequency
    amount: Decimal = Field(..., gt=0, max_digits=30, decimal_places=12)
    repeats: bool = False


class AvailableBudgetIn(BaseModel):
    currency_code: str = Field(..., min_length=3, max_length=3)
    start: date
    end: date
    amount: Decimal = Field(..., ge=0, max_digits=30, decimal_places=12)


class TagIn(BaseModel):
    tag: str = Field(..., min_length=1, max_length=255)
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=1024)


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: AccountType


class TransactionIn(BaseModel):
    account_id: int
    amount: Decimal = Field(..., max_digits=30, decimal_places=12)
    description: Optional[str] = None


class JournalIn(BaseModel):
    type: TransactionType
    date: dt.date
    description: str = Field(..., min_length=1, max_length=1024)
    budget_id: Optional[int] = None
    category_id: Optional[int] = None
    tags: list[str] = Field(default_factory=list)
    transactions: list[TransactionIn] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_balanced(self) -> "JournalIn":
        if len(self.transactions) > 1:
            total = sum((t.amount for t in self.transactions), Decimal("0"))
            if total != 0:
                raise ValueError("Transactions of a journal must balance to zero")
        return self
