from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, List, Literal, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    PlainSerializer,
    constr,
)


def naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def lowercase(value):
    return value.strip().lower() if isinstance(value, str) else value


# Keeps stored cents, and sums of them, inside a 64-bit integer column
MAX_AMOUNT = Decimal("999999999999.99")


def to_cents(value: Decimal) -> Decimal:
    value = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if value <= 0:
        raise ValueError("amount must be greater than 0")
    return value


UtcDateTime = Annotated[datetime, AfterValidator(naive_utc)]


# Decimal in, JSON number out
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]
PositiveAmount = Annotated[
    Decimal,
    Field(gt=0, le=MAX_AMOUNT),
    AfterValidator(to_cents),
    PlainSerializer(float, return_type=float, when_used="json"),
]
NonEmpty = constr(strip_whitespace=True, min_length=1)
CategoryType = Annotated[Literal["income", "expense"], BeforeValidator(lowercase)]
BudgetStatusName = Literal["Safe", "Near Limit", "Over Budget"]


# -- auth -------------------------------------------------------------------


class UserCreate(BaseModel):
    name: NonEmpty
    email: EmailStr
    password: constr(min_length=6)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserUpdate(BaseModel):
    name: Optional[NonEmpty] = None
    email: Optional[EmailStr] = None


class PasswordChange(BaseModel):
    old_password: str
    new_password: constr(min_length=6)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# -- categories -------------------------------------------------------------


class CategoryCreate(BaseModel):
    name: NonEmpty
    type: CategoryType


class CategoryUpdate(BaseModel):
    name: Optional[NonEmpty] = None
    type: Optional[CategoryType] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: str


# -- transactions -----------------------------------------------------------


class TransactionCreate(BaseModel):
    category_id: int
    amount: PositiveAmount
    date: UtcDateTime
    note: NonEmpty


class TransactionUpdate(BaseModel):
    category_id: Optional[int] = None
    amount: Optional[PositiveAmount] = None
    date: Optional[UtcDateTime] = None
    note: Optional[NonEmpty] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    category_id: int
    amount: Money
    date: datetime
    note: str
    created_at: datetime
    updated_at: datetime


class TransactionListItem(BaseModel):
    id: int
    amount: Money
    note: str
    date: datetime
    category_id: int
    category_name: str
    category_type: str


class TransactionCreated(BaseModel):
    transaction: TransactionOut
    budget_status: BudgetStatusName
    total_expense: Money


# -- budgets ----------------------------------------------------------------


class BudgetCreate(BaseModel):
    category_id: int
    limit_amount: PositiveAmount
    start_date: date
    end_date: date


class BudgetUpdate(BaseModel):
    limit_amount: Optional[PositiveAmount] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    category_id: int
    limit_amount: Money
    start_date: date
    end_date: date
    created_at: datetime
    updated_at: datetime
    spent_amount: Optional[Money] = None
    status: Optional[BudgetStatusName] = None


class BudgetStatusItem(BaseModel):
    budget_id: int
    category_name: Optional[str]
    limit_amount: Money
    total_expense: Money
    status: BudgetStatusName


class BudgetDetailOut(BaseModel):
    budget: BudgetOut
    category_name: Optional[str]
    transactions: List[TransactionOut]
    total_expense: Money
    status: BudgetStatusName


class BudgetSummaryOut(BaseModel):
    total_limit: Money
    total_expense: Money
    percent_used: float


# -- notifications ----------------------------------------------------------


class NotificationCreate(BaseModel):
    title: NonEmpty
    message: NonEmpty


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    title: str
    message: str
    created_at: datetime


# -- reports ----------------------------------------------------------------


class ReportSummary(BaseModel):
    total_income: Money
    total_expense: Money
    balance: Money


class MonthlyTotals(BaseModel):
    month: str
    total_income: Money
    total_expense: Money


class CategoryExpense(BaseModel):
    category_name: str
    total_expense: Money
