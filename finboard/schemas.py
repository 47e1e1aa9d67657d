from __future__ import annotations

import datetime as dt
from datetime import datetime
from typing import Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from .models import (
    AccountType,
    Currency,
    PaymentStatus,
    RequestStatus,
    SplitType,
    SubscriptionStatus,
    TxnType,
)
from .utils.dates import get_month_key

MONTH_KEY_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


# ===== Users / session =====

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    display_name: str | None = None
    preferred_currency: Currency
    email_verified: bool
    has_completed_onboarding: bool
    created_at: datetime


class UserUpdate(BaseModel):
    display_name: str | None = Field(default=None, max_length=100)
    preferred_currency: Currency | None = None
    has_completed_onboarding: bool | None = None


class CsrfTokenOut(BaseModel):
    csrf_token: str


class SubscriptionStateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: SubscriptionStatus | None
    can_access_app: bool
    days_remaining: int | None
    trial_ends_at: datetime | None = None
    current_period_end: datetime | None = None


# ===== Accounts =====

class AccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    type: AccountType = AccountType.SELF
    preferred_currency: Currency = Currency.USD
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    preferred_currency: Optional[Currency] = None
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    type: AccountType
    preferred_currency: Currency
    color: str | None = None
    icon: str | None = None
    description: str | None = None
    created_at: datetime


# ===== Categories =====

class CategoryCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    type: TxnType
    color: Optional[str] = Field(default=None, max_length=20)
    is_holding: bool = False

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    color: Optional[str] = Field(default=None, max_length=20)
    is_holding: Optional[bool] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TxnType
    color: str | None = None
    is_holding: bool
    is_archived: bool


class CategoryCreateResult(BaseModel):
    status: Literal["CREATED", "REACTIVATED", "DUPLICATE"]
    category: CategoryOut


class CategoryBulkItem(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    type: TxnType
    color: Optional[str] = Field(default=None, max_length=20)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v


class CategoryBulkCreate(BaseModel):
    categories: list[CategoryBulkItem] = Field(min_length=1)


class CategoryBulkResult(BaseModel):
    categories_created: int
    categories: list[CategoryOut]


# ===== Transactions =====

class TransactionCreate(BaseModel):
    account_id: int
    category_id: int
    type: TxnType
    amount: float = Field(ge=0.01)
    currency: Currency = Currency.USD
    date: dt.date
    description: Optional[str] = Field(default=None, max_length=240)
    is_recurring: bool = False
    recurring_template_id: Optional[int] = None
    is_mutual: bool = False


class TransactionUpdate(TransactionCreate):
    pass


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    category_id: int
    type: TxnType
    amount: float
    currency: Currency
    date: dt.date
    month: dt.date
    description: str | None = None
    is_recurring: bool
    recurring_template_id: int | None = None
    is_mutual: bool

    @computed_field  # type: ignore[misc]
    @property
    def month_key(self) -> str:
        return get_month_key(self.month)


class TransactionRequestCreate(BaseModel):
    to_id: int
    category_id: int
    amount: float = Field(ge=0.01)
    currency: Currency = Currency.USD
    date: dt.date
    description: Optional[str] = Field(default=None, max_length=240)


class TransactionRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    from_id: int
    to_id: int
    category_id: int
    amount: float
    currency: Currency
    date: dt.date
    description: str | None = None
    status: RequestStatus


class BalanceAdjustmentRequest(BaseModel):
    account_id: int
    target_balance: float
    currency: Currency = Currency.USD
    month_key: str = Field(pattern=MONTH_KEY_PATTERN)


class BalanceAdjustmentResult(BaseModel):
    adjustment: float
    transaction_id: int | None = None


# ===== Budgets / income goals =====

class BudgetUpsert(BaseModel):
    account_id: int
    category_id: int
    month_key: str = Field(pattern=MONTH_KEY_PATTERN)
    planned: float = Field(ge=0)
    currency: Currency = Currency.USD
    notes: Optional[str] = Field(default=None, max_length=240)


class QuickBudgetCreate(BaseModel):
    account_id: int
    category_id: int
    month_key: str = Field(pattern=MONTH_KEY_PATTERN)
    planned: float = Field(ge=0)
    currency: Currency = Currency.USD


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    category_id: int
    month: dt.date
    planned: float
    currency: Currency
    notes: str | None = None


class IncomeGoalUpsert(BaseModel):
    account_id: int
    month_key: str = Field(pattern=MONTH_KEY_PATTERN)
    amount: float = Field(ge=0)
    currency: Currency = Currency.USD


class IncomeGoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    month: dt.date
    amount: float
    currency: Currency


# ===== Recurring templates =====

class RecurringTemplateUpsert(BaseModel):
    id: Optional[int] = None
    account_id: int
    category_id: int
    type: TxnType
    amount: float = Field(ge=0.01)
    currency: Currency = Currency.USD
    day_of_month: int = Field(ge=1, le=31)
    description: Optional[str] = Field(default=None, max_length=240)
    start_month_key: str = Field(pattern=MONTH_KEY_PATTERN)
    end_month_key: Optional[str] = Field(default=None, pattern=MONTH_KEY_PATTERN)
    is_active: bool = True


class RecurringTemplateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    category_id: int
    type: TxnType
    amount: float
    currency: Currency
    day_of_month: int
    description: str | None = None
    start_month: dt.date
    end_month: dt.date | None = None
    is_active: bool


class RecurringToggle(BaseModel):
    is_active: bool


class RecurringApplyRequest(BaseModel):
    account_id: int
    month_key: str = Field(pattern=MONTH_KEY_PATTERN)
    template_ids: Optional[list[int]] = None


class RecurringApplyResult(BaseModel):
    created: int


# ===== Holdings =====

class HoldingCreate(BaseModel):
    account_id: int
    category_id: int
    symbol: str = Field(pattern=r"^[A-Z]{1,5}$")
    quantity: float = Field(ge=0.000001, le=999999999)
    average_cost: float = Field(ge=0)
    currency: Currency = Currency.USD
    notes: Optional[str] = Field(default=None, max_length=240)

    @field_validator("symbol", mode="before")
    @classmethod
    def _upper_symbol(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class HoldingUpdate(BaseModel):
    quantity: float = Field(ge=0.000001, le=999999999)
    average_cost: float = Field(ge=0)
    notes: Optional[str] = Field(default=None, max_length=240)


class HoldingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    category_id: int
    symbol: str
    quantity: float
    average_cost: float
    currency: Currency
    notes: str | None = None


class HoldingWithPriceOut(BaseModel):
    id: int
    account_id: int
    account_name: str
    category_id: int
    category_name: str
    symbol: str
    quantity: float
    average_cost: float
    currency: Currency
    notes: str | None = None
    current_price: float | None = None
    change_percent: float | None = None
    market_value: float
    cost_basis: float
    gain_loss: float
    gain_loss_percent: float
    price_age: datetime | None = None
    is_stale: bool
    current_price_converted: float | None = None
    market_value_converted: float | None = None
    cost_basis_converted: float | None = None
    gain_loss_converted: float | None = None


class RefreshPricesRequest(BaseModel):
    account_id: int


class RefreshPricesResult(BaseModel):
    updated: int
    skipped: int
    errors: list[str]


# ===== Exchange rates =====

class ExchangeRateStatusOut(BaseModel):
    last_update: datetime | None


class ExchangeRateRefreshOut(BaseModel):
    updated: int
    last_update: datetime | None


# ===== Dashboard =====

class MonetaryStat(BaseModel):
    label: str
    amount: float
    variant: Literal["positive", "negative", "neutral"]
    helper: str | None = None
    breakdown: dict | None = None


class CategoryBudgetSummary(BaseModel):
    budget_id: int
    account_id: int
    account_name: str
    category_id: int
    category_name: str
    category_type: TxnType
    planned: float
    actual: float
    remaining: float
    month: str


class MonthlyHistoryPoint(BaseModel):
    month: str
    income: float
    expense: float
    net: float


class MonthComparison(BaseModel):
    previous_month: str
    previous_net: float
    change: float


class DashboardTransaction(TransactionOut):
    converted_amount: float
    display_currency: Currency
    account_name: str
    category_name: str


class RecurringTemplateSummary(BaseModel):
    id: int
    account_id: int
    account_name: str
    category_id: int
    category_name: str
    type: TxnType
    amount: float
    currency: Currency
    description: str | None = None
    day_of_month: int
    is_active: bool
    start_month_key: str | None = None
    end_month_key: str | None = None


class IncomeGoalSummary(BaseModel):
    amount: float
    currency: Currency
    is_default: bool


class DashboardOut(BaseModel):
    month: str
    stats: list[MonetaryStat]
    budgets: list[CategoryBudgetSummary]
    transactions: list[DashboardTransaction]
    recurring_templates: list[RecurringTemplateSummary]
    transaction_requests: list[TransactionRequestOut]
    categories: list[CategoryOut]
    comparison: MonthComparison
    history: list[MonthlyHistoryPoint]
    actual_income: float
    monthly_income_goal: IncomeGoalSummary | None = None
    exchange_rate_last_update: datetime | None = None
    preferred_currency: Currency | None = None
    accounts: list[AccountOut] = Field(default_factory=list)
    shared_expenses: list[SharedExpenseOut] = Field(default_factory=list)
    expenses_shared_with_me: list[ParticipationOut] = Field(default_factory=list)
    settlement_balances: list[SettlementBalanceOut] = Field(default_factory=list)


# ===== Expense sharing =====

class ShareParticipantIn(BaseModel):
    email: EmailStr
    share_amount: Optional[float] = Field(default=None, ge=0)
    share_percentage: Optional[float] = Field(default=None, ge=0, le=100)


class ShareExpenseRequest(BaseModel):
    transaction_id: int
    split_type: SplitType
    participants: list[ShareParticipantIn] = Field(min_length=1)
    description: Optional[str] = Field(default=None, max_length=240)

    @model_validator(mode="after")
    def _check_split_inputs(self):
        if self.split_type == SplitType.PERCENTAGE:
            if any(p.share_percentage is None for p in self.participants):
                raise ValueError("Each participant needs a percentage for percentage splits")
        if self.split_type == SplitType.FIXED:
            if any(p.share_amount is None for p in self.participants):
                raise ValueError("Each participant needs an amount for fixed splits")
        return self


class UserRef(BaseModel):
    id: int
    email: str
    display_name: str


class CategoryRef(BaseModel):
    id: int
    name: str


class SharedTransactionRef(BaseModel):
    id: int
    date: dt.date
    description: str | None = None
    category: CategoryRef


class ParticipantOut(BaseModel):
    id: int
    share_amount: float
    share_percentage: float | None = None
    status: PaymentStatus
    paid_at: datetime | None = None
    reminder_sent_at: datetime | None = None
    participant: UserRef


class SharedExpenseOut(BaseModel):
    id: int
    transaction_id: int
    split_type: SplitType
    total_amount: float
    currency: Currency
    description: str | None = None
    created_at: datetime
    transaction: SharedTransactionRef
    participants: list[ParticipantOut]
    total_owed: float
    total_paid: float
    all_settled: bool


class SharedExpenseRef(BaseModel):
    id: int
    split_type: SplitType
    total_amount: float
    currency: Currency
    description: str | None = None
    created_at: datetime
    transaction: SharedTransactionRef
    owner: UserRef


class ParticipationOut(BaseModel):
    id: int
    share_amount: float
    share_percentage: float | None = None
    status: PaymentStatus
    paid_at: datetime | None = None
    shared_expense: SharedExpenseRef


class SharedExpensePage(BaseModel):
    items: list[SharedExpenseOut]
    total: int
    limit: int
    offset: int
    has_more: bool


class ParticipationPage(BaseModel):
    items: list[ParticipationOut]
    total: int
    limit: int
    offset: int
    has_more: bool


class ShareCreatedOut(BaseModel):
    id: int


class SettleAllRequest(BaseModel):
    target_user_id: int
    currency: Currency


class SettleAllResult(BaseModel):
    settled_count: int


class SettlementBalanceOut(BaseModel):
    user_id: int
    user_email: str
    user_display_name: str
    currency: Currency
    you_owe: float
    they_owe: float
    net_balance: float


class PaymentHistoryItem(BaseModel):
    participant_id: int
    shared_expense_id: int
    direction: Literal["paid_to_you", "you_paid"]
    counterparty: UserRef
    amount: float
    currency: Currency
    description: str | None = None
    paid_at: datetime | None = None


# ===== Privacy =====

class DeleteAccountRequest(BaseModel):
    confirm_email: str = Field(min_length=3, max_length=320)


class OkResult(BaseModel):
    ok: bool = True


# ===== Onboarding =====

class SeedDataResult(BaseModel):
    categories_created: int
    transactions_created: int
    budgets_created: int

