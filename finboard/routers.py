from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from . import models
from .core.config import settings
from .core.database import get_db
from .core.deps import get_current_user, require_active_subscription, require_csrf
from .core.security import CSRF_COOKIE, CSRF_COOKIE_MAX_AGE, generate_csrf_token, sign_csrf_token
from .schemas import (
    AccountCreate,
    AccountOut,
    AccountUpdate,
    BalanceAdjustmentRequest,
    BalanceAdjustmentResult,
    BudgetOut,
    BudgetUpsert,
    CategoryBulkCreate,
    CategoryBulkResult,
    CategoryCreate,
    CategoryCreateResult,
    CategoryOut,
    CategoryUpdate,
    CsrfTokenOut,
    DashboardOut,
    ExchangeRateRefreshOut,
    ExchangeRateStatusOut,
    IncomeGoalOut,
    IncomeGoalUpsert,
    MONTH_KEY_PATTERN,
    OkResult,
    QuickBudgetCreate,
    RecurringApplyRequest,
    RecurringApplyResult,
    RecurringTemplateOut,
    RecurringTemplateUpsert,
    RecurringToggle,
    SeedDataResult,
    SubscriptionStateOut,
    TransactionCreate,
    TransactionOut,
    TransactionRequestCreate,
    TransactionRequestOut,
    TransactionUpdate,
    UserOut,
    UserUpdate,
)
from .services import (
    AccountService,
    BudgetService,
    CategoryService,
    CurrencyService,
    DashboardService,
    OnboardingService,
    RecurringService,
    SubscriptionService,
    TransactionService,
)
from .services.currency import RateProviderUnavailable
from .services.dashboard_service import invalidate_dashboard_cache
from .services.errors import ServiceError
from .api.holdings import router as holdings_router
from .api.privacy import router as privacy_router
from .api.sharing import router as sharing_router

router = APIRouter(dependencies=[Depends(require_csrf)])


# ---- Session -------------------------------------------------------------

@router.get("/csrf", response_model=CsrfTokenOut)
def issue_csrf_token(response: Response):
    token = generate_csrf_token()
    response.set_cookie(
        CSRF_COOKIE,
        sign_csrf_token(token),
        max_age=CSRF_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.ENV != "dev",
    )
    return CsrfTokenOut(csrf_token=token)


@router.get("/me", response_model=UserOut)
def get_me(current_user: models.User = Depends(get_current_user)):
    return current_user


@router.patch("/me", response_model=UserOut)
def update_me(
    payload: UserUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    patch = payload.model_dump(exclude_unset=True)
    for key, value in patch.items():
        if value is not None:
            setattr(current_user, key, value)
    if "preferred_currency" in patch:
        invalidate_dashboard_cache(db, current_user.id)
    db.commit()
    db.refresh(current_user)
    return current_user


@router.get("/subscription", response_model=SubscriptionStateOut)
def get_subscription(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return SubscriptionService(db).get_subscription_state(current_user.id)


# ---- Accounts ------------------------------------------------------------

@router.get("/accounts", response_model=list[AccountOut])
def list_accounts(db: Session = Depends(get_db), current_user=Depends(require_active_subscription)):
    return AccountService(db).get_all(user_id=current_user.id)


@router.post("/accounts", response_model=AccountOut, status_code=201)
def create_account(
    payload: AccountCreate,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return AccountService(db).create(payload.model_dump(), user_id=current_user.id)


@router.patch("/accounts/{account_id}", response_model=AccountOut)
def update_account(
    account_id: int,
    payload: AccountUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    svc = AccountService(db)
    row = svc.get_by_id(current_user.id, account_id)
    return svc.update(row, payload.model_dump(exclude_unset=True))


@router.delete("/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    AccountService(db).soft_delete(account_id, current_user)
    invalidate_dashboard_cache(db, current_user.id)
    db.commit()
    return Response(status_code=204)


# ---- Categories ----------------------------------------------------------

@router.get("/categories", response_model=list[CategoryOut])
def list_categories(
    type: Optional[models.TxnType] = Query(None),
    include_archived: bool = Query(False),
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return CategoryService(db).get_all(user_id=current_user.id, type=type, include_archived=include_archived)


@router.post("/categories", response_model=CategoryCreateResult)
def create_category(
    payload: CategoryCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    status, row = CategoryService(db).create_or_reactivate(
        current_user.id, payload.name, payload.type, payload.color, payload.is_holding
    )
    response.status_code = 201 if status == "CREATED" else 200
    return CategoryCreateResult(status=status, category=CategoryOut.model_validate(row))


@router.post("/categories/bulk", response_model=CategoryBulkResult, status_code=201)
def create_categories_bulk(
    payload: CategoryBulkCreate,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    rows = CategoryService(db).bulk_upsert(current_user.id, [c.model_dump() for c in payload.categories])
    return CategoryBulkResult(categories_created=len(rows), categories=[CategoryOut.model_validate(r) for r in rows])


@router.patch("/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    svc = CategoryService(db)
    row = svc.get(current_user.id, category_id)
    return svc.update(row, payload.model_dump(exclude_unset=True))


@router.post("/categories/{category_id}/archive", response_model=CategoryOut)
def archive_category(
    category_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    svc = CategoryService(db)
    return svc.archive(svc.get(current_user.id, category_id))


# ---- Transactions --------------------------------------------------------

@router.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    month: Optional[str] = Query(None, pattern=MONTH_KEY_PATTERN),
    account_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return TransactionService(db).get_all(user_id=current_user.id, month_key=month, account_id=account_id)


@router.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return TransactionService(db).create(payload.model_dump(), user_id=current_user.id)


@router.patch("/transactions/{txn_id}", response_model=TransactionOut)
def update_transaction(
    txn_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return TransactionService(db).update(txn_id, payload.model_dump(), user_id=current_user.id)


@router.delete("/transactions/{txn_id}", status_code=204)
def delete_transaction(
    txn_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    TransactionService(db).delete(txn_id, user_id=current_user.id)
    return Response(status_code=204)


@router.post("/transaction-requests", response_model=TransactionRequestOut, status_code=201)
def create_transaction_request(
    payload: TransactionRequestCreate,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return TransactionService(db).create_request(payload.model_dump(), user_id=current_user.id)


@router.post("/transaction-requests/{request_id}/approve", response_model=TransactionRequestOut)
def approve_transaction_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return TransactionService(db).approve_request(request_id, user_id=current_user.id)


@router.post("/transaction-requests/{request_id}/reject", response_model=TransactionRequestOut)
def reject_transaction_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return TransactionService(db).reject_request(request_id, user_id=current_user.id)


@router.post("/balance-adjustments", response_model=BalanceAdjustmentResult)
def set_balance(
    payload: BalanceAdjustmentRequest,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    result = TransactionService(db).set_balance(
        payload.account_id,
        payload.target_balance,
        payload.currency,
        payload.month_key,
        user_id=current_user.id,
    )
    return BalanceAdjustmentResult(adjustment=float(result["adjustment"]), transaction_id=result["transaction_id"])


# ---- Budgets / income goals ----------------------------------------------

@router.put("/budgets", response_model=BudgetOut)
def upsert_budget(
    payload: BudgetUpsert,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return BudgetService(db).upsert_budget(payload.model_dump(), user_id=current_user.id)


@router.post("/budgets/quick", response_model=OkResult, status_code=201)
def create_quick_budget(
    payload: QuickBudgetCreate,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    BudgetService(db).create_quick_budget(payload.model_dump(), user_id=current_user.id)
    return OkResult()


@router.delete("/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    BudgetService(db).delete_budget(budget_id, user_id=current_user.id)
    return Response(status_code=204)


@router.put("/income-goals", response_model=IncomeGoalOut)
def upsert_income_goal(
    payload: IncomeGoalUpsert,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return BudgetService(db).upsert_income_goal(payload.model_dump(), user_id=current_user.id)


@router.delete("/income-goals", status_code=204)
def delete_income_goal(
    account_id: int = Query(...),
    month: str = Query(..., pattern=MONTH_KEY_PATTERN),
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    BudgetService(db).delete_income_goal(account_id, month, user_id=current_user.id)
    return Response(status_code=204)


# ---- Onboarding ----------------------------------------------------------

@router.post("/seed-data", response_model=SeedDataResult, status_code=201)
def seed_sample_data(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_active_subscription),
):
    return OnboardingService(db).seed_sample_data(current_user)


# ---- Recurring templates -------------------------------------------------

@router.get("/recurring-templates", response_model=list[RecurringTemplateOut])
def list_recurring_templates(
    account_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return RecurringService(db).get_all(user_id=current_user.id, account_id=account_id)


@router.put("/recurring-templates", response_model=RecurringTemplateOut)
def upsert_recurring_template(
    payload: RecurringTemplateUpsert,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return RecurringService(db).upsert_template(payload.model_dump(), user_id=current_user.id)


@router.post("/recurring-templates/apply", response_model=RecurringApplyResult)
def apply_recurring_templates(
    payload: RecurringApplyRequest,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return RecurringService(db).apply_templates(
        payload.account_id, payload.month_key, payload.template_ids, user_id=current_user.id
    )


@router.post("/recurring-templates/{template_id}/toggle", response_model=RecurringTemplateOut)
def toggle_recurring_template(
    template_id: int,
    payload: RecurringToggle,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return RecurringService(db).toggle_template(template_id, payload.is_active, user_id=current_user.id)


@router.delete("/recurring-templates/{template_id}", status_code=204)
def delete_recurring_template(
    template_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    RecurringService(db).delete_template(template_id, user_id=current_user.id)
    return Response(status_code=204)


# ---- Exchange rates ------------------------------------------------------

@router.get("/exchange-rates", response_model=ExchangeRateStatusOut)
def exchange_rate_status(db: Session = Depends(get_db), current_user=Depends(require_active_subscription)):
    return ExchangeRateStatusOut(last_update=CurrencyService(db).get_last_update_time())


@router.post("/exchange-rates/refresh", response_model=ExchangeRateRefreshOut)
def refresh_exchange_rates(db: Session = Depends(get_db), current_user=Depends(require_active_subscription)):
    svc = CurrencyService(db)
    try:
        updated = svc.refresh_exchange_rates()
    except RateProviderUnavailable as exc:
        raise ServiceError(
            "Exchange rates are unavailable right now. Please try again later.",
            code="RATE_PROVIDER_UNAVAILABLE",
            status_code=503,
        ) from exc
    return ExchangeRateRefreshOut(updated=updated, last_update=svc.get_last_update_time())


# ---- Dashboard -----------------------------------------------------------

@router.get("/dashboard", response_model=DashboardOut)
def get_dashboard(
    month: str = Query(..., pattern=MONTH_KEY_PATTERN),
    account_id: Optional[int] = Query(None),
    currency: Optional[models.Currency] = Query(None),
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    preferred = currency.value if currency else current_user.preferred_currency.value
    return DashboardService(db).get_dashboard_data(
        month, account_id=account_id, preferred_currency=preferred, user_id=current_user.id
    )


router.include_router(holdings_router)
router.include_router(sharing_router)
router.include_router(privacy_router)
