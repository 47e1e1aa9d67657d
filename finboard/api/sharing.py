from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query, Response
from pydantic import EmailStr
from sqlalchemy.orm import Session

from finboard.core.database import get_db
from finboard.core.deps import require_active_subscription
from finboard.schemas import (
    OkResult,
    ParticipationPage,
    PaymentHistoryItem,
    SettleAllRequest,
    SettleAllResult,
    SettlementBalanceOut,
    ShareCreatedOut,
    ShareExpenseRequest,
    SharedExpensePage,
    UserRef,
)
from finboard.services.expense_sharing_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ExpenseSharingService


router = APIRouter(prefix="/sharing", tags=["sharing"])

StatusQuery = Literal["all", "pending", "settled"]


def get_sharing_service(
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
) -> ExpenseSharingService:
    return ExpenseSharingService(db, current_user)


@router.post("/expenses", response_model=ShareCreatedOut, status_code=201)
def share_expense(payload: ShareExpenseRequest, svc: ExpenseSharingService = Depends(get_sharing_service)):
    shared = svc.share_expense(
        payload.transaction_id,
        payload.split_type,
        [p.model_dump() for p in payload.participants],
        payload.description,
    )
    return ShareCreatedOut(id=shared.id)


@router.get("/expenses", response_model=SharedExpensePage)
def list_shared_expenses(
    status: StatusQuery = Query("all"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    svc: ExpenseSharingService = Depends(get_sharing_service),
):
    return svc.get_shared_expenses(status=status, limit=limit, offset=offset)


@router.delete("/expenses/{shared_expense_id}", status_code=204)
def cancel_shared_expense(shared_expense_id: int, svc: ExpenseSharingService = Depends(get_sharing_service)):
    svc.cancel_shared_expense(shared_expense_id)
    return Response(status_code=204)


@router.get("/shared-with-me", response_model=ParticipationPage)
def list_expenses_shared_with_me(
    status: StatusQuery = Query("all"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    svc: ExpenseSharingService = Depends(get_sharing_service),
):
    return svc.get_expenses_shared_with_me(status=status, limit=limit, offset=offset)


@router.post("/participants/{participant_id}/paid", response_model=OkResult)
def mark_share_paid(participant_id: int, svc: ExpenseSharingService = Depends(get_sharing_service)):
    svc.mark_share_paid(participant_id)
    return OkResult()


@router.post("/participants/{participant_id}/decline", response_model=OkResult)
def decline_share(participant_id: int, svc: ExpenseSharingService = Depends(get_sharing_service)):
    svc.decline_share(participant_id)
    return OkResult()


@router.post("/participants/{participant_id}/remind", response_model=OkResult)
def send_payment_reminder(participant_id: int, svc: ExpenseSharingService = Depends(get_sharing_service)):
    svc.send_payment_reminder(participant_id)
    return OkResult()


@router.post("/settle-all", response_model=SettleAllResult)
def settle_all_with_user(payload: SettleAllRequest, svc: ExpenseSharingService = Depends(get_sharing_service)):
    return svc.settle_all_with_user(payload.target_user_id, payload.currency)


@router.get("/lookup", response_model=UserRef)
def lookup_user(email: EmailStr = Query(...), svc: ExpenseSharingService = Depends(get_sharing_service)):
    return svc.lookup_user(email)


@router.get("/balances", response_model=list[SettlementBalanceOut])
def settlement_balances(svc: ExpenseSharingService = Depends(get_sharing_service)):
    return svc.get_settlement_balance()


@router.get("/history", response_model=list[PaymentHistoryItem])
def payment_history(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    svc: ExpenseSharingService = Depends(get_sharing_service),
):
    return svc.get_payment_history(limit=limit, offset=offset)
