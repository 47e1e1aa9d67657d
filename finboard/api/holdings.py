from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from finboard import models
from finboard.core.database import get_db
from finboard.core.deps import require_active_subscription
from finboard.schemas import (
    HoldingCreate,
    HoldingOut,
    HoldingUpdate,
    HoldingWithPriceOut,
    RefreshPricesRequest,
    RefreshPricesResult,
)
from finboard.services.holding_service import HoldingService


router = APIRouter(prefix="/holdings", tags=["holdings"])


@router.get("", response_model=list[HoldingWithPriceOut])
def list_holdings(
    account_id: Optional[int] = Query(None),
    currency: Optional[models.Currency] = Query(None, description="Convert values into this currency"),
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    preferred = currency.value if currency else current_user.preferred_currency.value
    return HoldingService(db).get_holdings_with_prices(
        account_id=account_id, preferred_currency=preferred, user_id=current_user.id
    )


@router.post("", response_model=HoldingOut, status_code=201)
def create_holding(
    payload: HoldingCreate,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return HoldingService(db).create(payload.model_dump(), user_id=current_user.id)


@router.post("/refresh-prices", response_model=RefreshPricesResult)
def refresh_holding_prices(
    payload: RefreshPricesRequest,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return HoldingService(db).refresh_prices(payload.account_id, user_id=current_user.id)


@router.patch("/{holding_id}", response_model=HoldingOut)
def update_holding(
    holding_id: int,
    payload: HoldingUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    return HoldingService(db).update(holding_id, payload.model_dump(), user_id=current_user.id)


@router.delete("/{holding_id}", status_code=204)
def delete_holding(
    holding_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(require_active_subscription),
):
    HoldingService(db).delete(holding_id, user_id=current_user.id)
    return Response(status_code=204)
