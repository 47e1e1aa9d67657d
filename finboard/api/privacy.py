"""GDPR endpoints: data export and permanent account deletion.

Both stay reachable without an active subscription.
"""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from finboard import models
from finboard.core.database import get_db
from finboard.core.deps import get_current_user
from finboard.core.security import SESSION_COOKIE
from finboard.schemas import DeleteAccountRequest, OkResult
from finboard.services.privacy_service import PrivacyService


router = APIRouter(prefix="/account", tags=["privacy"])


@router.get("/export")
def export_account_data(
    format: Literal["json", "csv"] = Query("json"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    result = PrivacyService(db).export_user_data(current_user, format=format)
    if format == "csv":
        return Response(
            content=result["data"],
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": 'attachment; filename="finboard-export.csv"'},
        )
    return result


@router.delete("", response_model=OkResult)
def delete_account(
    payload: DeleteAccountRequest,
    response: Response,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    PrivacyService(db).delete_user_account(current_user, payload.confirm_email)
    response.delete_cookie(SESSION_COOKIE)
    return OkResult()
