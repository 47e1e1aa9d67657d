from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from finboard import models
from finboard.core.config import settings
from finboard.services.errors import NotFoundError

logger = logging.getLogger(__name__)

Status = models.SubscriptionStatus


def can_access_app(sub: models.Subscription | None, now: datetime | None = None) -> bool:
    """Whether this subscription currently unlocks the app.

    PAST_DUE keeps access while payment is retried.
    """
    if sub is None:
        return False
    now = now or models.utcnow_naive()
    if sub.status == Status.ACTIVE:
        return sub.current_period_end is not None and sub.current_period_end > now
    if sub.status == Status.TRIALING:
        return sub.trial_ends_at is not None and sub.trial_ends_at > now
    if sub.status == Status.PAST_DUE:
        return True
    if sub.status == Status.CANCELED:
        return sub.current_period_end is not None and sub.current_period_end > now
    return False


def days_remaining(sub: models.Subscription | None, now: datetime | None = None) -> int | None:
    if sub is None:
        return None
    now = now or models.utcnow_naive()
    end = sub.trial_ends_at if sub.status == Status.TRIALING else sub.current_period_end
    if end is None:
        return None
    return max(0, math.ceil((end - now).total_seconds() / 86400))


@dataclass
class SubscriptionState:
    status: Status | None
    can_access_app: bool
    days_remaining: int | None
    trial_ends_at: datetime | None
    current_period_end: datetime | None


class SubscriptionService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_for_user(self, user_id: int) -> models.Subscription | None:
        return (
            self.db.query(models.Subscription)
            .filter(models.Subscription.user_id == user_id)
            .first()
        )

    def get_subscription_state(self, user_id: int, now: datetime | None = None) -> SubscriptionState:
        sub = self.get_for_user(user_id)
        return SubscriptionState(
            status=sub.status if sub else None,
            can_access_app=can_access_app(sub, now),
            days_remaining=days_remaining(sub, now),
            trial_ends_at=sub.trial_ends_at if sub else None,
            current_period_end=sub.current_period_end if sub else None,
        )

    def create_trial(self, user_id: int, now: datetime | None = None) -> models.Subscription:
        now = now or models.utcnow_naive()
        sub = models.Subscription(
            user_id=user_id,
            status=Status.TRIALING,
            trial_ends_at=now + timedelta(days=settings.TRIAL_DURATION_DAYS),
        )
        self.db.add(sub)
        self.db.commit()
        self.db.refresh(sub)
        return sub

    def _require(self, user_id: int) -> models.Subscription:
        sub = self.get_for_user(user_id)
        if not sub:
            raise NotFoundError("Subscription", user_id)
        return sub

    def activate(self, user_id: int, period_start: datetime, period_end: datetime) -> models.Subscription:
        sub = self._require(user_id)
        sub.status = Status.ACTIVE
        sub.current_period_start = period_start
        sub.current_period_end = period_end
        sub.canceled_at = None
        self.db.commit()
        self.db.refresh(sub)
        return sub

    def mark_past_due(self, user_id: int) -> models.Subscription:
        sub = self._require(user_id)
        sub.status = Status.PAST_DUE
        self.db.commit()
        self.db.refresh(sub)
        return sub

    def cancel(self, user_id: int, now: datetime | None = None) -> models.Subscription:
        # Access continues until current_period_end
        sub = self._require(user_id)
        sub.status = Status.CANCELED
        sub.canceled_at = now or models.utcnow_naive()
        self.db.commit()
        self.db.refresh(sub)
        return sub

    def expire(self, user_id: int) -> models.Subscription:
        sub = self._require(user_id)
        sub.status = Status.EXPIRED
        self.db.commit()
        self.db.refresh(sub)
        return sub

    def process_expired_subscriptions(self, now: datetime | None = None) -> int:
        """Mark ended trials and ended ACTIVE/CANCELED periods as EXPIRED.

        Returns the number of rows updated.
        """
        now = now or models.utcnow_naive()
        S = models.Subscription
        result = self.db.execute(
            update(S)
            .where(
                or_(
                    and_(S.status == Status.TRIALING, S.trial_ends_at.is_not(None), S.trial_ends_at <= now),
                    and_(
                        S.status.in_([Status.ACTIVE, Status.CANCELED]),
                        S.current_period_end.is_not(None),
                        S.current_period_end <= now,
                    ),
                )
            )
            .values(status=Status.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        count = result.rowcount or 0
        logger.info("Expired %d subscription(s)", count)
        return count
