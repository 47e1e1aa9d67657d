"""Splitting expenses with other users and settling up.

Shares are keyed by participant email, lowercased. Only the owner of a
shared expense can mark shares paid, cancel or send reminders; only the
participant can decline.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal
from typing import Any, Iterable, Literal, Mapping, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session, selectinload

from finboard import models
from finboard.services.errors import AuthorizationError, NotFoundError, ValidationError
from finboard.utils.money import money_float, round_money, to_decimal

logger = logging.getLogger(__name__)

SplitType = models.SplitType
PaymentStatus = models.PaymentStatus

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
REMINDER_INTERVAL = timedelta(hours=24)
SELF_SHARE_MESSAGE = "Expenses can only be shared with others."

StatusFilter = Literal["all", "pending", "settled"]


def calculate_shares(
    split_type: SplitType,
    total_amount: Decimal | float,
    participants: Iterable[Mapping[str, Any]],
    valid_emails: Iterable[str],
) -> dict[str, dict[str, Decimal | None]]:
    """Work out each participant's share, keyed by lowercased email.

    EQUAL splits count the owner as one more head, so each share is
    ``total / (n + 1)`` rounded to cents. PERCENTAGE and FIXED use the
    supplied values; percentages are not required to add up to 100.
    """
    total = to_decimal(total_amount)
    valid = [e.lower() for e in valid_emails]
    valid_set = set(valid)
    shares: dict[str, dict[str, Decimal | None]] = {}

    if split_type == SplitType.EQUAL:
        each = round_money(total / (len(valid) + 1))
        for email in valid:
            shares[email] = {"share_amount": each, "share_percentage": None}
        return shares

    for p in participants:
        email = str(p["email"]).lower()
        if email not in valid_set:
            continue
        if split_type == SplitType.PERCENTAGE:
            pct = to_decimal(p.get("share_percentage") or 0)
            shares[email] = {"share_amount": round_money(total * pct / 100), "share_percentage": pct}
        else:
            shares[email] = {"share_amount": round_money(p.get("share_amount") or 0), "share_percentage": None}
    return shares


def _user_ref(user: models.User) -> dict[str, Any]:
    return {"id": user.id, "email": user.email, "display_name": user.display_name or user.email}


def _transaction_ref(txn: models.Transaction) -> dict[str, Any]:
    return {
        "id": txn.id,
        "date": txn.date,
        "description": txn.description,
        "category": {"id": txn.category.id, "name": txn.category.name},
    }


def _page(items: list, total: int, limit: int, offset: int) -> dict[str, Any]:
    return {"items": items, "total": total, "limit": limit, "offset": offset, "has_more": offset + len(items) < total}


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_PAGE_SIZE))


class ExpenseSharingService:
    def __init__(self, db: Session, user: models.User) -> None:
        self.db = db
        self.user = user

    # ---- Lookups ---------------------------------------------------------
    def _participant(self, participant_id: int) -> models.ExpenseParticipant:
        row = (
            self.db.query(models.ExpenseParticipant)
            .options(selectinload(models.ExpenseParticipant.shared_expense))
            .filter(models.ExpenseParticipant.id == participant_id)
            .first()
        )
        if not row:
            raise NotFoundError("Participant", participant_id, "Participant record not found")
        return row

    def lookup_user(self, email: str) -> dict[str, Any]:
        normalized = email.strip().lower()
        if normalized == self.user.email.lower():
            raise ValidationError(SELF_SHARE_MESSAGE)
        user = (
            self.db.query(models.User)
            .filter(func.lower(models.User.email) == normalized, models.User.deleted_at.is_(None))
            .first()
        )
        if not user:
            raise NotFoundError("User", normalized, "No user found with this email")
        return _user_ref(user)

    # ---- Commands --------------------------------------------------------
    def share_expense(
        self,
        transaction_id: int,
        split_type: SplitType,
        participants: list[Mapping[str, Any]],
        description: Optional[str] = None,
    ) -> models.SharedExpense:
        txn = (
            self.db.query(models.Transaction)
            .filter(models.Transaction.id == transaction_id, models.Transaction.deleted_at.is_(None))
            .first()
        )
        if not txn:
            raise NotFoundError("Transaction", transaction_id, "Transaction not found")
        if txn.account.user_id != self.user.id:
            raise AuthorizationError("You do not have access to this transaction")
        already = (
            self.db.query(models.SharedExpense.id)
            .filter(models.SharedExpense.transaction_id == txn.id)
            .first()
        )
        if already:
            raise ValidationError("This transaction is already shared")

        emails = [str(p["email"]).lower() for p in participants]
        if self.user.email.lower() in emails:
            raise ValidationError(SELF_SHARE_MESSAGE)

        users = (
            self.db.query(models.User)
            .filter(func.lower(models.User.email).in_(emails), models.User.deleted_at.is_(None))
            .all()
        )
        found = {u.email.lower() for u in users}
        missing = [e for e in emails if e not in found]
        if missing:
            raise ValidationError.field("participants", f"Users not found: {', '.join(missing)}")

        total = to_decimal(txn.amount)
        if split_type == SplitType.FIXED:
            total_shares = sum((to_decimal(p.get("share_amount") or 0) for p in participants), Decimal("0"))
            if total_shares > total:
                raise ValidationError.field(
                    "participants",
                    f"Total share amounts (${total_shares:.2f}) cannot exceed transaction total (${total:.2f})",
                )

        shares = calculate_shares(split_type, total, participants, [u.email for u in users])

        try:
            shared = models.SharedExpense(
                transaction_id=txn.id,
                owner_id=self.user.id,
                split_type=split_type,
                total_amount=round_money(total),
                currency=txn.currency,
                description=description,
            )
            self.db.add(shared)
            self.db.flush()
            for u in users:
                share = shares[u.email.lower()]
                self.db.add(
                    models.ExpenseParticipant(
                        shared_expense_id=shared.id,
                        user_id=u.id,
                        share_amount=share["share_amount"],
                        share_percentage=share["share_percentage"],
                        status=PaymentStatus.PENDING,
                    )
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(shared)
        logger.info("Expense shared", extra={"shared_expense_id": shared.id, "participants": len(users)})
        return shared

    def mark_share_paid(self, participant_id: int) -> models.ExpenseParticipant:
        row = self._participant(participant_id)
        if row.shared_expense.owner_id != self.user.id:
            raise AuthorizationError("Only the expense owner can mark payments as received")
        if row.status == PaymentStatus.PAID:
            raise ValidationError("This share has already been marked as paid")
        if row.status == PaymentStatus.DECLINED:
            raise ValidationError("Cannot mark a declined share as paid")
        row.status = PaymentStatus.PAID
        row.paid_at = models.utcnow_naive()
        self.db.commit()
        self.db.refresh(row)
        return row

    def decline_share(self, participant_id: int) -> models.ExpenseParticipant:
        row = self._participant(participant_id)
        if row.user_id != self.user.id:
            raise AuthorizationError("You can only decline shares assigned to you")
        if row.status != PaymentStatus.PENDING:
            raise ValidationError(f"Cannot decline a share that is already {row.status.value.lower()}")
        row.status = PaymentStatus.DECLINED
        self.db.commit()
        self.db.refresh(row)
        return row

    def cancel_shared_expense(self, shared_expense_id: int) -> None:
        shared = self.db.get(models.SharedExpense, shared_expense_id)
        if not shared:
            raise NotFoundError("Shared expense", shared_expense_id, "Shared expense not found")
        if shared.owner_id != self.user.id:
            raise AuthorizationError("Only the expense owner can cancel sharing")
        self.db.delete(shared)
        self.db.commit()

    def send_payment_reminder(self, participant_id: int) -> models.ExpenseParticipant:
        row = self._participant(participant_id)
        if row.shared_expense.owner_id != self.user.id:
            raise AuthorizationError("Only the expense owner can send reminders")
        if row.status != PaymentStatus.PENDING:
            raise ValidationError(f"Cannot send reminder for a {row.status.value.lower()} share")
        now = models.utcnow_naive()
        if row.reminder_sent_at is not None and now - row.reminder_sent_at < REMINDER_INTERVAL:
            raise ValidationError("You can only send one reminder per day")
        row.reminder_sent_at = now
        self.db.commit()
        self.db.refresh(row)
        logger.info("Payment reminder recorded", extra={"participant_id": row.id, "to_user_id": row.user_id})
        return row

    def settle_all_with_user(self, target_user_id: int, currency: models.Currency) -> dict[str, int]:
        """Mark every pending share between the caller and ``target_user_id`` as paid."""
        EP, SE = models.ExpenseParticipant, models.SharedExpense
        ids = [
            pid
            for (pid,) in self.db.query(EP.id)
            .join(SE, SE.id == EP.shared_expense_id)
            .filter(
                EP.status == PaymentStatus.PENDING,
                SE.currency == currency,
                or_(
                    and_(SE.owner_id == self.user.id, EP.user_id == target_user_id),
                    and_(SE.owner_id == target_user_id, EP.user_id == self.user.id),
                ),
            )
            .all()
        ]
        if not ids:
            raise ValidationError("No pending expenses found with this user")
        try:
            count = (
                self.db.query(EP)
                .filter(EP.id.in_(ids))
                .update({EP.status: PaymentStatus.PAID, EP.paid_at: models.utcnow_naive()}, synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return {"settled_count": count}

    # ---- Queries ---------------------------------------------------------
    def _serialize_shared(self, shared: models.SharedExpense) -> dict[str, Any]:
        total_owed = Decimal("0")
        total_paid = Decimal("0")
        participants = []
        for p in shared.participants:
            if p.status == PaymentStatus.PENDING:
                total_owed += to_decimal(p.share_amount)
            elif p.status == PaymentStatus.PAID:
                total_paid += to_decimal(p.share_amount)
            participants.append(
                {
                    "id": p.id,
                    "share_amount": money_float(p.share_amount),
                    "share_percentage": float(p.share_percentage) if p.share_percentage is not None else None,
                    "status": p.status.value,
                    "paid_at": p.paid_at,
                    "reminder_sent_at": p.reminder_sent_at,
                    "participant": _user_ref(p.participant),
                }
            )
        return {
            "id": shared.id,
            "transaction_id": shared.transaction_id,
            "split_type": shared.split_type.value,
            "total_amount": money_float(shared.total_amount),
            "currency": shared.currency.value,
            "description": shared.description,
            "created_at": shared.created_at,
            "transaction": _transaction_ref(shared.transaction),
            "participants": participants,
            "total_owed": money_float(total_owed),
            "total_paid": money_float(total_paid),
            "all_settled": all(p.status != PaymentStatus.PENDING for p in shared.participants),
        }

    def get_shared_expenses(
        self, status: StatusFilter = "all", limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> dict[str, Any]:
        SE, EP = models.SharedExpense, models.ExpenseParticipant
        limit = _clamp_limit(limit)
        pending_exists = (
            select(EP.id)
            .where(EP.shared_expense_id == SE.id, EP.status == PaymentStatus.PENDING)
            .exists()
        )
        q = self.db.query(SE).filter(SE.owner_id == self.user.id)
        if status == "pending":
            q = q.filter(pending_exists)
        elif status == "settled":
            q = q.filter(~pending_exists)
        total = q.count()
        rows = (
            q.options(
                selectinload(SE.participants).selectinload(EP.participant),
                selectinload(SE.transaction).selectinload(models.Transaction.category),
            )
            .order_by(SE.created_at.desc(), SE.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return _page([self._serialize_shared(r) for r in rows], total, limit, offset)

    def get_expenses_shared_with_me(
        self, status: StatusFilter = "all", limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> dict[str, Any]:
        EP, SE = models.ExpenseParticipant, models.SharedExpense
        limit = _clamp_limit(limit)
        q = self.db.query(EP).filter(EP.user_id == self.user.id)
        if status == "pending":
            q = q.filter(EP.status == PaymentStatus.PENDING)
        elif status == "settled":
            q = q.filter(EP.status != PaymentStatus.PENDING)
        total = q.count()
        rows = (
            q.join(SE, SE.id == EP.shared_expense_id)
            .options(
                selectinload(EP.shared_expense).selectinload(SE.owner),
                selectinload(EP.shared_expense).selectinload(SE.transaction).selectinload(models.Transaction.category),
            )
            .order_by(SE.created_at.desc(), EP.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        items = []
        for p in rows:
            shared = p.shared_expense
            items.append(
                {
                    "id": p.id,
                    "share_amount": money_float(p.share_amount),
                    "share_percentage": float(p.share_percentage) if p.share_percentage is not None else None,
                    "status": p.status.value,
                    "paid_at": p.paid_at,
                    "shared_expense": {
                        "id": shared.id,
                        "split_type": shared.split_type.value,
                        "total_amount": money_float(shared.total_amount),
                        "currency": shared.currency.value,
                        "description": shared.description,
                        "created_at": shared.created_at,
                        "transaction": _transaction_ref(shared.transaction),
                        "owner": _user_ref(shared.owner),
                    },
                }
            )
        return _page(items, total, limit, offset)

    def get_settlement_balance(self) -> list[dict[str, Any]]:
        """Net pending amounts per (other user, currency), largest first."""
        EP, SE = models.ExpenseParticipant, models.SharedExpense
        rows = (
            self.db.query(EP, SE)
            .join(SE, SE.id == EP.shared_expense_id)
            .filter(
                EP.status == PaymentStatus.PENDING,
                or_(SE.owner_id == self.user.id, EP.user_id == self.user.id),
            )
            .all()
        )
        groups: dict[tuple[int, models.Currency], dict[str, Decimal]] = defaultdict(
            lambda: {"you_owe": Decimal("0"), "they_owe": Decimal("0")}
        )
        for participant, shared in rows:
            if shared.owner_id == self.user.id and participant.user_id != self.user.id:
                groups[(participant.user_id, shared.currency)]["they_owe"] += to_decimal(participant.share_amount)
            elif participant.user_id == self.user.id and shared.owner_id != self.user.id:
                groups[(shared.owner_id, shared.currency)]["you_owe"] += to_decimal(participant.share_amount)
        if not groups:
            return []

        users = {
            u.id: u
            for u in self.db.query(models.User).filter(models.User.id.in_({uid for uid, _ in groups})).all()
        }
        balances = []
        for (other_id, currency), sums in groups.items():
            other = users.get(other_id)
            if other is None:
                continue
            net = sums["they_owe"] - sums["you_owe"]
            balances.append(
                {
                    "user_id": other.id,
                    "user_email": other.email,
                    "user_display_name": other.display_name or other.email,
                    "currency": currency.value,
                    "you_owe": money_float(sums["you_owe"]),
                    "they_owe": money_float(sums["they_owe"]),
                    "net_balance": money_float(net),
                }
            )
        balances.sort(key=lambda b: abs(b["net_balance"]), reverse=True)
        return balances

    def get_payment_history(self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> list[dict[str, Any]]:
        EP, SE = models.ExpenseParticipant, models.SharedExpense
        limit = _clamp_limit(limit)
        rows = (
            self.db.query(EP, SE)
            .join(SE, SE.id == EP.shared_expense_id)
            .options(selectinload(EP.participant), selectinload(SE.owner))
            .filter(
                EP.status == PaymentStatus.PAID,
                or_(SE.owner_id == self.user.id, EP.user_id == self.user.id),
            )
            .order_by(EP.paid_at.desc(), EP.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        history = []
        for participant, shared in rows:
            paid_to_me = shared.owner_id == self.user.id
            history.append(
                {
                    "participant_id": participant.id,
                    "shared_expense_id": shared.id,
                    "direction": "paid_to_you" if paid_to_me else "you_paid",
                    "counterparty": _user_ref(participant.participant if paid_to_me else shared.owner),
                    "amount": money_float(participant.share_amount),
                    "currency": shared.currency.value,
                    "description": shared.description,
                    "paid_at": participant.paid_at,
                }
            )
        return history
