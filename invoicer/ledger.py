"""Per-user credit balances.

Balances live in ``CreditBalance`` and every change appends a ``CreditEntry``.
Adjustments are a single conditional UPDATE so two concurrent writers can
never both spend the last credit; the balance check and the write are the
same statement.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from .errors import DuplicateLedgerEntryError, InsufficientCreditsError
from .models import CreditBalance, CreditEntry


class CreditLedger:
    def __init__(self, session, free_credits: int = 5):
        self.session = session
        self.free_credits = max(int(free_credits), 0)

    def _open_account(self, user_id: str) -> int:
        self.session.add(CreditBalance(user_id=user_id, balance=self.free_credits))
        self.session.add(
            CreditEntry(
                user_id=user_id,
                entry_type="grant",
                delta=self.free_credits,
                balance_after=self.free_credits,
                reason="Free starter credits",
            )
        )
        try:
            self.session.commit()
        except IntegrityError:
            # another request opened the account first
            self.session.rollback()
            return self._read_balance(user_id)
        return self.free_credits

    def _read_balance(self, user_id: str) -> Optional[int]:
        return self.session.execute(
            select(CreditBalance.balance).where(CreditBalance.user_id == user_id)
        ).scalar_one_or_none()

    def get_balance(self, user_id: str) -> int:
        balance = self._read_balance(user_id)
        if balance is None:
            balance = self._open_account(user_id)
        return balance

    def adjust(
        self,
        user_id: str,
        delta: int,
        *,
        entry_type: str = "adjustment",
        reason: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> int:
        """Apply ``delta`` and return the new balance.

        Commits the session, so anything the caller flushed beforehand lands
        in the same transaction; on failure all of it is rolled back.
        """
        delta = int(delta)
        self.get_balance(user_id)

        result = self.session.execute(
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id, CreditBalance.balance + delta >= 0)
            .values(balance=CreditBalance.balance + delta, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            available = self.get_balance(user_id)
            raise InsufficientCreditsError(
                f"Insufficient credits. Required: {-delta}, available: {available}. "
                "Purchase credits to continue."
            )

        balance = self._read_balance(user_id)
        self.session.add(
            CreditEntry(
                user_id=user_id,
                entry_type=entry_type,
                delta=delta,
                balance_after=balance,
                reason=reason,
                reference_type=reference_type,
                reference_id=reference_id,
            )
        )
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateLedgerEntryError(
                f"Credits for {reference_type}:{reference_id} were already recorded"
            ) from exc
        return balance

    def history(self, user_id: str, limit: int = 30):
        stmt = (
            select(CreditEntry)
            .where(CreditEntry.user_id == user_id)
            .order_by(CreditEntry.id.desc())
            .limit(limit)
        )
        return self.session.execute(stmt).scalars().all()


def entry_to_dict(e: CreditEntry):
    return {
        "id": e.id,
        "entry_type": e.entry_type,
        "delta": e.delta,
        "balance_after": e.balance_after,
        "reason": e.reason,
        "reference_type": e.reference_type,
        "reference_id": e.reference_id,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }
