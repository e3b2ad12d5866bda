"""
Credit ledger: atomic deduct-with-reference and idempotent refund-by-reference.

Every balance change writes a CreditTransaction. The reference is the
ai_generations.id the credits pay for, so a refund is always traceable and
the (reference_id, type) unique constraint lets a refund land at most once.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import structlog

from models import CreditTransaction, Generation, TransactionType, User

logger = structlog.get_logger()


@dataclass
class LedgerResult:
    """Outcome of a ledger operation"""
    success: bool
    reason: Optional[str] = None
    amount: int = 0
    new_balance: Optional[int] = None


class CreditLedger:
    """
    Atomic balance store.

    Both operations commit their own work; callers pass the session they
    are already using so the ledger sees the generation record they created.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_balance(self, user_id: str) -> Optional[int]:
        return self.db.execute(
            select(User.balance_credits).where(User.id == user_id)
        ).scalar_one_or_none()

    def deduct(self, user_id: str, amount: int, generation_id: str) -> LedgerResult:
        """
        Charge credits for one unit of work.

        The balance check and decrement are one conditional UPDATE, so the
        balance can never go negative.

        Args:
            user_id: Account to charge
            amount: Credits, must be positive
            generation_id: Generation record this charge pays for

        Returns:
            LedgerResult; success False with a reason when nothing was charged
        """
        if amount <= 0:
            return LedgerResult(success=False, reason="Invalid amount")

        result = self.db.execute(
            update(User)
            .where(User.id == user_id, User.balance_credits >= amount)
            .values(balance_credits=User.balance_credits - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            reason = "Insufficient credits" if self.get_balance(user_id) is not None else "User not found"
            logger.info("credit_deduct_rejected", user_id=user_id, amount=amount, reason=reason)
            return LedgerResult(success=False, reason=reason, amount=amount)

        new_balance = self.get_balance(user_id)
        self.db.add(CreditTransaction(
            user_id=user_id,
            type=TransactionType.GENERATION,
            amount=-amount,
            balance_after=new_balance,
            reference_id=generation_id,
            reason="Movie scene generation",
        ))
        self.db.execute(
            update(Generation)
            .where(Generation.id == generation_id)
            .values(credit_deducted=True, credit_amount=amount)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self._refresh_generation(generation_id)

        logger.info(
            "credits_deducted",
            user_id=user_id,
            amount=amount,
            generation_id=generation_id,
            balance=new_balance,
        )
        return LedgerResult(success=True, amount=amount, new_balance=new_balance)

    def refund(self, user_id: str, generation_id: str) -> LedgerResult:
        """
        Return the exact credits charged for a generation.

        Idempotent per reference: a second call finds the existing refund (or
        loses the race on the unique constraint) and credits nothing.
        """
        existing = self.db.execute(
            select(CreditTransaction.id).where(
                CreditTransaction.reference_id == generation_id,
                CreditTransaction.type == TransactionType.REFUND,
            )
        ).first()
        if existing:
            logger.info("credit_refund_duplicate", user_id=user_id, generation_id=generation_id)
            return LedgerResult(success=False, reason="Already refunded")

        generation = self.db.get(Generation, generation_id)
        if generation is None or not generation.credit_deducted or not generation.credit_amount:
            logger.info("credit_refund_nothing_charged", user_id=user_id, generation_id=generation_id)
            return LedgerResult(success=False, reason="No charge to refund")

        amount = generation.credit_amount
        current = self.get_balance(user_id)
        if current is None:
            return LedgerResult(success=False, reason="User not found")

        try:
            self.db.add(CreditTransaction(
                user_id=user_id,
                type=TransactionType.REFUND,
                amount=amount,
                balance_after=current + amount,
                reference_id=generation_id,
                reason="Refund for failed generation",
            ))
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info("credit_refund_duplicate", user_id=user_id, generation_id=generation_id)
            return LedgerResult(success=False, reason="Already refunded")

        self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(balance_credits=User.balance_credits + amount)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        new_balance = self.get_balance(user_id)

        logger.info(
            "credits_refunded",
            user_id=user_id,
            amount=amount,
            generation_id=generation_id,
            balance=new_balance,
        )
        return LedgerResult(success=True, amount=amount, new_balance=new_balance)

    def _refresh_generation(self, generation_id: str) -> None:
        generation = self.db.get(Generation, generation_id)
        if generation is not None:
            self.db.refresh(generation)
