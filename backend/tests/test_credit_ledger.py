"""
Tests for the credit ledger.
"""

from unittest.mock import MagicMock

import pytest

from models import CreditTransaction, Generation, GenerationStatus, TransactionType, User
from services.credit_ledger import CreditLedger


@pytest.fixture
def user(make_user):
    return make_user(balance=20)


@pytest.fixture
def generation(db, user):
    generation = Generation(
        user_id=user.id,
        provider_request_id="placeholder_1",
        status=GenerationStatus.PENDING.value,
        model="kling-2.6",
    )
    db.add(generation)
    db.commit()
    return generation


def balance(db, user_id):
    db.expire_all()
    return db.get(User, user_id).balance_credits


class TestDeduct:

    def test_deducts_and_records_reference(self, db, user, generation):
        result = CreditLedger(db).deduct(user.id, 7, generation.id)

        assert result.success is True
        assert result.amount == 7
        assert result.new_balance == 13
        assert balance(db, user.id) == 13

        txn = db.query(CreditTransaction).one()
        assert txn.type == TransactionType.GENERATION
        assert txn.amount == -7
        assert txn.balance_after == 13
        assert txn.reference_id == generation.id

        generation = db.get(Generation, generation.id)
        assert generation.credit_deducted is True
        assert generation.credit_amount == 7

    def test_exact_balance_can_be_spent(self, db, user, generation):
        assert CreditLedger(db).deduct(user.id, 20, generation.id).success is True
        assert balance(db, user.id) == 0

    def test_insufficient_credits(self, db, user, generation):
        result = CreditLedger(db).deduct(user.id, 21, generation.id)

        assert result.success is False
        assert result.reason == "Insufficient credits"
        assert balance(db, user.id) == 20
        assert db.query(CreditTransaction).count() == 0
        assert db.get(Generation, generation.id).credit_deducted is False

    def test_unknown_user(self, db, generation):
        result = CreditLedger(db).deduct("no-such-user", 1, generation.id)

        assert result.success is False
        assert result.reason == "User not found"

    @pytest.mark.parametrize("amount", [0, -5])
    def test_invalid_amount(self, db, user, generation, amount):
        result = CreditLedger(db).deduct(user.id, amount, generation.id)

        assert result.success is False
        assert result.reason == "Invalid amount"
        assert balance(db, user.id) == 20


class TestRefund:

    def test_refunds_exact_charge(self, db, user, generation):
        ledger = CreditLedger(db)
        ledger.deduct(user.id, 7, generation.id)

        result = ledger.refund(user.id, generation.id)

        assert result.success is True
        assert result.amount == 7
        assert balance(db, user.id) == 20
        refund = db.query(CreditTransaction).filter(CreditTransaction.type == TransactionType.REFUND).one()
        assert refund.amount == 7
        assert refund.reference_id == generation.id

    def test_refund_is_idempotent(self, db, user, generation):
        ledger = CreditLedger(db)
        ledger.deduct(user.id, 7, generation.id)
        ledger.refund(user.id, generation.id)

        result = ledger.refund(user.id, generation.id)

        assert result.success is False
        assert result.reason == "Already refunded"
        assert balance(db, user.id) == 20

    def test_refunds_from_separate_sessions_credit_once(self, db, session_factory, user, generation):
        """The webhook path and the reconciler may both try to refund a charge."""
        CreditLedger(db).deduct(user.id, 7, generation.id)

        first = CreditLedger(session_factory())
        second = CreditLedger(session_factory())
        try:
            results = [first.refund(user.id, generation.id), second.refund(user.id, generation.id)]
        finally:
            first.db.close()
            second.db.close()

        assert [r.success for r in results] == [True, False]
        assert balance(db, user.id) == 20

    def test_duplicate_refund_row_is_rejected(self, db, user, generation, monkeypatch):
        """A refund that slipped past the existence check hits the unique constraint."""
        ledger = CreditLedger(db)
        ledger.deduct(user.id, 7, generation.id)
        ledger.refund(user.id, generation.id)

        original_execute = db.execute
        calls = []

        def execute(statement, *args, **kwargs):
            # Hide the existing refund from the first lookup only
            if not calls:
                calls.append(statement)
                return MagicMock(first=MagicMock(return_value=None))
            return original_execute(statement, *args, **kwargs)

        monkeypatch.setattr(db, "execute", execute)
        result = ledger.refund(user.id, generation.id)
        monkeypatch.undo()

        assert result.success is False
        assert result.reason == "Already refunded"
        assert balance(db, user.id) == 20

    def test_nothing_charged(self, db, user, generation):
        result = CreditLedger(db).refund(user.id, generation.id)

        assert result.success is False
        assert result.reason == "No charge to refund"
        assert balance(db, user.id) == 20
