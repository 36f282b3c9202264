import pytest
from sqlalchemy import update

from paybridge.models import PaymentType, Transaction, TransactionStatus
from paybridge.services.transactions import InvalidTransition, TransactionStore


def _prepared(db, user, plan, external="9001"):
    return TransactionStore(db).create_prepared(
        external_trans_id=external,
        merchant_trans_id=str(user.id),
        user_id=user.id,
        plan_id=plan.id,
        amount=plan.price,
        payment_type=PaymentType.ONETIME,
        sign_time="2024-05-01 10:00:00",
    )


def test_create_prepared_lands_in_processing(db, user, plan):
    txn = _prepared(db, user, plan)
    store = TransactionStore(db)

    assert txn.status == TransactionStatus.PROCESSING
    assert txn.prepare_id > 10**12
    assert store.find_progressing("9001") is txn
    assert store.find_prepared(txn.prepare_id, user.id, plan.id) is txn
    assert store.find_prepared(txn.prepare_id, user.id, plan.id + 1) is None


def test_complete_only_wins_once(db, user, plan):
    txn = _prepared(db, user, plan)
    store = TransactionStore(db)

    assert store.complete(txn) is True
    assert store.complete(txn) is False
    assert txn.status == TransactionStatus.COMPLETED


def test_conditional_update_loses_against_concurrent_writer(db, user, plan):
    txn = _prepared(db, user, plan)
    # Another worker fails the row behind this session's back.
    db.execute(
        update(Transaction)
        .where(Transaction.id == txn.id)
        .values(status=TransactionStatus.FAILED)
        .execution_options(synchronize_session=False)
    )
    assert txn.status == TransactionStatus.PROCESSING

    assert TransactionStore(db).complete(txn) is False
    assert txn.status == TransactionStatus.FAILED


def test_terminal_status_cannot_move(db, user, plan):
    txn = _prepared(db, user, plan)
    store = TransactionStore(db)
    store.fail(txn, error_code=-5017, error_note="Insufficient funds")

    with pytest.raises(InvalidTransition):
        store.complete(txn)
    assert txn.error_note == "Insufficient funds"


def test_fail_rejects_non_failure_status(db, user, plan):
    txn = _prepared(db, user, plan)
    with pytest.raises(ValueError):
        TransactionStore(db).fail(txn, status=TransactionStatus.COMPLETED)


def test_create_pending_uses_row_id_as_merchant_trans_id(db, user, plan):
    txn = TransactionStore(db).create_pending(
        user_id=user.id, plan_id=plan.id, amount=plan.price, payment_type=PaymentType.SUBSCRIPTION
    )
    assert txn.status == TransactionStatus.PENDING
    assert txn.merchant_trans_id == str(txn.id)


def test_find_unactivated_lists_completed_without_activation(db, user, plan):
    store = TransactionStore(db)
    txn = _prepared(db, user, plan)
    assert store.find_unactivated() == []

    store.complete(txn)
    assert store.find_unactivated() == [txn]

    assert store.claim_activation(txn) is True
    db.commit()
    assert store.find_unactivated() == []


def test_claim_activation_wins_once(db, user, plan):
    store = TransactionStore(db)
    txn = _prepared(db, user, plan)
    store.complete(txn)

    assert store.claim_activation(txn) is True
    assert store.claim_activation(txn) is False


def test_rolled_back_claim_is_released(db, user, plan):
    store = TransactionStore(db)
    txn = _prepared(db, user, plan)
    store.complete(txn)

    store.claim_activation(txn)
    db.rollback()

    assert store.find_unactivated() == [txn]
    assert store.claim_activation(txn) is True
