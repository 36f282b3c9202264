from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from paybridge.models import PaymentType, Transaction, TransactionStatus, UserSubscription
from paybridge.services.callbacks import CallbackProcessor
from paybridge.services.signature import SignatureFields, compute_signature
from paybridge.services.subscriptions import SubscriptionService, reconcile_activations
from paybridge.services.transactions import TransactionStore

from conftest import PLAN_PRICE, as_plan_keyed_request, as_user_keyed_request, plan_keyed, user_keyed


class BrokenActivator:
    def activate(self, user, plan, payment):
        raise RuntimeError("bot is down")


def _processor(db, settings, activator=None):
    return CallbackProcessor(db, settings, activator or SubscriptionService(db))


def _prepare(processor, settings, user, plan, **fields):
    payload = user_keyed(settings.click_secret, user.id, plan.id, action="0", **fields)
    return processor.handle(as_user_keyed_request(payload))


def _complete(processor, settings, user, plan, prepare_id, **fields):
    fields.setdefault("click_trans_id", "9001")
    payload = user_keyed(
        settings.click_secret,
        user.id,
        plan.id,
        action="1",
        merchant_prepare_id=str(prepare_id),
        **fields,
    )
    return processor.handle(as_user_keyed_request(payload))


def test_prepare_creates_processing_transaction(db, settings, user, plan):
    reply = _prepare(_processor(db, settings), settings, user, plan)

    assert reply["error"] == 0
    assert reply["click_trans_id"] == 9001
    assert reply["merchant_trans_id"] == str(user.id)
    txn = db.query(Transaction).one()
    assert reply["merchant_prepare_id"] == txn.prepare_id
    assert txn.status == TransactionStatus.PROCESSING
    assert txn.amount == PLAN_PRICE
    assert txn.external_trans_id == "9001"
    assert txn.payment_type == PaymentType.ONETIME


def test_prepare_accepts_decimal_amount_text(db, settings, user, plan):
    reply = _prepare(_processor(db, settings), settings, user, plan, amount=f"{PLAN_PRICE}.00")
    assert reply["error"] == 0


def test_prepare_rejects_bad_signature(db, settings, user, plan):
    reply = _prepare(_processor(db, settings), settings, user, plan, sign_string="0" * 32)
    assert reply["error"] == -1
    assert reply["error_note"] == "SIGN CHECK FAILED!"
    assert db.query(Transaction).count() == 0


def test_duplicate_prepare_is_already_paid(db, settings, user, plan):
    processor = _processor(db, settings)
    assert _prepare(processor, settings, user, plan)["error"] == 0

    reply = _prepare(processor, settings, user, plan)

    assert reply["error"] == -4
    assert db.query(Transaction).count() == 1


def test_prepare_unknown_user_or_plan(db, settings, user, plan):
    processor = _processor(db, settings)
    unknown_user = processor.handle(as_user_keyed_request(user_keyed(settings.click_secret, 999, plan.id)))
    unknown_plan = processor.handle(as_user_keyed_request(user_keyed(settings.click_secret, user.id, 999)))
    assert unknown_user["error"] == -5
    assert unknown_plan["error"] == -5


def test_prepare_amount_mismatch(db, settings, user, plan):
    reply = _prepare(_processor(db, settings), settings, user, plan, amount="1000")
    assert reply["error"] == -2
    assert db.query(Transaction).count() == 0


def test_prepare_with_click_error_is_action_not_found(db, settings, user, plan):
    reply = _prepare(_processor(db, settings), settings, user, plan, error="-5017")
    assert reply["error"] == -3


def test_unknown_action(db, settings, user, plan):
    payload = user_keyed(settings.click_secret, user.id, plan.id, action="7")
    reply = _processor(db, settings).handle(as_user_keyed_request(payload))
    assert reply["error"] == -3


def test_complete_activates_subscription(db, settings, user, plan):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]

    reply = _complete(processor, settings, user, plan, prepare_id)

    assert reply["error"] == 0
    assert reply["merchant_confirm_id"] == prepare_id
    assert "merchant_prepare_id" not in reply
    txn = db.query(Transaction).one()
    assert txn.status == TransactionStatus.COMPLETED
    assert txn.activated_at is not None
    subscription = db.query(UserSubscription).one()
    assert subscription.is_active is True
    assert subscription.paid_amount == PLAN_PRICE
    assert subscription.transaction_id == txn.id
    db.refresh(user)
    assert user.subscription_type == "onetime"


def test_repeated_complete_succeeds_without_second_activation(db, settings, user, plan):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]
    assert _complete(processor, settings, user, plan, prepare_id)["error"] == 0
    end_at = db.query(UserSubscription).one().end_at

    reply = _complete(processor, settings, user, plan, prepare_id)

    assert reply["error"] == 0
    assert reply["merchant_confirm_id"] == prepare_id
    assert db.query(UserSubscription).count() == 1
    assert db.query(UserSubscription).one().end_at == end_at


def test_complete_unknown_prepare_id(db, settings, user, plan):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]
    reply = _complete(processor, settings, user, plan, prepare_id + 1)
    assert reply["error"] == -6


def test_complete_signature_must_include_prepare_id(db, settings, user, plan):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]
    payload = user_keyed(settings.click_secret, user.id, plan.id, action="1", merchant_prepare_id=str(prepare_id))
    # Digest computed without merchant_prepare_id, the way prepare is signed.
    payload["sign_string"] = compute_signature(
        SignatureFields(
            click_trans_id=payload["click_trans_id"],
            service_id=payload["service_id"],
            merchant_trans_id=payload["merchant_trans_id"],
            amount=payload["amount"],
            action="1",
            sign_time=payload["sign_time"],
        ),
        settings.click_secret,
    )

    reply = processor.handle(as_user_keyed_request(payload))

    assert reply["error"] == -1
    assert db.query(Transaction).one().status == TransactionStatus.PROCESSING


def test_complete_amount_mismatch(db, settings, user, plan):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]
    reply = _complete(processor, settings, user, plan, prepare_id, amount="1")
    assert reply["error"] == -2
    assert db.query(Transaction).one().status == TransactionStatus.PROCESSING


def test_complete_with_click_error_fails_transaction(db, settings, user, plan):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]

    reply = _complete(processor, settings, user, plan, prepare_id, error="-5017", error_note="Insufficient funds")

    assert reply["error"] == -5017
    assert reply["error_note"] == "Insufficient funds"
    txn = db.query(Transaction).one()
    assert txn.status == TransactionStatus.FAILED
    assert txn.error_code == -5017
    assert db.query(UserSubscription).count() == 0

    # A later successful complete for the failed transaction is refused.
    assert _complete(processor, settings, user, plan, prepare_id)["error"] == -9


def test_unsigned_click_error_does_not_change_state(db, settings, user, plan):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]

    reply = _complete(processor, settings, user, plan, prepare_id, error="-5017", sign_string="f" * 32)

    assert reply["error"] == -5017
    assert db.query(Transaction).one().status == TransactionStatus.PROCESSING


def test_activation_failure_keeps_payment_completed(db, settings, user, plan):
    processor = _processor(db, settings, activator=BrokenActivator())
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]

    reply = _complete(processor, settings, user, plan, prepare_id)

    assert reply["error"] == 0
    txn = db.query(Transaction).one()
    assert txn.status == TransactionStatus.COMPLETED
    assert txn.activated_at is None

    assert reconcile_activations(db, SubscriptionService(db)) == 1
    db.refresh(txn)
    assert txn.activated_at is not None
    assert db.query(UserSubscription).count() == 1
    assert reconcile_activations(db, SubscriptionService(db)) == 0


def test_plan_keyed_callbacks_mark_subscription_payment(db, settings, user, plan):
    processor = _processor(db, settings)
    prepare = processor.handle(as_plan_keyed_request(plan_keyed(settings.click_secret, user.id, plan.id, action="0")))
    assert prepare["error"] == 0
    assert prepare["merchant_trans_id"] == str(plan.id)

    payload = plan_keyed(
        settings.click_secret,
        user.id,
        plan.id,
        action="1",
        merchant_prepare_id=str(prepare["merchant_prepare_id"]),
    )
    complete = processor.handle(as_plan_keyed_request(payload))

    assert complete["error"] == 0
    txn = db.query(Transaction).one()
    assert txn.payment_type == PaymentType.SUBSCRIPTION
    assert txn.user_id == user.id
    assert db.query(UserSubscription).one().auto_renew is True


def test_prepare_non_finite_amount_is_invalid(db, settings, user, plan):
    processor = _processor(db, settings)
    for amount in ("sNaN", "NaN", "Infinity"):
        assert _prepare(processor, settings, user, plan, amount=amount)["error"] == -2
    assert db.query(Transaction).count() == 0


def test_complete_unknown_user_or_plan(db, settings, user, plan):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]

    unknown_user = processor.handle(
        as_user_keyed_request(
            user_keyed(settings.click_secret, 999, plan.id, action="1", merchant_prepare_id=str(prepare_id))
        )
    )
    unknown_plan = processor.handle(
        as_user_keyed_request(
            user_keyed(settings.click_secret, user.id, 999, action="1", merchant_prepare_id=str(prepare_id))
        )
    )

    assert unknown_user["error"] == -5
    assert unknown_plan["error"] == -5
    assert db.query(Transaction).one().status == TransactionStatus.PROCESSING


def test_complete_for_another_click_transaction_is_not_found(db, settings, user, plan):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]

    reply = _complete(processor, settings, user, plan, prepare_id, click_trans_id="9999")

    assert reply["error"] == -6
    assert db.query(Transaction).one().status == TransactionStatus.PROCESSING
    assert db.query(UserSubscription).count() == 0


def _settle_behind_session(db, monkeypatch, status):
    original = TransactionStore.complete

    def racing_complete(self, txn, **kwargs):
        # Another worker moves the row first; this session still sees PROCESSING.
        db.execute(
            update(Transaction)
            .where(Transaction.id == txn.id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        return original(self, txn, **kwargs)

    monkeypatch.setattr(TransactionStore, "complete", racing_complete)


def test_complete_losing_race_to_completion_answers_success(db, settings, user, plan, monkeypatch):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]
    _settle_behind_session(db, monkeypatch, TransactionStatus.COMPLETED)

    reply = _complete(processor, settings, user, plan, prepare_id)

    assert reply["error"] == 0
    assert reply["merchant_confirm_id"] == prepare_id
    assert db.query(UserSubscription).count() == 0


def test_complete_losing_race_to_failure_is_cancelled(db, settings, user, plan, monkeypatch):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]
    _settle_behind_session(db, monkeypatch, TransactionStatus.FAILED)

    reply = _complete(processor, settings, user, plan, prepare_id)

    assert reply["error"] == -9
    assert db.query(UserSubscription).count() == 0


def _database_down(*args, **kwargs):
    raise OperationalError("UPDATE transactions", {}, Exception("db down"))


def test_prepare_database_error_is_update_failed(db, settings, user, plan, monkeypatch):
    monkeypatch.setattr(TransactionStore, "create_prepared", _database_down)

    reply = _prepare(_processor(db, settings), settings, user, plan)

    assert reply["error"] == -7
    assert db.query(Transaction).count() == 0


def test_complete_database_error_is_update_failed(db, settings, user, plan, monkeypatch):
    processor = _processor(db, settings)
    prepare_id = _prepare(processor, settings, user, plan)["merchant_prepare_id"]
    monkeypatch.setattr(TransactionStore, "complete", _database_down)

    reply = _complete(processor, settings, user, plan, prepare_id)

    assert reply["error"] == -7
    assert db.query(Transaction).one().status == TransactionStatus.PROCESSING
    assert db.query(UserSubscription).count() == 0
