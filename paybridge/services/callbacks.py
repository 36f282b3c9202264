import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from paybridge.core.config import Settings
from paybridge.models import Plan, TransactionStatus, User
from paybridge.schemas.click import CallbackRequest, ClickAction, ClickError, callback_reply
from paybridge.services.signature import verify_signature
from paybridge.services.subscriptions import SubscriptionActivator, activate_for_transaction
from paybridge.services.transactions import TransactionStore


logger = logging.getLogger(__name__)

CANCELLED_STATUSES = {TransactionStatus.FAILED, TransactionStatus.CANCELED}
OPEN_STATUSES = {TransactionStatus.PENDING, TransactionStatus.PROCESSING}


def _matches_price(request: CallbackRequest, price: int) -> bool:
    amount = request.amount_value
    return amount is not None and amount == price


def _same_click_transaction(txn, request: CallbackRequest) -> bool:
    # Prepare stored Click's id; a complete for another click_trans_id is not this row.
    return not txn.external_trans_id or txn.external_trans_id == request.click_trans_id

class CallbackProcessor:
    """Click prepare/complete handling.

    Every outcome is a reply dict for Click; nothing here raises across the
    callback boundary. Prepare leaves an accepted transaction in PROCESSING,
    complete moves it to COMPLETED exactly once and then activates the
    subscription.
    """

    def __init__(self, db: Session, settings: Settings, activator: SubscriptionActivator):
        self.db = db
        self.secret = settings.click_secret
        self.activator = activator
        self.store = TransactionStore(db)

    def handle(self, request: CallbackRequest) -> dict:
        action = request.action_code
        logger.info(
            "Click callback action=%s click_trans_id=%s merchant_trans_id=%s amount=%s error=%s",
            request.action,
            request.click_trans_id,
            request.merchant_trans_id,
            request.amount,
            request.error,
        )
        if action == ClickAction.PREPARE:
            return self.prepare(request)
        if action == ClickAction.COMPLETE:
            return self.complete(request)
        return callback_reply(request.click_trans_id, request.merchant_trans_id, ClickError.ACTION_NOT_FOUND)

    def _reply(self, request: CallbackRequest, error, **kwargs) -> dict:
        return callback_reply(
            request.click_trans_id,
            request.merchant_trans_id,
            error,
            action=request.action_code,
            **kwargs,
        )

    def _signature_ok(self, request: CallbackRequest, *, complete: bool) -> bool:
        ok = verify_signature(request.signature_fields(include_prepare_id=complete), self.secret, request.sign_string)
        if not ok:
            logger.warning("Click signature mismatch click_trans_id=%s action=%s", request.click_trans_id, request.action)
        return ok

    def _resolve(self, request: CallbackRequest) -> tuple[User | None, Plan | None]:
        user = self.db.get(User, request.user_id) if request.user_id is not None else None
        plan = self.db.get(Plan, request.plan_id) if request.plan_id is not None else None
        return user, plan

    def prepare(self, request: CallbackRequest) -> dict:
        if request.error != 0:
            return self._reply(request, ClickError.ACTION_NOT_FOUND)

        if not self._signature_ok(request, complete=False):
            return self._reply(request, ClickError.SIGN_CHECK_FAILED)

        if self.store.find_progressing(request.click_trans_id):
            logger.info("Duplicate prepare for click_trans_id=%s", request.click_trans_id)
            return self._reply(request, ClickError.ALREADY_PAID)

        user, plan = self._resolve(request)
        if not user or not plan:
            return self._reply(request, ClickError.USER_NOT_FOUND)

        if not _matches_price(request, plan.price):
            logger.warning("Prepare amount mismatch click_trans_id=%s amount=%s price=%s", request.click_trans_id, request.amount, plan.price)
            return self._reply(request, ClickError.INVALID_AMOUNT)

        try:
            txn = self.store.create_prepared(
                external_trans_id=request.click_trans_id,
                merchant_trans_id=request.merchant_trans_id,
                user_id=user.id,
                plan_id=plan.id,
                amount=int(plan.price),
                payment_type=request.payment_type,
                sign_time=request.sign_time,
            )
        except IntegrityError:
            # Lost a race against a redelivered prepare for the same click_trans_id.
            self.db.rollback()
            return self._reply(request, ClickError.ALREADY_PAID)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to store prepared transaction click_trans_id=%s", request.click_trans_id)
            return self._reply(request, ClickError.UPDATE_FAILED)

        return self._reply(request, ClickError.SUCCESS, merchant_prepare_id=txn.prepare_id)

    def complete(self, request: CallbackRequest) -> dict:
        if request.error != 0:
            return self._gateway_failure(request)

        if not self._signature_ok(request, complete=True):
            return self._reply(request, ClickError.SIGN_CHECK_FAILED)

        user, plan = self._resolve(request)
        if not user or not plan:
            return self._reply(request, ClickError.USER_NOT_FOUND)

        prepare_id = request.prepare_id
        txn = self.store.find_prepared(prepare_id, user.id, plan.id) if prepare_id is not None else None
        if not txn or not _same_click_transaction(txn, request):
            return self._reply(request, ClickError.TRANSACTION_NOT_FOUND)

        status = TransactionStatus(txn.status)
        if status == TransactionStatus.COMPLETED:
            logger.info("Repeated complete for transaction id=%s, answering success", txn.id)
            return self._reply(request, ClickError.SUCCESS, merchant_confirm_id=txn.prepare_id)
        if status in CANCELLED_STATUSES:
            return self._reply(request, ClickError.TRANSACTION_CANCELLED)

        if not _matches_price(request, plan.price) or not _matches_price(request, txn.amount):
            logger.warning("Complete amount mismatch transaction id=%s amount=%s price=%s", txn.id, request.amount, plan.price)
            return self._reply(request, ClickError.INVALID_AMOUNT)

        try:
            changed = self.store.complete(txn)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to complete transaction id=%s", txn.id)
            return self._reply(request, ClickError.UPDATE_FAILED)

        if not changed:
            self.db.refresh(txn)
            if TransactionStatus(txn.status) == TransactionStatus.COMPLETED:
                # Another delivery of the same complete won the update and activates.
                return self._reply(request, ClickError.SUCCESS, merchant_confirm_id=txn.prepare_id)
            return self._reply(request, ClickError.TRANSACTION_CANCELLED)

        logger.info("Transaction id=%s completed click_trans_id=%s", txn.id, request.click_trans_id)
        activate_for_transaction(self.db, self.activator, txn)
        return self._reply(request, ClickError.SUCCESS, merchant_confirm_id=txn.prepare_id)

    def _gateway_failure(self, request: CallbackRequest) -> dict:
        # Click reports its own failure; echo the code back. State only
        # changes when the request is authentic.
        if self._signature_ok(request, complete=True) and request.prepare_id is not None:
            txn = None
            if request.user_id is not None and request.plan_id is not None:
                txn = self.store.find_prepared(request.prepare_id, request.user_id, request.plan_id)
            if txn and _same_click_transaction(txn, request) and TransactionStatus(txn.status) in OPEN_STATUSES:
                try:
                    self.store.fail(txn, error_code=request.error, error_note=request.error_note)
                except SQLAlchemyError:
                    self.db.rollback()
                    logger.exception("Failed to mark transaction id=%s failed", txn.id)
        logger.info("Click reported error=%s for click_trans_id=%s", request.error, request.click_trans_id)
        return self._reply(request, request.error, error_note=request.error_note or "Failed")
