import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from paybridge.core.logging import mask_phone
from paybridge.models import Plan, PaymentType, TransactionStatus, User, UserCard
from paybridge.services.gateway import GatewayError, GatewayResponseError
from paybridge.services.subscriptions import SubscriptionActivator, activate_for_transaction
from paybridge.services.transactions import TransactionStore


logger = logging.getLogger(__name__)

PAYMENT_NOT_PROCESSED = "Payment could not be processed. Please try again later."
PAYMENT_NOT_RECORDED = "Payment was taken but could not be recorded. Contact support with the payment id."


class NotFoundError(LookupError):
    pass


class CardService:
    """Saved-card flow: tokenize, confirm by SMS, then charge the token for a plan."""

    def __init__(self, db: Session, click, activator: SubscriptionActivator):
        self.db = db
        self.click = click
        self.activator = activator
        self.store = TransactionStore(db)

    def _user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def _card(self, user_id: int) -> UserCard:
        card = self.db.query(UserCard).filter(UserCard.user_id == user_id).first()
        if not card:
            raise NotFoundError("No saved card for this user")
        return card

    def create_token(self, user_id: int, card_number: str, expire_date: str, temporary: bool = False) -> UserCard:
        user = self._user(user_id)
        data = self.click.create_card_token(card_number, expire_date, temporary=temporary)

        card = self.db.query(UserCard).filter(UserCard.user_id == user.id).first()
        if not card:
            card = UserCard(user_id=user.id)
            self.db.add(card)
        card.card_token = data["card_token"]
        card.masked_card_number = data.get("masked_card_number")
        card.masked_phone = mask_phone(data.get("phone_number"))
        card.is_temporary = bool(temporary)
        # A new token always needs a fresh SMS confirmation.
        card.verified = False
        card.verified_at = None
        self.db.commit()
        self.db.refresh(card)
        logger.info("Stored card token for user_id=%s card=%s", user.id, card.masked_card_number)
        return card

    def verify_token(self, user_id: int, card_token: str, sms_code: str) -> UserCard:
        card = self._card(user_id)
        if card.card_token != card_token:
            raise NotFoundError("Card token does not belong to this user")
        self.click.verify_card_token(card_token, sms_code)
        card.verified = True
        card.verified_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(card)
        logger.info("Card verified for user_id=%s", user_id)
        return card

    def resend_sms(self, user_id: int, card_token: str) -> UserCard:
        card = self._card(user_id)
        if card.card_token != card_token:
            raise NotFoundError("Card token does not belong to this user")
        self.click.resend_sms_code(card_token)
        logger.info("SMS code resent for user_id=%s", user_id)
        return card

    def pay_with_token(self, user_id: int, plan_id: int) -> dict:
        user = self._user(user_id)
        plan = self.db.get(Plan, plan_id)
        if not plan or not plan.is_active:
            raise NotFoundError("Plan not found")
        card = self._card(user.id)
        if not card.verified:
            return {"success": False, "error": "Card is not verified yet.", "error_code": None}

        txn = self.store.create_pending(
            user_id=user.id,
            plan_id=plan.id,
            amount=int(plan.price),
            payment_type=PaymentType.SUBSCRIPTION,
        )
        try:
            data = self.click.pay_with_token(card.card_token, int(plan.price), txn.merchant_trans_id)
        except GatewayResponseError as exc:
            self.store.fail(txn, error_code=exc.error_code, error_note=exc.error_note or exc.message)
            return {"success": False, "error": exc.message, "error_code": exc.error_code, "transaction_id": txn.id}
        except GatewayError as exc:
            # Timeouts land here too; Click may still settle, but we never leave it pending.
            logger.warning("Token payment for transaction id=%s failed: %s", txn.id, exc)
            self.store.fail(txn, error_code=exc.error_code, error_note=exc.message)
            return {"success": False, "error": exc.message, "error_code": exc.error_code, "transaction_id": txn.id}
        except Exception as exc:
            logger.exception("Token payment for transaction id=%s raised unexpectedly", txn.id)
            self.store.fail(txn, error_note=f"{type(exc).__name__}: {exc}")
            return {"success": False, "error": PAYMENT_NOT_PROCESSED, "error_code": None, "transaction_id": txn.id}

        payment_id = data.get("payment_id")
        try:
            if TransactionStatus(txn.status) == TransactionStatus.PENDING:
                self.store.complete(txn, external_trans_id=str(payment_id) if payment_id is not None else None)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Click charged payment_id=%s but transaction id=%s could not be completed", payment_id, txn.id)
            self._record_unsettled_charge(txn, payment_id)
            return {
                "success": False,
                "error": PAYMENT_NOT_RECORDED,
                "error_code": None,
                "payment_id": payment_id,
                "transaction_id": txn.id,
            }

        activated = activate_for_transaction(self.db, self.activator, txn)
        logger.info("Token payment completed transaction id=%s payment_id=%s activated=%s", txn.id, payment_id, activated)
        return {
            "success": True,
            "payment_id": payment_id,
            "transaction_id": txn.id,
            "activated": activated,
        }

    def _record_unsettled_charge(self, txn, payment_id) -> None:
        # The note keeps the Click payment id so the charge can be matched by hand.
        try:
            self.store.fail(txn, error_note=f"charged payment_id={payment_id}; completion not recorded")
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("Transaction id=%s left pending after charge payment_id=%s", txn.id, payment_id)
