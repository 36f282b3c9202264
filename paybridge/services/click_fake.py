import itertools
import logging
import time

from paybridge.core.logging import mask_card_number
from paybridge.services.click import ensure_success, invoice_state, sanitize_card


logger = logging.getLogger(__name__)

# Magic inputs that make the fake behave like a failing gateway.
DECLINED_CARD_PREFIX = "0000"
WRONG_SMS_CODE = "000000"


class FakeClickClient:
    """In-process stand-in for ClickClient, used when CLICK_TEST_MODE is on.

    Never touches the network. Replies have the same shape as Click's so the
    rest of the code cannot tell the difference.
    """

    def __init__(self, settings=None):
        self.settings = settings
        self._ids = itertools.count(int(time.time()))
        self.calls: list[tuple[str, dict]] = []

    def _record(self, action: str, payload: dict) -> None:
        self.calls.append((action, payload))
        logger.info("FakeClickClient %s", action)

    def create_invoice(self, amount: int, phone_number: str, user_id: int, plan_id: int) -> dict:
        self._record("create_invoice", {"amount": amount, "user_id": user_id, "plan_id": plan_id})
        return {"error_code": 0, "error_note": "Success", "invoice_id": next(self._ids)}

    def check_invoice_status(self, invoice_id: int) -> dict:
        self._record("check_invoice_status", {"invoice_id": invoice_id})
        return {"error_code": 0, "error_note": "Success", "invoice_status": 0, "state": invoice_state(0)}

    def check_payment_status(self, payment_id: int) -> dict:
        self._record("check_payment_status", {"payment_id": payment_id})
        return {"error_code": 0, "error_note": "Success", "payment_id": payment_id, "payment_status": 1}

    def check_payment_by_merchant_trans_id(self, merchant_trans_id: str, date: str) -> dict:
        self._record("check_payment_by_merchant_trans_id", {"merchant_trans_id": merchant_trans_id, "date": date})
        return {"error_code": 0, "error_note": "Success", "payment_id": None, "merchant_trans_id": merchant_trans_id}

    def create_card_token(self, card_number: str, expire_date: str, temporary: bool = False) -> dict:
        number, _ = sanitize_card(card_number, expire_date)
        self._record("create_card_token", {"card": mask_card_number(number), "temporary": temporary})
        if number.startswith(DECLINED_CARD_PREFIX):
            ensure_success({"error_code": -5014, "error_note": "Card not supported"}, "card token request")
        return {
            "card_token": f"FAKE-TOKEN-{next(self._ids)}",
            "phone_number": "99890***4567",
            "masked_card_number": mask_card_number(number),
        }

    def verify_card_token(self, card_token: str, sms_code: str) -> dict:
        self._record("verify_card_token", {"card_token": card_token})
        if str(sms_code) == WRONG_SMS_CODE:
            ensure_success({"error_code": -5004, "error_note": "Wrong SMS code"}, "card token verify")
        return {"error_code": 0, "error_note": "Success", "card_number": "8600****1234"}

    def resend_sms_code(self, card_token: str) -> dict:
        self._record("resend_sms_code", {"card_token": card_token})
        return {"error_code": 0, "error_note": "Success"}

    def pay_with_token(self, card_token: str, amount: int, transaction_parameter: str) -> dict:
        self._record("pay_with_token", {"card_token": card_token, "amount": amount, "transaction": transaction_parameter})
        return {"error_code": 0, "error_note": "Success", "payment_id": next(self._ids), "payment_status": 1}
