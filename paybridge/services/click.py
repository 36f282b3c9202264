import logging
import re

from paybridge.core.config import Settings
from paybridge.core.logging import mask_card_number, mask_phone
from paybridge.services.gateway import GatewayClient, GatewayResponseError
from paybridge.services.signature import build_auth_header


logger = logging.getLogger(__name__)

SUPPORT_HINT = "Click support: +998 71 200 09 09"

GATEWAY_ERROR_MESSAGES = {
    -1: "Sign check failed. The request signature is invalid.",
    -2: "Incorrect parameters were sent to Click.",
    -3: "Action not found.",
    -4: "Already paid.",
    -5: "User does not exist.",
    -6: "Transaction does not exist.",
    -7: "Failed to update user.",
    -8: "Error in request from Click.",
    -9: "Transaction cancelled.",
    -401: "Click rejected the merchant credentials. Check CLICK_MERCHANT_USER_ID and CLICK_SECRET.",
    -404: f"Click card token service not found. Merchant configuration is wrong. {SUPPORT_HINT}",
    -500: f"Click internal error, usually a merchant settings problem. {SUPPORT_HINT}",
    -5004: "SMS code is wrong or expired.",
    -5005: "SMS code has expired.",
    -5014: "Card number is invalid or not supported.",
    -5019: "Card verification limit reached. Try again later.",
    -5023: "This card type is not supported.",
}

INVOICE_STATES = {0: "pending", 1: "paid", -1: "cancelled"}


class CardValidationError(ValueError):
    pass


def describe_gateway_error(error_code: int, error_note: str | None = None) -> str:
    message = GATEWAY_ERROR_MESSAGES.get(error_code)
    if message:
        return message
    note = str(error_note or "").strip()
    return note or f"Click API error {error_code}. {SUPPORT_HINT}"


def invoice_state(status_code) -> str:
    try:
        return INVOICE_STATES.get(int(status_code), "unknown")
    except (TypeError, ValueError):
        return "unknown"


def sanitize_card(card_number: str, expire_date: str) -> tuple[str, str]:
    number = re.sub(r"\s+", "", str(card_number or ""))
    expiry = re.sub(r"\D", "", str(expire_date or ""))
    if not re.fullmatch(r"\d{16}", number):
        raise CardValidationError("Card number must be 16 digits.")
    if not re.fullmatch(r"\d{4}", expiry):
        raise CardValidationError("Expiry date must be in MMYY format, e.g. 1225.")
    month = int(expiry[:2])
    if month < 1 or month > 12:
        raise CardValidationError("Expiry month must be between 01 and 12.")
    return number, expiry


def ensure_success(data: dict, action: str) -> dict:
    raw_code = data.get("error_code", 0)
    try:
        error_code = int(raw_code)
    except (TypeError, ValueError):
        error_code = -8
    if error_code != 0:
        note = data.get("error_note")
        logger.error("Click %s failed: error_code=%s error_note=%s", action, error_code, note)
        raise GatewayResponseError(
            describe_gateway_error(error_code, note),
            error_code=error_code,
            error_note=note,
            raw=data,
        )
    return data


class ClickClient:
    def __init__(self, settings: Settings, gateway: GatewayClient | None = None):
        self.settings = settings
        self.service_id = settings.click_service_id
        self.merchant_id = settings.click_merchant_id
        self.base_urls = settings.click_base_urls
        self.gateway = gateway or GatewayClient(
            timeout=settings.click_timeout_seconds,
            retry_count=settings.click_retry_count,
            backoff_seconds=settings.click_retry_backoff_seconds,
        )

    def _headers(self) -> dict:
        # Built per attempt; Click rejects stale Auth timestamps.
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Auth": build_auth_header(self.settings.click_merchant_user_id, self.settings.click_secret),
        }

    def _candidates(self, path: str) -> list[str]:
        if not path.startswith("/"):
            path = "/" + path
        return [f"{base}{path}" for base in self.base_urls]

    def create_invoice(self, amount: int, phone_number: str, user_id: int, plan_id: int) -> dict:
        # merchant_trans_id carries the user id and param1 the plan id; the
        # user-keyed callback endpoint reads them back the same way.
        payload = {
            "service_id": self.service_id,
            "amount": amount,
            "phone_number": phone_number,
            "merchant_trans_id": str(user_id),
            "param1": str(plan_id),
        }
        logger.info(
            "Creating Click invoice user_id=%s plan_id=%s amount=%s phone=%s",
            user_id,
            plan_id,
            amount,
            mask_phone(phone_number),
        )
        data = ensure_success(self.gateway.post(self._candidates("/invoice/create"), payload, self._headers), "invoice create")
        logger.info("Click invoice created invoice_id=%s user_id=%s", data.get("invoice_id"), user_id)
        return data

    def check_invoice_status(self, invoice_id: int) -> dict:
        data = self.gateway.get(self._candidates(f"/invoice/status/{self.service_id}/{invoice_id}"), self._headers)
        ensure_success(data, "invoice status")
        data["state"] = invoice_state(data.get("invoice_status"))
        return data

    def check_payment_status(self, payment_id: int) -> dict:
        data = self.gateway.get(self._candidates(f"/payment/status/{self.service_id}/{payment_id}"), self._headers)
        return ensure_success(data, "payment status")

    def check_payment_by_merchant_trans_id(self, merchant_trans_id: str, date: str) -> dict:
        path = f"/payment/status_by_mti/{self.service_id}/{merchant_trans_id}/{date}"
        return ensure_success(self.gateway.get(self._candidates(path), self._headers), "payment status by mti")

    def create_card_token(self, card_number: str, expire_date: str, temporary: bool = False) -> dict:
        number, expiry = sanitize_card(card_number, expire_date)
        payload = {
            "service_id": self.service_id,
            "merchant_id": self.merchant_id,
            "card_number": number,
            "expire_date": expiry,
            "temporary": 1 if temporary else 0,
        }
        logger.info("Requesting Click card token card=%s temporary=%s", mask_card_number(number), bool(temporary))
        data = ensure_success(self.gateway.post(self._candidates("/card_token/request"), payload, self._headers), "card token request")
        return {
            "card_token": data.get("card_token"),
            "phone_number": data.get("phone_number"),
            "masked_card_number": mask_card_number(number),
        }

    def verify_card_token(self, card_token: str, sms_code: str) -> dict:
        payload = {
            "service_id": self.service_id,
            "merchant_id": self.merchant_id,
            "card_token": card_token,
            # Kept as a string so leading zeros survive.
            "sms_code": str(sms_code),
        }
        return ensure_success(self.gateway.post(self._candidates("/card_token/verify"), payload, self._headers), "card token verify")

    def resend_sms_code(self, card_token: str) -> dict:
        payload = {
            "service_id": self.service_id,
            "merchant_id": self.merchant_id,
            "card_token": card_token,
        }
        logger.info("Requesting Click SMS code resend for card token")
        return ensure_success(self.gateway.post(self._candidates("/card_token/resend"), payload, self._headers), "card token resend")

    def pay_with_token(self, card_token: str, amount: int, transaction_parameter: str) -> dict:
        payload = {
            "service_id": self.service_id,
            "merchant_id": self.merchant_id,
            "card_token": card_token,
            "amount": str(amount),
            "transaction_parameter": transaction_parameter,
        }
        logger.info("Charging Click card token amount=%s transaction=%s", amount, transaction_parameter)
        return ensure_success(self.gateway.post(self._candidates("/card_token/payment"), payload, self._headers), "card token payment")
