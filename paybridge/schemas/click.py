import enum
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from paybridge.models import PaymentType
from paybridge.services.signature import SignatureFields


class ClickAction(int, enum.Enum):
    PREPARE = 0
    COMPLETE = 1


class ClickError(int, enum.Enum):
    SUCCESS = 0
    SIGN_CHECK_FAILED = -1
    INVALID_AMOUNT = -2
    ACTION_NOT_FOUND = -3
    ALREADY_PAID = -4
    USER_NOT_FOUND = -5
    TRANSACTION_NOT_FOUND = -6
    UPDATE_FAILED = -7
    BAD_REQUEST = -8
    TRANSACTION_CANCELLED = -9


ERROR_NOTES = {
    ClickError.SUCCESS: "Success",
    ClickError.SIGN_CHECK_FAILED: "SIGN CHECK FAILED!",
    ClickError.INVALID_AMOUNT: "Incorrect parameter amount",
    ClickError.ACTION_NOT_FOUND: "Action not found",
    ClickError.ALREADY_PAID: "Already paid",
    ClickError.USER_NOT_FOUND: "User does not exist",
    ClickError.TRANSACTION_NOT_FOUND: "Transaction does not exist",
    ClickError.UPDATE_FAILED: "Failed to update user",
    ClickError.BAD_REQUEST: "Error in request from click",
    ClickError.TRANSACTION_CANCELLED: "Transaction cancelled",
}


def wire_text(value: Any) -> str:
    """Render a callback value the way it appeared in Click's form post."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _parse_int(value: str | None) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class CallbackRequest:
    """Click callback with the merchant-facing id already resolved to user and plan."""

    click_trans_id: str
    service_id: str
    merchant_trans_id: str
    amount: str
    action: str
    error: int
    error_note: str
    sign_time: str
    sign_string: str
    user_id: int | None
    plan_id: int | None
    payment_type: PaymentType
    merchant_prepare_id: str | None = None

    @property
    def action_code(self) -> int | None:
        return _parse_int(self.action)

    @property
    def prepare_id(self) -> int | None:
        return _parse_int(self.merchant_prepare_id)

    @property
    def amount_value(self) -> Decimal | None:
        try:
            value = Decimal(self.amount)
        except (InvalidOperation, ValueError):
            return None
        # NaN, sNaN and Infinity parse but are never a price; sNaN raises on ==.
        return value if value.is_finite() else None

    def signature_fields(self, include_prepare_id: bool) -> SignatureFields:
        return SignatureFields(
            click_trans_id=self.click_trans_id,
            service_id=self.service_id,
            merchant_trans_id=self.merchant_trans_id,
            amount=self.amount,
            action=self.action,
            sign_time=self.sign_time,
            merchant_prepare_id=(self.merchant_prepare_id or "") if include_prepare_id else None,
        )


class ClickCallbackIn(BaseModel):
    click_trans_id: str = Field(min_length=1)
    service_id: str = Field(min_length=1)
    click_paydoc_id: Optional[str] = None
    merchant_trans_id: str = Field(min_length=1)
    merchant_prepare_id: Optional[str] = None
    amount: str = Field(min_length=1)
    action: str = Field(min_length=1)
    error: int = 0
    error_note: str = ""
    sign_time: str = Field(min_length=1)
    sign_string: str = Field(min_length=1)
    param1: Optional[str] = None
    param2: Optional[str] = None
    param3: Optional[str] = None

    @field_validator(
        "click_trans_id",
        "service_id",
        "click_paydoc_id",
        "merchant_trans_id",
        "merchant_prepare_id",
        "amount",
        "action",
        "error_note",
        "sign_time",
        "sign_string",
        "param1",
        "param2",
        "param3",
        mode="before",
    )
    @classmethod
    def _as_wire_text(cls, value):
        if value is None:
            return None
        return wire_text(value)

    @field_validator("error", mode="before")
    @classmethod
    def _error_code(cls, value):
        if value in (None, ""):
            return 0
        return value

    def _request(self, *, user_ref, plan_ref, payment_type: PaymentType) -> CallbackRequest:
        merchant_prepare_id = self.merchant_prepare_id or None
        return CallbackRequest(
            click_trans_id=self.click_trans_id,
            service_id=self.service_id,
            merchant_trans_id=self.merchant_trans_id,
            merchant_prepare_id=merchant_prepare_id,
            amount=self.amount,
            action=self.action,
            error=int(self.error),
            error_note=self.error_note,
            sign_time=self.sign_time,
            sign_string=self.sign_string,
            user_id=_parse_int(user_ref),
            plan_id=_parse_int(plan_ref),
            payment_type=payment_type,
        )


class UserKeyedCallback(ClickCallbackIn):
    """Invoice / redirect payments: merchant_trans_id is the user id, param1 the plan id."""

    def to_request(self) -> CallbackRequest:
        return self._request(user_ref=self.merchant_trans_id, plan_ref=self.param1, payment_type=PaymentType.ONETIME)


class PlanKeyedCallback(ClickCallbackIn):
    """Subscription payments: merchant_trans_id is the plan id, param2 the user id."""

    def to_request(self) -> CallbackRequest:
        return self._request(user_ref=self.param2, plan_ref=self.merchant_trans_id, payment_type=PaymentType.SUBSCRIPTION)


def _echo_trans_id(value):
    text = wire_text(value)
    return int(text) if text.lstrip("-").isdigit() else (text or None)


def callback_reply(
    click_trans_id,
    merchant_trans_id,
    error: ClickError | int,
    *,
    error_note: str | None = None,
    merchant_prepare_id: int | None = None,
    merchant_confirm_id: int | None = None,
    action: int | None = None,
) -> dict:
    if error_note is None:
        try:
            error_note = ERROR_NOTES[ClickError(error)]
        except ValueError:
            error_note = "Failed"
    reply = {
        "click_trans_id": _echo_trans_id(click_trans_id),
        "merchant_trans_id": wire_text(merchant_trans_id) or None,
    }
    if action == ClickAction.COMPLETE:
        reply["merchant_confirm_id"] = merchant_confirm_id
    else:
        reply["merchant_prepare_id"] = merchant_prepare_id
    reply["error"] = int(error)
    reply["error_note"] = error_note
    return reply
