import hashlib
import hmac
import re
import time
from dataclasses import dataclass
from typing import Callable


_HEX40 = re.compile(r"^[0-9a-f]{40}$")
_TIMESTAMP = re.compile(r"^\d{10}$")


class AuthHeaderError(ValueError):
    pass


@dataclass(frozen=True)
class SignatureFields:
    """Callback fields covered by Click's sign_string, as wire text.

    merchant_prepare_id is only present on the complete action.
    """

    click_trans_id: str
    service_id: str
    merchant_trans_id: str
    amount: str
    action: str
    sign_time: str
    merchant_prepare_id: str | None = None

    def ordered(self, secret: str) -> tuple[str, ...]:
        parts = [self.click_trans_id, self.service_id, secret, self.merchant_trans_id]
        if self.merchant_prepare_id is not None:
            parts.append(self.merchant_prepare_id)
        parts.extend([self.amount, self.action, self.sign_time])
        return tuple(parts)


def compute_signature(fields: SignatureFields, secret: str) -> str:
    payload = "".join(fields.ordered(secret))
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def verify_signature(fields: SignatureFields, secret: str, supplied: str | None) -> bool:
    if not supplied:
        return False
    computed = compute_signature(fields, secret)
    return hmac.compare_digest(computed.encode("utf-8"), str(supplied).encode("utf-8"))


def build_auth_header(
    merchant_user_id: str,
    secret: str,
    now: float | Callable[[], float] | None = None,
) -> str:
    """Build the value of Click's ``Auth`` header.

    Format is ``merchant_user_id:sha1(timestamp + secret):timestamp`` where the
    timestamp is whole Unix seconds. Click rejects stale timestamps, so the
    header has to be built right before each request.
    """
    merchant_user_id = str(merchant_user_id)
    if not merchant_user_id or merchant_user_id != merchant_user_id.strip():
        raise AuthHeaderError("Merchant user id is empty or has surrounding whitespace.")
    if not secret or secret != secret.strip():
        raise AuthHeaderError("Click secret is empty or has surrounding whitespace.")

    if now is None:
        now = time.time
    current = now() if callable(now) else now
    timestamp = str(int(current))
    digest = hashlib.sha1(f"{timestamp}{secret}".encode("utf-8")).hexdigest()

    if not _TIMESTAMP.match(timestamp):
        raise AuthHeaderError(f"Auth timestamp must be 10 digits, got {timestamp!r}. Check the system clock.")
    if not _HEX40.match(digest):
        raise AuthHeaderError("Auth digest must be 40 hex characters.")
    return f"{merchant_user_id}:{digest}:{timestamp}"
