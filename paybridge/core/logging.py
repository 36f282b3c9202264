import logging
import os
import sys


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install a single stdout handler on the root logger.

    Safe to call more than once; later calls only adjust the level.
    """
    global _configured

    resolved = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, resolved, logging.INFO))

    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)

    # httpx logs every request at INFO; the gateway client already does that with more context.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True


def mask_card_number(card_number: str | None) -> str:
    digits = "".join(ch for ch in str(card_number or "") if ch.isdigit())
    if len(digits) < 8:
        return "****"
    return f"{digits[:4]}****{digits[-4:]}"


def mask_phone(phone: str | None) -> str:
    text = str(phone or "").strip()
    if len(text) <= 6:
        return "***"
    return f"{text[:6]}***"
