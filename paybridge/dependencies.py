import hmac
import logging

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from paybridge.core.config import Settings, get_settings
from paybridge.core.database import get_db
from paybridge.services.callbacks import CallbackProcessor
from paybridge.services.cards import CardService
from paybridge.services.click import ClickClient
from paybridge.services.click_fake import FakeClickClient
from paybridge.services.subscriptions import SubscriptionService


logger = logging.getLogger(__name__)


def get_click_client(settings: Settings = Depends(get_settings)):
    if settings.click_test_mode:
        return FakeClickClient(settings)
    return ClickClient(settings)


def require_internal_key(
    x_internal_key: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.internal_api_key
    if not expected:
        return
    if not x_internal_key or not hmac.compare_digest(x_internal_key.encode(), expected.encode()):
        logger.warning("Rejected bot-facing request with missing or wrong X-Internal-Key")
        raise HTTPException(status_code=401, detail="Invalid internal key")


def get_subscription_activator(db: Session = Depends(get_db)) -> SubscriptionService:
    return SubscriptionService(db)


def get_callback_processor(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    activator: SubscriptionService = Depends(get_subscription_activator),
) -> CallbackProcessor:
    return CallbackProcessor(db, settings, activator)


def get_card_service(
    db: Session = Depends(get_db),
    click=Depends(get_click_client),
    activator: SubscriptionService = Depends(get_subscription_activator),
) -> CardService:
    return CardService(db, click, activator)
