import os

import pytest


def _set_test_env() -> None:
    defaults = {
        "APP_NAME": "Paybridge Test",
        "ENVIRONMENT": "test",
        "AUTO_CREATE_TABLES": "false",
        "DATABASE_URL": "sqlite://",
        "CLICK_SECRET": "test-secret",
        "CLICK_SERVICE_ID": "1001",
        "CLICK_MERCHANT_ID": "2002",
        "CLICK_MERCHANT_USER_ID": "3003",
        "CLICK_API_BASE_URLS": "https://api.click.uz/v2/merchant",
        "CLICK_TIMEOUT_SECONDS": "5",
        "CLICK_RETRY_COUNT": "2",
        "CLICK_RETRY_BACKOFF_SECONDS": "0",
        "CLICK_TEST_MODE": "true",
        "INTERNAL_API_KEY": "",
        "CORS_ORIGINS": "http://localhost:5173,http://localhost:3000",
    }
    for key, value in defaults.items():
        os.environ.setdefault(key, value)


_set_test_env()


from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from paybridge.core.config import get_settings  # noqa: E402
from paybridge.core.database import Base  # noqa: E402
from paybridge.models import Plan, User  # noqa: E402
from paybridge.schemas.click import PlanKeyedCallback, UserKeyedCallback  # noqa: E402
from paybridge.services.signature import SignatureFields, compute_signature  # noqa: E402


PLAN_PRICE = 50000


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def user(db):
    row = User(telegram_id=123456789, username="tester")
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def plan(db):
    row = Plan(name="Monthly", price=PLAN_PRICE, duration_days=30, is_active=True)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def signed_payload(secret: str, **fields) -> dict:
    """Callback payload as Click would post it, with a valid sign_string."""
    payload = {
        "click_trans_id": "9001",
        "service_id": os.environ["CLICK_SERVICE_ID"],
        "click_paydoc_id": "55501",
        "amount": str(PLAN_PRICE),
        "action": "0",
        "error": "0",
        "error_note": "Success",
        "sign_time": "2024-05-01 10:00:00",
    }
    payload.update({key: value for key, value in fields.items() if value is not None})
    include_prepare = str(payload["action"]) == "1"
    signature = SignatureFields(
        click_trans_id=str(payload["click_trans_id"]),
        service_id=str(payload["service_id"]),
        merchant_trans_id=str(payload["merchant_trans_id"]),
        amount=str(payload["amount"]),
        action=str(payload["action"]),
        sign_time=str(payload["sign_time"]),
        merchant_prepare_id=str(payload.get("merchant_prepare_id", "")) if include_prepare else None,
    )
    payload.setdefault("sign_string", compute_signature(signature, secret))
    return payload


def user_keyed(secret: str, user_id: int, plan_id: int, **fields) -> dict:
    return signed_payload(secret, merchant_trans_id=str(user_id), param1=str(plan_id), **fields)


def plan_keyed(secret: str, user_id: int, plan_id: int, **fields) -> dict:
    return signed_payload(secret, merchant_trans_id=str(plan_id), param2=str(user_id), **fields)


def as_user_keyed_request(payload: dict):
    return UserKeyedCallback.model_validate(payload).to_request()


def as_plan_keyed_request(payload: dict):
    return PlanKeyedCallback.model_validate(payload).to_request()
