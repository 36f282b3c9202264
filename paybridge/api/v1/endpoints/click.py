import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from paybridge.core.database import get_db
from paybridge.dependencies import get_callback_processor, get_click_client, require_internal_key
from paybridge.middlewares.rate_limit import limiter
from paybridge.models import Plan, User
from paybridge.schemas.click import (
    ClickCallbackIn,
    ClickError,
    PlanKeyedCallback,
    UserKeyedCallback,
    callback_reply,
)
from paybridge.schemas.invoice import CreateInvoiceRequest, InvoiceOut, InvoiceStatusOut
from paybridge.services.callbacks import CallbackProcessor


router = APIRouter()
logger = logging.getLogger(__name__)


async def _read_payload(request: Request) -> dict:
    content_type = (request.headers.get("content-type") or "").lower()
    if "application/json" in content_type:
        body = await request.body()
        data = json.loads(body or b"{}")
        return data if isinstance(data, dict) else {}
    form = await request.form()
    return dict(form)


async def _handle_callback(request: Request, model: type[ClickCallbackIn], processor: CallbackProcessor) -> dict:
    # Click retries anything that is not a 200, so every outcome is a 200 with an error code.
    try:
        payload = await _read_payload(request)
    except ValueError:
        logger.warning("Unreadable Click callback body on %s", request.url.path)
        return callback_reply(None, None, ClickError.BAD_REQUEST)

    try:
        callback = model.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Malformed Click callback on %s: %s", request.url.path, exc.errors(include_url=False))
        return callback_reply(payload.get("click_trans_id"), payload.get("merchant_trans_id"), ClickError.BAD_REQUEST)

    try:
        return processor.handle(callback.to_request())
    except Exception:
        logger.exception("Unhandled error processing Click callback click_trans_id=%s", callback.click_trans_id)
        return callback_reply(callback.click_trans_id, callback.merchant_trans_id, ClickError.UPDATE_FAILED)


@router.post("/callback")
async def click_callback(request: Request, processor: CallbackProcessor = Depends(get_callback_processor)):
    return await _handle_callback(request, UserKeyedCallback, processor)


@router.post("/subscription/callback")
async def click_subscription_callback(request: Request, processor: CallbackProcessor = Depends(get_callback_processor)):
    return await _handle_callback(request, PlanKeyedCallback, processor)


@router.post("/invoices", response_model=InvoiceOut, dependencies=[Depends(require_internal_key)])
@limiter.limit("10/minute")
def create_invoice(
    request: Request,
    payload: CreateInvoiceRequest,
    db: Session = Depends(get_db),
    click=Depends(get_click_client),
):
    user = db.get(User, payload.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    plan = db.get(Plan, payload.plan_id)
    if not plan or not plan.is_active:
        raise HTTPException(status_code=404, detail="Plan not found")

    data = click.create_invoice(int(plan.price), payload.phone_number, user.id, plan.id)
    return InvoiceOut(
        invoice_id=data.get("invoice_id"),
        amount=int(plan.price),
        error_code=int(data.get("error_code") or 0),
        error_note=data.get("error_note"),
    )


@router.get("/invoices/{invoice_id}/status", response_model=InvoiceStatusOut, dependencies=[Depends(require_internal_key)])
def invoice_status(invoice_id: int, click=Depends(get_click_client)):
    data = click.check_invoice_status(invoice_id)
    return InvoiceStatusOut(
        invoice_id=invoice_id,
        invoice_status=data.get("invoice_status"),
        state=data.get("state", "unknown"),
        error_code=int(data.get("error_code") or 0),
        error_note=data.get("error_note"),
    )


@router.get("/payments/{payment_id}/status", dependencies=[Depends(require_internal_key)])
def payment_status(payment_id: int, click=Depends(get_click_client)):
    return click.check_payment_status(payment_id)


@router.get("/payments/by-merchant-trans-id/{merchant_trans_id}/{date}", dependencies=[Depends(require_internal_key)])
def payment_status_by_merchant_trans_id(merchant_trans_id: str, date: str, click=Depends(get_click_client)):
    return click.check_payment_by_merchant_trans_id(merchant_trans_id, date)
