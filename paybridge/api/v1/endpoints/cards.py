from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from paybridge.dependencies import get_card_service, require_internal_key
from paybridge.middlewares.rate_limit import limiter
from paybridge.schemas.cards import CardOut, CardPayOut, CardPayRequest, CardResendRequest, CardTokenRequest, CardVerifyRequest
from paybridge.services.cards import CardService


router = APIRouter(dependencies=[Depends(require_internal_key)])


@router.post("/token", response_model=CardOut)
@limiter.limit("5/minute")
def create_card_token(request: Request, payload: CardTokenRequest, cards: CardService = Depends(get_card_service)):
    return cards.create_token(payload.user_id, payload.card_number, payload.expire_date, temporary=payload.temporary)


@router.post("/verify", response_model=CardOut)
@limiter.limit("5/minute")
def verify_card_token(request: Request, payload: CardVerifyRequest, cards: CardService = Depends(get_card_service)):
    return cards.verify_token(payload.user_id, payload.card_token, payload.sms_code)


@router.post("/resend", response_model=CardOut)
@limiter.limit("3/minute")
def resend_sms_code(request: Request, payload: CardResendRequest, cards: CardService = Depends(get_card_service)):
    return cards.resend_sms(payload.user_id, payload.card_token)


@router.post("/pay", response_model=CardPayOut)
@limiter.limit("5/minute")
def pay_with_card(request: Request, payload: CardPayRequest, cards: CardService = Depends(get_card_service)):
    result = cards.pay_with_token(payload.user_id, payload.plan_id)
    if not result.get("success"):
        return JSONResponse(status_code=400, content=CardPayOut(**result).model_dump())
    return result
