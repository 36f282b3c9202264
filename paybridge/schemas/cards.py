from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CardTokenRequest(BaseModel):
    user_id: int
    card_number: str = Field(min_length=16, max_length=19)
    expire_date: str = Field(min_length=4, max_length=5)
    temporary: bool = False


class CardVerifyRequest(BaseModel):
    user_id: int
    card_token: str = Field(min_length=1)
    # String so codes like "012345" keep the leading zero.
    sms_code: str = Field(min_length=4, max_length=8)


class CardResendRequest(BaseModel):
    user_id: int
    card_token: str = Field(min_length=1)


class CardPayRequest(BaseModel):
    user_id: int
    plan_id: int


class CardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    card_token: str
    masked_card_number: Optional[str] = None
    masked_phone: Optional[str] = None
    is_temporary: bool
    verified: bool
    verified_at: Optional[datetime] = None


class CardPayOut(BaseModel):
    success: bool
    payment_id: Optional[int | str] = None
    transaction_id: Optional[int] = None
    activated: Optional[bool] = None
    error: Optional[str] = None
    error_code: Optional[int] = None
