from pydantic import BaseModel, Field


class CreateInvoiceRequest(BaseModel):
    user_id: int
    plan_id: int
    phone_number: str = Field(min_length=9, max_length=16)


class InvoiceOut(BaseModel):
    invoice_id: int | None = None
    amount: int
    error_code: int = 0
    error_note: str | None = None


class InvoiceStatusOut(BaseModel):
    invoice_id: int
    invoice_status: int | None = None
    state: str
    error_code: int = 0
    error_note: str | None = None
