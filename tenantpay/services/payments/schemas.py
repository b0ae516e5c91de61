"""Request/response schemas for payment processing."""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentRequest(BaseModel):
    """Charge requested by a tenant; immutable once received."""

    model_config = ConfigDict(frozen=True)

    # Bounded by the ledger column, Numeric(18, 4).
    amount: Decimal = Field(gt=0, max_digits=18, decimal_places=4)
    currency: str = Field(min_length=3, max_length=3)
    source: str = Field(min_length=1)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("currency must be a 3-letter code")
        return value.upper()


class PaymentResponse(BaseModel):
    """Returned only when one processor accepted the charge."""

    success: bool = True
    transaction_id: str
    processor: str
    amount: Decimal
    currency: str
    status: Literal["completed"] = "completed"
    timestamp: datetime


class PaymentFailure(BaseModel):
    """Error body returned by the HTTP layer when every processor failed."""

    error: str
    code: str
    transaction_id: str
    attempts: int
    last_error: str | None = None
