# negotiation_service/schemas/purchase_order.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal


class PurchaseOrderFromNegotiation(BaseModel):
    delivery_address: str = Field(..., min_length=1, max_length=2000)
    payment_terms: str = Field(..., min_length=1, max_length=500)
    notes: Optional[str] = Field(None, max_length=5000)

    @field_validator("delivery_address", "payment_terms")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class PurchaseOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    po_number: str
    negotiation_id: str
    bid_id: str
    rfq_id: str
    buyer_id: str
    supplier_id: str
    created_by_id: str
    total_amount: Optional[Decimal] = None
    currency: str
    delivery_terms: Optional[str] = None
    delivery_days: Optional[int] = None
    delivery_address: str
    payment_terms: str
    notes: Optional[str] = None
    status: str
    created_at: datetime
