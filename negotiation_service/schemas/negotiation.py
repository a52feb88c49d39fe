# negotiation_service/schemas/negotiation.py
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from typing import Optional, List
from datetime import datetime
from enum import Enum


# --- Enums ---

class NegotiationStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class ClosedReason(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class MessageType(str, Enum):
    TEXT = "text"
    COUNTER_OFFER = "counter_offer"
    ACCEPTANCE = "acceptance"
    REJECTION = "rejection"


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class NegotiationOutcome(str, Enum):
    ACTIVE = "active"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


DEFAULT_BODIES = {
    MessageType.COUNTER_OFFER: "Counter offer submitted",
    MessageType.ACCEPTANCE: "Offer accepted! We can proceed with this agreement.",
    MessageType.REJECTION: "Offer rejected. We cannot accept these terms.",
}
WITHDRAWAL_BODY = "Counter offer withdrawn. We are no longer interested in this proposal."


# --- Offer ---

class OfferData(BaseModel):
    """Structured terms carried by a counter-offer message."""

    # Older clients send total_amount / delivery / delivery_time / terms
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    price: Optional[float] = Field(
        None, gt=0, validation_alias=AliasChoices("price", "total_amount")
    )
    delivery_terms: Optional[str] = Field(
        None,
        max_length=1000,
        validation_alias=AliasChoices("delivery_terms", "delivery", "terms"),
    )
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    delivery_days: Optional[int] = Field(
        None, ge=0, validation_alias=AliasChoices("delivery_days", "delivery_time")
    )

    @field_validator("delivery_terms")
    @classmethod
    def blank_terms_are_missing(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    @property
    def is_actionable(self) -> bool:
        return self.price is not None or self.delivery_terms is not None


# --- Create ---

class MessageCreate(BaseModel):
    """
    Message draft as sent by a participant.

    `offer_status` expresses the resolution intent for an existing offer:
      - acceptance + accepted   -> accept the targeted offer, close negotiation
      - rejection  + rejected   -> reject the targeted offer, keep negotiation open
      - rejection  (no status)  -> reject the whole negotiation (cancelled)
      - text       + cancelled  -> withdraw the sender's own offer
    The targeted offer is `in_reply_to_id`, or the latest open offer.
    """

    message: Optional[str] = Field(None, max_length=5000)
    message_type: MessageType = MessageType.TEXT
    offer_data: Optional[OfferData] = None
    offer_status: Optional[OfferStatus] = None
    in_reply_to_id: Optional[str] = None
    attachments: List[str] = []

    @model_validator(mode="after")
    def validate_shape(self):
        body = (self.message or "").strip()
        mt = self.message_type

        if self.offer_data is not None and mt != MessageType.COUNTER_OFFER:
            raise ValueError("offer_data is only allowed on counter_offer messages")

        if mt == MessageType.COUNTER_OFFER:
            if self.offer_data is None or not self.offer_data.is_actionable:
                raise ValueError("counter_offer requires offer_data with a price or delivery_terms")
            if self.offer_status is not None:
                raise ValueError("a new counter_offer cannot carry an offer_status")
        elif mt == MessageType.ACCEPTANCE:
            if self.offer_status not in (None, OfferStatus.ACCEPTED):
                raise ValueError("acceptance may only carry offer_status 'accepted'")
        elif mt == MessageType.REJECTION:
            if self.offer_status not in (None, OfferStatus.REJECTED):
                raise ValueError("rejection may only carry offer_status 'rejected'")
        else:
            if self.offer_status not in (None, OfferStatus.CANCELLED):
                raise ValueError("text messages may only carry offer_status 'cancelled'")
            if not body and self.offer_status is None:
                raise ValueError("text messages require a non-empty message")

        if not body:
            if mt == MessageType.TEXT:
                body = WITHDRAWAL_BODY
            else:
                body = DEFAULT_BODIES[mt]
        self.message = body
        return self

    @property
    def resolution(self) -> Optional[OfferStatus]:
        """The offer status this draft asks to apply, if it resolves an offer."""
        if self.message_type == MessageType.TEXT:
            return self.offer_status
        if self.message_type in (MessageType.ACCEPTANCE, MessageType.REJECTION):
            if self.offer_status is not None:
                return self.offer_status
            if self.in_reply_to_id:
                return (
                    OfferStatus.ACCEPTED
                    if self.message_type == MessageType.ACCEPTANCE
                    else OfferStatus.REJECTED
                )
        return None

    @property
    def is_negotiation_rejection(self) -> bool:
        return self.message_type == MessageType.REJECTION and self.resolution is None


class NegotiationStart(BaseModel):
    initial_message: Optional[str] = Field(None, max_length=5000)
    message_type: MessageType = MessageType.TEXT
    offer_data: Optional[OfferData] = Field(
        None, validation_alias=AliasChoices("offer_data", "counter_offer_data")
    )

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def infer_counter_offer(self):
        if self.offer_data is not None:
            self.message_type = MessageType.COUNTER_OFFER
        if self.message_type not in (MessageType.TEXT, MessageType.COUNTER_OFFER):
            raise ValueError("a negotiation can only open with a text message or a counter_offer")
        return self

    def to_message(self) -> Optional[MessageCreate]:
        """The opening message draft, if the caller supplied one."""
        if self.offer_data is None and not (self.initial_message or "").strip():
            return None
        return MessageCreate(
            message=self.initial_message,
            message_type=self.message_type,
            offer_data=self.offer_data,
        )


# --- Read ---

class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    negotiation_id: str
    sequence: int
    sender_id: str
    message_type: MessageType
    message: str
    offer_data: Optional[OfferData] = None
    offer_status: Optional[OfferStatus] = None
    resolved_by_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    in_reply_to_id: Optional[str] = None
    attachments: List[str] = []
    created_at: datetime

    @field_validator("attachments", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return v or []


class NegotiationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    bid_id: str
    rfq_id: str
    buyer_id: str
    supplier_id: str
    initiator_id: str
    status: NegotiationStatus
    closed_reason: Optional[ClosedReason] = None
    purchase_order_id: Optional[str] = None
    outcome: Optional[NegotiationOutcome] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    messages: List[MessageRead] = []

    @model_validator(mode="after")
    def derive_outcome(self):
        if self.status == NegotiationStatus.OPEN:
            self.outcome = NegotiationOutcome.ACTIVE
        elif self.status == NegotiationStatus.CANCELLED:
            self.outcome = (
                NegotiationOutcome.REJECTED
                if self.closed_reason == ClosedReason.REJECTED
                else NegotiationOutcome.CANCELLED
            )
        else:
            self.outcome = NegotiationOutcome.ACCEPTED
        return self


class Pagination(BaseModel):
    page: int
    page_size: int
    total_count: int
    total_pages: int
