# tests/utils/negotiation.py
from decimal import Decimal
from sqlalchemy.orm import Session

from negotiation_service.models.bid import Bid
from negotiation_service.schemas.negotiation import MessageCreate, MessageType
from negotiation_service.services import negotiation_session

BUYER = "buyer_1"
SUPPLIER = "supplier_1"
OUTSIDER = "user_outsider"


def create_random_bid(
    db: Session,
    *,
    buyer_id: str = BUYER,
    supplier_id: str = SUPPLIER,
    total_amount: str = "1200.00",
    currency: str = "USD",
    delivery_days: int = 14,
) -> Bid:
    bid = Bid(
        rfq_id="rfq_test",
        buyer_id=buyer_id,
        supplier_id=supplier_id,
        total_amount=Decimal(total_amount),
        currency=currency,
        delivery_days=delivery_days,
    )
    db.add(bid)
    db.commit()
    db.refresh(bid)
    return bid


def start_negotiation(db: Session, *, actor_id: str = BUYER, bid: Bid = None):
    bid = bid or create_random_bid(db)
    negotiation, _ = negotiation_session.start(db, bid_id=bid.id, actor_id=actor_id)
    return negotiation


def counter_offer_draft(price: float = 1000.0, delivery_terms: str = "FOB, 10 days") -> MessageCreate:
    return MessageCreate(
        message_type=MessageType.COUNTER_OFFER,
        offer_data={"price": price, "delivery_terms": delivery_terms},
    )


def send_counter_offer(db: Session, negotiation_id: str, *, sender_id: str = SUPPLIER, price: float = 1000.0):
    return negotiation_session.send_message(
        db,
        negotiation_id=negotiation_id,
        sender_id=sender_id,
        draft=counter_offer_draft(price),
    )
