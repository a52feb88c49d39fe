# negotiation_service/services/purchase_order_service.py
import logging
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from negotiation_service.core.exceptions import (
    NegotiationNotFoundError,
    NotAcceptedYetError,
    NotParticipantError,
)
from negotiation_service.crud import (
    crud_negotiation,
    crud_negotiation_message,
    crud_purchase_order,
)
from negotiation_service.models.negotiation import Negotiation
from negotiation_service.models.purchase_order import PurchaseOrder
from negotiation_service.schemas.negotiation import ClosedReason, NegotiationStatus
from negotiation_service.schemas.purchase_order import PurchaseOrderFromNegotiation
from negotiation_service.services import offer_state

logger = logging.getLogger(__name__)


def is_accepted(negotiation: Negotiation) -> bool:
    return (
        negotiation.status == NegotiationStatus.CLOSED.value
        and negotiation.closed_reason == ClosedReason.ACCEPTED.value
    )


def _accepted_offer_data(db: Session, negotiation: Negotiation) -> dict:
    for message in reversed(crud_negotiation_message.list_for_negotiation(db, negotiation.id)):
        if offer_state.is_counter_offer(message) and message.offer_status == offer_state.ACCEPTED:
            return message.offer_data or {}
    return {}


def _agreed_terms(db: Session, negotiation: Negotiation) -> dict:
    """Terms of the accepted counter-offer, falling back to the bid."""
    offer = _accepted_offer_data(db, negotiation)
    bid = negotiation.bid

    price = offer.get("price")
    total_amount: Optional[Decimal]
    if price is not None:
        total_amount = Decimal(str(price))
    else:
        total_amount = bid.total_amount if bid is not None else None

    return {
        "total_amount": total_amount,
        "currency": offer.get("currency") or (bid.currency if bid is not None else None) or "USD",
        "delivery_terms": offer.get("delivery_terms"),
        "delivery_days": offer.get("delivery_days", bid.delivery_days if bid is not None else None),
    }


def create_from_negotiation(
    db: Session,
    *,
    negotiation_id: str,
    actor_id: str,
    details: PurchaseOrderFromNegotiation,
) -> Tuple[PurchaseOrder, bool]:
    """
    Create the purchase order for an accepted negotiation.
    Returns (purchase_order, created); repeated calls return the existing PO.
    """
    negotiation = crud_negotiation.get(db, negotiation_id, for_update=True)
    if not negotiation:
        raise NegotiationNotFoundError(negotiation_id)
    if actor_id not in negotiation.participants:
        raise NotParticipantError(actor_id)

    existing = crud_purchase_order.get_by_negotiation(db, negotiation.id)
    if existing:
        logger.info(f"Purchase order {existing.id} already exists for {negotiation.id}")
        return existing, False

    if not is_accepted(negotiation):
        raise NotAcceptedYetError(negotiation.id, negotiation.status)
    if actor_id != negotiation.buyer_id:
        raise NotParticipantError(
            actor_id, message="Only the buyer can create a purchase order"
        )

    try:
        purchase_order = crud_purchase_order.create(
            db,
            negotiation_id=negotiation.id,
            bid_id=negotiation.bid_id,
            rfq_id=negotiation.rfq_id,
            buyer_id=negotiation.buyer_id,
            supplier_id=negotiation.supplier_id,
            created_by_id=actor_id,
            delivery_address=details.delivery_address,
            payment_terms=details.payment_terms,
            notes=details.notes,
            **_agreed_terms(db, negotiation),
        )
        crud_negotiation.set_purchase_order(db, negotiation, purchase_order.id)
        db.commit()
    except IntegrityError:
        # A concurrent request inserted the PO first
        db.rollback()
        existing = crud_purchase_order.get_by_negotiation(db, negotiation_id)
        if existing is None:
            raise
        logger.info(f"Purchase order for {negotiation_id} created concurrently as {existing.id}")
        return existing, False

    db.refresh(purchase_order)
    logger.info(
        f"Purchase order {purchase_order.po_number} created for negotiation {negotiation.id} by {actor_id}"
    )
    return purchase_order, True
