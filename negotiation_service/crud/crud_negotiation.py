# negotiation_service/crud/crud_negotiation.py
import logging
import math
from typing import Optional, List, Tuple
from datetime import datetime, timezone
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from negotiation_service.models.bid import Bid
from negotiation_service.models.negotiation import Negotiation

logger = logging.getLogger(__name__)

# Valid status transitions for a Negotiation
VALID_NEGOTIATION_TRANSITIONS = {
    "open": {"closed", "cancelled"},
    "closed": set(),  # Terminal state
    "cancelled": set(),  # Terminal state
}


def validate_transition(old_status: str, new_status: str) -> bool:
    """
    Validate that a status transition is allowed.
    Returns True if valid, False otherwise.
    """
    if old_status not in VALID_NEGOTIATION_TRANSITIONS:
        logger.warning(f"Unknown status: {old_status}")
        return False

    if new_status not in VALID_NEGOTIATION_TRANSITIONS[old_status]:
        logger.warning(f"Invalid transition: {old_status} → {new_status}")
        return False

    return True


def get_bid(db: Session, bid_id: str) -> Optional[Bid]:
    return db.query(Bid).filter(Bid.id == bid_id).first()


def get(db: Session, negotiation_id: str, *, for_update: bool = False) -> Optional[Negotiation]:
    query = db.query(Negotiation).filter(Negotiation.id == negotiation_id)
    if for_update:
        # Serialises writers on the aggregate (ignored by SQLite)
        query = query.with_for_update()
    return query.first()


def get_with_messages(db: Session, negotiation_id: str) -> Optional[Negotiation]:
    return (
        db.query(Negotiation)
        .options(selectinload(Negotiation.messages))
        .filter(Negotiation.id == negotiation_id)
        .first()
    )


def get_by_bid(db: Session, bid_id: str) -> Optional[Negotiation]:
    return db.query(Negotiation).filter(Negotiation.bid_id == bid_id).first()


def create_for_bid(db: Session, *, bid: Bid, initiator_id: str) -> Negotiation:
    """Insert a negotiation for a bid. Flushes only; the caller commits."""
    db_obj = Negotiation(
        bid_id=bid.id,
        rfq_id=bid.rfq_id,
        buyer_id=bid.buyer_id,
        supplier_id=bid.supplier_id,
        initiator_id=initiator_id,
        status="open",
    )
    db.add(db_obj)
    db.flush()
    return db_obj


def transition_status(
    db: Session,
    negotiation: Negotiation,
    new_status: str,
    *,
    closed_reason: Optional[str] = None,
) -> bool:
    """
    Conditionally move an open negotiation to a terminal status.
    Returns False if another writer got there first. Flushes only.
    """
    if not validate_transition(negotiation.status, new_status):
        return False

    now = datetime.now(timezone.utc)
    updated = (
        db.query(Negotiation)
        .filter(Negotiation.id == negotiation.id, Negotiation.status == "open")
        .update(
            {
                "status": new_status,
                "closed_reason": closed_reason,
                "closed_at": now,
                "updated_at": now,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        logger.warning(f"Lost race moving negotiation {negotiation.id} to {new_status}")
        return False

    db.refresh(negotiation)
    return True


def set_purchase_order(db: Session, negotiation: Negotiation, purchase_order_id: str) -> bool:
    """Record the PO back-reference once; never overwrites an existing one."""
    updated = (
        db.query(Negotiation)
        .filter(
            Negotiation.id == negotiation.id,
            Negotiation.purchase_order_id.is_(None),
        )
        .update(
            {
                "purchase_order_id": purchase_order_id,
                "updated_at": datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
    )
    db.refresh(negotiation)
    return updated == 1


def list_for_participant(
    db: Session,
    *,
    user_id: str,
    bid_id: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
) -> Tuple[List[Negotiation], dict]:
    query = (
        db.query(Negotiation)
        .options(selectinload(Negotiation.messages))
        .filter(or_(Negotiation.buyer_id == user_id, Negotiation.supplier_id == user_id))
    )
    if bid_id:
        query = query.filter(Negotiation.bid_id == bid_id)
    if status:
        query = query.filter(Negotiation.status == status)

    total_count = query.count()
    total_pages = math.ceil(total_count / page_size) if page_size > 0 else 0
    offset = (page - 1) * page_size

    items = (
        query.order_by(Negotiation.updated_at.desc(), Negotiation.created_at.desc())
        .offset(offset)
        .limit(page_size)
        .all()
    )
    pagination = {
        "page": page,
        "page_size": page_size,
        "total_count": total_count,
        "total_pages": total_pages,
    }
    return items, pagination
