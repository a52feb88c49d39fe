# negotiation_service/crud/crud_negotiation_message.py
"""
Message log store: the append-only, totally ordered log of a negotiation.

Functions flush by default and commit only when asked, so the negotiation
session can compose several of them into one transaction.
"""
import logging
from typing import Optional, List
from datetime import datetime, timezone, timedelta
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from negotiation_service.core.exceptions import (
    InvalidTransitionError,
    NegotiationClosedError,
)
from negotiation_service.models.negotiation import Negotiation
from negotiation_service.models.negotiation_message import NegotiationMessage
from negotiation_service.schemas.negotiation import MessageCreate
from negotiation_service.services import offer_state

logger = logging.getLogger(__name__)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def get(db: Session, message_id: str) -> Optional[NegotiationMessage]:
    return db.query(NegotiationMessage).filter(NegotiationMessage.id == message_id).first()


def list_for_negotiation(db: Session, negotiation_id: str) -> List[NegotiationMessage]:
    """Full ordered log. Order is fixed at append time and never changes."""
    return (
        db.query(NegotiationMessage)
        .filter(NegotiationMessage.negotiation_id == negotiation_id)
        .order_by(NegotiationMessage.sequence.asc())
        .all()
    )


def _next_position(db: Session, negotiation_id: str) -> tuple:
    last_sequence, last_created_at = (
        db.query(
            func.max(NegotiationMessage.sequence),
            func.max(NegotiationMessage.created_at),
        )
        .filter(NegotiationMessage.negotiation_id == negotiation_id)
        .one()
    )
    now = datetime.now(timezone.utc)
    last_created_at = _aware(last_created_at)
    if last_created_at is not None and now <= last_created_at:
        now = last_created_at + timedelta(microseconds=1)
    return (last_sequence or 0) + 1, now


def append(
    db: Session,
    *,
    negotiation: Negotiation,
    sender_id: str,
    obj_in: MessageCreate,
    in_reply_to_id: Optional[str] = None,
    commit: bool = True,
) -> NegotiationMessage:
    """
    Append a message to the negotiation's log.
    Assigns id, sequence and a per-negotiation monotonic created_at.
    Raises NegotiationClosedError once the negotiation left 'open'.
    """
    if negotiation.status != offer_state.OPEN:
        logger.warning(
            f"Refused append to negotiation {negotiation.id} in status {negotiation.status}"
        )
        raise NegotiationClosedError(negotiation.id, negotiation.status)

    sequence, created_at = _next_position(db, negotiation.id)

    offer_data = None
    if obj_in.offer_data is not None:
        offer_data = obj_in.offer_data.model_dump(exclude_none=True)

    db_obj = NegotiationMessage(
        negotiation_id=negotiation.id,
        sequence=sequence,
        sender_id=sender_id,
        message_type=obj_in.message_type.value,
        message=obj_in.message,
        offer_data=offer_data,
        offer_status=None,
        in_reply_to_id=in_reply_to_id or obj_in.in_reply_to_id,
        attachments=list(obj_in.attachments) or None,
        created_at=created_at,
    )
    db.add(db_obj)
    db.flush()

    if commit:
        db.commit()
        db.refresh(db_obj)
    return db_obj


def resolve_offer(
    db: Session,
    *,
    message: NegotiationMessage,
    new_status: str,
    actor_id: str,
    commit: bool = True,
) -> NegotiationMessage:
    """
    Move an offer out of 'pending' with a compare-and-set.
    Only one writer can win; later writers get InvalidTransitionError.
    """
    if not offer_state.validate_offer_transition(message.offer_status, new_status):
        raise InvalidTransitionError(
            f"Offer {message.id} is already {offer_state.resolve_offer_status(message)}",
            reason=offer_state.ALREADY_RESOLVED,
            message_id=message.id,
        )

    updated = (
        db.query(NegotiationMessage)
        .filter(
            NegotiationMessage.id == message.id,
            NegotiationMessage.message_type == offer_state.COUNTER_OFFER,
            or_(
                NegotiationMessage.offer_status.is_(None),
                NegotiationMessage.offer_status == offer_state.PENDING,
            ),
        )
        .update(
            {
                "offer_status": new_status,
                "resolved_by_id": actor_id,
                "resolved_at": datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        logger.warning(f"Lost race resolving offer {message.id} to {new_status}")
        raise InvalidTransitionError(
            f"Offer {message.id} was already resolved",
            reason=offer_state.ALREADY_RESOLVED,
            message_id=message.id,
        )

    if commit:
        db.commit()
    db.refresh(message)
    logger.info(f"Offer {message.id} resolved as {new_status} by {actor_id}")
    return message


def count_accepted(db: Session, negotiation_id: str) -> int:
    return (
        db.query(func.count(NegotiationMessage.id))
        .filter(
            NegotiationMessage.negotiation_id == negotiation_id,
            NegotiationMessage.offer_status == offer_state.ACCEPTED,
        )
        .scalar()
    )
