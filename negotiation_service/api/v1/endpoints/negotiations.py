# negotiation_service/api/v1/endpoints/negotiations.py
"""Negotiation endpoints: list, detail, start, messages, close."""
import logging
from typing import Optional
from fastapi import APIRouter, Body, Depends, Query, Response, status
from sqlalchemy.orm import Session

from negotiation_service.api import deps
from negotiation_service.core.kafka_producer import emit_negotiation_event, get_kafka_producer
from negotiation_service.db.session import get_db
from negotiation_service.schemas.negotiation import (
    MessageCreate,
    MessageRead,
    MessageType,
    NegotiationRead,
    NegotiationStart,
    NegotiationStatus,
)
from negotiation_service.schemas.token import TokenPayload
from negotiation_service.services import negotiation_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/negotiations", tags=["Negotiations"])


def _negotiation_data(negotiation) -> dict:
    return NegotiationRead.model_validate(negotiation).model_dump(mode="json")


@router.get("")
def list_negotiations(
    bid_id: Optional[str] = Query(default=None),
    status_filter: Optional[NegotiationStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=50),
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Negotiations the current user takes part in, most recently active first."""
    items, pagination = negotiation_session.list_for_participant(
        db,
        current_user.sub,
        bid_id=bid_id,
        status=status_filter.value if status_filter else None,
        page=page,
        page_size=page_size,
    )
    return {
        "success": True,
        "data": [_negotiation_data(n) for n in items],
        "pagination": pagination,
    }


@router.get("/{negotiationId}")
def get_negotiation(
    negotiationId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    negotiation = negotiation_session.get_for_participant(db, negotiationId, current_user.sub)
    return {"success": True, "data": _negotiation_data(negotiation)}


@router.post("/start/{bidId}", status_code=status.HTTP_201_CREATED)
def start_negotiation(
    bidId: str,
    response: Response,
    start_in: Optional[NegotiationStart] = Body(default=None),
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Start the negotiation for a bid. Returns the existing one if already started."""
    opening = start_in.to_message() if start_in is not None else None
    negotiation, created = negotiation_session.start(
        db, bid_id=bidId, actor_id=current_user.sub, opening=opening
    )
    if not created:
        response.status_code = status.HTTP_200_OK

    negotiation = negotiation_session.get_for_participant(db, negotiation.id, current_user.sub)
    return {
        "success": True,
        "data": _negotiation_data(negotiation),
        "message": "Negotiation started" if created else "Negotiation already exists for this bid",
    }


@router.post("/{negotiationId}/messages", status_code=status.HTTP_201_CREATED)
def send_message(
    negotiationId: str,
    message_in: MessageCreate,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    producer=Depends(get_kafka_producer),
):
    message = negotiation_session.send_message(
        db,
        negotiation_id=negotiationId,
        sender_id=current_user.sub,
        draft=message_in,
    )

    # Status effects happened inside the same transaction
    if message_in.message_type == MessageType.ACCEPTANCE:
        emit_negotiation_event(
            producer, "negotiation.closed", message.negotiation,
            metadata={"message_id": message.id, "accepted_offer_id": message.in_reply_to_id},
        )
    elif message_in.is_negotiation_rejection:
        emit_negotiation_event(
            producer, "negotiation.cancelled", message.negotiation,
            metadata={"message_id": message.id},
        )

    return {
        "success": True,
        "data": MessageRead.model_validate(message).model_dump(mode="json"),
        "message": "Message sent",
    }


@router.post("/{negotiationId}/close")
def close_negotiation(
    negotiationId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Kept for older clients; acceptance messages close negotiations."""
    negotiation = negotiation_session.close(
        db, negotiation_id=negotiationId, actor_id=current_user.sub
    )
    negotiation = negotiation_session.get_for_participant(db, negotiation.id, current_user.sub)
    return {
        "success": True,
        "data": _negotiation_data(negotiation),
        "message": "Negotiation closed",
    }
