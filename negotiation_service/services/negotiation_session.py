# negotiation_service/services/negotiation_session.py
"""
Negotiation session: the aggregate root callers act through.

Every operation takes the acting user id explicitly and runs as a single
transaction. Status changes are internal effects of messages: an acceptance
message closes the negotiation, a negotiation-level rejection cancels it.
"""
import logging
from typing import Optional, Tuple, Union

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from negotiation_service.core.exceptions import (
    BidNotFoundError,
    InvalidTransitionError,
    MessageValidationError,
    NegotiationClosedError,
    NegotiationNotFoundError,
    NegotiationServiceError,
    NotParticipantError,
)
from negotiation_service.crud import crud_negotiation, crud_negotiation_message
from negotiation_service.models.negotiation import Negotiation
from negotiation_service.models.negotiation_message import NegotiationMessage
from negotiation_service.schemas.negotiation import (
    ClosedReason,
    MessageCreate,
    MessageType,
    NegotiationStatus,
)
from negotiation_service.services import offer_state

logger = logging.getLogger(__name__)

# Concurrent appends can collide on (negotiation_id, sequence)
MAX_APPEND_ATTEMPTS = 3

NO_OPEN_OFFER = "no_open_offer"
ACCEPTANCE_REQUIRED = "acceptance_required"


def _ensure_participant(negotiation: Negotiation, actor_id: str) -> None:
    if actor_id not in negotiation.participants:
        logger.warning(f"User {actor_id} is not a participant of {negotiation.id}")
        raise NotParticipantError(actor_id)


def _coerce_draft(draft: Union[MessageCreate, dict]) -> MessageCreate:
    if isinstance(draft, MessageCreate):
        return draft
    try:
        return MessageCreate.model_validate(draft)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(loc) for loc in first.get("loc", ())) or None
        raise MessageValidationError(first.get("msg", "Invalid message"), field=field)


# ===========================================
# Queries
# ===========================================


def get_for_participant(db: Session, negotiation_id: str, actor_id: str) -> Negotiation:
    negotiation = crud_negotiation.get_with_messages(db, negotiation_id)
    if not negotiation:
        raise NegotiationNotFoundError(negotiation_id)
    _ensure_participant(negotiation, actor_id)
    return negotiation


def list_for_participant(
    db: Session,
    actor_id: str,
    *,
    bid_id: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
):
    return crud_negotiation.list_for_participant(
        db,
        user_id=actor_id,
        bid_id=bid_id,
        status=status,
        page=page,
        page_size=page_size,
    )


# ===========================================
# Commands
# ===========================================


def start(
    db: Session,
    *,
    bid_id: str,
    actor_id: str,
    opening: Optional[MessageCreate] = None,
) -> Tuple[Negotiation, bool]:
    """
    Open the negotiation for a bid, or return the one that already exists.
    Returns (negotiation, created). The opening message is only appended
    when this call created the negotiation.
    """
    existing = crud_negotiation.get_by_bid(db, bid_id)
    if existing:
        _ensure_participant(existing, actor_id)
        return existing, False

    bid = crud_negotiation.get_bid(db, bid_id)
    if not bid:
        raise BidNotFoundError(bid_id)
    if actor_id not in (bid.buyer_id, bid.supplier_id):
        raise NotParticipantError(actor_id, message=f"User {actor_id} is not a party to bid {bid_id}")

    try:
        negotiation = crud_negotiation.create_for_bid(db, bid=bid, initiator_id=actor_id)
        if opening is not None:
            crud_negotiation_message.append(
                db,
                negotiation=negotiation,
                sender_id=actor_id,
                obj_in=opening,
                commit=False,
            )
        db.commit()
    except IntegrityError:
        # Both parties started at once; the unique bid_id kept one row
        db.rollback()
        existing = crud_negotiation.get_by_bid(db, bid_id)
        if existing is None:
            raise
        logger.info(f"Negotiation for bid {bid_id} already started as {existing.id}")
        return existing, False

    db.refresh(negotiation)
    logger.info(f"Negotiation {negotiation.id} started for bid {bid_id} by {actor_id}")
    return negotiation, True


def _resolve_target(
    db: Session, negotiation: Negotiation, draft: MessageCreate
) -> Optional[NegotiationMessage]:
    if draft.in_reply_to_id:
        target = crud_negotiation_message.get(db, draft.in_reply_to_id)
        if target is None or target.negotiation_id != negotiation.id:
            raise InvalidTransitionError(
                f"Message {draft.in_reply_to_id} is not an offer in negotiation {negotiation.id}",
                reason=offer_state.NOT_AN_OFFER,
                message_id=draft.in_reply_to_id,
            )
        return target
    log = crud_negotiation_message.list_for_negotiation(db, negotiation.id)
    return offer_state.latest_open_offer(log)


def _already_accepted(db: Session, negotiation: Negotiation, resolution: str) -> InvalidTransitionError:
    accepted = [
        m
        for m in crud_negotiation_message.list_for_negotiation(db, negotiation.id)
        if offer_state.resolve_offer_status(m) == offer_state.ACCEPTED and offer_state.is_counter_offer(m)
    ]
    message_id = accepted[-1].id if accepted else None
    logger.warning(
        f"Rejected {resolution} on negotiation {negotiation.id}: already closed by acceptance"
    )
    return InvalidTransitionError(
        f"Negotiation {negotiation.id} was already closed by an accepted offer",
        reason=offer_state.ALREADY_RESOLVED,
        message_id=message_id,
    )


def _close(db: Session, negotiation: Negotiation, actor_id: str) -> None:
    if not crud_negotiation.transition_status(
        db, negotiation, NegotiationStatus.CLOSED.value, closed_reason=ClosedReason.ACCEPTED.value
    ):
        raise InvalidTransitionError(
            f"Negotiation {negotiation.id} is no longer open",
            reason=offer_state.NEGOTIATION_NOT_OPEN,
        )
    logger.info(f"Negotiation {negotiation.id} closed by acceptance from {actor_id}")


def _cancel(db: Session, negotiation: Negotiation, actor_id: str) -> None:
    if not crud_negotiation.transition_status(
        db, negotiation, NegotiationStatus.CANCELLED.value, closed_reason=ClosedReason.REJECTED.value
    ):
        raise InvalidTransitionError(
            f"Negotiation {negotiation.id} is no longer open",
            reason=offer_state.NEGOTIATION_NOT_OPEN,
        )
    logger.info(f"Negotiation {negotiation.id} cancelled by rejection from {actor_id}")


def _apply_message(
    db: Session, negotiation_id: str, sender_id: str, draft: MessageCreate
) -> NegotiationMessage:
    negotiation = crud_negotiation.get(db, negotiation_id, for_update=True)
    if not negotiation:
        raise NegotiationNotFoundError(negotiation_id)
    _ensure_participant(negotiation, sender_id)

    target = None
    resolution = draft.resolution
    if resolution is not None:
        target = _resolve_target(db, negotiation, draft)
        if target is None:
            if negotiation.closed_reason == ClosedReason.ACCEPTED.value:
                # A late accept without in_reply_to_id lost to an earlier acceptance
                raise _already_accepted(db, negotiation, resolution.value)
            if negotiation.status != NegotiationStatus.OPEN.value:
                raise NegotiationClosedError(negotiation.id, negotiation.status)
            raise InvalidTransitionError(
                f"No open offer to mark {resolution.value} in negotiation {negotiation.id}",
                reason=NO_OPEN_OFFER,
            )
        # Offer legality is judged before the closed check so that a
        # second accept of the same offer reports the offer conflict.
        offer_state.GUARDS[resolution.value](target, sender_id, negotiation.status)
        crud_negotiation_message.resolve_offer(
            db,
            message=target,
            new_status=resolution.value,
            actor_id=sender_id,
            commit=False,
        )

    message = crud_negotiation_message.append(
        db,
        negotiation=negotiation,
        sender_id=sender_id,
        obj_in=draft,
        in_reply_to_id=target.id if target is not None else None,
        commit=False,
    )

    if draft.message_type == MessageType.ACCEPTANCE:
        _close(db, negotiation, sender_id)
    elif draft.is_negotiation_rejection:
        _cancel(db, negotiation, sender_id)
    return message


def send_message(
    db: Session,
    *,
    negotiation_id: str,
    sender_id: str,
    draft: Union[MessageCreate, dict],
) -> NegotiationMessage:
    """
    Validate a draft and apply it to the negotiation atomically: resolve the
    targeted offer (if any), append the message, then apply the status
    effect of acceptance / negotiation-level rejection.
    """
    draft = _coerce_draft(draft)

    for attempt in range(1, MAX_APPEND_ATTEMPTS + 1):
        try:
            message = _apply_message(db, negotiation_id, sender_id, draft)
            db.commit()
        except IntegrityError:
            db.rollback()
            if attempt == MAX_APPEND_ATTEMPTS:
                raise
            logger.warning(
                f"Sequence collision appending to {negotiation_id}, retrying ({attempt}/{MAX_APPEND_ATTEMPTS})"
            )
            continue
        except NegotiationServiceError:
            db.rollback()
            raise

        db.refresh(message)
        logger.info(
            f"Message {message.id} ({message.message_type}) appended to {negotiation_id} by {sender_id}"
        )
        return message


def close(db: Session, *, negotiation_id: str, actor_id: str) -> Negotiation:
    """
    Legacy explicit close. Acceptance messages already close the
    negotiation, so this only confirms a negotiation closed that way.
    """
    negotiation = crud_negotiation.get(db, negotiation_id)
    if not negotiation:
        raise NegotiationNotFoundError(negotiation_id)
    _ensure_participant(negotiation, actor_id)

    if negotiation.status == NegotiationStatus.CLOSED.value:
        return negotiation

    if negotiation.status == NegotiationStatus.OPEN.value:
        raise InvalidTransitionError(
            f"Negotiation {negotiation.id} can only be closed by an acceptance message",
            reason=ACCEPTANCE_REQUIRED,
        )

    raise InvalidTransitionError(
        f"Negotiation {negotiation.id} is {negotiation.status}",
        reason=offer_state.NEGOTIATION_NOT_OPEN,
    )
