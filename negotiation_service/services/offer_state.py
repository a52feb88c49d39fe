# negotiation_service/services/offer_state.py
"""
Offer state machine.

Pure functions over a negotiation's ordered message log. Offer status is a
derivation of the log, never state mutated beside it: the server session and
the client view-model both ask this module whether an action is legal.

Works on any message object exposing `id`, `sender_id`, `message_type` and
`offer_status` (ORM rows and pydantic read schemas alike).
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence

from negotiation_service.core.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)

COUNTER_OFFER = "counter_offer"
OPEN = "open"

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"
CANCELLED = "cancelled"

# An offer may leave "pending" exactly once; every other state is terminal.
VALID_OFFER_TRANSITIONS = {
    PENDING: {ACCEPTED, REJECTED, CANCELLED},
    ACCEPTED: set(),
    REJECTED: set(),
    CANCELLED: set(),
}

# Rejection reasons carried on InvalidTransitionError
NOT_AN_OFFER = "not_an_offer"
ALREADY_RESOLVED = "already_resolved"
NEGOTIATION_NOT_OPEN = "negotiation_not_open"
WRONG_ACTOR = "wrong_actor"


@dataclass(frozen=True)
class ResolvedOfferState:
    is_pending: bool = False
    is_accepted: bool = False
    is_rejected: bool = False
    is_cancelled: bool = False
    is_latest_open_offer: bool = False

    @property
    def status(self) -> str:
        if self.is_accepted:
            return ACCEPTED
        if self.is_rejected:
            return REJECTED
        if self.is_cancelled:
            return CANCELLED
        return PENDING


def _value(v) -> Optional[str]:
    # str-based Enums compare equal to their value, but normalise for dict keys
    return getattr(v, "value", v)


def is_counter_offer(message) -> bool:
    return _value(message.message_type) == COUNTER_OFFER


def resolve_offer_status(message) -> str:
    """The message's own offer status, with an unset status meaning pending."""
    return _value(message.offer_status) or PENDING


def is_unresolved(message) -> bool:
    return resolve_offer_status(message) == PENDING


def offer_is_actionable(offer_data) -> bool:
    """An offer needs a price or delivery terms to be acted upon."""
    if offer_data is None:
        return False
    if isinstance(offer_data, dict):
        price = offer_data.get("price")
        terms = offer_data.get("delivery_terms")
    else:
        price = getattr(offer_data, "price", None)
        terms = getattr(offer_data, "delivery_terms", None)
    return price is not None or bool(terms and str(terms).strip())


def latest_open_offer(messages: Sequence) -> Optional[object]:
    """The chronologically last counter-offer that is still pending."""
    for message in reversed(list(messages)):
        if is_counter_offer(message) and is_unresolved(message):
            return message
    return None


def derive_offer_states(messages: Iterable) -> Dict[str, ResolvedOfferState]:
    """
    Compute every counter-offer's lifecycle state from the ordered log.

    Only the last pending counter-offer is flagged `is_latest_open_offer`;
    older pending offers keep `is_pending` but are not the default target
    for accept/reject/withdraw.
    """
    messages = list(messages)
    latest = latest_open_offer(messages)
    latest_id = latest.id if latest is not None else None

    states: Dict[str, ResolvedOfferState] = {}
    for message in messages:
        if not is_counter_offer(message):
            continue
        status = resolve_offer_status(message)
        states[message.id] = ResolvedOfferState(
            is_pending=status == PENDING,
            is_accepted=status == ACCEPTED,
            is_rejected=status == REJECTED,
            is_cancelled=status == CANCELLED,
            is_latest_open_offer=message.id == latest_id,
        )
    return states


def validate_offer_transition(old_status: Optional[str], new_status: str) -> bool:
    old_status = _value(old_status) or PENDING
    new_status = _value(new_status)
    if new_status not in VALID_OFFER_TRANSITIONS.get(old_status, set()):
        logger.warning(f"Invalid offer transition: {old_status} → {new_status}")
        return False
    return True


# ===========================================
# Legality predicates
# ===========================================


def _blocking_reason(message, actor_id: str, negotiation_status: str, *, as_sender: bool) -> Optional[str]:
    if not is_counter_offer(message):
        return NOT_AN_OFFER
    if not is_unresolved(message):
        return ALREADY_RESOLVED
    if _value(negotiation_status) != OPEN:
        return NEGOTIATION_NOT_OPEN
    if as_sender and actor_id != message.sender_id:
        return WRONG_ACTOR
    if not as_sender and actor_id == message.sender_id:
        return WRONG_ACTOR
    return None


def can_accept(message, actor_id: str, negotiation_status: str = OPEN) -> bool:
    return _blocking_reason(message, actor_id, negotiation_status, as_sender=False) is None


def can_reject(message, actor_id: str, negotiation_status: str = OPEN) -> bool:
    return _blocking_reason(message, actor_id, negotiation_status, as_sender=False) is None


def can_withdraw(message, actor_id: str, negotiation_status: str = OPEN) -> bool:
    return _blocking_reason(message, actor_id, negotiation_status, as_sender=True) is None


_REASON_TEXT = {
    NOT_AN_OFFER: "message is not a counter offer",
    ALREADY_RESOLVED: "offer has already been resolved",
    NEGOTIATION_NOT_OPEN: "negotiation is no longer open",
    WRONG_ACTOR: "actor is not allowed to perform this action on the offer",
}


def _ensure(action: str, message, actor_id: str, negotiation_status: str, *, as_sender: bool) -> None:
    reason = _blocking_reason(message, actor_id, negotiation_status, as_sender=as_sender)
    if reason is None:
        return
    logger.warning(
        f"Rejected {action} on message {message.id} by {actor_id}: {reason}"
    )
    raise InvalidTransitionError(
        f"Cannot {action} offer {message.id}: {_REASON_TEXT[reason]}",
        reason=reason,
        message_id=message.id,
    )


def ensure_can_accept(message, actor_id: str, negotiation_status: str = OPEN) -> None:
    _ensure("accept", message, actor_id, negotiation_status, as_sender=False)


def ensure_can_reject(message, actor_id: str, negotiation_status: str = OPEN) -> None:
    _ensure("reject", message, actor_id, negotiation_status, as_sender=False)


def ensure_can_withdraw(message, actor_id: str, negotiation_status: str = OPEN) -> None:
    _ensure("withdraw", message, actor_id, negotiation_status, as_sender=True)


# Resolution status -> guard, used by the session and the view-model
GUARDS = {
    ACCEPTED: ensure_can_accept,
    REJECTED: ensure_can_reject,
    CANCELLED: ensure_can_withdraw,
}
