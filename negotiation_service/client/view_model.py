# negotiation_service/client/view_model.py
"""
Negotiation view-model: the single observable model behind every
presentation surface (negotiation page, bid detail tab, list views).

It holds the last confirmed server snapshot plus an optimistic overlay of
tentative offer-status changes. The overlay is applied on read and never
written into the snapshot, so a failed action rolls back by discarding its
overlay entry.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from negotiation_service.client.api_client import PurchaseOrderOutcome
from negotiation_service.core.exceptions import (
    InvalidTransitionError,
    MessageValidationError,
    NegotiationClosedError,
    NegotiationServiceError,
    ValidationFailedError,
)
from negotiation_service.schemas.negotiation import (
    ClosedReason,
    MessageCreate,
    MessageRead,
    MessageType,
    NegotiationRead,
    NegotiationStatus,
    OfferData,
    OfferStatus,
)
from negotiation_service.schemas.purchase_order import PurchaseOrderFromNegotiation
from negotiation_service.services import offer_state
from negotiation_service.services.offer_state import ResolvedOfferState

logger = logging.getLogger(__name__)


@dataclass
class ThreadRow:
    """One display row of the message thread."""

    message: MessageRead
    is_own: bool
    starts_group: bool
    ends_group: bool
    offer_state: Optional[ResolvedOfferState] = None


class NegotiationViewModel:
    def __init__(
        self,
        api_client,
        actor_id: str,
        negotiation_id: Optional[str] = None,
        snapshot: Optional[NegotiationRead] = None,
    ):
        if negotiation_id is None and snapshot is None:
            raise ValueError("negotiation_id or snapshot is required")
        self.api_client = api_client
        self.actor_id = actor_id
        self.negotiation_id = negotiation_id or snapshot.id
        self.snapshot = snapshot
        self._overlay: Dict[str, str] = {}
        self._subscribers: List[Callable] = []

    # ===========================================
    # Observation
    # ===========================================

    def subscribe(self, callback: Callable[["NegotiationViewModel"], None]) -> Callable[[], None]:
        """Register a change listener. Returns the matching unsubscribe callable."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self)
            except Exception:
                logger.exception(f"View-model subscriber failed for {self.negotiation_id}")

    def apply_snapshot(self, negotiation: NegotiationRead) -> None:
        """Adopt a confirmed server snapshot (the poller's on_change)."""
        self.snapshot = negotiation
        confirmed = {m.id: m for m in negotiation.messages}
        for message_id in list(self._overlay):
            message = confirmed.get(message_id)
            if message is not None and not offer_state.is_unresolved(message):
                del self._overlay[message_id]
        self._emit()

    async def refresh(self) -> NegotiationRead:
        negotiation = await self.api_client.get_negotiation(self.negotiation_id)
        self.apply_snapshot(negotiation)
        return negotiation

    async def _refresh_quietly(self) -> bool:
        try:
            await self.refresh()
        except NegotiationServiceError as e:
            # The poller reconciles on its next tick
            logger.warning(f"Refresh of {self.negotiation_id} after send failed: {e.message}")
            return False
        return True

    # ===========================================
    # Derived state
    # ===========================================

    @property
    def status(self) -> Optional[str]:
        if self.snapshot is None:
            return None
        return self.snapshot.status.value

    @property
    def is_buyer(self) -> bool:
        return self.snapshot is not None and self.snapshot.buyer_id == self.actor_id

    @property
    def messages(self) -> List[MessageRead]:
        """The confirmed log with tentative offer statuses applied."""
        if self.snapshot is None:
            return []
        return [
            m.model_copy(update={"offer_status": OfferStatus(self._overlay[m.id])})
            if m.id in self._overlay
            else m
            for m in self.snapshot.messages
        ]

    @property
    def offer_states(self) -> Dict[str, ResolvedOfferState]:
        return offer_state.derive_offer_states(self.messages)

    @property
    def latest_open_offer(self) -> Optional[MessageRead]:
        return offer_state.latest_open_offer(self.messages)

    def _find(self, message_id: str) -> Optional[MessageRead]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def can_accept(self, message_id: str) -> bool:
        message = self._find(message_id)
        return message is not None and offer_state.can_accept(message, self.actor_id, self.status)

    def can_reject(self, message_id: str) -> bool:
        message = self._find(message_id)
        return message is not None and offer_state.can_reject(message, self.actor_id, self.status)

    def can_withdraw(self, message_id: str) -> bool:
        message = self._find(message_id)
        return message is not None and offer_state.can_withdraw(message, self.actor_id, self.status)

    @property
    def can_generate_purchase_order(self) -> bool:
        n = self.snapshot
        return (
            n is not None
            and n.status == NegotiationStatus.CLOSED
            and n.closed_reason == ClosedReason.ACCEPTED
            and n.purchase_order_id is None
            and self.is_buyer
        )

    def thread(self) -> List[ThreadRow]:
        messages = self.messages
        states = offer_state.derive_offer_states(messages)
        rows = []
        for i, message in enumerate(messages):
            prev_sender = messages[i - 1].sender_id if i > 0 else None
            next_sender = messages[i + 1].sender_id if i + 1 < len(messages) else None
            rows.append(
                ThreadRow(
                    message=message,
                    is_own=message.sender_id == self.actor_id,
                    starts_group=prev_sender != message.sender_id,
                    ends_group=next_sender != message.sender_id,
                    offer_state=states.get(message.id),
                )
            )
        return rows

    # ===========================================
    # Intents
    # ===========================================

    @staticmethod
    def _draft(**fields) -> MessageCreate:
        try:
            return MessageCreate(**fields)
        except ValidationError as e:
            first = e.errors()[0]
            raise MessageValidationError(
                first.get("msg", "Invalid message"),
                field=".".join(str(loc) for loc in first.get("loc", ())) or None,
            )

    def _target(self, message_id: Optional[str]) -> MessageRead:
        if message_id is None:
            target = self.latest_open_offer
            if target is None:
                raise InvalidTransitionError(
                    "There is no open offer to act on", reason="no_open_offer"
                )
            return target
        target = self._find(message_id)
        if target is None:
            raise InvalidTransitionError(
                f"Message {message_id} is not part of this negotiation",
                reason=offer_state.NOT_AN_OFFER,
                message_id=message_id,
            )
        return target

    async def _resolve(self, message_id: Optional[str], resolution: str, draft_fields: dict) -> MessageRead:
        target = self._target(message_id)
        offer_state.GUARDS[resolution](target, self.actor_id, self.status)
        draft = self._draft(in_reply_to_id=target.id, **draft_fields)

        self._overlay[target.id] = resolution
        self._emit()
        try:
            sent = await self.api_client.send_message(self.negotiation_id, draft)
        except Exception:
            self._overlay.pop(target.id, None)
            self._emit()
            raise

        if await self._refresh_quietly():
            self._overlay.pop(target.id, None)
        return sent

    async def accept_offer(self, message_id: Optional[str] = None, message: Optional[str] = None) -> MessageRead:
        return await self._resolve(
            message_id,
            offer_state.ACCEPTED,
            {"message": message, "message_type": MessageType.ACCEPTANCE, "offer_status": OfferStatus.ACCEPTED},
        )

    async def reject_offer(self, message_id: Optional[str] = None, message: Optional[str] = None) -> MessageRead:
        return await self._resolve(
            message_id,
            offer_state.REJECTED,
            {"message": message, "message_type": MessageType.REJECTION, "offer_status": OfferStatus.REJECTED},
        )

    async def withdraw_offer(self, message_id: Optional[str] = None, message: Optional[str] = None) -> MessageRead:
        return await self._resolve(
            message_id,
            offer_state.CANCELLED,
            {"message": message, "message_type": MessageType.TEXT, "offer_status": OfferStatus.CANCELLED},
        )

    def _ensure_open(self) -> None:
        if self.snapshot is not None and self.status != offer_state.OPEN:
            raise NegotiationClosedError(self.negotiation_id, self.status)

    async def _send(self, draft: MessageCreate) -> MessageRead:
        self._ensure_open()
        sent = await self.api_client.send_message(self.negotiation_id, draft)
        await self._refresh_quietly()
        return sent

    async def send_text(self, text: str, attachments: Optional[List[str]] = None) -> MessageRead:
        return await self._send(self._draft(message=text, attachments=attachments or []))

    async def send_counter_offer(
        self, offer_data: Union[OfferData, dict], message: Optional[str] = None
    ) -> MessageRead:
        return await self._send(
            self._draft(
                message=message,
                message_type=MessageType.COUNTER_OFFER,
                offer_data=offer_data,
            )
        )

    async def reject_negotiation(self, message: Optional[str] = None) -> MessageRead:
        """Reject the negotiation as a whole; the server cancels it."""
        return await self._send(self._draft(message=message, message_type=MessageType.REJECTION))

    async def generate_purchase_order(
        self, details: Union[PurchaseOrderFromNegotiation, dict]
    ) -> PurchaseOrderOutcome:
        """
        Create the PO, then re-fetch the negotiation. The order only counts as
        created once the refreshed negotiation points at it; `confirmed` tells
        an already existing order apart from one the server has not linked yet.
        """
        if isinstance(details, dict):
            try:
                details = PurchaseOrderFromNegotiation(**details)
            except ValidationError as e:
                first = e.errors()[0]
                raise ValidationFailedError(
                    first.get("msg", "Invalid purchase order details"),
                    field=".".join(str(loc) for loc in first.get("loc", ())) or None,
                )

        outcome = await self.api_client.create_purchase_order(self.negotiation_id, details)
        negotiation = await self.refresh()
        confirmed = negotiation.purchase_order_id == outcome.purchase_order.id
        if not confirmed:
            logger.warning(
                f"Purchase order {outcome.purchase_order.id} not yet linked to {self.negotiation_id}"
            )
        return PurchaseOrderOutcome(
            purchase_order=outcome.purchase_order,
            created=outcome.created and confirmed,
            message=outcome.message,
            confirmed=confirmed,
        )
