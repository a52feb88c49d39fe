# tests/client/test_view_model.py
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from negotiation_service.client.api_client import PurchaseOrderOutcome
from negotiation_service.client.view_model import NegotiationViewModel, ThreadRow
from negotiation_service.core.exceptions import (
    InvalidTransitionError,
    MessageValidationError,
    NegotiationClosedError,
    TransportError,
    ValidationFailedError,
)
from negotiation_service.schemas.purchase_order import PurchaseOrderRead

from tests.client.fakes import BUYER, NOW, SUPPLIER, make_api, make_message, make_negotiation


def _offer_log():
    return [
        make_message("m1", 1, sender_id=BUYER, message_type="text", message="Can you do better?"),
        make_message("m2", 2, sender_id=SUPPLIER),
    ]


def _view_model(actor_id=BUYER, negotiation=None, api=None):
    negotiation = negotiation or make_negotiation(_offer_log())
    api = api or make_api(negotiation)
    return NegotiationViewModel(api, actor_id, snapshot=negotiation), api


def _purchase_order(**overrides):
    fields = dict(
        id="po_1",
        po_number="PO-20240501-ABC123",
        negotiation_id="neg_1",
        bid_id="bid_1",
        rfq_id="rfq_1",
        buyer_id=BUYER,
        supplier_id=SUPPLIER,
        created_by_id=BUYER,
        total_amount=Decimal("1000.00"),
        currency="USD",
        delivery_address="1 Dock Road",
        payment_terms="Net 30",
        status="draft",
        created_at=NOW,
    )
    fields.update(overrides)
    return PurchaseOrderRead(**fields)


class TestDerivedState:
    def test_buyer_predicates(self):
        vm, _ = _view_model(actor_id=BUYER)
        assert vm.can_accept("m2")
        assert vm.can_reject("m2")
        assert not vm.can_withdraw("m2")
        assert not vm.can_accept("m1")
        assert not vm.can_accept("unknown")

    def test_supplier_predicates(self):
        vm, _ = _view_model(actor_id=SUPPLIER)
        assert not vm.can_accept("m2")
        assert vm.can_withdraw("m2")

    def test_offer_states_and_latest(self):
        vm, _ = _view_model()
        assert vm.offer_states["m2"].is_latest_open_offer
        assert vm.latest_open_offer.id == "m2"

    def test_thread_rows(self):
        log = _offer_log() + [
            make_message("m3", 3, sender_id=SUPPLIER, message_type="text", message="Final offer"),
        ]
        vm, _ = _view_model(negotiation=make_negotiation(log))

        rows = vm.thread()

        assert [r.is_own for r in rows] == [True, False, False]
        assert [r.starts_group for r in rows] == [True, True, False]
        assert [r.ends_group for r in rows] == [True, False, True]
        assert rows[0].offer_state is None
        assert rows[1].offer_state.is_pending

    def test_thread_row_without_offer_state(self):
        row = ThreadRow(
            message=make_message("m1", 1, message_type="text", message="Hello"),
            is_own=True,
            starts_group=True,
            ends_group=True,
        )
        assert row.offer_state is None

    def test_can_generate_purchase_order(self):
        closed = make_negotiation(status="closed", closed_reason="accepted")
        buyer_vm, _ = _view_model(actor_id=BUYER, negotiation=closed)
        supplier_vm, _ = _view_model(actor_id=SUPPLIER, negotiation=closed)
        linked_vm, _ = _view_model(
            negotiation=make_negotiation(status="closed", closed_reason="accepted", purchase_order_id="po_1")
        )
        open_vm, _ = _view_model()

        assert buyer_vm.can_generate_purchase_order
        assert not supplier_vm.can_generate_purchase_order
        assert not linked_vm.can_generate_purchase_order
        assert not open_vm.can_generate_purchase_order

    def test_requires_an_id(self):
        with pytest.raises(ValueError):
            NegotiationViewModel(make_api(), BUYER)


@pytest.mark.asyncio
class TestOptimisticActions:
    async def test_accept_applies_overlay_then_refreshes(self):
        vm, api = _view_model()
        seen = []
        vm.subscribe(lambda model: seen.append(model.offer_states["m2"].status))

        accepted_log = [_offer_log()[0], make_message("m2", 2, offer_status="accepted")]
        api.get_negotiation.return_value = make_negotiation(
            accepted_log, status="closed", closed_reason="accepted"
        )

        await vm.accept_offer("m2")

        draft = api.send_message.await_args.args[1]
        assert draft.message_type.value == "acceptance"
        assert draft.offer_status.value == "accepted"
        assert draft.in_reply_to_id == "m2"
        # Tentative first, then the confirmed snapshot
        assert seen == ["accepted", "accepted"]
        assert vm.status == "closed"
        assert vm._overlay == {}

    async def test_failed_send_rolls_back_overlay(self):
        vm, api = _view_model()
        api.send_message.side_effect = InvalidTransitionError("already resolved", reason="already_resolved")
        seen = []
        vm.subscribe(lambda model: seen.append(model.offer_states["m2"].status))

        with pytest.raises(InvalidTransitionError):
            await vm.reject_offer("m2")

        assert seen == ["rejected", "pending"]
        assert vm.offer_states["m2"].is_pending
        assert vm.snapshot.messages[1].offer_status is None

    async def test_transport_failure_rolls_back(self):
        vm, api = _view_model(actor_id=SUPPLIER)
        api.send_message.side_effect = TransportError("timed out")

        with pytest.raises(TransportError):
            await vm.withdraw_offer("m2")

        assert vm.can_withdraw("m2")

    async def test_illegal_action_never_hits_network(self):
        vm, api = _view_model(actor_id=SUPPLIER)

        with pytest.raises(InvalidTransitionError) as exc:
            await vm.accept_offer("m2")

        assert exc.value.reason == "wrong_actor"
        api.send_message.assert_not_awaited()

    async def test_default_target_is_latest_open_offer(self):
        vm, api = _view_model()
        await vm.reject_offer()
        assert api.send_message.await_args.args[1].in_reply_to_id == "m2"

    async def test_no_open_offer(self):
        vm, api = _view_model(negotiation=make_negotiation([]))
        with pytest.raises(InvalidTransitionError):
            await vm.accept_offer()
        api.send_message.assert_not_awaited()

    async def test_overlay_kept_when_refresh_fails(self):
        vm, api = _view_model()
        api.get_negotiation.side_effect = TransportError("offline")

        await vm.accept_offer("m2")

        assert vm.offer_states["m2"].is_accepted
        # The next confirmed snapshot clears it
        vm.apply_snapshot(make_negotiation([_offer_log()[0], make_message("m2", 2, offer_status="accepted")]))
        assert vm._overlay == {}


@pytest.mark.asyncio
class TestSends:
    async def test_send_counter_offer_validates_locally(self):
        vm, api = _view_model(actor_id=SUPPLIER)
        with pytest.raises(MessageValidationError):
            await vm.send_counter_offer({"currency": "EUR"})
        api.send_message.assert_not_awaited()

    async def test_send_counter_offer(self):
        vm, api = _view_model(actor_id=SUPPLIER)
        await vm.send_counter_offer({"price": 980, "delivery_terms": "DAP"}, message="Revised")
        draft = api.send_message.await_args.args[1]
        assert draft.message_type.value == "counter_offer"
        assert draft.offer_data.price == 980
        api.get_negotiation.assert_awaited()

    async def test_send_text_on_closed_negotiation(self):
        vm, api = _view_model(negotiation=make_negotiation(status="cancelled", closed_reason="rejected"))
        with pytest.raises(NegotiationClosedError):
            await vm.send_text("hello?")
        api.send_message.assert_not_awaited()

    async def test_reject_negotiation(self):
        vm, api = _view_model()
        await vm.reject_negotiation()
        draft = api.send_message.await_args.args[1]
        assert draft.message_type.value == "rejection"
        assert draft.offer_status is None
        assert draft.in_reply_to_id is None

    async def test_unsubscribe(self):
        vm, _ = _view_model()
        listener = MagicMock()
        unsubscribe = vm.subscribe(listener)
        unsubscribe()
        vm.apply_snapshot(make_negotiation())
        listener.assert_not_called()


@pytest.mark.asyncio
class TestGeneratePurchaseOrder:
    async def test_created_when_refetch_confirms(self):
        vm, api = _view_model(negotiation=make_negotiation(status="closed", closed_reason="accepted"))
        api.create_purchase_order.return_value = PurchaseOrderOutcome(
            purchase_order=_purchase_order(), created=True, message="Purchase order created successfully"
        )
        api.get_negotiation.return_value = make_negotiation(
            status="closed", closed_reason="accepted", purchase_order_id="po_1"
        )

        outcome = await vm.generate_purchase_order(
            {"delivery_address": "1 Dock Road", "payment_terms": "Net 30"}
        )

        assert outcome.created is True
        assert outcome.confirmed is True
        assert vm.snapshot.purchase_order_id == "po_1"
        assert not vm.can_generate_purchase_order

    async def test_not_created_until_linked(self):
        vm, api = _view_model(negotiation=make_negotiation(status="closed", closed_reason="accepted"))
        api.create_purchase_order.return_value = PurchaseOrderOutcome(
            purchase_order=_purchase_order(), created=True, message="Purchase order created successfully"
        )
        api.get_negotiation.return_value = make_negotiation(status="closed", closed_reason="accepted")

        outcome = await vm.generate_purchase_order(
            {"delivery_address": "1 Dock Road", "payment_terms": "Net 30"}
        )
        assert outcome.created is False
        assert outcome.confirmed is False

    async def test_existing_order_is_confirmed_but_not_created(self):
        vm, api = _view_model(negotiation=make_negotiation(status="closed", closed_reason="accepted"))
        api.create_purchase_order.return_value = PurchaseOrderOutcome(
            purchase_order=_purchase_order(),
            created=False,
            message="Purchase order already exists for this negotiation",
        )
        api.get_negotiation.return_value = make_negotiation(
            status="closed", closed_reason="accepted", purchase_order_id="po_1"
        )

        outcome = await vm.generate_purchase_order(
            {"delivery_address": "1 Dock Road", "payment_terms": "Net 30"}
        )

        assert outcome.created is False
        assert outcome.confirmed is True
        assert outcome.purchase_order.id == "po_1"

    async def test_invalid_details(self):
        vm, api = _view_model(negotiation=make_negotiation(status="closed", closed_reason="accepted"))
        with pytest.raises(ValidationFailedError):
            await vm.generate_purchase_order({"delivery_address": "", "payment_terms": "Net 30"})
        api.create_purchase_order.assert_not_awaited()
