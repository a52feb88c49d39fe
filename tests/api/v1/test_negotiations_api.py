# tests/api/v1/test_negotiations_api.py
"""
Integration tests for the negotiation endpoints against an in-memory database:
  - start (idempotent, 201 / 200)
  - messages (counter-offers, accept, reject, withdraw)
  - list / detail / close
  - error envelopes
"""

from tests.utils.auth import get_user_authentication_headers
from tests.utils.negotiation import BUYER, OUTSIDER, SUPPLIER, create_random_bid

BUYER_HEADERS = get_user_authentication_headers(BUYER)
SUPPLIER_HEADERS = get_user_authentication_headers(SUPPLIER)
OUTSIDER_HEADERS = get_user_authentication_headers(OUTSIDER)


def _start(client, bid_id, headers=BUYER_HEADERS, json=None):
    return client.post(f"/api/v1/negotiations/start/{bid_id}", headers=headers, json=json)


def _send(client, negotiation_id, payload, headers=SUPPLIER_HEADERS):
    return client.post(
        f"/api/v1/negotiations/{negotiation_id}/messages", headers=headers, json=payload
    )


def _counter_offer(client, negotiation_id, price=1000, headers=SUPPLIER_HEADERS):
    response = _send(
        client,
        negotiation_id,
        {"message_type": "counter_offer", "offer_data": {"price": price, "delivery_terms": "CIF"}},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestStartNegotiation:
    def test_start_is_idempotent(self, test_client, db):
        bid = create_random_bid(db)

        first = _start(test_client, bid.id)
        second = _start(test_client, bid.id, headers=SUPPLIER_HEADERS)

        assert first.status_code == 201
        assert second.status_code == 200
        assert first.json()["success"] is True
        assert first.json()["data"]["id"] == second.json()["data"]["id"]
        assert first.json()["data"]["outcome"] == "active"
        assert "already exists" in second.json()["message"]

    def test_start_with_legacy_counter_offer_body(self, test_client, db):
        bid = create_random_bid(db)
        response = _start(
            test_client,
            bid.id,
            headers=SUPPLIER_HEADERS,
            json={"initial_message": "Our best price", "counter_offer_data": {"total_amount": 990, "delivery": "EXW"}},
        )

        assert response.status_code == 201
        messages = response.json()["data"]["messages"]
        assert len(messages) == 1
        assert messages[0]["message_type"] == "counter_offer"
        assert messages[0]["offer_data"]["price"] == 990
        assert messages[0]["offer_data"]["delivery_terms"] == "EXW"

    def test_start_unknown_bid(self, test_client):
        response = _start(test_client, "bid_missing")
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "BID_NOT_FOUND"

    def test_start_requires_auth(self, test_client, db):
        bid = create_random_bid(db)
        response = test_client.post(f"/api/v1/negotiations/start/{bid.id}")
        assert response.status_code == 401
        assert response.json()["success"] is False


class TestMessages:
    def test_accept_closes_and_emits_event(self, test_client, db, kafka_producer):
        negotiation_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]
        offer = _counter_offer(test_client, negotiation_id)

        response = _send(
            test_client,
            negotiation_id,
            {"message_type": "acceptance", "offer_status": "accepted", "in_reply_to_id": offer["id"]},
            headers=BUYER_HEADERS,
        )

        assert response.status_code == 201
        assert response.json()["data"]["message"] == "Offer accepted! We can proceed with this agreement."

        detail = test_client.get(f"/api/v1/negotiations/{negotiation_id}", headers=BUYER_HEADERS).json()["data"]
        assert detail["status"] == "closed"
        assert detail["closed_reason"] == "accepted"
        assert detail["outcome"] == "accepted"
        assert detail["messages"][0]["offer_status"] == "accepted"

        kafka_producer.send.assert_called_once()
        event = kafka_producer.send.call_args.kwargs["value"]
        assert event["event_type"] == "negotiation.closed"
        assert event["negotiation_id"] == negotiation_id

    def test_second_accept_conflicts(self, test_client, db):
        negotiation_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]
        offer = _counter_offer(test_client, negotiation_id)
        accept = {"message_type": "acceptance", "offer_status": "accepted", "in_reply_to_id": offer["id"]}

        assert _send(test_client, negotiation_id, accept, headers=BUYER_HEADERS).status_code == 201
        response = _send(test_client, negotiation_id, accept, headers=BUYER_HEADERS)

        assert response.status_code == 409
        body = response.json()
        assert body["error"]["code"] == "INVALID_TRANSITION"
        assert body["error"]["details"]["reason"] == "already_resolved"

    def test_second_accept_of_latest_offer_conflicts(self, test_client, db):
        negotiation_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]
        offer = _counter_offer(test_client, negotiation_id)
        accept = {"message_type": "acceptance", "offer_status": "accepted"}

        assert _send(test_client, negotiation_id, accept, headers=BUYER_HEADERS).status_code == 201
        response = _send(test_client, negotiation_id, accept, headers=BUYER_HEADERS)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "INVALID_TRANSITION"
        assert error["details"]["reason"] == "already_resolved"
        assert error["details"]["message_id"] == offer["id"]

    def test_sender_cannot_accept_own_offer(self, test_client, db):
        negotiation_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]
        offer = _counter_offer(test_client, negotiation_id)

        response = _send(
            test_client,
            negotiation_id,
            {"message_type": "acceptance", "offer_status": "accepted", "in_reply_to_id": offer["id"]},
            headers=SUPPLIER_HEADERS,
        )
        assert response.status_code == 409
        assert response.json()["error"]["details"]["reason"] == "wrong_actor"

    def test_negotiation_rejection_cancels_and_emits(self, test_client, db, kafka_producer):
        negotiation_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]

        response = _send(test_client, negotiation_id, {"message_type": "rejection"}, headers=BUYER_HEADERS)

        assert response.status_code == 201
        detail = test_client.get(f"/api/v1/negotiations/{negotiation_id}", headers=BUYER_HEADERS).json()["data"]
        assert detail["status"] == "cancelled"
        assert detail["outcome"] == "rejected"
        assert kafka_producer.send.call_args.kwargs["value"]["event_type"] == "negotiation.cancelled"

    def test_message_after_close_is_refused(self, test_client, db):
        negotiation_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]
        _send(test_client, negotiation_id, {"message_type": "rejection"}, headers=BUYER_HEADERS)

        response = _send(test_client, negotiation_id, {"message": "wait"})
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "NEGOTIATION_CLOSED"

    def test_invalid_counter_offer_shape(self, test_client, db):
        negotiation_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]

        response = _send(test_client, negotiation_id, {"message_type": "counter_offer", "offer_data": {}})

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "MESSAGE_VALIDATION_ERROR"

    def test_blank_text_is_rejected(self, test_client, db):
        negotiation_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]
        response = _send(test_client, negotiation_id, {"message": "   "})
        assert response.status_code == 422

    def test_outsider_gets_403(self, test_client, db):
        negotiation_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]

        response = _send(test_client, negotiation_id, {"message": "hello"}, headers=OUTSIDER_HEADERS)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "NOT_PARTICIPANT"

        response = test_client.get(f"/api/v1/negotiations/{negotiation_id}", headers=OUTSIDER_HEADERS)
        assert response.status_code == 403


class TestListAndClose:
    def test_list_filters_by_status(self, test_client, db):
        open_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]
        cancelled_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]
        _send(test_client, cancelled_id, {"message_type": "rejection"}, headers=BUYER_HEADERS)

        everything = test_client.get("/api/v1/negotiations", headers=BUYER_HEADERS).json()
        assert everything["pagination"]["total_count"] == 2

        only_open = test_client.get(
            "/api/v1/negotiations", params={"status": "open"}, headers=SUPPLIER_HEADERS
        ).json()
        assert [n["id"] for n in only_open["data"]] == [open_id]

        nothing = test_client.get("/api/v1/negotiations", headers=OUTSIDER_HEADERS).json()
        assert nothing["data"] == []

    def test_close_after_acceptance(self, test_client, db):
        negotiation_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]
        offer = _counter_offer(test_client, negotiation_id)
        _send(
            test_client,
            negotiation_id,
            {"message_type": "acceptance", "in_reply_to_id": offer["id"]},
            headers=BUYER_HEADERS,
        )

        response = test_client.post(f"/api/v1/negotiations/{negotiation_id}/close", headers=BUYER_HEADERS)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "closed"

    def test_close_open_negotiation_conflicts(self, test_client, db):
        negotiation_id = _start(test_client, create_random_bid(db).id).json()["data"]["id"]
        response = test_client.post(f"/api/v1/negotiations/{negotiation_id}/close", headers=BUYER_HEADERS)
        assert response.status_code == 409
        assert response.json()["error"]["details"]["reason"] == "acceptance_required"

    def test_unknown_negotiation(self, test_client):
        response = test_client.get("/api/v1/negotiations/neg_missing", headers=BUYER_HEADERS)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NEGOTIATION_NOT_FOUND"
