from negotiation_service.utils.log_diff import logs_equal, message_fingerprint

from tests.client.fakes import make_message


def test_equal_content_in_different_objects():
    a = [make_message("m1", 1), make_message("m2", 2, message_type="text", message="hi")]
    b = [make_message("m1", 1), make_message("m2", 2, message_type="text", message="hi")]
    assert a[0] is not b[0]
    assert logs_equal(a, b)


def test_status_change_is_detected():
    before = [make_message("m1", 1)]
    after = [make_message("m1", 1, offer_status="accepted")]
    assert not logs_equal(before, after)


def test_offer_terms_change_is_detected():
    before = [make_message("m1", 1, offer_data={"price": 1000.0})]
    after = [make_message("m1", 1, offer_data={"price": 990.0})]
    assert not logs_equal(before, after)


def test_append_is_detected():
    log = [make_message("m1", 1)]
    assert not logs_equal(log, log + [make_message("m2", 2)])


def test_dicts_and_models_compare_alike():
    message = make_message("m1", 1, attachments=["att_1"])
    as_dict = message.model_dump(mode="json")
    assert message_fingerprint(message) == message_fingerprint(as_dict)


def test_empty_logs():
    assert logs_equal(None, [])
