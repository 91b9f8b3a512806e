import json

from wshandler.core.contracts import CallData, HandlerKey, MessagePayload, as_key


def test_broadcast_and_empty_fields_stay_off_the_wire():
    p = MessagePayload("chat", broadcast=True)
    assert p.to_dict() == {"event": "chat"}
    full = MessagePayload("chat", data={"t": "hi"}, status="ok", broadcast=True)
    assert json.loads(full.to_json()) == {"event": "chat", "data": {"t": "hi"}, "status": "ok"}


def test_from_json():
    p = MessagePayload.from_json('{"event": "chat", "data": [1, 2], "status": ""}')
    assert p.event == "chat" and p.data == [1, 2]
    assert p.status is None and p.broadcast is False


def test_error_calldata_keeps_event_and_client():
    d = CallData.error("chat", "boom", client="conn-9")
    assert d.payload.is_error
    assert (d.payload.event, d.payload.data, d.client) == ("chat", "boom", "conn-9")


def test_keys_compare_structurally():
    assert as_key(("chat", "ok")) == HandlerKey("chat", "ok")
    assert as_key("chat") == HandlerKey("chat", "")
    assert {HandlerKey("a", "b"): 1}[as_key(("a", "b"))] == 1
    assert str(HandlerKey("a", "b")) == "a:b" and str(HandlerKey("a")) == "a"
