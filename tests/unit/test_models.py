"""
Unit tests for the pydantic data model.
"""

import pytest

from message_relay import BackendReceipt, DispatchOutcome, DispatchStatus, Message


def test_message_accepts_wire_and_python_names():
    wire = Message.model_validate({"idempotencyKey": "k1", "payload": {"to": "a@b.c"}})
    py = Message(idempotency_key="k1", payload={"to": "a@b.c"})

    assert wire.idempotency_key == py.idempotency_key == "k1"
    assert wire.retry_count == 0
    assert wire.model_dump(by_alias=True)["idempotencyKey"] == "k1"


@pytest.mark.parametrize("key", [None, "", "   "])
def test_blank_key_is_missing(key):
    assert not Message(idempotency_key=key).has_key


def test_outcome_is_frozen():
    out = DispatchOutcome(status=DispatchStatus.SUCCESS, detail="sent", backend="primary")
    with pytest.raises(Exception):
        out.status = DispatchStatus.FAILURE  # type: ignore


def test_as_duplicate_keeps_everything_but_status():
    out = DispatchOutcome(
        status=DispatchStatus.SUCCESS,
        detail="sent by primary",
        backend="primary",
        attempts=2,
        receipt={"backend": "primary"},
    )
    dup = out.as_duplicate()

    assert dup.status == DispatchStatus.DUPLICATE
    assert dup.model_dump(exclude={"status"}) == out.model_dump(exclude={"status"})
    assert out.status == DispatchStatus.SUCCESS
    assert out.is_terminal and not dup.is_terminal


def test_receipt_ok():
    assert BackendReceipt(backend="b").ok
    assert not BackendReceipt(backend="b", status="bounced").ok
