"""Tests for the shared read-model store."""

import pytest

from p2pramp.store import StateStore


def test_stale_response_is_dropped():
    store = StateStore()
    first = store.begin_request("deposit:1")
    second = store.begin_request("deposit:1")

    assert store.apply("deposit:1", "fresh", second)
    assert not store.apply("deposit:1", "stale", first)
    assert store.get("deposit:1") == "fresh"


def test_generations_are_per_key():
    store = StateStore()
    deposit = store.begin_request("deposit:1")
    store.begin_request("intent:0xabc")
    assert store.apply("deposit:1", "view", deposit)


def test_subscribe_and_unsubscribe():
    store = StateStore()
    seen = []
    unsubscribe = store.subscribe("intent:0xabc", seen.append)

    store.set("intent:0xabc", "open")
    store.set("intent:0xabc", "open")  # unchanged, no notification
    store.set("deposit:1", "other")
    unsubscribe()
    store.set("intent:0xabc", None)

    assert seen == ["open"]


def test_snapshots_are_immutable():
    store = StateStore({"deposit:1": "a"})
    snapshot = store.get_state()
    with pytest.raises(TypeError):
        snapshot["deposit:1"] = "b"

    store.set("deposit:1", "b")
    assert snapshot["deposit:1"] == "a"
    assert store.get_state()["deposit:1"] == "b"
