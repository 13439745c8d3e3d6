"""Tests for worker definitions and their wire format."""

import logging

import pytest

from devregistry import DurableObjectRef, WorkerDefinition
from devregistry.registry import registry_from_json


def test_to_json_uses_wire_keys_and_omits_unset_fields():
    definition = WorkerDefinition(
        mode="local",
        port=8787,
        protocol="http",
        host="localhost",
        durable_objects=(DurableObjectRef(name="COUNTER", class_name="Counter"),),
        durable_objects_port=8788,
    )
    assert definition.to_json() == {
        "mode": "local",
        "port": 8787,
        "protocol": "http",
        "host": "localhost",
        "durableObjects": [{"name": "COUNTER", "className": "Counter"}],
        "durableObjectsPort": 8788,
    }


def test_from_json_reverses_to_json():
    definition = WorkerDefinition(
        mode="remote",
        port=443,
        protocol="https",
        host="example.workers.dev",
        headers={"cf-workers-preview-token": "abc"},
        durable_objects=(DurableObjectRef(name="ROOM", class_name="ChatRoom"),),
        durable_objects_host="127.0.0.1",
        durable_objects_port=9000,
        hand_off_receiver_port=40123,
    )
    assert WorkerDefinition.from_json(definition.to_json()) == definition


def test_from_json_ignores_unknown_keys_and_defaults_missing_ones():
    definition = WorkerDefinition.from_json({"mode": "local", "port": 1234, "somethingNew": True})
    assert definition == WorkerDefinition(mode="local", port=1234)


def test_from_json_requires_a_known_mode():
    with pytest.raises(KeyError):
        WorkerDefinition.from_json({"port": 1234})
    with pytest.raises(ValueError, match="unknown worker mode"):
        WorkerDefinition.from_json({"mode": "hybrid"})


def test_with_hand_off_receiver_port_returns_copy():
    original = WorkerDefinition(mode="local", port=1)
    updated = original.with_hand_off_receiver_port(5555)
    assert updated.hand_off_receiver_port == 5555
    assert original.hand_off_receiver_port is None
    assert updated.to_json()["handOffReceiverPort"] == 5555


def test_registry_from_json_rejects_non_objects():
    with pytest.raises(ValueError):
        registry_from_json([1, 2])


def test_registry_from_json_skips_malformed_entries(caplog):
    data = {
        "svcA": {"mode": "local", "port": 1},
        "text": "not an object",
        "junk": {"mode": "local", "durableObjects": [{"name": "x"}]},
        "no_mode": {"port": 2},
        "bad_headers": {"mode": "local", "headers": 5},
    }

    with caplog.at_level(logging.WARNING, logger="devregistry.registry.definition"):
        workers = registry_from_json(data)

    assert workers == {"svcA": WorkerDefinition(mode="local", port=1)}
    assert len(caplog.records) == 4
