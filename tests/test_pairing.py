"""Tests for pending device pairing approval."""

import os

from provisioner.pairing import (
    approve_pending_device_pairings,
    merge_device_record,
    merge_unique_strings,
)
from tests.conftest import read_json, write_json


NOW = 1_700_000_000_000


def clock():
    return NOW


class TestMergeUniqueStrings:
    def test_order_and_dedup(self):
        assert merge_unique_strings(["a", "b"], "b", ["c", "a"]) == ["a", "b", "c"]

    def test_skips_empty_values(self):
        assert merge_unique_strings(None, "", [" ", None, " x "], []) == ["x"]

    def test_stringifies(self):
        assert merge_unique_strings([1, 2], 2) == ["1", "2"]


class TestMergeDeviceRecord:
    def test_new_device(self):
        request = {
            "requestId": "r1",
            "deviceId": "d1",
            "publicKey": "pk",
            "platform": "web",
            "role": "operator",
            "scopes": ["chat"],
            "remoteIp": "10.0.0.2",
        }
        record = merge_device_record({}, request, NOW)
        assert record == {
            "deviceId": "d1",
            "publicKey": "pk",
            "platform": "web",
            "role": "operator",
            "roles": ["operator"],
            "scopes": ["chat"],
            "remoteIp": "10.0.0.2",
            "createdAtMs": NOW,
            "approvedAtMs": NOW,
        }

    def test_existing_device_keeps_tokens_and_creation_time(self):
        existing = {
            "deviceId": "d1",
            "role": "viewer",
            "roles": ["viewer"],
            "scopes": ["read"],
            "tokens": {"operator": {"token": "secret"}},
            "createdAtMs": 1000,
            "approvedAtMs": 2000,
        }
        request = {"deviceId": "d1", "roles": ["operator"], "scopes": ["chat", "read"]}
        record = merge_device_record(existing, request, NOW)
        assert record["roles"] == ["viewer", "operator"]
        assert record["scopes"] == ["read", "chat"]
        assert record["role"] == "viewer"
        assert record["tokens"] == {"operator": {"token": "secret"}}
        assert record["createdAtMs"] == 1000
        assert record["approvedAtMs"] == NOW


class TestApprovePending:
    def test_nothing_pending_writes_nothing(self, store, layout):
        assert approve_pending_device_pairings(store, clock) == {"approved": 0, "remaining": 0}
        assert not os.path.exists(layout.paired_devices_file)
        assert not os.path.exists(layout.pending_devices_file)

    def test_moves_requests_to_paired(self, store, layout):
        write_json(layout.pending_devices_file, {
            "r1": {"requestId": "r1", "deviceId": "d1", "role": "operator"},
            "r2": {"requestId": "r2", "deviceId": "d2", "scopes": ["chat"]},
        })
        assert approve_pending_device_pairings(store, clock) == {"approved": 2, "remaining": 0}
        assert read_json(layout.pending_devices_file) == {}
        paired = read_json(layout.paired_devices_file)
        assert set(paired) == {"d1", "d2"}
        assert paired["d1"]["roles"] == ["operator"]
        assert paired["d2"]["scopes"] == ["chat"]

    def test_union_never_removes_roles_or_scopes(self, store, layout):
        write_json(layout.paired_devices_file, {
            "d1": {"deviceId": "d1", "roles": ["admin"], "scopes": ["all"], "createdAtMs": 5},
        })
        write_json(layout.pending_devices_file, {
            "r1": {"deviceId": "d1", "role": "operator", "scopes": []},
        })
        approve_pending_device_pairings(store, clock)
        record = read_json(layout.paired_devices_file)["d1"]
        assert set(record["roles"]) >= {"admin", "operator"}
        assert record["scopes"] == ["all"]
        assert record["createdAtMs"] == 5

    def test_reapproval_is_idempotent_except_timestamp(self, store, layout):
        request = {"deviceId": "d1", "role": "operator", "scopes": ["chat"]}
        write_json(layout.pending_devices_file, {"r1": request})
        approve_pending_device_pairings(store, lambda: 100)
        first = read_json(layout.paired_devices_file)["d1"]

        write_json(layout.pending_devices_file, {"r2": request})
        approve_pending_device_pairings(store, lambda: 200)
        second = read_json(layout.paired_devices_file)["d1"]

        assert second["approvedAtMs"] == 200 >= first["approvedAtMs"]
        first.pop("approvedAtMs")
        second.pop("approvedAtMs")
        assert first == second

    def test_requests_without_device_id_stay_pending(self, store, layout):
        write_json(layout.pending_devices_file, {
            "r1": {"deviceId": "d1"},
            "r2": {"publicKey": "orphan"},
        })
        result = approve_pending_device_pairings(store, clock)
        assert result == {"approved": 1, "remaining": 1}
        assert read_json(layout.pending_devices_file) == {"r2": {"publicKey": "orphan"}}

    def test_malformed_documents_are_treated_as_empty(self, store, layout):
        write_json(layout.paired_devices_file, ["not", "a", "table"])
        write_json(layout.pending_devices_file, {"r1": {"deviceId": "d1"}})
        assert approve_pending_device_pairings(store, clock)["approved"] == 1
        assert list(read_json(layout.paired_devices_file)) == ["d1"]
