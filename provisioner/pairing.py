"""
OpenClaw Admin - Device Pairing Reconciler
============================================
Approves every pending device pairing request the gateway has recorded.

The gateway writes a request to devices/pending.json when a browser or
app tries to connect without being paired. Approval moves each request
into devices/paired.json:

    - roles  = union of existing roles/role and requested roles/role
    - scopes = union of existing and requested scopes
    - tokens, createdAtMs are carried forward from the existing record
    - approvedAtMs is set to now

Approval only ever adds roles and scopes, and never touches tokens.
"""

import time
from typing import Any, Callable

from provisioner.store import ConfigStore


IDENTITY_FIELDS = (
    "deviceId",
    "publicKey",
    "displayName",
    "platform",
    "clientId",
    "clientMode",
)


def merge_unique_strings(*sources: Any) -> list[str]:
    """
    Union of string values, first occurrence wins the position.

    Each source may be a list (flattened) or a scalar (wrapped). Values
    are stringified and trimmed; empty results are dropped.
    """
    merged: dict[str, None] = {}
    for source in sources:
        if not source:
            continue
        values = source if isinstance(source, list) else [source]
        for value in values:
            text = str(value or "").strip()
            if text:
                merged[text] = None
    return list(merged)


def merge_device_record(existing: dict, request: dict, now_ms: int) -> dict:
    """Build the paired record for one approved request."""
    roles = merge_unique_strings(
        existing.get("roles"), existing.get("role"),
        request.get("roles"), request.get("role"),
    )
    scopes = merge_unique_strings(existing.get("scopes"), request.get("scopes"))

    record: dict[str, Any] = {field: request.get(field) for field in IDENTITY_FIELDS}
    record.update({
        "role": request.get("role") or existing.get("role"),
        "roles": roles or None,
        "scopes": scopes or None,
        "remoteIp": request.get("remoteIp"),
        "tokens": existing.get("tokens"),
        "createdAtMs": existing.get("createdAtMs") or now_ms,
        "approvedAtMs": now_ms,
    })
    return {key: value for key, value in record.items() if value is not None}


def approve_pending_device_pairings(
    store: ConfigStore,
    clock: Callable[[], int] | None = None,
) -> dict[str, int]:
    """
    Move every pending pairing request into the paired-device table.

    Requests without a deviceId cannot be keyed; they stay pending and
    count towards 'remaining'. With nothing pending, no file is written.

    Args:
        store: ConfigStore locating the device documents.
        clock: Millisecond clock, defaults to wall time.

    Returns:
        {"approved": <requests moved>, "remaining": <requests still pending>}
    """
    layout = store.layout
    pending = _as_dict(store.read_json_document(layout.pending_devices_file, {}))
    paired = _as_dict(store.read_json_document(layout.paired_devices_file, {}))

    if not pending:
        return {"approved": 0, "remaining": 0}

    now_ms = clock() if clock else int(time.time() * 1000)
    approved = 0
    for request_id, request in list(pending.items()):
        device_id = request.get("deviceId") if isinstance(request, dict) else None
        if not device_id:
            continue
        existing = paired.get(device_id)
        if not isinstance(existing, dict):
            existing = {}
        paired[device_id] = merge_device_record(existing, request, now_ms)
        del pending[request_id]
        approved += 1

    store.write_json_document(layout.paired_devices_file, paired)
    store.write_json_document(layout.pending_devices_file, pending)
    return {"approved": approved, "remaining": len(pending)}


def _as_dict(document: Any) -> dict:
    return document if isinstance(document, dict) else {}
