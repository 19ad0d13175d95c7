"""Canonical escrow state digest implementation (v1)."""
from __future__ import annotations

from typing import Any

from blake3 import blake3

from .codec import hex_to_address
from .types import LifecycleState, Party

_LIFECYCLE_IDS = {
    LifecycleState.AWAITING_DEPOSIT.value: 0,
    LifecycleState.AWAITING_APPROVALS.value: 1,
    LifecycleState.RELEASED.value: 2,
    LifecycleState.REFUNDED.value: 3,
}


def _u64_be(value: int) -> bytes:
    if value < 0:
        raise ValueError("u64 must be non-negative")
    return int(value).to_bytes(8, "big", signed=False)


def compute_state_digest(state_json: dict[str, Any]) -> str:
    """Compute state digest v1 from a state_to_json record.

    Fields are encoded in canonical order and hashed with BLAKE3-256:
    buyer, seller, mediator (32 bytes each), deadline, lifecycle id,
    deposited amount, approval count (u64 BE), then one approval byte per
    party in buyer, seller, mediator order.
    """
    buf = bytearray()
    for party in Party:
        buf += hex_to_address(state_json.get(party.value), party.value)

    lifecycle = state_json.get("lifecycle_state", LifecycleState.AWAITING_DEPOSIT.value)
    if lifecycle not in _LIFECYCLE_IDS:
        raise ValueError(f"unknown lifecycle_state {lifecycle!r}")

    buf += _u64_be(int(state_json.get("deadline", 0)))
    buf += _u64_be(_LIFECYCLE_IDS[lifecycle])
    buf += _u64_be(int(state_json.get("deposited_amount", 0)))
    buf += _u64_be(int(state_json.get("approval_count", 0)))

    approvals = state_json.get("approvals", {})
    for party in Party:
        buf.append(1 if approvals.get(party.value, False) else 0)

    return blake3(bytes(buf)).hexdigest()
