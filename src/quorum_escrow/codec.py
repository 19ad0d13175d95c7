"""Helpers to serialize/deserialize escrow records and events as JSON data."""

from __future__ import annotations

from typing import Any

from .config import ADDRESS_LEN
from .errors import ErrorCode, EscrowError
from .types import EscrowEvent, EscrowState, EventKind, LifecycleState, Party


def _bytes_to_hex(v: bytes) -> str:
    return v.hex()


def hex_to_address(v: object, name: str = "address") -> bytes:
    if not isinstance(v, str):
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{name} must be a hex string")
    s = v[2:] if v.startswith(("0x", "0X")) else v
    try:
        raw = bytes.fromhex(s)
    except ValueError as exc:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{name} is not valid hex") from exc
    if len(raw) != ADDRESS_LEN:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{name} must be {ADDRESS_LEN} bytes, got {len(raw)}")
    return raw


def _int_field(data: dict[str, Any], name: str, default: int | None = None) -> int:
    value = data.get(name, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{name} must be an integer")
    return value


def state_to_json(state: EscrowState) -> dict[str, Any]:
    return {
        "buyer": _bytes_to_hex(state.buyer),
        "seller": _bytes_to_hex(state.seller),
        "mediator": _bytes_to_hex(state.mediator),
        "deadline": state.deadline,
        "lifecycle_state": state.lifecycle_state.value,
        "deposited_amount": state.deposited_amount,
        "approvals": {p.value: state.approvals[p] for p in Party},
        "approval_count": state.approval_count,
    }


def state_from_json(data: dict[str, Any]) -> EscrowState:
    if not isinstance(data, dict):
        raise EscrowError(ErrorCode.INVALID_FORMAT, "escrow state must be an object")

    try:
        lifecycle = LifecycleState(data.get("lifecycle_state", LifecycleState.AWAITING_DEPOSIT.value))
    except ValueError as exc:
        raise EscrowError(ErrorCode.INVALID_FORMAT, "unknown lifecycle_state") from exc

    raw_approvals = data.get("approvals", {})
    if not isinstance(raw_approvals, dict):
        raise EscrowError(ErrorCode.INVALID_FORMAT, "approvals must be an object")
    approvals = {p: bool(raw_approvals.get(p.value, False)) for p in Party}

    return EscrowState(
        buyer=hex_to_address(data.get("buyer"), "buyer"),
        seller=hex_to_address(data.get("seller"), "seller"),
        mediator=hex_to_address(data.get("mediator"), "mediator"),
        deadline=_int_field(data, "deadline"),
        lifecycle_state=lifecycle,
        deposited_amount=_int_field(data, "deposited_amount", 0),
        approvals=approvals,
        approval_count=_int_field(data, "approval_count", 0),
    )


def event_to_json(event: EscrowEvent) -> dict[str, Any]:
    out: dict[str, Any] = {"kind": event.kind.value}
    if event.kind == EventKind.DEPOSITED:
        out.update({"caller": _bytes_to_hex(event.subject), "value": event.value})
    elif event.kind == EventKind.APPROVED:
        out.update({"caller": _bytes_to_hex(event.subject), "approval_count": event.value})
    else:
        out.update({"to": _bytes_to_hex(event.subject), "amount": event.value})
    return out
