"""Replay scripted scenarios against a fresh escrow instance.

A scenario document is a mapping::

    start: 1000              # clock start (default 0)
    deadline: 2000
    parties: {buyer: buyer, seller: seller, mediator: mediator}
    balances: {buyer: 500}   # opening ledger balances
    failing: [seller]        # destinations whose payouts fail
    steps:
      - {op: deposit, caller: buyer, value: 100}
      - {op: approve, caller: seller}
      - {op: advance, seconds: 1001}
      - {op: refund, caller: buyer}

Names are resolved with `accounts.resolve_address`; a 64-character hex string
is taken as a raw address. Step failures are recorded, not raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .accounts import NAME_MAP, resolve_address
from .codec import event_to_json, state_to_json
from .collaborators import InMemoryLedger, ListEventSink, ManualClock
from .config import EscrowConfig
from .errors import ErrorCode, EscrowError
from .state_digest import compute_state_digest
from .state_machine import EscrowStateMachine

logger = logging.getLogger(__name__)


class TransitionResult:
    """Thin wrapper for operation results."""

    def __init__(self, ok: bool, error: Optional[EscrowError] = None):
        self.ok = ok
        self.error = error

    @classmethod
    def success(cls) -> "TransitionResult":
        return cls(True, None)

    @classmethod
    def failure(cls, error: EscrowError) -> "TransitionResult":
        return cls(False, error)

    def to_json(self) -> dict[str, Any]:
        return {"ok": self.ok, "error": self.error.code.name if self.error else None}


@dataclass
class StepOutcome:
    index: int
    op: str
    result: TransitionResult
    now: int

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {"index": self.index, "op": self.op, "now": self.now}
        out.update(self.result.to_json())
        return out


@dataclass
class ScenarioReport:
    steps: list[StepOutcome] = field(default_factory=list)
    events: list[dict[str, Any]] = field(default_factory=list)
    balances: dict[str, int] = field(default_factory=dict)
    custody: int = 0
    final_state: Optional[dict[str, Any]] = None
    digest: Optional[str] = None
    create_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.create_error is None and all(s.result.ok for s in self.steps)

    def to_json(self) -> dict[str, Any]:
        return {
            "create_error": self.create_error,
            "steps": [s.to_json() for s in self.steps],
            "events": self.events,
            "balances": self.balances,
            "custody": self.custody,
            "final_state": self.final_state,
            "digest": self.digest,
        }


def _label(address: bytes) -> str:
    return NAME_MAP.get(address, address.hex())


def _require(data: dict[str, Any], key: str, where: str = "step") -> Any:
    if key not in data:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{where} missing {key!r}")
    return data[key]


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{what} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{what} must be an integer, got {value!r}") from exc


def _dispatch_step(
    machine: EscrowStateMachine,
    ledger: InMemoryLedger,
    clock: ManualClock,
    step: dict[str, Any],
) -> None:
    op = step.get("op")
    now = step.get("now")
    if now is not None:
        now = _as_int(now, "step now")
    if op == "deposit":
        machine.deposit(resolve_address(_require(step, "caller")), _require(step, "value"), now)
    elif op == "approve":
        machine.approve_release(resolve_address(_require(step, "caller")), now)
    elif op == "refund":
        machine.refund_if_deadline_passed(resolve_address(_require(step, "caller")), now)
    elif op == "advance":
        clock.advance(_as_int(_require(step, "seconds"), "advance seconds"))
    elif op == "set_time":
        clock.set(_as_int(_require(step, "at"), "set_time at"))
    elif op == "fail_transfers":
        ledger.failing.add(resolve_address(_require(step, "to")))
    elif op == "restore_transfers":
        ledger.failing.discard(resolve_address(_require(step, "to")))
    else:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"unknown scenario op {op!r}")


def run_scenario(document: dict[str, Any], config: Optional[EscrowConfig] = None) -> ScenarioReport:
    if not isinstance(document, dict):
        raise EscrowError(ErrorCode.INVALID_FORMAT, "scenario must be a mapping")
    steps = document.get("steps", [])
    if not isinstance(steps, list):
        raise EscrowError(ErrorCode.INVALID_FORMAT, "steps must be a list")

    parties = document.get("parties") or {}
    balances = document.get("balances") or {}
    if not isinstance(parties, dict) or not isinstance(balances, dict):
        raise EscrowError(ErrorCode.INVALID_FORMAT, "parties and balances must be mappings")
    clock = ManualClock(_as_int(document.get("start", 0), "start"))
    ledger = InMemoryLedger({resolve_address(k): _as_int(v, f"balance of {k}") for k, v in balances.items()})
    failing = document.get("failing") or []
    if not isinstance(failing, list):
        raise EscrowError(ErrorCode.INVALID_FORMAT, "failing must be a list")
    for name in failing:
        ledger.failing.add(resolve_address(name))
    sink = ListEventSink()
    report = ScenarioReport()
    deadline = _as_int(_require(document, "deadline", "scenario"), "deadline")
    buyer, seller, mediator = (resolve_address(parties.get(role, role)) for role in ("buyer", "seller", "mediator"))

    try:
        machine = EscrowStateMachine.create(
            buyer,
            seller,
            mediator,
            deadline,
            custody=ledger,
            clock=clock,
            events=sink,
            config=config,
        )
    except EscrowError as exc:
        report.create_error = exc.code.name
        return report

    for index, step in enumerate(steps):
        if not isinstance(step, dict):
            raise EscrowError(ErrorCode.INVALID_FORMAT, f"step {index} must be a mapping")
        try:
            _dispatch_step(machine, ledger, clock, step)
            result = TransitionResult.success()
        except EscrowError as exc:
            if exc.code == ErrorCode.INVALID_FORMAT:
                raise
            result = TransitionResult.failure(exc)
        logger.debug("step %d %s -> %s", index, step.get("op"), result.to_json())
        report.steps.append(StepOutcome(index=index, op=str(step.get("op")), result=result, now=clock.now()))

    report.events = [event_to_json(e) for e in sink.events]
    report.balances = {_label(addr): amount for addr, amount in ledger.balances.items()}
    report.custody = ledger.custody
    report.final_state = state_to_json(machine.snapshot())
    report.digest = compute_state_digest(report.final_state)
    return report
