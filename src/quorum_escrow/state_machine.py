"""Escrow state machine.

Lifecycle: AWAITING_DEPOSIT -> AWAITING_APPROVALS -> RELEASED | REFUNDED.

Every mutating operation follows the same shape: verify against the committed
record, build the next record on a deep copy, move funds through the custody
collaborator, then commit by swapping the record in one assignment. A failure
anywhere before the swap leaves the committed record untouched.

The one deliberate exception is a failed release payout: the approval that
reached the quorum stays recorded (and is committed) while the instance stays
in AWAITING_APPROVALS, and the call raises TRANSFER_FAILED. A later approval
from the remaining party re-attempts the payout, and the buyer's refund after
the deadline stays available.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from copy import deepcopy
from typing import Callable, Iterator, Optional

from .collaborators import Clock, Custody, EventSink, SystemClock
from .config import (
    ADDRESS_LEN,
    MAX_AMOUNT,
    MAX_DEADLINE,
    PARTY_COUNT,
    RELEASE_QUORUM,
    ZERO_ADDRESS,
    EscrowConfig,
)
from .errors import ErrorCode, EscrowError
from .types import (
    ALLOWED_TRANSITIONS,
    EscrowEvent,
    EscrowState,
    EventKind,
    LifecycleState,
    Party,
)

logger = logging.getLogger(__name__)


def _short(address: bytes) -> str:
    return address.hex()[:12]


# --- validation helpers ---

def _verify_party(name: str, address: object) -> None:
    if not isinstance(address, bytes) or len(address) != ADDRESS_LEN:
        raise EscrowError(ErrorCode.INVALID_PARTY, f"{name} must be a {ADDRESS_LEN}-byte address")
    if address == ZERO_ADDRESS:
        raise EscrowError(ErrorCode.INVALID_PARTY, f"{name} must not be the zero address")


def verify_create(
    buyer: bytes,
    seller: bytes,
    mediator: bytes,
    deadline: int,
    now: int,
    require_distinct: bool = True,
) -> None:
    _verify_party("buyer", buyer)
    _verify_party("seller", seller)
    _verify_party("mediator", mediator)
    if require_distinct and len({buyer, seller, mediator}) != PARTY_COUNT:
        raise EscrowError(ErrorCode.INVALID_PARTY, "buyer, seller and mediator must be distinct")

    if isinstance(deadline, bool) or not isinstance(deadline, int):
        raise EscrowError(ErrorCode.INVALID_DEADLINE, "deadline must be an integer timestamp")
    if not 0 <= deadline <= MAX_DEADLINE:
        raise EscrowError(ErrorCode.INVALID_DEADLINE, "deadline out of range")
    if deadline <= now:
        raise EscrowError(ErrorCode.INVALID_DEADLINE, "deadline must be in the future")


def check_invariants(state: EscrowState) -> None:
    """Raise INVALID_FORMAT if `state` is not a record the machine can reach."""
    if not 0 <= state.deposited_amount <= MAX_AMOUNT:
        raise EscrowError(ErrorCode.INVALID_FORMAT, "deposited_amount out of range")
    if not 0 <= state.deadline <= MAX_DEADLINE:
        raise EscrowError(ErrorCode.INVALID_FORMAT, "deadline out of range")
    holding = state.lifecycle_state == LifecycleState.AWAITING_APPROVALS
    if holding != (state.deposited_amount > 0):
        raise EscrowError(
            ErrorCode.INVALID_FORMAT,
            "deposited_amount must be positive exactly while awaiting approvals",
        )

    if set(state.approvals) != set(Party):
        raise EscrowError(ErrorCode.INVALID_FORMAT, "approval set must cover every party")
    recorded = sum(1 for v in state.approvals.values() if v)
    if recorded != state.approval_count:
        raise EscrowError(ErrorCode.INVALID_FORMAT, "approval_count disagrees with approval set")

    if state.lifecycle_state == LifecycleState.AWAITING_DEPOSIT and state.approval_count:
        raise EscrowError(ErrorCode.INVALID_FORMAT, "approvals recorded before deposit")
    if state.lifecycle_state == LifecycleState.RELEASED and state.approval_count < RELEASE_QUORUM:
        raise EscrowError(ErrorCode.INVALID_FORMAT, "released without approval quorum")


def _transition(state: EscrowState, target: LifecycleState) -> None:
    if target not in ALLOWED_TRANSITIONS[state.lifecycle_state]:
        raise EscrowError(
            ErrorCode.INTERNAL_ERROR,
            f"illegal transition {state.lifecycle_state.value} -> {target.value}",
        )
    state.lifecycle_state = target


class EscrowStateMachine:
    """A single 2-of-3 escrow instance.

    Calls are serialized per instance. A mutating call made while another one
    is in flight on the same thread (a payee calling back from inside a
    payout) fails with REENTRANT_CALL instead of interleaving.
    """

    def __init__(
        self,
        state: EscrowState,
        custody: Custody,
        clock: Optional[Clock] = None,
        events: Optional[EventSink] = None,
    ):
        self._state = state
        self.custody = custody
        self.clock = clock if clock is not None else SystemClock()
        self.events = events
        self._lock = threading.RLock()
        self._in_flight: Optional[str] = None

    @classmethod
    def create(
        cls,
        buyer: bytes,
        seller: bytes,
        mediator: bytes,
        deadline: int,
        now: Optional[int] = None,
        *,
        custody: Custody,
        clock: Optional[Clock] = None,
        events: Optional[EventSink] = None,
        config: Optional[EscrowConfig] = None,
    ) -> "EscrowStateMachine":
        clock = clock if clock is not None else SystemClock()
        config = config if config is not None else EscrowConfig()
        if now is None:
            now = clock.now()

        verify_create(buyer, seller, mediator, deadline, now, config.require_distinct_parties)
        state = EscrowState(buyer=buyer, seller=seller, mediator=mediator, deadline=deadline)
        logger.info(
            "escrow created buyer=%s seller=%s mediator=%s deadline=%d",
            _short(buyer), _short(seller), _short(mediator), deadline,
        )
        return cls(state, custody, clock=clock, events=events)

    @classmethod
    def restore(
        cls,
        state: EscrowState,
        *,
        custody: Custody,
        clock: Optional[Clock] = None,
        events: Optional[EventSink] = None,
    ) -> "EscrowStateMachine":
        """Rebuild an instance from a persisted record."""
        for party in Party:
            _verify_party(party.value, state.address_of(party))
        check_invariants(state)
        return cls(deepcopy(state), custody, clock=clock, events=events)

    # --- queries ---

    def current_state(self) -> LifecycleState:
        return self._state.lifecycle_state

    def approvals_remaining(self) -> int:
        return max(0, RELEASE_QUORUM - self._state.approval_count)

    def has_approved(self, address: bytes) -> bool:
        party = self._state.party_of(address)
        return party is not None and self._state.approvals[party]

    def snapshot(self) -> EscrowState:
        with self._lock:
            return deepcopy(self._state)

    @property
    def deposited_amount(self) -> int:
        return self._state.deposited_amount

    @property
    def approval_count(self) -> int:
        return self._state.approval_count

    @property
    def deadline(self) -> int:
        return self._state.deadline

    # --- mutating operations ---

    def deposit(self, caller: bytes, value: int, now: Optional[int] = None) -> None:
        with self._mutating("deposit"):
            state = self._state
            if state.lifecycle_state != LifecycleState.AWAITING_DEPOSIT:
                raise EscrowError(ErrorCode.WRONG_STATE, "escrow not awaiting deposit")
            if caller != state.buyer:
                raise EscrowError(ErrorCode.UNAUTHORIZED, "only the buyer may deposit")
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise EscrowError(ErrorCode.ZERO_VALUE, "deposit value must be > 0")
            if value > MAX_AMOUNT:
                raise EscrowError(ErrorCode.ZERO_VALUE, "deposit value exceeds the maximum amount")

            working = deepcopy(state)
            working.deposited_amount = value
            _transition(working, LifecycleState.AWAITING_APPROVALS)

            self._move(self.custody.receive, caller, value, "deposit could not be taken into custody")

            self._commit(working, "deposit")
            self._emit(EventKind.DEPOSITED, caller, value)

    def approve_release(self, caller: bytes, now: Optional[int] = None) -> None:
        # `now` is accepted for a uniform call shape; approvals ignore the deadline.
        with self._mutating("approve_release"):
            state = self._state
            if state.lifecycle_state != LifecycleState.AWAITING_APPROVALS:
                raise EscrowError(ErrorCode.WRONG_STATE, "escrow not awaiting approvals")
            party = state.party_of(caller)
            if party is None:
                raise EscrowError(ErrorCode.UNAUTHORIZED, "caller is not a party to this escrow")
            if state.approvals[party]:
                raise EscrowError(ErrorCode.ALREADY_APPROVED, f"{party.value} already approved")

            working = deepcopy(state)
            working.approvals[party] = True
            working.approval_count += 1

            if working.approval_count < RELEASE_QUORUM:
                self._commit(working, "approve_release")
                self._emit(EventKind.APPROVED, caller, working.approval_count)
                return

            self._release(working, caller)

    def refund_if_deadline_passed(self, caller: bytes, now: Optional[int] = None) -> None:
        with self._mutating("refund_if_deadline_passed"):
            state = self._state
            if now is None:
                now = self.clock.now()
            if state.lifecycle_state != LifecycleState.AWAITING_APPROVALS:
                raise EscrowError(ErrorCode.WRONG_STATE, "escrow not awaiting approvals")
            if now <= state.deadline:
                raise EscrowError(ErrorCode.DEADLINE_NOT_PASSED, "deadline has not passed")
            if caller != state.buyer:
                raise EscrowError(ErrorCode.UNAUTHORIZED, "only the buyer may request a refund")

            amount = state.deposited_amount
            working = deepcopy(state)
            _transition(working, LifecycleState.REFUNDED)
            working.deposited_amount = 0

            try:
                self._move(self.custody.transfer, state.buyer, amount, "refund transfer to buyer failed")
            except EscrowError:
                logger.warning("refund of %d to buyer %s failed", amount, _short(state.buyer))
                raise

            self._commit(working, "refund")
            self._emit(EventKind.REFUNDED, state.buyer, amount)

    # --- internals ---

    def _release(self, approved: EscrowState, caller: bytes) -> None:
        """Pay the seller once `approved` has reached the quorum.

        Only called from approve_release while its guard is held.
        """
        amount = approved.deposited_amount
        released = deepcopy(approved)
        _transition(released, LifecycleState.RELEASED)
        released.deposited_amount = 0

        try:
            self._move(self.custody.transfer, approved.seller, amount, "release transfer to seller failed")
        except EscrowError:
            self._commit(approved, "approve_release")
            self._emit(EventKind.APPROVED, caller, approved.approval_count)
            logger.warning(
                "release of %d to seller %s failed; approval %d/%d kept",
                amount, _short(approved.seller), approved.approval_count, PARTY_COUNT,
            )
            raise

        self._commit(released, "release")
        self._emit(EventKind.APPROVED, caller, released.approval_count)
        self._emit(EventKind.RELEASED, released.seller, amount)

    @contextmanager
    def _mutating(self, op: str) -> Iterator[None]:
        with self._lock:
            if self._in_flight is not None:
                raise EscrowError(
                    ErrorCode.REENTRANT_CALL, f"{op} called while {self._in_flight} is in progress"
                )
            self._in_flight = op
            try:
                yield
            except EscrowError as exc:
                logger.debug("%s rejected: %s", op, exc)
                raise
            finally:
                self._in_flight = None

    @staticmethod
    def _move(fn: Callable[[bytes, int], bool], address: bytes, amount: int, message: str) -> None:
        try:
            ok = fn(address, amount)
        except Exception as exc:
            raise EscrowError(ErrorCode.TRANSFER_FAILED, f"{message}: {exc}") from exc
        if not ok:
            raise EscrowError(ErrorCode.TRANSFER_FAILED, message)

    def _commit(self, working: EscrowState, op: str) -> None:
        self._state = working
        logger.info(
            "%s committed: state=%s deposited=%d approvals=%d",
            op, working.lifecycle_state.value, working.deposited_amount, working.approval_count,
        )

    def _emit(self, kind: EventKind, subject: bytes, value: int) -> None:
        if self.events is not None:
            self.events.emit(EscrowEvent(kind=kind, subject=subject, value=value))
