"""Deposit cases."""

from __future__ import annotations

import pytest

from quorum_escrow.accounts import BUYER, MEDIATOR, OUTSIDER, SELLER
from quorum_escrow.collaborators import InMemoryLedger, ListEventSink
from quorum_escrow.config import MAX_AMOUNT
from quorum_escrow.errors import ErrorCode, EscrowError
from quorum_escrow.state_machine import EscrowStateMachine
from quorum_escrow.types import EscrowEvent, EventKind, LifecycleState

from conftest import OPENING_BALANCE


def test_deposit_success(escrow: EscrowStateMachine, ledger: InMemoryLedger, sink: ListEventSink) -> None:
    escrow.deposit(BUYER, 100)

    assert escrow.current_state() == LifecycleState.AWAITING_APPROVALS
    assert escrow.deposited_amount == 100
    assert ledger.custody == 100
    assert ledger.balance_of(BUYER) == OPENING_BALANCE - 100
    assert sink.events == [EscrowEvent(EventKind.DEPOSITED, BUYER, 100)]


def test_deposit_twice_wrong_state(funded: EscrowStateMachine, ledger: InMemoryLedger) -> None:
    with pytest.raises(EscrowError) as exc:
        funded.deposit(BUYER, 50)
    assert exc.value.code == ErrorCode.WRONG_STATE
    assert funded.deposited_amount == 100
    assert ledger.custody == 100


@pytest.mark.parametrize("caller", [SELLER, MEDIATOR, OUTSIDER])
def test_deposit_non_buyer_unauthorized(escrow: EscrowStateMachine, caller: bytes) -> None:
    with pytest.raises(EscrowError) as exc:
        escrow.deposit(caller, 100)
    assert exc.value.code == ErrorCode.UNAUTHORIZED
    assert escrow.current_state() == LifecycleState.AWAITING_DEPOSIT


@pytest.mark.parametrize("value", [0, -5])
def test_deposit_zero_value(escrow: EscrowStateMachine, sink: ListEventSink, value: int) -> None:
    with pytest.raises(EscrowError) as exc:
        escrow.deposit(BUYER, value)
    assert exc.value.code == ErrorCode.ZERO_VALUE
    assert escrow.deposited_amount == 0
    assert sink.events == []


def test_deposit_unauthorized_checked_before_value(escrow: EscrowStateMachine) -> None:
    with pytest.raises(EscrowError) as exc:
        escrow.deposit(SELLER, 0)
    assert exc.value.code == ErrorCode.UNAUTHORIZED


def test_deposit_custody_refusal_leaves_state(escrow: EscrowStateMachine, ledger: InMemoryLedger,
                                              sink: ListEventSink) -> None:
    with pytest.raises(EscrowError) as exc:
        escrow.deposit(BUYER, OPENING_BALANCE + 1)
    assert exc.value.code == ErrorCode.TRANSFER_FAILED
    assert escrow.current_state() == LifecycleState.AWAITING_DEPOSIT
    assert escrow.deposited_amount == 0
    assert ledger.custody == 0
    assert sink.events == []


def test_deposit_custody_exception_is_transfer_failed(clock) -> None:
    class BrokenCustody:
        def receive(self, source: bytes, amount: int) -> bool:
            raise ConnectionError("ledger unreachable")

        def transfer(self, destination: bytes, amount: int) -> bool:
            return False

    machine = EscrowStateMachine.create(BUYER, SELLER, MEDIATOR, 2_000, custody=BrokenCustody(), clock=clock)
    with pytest.raises(EscrowError) as exc:
        machine.deposit(BUYER, 10)
    assert exc.value.code == ErrorCode.TRANSFER_FAILED
    assert isinstance(exc.value.__cause__, ConnectionError)
    assert machine.current_state() == LifecycleState.AWAITING_DEPOSIT


def test_deposit_after_deadline_allowed(escrow: EscrowStateMachine, clock) -> None:
    clock.advance(10_000)
    escrow.deposit(BUYER, 1)
    assert escrow.current_state() == LifecycleState.AWAITING_APPROVALS


def test_deposit_above_max_amount(escrow: EscrowStateMachine, ledger: InMemoryLedger, sink: ListEventSink) -> None:
    ledger.credit(BUYER, MAX_AMOUNT)
    with pytest.raises(EscrowError) as exc:
        escrow.deposit(BUYER, MAX_AMOUNT + 1)
    assert exc.value.code == ErrorCode.ZERO_VALUE
    assert escrow.current_state() == LifecycleState.AWAITING_DEPOSIT
    assert ledger.custody == 0
    assert sink.events == []


def test_deposit_max_amount_accepted(escrow: EscrowStateMachine, ledger: InMemoryLedger) -> None:
    ledger.credit(BUYER, MAX_AMOUNT)
    escrow.deposit(BUYER, MAX_AMOUNT)
    assert escrow.deposited_amount == MAX_AMOUNT
    assert ledger.custody == MAX_AMOUNT
