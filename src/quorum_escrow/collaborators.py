"""Narrow interfaces the escrow consumes, with in-process implementations."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Protocol

from .types import EscrowEvent

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> int: ...


class Custody(Protocol):
    """Moves value into and out of the escrow's custody.

    Both calls report failure by returning False and must not move a partial
    amount.
    """

    def receive(self, source: bytes, amount: int) -> bool: ...

    def transfer(self, destination: bytes, amount: int) -> bool: ...


class EventSink(Protocol):
    def emit(self, event: EscrowEvent) -> None: ...


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock whose time only moves when told to."""

    def __init__(self, start: int = 0):
        self.current = start

    def now(self) -> int:
        return self.current

    def advance(self, seconds: int) -> int:
        self.current += seconds
        return self.current

    def set(self, timestamp: int) -> None:
        self.current = timestamp


class InMemoryLedger:
    """Balance table plus a custody account holding escrowed value.

    Destinations listed in `failing` reject incoming transfers, which lets
    hosts and tests exercise the payout failure path. `on_transfer` callbacks
    play the payee's side of a payout with (destination, amount); if one
    raises, the payout is undone and reported as failed.
    """

    def __init__(self, balances: dict[bytes, int] | None = None):
        self.balances: dict[bytes, int] = dict(balances or {})
        self.custody = 0
        self.failing: set[bytes] = set()
        self.on_transfer: list[Callable[[bytes, int], None]] = []

    def balance_of(self, address: bytes) -> int:
        return self.balances.get(address, 0)

    def credit(self, address: bytes, amount: int) -> None:
        self.balances[address] = self.balance_of(address) + amount

    def receive(self, source: bytes, amount: int) -> bool:
        if amount <= 0 or self.balance_of(source) < amount:
            logger.debug("custody receive rejected: %s amount=%d", source.hex(), amount)
            return False
        self.balances[source] -= amount
        self.custody += amount
        return True

    def transfer(self, destination: bytes, amount: int) -> bool:
        if destination in self.failing or amount > self.custody:
            logger.debug("custody transfer rejected: %s amount=%d", destination.hex(), amount)
            return False
        self.custody -= amount
        self.credit(destination, amount)
        try:
            for callback in list(self.on_transfer):
                callback(destination, amount)
        except Exception:
            # Payee rejected the payment: undo it and report failure.
            logger.warning("payee %s rejected transfer of %d", destination.hex(), amount, exc_info=True)
            self.balances[destination] -= amount
            self.custody += amount
            return False
        return True


class ListEventSink:
    def __init__(self) -> None:
        self.events: list[EscrowEvent] = []

    def emit(self, event: EscrowEvent) -> None:
        self.events.append(event)


class LoggingEventSink:
    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def emit(self, event: EscrowEvent) -> None:
        self.log.info("event %s subject=%s value=%d", event.kind.value, event.subject.hex(), event.value)


class FanoutEventSink:
    """Forward each event to several sinks in order."""

    def __init__(self, sinks: Iterable[EventSink]):
        self.sinks = list(sinks)

    def emit(self, event: EscrowEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)
