"""Registry of independent escrow instances keyed by instance id."""

from __future__ import annotations

import logging
import threading
from typing import Iterator, Optional

from blake3 import blake3

from .collaborators import Clock, Custody, EventSink, FanoutEventSink, ListEventSink, SystemClock
from .config import EscrowConfig
from .errors import ErrorCode, EscrowError
from .state_machine import EscrowStateMachine
from .types import EscrowEvent

logger = logging.getLogger(__name__)


def escrow_id_for(buyer: bytes, seller: bytes, mediator: bytes, deadline: int, nonce: int) -> bytes:
    buf = bytearray()
    buf += buyer
    buf += seller
    buf += mediator
    buf += deadline.to_bytes(8, "big")
    buf += nonce.to_bytes(8, "big")
    return blake3(bytes(buf)).digest()


class EscrowRegistry:
    """Creates escrows against a shared custody and clock and looks them up.

    Each instance keeps its own event history; `events` (if given) also sees
    every event of every instance.
    """

    def __init__(
        self,
        custody: Custody,
        clock: Optional[Clock] = None,
        events: Optional[EventSink] = None,
        config: Optional[EscrowConfig] = None,
    ):
        self.custody = custody
        self.clock = clock if clock is not None else SystemClock()
        self.events = events
        self.config = config if config is not None else EscrowConfig()
        self._instances: dict[bytes, EscrowStateMachine] = {}
        self._history: dict[bytes, ListEventSink] = {}
        self._nonce = 0
        self._lock = threading.Lock()

    def create(
        self,
        buyer: bytes,
        seller: bytes,
        mediator: bytes,
        deadline: int,
        now: Optional[int] = None,
    ) -> tuple[bytes, EscrowStateMachine]:
        history = ListEventSink()
        sink: EventSink = history
        if self.events is not None:
            sink = FanoutEventSink([history, self.events])

        machine = EscrowStateMachine.create(
            buyer, seller, mediator, deadline, now,
            custody=self.custody, clock=self.clock, events=sink, config=self.config,
        )
        with self._lock:
            escrow_id = escrow_id_for(buyer, seller, mediator, deadline, self._nonce)
            self._nonce += 1
            self._instances[escrow_id] = machine
            self._history[escrow_id] = history
        logger.info("registered escrow %s", escrow_id.hex())
        return escrow_id, machine

    def get(self, escrow_id: bytes) -> EscrowStateMachine:
        machine = self._instances.get(escrow_id)
        if machine is None:
            raise EscrowError(ErrorCode.INSTANCE_NOT_FOUND, f"no escrow {escrow_id.hex()}")
        return machine

    def events_for(self, escrow_id: bytes) -> list[EscrowEvent]:
        self.get(escrow_id)
        return list(self._history[escrow_id].events)

    def ids(self) -> list[bytes]:
        return list(self._instances)

    def __contains__(self, escrow_id: object) -> bool:
        return escrow_id in self._instances

    def __len__(self) -> int:
        return len(self._instances)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.ids())
