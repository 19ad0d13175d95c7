"""Core types for the quorum escrow.

One escrow instance holds a single deposit on behalf of three parties and
pays it out once, either to the seller on a 2-of-3 approval quorum or back to
the buyer after the deadline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .config import ZERO_ADDRESS


class LifecycleState(Enum):
    AWAITING_DEPOSIT = "awaiting_deposit"
    AWAITING_APPROVALS = "awaiting_approvals"
    RELEASED = "released"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (LifecycleState.RELEASED, LifecycleState.REFUNDED)


# Legal edges of the lifecycle; terminal states have none.
ALLOWED_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.AWAITING_DEPOSIT: frozenset({LifecycleState.AWAITING_APPROVALS}),
    LifecycleState.AWAITING_APPROVALS: frozenset({LifecycleState.RELEASED, LifecycleState.REFUNDED}),
    LifecycleState.RELEASED: frozenset(),
    LifecycleState.REFUNDED: frozenset(),
}


class Party(Enum):
    BUYER = "buyer"
    SELLER = "seller"
    MEDIATOR = "mediator"


class EventKind(Enum):
    DEPOSITED = "deposited"
    APPROVED = "approved"
    RELEASED = "released"
    REFUNDED = "refunded"


@dataclass(frozen=True)
class EscrowEvent:
    """Notification emitted after a committed transition.

    `subject` is the caller for DEPOSITED/APPROVED and the payee for
    RELEASED/REFUNDED. `value` is the deposited or transferred amount, or the
    new approval count for APPROVED.
    """

    kind: EventKind
    subject: bytes
    value: int


@dataclass
class EscrowState:
    buyer: bytes
    seller: bytes
    mediator: bytes
    deadline: int
    lifecycle_state: LifecycleState = LifecycleState.AWAITING_DEPOSIT
    deposited_amount: int = 0
    approvals: dict[Party, bool] = field(
        default_factory=lambda: {p: False for p in Party}
    )
    approval_count: int = 0

    def address_of(self, party: Party) -> bytes:
        if party == Party.BUYER:
            return self.buyer
        if party == Party.SELLER:
            return self.seller
        return self.mediator

    def party_of(self, address: bytes) -> Optional[Party]:
        """Resolve a caller address to its party role.

        When identities are shared (permissive configuration) the first
        matching role in buyer, seller, mediator order wins.
        """
        if address == ZERO_ADDRESS:
            return None
        for party in Party:
            if self.address_of(party) == address:
                return party
        return None
