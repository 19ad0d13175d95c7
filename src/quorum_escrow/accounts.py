"""Deterministic named identities.

Addresses are derived from a name with BLAKE3, so scenarios and tests can
refer to parties by name and still get stable 32-byte identities.
"""

from __future__ import annotations

from blake3 import blake3

from .codec import hex_to_address
from .config import ADDRESS_LEN
from .errors import ErrorCode, EscrowError

_DOMAIN = b"quorum-escrow/account/"


def address_for(name: str) -> bytes:
    return blake3(_DOMAIN + name.strip().lower().encode("utf-8")).digest()


def resolve_address(value: str) -> bytes:
    """Accept either a hex address or a name."""
    if not isinstance(value, str) or not value:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"expected an account name or hex address, got {value!r}")
    s = value[2:] if value.startswith(("0x", "0X")) else value
    if len(s) == ADDRESS_LEN * 2:
        try:
            bytes.fromhex(s)
        except ValueError:
            return address_for(value)
        return hex_to_address(value)
    return address_for(value)


NAMES = ["Buyer", "Seller", "Mediator", "Outsider", "Alice", "Bob", "Carol"]

BUYER = address_for("buyer")
SELLER = address_for("seller")
MEDIATOR = address_for("mediator")
OUTSIDER = address_for("outsider")
ALICE = address_for("alice")
BOB = address_for("bob")
CAROL = address_for("carol")

NAME_MAP: dict[bytes, str] = {address_for(n): n.lower() for n in NAMES}
