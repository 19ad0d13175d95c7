"""Escrow constants and runtime configuration.

Protocol constants are fixed for every instance. `EscrowConfig` carries the
host-level settings that may be supplied through YAML or the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ErrorCode, EscrowError

# Parties / quorum
PARTY_COUNT = 3
RELEASE_QUORUM = 2

# Identities
ADDRESS_LEN = 32
ZERO_ADDRESS = bytes(ADDRESS_LEN)

# Amounts and timestamps are encoded as u64 in digests and instance ids
U64_MAX = 2**64 - 1
MAX_AMOUNT = U64_MAX
MAX_DEADLINE = U64_MAX

# Environment
ENV_PREFIX = "QUORUM_ESCROW_"

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off"})


def _parse_bool(name: str, value: str) -> bool:
    v = value.strip().lower()
    if v in _TRUE_STRINGS:
        return True
    if v in _FALSE_STRINGS:
        return False
    raise EscrowError(ErrorCode.INVALID_FORMAT, f"{name}: expected boolean, got {value!r}")


@dataclass
class EscrowConfig:
    """Host configuration for escrow instances and their HTTP surface."""

    # Reject buyer/seller/mediator sharing an identity.
    require_distinct_parties: bool = True
    log_level: str = "INFO"

    # HTTP host
    host: str = "127.0.0.1"
    port: int = 8080
    # Expose POST /ledger/{address}/credit (unauthenticated; dev and test hosts only).
    ledger_credit: bool = False

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "EscrowConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise EscrowError(ErrorCode.INVALID_FORMAT, f"unknown config keys: {', '.join(unknown)}")
        config = cls(**data)
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: str | Path) -> "EscrowConfig":
        """Load configuration from a YAML mapping (missing keys keep defaults)."""
        raw = yaml.safe_load(Path(path).read_text()) or {}
        if not isinstance(raw, dict):
            raise EscrowError(ErrorCode.INVALID_FORMAT, "config document must be a mapping")
        return cls.from_mapping(raw)

    @classmethod
    def from_env(cls, base: "EscrowConfig | None" = None) -> "EscrowConfig":
        """Load configuration from environment variables over `base`."""
        config = base if base is not None else cls()
        env = os.environ

        distinct = env.get(f"{ENV_PREFIX}REQUIRE_DISTINCT_PARTIES")
        if distinct is not None:
            config.require_distinct_parties = _parse_bool("REQUIRE_DISTINCT_PARTIES", distinct)

        credit = env.get(f"{ENV_PREFIX}LEDGER_CREDIT")
        if credit is not None:
            config.ledger_credit = _parse_bool("LEDGER_CREDIT", credit)

        config.log_level = env.get(f"{ENV_PREFIX}LOG_LEVEL", config.log_level)
        config.host = env.get(f"{ENV_PREFIX}HOST", config.host)

        port = env.get(f"{ENV_PREFIX}PORT")
        if port is not None:
            try:
                config.port = int(port)
            except ValueError as exc:
                raise EscrowError(ErrorCode.INVALID_FORMAT, f"PORT: expected integer, got {port!r}") from exc

        config.validate()
        return config

    def validate(self) -> None:
        if not isinstance(self.require_distinct_parties, bool):
            raise EscrowError(ErrorCode.INVALID_FORMAT, "require_distinct_parties must be a boolean")
        if not isinstance(self.ledger_credit, bool):
            raise EscrowError(ErrorCode.INVALID_FORMAT, "ledger_credit must be a boolean")
        if not isinstance(self.port, int) or not 0 <= self.port <= 65535:
            raise EscrowError(ErrorCode.INVALID_FORMAT, "port out of range")
        self.log_level = str(self.log_level).upper()
