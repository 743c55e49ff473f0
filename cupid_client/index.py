"""
Identity index built from registration events.

The index is rebuilt from scratch on every refresh; it never merges with a
previous build.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog

from .evm import ZERO_ADDRESS
from .scanner import RawEvent

logger = structlog.get_logger()

IDENTIFIER_PATTERN = re.compile(r"^@[a-zA-Z0-9_]+@cupid$")


def is_valid_identifier(identifier: str) -> bool:
    """Check the @name@cupid format."""
    return bool(IDENTIFIER_PATTERN.match(identifier or ""))


def is_unset_address(address: Optional[str]) -> bool:
    """True for empty or zero addresses."""
    return not address or address.lower() == ZERO_ADDRESS


@dataclass(frozen=True)
class Registration:
    """Latest known registration of an identifier."""

    id: str
    primary_address: str
    secondary_address: str
    block_number: int


@dataclass
class IdentityIndex:
    """
    Identifier -> latest Registration, plus address -> identifiers.

    Addresses in by_address are lower-cased.
    """

    by_id: dict[str, Registration] = field(default_factory=dict)
    by_address: dict[str, set[str]] = field(default_factory=dict)

    @classmethod
    def build(cls, events: Iterable[RawEvent]) -> "IdentityIndex":
        """
        Build an index from raw events.

        Events are applied in (block, log index) order so the last write is
        the highest block regardless of the order they arrived in. Identifiers
        whose latest registration carries a zero/empty address are treated as
        unregistered and left out.
        """
        latest: dict[str, Registration] = {}
        for event in sorted(events, key=lambda e: (e.block_number, e.log_index)):
            latest[event.id] = Registration(
                id=event.id,
                primary_address=event.primary_address,
                secondary_address=event.secondary_address,
                block_number=event.block_number,
            )

        by_id = {
            identifier: reg
            for identifier, reg in latest.items()
            if not is_unset_address(reg.primary_address)
            and not is_unset_address(reg.secondary_address)
        }

        by_address: dict[str, set[str]] = {}
        for identifier, reg in by_id.items():
            for address in (reg.primary_address, reg.secondary_address):
                by_address.setdefault(address.lower(), set()).add(identifier)

        logger.debug(
            "identity_index_built",
            identifiers=len(by_id),
            excluded=len(latest) - len(by_id),
        )
        return cls(by_id=by_id, by_address=by_address)

    def resolve(self, identifier: str) -> Optional[Registration]:
        """Registration for identifier, or None if not registered."""
        return self.by_id.get(identifier)

    def owned_by(self, address: str) -> set[str]:
        """Identifiers registered to address under either slot."""
        return set(self.by_address.get(address.lower(), set()))

    def registrations(self) -> list[Registration]:
        """All registrations, most recent block first."""
        return sorted(self.by_id.values(), key=lambda r: r.block_number, reverse=True)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self.by_id

    def __len__(self) -> int:
        return len(self.by_id)
