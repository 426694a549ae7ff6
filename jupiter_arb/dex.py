"""
Venue filter for quote requests.

The quoting service accepts a comma-separated `dexes` parameter; a VenueSet
is an immutable set of Venue members that renders to that value.
"""
from enum import Enum
from typing import FrozenSet, Iterable


class Venue(Enum):
    RAYDIUM = "Raydium"
    METEORA_DLMM = "Meteora DLMM"
    METEORA = "Meteora"
    WHIRLPOOL = "Whirlpool"
    PHOENIX = "Phoenix"


# Canonical ordering for the query parameter
_ORDER = [Venue.RAYDIUM, Venue.METEORA_DLMM, Venue.METEORA, Venue.WHIRLPOOL, Venue.PHOENIX]


class VenueSet:
    """Immutable set of venues with union / exclude operations."""

    ALL: "VenueSet"

    def __init__(self, venues: Iterable[Venue] = ()):
        self._venues: FrozenSet[Venue] = frozenset(venues)

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "VenueSet":
        """Build from venue display names; unknown names are ignored."""
        by_name = {v.value: v for v in Venue}
        return cls(by_name[n] for n in names if n in by_name)

    @property
    def venues(self) -> FrozenSet[Venue]:
        return self._venues

    def union(self, other: "VenueSet") -> "VenueSet":
        return VenueSet(self._venues | other._venues)

    def exclude(self, other: "VenueSet") -> "VenueSet":
        return VenueSet(self._venues - other._venues)

    def __or__(self, other: "VenueSet") -> "VenueSet":
        return self.union(other)

    def __contains__(self, venue: Venue) -> bool:
        return venue in self._venues

    def __len__(self) -> int:
        return len(self._venues)

    def __iter__(self):
        return (v for v in _ORDER if v in self._venues)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VenueSet):
            return NotImplemented
        return self._venues == other._venues

    def __hash__(self) -> int:
        return hash(self._venues)

    def to_param(self) -> str:
        """Comma-joined names in canonical order, e.g. 'Raydium,Whirlpool'."""
        return ",".join(v.value for v in self)

    def __str__(self) -> str:
        return self.to_param()

    def __repr__(self) -> str:
        return f"VenueSet({self.to_param()!r})"


# Plain Meteora is intentionally not part of ALL
VenueSet.ALL = VenueSet([Venue.RAYDIUM, Venue.METEORA_DLMM, Venue.WHIRLPOOL, Venue.PHOENIX])
