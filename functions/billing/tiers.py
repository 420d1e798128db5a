"""
Tier catalog - static entitlement configuration keyed by tier id.

The catalog is immutable after construction and safe for unsynchronized
concurrent reads. Priority is the only basis for upgrade comparisons, so
every tier must carry a unique priority.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable

from shared.constants import FREE_TIER, TIER_CONFIG
from shared.errors import UnknownTierError


class Comparison(IntEnum):
    LESS = -1
    EQUAL = 0
    GREATER = 1


@dataclass(frozen=True)
class Tier:
    """One immutable catalog entry. Prices are in cents."""

    tier_id: str
    name: str
    price: int
    content_limit: int
    allowed_content_types: frozenset
    max_file_size: int
    priority: int
    has_lifetime_access: bool = False
    features: tuple = ()

    def allows(self, content_type: str) -> bool:
        return content_type in self.allowed_content_types


class TierCatalog:
    """Lookup table of tiers with priority comparisons."""

    def __init__(self, tiers: Iterable[Tier], free_tier_id: str = FREE_TIER):
        self._tiers = {}
        priorities = set()
        for tier in tiers:
            if tier.tier_id in self._tiers:
                raise ValueError(f"Duplicate tier id: {tier.tier_id}")
            if tier.priority in priorities:
                raise ValueError(f"Duplicate tier priority {tier.priority} ({tier.tier_id})")
            priorities.add(tier.priority)
            self._tiers[tier.tier_id] = tier

        if free_tier_id not in self._tiers:
            raise ValueError(f"Free tier {free_tier_id} missing from catalog")
        self.free_tier_id = free_tier_id

    def get(self, tier_id: str) -> Tier:
        try:
            return self._tiers[tier_id]
        except KeyError:
            raise UnknownTierError(str(tier_id)) from None

    def __contains__(self, tier_id) -> bool:
        return tier_id in self._tiers

    def __iter__(self):
        return iter(sorted(self._tiers.values(), key=lambda t: t.priority))

    def __len__(self) -> int:
        return len(self._tiers)

    @property
    def free(self) -> Tier:
        return self._tiers[self.free_tier_id]

    def compare_priority(self, a: str, b: str) -> Comparison:
        """Compare two tiers by priority: LESS means `a` ranks below `b`."""
        pa = self.get(a).priority
        pb = self.get(b).priority
        if pa < pb:
            return Comparison.LESS
        if pa > pb:
            return Comparison.GREATER
        return Comparison.EQUAL

    def higher_tiers(self, tier_id: str) -> list[Tier]:
        """Tiers strictly above `tier_id`, lowest priority first."""
        current = self.get(tier_id).priority
        return [t for t in self if t.priority > current]


def build_tier(tier_id: str, config: dict) -> Tier:
    return Tier(
        tier_id=tier_id,
        name=config["name"],
        price=config["price"],
        content_limit=config["content_limit"],
        allowed_content_types=frozenset(config["allowed_content_types"]),
        max_file_size=config["max_file_size"],
        priority=config["priority"],
        has_lifetime_access=config.get("lifetime", False),
        features=tuple(config.get("features", ())),
    )


DEFAULT_CATALOG = TierCatalog(build_tier(tier_id, cfg) for tier_id, cfg in TIER_CONFIG.items())
