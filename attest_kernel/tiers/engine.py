"""
Tier Engine — derives an identity's tier from its current live state.

Behavioral Contract:
- A pure function of (live fields, live attestation count) and the tier table
- Tiers are evaluated highest level first; the first satisfied tier wins
- Level 0 has no requirements and is the floor
- Nothing is remembered between calls: revoking an attestation can lower a tier
"""

from typing import Iterable, List, Optional, Sequence, Set

from attest_kernel.errors import InvalidArgumentError
from attest_kernel.models.attestation import Attestation
from attest_kernel.models.identity import TierDefinition, TierProgress

FLOOR_TIER = TierDefinition(level=0, name="Basic", description="No verification required")


def _normalize_table(tiers: Sequence[TierDefinition]) -> List[TierDefinition]:
    """Validate the table and return it sorted by descending level."""
    levels = [t.level for t in tiers]
    if len(levels) != len(set(levels)):
        raise InvalidArgumentError("Tier levels must be unique", levels=sorted(levels))

    table = list(tiers)
    floor = next((t for t in table if t.level == 0), None)
    if floor is None:
        table.append(FLOOR_TIER)
    elif floor.required_fields or floor.minimum_attestations:
        raise InvalidArgumentError("Tier 0 must not carry requirements")

    return sorted(table, key=lambda t: t.level, reverse=True)


def _satisfies(tier: TierDefinition, live_fields: Set[str], live_count: int) -> bool:
    return set(tier.required_fields) <= live_fields and live_count >= tier.minimum_attestations


class TierEngine:
    """Table-driven tier computation."""

    def __init__(self, tiers: Sequence[TierDefinition]):
        self._tiers = _normalize_table(tiers)

    @property
    def tiers(self) -> List[TierDefinition]:
        """The tier table in ascending level order."""
        return list(reversed(self._tiers))

    def get_tier(self, level: int) -> Optional[TierDefinition]:
        return next((t for t in self._tiers if t.level == level), None)

    def compute_tier(self, live_fields: Iterable[str], live_attestation_count: int) -> int:
        """Highest level whose required fields and attestation minimum are met."""
        fields = set(live_fields)
        for tier in self._tiers:
            if _satisfies(tier, fields, live_attestation_count):
                return tier.level
        return 0

    def compute_for(self, live_attestations: Sequence[Attestation]) -> int:
        """Compute the tier straight from a set of live attestations."""
        fields: Set[str] = set()
        for attestation in live_attestations:
            fields.update(attestation.field_names)
        return self.compute_tier(fields, len(live_attestations))

    def progress(self, live_fields: Iterable[str], live_attestation_count: int) -> TierProgress:
        """What is still missing to reach the next tier above the current one."""
        fields = set(live_fields)
        current = self.compute_tier(fields, live_attestation_count)
        above = [t for t in self.tiers if t.level > current]
        if not above:
            return TierProgress(current_level=current)

        nxt = above[0]
        return TierProgress(
            current_level=current,
            next_level=nxt.level,
            missing_fields=sorted(set(nxt.required_fields) - fields),
            missing_attestations=max(0, nxt.minimum_attestations - live_attestation_count),
        )
