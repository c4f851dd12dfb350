"""Authority-aware reranking.

A document's trust tier nudges its score: law and governance sources win
near-ties against guidance material. The boost is capped at
``MAX_AUTHORITY_BOOST`` so it only reorders candidates whose scores are
already close.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from athlete_agent.schemas.taxonomy import AUTHORITY_LEVELS

T = TypeVar("T")

MAX_AUTHORITY_BOOST = 0.3

# Policy constants; the ratios between them matter, not the absolute values.
INTENT_MULTIPLIERS: Dict[str, float] = {
    "escalation": 1.0,
    "general": 0.3,
}
DEFAULT_INTENT_MULTIPLIER = 0.5

_TIER_INDEX = {level: index for index, level in enumerate(AUTHORITY_LEVELS)}


def intent_multiplier(intent: Optional[str]) -> float:
    if intent is None:
        return DEFAULT_INTENT_MULTIPLIER
    return INTENT_MULTIPLIERS.get(intent, DEFAULT_INTENT_MULTIPLIER)


def authority_boost(authority_level: Optional[str], intent: Optional[str] = None) -> float:
    """Boost magnitude for a tier under the given intent.

    Returns 0 for a missing or unknown tier.
    """
    if not authority_level:
        return 0.0
    index = _TIER_INDEX.get(authority_level)
    if index is None:
        return 0.0
    tiers = len(AUTHORITY_LEVELS)
    tier_weight = (tiers - 1 - index) / (tiers - 1) if tiers > 1 else 1.0
    return MAX_AUTHORITY_BOOST * tier_weight * intent_multiplier(intent)


def apply_authority_boost(
    score: float,
    authority_level: Optional[str],
    intent: Optional[str] = None,
    lower_is_better: bool = False,
) -> float:
    """Composite score: boost added for higher-is-better, subtracted for distances."""
    boost = authority_boost(authority_level, intent)
    return score - boost if lower_is_better else score + boost


def rerank_by_authority(
    items: Sequence[T],
    intent: Optional[str],
    *,
    score: Callable[[T], float],
    authority_level: Callable[[T], Optional[str]],
    lower_is_better: bool = False,
) -> List[T]:
    """Return ``items`` sorted best-first by authority-boosted score.

    Sorting is stable, so equal composites keep their input order.
    """
    composites = [
        apply_authority_boost(score(item), authority_level(item), intent, lower_is_better)
        for item in items
    ]
    order = sorted(range(len(items)), key=lambda i: composites[i], reverse=not lower_is_better)
    return [items[i] for i in order]
