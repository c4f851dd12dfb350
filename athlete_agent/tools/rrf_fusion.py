"""Weighted reciprocal rank fusion of vector and full-text result lists."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

DEFAULT_RRF_K = 60
DEFAULT_VECTOR_WEIGHT = 0.5
DEFAULT_FUSION_LIMIT = 10


class RankedItem(NamedTuple):
    """One entry of a ranked input list."""

    id: str
    content: str
    metadata: Dict[str, Any]


@dataclass
class RrfCandidate:
    """Fused candidate; lives only inside one gateway call."""

    id: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    score: float = 0.0
    vector_rank: Optional[int] = None
    text_rank: Optional[int] = None


def rrf_score(
    vector_rank: Optional[int],
    text_rank: Optional[int],
    rrf_k: int = DEFAULT_RRF_K,
    vector_weight: float = DEFAULT_VECTOR_WEIGHT,
) -> float:
    """Fused score for 1-based ranks; an absent rank contributes nothing."""
    score = 0.0
    if vector_rank is not None:
        score += vector_weight / (rrf_k + vector_rank)
    if text_rank is not None:
        score += (1.0 - vector_weight) / (rrf_k + text_rank)
    return score


def max_rrf_score(rrf_k: int = DEFAULT_RRF_K) -> float:
    """Score of an item ranked first in both lists (any weight)."""
    return 1.0 / (rrf_k + 1)


def rrf_fuse(
    vector_results: Sequence[RankedItem],
    text_results: Sequence[RankedItem],
    k: int = DEFAULT_FUSION_LIMIT,
    rrf_k: int = DEFAULT_RRF_K,
    vector_weight: float = DEFAULT_VECTOR_WEIGHT,
) -> List[RrfCandidate]:
    """Merge two best-first lists into one list ordered by fused score.

    Items are matched by id. When an id is in both lists the vector entry's
    content and metadata are kept. Ties keep first-seen order (vector list
    first), so the output is deterministic.
    """
    if not 0.0 <= vector_weight <= 1.0:
        raise ValueError("vector_weight must be between 0 and 1")

    candidates: Dict[str, RrfCandidate] = {}

    for rank, item in enumerate(vector_results, start=1):
        if item.id in candidates:
            continue
        candidates[item.id] = RrfCandidate(
            id=item.id,
            content=item.content,
            metadata=dict(item.metadata),
            vector_rank=rank,
        )

    for rank, item in enumerate(text_results, start=1):
        existing = candidates.get(item.id)
        if existing is None:
            candidates[item.id] = RrfCandidate(
                id=item.id,
                content=item.content,
                metadata=dict(item.metadata),
                text_rank=rank,
            )
        elif existing.text_rank is None:
            existing.text_rank = rank

    for candidate in candidates.values():
        candidate.score = rrf_score(candidate.vector_rank, candidate.text_rank, rrf_k, vector_weight)

    fused = sorted(candidates.values(), key=lambda c: c.score, reverse=True)
    return fused[: max(k, 0)]
