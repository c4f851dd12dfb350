"""Hybrid retrieval engine: vector + full-text search with rank fusion.

The gateway queries both backends concurrently, fuses the two ranked lists
with weighted reciprocal rank fusion, reranks by source authority and
returns the top documents with a confidence score.

A failing backend never fails a search: its results are replaced by an
empty list (see ``libs.common.resilience.with_fallback``) and the other
backend's results are used alone.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, Field

from athlete_agent.schemas.agent_state import DocumentMetadata, RetrievedDocument
from athlete_agent.tools.reranker import rerank_by_authority
from athlete_agent.tools.rrf_fusion import (
    DEFAULT_RRF_K,
    DEFAULT_VECTOR_WEIGHT,
    RankedItem,
    max_rrf_score,
    rrf_fuse,
)
from libs.common.resilience import CircuitBreaker, with_fallback

logger = structlog.get_logger(__name__)

BEST_SCORE_WEIGHT = 0.6
MEAN_SCORE_WEIGHT = 0.4


class SearchFilter(BaseModel):
    """Metadata filter understood by both search backends.

    ``org_ids`` restricts to documents owned by one of the organizations; with
    ``include_org_agnostic`` documents without an owning organization match too.
    """

    org_ids: List[str] = Field(default_factory=list)
    topic_domain: Optional[str] = None
    include_org_agnostic: bool = False

    class Config:
        frozen = True

    def is_empty(self) -> bool:
        return not self.org_ids and self.topic_domain is None

    def matches(self, metadata: Dict[str, Any]) -> bool:
        """In-memory evaluation, used by backends without native filtering."""
        if self.org_ids:
            org_id = metadata.get("org_id")
            if org_id not in self.org_ids and not (self.include_org_agnostic and org_id is None):
                return False
        if self.topic_domain is not None and metadata.get("topic_domain") != self.topic_domain:
            return False
        return True


class VectorHit(NamedTuple):
    content: str
    metadata: Dict[str, Any]
    score: float  # distance, lower is more similar


class TextHit(NamedTuple):
    id: str
    content: str
    metadata: Dict[str, Any]
    text_rank: float  # higher is more relevant


class VectorSearchBackend:
    """Base class for vector similarity backends."""

    async def similarity_search(
        self, query: str, top_k: int, search_filter: Optional[SearchFilter] = None
    ) -> List[VectorHit]:
        """Return hits ordered by ascending distance."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class TextSearchBackend:
    """Base class for full-text backends."""

    async def text_search(
        self, query: str, top_k: int, search_filter: Optional[SearchFilter] = None
    ) -> List[TextHit]:
        """Return hits ordered by descending text rank."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class HybridSearchConfig(BaseModel):
    """Configuration for hybrid search."""

    rrf_k: int = Field(default=DEFAULT_RRF_K, ge=1)
    vector_weight: float = Field(default=DEFAULT_VECTOR_WEIGHT, ge=0.0, le=1.0)
    candidate_multiplier: int = Field(default=2, ge=1, description="Backend fetch depth relative to top_k")
    min_candidates: int = Field(default=20, ge=1)


def content_key(content: str) -> str:
    """Stable identity for a chunk that carries no id of its own."""
    return hashlib.sha256(content.strip().encode("utf-8")).hexdigest()[:32]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def compute_confidence(documents: Sequence[RetrievedDocument]) -> float:
    """0.6 x best score + 0.4 x mean score, 0 for an empty set."""
    if not documents:
        return 0.0
    scores = [_clamp(doc.score) for doc in documents]
    best = max(scores)
    mean = sum(scores) / len(scores)
    return round(BEST_SCORE_WEIGHT * best + MEAN_SCORE_WEIGHT * mean, 6)


def rank_documents(
    documents: Sequence[RetrievedDocument], intent: Optional[str] = None
) -> List[RetrievedDocument]:
    """Order documents by similarity plus authority boost.

    The boost is on the same scale as the similarity score, so it only
    reorders near-ties. Equal composites fall back to the fused rank.
    """
    by_fused = sorted(documents, key=lambda doc: doc.fused_score, reverse=True)
    return rerank_by_authority(
        by_fused,
        intent,
        score=lambda doc: doc.score,
        authority_level=lambda doc: doc.metadata.authority_level,
    )


def merge_by_content(*groups: Iterable[RetrievedDocument]) -> List[RetrievedDocument]:
    """Concatenate groups, keeping the first document seen for each content."""
    seen = set()
    merged: List[RetrievedDocument] = []
    for group in groups:
        for doc in group:
            key = doc.content.strip()
            if key in seen:
                continue
            seen.add(key)
            merged.append(doc)
    return merged


class HybridSearchGateway:
    """Concurrent vector + full-text search with fusion, reranking and confidence."""

    def __init__(
        self,
        vector_backend: VectorSearchBackend,
        text_backend: TextSearchBackend,
        config: Optional[HybridSearchConfig] = None,
        vector_breaker: Optional[CircuitBreaker] = None,
        text_breaker: Optional[CircuitBreaker] = None,
    ):
        self.vector_backend = vector_backend
        self.text_backend = text_backend
        self.config = config or HybridSearchConfig()
        self.vector_breaker = vector_breaker
        self.text_breaker = text_breaker

    async def search(
        self,
        query: str,
        search_filter: Optional[SearchFilter] = None,
        top_k: int = 10,
        intent: Optional[str] = None,
    ) -> Tuple[List[RetrievedDocument], float]:
        """Search both backends and return (documents best-first, confidence)."""
        start_time = time.time()
        fetch_k = max(top_k * self.config.candidate_multiplier, self.config.min_candidates)

        vector_hits, text_hits = await asyncio.gather(
            with_fallback(
                lambda: self.vector_backend.similarity_search(query, fetch_k, search_filter),
                [],
                operation_name="vector_search",
                breaker=self.vector_breaker,
            ),
            with_fallback(
                lambda: self.text_backend.text_search(query, fetch_k, search_filter),
                [],
                operation_name="text_search",
                breaker=self.text_breaker,
            ),
        )

        documents = self._fuse(vector_hits, text_hits, top_k, intent)
        confidence = compute_confidence(documents)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Hybrid search completed",
            vector_hits=len(vector_hits),
            text_hits=len(text_hits),
            documents=len(documents),
            confidence=confidence,
            filtered=search_filter is not None,
            duration_ms=round(duration_ms, 2),
        )
        return documents, confidence

    def _fuse(
        self,
        vector_hits: Sequence[VectorHit],
        text_hits: Sequence[TextHit],
        top_k: int,
        intent: Optional[str],
    ) -> List[RetrievedDocument]:
        distances: Dict[str, float] = {}
        vector_items: List[RankedItem] = []
        for hit in vector_hits:
            doc_id = str(hit.metadata.get("chunk_id") or content_key(hit.content))
            distances.setdefault(doc_id, hit.score)
            vector_items.append(RankedItem(doc_id, hit.content, hit.metadata))

        text_items = [RankedItem(str(hit.id), hit.content, hit.metadata) for hit in text_hits]

        candidates = rrf_fuse(
            vector_items,
            text_items,
            k=max(len(vector_items) + len(text_items), top_k),
            rrf_k=self.config.rrf_k,
            vector_weight=self.config.vector_weight,
        )

        top_score = max_rrf_score(self.config.rrf_k)
        documents: List[RetrievedDocument] = []
        for candidate in candidates:
            fused = _clamp(candidate.score / top_score)
            distance = distances.get(candidate.id)
            # Text-only candidates have no similarity; their fused score stands in.
            relevance = _clamp(1.0 - distance) if distance is not None else fused
            metadata = dict(candidate.metadata)
            metadata["chunk_id"] = candidate.id
            documents.append(
                RetrievedDocument(
                    content=candidate.content,
                    score=relevance,
                    fused_score=fused,
                    metadata=DocumentMetadata.model_validate(metadata),
                )
            )

        return rank_documents(documents, intent)[:top_k]
