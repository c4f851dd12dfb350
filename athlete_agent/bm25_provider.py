"""
BM25 full-text backend for hybrid search.

Builds an in-memory rank-bm25 index over the chunk corpus the ingestion
pipeline exports as JSON Lines (one chunk per line with ``chunk_id``,
``content`` and metadata fields). The index is loaded lazily on first
search, once per process, behind an asyncio lock; scoring runs in a worker
thread so it never blocks the event loop.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from rank_bm25 import BM25Okapi

from athlete_agent.tools.retrieval_engine import SearchFilter, TextHit, TextSearchBackend, content_key

logger = structlog.get_logger(__name__)

_TOKEN_PATTERN = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "can", "do", "does", "for",
        "from", "how", "i", "if", "in", "is", "it", "my", "of", "on", "or", "that",
        "the", "this", "to", "was", "what", "when", "where", "which", "who", "will",
        "with", "you", "your",
    }
)

METADATA_FIELDS = (
    "org_id",
    "topic_domain",
    "document_type",
    "authority_level",
    "source_url",
    "document_title",
    "section_title",
    "effective_date",
    "ingested_at",
)


def tokenize(text: str) -> List[str]:
    """Lower-case word tokens with stopwords removed."""
    return [token for token in _TOKEN_PATTERN.findall(text.lower()) if token not in STOPWORDS]


class BM25TextBackend(TextSearchBackend):
    """Full-text search over a JSONL chunk corpus using BM25Okapi."""

    def __init__(self, corpus_path: str | Path, chunks: Optional[List[Dict[str, Any]]] = None):
        self.corpus_path = Path(corpus_path)
        self._chunks: List[Dict[str, Any]] = []
        self._bm25_index: Optional[BM25Okapi] = None
        self._preloaded = chunks
        self._load_lock = asyncio.Lock()
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def _ensure_index_loaded(self) -> None:
        if self._loaded:
            return
        async with self._load_lock:
            # Double-check pattern for async safety
            if self._loaded:
                return
            start_time = time.time()
            chunks = self._preloaded if self._preloaded is not None else await asyncio.to_thread(self._read_corpus)
            index = await asyncio.to_thread(self._build_index, chunks)
            self._chunks = chunks
            self._bm25_index = index
            self._loaded = True
            logger.info(
                "BM25 index loaded",
                chunks=len(chunks),
                path=str(self.corpus_path),
                duration_ms=round((time.time() - start_time) * 1000, 2),
            )

    def _read_corpus(self) -> List[Dict[str, Any]]:
        chunks: List[Dict[str, Any]] = []
        with self.corpus_path.open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                record = json.loads(line)
                if not record.get("content"):
                    logger.warning("Skipping chunk without content", line=line_number)
                    continue
                chunks.append(record)
        return chunks

    @staticmethod
    def _build_index(chunks: List[Dict[str, Any]]) -> Optional[BM25Okapi]:
        if not chunks:
            return None
        return BM25Okapi([tokenize(chunk["content"]) for chunk in chunks])

    async def text_search(
        self, query: str, top_k: int, search_filter: Optional[SearchFilter] = None
    ) -> List[TextHit]:
        await self._ensure_index_loaded()
        query_tokens = tokenize(query)
        if self._bm25_index is None or not query_tokens:
            return []

        start_time = time.time()
        scores = await asyncio.to_thread(self._bm25_index.get_scores, query_tokens)

        ranked = sorted(range(len(self._chunks)), key=lambda i: scores[i], reverse=True)
        hits: List[TextHit] = []
        for index in ranked:
            score = float(scores[index])
            if score <= 0.0:
                break
            chunk = self._chunks[index]
            metadata = {field: chunk.get(field) for field in METADATA_FIELDS}
            if search_filter is not None and not search_filter.matches(metadata):
                continue
            chunk_id = str(chunk.get("chunk_id") or content_key(chunk["content"]))
            metadata["chunk_id"] = chunk_id
            hits.append(TextHit(chunk_id, chunk["content"], metadata, score))
            if len(hits) >= top_k:
                break

        logger.info(
            "BM25 search completed",
            hits=len(hits),
            query_tokens=len(query_tokens),
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return hits
