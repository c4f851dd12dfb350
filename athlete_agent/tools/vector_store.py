"""Milvus vector backend over the Milvus Cloud HTTP v2 API.

All HTTP traffic (embeddings and search) goes through one shared
``httpx.AsyncClient`` owned by the runner, so connections are pooled for
the life of the process and returned on every path, including errors.
"""

from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Optional

import httpx
import structlog

from athlete_agent.tools.retrieval_engine import SearchFilter, VectorHit, VectorSearchBackend

logger = structlog.get_logger(__name__)

OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"

OUTPUT_FIELDS = [
    "chunk_id",
    "content",
    "org_id",
    "topic_domain",
    "document_type",
    "authority_level",
    "source_url",
    "document_title",
    "section_title",
    "effective_date",
    "ingested_at",
]


class MilvusSearchError(RuntimeError):
    """Milvus answered with a non-zero status code."""


def create_http_client(max_connections: int = 20, timeout: float = 10.0) -> httpx.AsyncClient:
    """Process-wide pooled HTTP client for the search backends."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections),
    )


def normalize_milvus_base_url(endpoint: str) -> str:
    """Turn a Milvus Cloud endpoint into the HTTP v2 vectordb base URL."""
    base_url = endpoint.rstrip("/").replace(":443", "").replace(":19530", "")
    if not base_url.endswith("/v2/vectordb"):
        base_url += "/v2/vectordb"
    return base_url


def build_filter_expression(search_filter: Optional[SearchFilter]) -> Optional[str]:
    """Translate a SearchFilter into a Milvus boolean expression."""
    if search_filter is None or search_filter.is_empty():
        return None
    clauses = []
    if search_filter.org_ids:
        ids = ", ".join(json.dumps(org_id) for org_id in search_filter.org_ids)
        org_clause = f"org_id in [{ids}]"
        if search_filter.include_org_agnostic:
            org_clause = f"({org_clause} or org_id is null)"
        clauses.append(org_clause)
    if search_filter.topic_domain is not None:
        clauses.append(f"topic_domain == {json.dumps(search_filter.topic_domain)}")
    return " and ".join(clauses)


class OpenAIEmbeddingClient:
    """OpenAI client for generating query embeddings."""

    def __init__(self, client: httpx.AsyncClient, api_key: str, model: str = "text-embedding-3-small"):
        self.client = client
        self.api_key = api_key
        self.model = model

    async def embed(self, text: str) -> List[float]:
        response = await self.client.post(
            OPENAI_EMBEDDINGS_URL,
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json={"model": self.model, "input": text},
        )
        response.raise_for_status()
        data = response.json()
        return data["data"][0]["embedding"]


class MilvusVectorBackend(VectorSearchBackend):
    """Vector similarity search against a Milvus collection (COSINE metric)."""

    def __init__(
        self,
        endpoint: str,
        token: Optional[str],
        collection_name: str,
        embeddings: OpenAIEmbeddingClient,
        client: httpx.AsyncClient,
    ):
        self.base_url = normalize_milvus_base_url(endpoint)
        self.collection_name = collection_name
        self.embeddings = embeddings
        self.client = client
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def similarity_search(
        self, query: str, top_k: int, search_filter: Optional[SearchFilter] = None
    ) -> List[VectorHit]:
        start_time = time.time()
        query_vector = await self.embeddings.embed(query)

        search_payload: Dict[str, Any] = {
            "collectionName": self.collection_name,
            "data": [query_vector],
            "limit": top_k,
            "outputFields": OUTPUT_FIELDS,
        }
        expression = build_filter_expression(search_filter)
        if expression:
            search_payload["filter"] = expression

        response = await self.client.post(
            f"{self.base_url}/entities/search",
            headers=self.headers,
            json=search_payload,
        )
        response.raise_for_status()
        data = response.json()
        if data.get("code", 0) != 0:
            raise MilvusSearchError(f"Milvus search failed: {data.get('message', data.get('code'))}")

        hits: List[VectorHit] = []
        for row in data.get("data", []):
            metadata = {field: row.get(field) for field in OUTPUT_FIELDS if field != "content"}
            if metadata.get("chunk_id") is not None:
                metadata["chunk_id"] = str(metadata["chunk_id"])
            # COSINE search reports similarity; expose it as a distance.
            similarity = float(row.get("distance", 0.0))
            hits.append(VectorHit(row.get("content") or "", metadata, 1.0 - similarity))

        hits.sort(key=lambda hit: hit.score)
        logger.info(
            "Milvus search completed",
            collection=self.collection_name,
            hits=len(hits),
            filter=expression,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return hits
