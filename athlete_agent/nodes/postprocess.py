"""Post-answer stages shared by the synthesis and escalation paths."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

import structlog

from athlete_agent.composer.disclaimers import with_disclaimer
from athlete_agent.schemas.agent_state import Citation, ConversationState, RetrievedDocument

logger = structlog.get_logger(__name__)

SNIPPET_LENGTH = 200


def make_snippet(content: str, length: int = SNIPPET_LENGTH) -> str:
    content = content.strip()
    if len(content) <= length:
        return content
    return content[:length] + "..."


def build_citations(documents: Sequence[RetrievedDocument]) -> List[Citation]:
    """One citation per distinct source, in retrieval order.

    Documents are keyed by url|section|title so several chunks of the same
    section collapse into a single citation.
    """
    seen = set()
    citations: List[Citation] = []
    for doc in documents:
        meta = doc.metadata
        key = f"{meta.source_url or ''}|{meta.section_title or ''}|{meta.document_title or ''}"
        if key in seen:
            continue
        seen.add(key)
        citations.append(
            Citation(
                title=meta.document_title or "Untitled document",
                url=meta.source_url,
                document_type=meta.document_type,
                section=meta.section_title,
                effective_date=meta.effective_date,
                authority_level=meta.authority_level,
                snippet=make_snippet(doc.content),
            )
        )
    return citations


class CitationBuilderNode:
    async def __call__(self, state: ConversationState) -> Dict[str, Any]:
        citations = build_citations(state.retrieved_documents)
        logger.info(
            "citation_builder completed",
            documents=len(state.retrieved_documents),
            citations=len(citations),
            trace_id=state.trace_id,
        )
        return {"citations": citations}


class DisclaimerGuardNode:
    """Append the topic-domain disclaimer to answers that require one."""

    async def __call__(self, state: ConversationState) -> Dict[str, Any]:
        if not state.disclaimer_required or not state.answer:
            return {}
        logger.info("disclaimer appended", domain=state.topic_domain, trace_id=state.trace_id)
        return {"answer": with_disclaimer(state.answer, state.topic_domain)}
