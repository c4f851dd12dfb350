"""Synthesizer stage: write the grounded answer."""

from __future__ import annotations

import time
from typing import Any, Dict, Sequence

import structlog
from langsmith import traceable

from athlete_agent.composer.disclaimers import with_empathy
from athlete_agent.composer.prompts import (
    REVISION_BLOCK,
    SYNTHESIZER_TEMPLATE,
    get_response_format,
    get_tone_guidance,
)
from athlete_agent.llm.client import ChatModelClient
from athlete_agent.schemas.agent_state import ConversationState, RetrievedDocument
from libs.common.resilience import CircuitOpenError

logger = structlog.get_logger(__name__)

UNAVAILABLE_ANSWER = (
    "I'm temporarily unable to generate a response. Please try again in a few minutes. "
    "If your question is urgent, contact the Athlete Ombuds at ombudsman@usathlete.org or 719-866-5000."
)
ERROR_ANSWER = (
    "I encountered an error while generating your answer. Please try again, or contact the "
    "Athlete Ombuds at ombudsman@usathlete.org or 719-866-5000 for direct assistance."
)
FALLBACK_ANSWERS = (UNAVAILABLE_ANSWER, ERROR_ANSWER)


def format_documents(documents: Sequence[RetrievedDocument]) -> str:
    """Render retrieved documents as numbered context blocks."""
    if not documents:
        return "No documents were retrieved."
    blocks = []
    for number, doc in enumerate(documents, start=1):
        meta = doc.metadata
        header = [f"[Document {number}] {meta.document_title or 'Untitled document'}"]
        if meta.section_title:
            header.append(f"Section: {meta.section_title}")
        if meta.org_id:
            header.append(f"Organization: {meta.org_id}")
        if meta.authority_level:
            header.append(f"Authority: {meta.authority_level}")
        if meta.effective_date:
            header.append(f"Effective: {meta.effective_date}")
        if meta.source_url:
            header.append(f"URL: {meta.source_url}")
        blocks.append("\n".join(header) + "\n" + doc.content)
    return "\n\n---\n\n".join(blocks)


class SynthesizerNode:
    """Graph stage producing ``answer``; reruns on quality-gate failures."""

    def __init__(self, llm: ChatModelClient):
        self.llm = llm

    @traceable(run_type="llm", name="synthesizer", tags=["synthesis"])
    async def __call__(self, state: ConversationState) -> Dict[str, Any]:
        start_time = time.time()
        patch: Dict[str, Any] = {}

        previous = state.quality_check_result
        revision = ""
        if previous is not None and not previous.passed:
            patch["quality_retry_count"] = state.quality_retry_count + 1
            revision = REVISION_BLOCK.format(critique=previous.critique or "The answer was too generic.")

        prompt = SYNTHESIZER_TEMPLATE.format(
            context=format_documents(state.retrieved_documents),
            web_results="\n".join(state.web_search_results) or "None",
            history=state.history_text() or "None",
            question=state.current_message,
            tone=get_tone_guidance(state.emotional_state),
            response_format=get_response_format(state.query_intent),
            revision=revision,
        )

        try:
            answer = (await self.llm.invoke(prompt)).strip()
            if not answer:
                raise ValueError("Empty answer from language model")
            answer = with_empathy(answer, state.emotional_state)
        except CircuitOpenError:
            logger.warning("synthesizer circuit open", trace_id=state.trace_id)
            answer = UNAVAILABLE_ANSWER
        except Exception as e:
            logger.error("synthesizer failed", error=str(e), trace_id=state.trace_id)
            answer = ERROR_ANSWER

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "synthesizer completed",
            answer_len=len(answer),
            documents=len(state.retrieved_documents),
            web_results=len(state.web_search_results),
            retry=bool(revision),
            duration_ms=round(duration_ms, 2),
            trace_id=state.trace_id,
        )
        patch["answer"] = answer
        return patch
