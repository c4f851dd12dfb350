"""Conversation state schema for the athlete support agent.

This module defines the state object that flows through the LangGraph
orchestrator for one conversational turn, plus the records stages attach
to it (retrieved documents, sub-queries, citations, escalation, quality
check results).

Stages never mutate the state in place: each returns a partial patch
(a dict of changed fields) and the graph merges it.
"""

from __future__ import annotations

import operator
import uuid
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from athlete_agent.schemas.taxonomy import EmotionalState, QueryIntent, TopicDomain


class ChatMessage(BaseModel):
    """One prior turn of the conversation."""

    role: Literal["user", "assistant"] = Field(description="Who produced the message")
    content: str = Field(description="Message text")


class DocumentMetadata(BaseModel):
    """Metadata carried by every searchable chunk."""

    chunk_id: Optional[str] = Field(default=None, description="Stable chunk identifier")
    org_id: Optional[str] = Field(default=None, description="Owning organization id, None if organization-agnostic")
    topic_domain: Optional[str] = Field(default=None, description="Topic domain of the source")
    document_type: Optional[str] = Field(default=None, description="Document type (bylaws, policy, faq, ...)")
    authority_level: Optional[str] = Field(default=None, description="Trust tier of the source")
    source_url: Optional[str] = Field(default=None, description="Canonical source URL")
    document_title: Optional[str] = Field(default=None, description="Document title")
    section_title: Optional[str] = Field(default=None, description="Section heading")
    effective_date: Optional[str] = Field(default=None, description="Effective date of the source")
    ingested_at: Optional[str] = Field(default=None, description="Ingestion timestamp")

    class Config:
        extra = "ignore"
        frozen = True


class RetrievedDocument(BaseModel):
    """A document chunk selected by the retriever, best-first in state."""

    content: str = Field(description="Chunk text")
    score: float = Field(ge=0.0, le=1.0, description="Relevance, higher is better")
    fused_score: float = Field(default=0.0, ge=0.0, le=1.0, description="Normalized rank-fusion score, breaks ties between equal composites")
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)

    class Config:
        frozen = True


class SubQuery(BaseModel):
    """A domain-scoped slice of a complex question."""

    query: str = Field(min_length=1, description="Sub-question text")
    domain: TopicDomain = Field(description="Topic domain to search")
    intent: QueryIntent = Field(default="general", description="Intent of the sub-question")
    org_ids: List[str] = Field(default_factory=list, description="Organization filter")


class Citation(BaseModel):
    """Citation information for a retrieved source."""

    title: str = Field(description="Document title")
    url: Optional[str] = Field(default=None, description="Source URL")
    document_type: Optional[str] = Field(default=None, description="Document type")
    section: Optional[str] = Field(default=None, description="Section title")
    effective_date: Optional[str] = Field(default=None, description="Effective date")
    authority_level: Optional[str] = Field(default=None, description="Trust tier")
    snippet: str = Field(default="", description="Short excerpt of the cited text")


class EscalationInfo(BaseModel):
    """Referral to an outside authority."""

    target: str = Field(description="Escalation target id")
    organization: str = Field(description="Organization name")
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_url: Optional[str] = None
    reason: str = Field(description="Why the athlete is being referred")
    urgency: Literal["immediate", "standard"] = Field(default="standard")


class QualityIssue(BaseModel):
    type: str = Field(description="Issue category")
    description: str = Field(default="")
    severity: Literal["critical", "major", "minor"] = Field(default="minor")


class QualityCheckResult(BaseModel):
    """Verdict of the post-synthesis quality gate."""

    passed: bool
    score: float = Field(ge=0.0, le=1.0)
    issues: List[QualityIssue] = Field(default_factory=list)
    critique: str = ""


class ConversationState(BaseModel):
    """State for one turn of the athlete support graph.

    Exactly one of the clarify, escalate, or synthesis paths runs per turn.
    """

    # Tracing
    trace_id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Unique trace identifier")
    conversation_id: Optional[str] = Field(default=None, description="Client conversation identifier")

    # Input
    messages: List[ChatMessage] = Field(default_factory=list, description="Ordered prior turns, latest last")
    conversation_summary: Optional[str] = Field(default=None, description="Externally maintained summary of older turns")
    user_sport: Optional[str] = Field(default=None, description="Sport hint supplied by the client")

    # Classification
    topic_domain: Optional[TopicDomain] = Field(default=None, description="Classified topic domain")
    detected_org_ids: List[str] = Field(default_factory=list, description="Recognized organization ids")
    query_intent: Optional[QueryIntent] = Field(default=None, description="Classified query intent")
    has_time_constraint: bool = Field(default=False, description="User mentioned urgency or a deadline")
    emotional_state: EmotionalState = Field(default="neutral", description="Detected emotional state")
    escalation_reason: Optional[str] = Field(default=None, description="Classifier's reason for escalating")
    needs_clarification: bool = Field(default=False, description="Question is too ambiguous to answer")
    clarification_question: Optional[str] = Field(default=None, description="Question to ask the user")

    # Query planning
    is_complex_query: bool = Field(default=False, description="Question spans multiple domains")
    sub_queries: List[SubQuery] = Field(default_factory=list, description="Domain-scoped sub-queries")

    # Retrieval
    retrieved_documents: List[RetrievedDocument] = Field(default_factory=list, description="Retrieved chunks, best first")
    retrieval_confidence: float = Field(default=0.0, ge=0.0, le=1.0, description="Confidence in retrieved context")
    retrieval_status: Literal["success", "error"] = Field(default="success", description="Retriever outcome")
    expansion_attempted: bool = Field(default=False, description="Retrieval expansion already ran this turn")
    web_search_results: List[str] = Field(default_factory=list, description="Research fallback results")

    # Outputs
    answer: Optional[str] = Field(default=None, description="Generated answer")
    citations: List[Citation] = Field(default_factory=list, description="Source citations")
    escalation: Optional[EscalationInfo] = Field(default=None, description="Referral, on the escalate path")
    disclaimer_required: bool = Field(default=True, description="Append the domain disclaimer to the answer")

    # Quality loop
    quality_check_result: Optional[QualityCheckResult] = Field(default=None, description="Latest quality verdict")
    quality_retry_count: int = Field(default=0, ge=0, description="Synthesis retries triggered by the quality gate")

    # Non-fatal repairs recorded by stages (accumulated across stages)
    warnings: Annotated[List[str], operator.add] = Field(default_factory=list, description="Recorded warnings")

    class Config:
        validate_assignment = True
        extra = "forbid"

    @property
    def current_message(self) -> str:
        """Text of the latest user turn, empty if there is none."""
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content.strip()
        return ""

    def history_text(self, max_turns: int = 6) -> str:
        """Render the turns before the latest user message."""
        prior = self.messages[:-1] if self.messages and self.messages[-1].role == "user" else self.messages
        lines = [f"{m.role.capitalize()}: {m.content}" for m in prior[-max_turns:]]
        return "\n".join(lines)


class TurnInput(BaseModel):
    """Runner input for one conversational turn."""

    messages: List[ChatMessage] = Field(min_length=1, description="Ordered prior messages, latest user turn last")
    user_sport: Optional[str] = Field(default=None, max_length=100, description="Optional sport hint")
    conversation_id: Optional[str] = Field(default=None, description="Optional conversation identifier")
    conversation_summary: Optional[str] = Field(default=None, description="Summary of older turns")


class TurnResult(BaseModel):
    """Runner output for a blocking invocation."""

    answer: str
    citations: List[Citation] = Field(default_factory=list)
    escalation: Optional[EscalationInfo] = None


def create_initial_state(
    messages: List[ChatMessage],
    conversation_id: Optional[str] = None,
    user_sport: Optional[str] = None,
    conversation_summary: Optional[str] = None,
) -> ConversationState:
    """Create the initial state for a new turn."""
    return ConversationState(
        messages=list(messages),
        conversation_id=conversation_id,
        user_sport=user_sport,
        conversation_summary=conversation_summary,
    )


def snapshot_fields(state: ConversationState) -> Dict[str, Any]:
    """JSON-safe view of the fields clients care about while streaming."""
    return state.model_dump(
        mode="json",
        include={
            "topic_domain",
            "query_intent",
            "retrieval_confidence",
            "retrieval_status",
            "answer",
            "citations",
            "escalation",
            "needs_clarification",
            "quality_retry_count",
        },
    )
