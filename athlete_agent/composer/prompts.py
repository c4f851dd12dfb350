"""
Prompt templates for the athlete support agent.

Every stage that talks to a language model renders one of these
``PromptTemplate``s to plain text. Literal JSON braces are doubled so the
templates stay valid ``str.format`` strings.
"""

from typing import Dict, Optional

from langchain_core.prompts import PromptTemplate

# ==============================================================================
# CLASSIFICATION
# ==============================================================================

CLASSIFIER_TEMPLATE = PromptTemplate.from_template(
    """You classify messages sent to an assistant that helps U.S. Olympic and Paralympic athletes \
understand governance, team selection, disputes, SafeSport, anti-doping, eligibility and athlete rights.

Return ONLY a JSON object with these fields:

- "topicDomain": one of "team_selection", "dispute_resolution", "safesport", "anti_doping", \
"eligibility", "governance", "athlete_rights"
- "detectedOrgIds": array of governing body ids mentioned or implied by the sport \
(e.g. "usa_swimming", "us_ski_snowboard", "usa_track_field"); empty array if none
- "queryIntent": one of "factual", "procedural", "deadline", "escalation", "general"
- "hasTimeConstraint": true if the athlete mentions urgency or an approaching deadline
- "emotionalState": one of "neutral", "distressed", "panicked", "fearful"
- "shouldEscalate": true for active abuse or safety concerns, imminent hearings, or pending anti-doping matters
- "escalationReason": short reason, only when shouldEscalate is true
- "needsClarification": true only if the question cannot be answered without more detail
- "clarificationQuestion": the single question to ask, only when needsClarification is true

No Markdown, no commentary.

## Conversation Summary
{summary}

## Recent Conversation
{history}

## Athlete's Sport
{sport}

## Latest Message
{message}"""
)

# ==============================================================================
# QUERY PLANNING
# ==============================================================================

QUERY_PLANNER_TEMPLATE = PromptTemplate.from_template(
    """You decide whether an athlete's question spans several distinct governance domains and, if it does, \
split it into focused sub-questions.

Domains: team_selection, dispute_resolution, safesport, anti_doping, eligibility, governance, athlete_rights.
Intents: factual, procedural, deadline, general.

Rules:
1. Mark the question complex only if it genuinely needs two or more domains.
2. A passing mention of a second topic does not make a question complex.
3. At most {max_sub_queries} sub-queries, each targeting a different domain.
4. When unsure, answer not complex.

Respond with JSON only:
{{"isComplex": true/false, "subQueries": [{{"query": "...", "domain": "...", "intent": "...", "ngbIds": []}}]}}
When isComplex is false, subQueries must be empty.

## Classifier Context
Domain: {domain}
Intent: {intent}

## Question
{message}"""
)

# ==============================================================================
# SYNTHESIS
# ==============================================================================

RESPONSE_FORMATS: Dict[str, str] = {
    "factual": (
        "This is a factual question. Answer in 1-3 sentences, then name the source document and section. "
        "Stay under 150 words."
    ),
    "procedural": (
        "This is a procedural question. Give a one or two sentence overview, then numbered steps, "
        "then the source document and section. Stay under 300 words."
    ),
    "deadline": (
        "This is a deadline question. Lead with the exact date or timeframe, list related dates "
        "(filing windows, notice periods), then the source. Stay under 100 words."
    ),
    "general": (
        "Lead with a direct answer, then supporting details with citations, any deadlines, "
        "and concrete next steps including who to contact."
    ),
}

EMOTIONAL_TONE_GUIDANCE: Dict[str, str] = {
    "distressed": "The athlete sounds distressed. Be warm and validating before giving guidance.",
    "panicked": "The athlete sounds panicked. Be calm, short and concrete; put the first action first.",
    "fearful": (
        "The athlete sounds afraid of consequences. Mention retaliation protections and confidential "
        "reporting options where the context supports them."
    ),
}

SYNTHESIZER_TEMPLATE = PromptTemplate.from_template(
    """You write answers for an assistant that supports U.S. Olympic and Paralympic athletes.

## Retrieved Documents
{context}

## Web Research
{web_results}

## Conversation History
{history}

## Question
{question}

## Instructions
- Ground every statement in the documents or web research above; never invent rules, deadlines or contacts.
- Cite document titles and section numbers for the provisions you use.
- Attribute each rule to the organization it belongs to.
- Prefer higher-authority sources (law, then USOPC governance, then governing body policy, then guidance) \
and point out conflicts.
- Say plainly when the sources do not answer the question and name who the athlete should contact.
{tone}
## Response Format
{response_format}
{revision}"""
)

REVISION_BLOCK = """
## Revision Required
A reviewer rejected the previous draft:
{critique}
Address every point above in the new answer."""

QUALITY_CHECKER_TEMPLATE = PromptTemplate.from_template(
    """You review answers written for athletes. Judge the answer against the question and the retrieved context.

## Question
{question}

## Query Intent
{intent}

## Retrieved Context
{context}

## Answer
{answer}

Score from 0.0 to 1.0 on specificity (concrete documents, sections, dates), grounding (every claim supported \
by the context) and completeness. Classify problems as "generic_response", "hallucination_signal", \
"incomplete" or "missing_specificity", each with severity "critical", "major" or "minor".

Respond with JSON only:
{{"passed": true/false, "score": 0.0, "issues": [{{"type": "...", "description": "...", "severity": "..."}}], \
"critique": "what to fix, empty if passed"}}"""
)

# ==============================================================================
# RETRIEVAL EXPANSION AND RESEARCH
# ==============================================================================

RETRIEVAL_EXPANDER_TEMPLATE = PromptTemplate.from_template(
    """A knowledge-base search for U.S. Olympic and Paralympic governance documents returned weak results.

## Original Query
{query}

## Domain
{domain}
{existing_titles}
Write exactly 3 alternative search queries: one with domain synonyms, one phrased the way policy \
documents are written, one broader or narrower than the original.

Respond with a JSON array of 3 strings only."""
)

RESEARCHER_TEMPLATE = PromptTemplate.from_template(
    """Write web search queries that would help answer an athlete's question about U.S. Olympic and \
Paralympic governance ({domain}).

## Latest Message
{message}

## Conversation History
{history}

Return 1 query, or up to 3 if the conversation refers to specific recent events. Keep each under 15 words.
Respond with a JSON array of strings only."""
)

# ==============================================================================
# ESCALATION
# ==============================================================================

ESCALATION_TEMPLATE = PromptTemplate.from_template(
    """You connect an athlete with the authority that can help with their situation.

Write a short, supportive reply that acknowledges the situation without repeating it verbatim, explains \
why these contacts are the right ones, lists the contact details exactly as given, and says what to expect.
Mention 911 only if the reason describes imminent physical danger. Do not investigate or judge the matter. \
Use only the contact details below.

## Verified Contacts
{contacts}

## Urgency
{urgency}

## Reason
{reason}

## Athlete's Message
{message}"""
)


def get_response_format(intent: Optional[str]) -> str:
    """Response format for an intent; escalation and unknown intents use the general format."""
    return RESPONSE_FORMATS.get(intent or "general", RESPONSE_FORMATS["general"])


def get_tone_guidance(emotional_state: Optional[str]) -> str:
    guidance = EMOTIONAL_TONE_GUIDANCE.get(emotional_state or "neutral")
    return f"- {guidance}\n" if guidance else ""
