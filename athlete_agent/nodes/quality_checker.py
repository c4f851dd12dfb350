"""Quality checker stage: score the synthesized answer, fail open on errors."""

from __future__ import annotations

import time
from typing import Any, Dict, List

import structlog
from langsmith import traceable

from athlete_agent.composer.prompts import QUALITY_CHECKER_TEMPLATE
from athlete_agent.llm.client import ChatModelClient, parse_json_response
from athlete_agent.nodes.synthesizer import FALLBACK_ANSWERS, format_documents
from athlete_agent.schemas.agent_state import ConversationState, QualityCheckResult, QualityIssue
from libs.common.resilience import CircuitOpenError

logger = structlog.get_logger(__name__)

PASS_THRESHOLD = 0.6

PASS_RESULT = QualityCheckResult(passed=True, score=1.0, issues=[], critique="")


def evaluate_quality(parsed: Any, pass_threshold: float = PASS_THRESHOLD) -> QualityCheckResult:
    """Build a verdict from the model's JSON.

    The answer passes only with a score at or above the threshold and no
    critical issue; the model's own ``passed`` field is not trusted.
    """
    if not isinstance(parsed, dict):
        raise ValueError("Quality checker response is not a JSON object")

    score = float(parsed.get("score", 0.0))
    score = max(0.0, min(1.0, score))

    issues: List[QualityIssue] = []
    for item in parsed.get("issues") or []:
        if not isinstance(item, dict):
            continue
        severity = item.get("severity")
        issues.append(
            QualityIssue(
                type=str(item.get("type", "unspecified")),
                description=str(item.get("description", "")),
                severity=severity if severity in ("critical", "major", "minor") else "minor",
            )
        )

    has_critical = any(issue.severity == "critical" for issue in issues)
    critique = parsed.get("critique")
    return QualityCheckResult(
        passed=score >= pass_threshold and not has_critical,
        score=score,
        issues=issues,
        critique=critique if isinstance(critique, str) else "",
    )


class QualityCheckerNode:
    """Graph stage gating synthesis output."""

    def __init__(self, llm: ChatModelClient, pass_threshold: float = PASS_THRESHOLD):
        self.llm = llm
        self.pass_threshold = pass_threshold

    @traceable(run_type="chain", name="quality_checker", tags=["quality"])
    async def __call__(self, state: ConversationState) -> Dict[str, Any]:
        start_time = time.time()
        answer = state.answer
        if not answer or answer in FALLBACK_ANSWERS or not state.current_message:
            return {"quality_check_result": PASS_RESULT}

        prompt = QUALITY_CHECKER_TEMPLATE.format(
            question=state.current_message,
            intent=state.query_intent or "general",
            context=format_documents(state.retrieved_documents),
            answer=answer,
        )

        try:
            result = evaluate_quality(parse_json_response(await self.llm.invoke(prompt)), self.pass_threshold)
        except CircuitOpenError:
            logger.warning("quality_checker circuit open, passing through", trace_id=state.trace_id)
            return {"quality_check_result": PASS_RESULT}
        except Exception as e:
            logger.warning("quality_checker failed, passing through", error=str(e), trace_id=state.trace_id)
            return {"quality_check_result": PASS_RESULT}

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "quality_checker completed",
            passed=result.passed,
            score=result.score,
            issues=len(result.issues),
            retry_count=state.quality_retry_count,
            duration_ms=round(duration_ms, 2),
            trace_id=state.trace_id,
        )
        return {"quality_check_result": result}
