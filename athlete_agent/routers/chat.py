"""Chat endpoints: blocking and Server-Sent Events streaming turns."""

from __future__ import annotations

import time
import uuid
from typing import Any, AsyncGenerator, Dict, Optional

import orjson
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import ORJSONResponse, StreamingResponse

from athlete_agent.errors import AgentTimeoutError
from athlete_agent.models import ErrorResponse, HealthResponse
from athlete_agent.runner import AgentRunner
from athlete_agent.schemas.agent_state import ConversationState, TurnInput, TurnResult, snapshot_fields

logger = structlog.get_logger(__name__)

router = APIRouter()

TIMEOUT_MESSAGE = "Your question could not be answered in time. Please try again."
SERVICE_VERSION = "0.1.0"


def get_runner(request: Request) -> AgentRunner:
    runner: Optional[AgentRunner] = getattr(request.app.state, "runner", None)
    if runner is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Agent is not ready",
        )
    return runner


def _sse(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {orjson.dumps(data).decode()}\n\n"


@router.get("/healthz", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe; reports whether the runner has been created."""
    ready = getattr(request.app.state, "runner", None) is not None
    return HealthResponse(
        status="healthy",
        service="athlete-agent",
        version=SERVICE_VERSION,
        details={"runner": "ready" if ready else "not_ready"},
    )


@router.post(
    "/v1/chat",
    response_model=TurnResult,
    responses={504: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["Chat"],
)
async def chat(turn: TurnInput, runner: AgentRunner = Depends(get_runner)):
    """Answer one conversational turn.

    Returns:
        TurnResult with the answer, citations and an optional escalation.
    """
    request_id = f"req_{uuid.uuid4().hex[:12]}"
    start_time = time.time()
    try:
        result = await runner.invoke(turn)
    except AgentTimeoutError as e:
        logger.warning("Chat turn timed out", request_id=request_id, timeout=e.timeout)
        return ORJSONResponse(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            content=ErrorResponse(error="AGENT_TIMEOUT", message=TIMEOUT_MESSAGE, request_id=request_id).model_dump(),
        )
    except Exception as e:
        logger.error("Chat turn failed", request_id=request_id, error=str(e), exc_info=True)
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                message="Internal server error. Please try again later.",
                request_id=request_id,
            ).model_dump(),
        )

    logger.info(
        "Chat turn completed",
        request_id=request_id,
        citations=len(result.citations),
        escalated=result.escalation is not None,
        response_time_ms=int((time.time() - start_time) * 1000),
    )
    return result


@router.post("/v1/chat/stream", tags=["Chat"])
async def chat_stream(turn: TurnInput, runner: AgentRunner = Depends(get_runner)) -> StreamingResponse:
    """Stream one turn as Server-Sent Events.

    Events:
        snapshot: client-relevant state after each completed stage
        final: answer, citations and escalation of the finished turn
        error: the turn timed out or failed
    """
    request_id = f"req_{uuid.uuid4().hex[:12]}"

    async def generate_sse_stream() -> AsyncGenerator[str, None]:
        start_time = time.time()
        last: Optional[ConversationState] = None
        try:
            async for snapshot in runner.stream(turn):
                last = snapshot
                yield _sse("snapshot", snapshot_fields(snapshot))
        except AgentTimeoutError:
            logger.warning("Chat stream timed out", request_id=request_id)
            yield _sse("error", {"request_id": request_id, "error": "AGENT_TIMEOUT", "message": TIMEOUT_MESSAGE})
            return
        except Exception as e:
            logger.error("Chat stream failed", request_id=request_id, error=str(e))
            yield _sse(
                "error",
                {"request_id": request_id, "error": "INTERNAL_ERROR", "message": "Please try again later"},
            )
            return

        final = TurnResult(
            answer=(last.answer if last else None) or "",
            citations=last.citations if last else [],
            escalation=last.escalation if last else None,
        )
        payload = final.model_dump(mode="json")
        payload["request_id"] = request_id
        payload["processing_time_ms"] = int((time.time() - start_time) * 1000)
        yield _sse("final", payload)

    return StreamingResponse(
        generate_sse_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
