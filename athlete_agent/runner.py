"""Agent runner: the public entry point for one conversational turn.

Owns the long-lived resources (HTTP pool, backends, model clients) and the
compiled orchestrator. ``invoke`` and ``stream`` enforce separate deadlines;
when a deadline passes the graph is cancelled, never left running.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
import time
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

import structlog

from athlete_agent.bm25_provider import BM25TextBackend
from athlete_agent.errors import AgentTimeoutError, ConfigurationError
from athlete_agent.llm.client import ChatModelClient, create_chat_client
from athlete_agent.nodes.clarify import ClarifyNode
from athlete_agent.nodes.classifier import ClassifierNode
from athlete_agent.nodes.escalation import EscalateNode
from athlete_agent.nodes.postprocess import CitationBuilderNode, DisclaimerGuardNode
from athlete_agent.nodes.quality_checker import QualityCheckerNode
from athlete_agent.nodes.query_planner import QueryPlannerNode
from athlete_agent.nodes.researcher import ResearcherNode
from athlete_agent.nodes.retrieval_expander import RetrievalExpanderNode
from athlete_agent.nodes.retriever import RetrieverNode
from athlete_agent.nodes.synthesizer import SynthesizerNode
from athlete_agent.orchestrators.edges import Stage
from athlete_agent.orchestrators.feature_flags import FeatureFlags
from athlete_agent.orchestrators.query_orchestrator import QueryOrchestrator, StageHandler
from athlete_agent.schemas.agent_state import ConversationState, TurnInput, TurnResult, create_initial_state
from athlete_agent.tools.retrieval_engine import HybridSearchConfig, HybridSearchGateway
from athlete_agent.tools.vector_store import MilvusVectorBackend, OpenAIEmbeddingClient, create_http_client
from athlete_agent.tools.web_search import TavilyWebSearch
from libs.common.resilience import CircuitBreaker
from libs.common.settings import Settings, get_settings

logger = structlog.get_logger(__name__)

CONVERSATION_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

Closer = Callable[[], Awaitable[None]]

_STREAM_END = object()


def sanitize_conversation_id(conversation_id: Optional[str]) -> Optional[str]:
    """Return the id if it matches the allow-pattern, otherwise None."""
    if conversation_id is None:
        return None
    if CONVERSATION_ID_PATTERN.match(conversation_id):
        return conversation_id
    logger.warning("Dropping malformed conversation id", length=len(conversation_id))
    return None


def build_handlers(
    settings: Settings,
    gateway: HybridSearchGateway,
    classifier_llm: ChatModelClient,
    synthesis_llm: ChatModelClient,
    web_search: Optional[TavilyWebSearch],
) -> Dict[Stage, StageHandler]:
    """Stage handler table covering every stage of every topology."""
    known_org_ids = settings.known_org_ids
    return {
        Stage.CLASSIFIER: ClassifierNode(classifier_llm, known_org_ids),
        Stage.CLARIFY: ClarifyNode(),
        Stage.QUERY_PLANNER: QueryPlannerNode(classifier_llm, known_org_ids),
        Stage.RETRIEVER: RetrieverNode(
            gateway,
            narrow_top_k=settings.narrow_top_k,
            broaden_top_k=settings.broaden_top_k,
            top_k=settings.retrieval_top_k,
        ),
        Stage.RETRIEVAL_EXPANDER: RetrievalExpanderNode(
            classifier_llm,
            gateway,
            broaden_top_k=settings.broaden_top_k,
            top_k=settings.retrieval_top_k,
        ),
        Stage.RESEARCHER: ResearcherNode(web_search, classifier_llm),
        Stage.SYNTHESIZER: SynthesizerNode(synthesis_llm),
        Stage.QUALITY_CHECKER: QualityCheckerNode(classifier_llm),
        Stage.ESCALATE: EscalateNode(synthesis_llm),
        Stage.CITATION_BUILDER: CitationBuilderNode(),
        Stage.DISCLAIMER_GUARD: DisclaimerGuardNode(),
    }


class AgentRunner:
    """Runs turns through the orchestrator under invoke and stream deadlines."""

    def __init__(
        self,
        orchestrator: QueryOrchestrator,
        invoke_timeout: float = 60.0,
        stream_timeout: float = 120.0,
        closers: Sequence[Closer] = (),
    ):
        self.orchestrator = orchestrator
        self.invoke_timeout = invoke_timeout
        self.stream_timeout = stream_timeout
        self._closers: List[Closer] = list(closers)
        self._closed = False

    @classmethod
    def create(cls, settings: Optional[Settings] = None) -> "AgentRunner":
        """Wire backends, model clients and stages from settings.

        Raises:
            ConfigurationError: if the vector store endpoint or the model API key is missing.
        """
        settings = settings or get_settings()
        if not settings.milvus_endpoint:
            raise ConfigurationError("ATHLETE_AGENT_MILVUS_ENDPOINT must be set")
        if not settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY must be set")

        http_client = create_http_client(
            max_connections=settings.http_pool_max_connections,
            timeout=settings.search_timeout_seconds,
        )
        vector_backend = MilvusVectorBackend(
            endpoint=settings.milvus_endpoint,
            token=settings.milvus_token,
            collection_name=settings.milvus_collection_name,
            embeddings=OpenAIEmbeddingClient(http_client, settings.openai_api_key, settings.embedding_model),
            client=http_client,
        )
        text_backend = BM25TextBackend(settings.bm25_corpus_path)
        gateway = HybridSearchGateway(
            vector_backend,
            text_backend,
            config=HybridSearchConfig(rrf_k=settings.rrf_k, vector_weight=settings.rrf_vector_weight),
            vector_breaker=CircuitBreaker(
                "vector_search",
                failure_threshold=settings.search_circuit_failure_threshold,
                reset_timeout=settings.search_circuit_reset_seconds,
            ),
            text_breaker=CircuitBreaker(
                "text_search",
                failure_threshold=settings.search_circuit_failure_threshold,
                reset_timeout=settings.search_circuit_reset_seconds,
            ),
        )

        def chat_client(name: str, model: str) -> ChatModelClient:
            return create_chat_client(
                name,
                model,
                settings.openai_api_key,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
                failure_threshold=settings.llm_circuit_failure_threshold,
                reset_timeout=settings.llm_circuit_reset_seconds,
            )

        web_search = TavilyWebSearch(settings.tavily_api_key) if settings.tavily_api_key else None
        if web_search is None:
            logger.warning("Tavily API key not configured, research stage will return no results")

        handlers = build_handlers(
            settings,
            gateway,
            classifier_llm=chat_client("classifier", settings.classifier_model),
            synthesis_llm=chat_client("synthesis", settings.synthesis_model),
            web_search=web_search,
        )
        orchestrator = QueryOrchestrator(handlers, FeatureFlags.from_settings(settings))

        logger.info(
            "Agent runner created",
            app_env=settings.app_env,
            collection=settings.milvus_collection_name,
            web_search=web_search is not None,
        )
        return cls(
            orchestrator,
            invoke_timeout=settings.invoke_timeout_seconds,
            stream_timeout=settings.stream_timeout_seconds,
            closers=[vector_backend.close, text_backend.close, http_client.aclose],
        )

    @staticmethod
    def build_initial_state(turn: TurnInput) -> ConversationState:
        return create_initial_state(
            messages=turn.messages,
            conversation_id=sanitize_conversation_id(turn.conversation_id),
            user_sport=turn.user_sport,
            conversation_summary=turn.conversation_summary,
        )

    async def invoke(self, turn: TurnInput) -> TurnResult:
        """Run a turn to completion.

        Raises:
            AgentTimeoutError: if the turn exceeds the invoke deadline. The graph is cancelled.
        """
        state = self.build_initial_state(turn)
        start_time = time.time()
        try:
            final = await asyncio.wait_for(self.orchestrator.run(state), timeout=self.invoke_timeout)
        except asyncio.TimeoutError:
            logger.error("Turn timed out", timeout=self.invoke_timeout, trace_id=state.trace_id)
            raise AgentTimeoutError("invoke", self.invoke_timeout) from None

        logger.info(
            "Turn completed",
            duration_ms=round((time.time() - start_time) * 1000, 2),
            trace_id=state.trace_id,
        )
        return TurnResult(answer=final.answer or "", citations=final.citations, escalation=final.escalation)

    async def stream(self, turn: TurnInput) -> AsyncIterator[ConversationState]:
        """Yield a state snapshot after each completed stage.

        The graph runs in a producer task feeding a one-slot queue, so it is
        at most one stage ahead of the consumer. Closing the iterator early or
        exceeding the stream deadline cancels the producer.
        """
        state = self.build_initial_state(turn)
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)

        async def produce() -> None:
            try:
                async with contextlib.aclosing(self.orchestrator.astream(state)) as snapshots:
                    async for snapshot in snapshots:
                        await queue.put(snapshot)
            except Exception as e:
                await queue.put(e)
            else:
                await queue.put(_STREAM_END)

        producer = asyncio.create_task(produce())
        deadline = loop.time() + self.stream_timeout
        stopped_by_consumer = True
        try:
            while True:
                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise asyncio.TimeoutError
                    item = await asyncio.wait_for(queue.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    stopped_by_consumer = False
                    logger.error("Stream timed out", timeout=self.stream_timeout, trace_id=state.trace_id)
                    raise AgentTimeoutError("stream", self.stream_timeout) from None
                if item is _STREAM_END:
                    stopped_by_consumer = False
                    break
                if isinstance(item, Exception):
                    stopped_by_consumer = False
                    raise item
                yield item
        finally:
            if not producer.done():
                producer.cancel()
            if stopped_by_consumer:
                logger.info("Stream ended early, graph cancelled", trace_id=state.trace_id)
            with contextlib.suppress(asyncio.CancelledError):
                await producer

    async def close(self) -> None:
        """Release pooled resources. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        for closer in self._closers:
            try:
                await closer()
            except Exception as e:
                logger.warning("Failed to release resource", error=str(e))
        logger.info("Agent runner closed")
