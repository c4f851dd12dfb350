"""Query orchestrator: the LangGraph state machine for one conversational turn.

The topology is plain data built from the feature flags (``build_topology``),
and the orchestrator compiles it against a ``Stage -> handler`` table. Each
handler takes the current ``ConversationState`` and returns a partial patch.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional, Tuple

import structlog
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from athlete_agent.errors import ConfigurationError
from athlete_agent.orchestrators.edges import (
    Stage,
    route_by_confidence,
    route_by_domain,
    route_by_quality,
)
from athlete_agent.orchestrators.feature_flags import FeatureFlags
from athlete_agent.schemas.agent_state import ConversationState

logger = structlog.get_logger(__name__)

StageHandler = Callable[[ConversationState], Awaitable[Dict[str, Any]]]
Router = Callable[[ConversationState], Stage]

DEFAULT_RECURSION_LIMIT = 25


@dataclass(frozen=True)
class Branch:
    router: Router
    targets: Tuple[Stage, ...]


@dataclass(frozen=True)
class Topology:
    """Stages, fixed edges and conditional branches of one graph variant.

    An edge target of ``None`` ends the turn.
    """

    stages: Tuple[Stage, ...]
    edges: Tuple[Tuple[Stage, Optional[Stage]], ...]
    branches: Mapping[Stage, Branch]
    entry: Stage = Stage.CLASSIFIER

    def successors(self, stage: Stage) -> Tuple[Optional[Stage], ...]:
        if stage in self.branches:
            return self.branches[stage].targets
        return tuple(target for source, target in self.edges if source == stage)


def build_topology(flags: FeatureFlags) -> Topology:
    """Lay the flagged variants over the base graph."""
    stages = [
        Stage.CLASSIFIER,
        Stage.CLARIFY,
        Stage.RETRIEVER,
        Stage.RESEARCHER,
        Stage.SYNTHESIZER,
        Stage.ESCALATE,
        Stage.CITATION_BUILDER,
        Stage.DISCLAIMER_GUARD,
    ]
    edges = [
        (Stage.CLARIFY, None),
        (Stage.RESEARCHER, Stage.SYNTHESIZER),
        (Stage.ESCALATE, Stage.CITATION_BUILDER),
        (Stage.CITATION_BUILDER, Stage.DISCLAIMER_GUARD),
        (Stage.DISCLAIMER_GUARD, None),
    ]
    branches: Dict[Stage, Branch] = {}

    retrieval_start = Stage.RETRIEVER
    if flags.query_planner:
        stages.append(Stage.QUERY_PLANNER)
        edges.append((Stage.QUERY_PLANNER, Stage.RETRIEVER))
        retrieval_start = Stage.QUERY_PLANNER

    branches[Stage.CLASSIFIER] = Branch(
        router=lambda state: route_by_domain(state, flags),
        targets=(Stage.CLARIFY, Stage.ESCALATE, retrieval_start),
    )

    after_retrieval = [Stage.SYNTHESIZER, Stage.RESEARCHER]
    if flags.retrieval_expansion:
        stages.append(Stage.RETRIEVAL_EXPANDER)
        after_retrieval.append(Stage.RETRIEVAL_EXPANDER)
        # The expander routes with expansion disallowed, so it runs at most once.
        branches[Stage.RETRIEVAL_EXPANDER] = Branch(
            router=lambda state: route_by_confidence(state, flags, allow_expansion=False),
            targets=(Stage.SYNTHESIZER, Stage.RESEARCHER),
        )
    branches[Stage.RETRIEVER] = Branch(
        router=lambda state: route_by_confidence(state, flags),
        targets=tuple(after_retrieval),
    )

    if flags.quality_checker:
        stages.append(Stage.QUALITY_CHECKER)
        edges.append((Stage.SYNTHESIZER, Stage.QUALITY_CHECKER))
        branches[Stage.QUALITY_CHECKER] = Branch(
            router=lambda state: route_by_quality(state, flags),
            targets=(Stage.CITATION_BUILDER, Stage.SYNTHESIZER),
        )
    else:
        edges.append((Stage.SYNTHESIZER, Stage.CITATION_BUILDER))

    return Topology(stages=tuple(stages), edges=tuple(edges), branches=branches)


def _timed(stage: Stage, handler: StageHandler) -> StageHandler:
    async def node(state: ConversationState) -> Dict[str, Any]:
        start_time = time.time()
        try:
            patch = await handler(state)
        except Exception as e:
            logger.error("Stage failed", stage=stage.value, error=str(e), trace_id=state.trace_id)
            raise
        logger.debug(
            "Stage finished",
            stage=stage.value,
            fields=sorted(patch or {}),
            duration_ms=round((time.time() - start_time) * 1000, 2),
            trace_id=state.trace_id,
        )
        return patch or {}

    node.__name__ = stage.value
    return node


class QueryOrchestrator:
    """Compiled routing graph for one feature-flag combination."""

    def __init__(
        self,
        handlers: Mapping[Stage, StageHandler],
        flags: Optional[FeatureFlags] = None,
        recursion_limit: int = DEFAULT_RECURSION_LIMIT,
    ):
        self.flags = flags or FeatureFlags()
        self.topology = build_topology(self.flags)
        self.recursion_limit = recursion_limit

        missing = [stage.value for stage in self.topology.stages if stage not in handlers]
        if missing:
            raise ConfigurationError(f"No handler registered for stages: {', '.join(missing)}")

        self.graph = self._build_graph(handlers)

    def _build_graph(self, handlers: Mapping[Stage, StageHandler]):
        """Build and compile the LangGraph state machine."""
        graph = StateGraph(ConversationState)

        for stage in self.topology.stages:
            graph.add_node(stage.value, _timed(stage, handlers[stage]))

        graph.set_entry_point(self.topology.entry.value)

        for source, target in self.topology.edges:
            graph.add_edge(source.value, END if target is None else target.value)

        for source, branch in self.topology.branches.items():
            graph.add_conditional_edges(
                source.value,
                lambda state, router=branch.router: router(state).value,
                {target.value: target.value for target in branch.targets},
            )

        compiled_graph = graph.compile()
        logger.info(
            "LangGraph orchestrator compiled",
            stages=[stage.value for stage in self.topology.stages],
            flags=self.flags.model_dump(),
        )
        return compiled_graph

    def _config(self, state: ConversationState) -> RunnableConfig:
        return RunnableConfig(
            recursion_limit=self.recursion_limit,
            run_name="athlete_agent_turn",
            metadata={"trace_id": state.trace_id, "conversation_id": state.conversation_id},
        )

    @staticmethod
    def _to_state(initial: ConversationState, values: Any) -> ConversationState:
        if isinstance(values, ConversationState):
            return values
        return ConversationState.model_validate({**dict(initial), **dict(values)})

    async def run(self, state: ConversationState) -> ConversationState:
        """Run the turn to a terminal stage and return the final state."""
        logger.info(
            "Starting turn orchestration",
            trace_id=state.trace_id,
            conversation_id=state.conversation_id,
            message_preview=state.current_message[:50],
        )
        result = self._to_state(state, await self.graph.ainvoke(state, config=self._config(state)))
        logger.info(
            "Turn orchestration completed",
            trace_id=state.trace_id,
            answer_length=len(result.answer or ""),
            citations=len(result.citations),
            escalated=result.escalation is not None,
        )
        return result

    async def astream(self, state: ConversationState) -> AsyncIterator[ConversationState]:
        """Yield the full state after each completed stage."""
        async for values in self.graph.astream(state, config=self._config(state), stream_mode="values"):
            yield self._to_state(state, values)
