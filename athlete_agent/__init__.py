"""Athlete support agent service.

This package contains the conversation-routing graph and the hybrid
retrieval engine behind the athlete support assistant.

Main components:
- runner.py: AgentRunner, the invoke/stream/close entry point
- orchestrators/: LangGraph topology and routing edges
- nodes/: graph stages (classifier, planner, retriever, synthesis, ...)
- tools/: rank fusion, authority reranking, hybrid search gateway, backends
- main.py: FastAPI application exposing the runner over HTTP
"""

# Avoid importing heavy modules (e.g., FastAPI app) at package import time.
__all__ = []
