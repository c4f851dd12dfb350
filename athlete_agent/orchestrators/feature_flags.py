"""Immutable feature flags selecting the graph topology."""

from __future__ import annotations

from pydantic import BaseModel

from libs.common.settings import Settings


class FeatureFlags(BaseModel):
    """Topology switches. The default instance is the base graph with every variant off."""

    quality_checker: bool = False
    retrieval_expansion: bool = False
    query_planner: bool = False
    parallel_research: bool = False

    class Config:
        frozen = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeatureFlags":
        return cls(
            quality_checker=settings.feature_quality_checker,
            retrieval_expansion=settings.feature_retrieval_expansion,
            query_planner=settings.feature_query_planner,
            parallel_research=settings.feature_parallel_research,
        )

    @classmethod
    def all_enabled(cls) -> "FeatureFlags":
        return cls(quality_checker=True, retrieval_expansion=True, query_planner=True, parallel_research=True)
