"""Application settings for the athlete support agent (Milvus + BM25 + OpenAI)."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide settings, read once from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="ATHLETE_AGENT_",
        env_file=None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core application settings
    app_env: Literal["development", "test", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # CORS - use string to avoid JSON parsing issues
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("cors_origins", "ATHLETE_AGENT_CORS_ORIGINS"),
    )

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from string."""
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    # Language models
    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "openai_api_key", "ATHLETE_AGENT_OPENAI_API_KEY", "OPENAI_API_KEY"
        ),
    )
    classifier_model: str = "gpt-4o-mini"
    synthesis_model: str = "gpt-4o"
    llm_temperature: float = 0.1
    llm_max_tokens: int = 2000
    llm_circuit_failure_threshold: int = Field(default=5, ge=1)
    llm_circuit_reset_seconds: float = Field(default=30.0, gt=0)

    # Vector store (Milvus HTTP API)
    milvus_endpoint: Optional[str] = None
    milvus_token: Optional[str] = None
    milvus_collection_name: str = "athlete_support_chunks"
    embedding_model: str = "text-embedding-3-small"
    http_pool_max_connections: int = Field(default=20, ge=1)
    search_timeout_seconds: float = Field(default=10.0, gt=0)
    search_circuit_failure_threshold: int = Field(default=5, ge=1)
    search_circuit_reset_seconds: float = Field(default=30.0, gt=0)

    # Full-text store
    bm25_corpus_path: str = "data/processed/chunks.jsonl"

    # Web search
    tavily_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "tavily_api_key", "ATHLETE_AGENT_TAVILY_API_KEY", "TAVILY_API_KEY"
        ),
    )

    # RAG configuration
    narrow_top_k: int = Field(default=5, ge=1)
    broaden_top_k: int = Field(default=10, ge=1)
    retrieval_top_k: int = Field(default=10, ge=1)
    rrf_k: int = Field(default=60, ge=1)
    rrf_vector_weight: float = Field(default=0.5, ge=0.0, le=1.0)

    # Runner deadlines
    invoke_timeout_seconds: float = Field(default=60.0, gt=0)
    stream_timeout_seconds: float = Field(default=120.0, gt=0)

    # Feature flags (graph topology)
    feature_quality_checker: bool = True
    feature_retrieval_expansion: bool = True
    feature_query_planner: bool = True
    feature_parallel_research: bool = True

    # Comma-separated override of the recognized organization ids
    known_org_ids_str: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("known_org_ids", "ATHLETE_AGENT_KNOWN_ORG_IDS"),
    )

    @field_validator("milvus_endpoint")
    @classmethod
    def validate_milvus_endpoint(cls, v: Optional[str]) -> Optional[str]:
        """Milvus Cloud only serves the HTTP API over TLS."""
        if v and not v.startswith("https://"):
            raise ValueError("Milvus endpoint must be an https:// URL")
        return v

    @property
    def known_org_ids(self) -> Optional[List[str]]:
        """Parse the organization id override, None when not configured."""
        if not self.known_org_ids_str or not self.known_org_ids_str.strip():
            return None
        return [org.strip().lower() for org in self.known_org_ids_str.split(",") if org.strip()]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
