"""Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env")

    anthropic_api_key: str = ""
    ai_model: str = "claude-sonnet-4-5"
    llm_max_turns: int = 1
    debug: bool = False

    # Guideline store / Qdrant
    qdrant_url: str = "http://localhost:6333"
    qdrant_collection: str = "therapeutic_guidelines"
    qdrant_api_key: str = ""
    # ":memory:" runs Qdrant in-process (local dev, tests)
    qdrant_location: str = ""
    store_insert_batch_size: int = 50
    query_cache_enabled: bool = True
    query_cache_ttl_seconds: float = 300.0

    # Google AI Embeddings
    # Set GOOGLE_API_KEY for API key auth, otherwise uses Vertex AI ADC.
    google_api_key: str = ""
    gcp_project_id: str = ""
    gcp_location: str = "us-central1"
    embedding_model: str = "gemini-embedding-001"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 100

    # RAG pipeline
    rag_max_chunks: int = 10
    rag_relevance_threshold: float = 50.0
    rag_chunk_preview_chars: int = 500
    rag_concurrent_generation: bool = True
    essential_info_threshold: float = 0.7

    # Agentic refinement loop
    agent_max_iterations: int = 3
    agent_confidence_threshold: float = 80.0


settings = Settings()
