"""Application settings loaded from environment variables via pydantic-settings.

Values are resolved in priority order:

  1. Environment variables, e.g. ``OPENAI_API_KEY=sk-abc123``
  2. ``.env`` file in the working directory
  3. The defaults declared below

Field ``chunk_size`` maps to ``CHUNK_SIZE``, ``db_path`` to ``DB_PATH`` and so on.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """LoreKeeper application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Relational store ===
    db_path: str = "data/knowledge.db"

    # === Vector store ===
    vector_store: str = "chromadb"  # "chromadb" or "memory"
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection_prefix: str = "lorekeeper"
    vector_upsert_batch_size: int = 100
    search_default_limit: int = 5
    search_min_score: float = 0.7

    # === Chunking ===
    chunk_size: int = 500  # tokens per fragment
    chunk_overlap: int = 50  # tokens shared by consecutive fragments
    chars_per_token: int = 4

    # === Embedding ===
    # "auto" tries OpenAI when a key is present, then Nomic via Ollama.
    embedding_provider: str = "auto"
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoints (TogetherAI, etc.)
    openai_embedding_model: str = ""
    ollama_base_url: str = "http://localhost:11434"
    embedding_batch_size: int = 100
    embedding_max_input_tokens: int = 2048

    # === Lifecycle ===
    stale_after_days: int = 30

    # === Events ===
    event_queue_size: int = 100  # events buffered for a consumer before new ones are dropped

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_embedding_providers(self) -> list[str]:
        """Return embedding provider names that have the configuration they need."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.ollama_base_url:
            providers.append("nomic")
        return providers
