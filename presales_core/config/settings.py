"""Application settings loaded from environment variables via pydantic-settings.

Values come from (highest priority first): environment variables, the
``.env`` file in the working directory, the optional YAML file passed to
:func:`presales_core.config.loader.load_config`, and the defaults below.
Field ``chunk_max_chars`` maps to env var ``CHUNK_MAX_CHARS`` and so on.

Defaults worth knowing:

- chunks are at most 1000 characters with a 100 character overlap,
- embeddings are 1536-dimensional, sent 16 texts per request with at most
  4 requests in flight,
- every collaborator call times out after 60 seconds,
- a case-study validation score below 0.7 triggers the enhancement stage.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """presales-core settings.

    Environment variables override defaults.  Loaded from .env when present.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # === Application ===
    app_env: str = "development"
    log_level: str = "INFO"

    # === AI inference ===
    # Empty key = "not configured"; main.py refuses to build the OpenAI
    # providers without one.
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_text_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    # Azure OpenAI: when an endpoint is set the Azure client is used and the
    # model names above are read as deployment names.
    azure_openai_endpoint: str = ""
    azure_openai_api_version: str = "2024-06-01"

    # === Chunking ===
    chunk_max_chars: int = 1000
    chunk_overlap_chars: int = 100

    # === Embedding ===
    embedding_dimension: int = 1536
    embedding_batch_size: int = 16
    embedding_max_concurrency: int = 4

    # === Timeouts ===
    collaborator_timeout_seconds: float = 60.0

    # === Search index ===
    chromadb_persist_dir: str = "./data/chromadb"
    search_index_name: str = "presales-documents"
    hybrid_candidate_multiplier: int = 3

    # === Case study ===
    case_study_acceptance_threshold: float = 0.7

    # === Summaries ===
    summary_max_input_chars: int = 100_000
    summary_max_tokens: int = 1000

    # === Storage ===
    blob_root_dir: str = "./data/blobs"
    blob_signing_secret: str = ""
    blob_signed_url_base: str = "http://localhost:8080/blobs"
    sqlite_db_path: str = "data/presales_core.db"

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.chunk_max_chars <= 0:
            raise ValueError("chunk_max_chars must be positive")
        if not 0 <= self.chunk_overlap_chars < self.chunk_max_chars:
            raise ValueError("chunk_overlap_chars must be >= 0 and smaller than chunk_max_chars")
        if self.embedding_dimension <= 0:
            raise ValueError("embedding_dimension must be positive")
        if self.embedding_batch_size <= 0 or self.embedding_max_concurrency <= 0:
            raise ValueError("embedding batch size and concurrency must be positive")
        if not 0.0 <= self.case_study_acceptance_threshold <= 1.0:
            raise ValueError("case_study_acceptance_threshold must be within [0.0, 1.0]")
        if self.hybrid_candidate_multiplier < 1:
            raise ValueError("hybrid_candidate_multiplier must be at least 1")
        return self

    def uses_azure_openai(self) -> bool:
        return bool(self.azure_openai_endpoint)
