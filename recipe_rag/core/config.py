from functools import lru_cache
from pathlib import Path
from typing import Literal
from urllib.parse import urlsplit

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

from recipe_rag.core.exceptions import ConfigurationError


# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    # Server / store location
    server_url: str = Field("http://localhost:8000", description="URL the server binds to and the client targets.")
    db_path: Path | None = Field(default=None, description="Persisted index store file.")
    input_path: Path = Field(Path("data/recipes.parquet"), description="Raw rows read by the ingestion job.")

    # Schema
    column_id: str | None = Field(default=None, description="Column holding unique document ids.")
    column_text: str | None = Field(default=None, description="Column holding the text to embed and search.")

    # Generation
    llm_provider: Literal["openai", "local"] = "openai"
    openai_api_key: str | None = None
    llm_base_url: str | None = Field(default=None, description="OpenAI-compatible endpoint for generation.")
    ai_model: str = Field("gpt-4.1-mini", description="Generation model, echoed in responses.")
    llm_temperature: float | None = None
    model_context_window: int | None = Field(default=None, gt=0, description="Token budget for the prompt.")
    answer_token_reserve: int = Field(512, ge=0, description="Tokens kept free for the answer.")
    generation_timeout: float = Field(20.0, gt=0, description="Seconds before one generation attempt is abandoned.")
    llm_max_retries: int = Field(1, ge=0, description="Retries performed by the provider client.")

    # Embeddings
    embedding_provider: Literal["openai", "local"] = "openai"
    embedding_model: str = Field("text-embedding-3-small")
    embedding_base_url: str | None = Field(default=None, description="OpenAI-compatible endpoint for embeddings.")
    embedding_batch_size: int = Field(100, gt=0)
    embedding_context_window: int | None = Field(default=None, gt=0, description="Token limit of the embedding model.")
    local_embedding_dim: int = Field(384, gt=0)

    # Retrieval
    vector_metric: Literal["cosine", "l2"] = "cosine"
    hybrid_vector_weight: float = Field(0.5, ge=0.0, le=1.0)
    candidate_multiplier: int = Field(4, ge=1)
    default_nb_results: int = Field(10, gt=0)

    log_level: str = "INFO"

    @property
    def bind_address(self) -> tuple[str, int]:
        parts = urlsplit(self.server_url if "//" in self.server_url else f"//{self.server_url}")
        return parts.hostname or "localhost", parts.port or 8000

    @property
    def generation_time_bound(self) -> float:
        """Worst-case seconds one answer may wait on the provider, retries included."""
        return self.generation_timeout * (self.llm_max_retries + 1)

    def require(self, *names: str) -> "Settings":
        """
        Fail fast when settings needed by an entry point are not configured.
        """
        missing = [name.upper() for name in names if getattr(self, name) in (None, "")]
        if missing:
            raise ConfigurationError(f"{', '.join(missing)} must be set")
        return self


@lru_cache()
def get_settings() -> Settings:
    """
    Cached application settings loaded from environment / .env.
    """
    return Settings()
