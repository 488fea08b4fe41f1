"""
manualbot - Centralized Configuration
======================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Providers
---------
``LLM_PROVIDER`` selects the backend used by every demo:
  • ``"ollama"`` → local Ollama server (default, no credentials needed).
  • ``"gemini"`` → Google AI Studio through LangChain.

Security
--------
- ``GOOGLE_API_KEY`` is typed as ``SecretStr``.  It is only *required*
  when ``LLM_PROVIDER="gemini"``; a model validator fails fast with a
  clear ``ValidationError`` otherwise.  The raw value is never exposed
  in repr, logs, or tracebacks.

Paths
-----
All filesystem paths are ``Path.resolve()``-d at class level so they
work identically on Windows, WSL, and Linux.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``).

    Attributes
    ----------
    ENV : Literal["dev", "prod"]
        Environment mode controlling logging verbosity.
    LLM_PROVIDER : Literal["ollama", "gemini"]
        Backend for chat, vision and embeddings.
    GOOGLE_API_KEY : SecretStr | None
        API key for Google AI Studio.  Required for the gemini provider.
    LLM_MODEL : str
        Gemini chat model identifier.
    EMBEDDING_MODEL : str
        Gemini embedding model identifier.
    OLLAMA_BASE_URL : str
        Base URL of the Ollama server.
    OLLAMA_CHAT_MODEL, OLLAMA_VISION_MODEL, OLLAMA_EMBEDDING_MODEL : str
        Ollama model tags for chat, image input and embeddings.
    MANUALS_COLLECTION : str
        LanceDB table holding the product manual extracts.
    SEARCH_RESULTS_LIMIT : int
        Number of manual extracts injected into each RAG prompt.
    RATE_LIMIT_WINDOW_SECONDS : float
        Fixed window used by the rate-limit middleware.
    REPLY_LANGUAGE : str | None
        When set, the forced-language middleware is added to the pipeline.
    MAX_TOOL_ROUNDS : int
        Upper bound on model ↔ tool round trips per request.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    PRODUCTS_FILE: Path = DATA_DIR / "products.json"
    MANUAL_CHUNKS_FILE: Path = DATA_DIR / "manual-chunks.json"
    TRAFFIC_CAM_DIR: Path = DATA_DIR / "traffic-cam"
    LANCEDB_PATH: Path = DATA_DIR / "lancedb"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"

    # ── Provider Selection ─────────────────────────────────────────────
    LLM_PROVIDER: Literal["ollama", "gemini"] = "ollama"

    # ── Gemini ─────────────────────────────────────────────────────────
    GOOGLE_API_KEY: SecretStr | None = None
    LLM_MODEL: str = "gemini-2.0-flash"
    EMBEDDING_MODEL: str = "gemini-embedding-001"
    LLM_TEMPERATURE: float = 0.3

    # ── Ollama ─────────────────────────────────────────────────────────
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_CHAT_MODEL: str = "llama3.2"
    OLLAMA_VISION_MODEL: str = "llava"
    OLLAMA_EMBEDDING_MODEL: str = "nomic-embed-text"

    # ── Retrieval ──────────────────────────────────────────────────────
    MANUALS_COLLECTION: str = "manuals"
    SEARCH_RESULTS_LIMIT: int = 3
    EMBED_BATCH_SIZE: int = 64

    # ── Middleware ─────────────────────────────────────────────────────
    RATE_LIMIT_WINDOW_SECONDS: float = 5.0
    REPLY_LANGUAGE: str | None = None
    MAX_TOOL_ROUNDS: int = 5

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("SEARCH_RESULTS_LIMIT", "EMBED_BATCH_SIZE", "MAX_TOOL_ROUNDS")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be ≥ 1, got {v}")
        return v


    @field_validator("RATE_LIMIT_WINDOW_SECONDS")
    @classmethod
    def _window_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"RATE_LIMIT_WINDOW_SECONDS must be > 0, got {v}")
        return v


    @model_validator(mode="after")
    def _gemini_needs_key(self) -> "Settings":
        if self.LLM_PROVIDER == "gemini" and (self.GOOGLE_API_KEY is None or not self.GOOGLE_API_KEY.get_secret_value()):
            raise ValueError("GOOGLE_API_KEY is required when LLM_PROVIDER='gemini'")
        return self

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from manualbot.config.settings import settings
settings = Settings()
