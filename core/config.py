"""Runtime configuration.

Settings come from the process environment, with a repo-root .env file
loaded first when present.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


DEFAULT_DB_PATH = REPO_ROOT / "doc_ingest.db"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Ingestion settings.

    Attributes:
        db_path: SQLite database for registries, business records and history
        openai_api_key: Key for the extraction model
        model: Extraction model name
        extraction_timeout_s: Per-call timeout for the extraction model
        max_ocr_pages: Pages rendered to images when a PDF has no text layer
        batch_concurrency: Concurrent extraction calls per batch
        auto_commit_confidence: Minimum confidence for unattended commits
        log_json: Emit JSON log lines instead of human-readable ones
        temporal_endpoint / temporal_namespace / temporal_api_key: Temporal connection
    """
    db_path: Path = DEFAULT_DB_PATH
    openai_api_key: Optional[str] = None
    model: str = "gpt-4o"
    extraction_timeout_s: float = 120.0
    max_ocr_pages: int = 3
    batch_concurrency: int = 3
    auto_commit_confidence: float = 0.85
    log_json: bool = False
    temporal_endpoint: Optional[str] = None
    temporal_namespace: str = "default"
    temporal_api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        db_path = os.getenv("INGEST_DB_PATH")
        return cls(
            db_path=Path(db_path) if db_path else DEFAULT_DB_PATH,
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            model=os.getenv("INGEST_MODEL", "gpt-4o"),
            extraction_timeout_s=float(os.getenv("INGEST_EXTRACTION_TIMEOUT_S", "120")),
            max_ocr_pages=int(os.getenv("INGEST_MAX_OCR_PAGES", "3")),
            batch_concurrency=int(os.getenv("INGEST_BATCH_CONCURRENCY", "3")),
            auto_commit_confidence=float(os.getenv("INGEST_AUTO_COMMIT_CONFIDENCE", "0.85")),
            log_json=_env_bool("INGEST_LOG_JSON"),
            temporal_endpoint=os.getenv("TEMPORAL_ENDPOINT"),
            temporal_namespace=os.getenv("TEMPORAL_NAMESPACE", "default"),
            temporal_api_key=os.getenv("TEMPORAL_API_KEY"),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get process-wide settings (loaded once)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
