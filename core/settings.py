"""Environment configuration for the deduplication service.

Reads a `.env` file at the repo root if present, then environment variables:
- DEDUP_DB_PATH: SQLite database for configs, matches, reviews and audit entries
- DEDUP_LOG_LEVEL: DEBUG/INFO/WARNING/ERROR (default INFO)
- DEDUP_LOG_JSON: "true" for JSON log lines (default human-readable)
- DEDUP_TASK_QUEUE: Temporal task queue (default "dedup-default")
- DEDUP_MAX_CONCURRENCY: parallel pair evaluations per batch (default 8)
- DEDUP_METRICS_DB_PATH: optional SQLite file for metric snapshots
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


@dataclass
class Settings:
    """Resolved service settings."""
    db_path: Path
    log_level: int
    log_json: bool
    task_queue: str
    max_concurrency: int
    metrics_db_path: Optional[Path] = None


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


_settings: Optional[Settings] = None


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    level_name = os.getenv("DEDUP_LOG_LEVEL", "INFO").upper()
    metrics_path = os.getenv("DEDUP_METRICS_DB_PATH")

    return Settings(
        db_path=Path(os.getenv("DEDUP_DB_PATH", str(REPO_ROOT / "deduplication.db"))),
        log_level=getattr(logging, level_name, logging.INFO),
        log_json=_env_bool("DEDUP_LOG_JSON"),
        task_queue=os.getenv("DEDUP_TASK_QUEUE", "dedup-default"),
        max_concurrency=max(1, int(os.getenv("DEDUP_MAX_CONCURRENCY", "8"))),
        metrics_db_path=Path(metrics_path) if metrics_path else None,
    )


def get_settings() -> Settings:
    """Get cached settings (loaded on first use)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
