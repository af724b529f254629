"""Initialize the deduplication database.

Creates every table and, with --tenant, seeds an active default
DeduplicationConfig for that tenant if it has none.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.settings import get_settings
from dedup_config.models import DeduplicationConfig
from dedup_config.store import SQLiteConfigStore
from dedup_engine.store import init_match_db


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def init_database(db_path: Path, tenant_id: str = None) -> None:
    """Create tables at db_path and optionally seed a tenant default config."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    init_match_db(db_path)
    store = SQLiteConfigStore(db_path)
    logger.info(f"Tables ready in {db_path}")

    if tenant_id:
        if store.list_configs(tenant_id, active_only=True):
            logger.info(f"Tenant {tenant_id} already has an active config")
            return
        config = store.save_config(DeduplicationConfig(tenant_id=tenant_id))
        logger.info(f"Seeded default config {config.id} for tenant {tenant_id}")


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Initialize the deduplication database")
    parser.add_argument("--db", type=Path, default=None, help="Database path (default: DEDUP_DB_PATH)")
    parser.add_argument("--tenant", default=None, help="Seed a default config for this tenant")
    args = parser.parse_args()

    init_database(args.db or get_settings().db_path, args.tenant)
    return 0


if __name__ == "__main__":
    sys.exit(main())
