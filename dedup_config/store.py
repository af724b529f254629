"""Configuration store - tenant-scoped CRUD for configs and dealer rules.

ConfigStore is the configuration collaborator the resolver reads from.
SQLiteConfigStore keeps identity/filter columns in their own columns (for
indexed lookups) and the full model as a JSON payload.
"""

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from core.errors import CollaboratorUnavailableError, RuleNotFoundError
from dedup_config.models import DealerDeduplicationRule, DeduplicationConfig


class ConfigStore(ABC):
    """Abstract configuration store."""

    # Configs

    @abstractmethod
    def save_config(self, config: DeduplicationConfig) -> DeduplicationConfig:
        pass

    @abstractmethod
    def get_config(self, tenant_id: str, config_id: str) -> Optional[DeduplicationConfig]:
        pass

    @abstractmethod
    def list_configs(self, tenant_id: str, active_only: bool = False) -> List[DeduplicationConfig]:
        pass

    # Rules

    @abstractmethod
    def save_rule(self, rule: DealerDeduplicationRule) -> DealerDeduplicationRule:
        pass

    @abstractmethod
    def get_rule(self, tenant_id: str, rule_id: str) -> Optional[DealerDeduplicationRule]:
        pass

    @abstractmethod
    def list_rules(
        self,
        tenant_id: str,
        dealer_id: Optional[str] = None,
        active_only: bool = False,
    ) -> List[DealerDeduplicationRule]:
        pass

    @abstractmethod
    def delete_rule(self, tenant_id: str, rule_id: str) -> bool:
        pass

    @abstractmethod
    def record_rule_application(self, tenant_id: str, rule_id: str, applied_at: datetime) -> None:
        """Increment times_applied and set last_applied_at.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        pass


# =============================================================================
# In-memory
# =============================================================================

class InMemoryConfigStore(ConfigStore):
    """Dict-backed store for tests and single-process use."""

    def __init__(self):
        self._configs: Dict[str, DeduplicationConfig] = {}
        self._rules: Dict[str, DealerDeduplicationRule] = {}
        self._lock = Lock()

    def save_config(self, config):
        with self._lock:
            self._configs[config.id] = config.model_copy(deep=True)
        return config

    def get_config(self, tenant_id, config_id):
        config = self._configs.get(config_id)
        if config is None or config.tenant_id != tenant_id:
            return None
        return config.model_copy(deep=True)

    def list_configs(self, tenant_id, active_only=False):
        return [
            c.model_copy(deep=True) for c in list(self._configs.values())
            if c.tenant_id == tenant_id and (c.is_active or not active_only)
        ]

    def save_rule(self, rule):
        with self._lock:
            self._rules[rule.id] = rule.model_copy(deep=True)
        return rule

    def get_rule(self, tenant_id, rule_id):
        rule = self._rules.get(rule_id)
        if rule is None or rule.tenant_id != tenant_id:
            return None
        return rule.model_copy(deep=True)

    def list_rules(self, tenant_id, dealer_id=None, active_only=False):
        return [
            r.model_copy(deep=True) for r in list(self._rules.values())
            if r.tenant_id == tenant_id
            and (dealer_id is None or r.dealer_id == dealer_id)
            and (r.is_active or not active_only)
        ]

    def delete_rule(self, tenant_id, rule_id):
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None or rule.tenant_id != tenant_id:
                return False
            del self._rules[rule_id]
            return True

    def record_rule_application(self, tenant_id, rule_id, applied_at):
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None or rule.tenant_id != tenant_id:
                raise RuleNotFoundError(f"Dealer rule {rule_id} not found")
            rule.record_application(applied_at)


# =============================================================================
# SQLite
# =============================================================================

def init_config_db(db_path: Path) -> None:
    """Create dedup_configs and dealer_dedup_rules tables.

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dedup_configs (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                is_active INTEGER NOT NULL,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_dedup_configs_tenant
            ON dedup_configs(tenant_id, is_active)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS dealer_dedup_rules (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                dealer_id TEXT NOT NULL,
                is_active INTEGER NOT NULL,
                priority INTEGER NOT NULL,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_dealer_rules_lookup
            ON dealer_dedup_rules(tenant_id, dealer_id, is_active)
        """)
        conn.commit()
    finally:
        conn.close()


class SQLiteConfigStore(ConfigStore):
    """sqlite3-backed config store. Errors surface as CollaboratorUnavailableError."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        init_config_db(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _execute(self, sql: str, params: tuple = ()) -> int:
        try:
            conn = self._connect()
            try:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor.rowcount
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("config store", str(e)) from e

    def _fetch(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            conn = self._connect()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("config store", str(e)) from e

    # Configs

    def save_config(self, config):
        self._execute("""
            INSERT OR REPLACE INTO dedup_configs (id, tenant_id, is_active, payload, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            config.id,
            config.tenant_id,
            int(config.is_active),
            config.model_dump_json(),
            config.created_at.isoformat(),
            config.updated_at.isoformat() if config.updated_at else None,
        ))
        return config

    def get_config(self, tenant_id, config_id):
        rows = self._fetch(
            "SELECT payload FROM dedup_configs WHERE tenant_id = ? AND id = ?",
            (tenant_id, config_id),
        )
        return DeduplicationConfig.model_validate_json(rows[0]["payload"]) if rows else None

    def list_configs(self, tenant_id, active_only=False):
        sql = "SELECT payload FROM dedup_configs WHERE tenant_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        sql += " ORDER BY created_at"
        return [DeduplicationConfig.model_validate_json(r["payload"]) for r in self._fetch(sql, (tenant_id,))]

    # Rules

    def save_rule(self, rule):
        self._execute("""
            INSERT OR REPLACE INTO dealer_dedup_rules
            (id, tenant_id, dealer_id, is_active, priority, payload, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            rule.id,
            rule.tenant_id,
            rule.dealer_id,
            int(rule.is_active),
            rule.priority,
            rule.model_dump_json(),
            rule.created_at.isoformat(),
            rule.updated_at.isoformat() if rule.updated_at else None,
        ))
        return rule

    def get_rule(self, tenant_id, rule_id):
        rows = self._fetch(
            "SELECT payload FROM dealer_dedup_rules WHERE tenant_id = ? AND id = ?",
            (tenant_id, rule_id),
        )
        return DealerDeduplicationRule.model_validate_json(rows[0]["payload"]) if rows else None

    def list_rules(self, tenant_id, dealer_id=None, active_only=False):
        sql = "SELECT payload FROM dealer_dedup_rules WHERE tenant_id = ?"
        params = [tenant_id]
        if dealer_id is not None:
            sql += " AND dealer_id = ?"
            params.append(dealer_id)
        if active_only:
            sql += " AND is_active = 1"
        sql += " ORDER BY priority DESC, created_at DESC"
        return [DealerDeduplicationRule.model_validate_json(r["payload"]) for r in self._fetch(sql, tuple(params))]

    def delete_rule(self, tenant_id, rule_id):
        return self._execute(
            "DELETE FROM dealer_dedup_rules WHERE tenant_id = ? AND id = ?",
            (tenant_id, rule_id),
        ) > 0

    def record_rule_application(self, tenant_id, rule_id, applied_at):
        try:
            conn = self._connect()
            try:
                # Serialize read-modify-write of the payload
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT payload FROM dealer_dedup_rules WHERE tenant_id = ? AND id = ?",
                    (tenant_id, rule_id),
                ).fetchone()
                if row is None:
                    conn.rollback()
                    raise RuleNotFoundError(f"Dealer rule {rule_id} not found")

                rule = DealerDeduplicationRule.model_validate_json(row["payload"])
                rule.record_application(applied_at)
                conn.execute(
                    "UPDATE dealer_dedup_rules SET payload = ? WHERE id = ?",
                    (rule.model_dump_json(), rule_id),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CollaboratorUnavailableError("config store", str(e)) from e
