"""
SQLite cache for synced organization data.

One table per entity kind, each exposed through a :class:`Table` with
keyed upserts, full scans and simple indexed filters, plus the read
queries the CLI and any dashboard build on.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Generic, Iterable, Iterator, Optional, TypeVar

from ..core.models import (
    ComplianceCheck,
    FindingTool,
    MetricsSummary,
    OwnershipRule,
    Repository,
    SecurityFinding,
    Team,
    severity_in,
    utcnow,
)
from .models import (
    COMPLIANCE_CHECKS,
    METRICS_SUMMARY,
    OWNERSHIP_RULES,
    REPOSITORIES,
    SECURITY_FINDINGS,
    TEAMS,
    TableSchema,
)

T = TypeVar("T")

STALE_AFTER = timedelta(hours=24)
METRICS_SUMMARY_ID = 1


class Table(Generic[T]):
    """
    Keyed access to one cache table.

    Writes are upserts by primary key (last write wins); reads come back
    ordered by primary key.
    """

    def __init__(self, database: "Database", schema: TableSchema[T]):
        self._database = database
        self.schema = schema

    @property
    def name(self) -> str:
        return self.schema.name

    def _check_columns(self, columns: Iterable[str]) -> None:
        unknown = set(columns) - set(self.schema.columns)
        if unknown:
            raise ValueError(f"Unknown column(s) for {self.name}: {sorted(unknown)}")

    def _upsert_sql(self) -> str:
        columns = ", ".join(self.schema.columns)
        placeholders = ", ".join(f":{c}" for c in self.schema.columns)
        return f"INSERT OR REPLACE INTO {self.name} ({columns}) VALUES ({placeholders})"

    def _order_by(self) -> str:
        return ", ".join(self.schema.key_columns)

    def get(self, *key: Any) -> Optional[T]:
        """Get a record by primary key (all key columns, in order)."""
        if len(key) != len(self.schema.key_columns):
            raise ValueError(f"{self.name} is keyed by {self.schema.key_columns}")
        condition = " AND ".join(f"{c} = ?" for c in self.schema.key_columns)
        with self._database._connection() as conn:
            row = conn.execute(f"SELECT * FROM {self.name} WHERE {condition}", key).fetchone()
        return self.schema.from_row(row) if row else None

    def put(self, record: T) -> None:
        """Insert or overwrite one record."""
        with self._database._connection() as conn:
            conn.execute(self._upsert_sql(), self.schema.to_row(record))

    def bulk_put(self, records: Iterable[T]) -> int:
        """Insert or overwrite many records in one transaction."""
        rows = [self.schema.to_row(r) for r in records]
        if not rows:
            return 0
        with self._database._connection() as conn:
            conn.executemany(self._upsert_sql(), rows)
        return len(rows)

    def all(self) -> list[T]:
        """Full table scan."""
        with self._database._connection() as conn:
            rows = conn.execute(f"SELECT * FROM {self.name} ORDER BY {self._order_by()}").fetchall()
        return [self.schema.from_row(row) for row in rows]

    def count(self) -> int:
        with self._database._connection() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {self.name}").fetchone()[0]

    def where(self, **equals: Any) -> list[T]:
        """Records whose columns equal the given values."""
        self._check_columns(equals)
        if not equals:
            return self.all()
        condition = " AND ".join(f"{c} = :{c}" for c in equals)
        with self._database._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM {self.name} WHERE {condition} ORDER BY {self._order_by()}",
                equals,
            ).fetchall()
        return [self.schema.from_row(row) for row in rows]

    def filter(self, predicate: Callable[[T], bool], **equals: Any) -> list[T]:
        """Records matching the column filter and then the predicate."""
        return [record for record in self.where(**equals) if predicate(record)]

    def delete_where(self, **equals: Any) -> int:
        """Delete records whose columns equal the given values."""
        self._check_columns(equals)
        if not equals:
            raise ValueError("delete_where needs at least one column filter; use clear()")
        condition = " AND ".join(f"{c} = :{c}" for c in equals)
        with self._database._connection() as conn:
            return conn.execute(f"DELETE FROM {self.name} WHERE {condition}", equals).rowcount


class Database:
    """
    SQLite database holding the synced cache.
    """

    def __init__(self, db_path: str | Path = ".compliance-cache.db"):
        """
        Initialize database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._ensure_schema()

        self.repositories: Table[Repository] = Table(self, REPOSITORIES)
        self.teams: Table[Team] = Table(self, TEAMS)
        self.findings: Table[SecurityFinding] = Table(self, SECURITY_FINDINGS)
        self.ownership_rules: Table[OwnershipRule] = Table(self, OWNERSHIP_RULES)
        self.compliance_checks: Table[ComplianceCheck] = Table(self, COMPLIANCE_CHECKS)
        self.metrics_summary: Table[MetricsSummary] = Table(self, METRICS_SUMMARY)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Get database connection context manager."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        """Create database schema if not exists."""
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS repositories (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    full_name TEXT NOT NULL,
                    description TEXT,
                    html_url TEXT,
                    custom_properties TEXT NOT NULL DEFAULT '{}',
                    pod TEXT,
                    environment_type TEXT,
                    last_fetched TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS teams (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    slug TEXT NOT NULL,
                    description TEXT,
                    html_url TEXT,
                    last_fetched TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS security_findings (
                    id TEXT PRIMARY KEY,
                    repository_id INTEGER NOT NULL,
                    repository_name TEXT NOT NULL,
                    tool TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    title TEXT,
                    description TEXT,
                    html_url TEXT,
                    created_at TIMESTAMP NOT NULL,
                    directory_path TEXT,
                    owner TEXT,
                    last_fetched TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS ownership_rules (
                    repository_id INTEGER NOT NULL,
                    directory_path TEXT NOT NULL,
                    repository_name TEXT NOT NULL,
                    owner TEXT NOT NULL,
                    last_fetched TIMESTAMP NOT NULL,
                    PRIMARY KEY (repository_id, directory_path)
                );

                CREATE TABLE IF NOT EXISTS compliance_checks (
                    repository_id INTEGER PRIMARY KEY,
                    repository_name TEXT NOT NULL,
                    valid_codeowners INTEGER NOT NULL DEFAULT 0,
                    old_high_critical_findings INTEGER NOT NULL DEFAULT 0,
                    direct_user_access INTEGER NOT NULL DEFAULT 0,
                    admin_owner_access INTEGER NOT NULL DEFAULT 0,
                    last_checked TIMESTAMP NOT NULL
                );

                CREATE TABLE IF NOT EXISTS metrics_summary (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    repository_count INTEGER NOT NULL DEFAULT 0,
                    team_count INTEGER NOT NULL DEFAULT 0,
                    commit_count INTEGER NOT NULL DEFAULT 0,
                    last_fetched TIMESTAMP NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_repositories_env ON repositories(environment_type);
                CREATE INDEX IF NOT EXISTS idx_repositories_pod ON repositories(pod);
                CREATE INDEX IF NOT EXISTS idx_findings_repo ON security_findings(repository_id);
                CREATE INDEX IF NOT EXISTS idx_findings_tool ON security_findings(tool);
                CREATE INDEX IF NOT EXISTS idx_findings_severity ON security_findings(severity COLLATE NOCASE);
                CREATE INDEX IF NOT EXISTS idx_findings_owner ON security_findings(owner);
                CREATE INDEX IF NOT EXISTS idx_ownership_repo_name ON ownership_rules(repository_name);
            """)

    # === Ownership rules ===

    def replace_ownership_rules(self, repository_id: int, rules: list[OwnershipRule]) -> None:
        """
        Swap the full rule set of one repository in a single transaction.

        Args:
            repository_id: Repository whose rules are replaced
            rules: New rules (may be empty)
        """
        table = self.ownership_rules
        with self._connection() as conn:
            conn.execute(f"DELETE FROM {table.name} WHERE repository_id = ?", (repository_id,))
            if rules:
                conn.executemany(table._upsert_sql(), [table.schema.to_row(r) for r in rules])

    # === Compliance ===

    def prune_compliance_checks(self, keep_repository_ids: Iterable[int]) -> int:
        """
        Delete compliance rows for repositories outside ``keep_repository_ids``.

        Returns:
            Number of rows deleted
        """
        keep = sorted(set(keep_repository_ids))
        with self._connection() as conn:
            if not keep:
                return conn.execute("DELETE FROM compliance_checks").rowcount
            placeholders = ", ".join("?" for _ in keep)
            return conn.execute(
                f"DELETE FROM compliance_checks WHERE repository_id NOT IN ({placeholders})",
                keep,
            ).rowcount

    def compliance_summary(self) -> dict[str, Any]:
        """Counts of compliant and non-compliant repositories."""
        checks = self.compliance_checks.all()
        compliant = sum(1 for c in checks if c.is_compliant)
        total = len(checks)
        return {
            "total": total,
            "compliant": compliant,
            "non_compliant": total - compliant,
            "compliance_rate": round(compliant / total * 100, 1) if total else 0.0,
        }

    # === Findings ===

    def get_findings(
        self,
        repository_id: Optional[int] = None,
        tool: Optional[FindingTool | str] = None,
        severity: Optional[str] = None,
        owned: Optional[bool] = None,
    ) -> list[SecurityFinding]:
        """
        Get findings with filters.

        Args:
            repository_id: Only findings of this repository
            tool: Only findings from this tool
            severity: Severity, compared case-insensitively
            owned: True for findings with an owner, False for unowned ones

        Returns:
            Matching findings ordered by id
        """
        query = "SELECT * FROM security_findings WHERE 1=1"
        params: list[Any] = []

        if repository_id is not None:
            query += " AND repository_id = ?"
            params.append(repository_id)
        if tool:
            query += " AND tool = ?"
            params.append(FindingTool(tool).value)
        if severity:
            query += " AND severity = ? COLLATE NOCASE"
            params.append(severity)
        if owned is True:
            query += " AND owner IS NOT NULL"
        elif owned is False:
            query += " AND owner IS NULL"

        query += " ORDER BY id"

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self.findings.schema.from_row(row) for row in rows]

    def severity_breakdown(self) -> dict[str, int]:
        """Finding counts grouped the way the dashboard shows them."""
        breakdown = {"critical_high": 0, "medium": 0, "low": 0}
        for finding in self.findings.all():
            if severity_in(finding.severity, "critical", "high"):
                breakdown["critical_high"] += 1
            elif severity_in(finding.severity, "medium"):
                breakdown["medium"] += 1
            elif severity_in(finding.severity, "low"):
                breakdown["low"] += 1
        return breakdown

    # === Metrics / staleness ===

    def get_metrics_summary(self) -> Optional[MetricsSummary]:
        return self.metrics_summary.get(METRICS_SUMMARY_ID)

    def is_data_stale(self, now: Optional[datetime] = None) -> bool:
        """
        Whether the cache needs a resync.

        True when no sync has ever completed or the last one finished
        more than 24 hours ago.
        """
        summary = self.get_metrics_summary()
        if summary is None:
            return True
        now = now or utcnow()
        return now - summary.last_fetched > STALE_AFTER

    def clear(self) -> None:
        """Delete every cached row."""
        with self._connection() as conn:
            for schema in (
                REPOSITORIES, TEAMS, SECURITY_FINDINGS,
                OWNERSHIP_RULES, COMPLIANCE_CHECKS, METRICS_SUMMARY,
            ):
                conn.execute(f"DELETE FROM {schema.name}")
