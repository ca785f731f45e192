"""
SQLite persistence layer for ClaimDesk.

Stores claims, their related records, automation definitions and execution
history. Provides a small generic CRUD surface over named tables with
transparent JSON column encoding and ISO-8601 UTC timestamps.
"""

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .logging_conf import get_logger
from .error_handler import ValidationError

logger = get_logger(__name__)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def to_iso(value: Union[datetime, str, None]) -> Optional[str]:
    """Normalize a datetime (or ISO string) to an ISO-8601 UTC string."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_iso(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.replace("Z", "+00:00")
        if len(text) == 10:
            text = f"{text}T00:00:00+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# table name -> (column DDL, JSON-encoded columns)
SCHEMA: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "claims": ("""
        id TEXT PRIMARY KEY,
        claim_number TEXT,
        policy_number TEXT,
        status TEXT,
        loss_type TEXT,
        loss_date TEXT,
        loss_description TEXT,
        policyholder_name TEXT,
        policyholder_email TEXT,
        policyholder_phone TEXT,
        policyholder_address TEXT,
        insurance_company TEXT,
        insurance_company_id TEXT,
        insurance_email TEXT,
        insurance_phone TEXT,
        adjuster_name TEXT,
        adjuster_email TEXT,
        adjuster_phone TEXT,
        referrer_id TEXT,
        claim_amount REAL,
        is_closed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    """, ()),
    "contacts": ("""
        id TEXT PRIMARY KEY,
        name TEXT,
        email TEXT,
        phone TEXT,
        contact_type TEXT NOT NULL DEFAULT 'client',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    """, ()),
    "referrers": ("""
        id TEXT PRIMARY KEY,
        name TEXT,
        email TEXT,
        phone TEXT,
        created_at TEXT NOT NULL
    """, ()),
    "insurance_companies": ("""
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT,
        phone TEXT,
        created_at TEXT NOT NULL
    """, ()),
    "claim_staff": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        staff_id TEXT NOT NULL,
        created_at TEXT NOT NULL
    """, ()),
    "claim_contractors": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        contractor_id TEXT NOT NULL,
        created_at TEXT NOT NULL
    """, ()),
    "tasks": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT,
        title TEXT NOT NULL,
        description TEXT,
        priority TEXT NOT NULL DEFAULT 'medium',
        status TEXT NOT NULL DEFAULT 'pending',
        due_date TEXT,
        assigned_to TEXT,
        completed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    """, ()),
    "task_automations": ("""
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT,
        priority TEXT NOT NULL DEFAULT 'medium',
        trigger_type TEXT NOT NULL,
        trigger_status TEXT,
        due_date_offset INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    """, ()),
    "inspections": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        inspection_date TEXT,
        inspection_time TEXT,
        inspection_type TEXT,
        inspector_name TEXT,
        notes TEXT,
        created_at TEXT NOT NULL
    """, ()),
    "claim_updates": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        content TEXT NOT NULL,
        update_type TEXT,
        created_at TEXT NOT NULL
    """, ()),
    "notes": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL
    """, ()),
    "emails": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT,
        recipient_email TEXT,
        recipient_name TEXT,
        recipient_type TEXT,
        subject TEXT,
        body TEXT,
        direction TEXT NOT NULL DEFAULT 'outbound',
        sent_at TEXT,
        created_at TEXT NOT NULL
    """, ()),
    "sms_messages": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT,
        to_number TEXT,
        from_number TEXT,
        message_body TEXT,
        direction TEXT NOT NULL DEFAULT 'outbound',
        status TEXT,
        vendor_message_id TEXT,
        created_at TEXT NOT NULL
    """, ()),
    "sms_templates": ("""
        id TEXT PRIMARY KEY,
        name TEXT,
        body TEXT NOT NULL,
        created_at TEXT NOT NULL
    """, ()),
    "claim_folders": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        name TEXT NOT NULL,
        created_at TEXT NOT NULL
    """, ()),
    "claim_files": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        folder_id TEXT,
        file_name TEXT NOT NULL,
        file_path TEXT NOT NULL,
        file_type TEXT,
        document_classification TEXT,
        classification_metadata TEXT,
        extracted_text TEXT,
        uploaded_at TEXT NOT NULL
    """, ("classification_metadata",)),
    "claim_photos": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        file_name TEXT,
        file_path TEXT,
        category TEXT,
        ai_analyzed_at TEXT,
        ai_condition_rating TEXT,
        ai_detected_damages TEXT,
        ai_material_type TEXT,
        ai_analysis_summary TEXT,
        created_at TEXT NOT NULL
    """, ("ai_detected_damages",)),
    "claim_checks": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        check_number TEXT,
        check_type TEXT,
        amount REAL,
        received_date TEXT,
        created_at TEXT NOT NULL
    """, ()),
    "claim_settlements": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        replacement_cost_value REAL,
        actual_cash_value REAL,
        recoverable_depreciation REAL,
        deductible REAL,
        total_settlement REAL,
        created_at TEXT NOT NULL
    """, ()),
    "automations": ("""
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        trigger_type TEXT NOT NULL,
        trigger_config TEXT,
        actions TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    """, ("trigger_config", "actions")),
    "automation_executions": ("""
        id TEXT PRIMARY KEY,
        automation_id TEXT NOT NULL,
        claim_id TEXT,
        trigger_data TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        result TEXT,
        error_message TEXT,
        started_at TEXT,
        completed_at TEXT,
        created_at TEXT NOT NULL
    """, ("trigger_data", "result")),
    "claim_automations": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL UNIQUE,
        is_enabled INTEGER NOT NULL DEFAULT 1,
        follow_up_enabled INTEGER NOT NULL DEFAULT 0,
        follow_up_interval_days INTEGER NOT NULL DEFAULT 3,
        follow_up_max_count INTEGER NOT NULL DEFAULT 5,
        follow_up_current_count INTEGER NOT NULL DEFAULT 0,
        follow_up_last_sent_at TEXT,
        follow_up_next_at TEXT,
        follow_up_stopped_at TEXT,
        follow_up_stop_reason TEXT,
        rd_follow_up_enabled INTEGER NOT NULL DEFAULT 0,
        rd_follow_up_interval_days INTEGER NOT NULL DEFAULT 3,
        rd_follow_up_max_count INTEGER NOT NULL DEFAULT 10,
        rd_follow_up_current_count INTEGER NOT NULL DEFAULT 0,
        rd_follow_up_last_sent_at TEXT,
        rd_follow_up_next_at TEXT,
        rd_follow_up_stopped_at TEXT,
        rd_follow_up_stop_reason TEXT,
        rd_check_tracking_enabled INTEGER NOT NULL DEFAULT 0,
        rd_check_released_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    """, ()),
    "claim_outcomes": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        initial_estimate REAL,
        final_settlement REAL,
        recovery_percentage REAL,
        winning_arguments TEXT,
        effective_evidence TEXT,
        key_leverage_points TEXT,
        failed_arguments TEXT,
        resolution_type TEXT,
        notes TEXT,
        created_at TEXT NOT NULL
    """, ("winning_arguments", "effective_evidence", "key_leverage_points", "failed_arguments")),
    "declared_positions": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        primary_cause_of_loss TEXT,
        primary_coverage_theory TEXT,
        primary_carrier_error TEXT,
        carrier_dependency_statement TEXT,
        is_locked INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    """, ()),
    "analysis_results": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL,
        analysis_type TEXT NOT NULL,
        result TEXT,
        pdf_file_name TEXT,
        created_at TEXT NOT NULL
    """, ()),
    "claim_thesis_objects": ("""
        id TEXT PRIMARY KEY,
        claim_id TEXT NOT NULL UNIQUE,
        primary_cause_of_loss TEXT,
        primary_coverage_theory TEXT,
        primary_carrier_error TEXT,
        evidence_map TEXT,
        anticipated_pushback TEXT,
        pushback_counter TEXT,
        is_locked INTEGER NOT NULL DEFAULT 0,
        last_memory_snapshot TEXT,
        last_deltas_reviewed_at TEXT,
        cross_claim_lessons TEXT,
        industry_notes_used TEXT,
        web_search_performed INTEGER NOT NULL DEFAULT 0,
        web_search_results TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    """, ("evidence_map", "last_memory_snapshot", "cross_claim_lessons",
          "industry_notes_used", "web_search_results")),
    "industry_notes_cache": ("""
        id TEXT PRIMARY KEY,
        cache_key TEXT NOT NULL UNIQUE,
        state_code TEXT,
        peril TEXT,
        material TEXT,
        content TEXT NOT NULL,
        source_type TEXT,
        expires_at TEXT NOT NULL,
        created_at TEXT NOT NULL
    """, ()),
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_executions_status ON automation_executions(status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_executions_pair ON automation_executions(automation_id, claim_id)",
    "CREATE INDEX IF NOT EXISTS idx_claims_created_at ON claims(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_claim ON tasks(claim_id)",
    "CREATE INDEX IF NOT EXISTS idx_updates_claim ON claim_updates(claim_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_files_claim ON claim_files(claim_id, uploaded_at DESC)",
]

# Where-clause operators accepted as ``{"column": ("op", value)}``
OPERATORS = {"=", "!=", "<", "<=", ">", ">=", "like", "is", "is not", "in"}


class Database:
    """SQLite-backed store for all ClaimDesk tables."""

    def __init__(self, storage_path: Optional[Path] = None):
        """Initialize the database, creating tables on first use."""
        if storage_path is None:
            from .settings import settings
            storage_path = settings.global_config.database_path

        self.storage_path = Path(storage_path)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._columns: Dict[str, List[str]] = {}
        self._lock = threading.RLock()

        self._init_database()

    def _init_database(self) -> None:
        """Create every table and index if missing."""
        try:
            with self._connect() as conn:
                for table, (columns, _) in SCHEMA.items():
                    conn.execute(f"CREATE TABLE IF NOT EXISTS {table} ({columns})")
                    info = conn.execute(f"PRAGMA table_info({table})").fetchall()
                    self._columns[table] = [row["name"] for row in info]
                for statement in INDEXES:
                    conn.execute(statement)

            logger.debug("Database initialized", path=str(self.storage_path))

        except sqlite3.Error as e:
            logger.error("Failed to initialize database", error=str(e))
            raise

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = sqlite3.connect(str(self.storage_path))
            conn.row_factory = sqlite3.Row
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    # ─── encoding helpers ────────────────────────────────────────────

    def _check_table(self, table: str) -> Tuple[str, ...]:
        if table not in SCHEMA:
            raise ValidationError("table", table, f"Unknown table: {table}")
        return SCHEMA[table][1]

    def _check_column(self, table: str, column: str) -> None:
        if column not in self._columns[table]:
            raise ValidationError("column", column, f"Unknown column {column} on {table}")

    def _encode(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        json_columns = self._check_table(table)
        encoded = {}
        for column, value in values.items():
            self._check_column(table, column)
            if column in json_columns and value is not None:
                encoded[column] = json.dumps(value)
            elif isinstance(value, bool):
                encoded[column] = int(value)
            elif isinstance(value, datetime):
                encoded[column] = to_iso(value)
            else:
                encoded[column] = value
        return encoded

    def _decode(self, table: str, row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        json_columns = SCHEMA[table][1]
        record = dict(row)
        for column in json_columns:
            if record.get(column) is not None:
                record[column] = json.loads(record[column])
        return record

    def _where_clause(self, table: str, where: Optional[Dict[str, Any]]) -> Tuple[str, List[Any]]:
        if not where:
            return "", []

        clauses = []
        params: List[Any] = []
        for column, condition in where.items():
            self._check_column(table, column)
            if isinstance(condition, tuple):
                op, value = condition
                op = op.lower()
                if op not in OPERATORS:
                    raise ValidationError("operator", op, f"Unsupported operator: {op}")
                if op == "in":
                    values = list(value)
                    if not values:
                        clauses.append("0")
                        continue
                    clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                    params.extend(values)
                elif op in ("is", "is not"):
                    clauses.append(f"{column} {op.upper()} NULL")
                elif op == "like":
                    clauses.append(f"{column} LIKE ? COLLATE NOCASE")
                    params.append(value)
                else:
                    clauses.append(f"{column} {op} ?")
                    params.append(self._encode(table, {column: value})[column])
            elif condition is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(self._encode(table, {column: condition})[column])

        return " WHERE " + " AND ".join(clauses), params

    # ─── CRUD ────────────────────────────────────────────────────────

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row, filling id and timestamps, and return it."""
        self._check_table(table)
        now = to_iso(utcnow())
        row = dict(values)
        row.setdefault("id", str(uuid.uuid4()))
        for stamp in ("created_at", "updated_at", "uploaded_at"):
            if stamp in self._columns[table]:
                row.setdefault(stamp, now)

        encoded = self._encode(table, row)
        columns = ", ".join(encoded.keys())
        placeholders = ", ".join("?" for _ in encoded)

        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                list(encoded.values())
            )
            result = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row["id"],)).fetchone()

        return self._decode(table, result)

    def update(self, table: str, row_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update one row by id, refreshing ``updated_at``. Returns the new row."""
        self._check_table(table)
        values = dict(changes)
        values.pop("id", None)
        if "updated_at" in self._columns[table] and "updated_at" not in values:
            values["updated_at"] = to_iso(utcnow())

        with self._connect() as conn:
            if values:
                encoded = self._encode(table, values)
                assignments = ", ".join(f"{column} = ?" for column in encoded)
                conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    list(encoded.values()) + [row_id]
                )
            result = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()

        return self._decode(table, result)

    def upsert(self, table: str, values: Dict[str, Any], on_conflict: str) -> Dict[str, Any]:
        """Insert a row, or update the row that shares ``on_conflict``."""
        self._check_table(table)
        self._check_column(table, on_conflict)
        existing = self.select(table, where={on_conflict: values[on_conflict]}, limit=1)
        if existing:
            return self.update(table, existing[0]["id"], values)
        return self.insert(table, values)

    def get(self, table: str, row_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """Fetch one row by id."""
        self._check_table(table)
        if not row_id:
            return None
        with self._connect() as conn:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
        return self._decode(table, row)

    def select(
        self,
        table: str,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Select rows from a table.

        ``where`` maps columns to either a value (equality, ``None`` for NULL)
        or an ``(operator, value)`` tuple.
        """
        self._check_table(table)
        clause, params = self._where_clause(table, where)
        sql = f"SELECT * FROM {table}{clause}"
        if order_by:
            self._check_column(table, order_by)
            sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()

        return [self._decode(table, row) for row in rows]

    def select_one(self, table: str, where: Optional[Dict[str, Any]] = None, **kwargs) -> Optional[Dict[str, Any]]:
        rows = self.select(table, where=where, limit=1, **kwargs)
        return rows[0] if rows else None

    def select_in(self, table: str, column: str, values: Iterable[Any], where: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Select rows whose ``column`` is one of ``values``."""
        conditions = dict(where or {})
        conditions[column] = ("in", list(values))
        return self.select(table, where=conditions)

    def delete(self, table: str, row_id: str) -> bool:
        """Delete one row by id. Returns True if a row was removed."""
        self._check_table(table)
        with self._connect() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
        return cursor.rowcount > 0

    def count(self, table: str, where: Optional[Dict[str, Any]] = None) -> int:
        self._check_table(table)
        clause, params = self._where_clause(table, where)
        with self._connect() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}{clause}", params).fetchone()[0]

    def latest(self, table: str, claim_id: str, column: str) -> Optional[Dict[str, Any]]:
        """Newest row for a claim ordered by ``column``."""
        return self.select_one(table, where={"claim_id": claim_id}, order_by=column, descending=True)
