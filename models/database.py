"""SQLite database for rules, emitted events, watermarks, and push endpoints."""
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path

from models.errors import MalformedRuleError, PersistenceError, RuleNotFoundError
from models.events import AlertEvent
from models.rules import Rule
from models.store import CANCEL_UPDATES, enable_updates, serialize_updates
from utils.clock import to_iso, utcnow

logger = logging.getLogger("tokenwatch.db")

RULE_COLUMNS = (
    "id", "kind", "asset", "timeframe", "owner_id", "name", "enabled", "stage", "status",
    "created_at", "updated_at", "payload_json", "cooldown_until", "expires_at",
    "last_evaluated_at", "revision", "channel_in_app", "channel_push", "note",
)


class Database:
    def __init__(self, db_path="data/tokenwatch.db"):
        self.db_path = db_path
        self.conn = None
        # One connection is shared by the tick workers; writes are serialized here.
        self._lock = threading.RLock()
        self._tx_depth = 0

    def connect(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._create_tables()
        return self

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.close()

    def _create_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS rules (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                asset TEXT NOT NULL,
                timeframe TEXT NOT NULL,
                owner_id TEXT NOT NULL DEFAULT '',
                name TEXT,
                enabled INTEGER NOT NULL DEFAULT 1,
                stage TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                cooldown_until TEXT,
                expires_at TEXT,
                last_evaluated_at TEXT,
                last_attempted_at TEXT,
                revision INTEGER NOT NULL DEFAULT 0,
                channel_in_app INTEGER NOT NULL DEFAULT 1,
                channel_push INTEGER NOT NULL DEFAULT 0,
                note TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_rules_due
                ON rules(enabled, cooldown_until);

            CREATE TABLE IF NOT EXISTS rule_events (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                event_id TEXT NOT NULL UNIQUE,
                occurred_at TEXT NOT NULL,
                rule_id TEXT NOT NULL,
                type TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_occurred
                ON rule_events(occurred_at);

            CREATE TABLE IF NOT EXISTS watermarks (
                name TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS push_endpoints (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                address TEXT NOT NULL,
                enabled INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                UNIQUE(owner_id, address)
            );
        """)
        self._add_missing_columns()

    def _add_missing_columns(self):
        """Columns added after the first release; older files get them on connect."""
        existing = {r["name"] for r in self.conn.execute("PRAGMA table_info(rules)")}
        if "last_attempted_at" not in existing:
            self.conn.execute("ALTER TABLE rules ADD COLUMN last_attempted_at TEXT")

    @contextmanager
    def transaction(self):
        """Atomic unit of work; nested calls join the outermost transaction."""
        with self._lock:
            if self._tx_depth == 0:
                try:
                    self.conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error as e:
                    raise PersistenceError(f"Could not begin transaction: {e}") from e
            self._tx_depth += 1
            try:
                yield self
            except sqlite3.Error as e:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    self.conn.execute("ROLLBACK")
                raise PersistenceError(str(e)) from e
            except BaseException:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    self.conn.execute("ROLLBACK")
                raise
            else:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    self.conn.execute("COMMIT")

    # --- Rules ---

    def create_rule(self, rule):
        d = rule.to_dict()
        d["updated_at"] = d["updated_at"] or d["created_at"]
        d["payload_json"] = json.dumps(d.pop("payload"))
        d["enabled"] = int(d["enabled"])
        d["channel_in_app"] = int(d["channel_in_app"])
        d["channel_push"] = int(d["channel_push"])
        placeholders = ", ".join("?" for _ in RULE_COLUMNS)
        try:
            with self.transaction():
                self.conn.execute(
                    f"INSERT INTO rules ({', '.join(RULE_COLUMNS)}) VALUES ({placeholders})",
                    [d[c] for c in RULE_COLUMNS],
                )
        except PersistenceError as e:
            raise PersistenceError(f"Could not create rule {rule.id}: {e}") from e
        logger.debug(f"Created rule {rule.id} ({rule.kind.value})")
        return self.get_rule(rule.id)

    @staticmethod
    def _row_to_rule(row):
        d = dict(row)
        d["payload"] = d.pop("payload_json")
        return Rule.from_dict(d)

    def get_rule(self, rule_id):
        with self._lock:
            row = self.conn.execute("SELECT * FROM rules WHERE id = ?", (rule_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_rule(row)

    def raw_updated_at(self, rule_id):
        """updated_at straight from the row, without parsing the rule."""
        with self._lock:
            row = self.conn.execute("SELECT updated_at FROM rules WHERE id = ?", (rule_id,)).fetchone()
        return row["updated_at"] if row else None

    def list_rules(self, status=None):
        query = "SELECT * FROM rules"
        params = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC"
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        rules = []
        for row in rows:
            try:
                rules.append(self._row_to_rule(row))
            except MalformedRuleError as e:
                logger.warning(f"Skipping unreadable rule {row['id']}: {e}")
        return rules

    def due_rule_ids(self, now, limit, exclude=()):
        """Enabled, not cooling down, least recently attempted first."""
        exclude = list(exclude)
        skip = ""
        if exclude:
            skip = f"AND id NOT IN ({', '.join('?' for _ in exclude)})"
        # Last touch is the later of the last commit and the last failed attempt.
        with self._lock:
            rows = self.conn.execute(f"""
                SELECT id FROM (
                    SELECT id, created_at,
                        CASE WHEN last_attempted_at IS NULL OR last_attempted_at < last_evaluated_at
                             THEN last_evaluated_at ELSE last_attempted_at END AS touched
                    FROM rules
                    WHERE enabled = 1
                      AND stage != 'CANCELLED'
                      AND (cooldown_until IS NULL OR cooldown_until <= ?)
                      AND (kind != 'confirmation' OR stage = 'WATCHING')
                      {skip}
                )
                ORDER BY touched IS NOT NULL, touched ASC, created_at ASC
                LIMIT ?
            """, [to_iso(now), *exclude, limit]).fetchall()
        return [r["id"] for r in rows]

    def mark_attempted(self, rule_id, now):
        """Record a failed attempt for ordering; revision and updated_at are left alone."""
        with self.transaction():
            self.conn.execute(
                "UPDATE rules SET last_attempted_at = ? WHERE id = ?", (to_iso(now), rule_id)
            )

    def update_rule(self, rule_id, fields):
        """Merge ``fields`` into the row, bumping revision and updated_at."""
        columns = serialize_updates(fields)
        if "payload" in columns:
            columns["payload_json"] = json.dumps(columns.pop("payload"))
        for key in ("enabled", "channel_in_app", "channel_push"):
            if key in columns:
                columns[key] = int(columns[key])

        set_clauses = ["updated_at = ?", "revision = revision + 1"]
        params = [to_iso(utcnow())]
        for key, value in columns.items():
            set_clauses.append(f"{key} = ?")
            params.append(value)
        params.append(rule_id)

        with self.transaction():
            cur = self.conn.execute(
                f"UPDATE rules SET {', '.join(set_clauses)} WHERE id = ?", params
            )
            if cur.rowcount == 0:
                raise RuleNotFoundError(rule_id)
        return self.get_rule(rule_id)

    def set_enabled(self, rule_id, enabled):
        with self.transaction():
            rule = self.get_rule(rule_id)
            if rule is None:
                return None
            return self.update_rule(rule_id, enable_updates(rule, enabled))

    def cancel_rule(self, rule_id):
        with self.transaction():
            if self.get_rule(rule_id) is None:
                return None
            return self.update_rule(rule_id, dict(CANCEL_UPDATES))

    def delete_rule(self, rule_id):
        with self.transaction():
            cur = self.conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
        return cur.rowcount > 0

    # --- Event Log ---

    def append_event(self, event):
        """Insert an event; returns False when the event_id already exists."""
        with self.transaction():
            cur = self.conn.execute("""
                INSERT OR IGNORE INTO rule_events (event_id, occurred_at, rule_id, type, payload_json)
                VALUES (?, ?, ?, ?, ?)
            """, (
                event.event_id, to_iso(event.occurred_at), event.rule_id,
                event.type.value, json.dumps(event.to_dict()),
            ))
        if cur.rowcount == 0:
            logger.debug(f"Duplicate event {event.event_id} ignored")
            return False
        return True

    def get_event(self, event_id):
        with self._lock:
            row = self.conn.execute(
                "SELECT payload_json FROM rule_events WHERE event_id = ?", (event_id,)
            ).fetchone()
        return AlertEvent.from_dict(json.loads(row["payload_json"])) if row else None

    def query_events_after(self, since, limit=100, inclusive=False):
        op = ">=" if inclusive else ">"
        with self._lock:
            rows = self.conn.execute(f"""
                SELECT payload_json FROM rule_events
                WHERE occurred_at {op} ?
                ORDER BY occurred_at ASC, seq ASC
                LIMIT ?
            """, (to_iso(since), limit)).fetchall()
        return [AlertEvent.from_dict(json.loads(r["payload_json"])) for r in rows]

    def get_recent_events(self, limit=50, rule_id=None):
        query = "SELECT payload_json FROM rule_events"
        params = []
        if rule_id:
            query += " WHERE rule_id = ?"
            params.append(rule_id)
        query += " ORDER BY occurred_at DESC, seq DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [AlertEvent.from_dict(json.loads(r["payload_json"])) for r in rows]

    def count_events(self):
        with self._lock:
            row = self.conn.execute("SELECT COUNT(*) AS cnt FROM rule_events").fetchone()
        return row["cnt"]

    def delete_events_older_than(self, days, now=None):
        cutoff = (now or utcnow()) - timedelta(days=days)
        with self.transaction():
            cur = self.conn.execute(
                "DELETE FROM rule_events WHERE occurred_at < ?", (to_iso(cutoff),)
            )
        return cur.rowcount

    # --- Watermarks ---

    def get_watermark(self, name):
        with self._lock:
            row = self.conn.execute(
                "SELECT value FROM watermarks WHERE name = ?", (name,)
            ).fetchone()
        return row["value"] if row else None

    def set_watermark(self, name, value):
        with self.transaction():
            self.conn.execute("""
                INSERT INTO watermarks (name, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """, (name, to_iso(value) if hasattr(value, "isoformat") else value, to_iso(utcnow())))

    # --- Push endpoints ---

    def add_push_endpoint(self, owner_id, address):
        with self.transaction():
            self.conn.execute("""
                INSERT INTO push_endpoints (owner_id, address, enabled, created_at)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(owner_id, address) DO UPDATE SET enabled = 1
            """, (owner_id, str(address), to_iso(utcnow())))
            row = self.conn.execute(
                "SELECT id FROM push_endpoints WHERE owner_id = ? AND address = ?",
                (owner_id, str(address)),
            ).fetchone()
        return row["id"]

    def list_push_endpoints(self, owner_id=None, enabled_only=True):
        query = "SELECT * FROM push_endpoints WHERE 1=1"
        params = []
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        if enabled_only:
            query += " AND enabled = 1"
        query += " ORDER BY id ASC"
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [dict(r) for r in rows]

    def disable_push_endpoint(self, endpoint_id):
        with self.transaction():
            self.conn.execute(
                "UPDATE push_endpoints SET enabled = 0 WHERE id = ?", (endpoint_id,)
            )
