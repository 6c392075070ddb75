"""SQLite-specific tests for the database module."""
import json
import pytest
import sqlite3
import threading
from datetime import timedelta

from conftest import T0, make_threshold_rule
from models.database import Database
from models.errors import MalformedRuleError, PersistenceError


def test_table_creation(temp_db):
    """Verify all tables exist after init."""
    tables = temp_db.conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table'"
    ).fetchall()
    names = {t["name"] for t in tables}
    assert {"rules", "rule_events", "watermarks", "push_endpoints"} <= names


def _insert_corrupt(db, rule_id="bad", payload="{not json"):
    row = make_threshold_rule(rule_id).to_dict()
    row["payload_json"] = payload
    row.pop("payload")
    cols = ", ".join(row)
    db.conn.execute(
        f"INSERT INTO rules ({cols}) VALUES ({', '.join('?' for _ in row)})",
        [int(v) if isinstance(v, bool) else v for v in row.values()],
    )


def test_corrupt_payload_raises_malformed(temp_db):
    _insert_corrupt(temp_db)
    with pytest.raises(MalformedRuleError):
        temp_db.get_rule("bad")


def test_list_rules_skips_corrupt_rows(temp_db):
    temp_db.create_rule(make_threshold_rule("good"))
    _insert_corrupt(temp_db)
    assert [r.id for r in temp_db.list_rules()] == ["good"]
    assert "bad" in temp_db.due_rule_ids(T0, 10)


def test_missing_need_is_malformed(temp_db):
    _insert_corrupt(temp_db, payload=json.dumps({"template": "X"}))
    temp_db.conn.execute("UPDATE rules SET kind = 'confirmation' WHERE id = 'bad'")
    with pytest.raises(MalformedRuleError):
        temp_db.get_rule("bad")


def test_wrong_shape_snapshot_is_malformed(temp_db):
    payload = make_threshold_rule().payload.to_dict()
    payload["last_snapshot"] = ["x"]
    _insert_corrupt(temp_db, payload=json.dumps(payload))
    with pytest.raises(MalformedRuleError):
        temp_db.get_rule("bad")


def test_raw_updated_at(temp_db):
    _insert_corrupt(temp_db)
    assert temp_db.raw_updated_at("bad") == T0.isoformat(timespec="microseconds")
    assert temp_db.raw_updated_at("ghost") is None


def test_sqlite_errors_become_persistence_errors(temp_db):
    with pytest.raises(PersistenceError):
        with temp_db.transaction():
            temp_db.conn.execute("INSERT INTO no_such_table VALUES (1)")


def test_events_survive_reconnect(tmp_path):
    from models.events import make_event
    from models.enums import EventType

    path = str(tmp_path / "re.db")
    rule = make_threshold_rule()
    with Database(path) as db:
        db.create_rule(rule)
        db.append_event(make_event(rule, EventType.THRESHOLD_FIRED, T0, rule.stage, rule.status))
    with Database(path) as db:
        assert db.count_events() == 1
        assert db.get_rule(rule.id).revision == 0
        assert len(db.get_recent_events(rule_id=rule.id)) == 1


def test_concurrent_updates_serialize(temp_db):
    temp_db.create_rule(make_threshold_rule())

    def bump():
        for _ in range(20):
            temp_db.update_rule("thr-1", {"last_evaluated_at": T0 + timedelta(seconds=1)})

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert temp_db.get_rule("thr-1").revision == 80


def test_older_file_gains_attempt_column(tmp_path):
    path = str(tmp_path / "old.db")
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE rules (id TEXT PRIMARY KEY, enabled INTEGER, cooldown_until TEXT)")
    conn.commit()
    conn.close()

    with Database(path) as db:
        columns = {r["name"] for r in db.conn.execute("PRAGMA table_info(rules)")}
    assert "last_attempted_at" in columns
