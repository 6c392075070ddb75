"""In-memory rule store and event log with the same contract as Database."""
import copy
import threading
from contextlib import contextmanager
from datetime import timedelta

from models.errors import MalformedRuleError, RuleNotFoundError
from models.events import AlertEvent
from models.rules import Rule
from models.store import (
    CANCEL_UPDATES, enable_updates, is_due, last_touched, serialize_updates,
)
from utils.clock import to_iso, utcnow


class MemoryStore:
    """Rows are kept serialized so reads go through the same parsing as SQLite."""

    def __init__(self, clock=None):
        self.clock = clock
        self._rules = {}
        self._events = []
        self._event_ids = set()
        self._watermarks = {}
        self._endpoints = []
        self._lock = threading.RLock()
        self._tx_depth = 0

    def _now(self):
        return self.clock.now() if self.clock else utcnow()

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = None
            if self._tx_depth == 0:
                snapshot = (
                    copy.deepcopy(self._rules),
                    list(self._events),
                    set(self._event_ids),
                    dict(self._watermarks),
                )
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                self._tx_depth -= 1
                if snapshot is not None:
                    self._rules, self._events, self._event_ids, self._watermarks = snapshot
                raise
            else:
                self._tx_depth -= 1

    # --- Rules ---

    def insert_raw(self, row):
        """Store a row as-is, bypassing validation."""
        with self._lock:
            self._rules[row["id"]] = dict(row)

    def create_rule(self, rule):
        row = rule.to_dict()
        row["updated_at"] = row["updated_at"] or row["created_at"]
        with self._lock:
            self._rules[rule.id] = row
        return self.get_rule(rule.id)

    def get_rule(self, rule_id):
        with self._lock:
            row = self._rules.get(rule_id)
            if row is None:
                return None
            return Rule.from_dict(copy.deepcopy(row))

    def raw_updated_at(self, rule_id):
        with self._lock:
            row = self._rules.get(rule_id)
            return row.get("updated_at") if row else None

    def list_rules(self, status=None):
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._rules.values()]
        rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        rules = []
        for row in rows:
            if status and row.get("status") != status:
                continue
            try:
                rules.append(Rule.from_dict(row))
            except MalformedRuleError:
                continue
        return rules

    def due_rule_ids(self, now, limit, exclude=()):
        now_iso = to_iso(now)
        skip = set(exclude)
        with self._lock:
            rows = [r for r in self._rules.values() if r["id"] not in skip and is_due(r, now_iso)]
        rows.sort(key=lambda r: (
            last_touched(r) is not None,
            last_touched(r) or "",
            r.get("created_at") or "",
        ))
        return [r["id"] for r in rows[:limit]]

    def mark_attempted(self, rule_id, now):
        with self._lock:
            row = self._rules.get(rule_id)
            if row is not None:
                row["last_attempted_at"] = to_iso(now)

    def update_rule(self, rule_id, fields):
        columns = serialize_updates(fields)
        with self.transaction():
            row = self._rules.get(rule_id)
            if row is None:
                raise RuleNotFoundError(rule_id)
            row.update(columns)
            row["revision"] = int(row.get("revision") or 0) + 1
            row["updated_at"] = to_iso(self._now())
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
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    # --- Event Log ---

    def append_event(self, event):
        with self.transaction():
            if event.event_id in self._event_ids:
                return False
            self._event_ids.add(event.event_id)
            self._events.append(event.to_dict())
        return True

    def get_event(self, event_id):
        with self._lock:
            for d in self._events:
                if d["event_id"] == event_id:
                    return AlertEvent.from_dict(d)
        return None

    def query_events_after(self, since, limit=100, inclusive=False):
        since_iso = to_iso(since)
        with self._lock:
            # List order is insertion order, so a stable sort keeps ties in append order.
            rows = sorted(
                (
                    d for d in self._events
                    if d["occurred_at"] > since_iso or (inclusive and d["occurred_at"] == since_iso)
                ),
                key=lambda d: d["occurred_at"],
            )
        return [AlertEvent.from_dict(d) for d in rows[:limit]]

    def get_recent_events(self, limit=50, rule_id=None):
        with self._lock:
            rows = [d for d in self._events if rule_id is None or d["rule_id"] == rule_id]
        rows = sorted(rows, key=lambda d: d["occurred_at"], reverse=True)
        return [AlertEvent.from_dict(d) for d in rows[:limit]]

    def count_events(self):
        with self._lock:
            return len(self._events)

    def delete_events_older_than(self, days, now=None):
        cutoff = to_iso((now or self._now()) - timedelta(days=days))
        with self.transaction():
            keep = [d for d in self._events if d["occurred_at"] >= cutoff]
            removed = len(self._events) - len(keep)
            self._events = keep
            self._event_ids = {d["event_id"] for d in keep}
        return removed

    # --- Watermarks ---

    def get_watermark(self, name):
        with self._lock:
            return self._watermarks.get(name)

    def set_watermark(self, name, value):
        with self._lock:
            self._watermarks[name] = to_iso(value) if hasattr(value, "isoformat") else value

    # --- Push endpoints ---

    def add_push_endpoint(self, owner_id, address):
        with self._lock:
            for ep in self._endpoints:
                if ep["owner_id"] == owner_id and ep["address"] == str(address):
                    ep["enabled"] = 1
                    return ep["id"]
            endpoint_id = len(self._endpoints) + 1
            self._endpoints.append({
                "id": endpoint_id,
                "owner_id": owner_id,
                "address": str(address),
                "enabled": 1,
                "created_at": to_iso(self._now()),
            })
            return endpoint_id

    def list_push_endpoints(self, owner_id=None, enabled_only=True):
        with self._lock:
            return [
                dict(ep) for ep in self._endpoints
                if (owner_id is None or ep["owner_id"] == owner_id)
                and (not enabled_only or ep["enabled"])
            ]

    def disable_push_endpoint(self, endpoint_id):
        with self._lock:
            for ep in self._endpoints:
                if ep["id"] == endpoint_id:
                    ep["enabled"] = 0
