"""Tick scheduler: evaluates due rules on a fixed interval."""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import schedule

from models.errors import MalformedRuleError, ObservationError, PersistenceError, RuleNotFoundError
from utils.clock import SystemClock
from utils.log_throttle import LogThrottle

logger = logging.getLogger("tokenwatch.scheduler")


@dataclass
class TickReport:
    tick: int = 0
    due: int = 0
    evaluated: int = 0
    events: int = 0
    failures: int = 0
    quarantined: int = 0
    skipped: bool = False
    cleaned: int = 0
    duration: float = 0.0
    errors: dict = field(default_factory=dict)

    def summary(self):
        if self.skipped:
            return f"tick {self.tick} skipped (previous tick still running)"
        return (
            f"tick {self.tick}: {self.evaluated}/{self.due} evaluated, {self.events} events, "
            f"{self.failures} failures in {self.duration:.2f}s"
        )


class TickScheduler:
    def __init__(self, store, pipeline, clock=None, batch_size=200, workers=4,
                 retention_days=30, cleanup_every_ticks=60, throttle=None, interval_seconds=5):
        self.store = store
        self.pipeline = pipeline
        self.clock = clock or SystemClock()
        self.batch_size = batch_size
        self.workers = workers
        self.retention_days = retention_days
        self.cleanup_every_ticks = cleanup_every_ticks
        self.throttle = throttle or LogThrottle(600)
        self.interval = interval_seconds

        self.tick_count = 0
        self.skipped_ticks = 0
        self._tick_lock = threading.Lock()
        self._quarantine = {}
        self._quarantine_lock = threading.Lock()

        self._scheduler = schedule.Scheduler()
        self._stop_event = threading.Event()
        self._thread = None

    # --- one pass ---

    def run_tick(self):
        if not self._tick_lock.acquire(blocking=False):
            self.skipped_ticks += 1
            logger.warning("Previous tick still running; skipping this one")
            return TickReport(tick=self.tick_count, skipped=True)
        try:
            return self._run_tick()
        finally:
            self._tick_lock.release()

    def _run_tick(self):
        start = time.monotonic()
        self.tick_count += 1
        now = self.clock.now()
        report = TickReport(tick=self.tick_count)

        try:
            held = [rid for rid in self.quarantined_ids() if self._is_quarantined(rid)]
            rule_ids = self.store.due_rule_ids(now, self.batch_size, exclude=held)
        except PersistenceError as e:
            logger.error(f"Could not list due rules: {e}")
            report.failures += 1
            report.errors["persistence"] = report.errors.get("persistence", 0) + 1
            report.duration = time.monotonic() - start
            return report

        report.due = len(rule_ids)
        report.quarantined = len(held)
        if rule_ids:
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="tick") as pool:
                results = list(pool.map(lambda rid: self._process_one(rid, now), rule_ids))
            for status, outcome in results:
                if status == "ok":
                    report.evaluated += 1
                    if outcome is not None and outcome.event_type and outcome.committed and not outcome.duplicate:
                        report.events += 1
                elif status == "quarantined":
                    report.quarantined += 1
                else:
                    report.failures += 1
                    report.errors[status] = report.errors.get(status, 0) + 1

        if self.cleanup_every_ticks and self.tick_count % self.cleanup_every_ticks == 0:
            report.cleaned = self.cleanup(now)

        report.duration = time.monotonic() - start
        logger.debug(report.summary())
        return report

    def cleanup(self, now=None):
        try:
            removed = self.store.delete_events_older_than(self.retention_days, now=now or self.clock.now())
        except PersistenceError as e:
            logger.error(f"Event retention cleanup failed: {e}")
            return 0
        if removed:
            logger.info(f"Removed {removed} events older than {self.retention_days} days")
        return removed

    def _process_one(self, rule_id, now):
        """Per-rule error boundary; returns (status, outcome)."""
        try:
            if self._is_quarantined(rule_id):
                return "quarantined", None
            rule = self.store.get_rule(rule_id)
            if rule is None:
                return "ok", None
            outcome = self.pipeline.process(rule, now)
            self.throttle.forget(rule_id)
            return "ok", outcome
        except ObservationError as e:
            self._log(logging.WARNING, rule_id, e, f"Observation failed for rule {rule_id}: {e}")
            self._mark_attempted(rule_id, now)
            return "observation", None
        except RuleNotFoundError:
            logger.info(f"Rule {rule_id} was deleted during evaluation")
            return "ok", None
        except PersistenceError as e:
            self._log(logging.ERROR, rule_id, e, f"Could not persist rule {rule_id}: {e}")
            self._mark_attempted(rule_id, now)
            return "persistence", None
        except MalformedRuleError as e:
            self._quarantine_rule(rule_id)
            self._log(logging.ERROR, rule_id, e, f"Corrupt rule data for {rule_id}: {e}")
            return "malformed", None
        except Exception as e:
            if self.throttle.should_log(rule_id, _signature(e), now):
                logger.exception(f"Unexpected error evaluating rule {rule_id}")
            self._mark_attempted(rule_id, now)
            return "unexpected", None

    def _mark_attempted(self, rule_id, now):
        """Failed rules move to the back of the due order."""
        try:
            self.store.mark_attempted(rule_id, now)
        except PersistenceError as e:
            logger.debug(f"Could not record attempt for rule {rule_id}: {e}")

    def _log(self, level, rule_id, error, message):
        if self.throttle.should_log(rule_id, _signature(error), self.clock.now()):
            logger.log(level, message)

    # --- quarantine for rules whose data cannot be evaluated ---

    def _quarantine_rule(self, rule_id):
        try:
            stamp = self.store.raw_updated_at(rule_id)
        except PersistenceError:
            stamp = None
        with self._quarantine_lock:
            self._quarantine[rule_id] = stamp

    def _is_quarantined(self, rule_id):
        """Skip a quarantined rule until its row is edited."""
        with self._quarantine_lock:
            if rule_id not in self._quarantine:
                return False
            stamp = self._quarantine[rule_id]
        if stamp is not None and stamp == self.store.raw_updated_at(rule_id):
            return True
        with self._quarantine_lock:
            self._quarantine.pop(rule_id, None)
        return False

    def quarantined_ids(self):
        with self._quarantine_lock:
            return sorted(self._quarantine)

    # --- background loop ---

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._scheduler.clear()
        self._scheduler.every(self.interval).seconds.do(self._tick_job)
        self._thread = threading.Thread(target=self._run_loop, name="tick-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started (every {self.interval}s, batch {self.batch_size})")

    def stop(self, timeout=30):
        """Stop after the in-flight tick finishes. Safe to call repeatedly."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        self._scheduler.clear()
        logger.info("Scheduler stopped")

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def _tick_job(self):
        try:
            report = self.run_tick()
        except Exception:
            logger.exception("Tick failed")
            return
        if report.failures:
            logger.info(report.summary())

    def _run_loop(self):
        self._tick_job()
        while not self._stop_event.is_set():
            self._scheduler.run_pending()
            self._stop_event.wait(min(1.0, self.interval))


def _signature(error):
    return f"{type(error).__name__}:{error}"

