"""Per-rule unit of work: fetch, evaluate, commit, dispatch."""
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional

from alerts.evaluator import evaluate, indicator_ids
from models.errors import ObservationTimeout, RuleNotFoundError, StaleRuleError

logger = logging.getLogger("tokenwatch.pipeline")


@dataclass
class RuleOutcome:
    rule_id: str
    event_type: Optional[str] = None
    committed: bool = False
    stale: bool = False
    duplicate: bool = False


class RulePipeline:
    def __init__(self, store, source, dispatcher=None, fetch_timeout=10, fetch_workers=4):
        self.store = store
        self.source = source
        self.dispatcher = dispatcher
        self.fetch_timeout = fetch_timeout
        self._fetch_pool = ThreadPoolExecutor(max_workers=fetch_workers, thread_name_prefix="fetch")

    def close(self):
        # A fetch stuck past its timeout must not block shutdown.
        self._fetch_pool.shutdown(wait=False)

    def fetch(self, rule):
        future = self._fetch_pool.submit(
            self.source.fetch_snapshot, rule.subject, indicator_ids(rule),
        )
        try:
            return future.result(timeout=self.fetch_timeout)
        except FutureTimeout:
            future.cancel()
            raise ObservationTimeout(
                f"Snapshot for {rule.subject} took longer than {self.fetch_timeout}s",
                subject=rule.subject,
            )

    def process(self, rule, now):
        observation = self.fetch(rule)
        result = evaluate(rule, observation, now)
        outcome = RuleOutcome(rule_id=rule.id)

        try:
            self.commit(rule, result, now, outcome)
        except StaleRuleError as e:
            logger.info(f"Dropped stale result for {rule.id}: {e}")
            outcome.stale = True
            return outcome

        if result.event is not None:
            outcome.event_type = result.event.type.value
            if outcome.duplicate:
                logger.debug(f"Event {result.event.event_id} already recorded; not re-dispatched")
            elif self.dispatcher is not None:
                self.dispatcher.notify(rule.owner_id, result.event, rule.channels)
        return outcome

    def commit(self, rule, result, now, outcome):
        """Write the event and rule updates together, or neither."""
        with self.store.transaction():
            current = self.store.get_rule(rule.id)
            if current is None:
                raise RuleNotFoundError(rule.id)
            if current.revision != rule.revision:
                raise StaleRuleError(rule.id, rule.revision, current.revision)

            if result.event is not None:
                outcome.duplicate = not self.store.append_event(result.event)

            updates = dict(result.updates)
            updates["last_evaluated_at"] = now
            self.store.update_rule(rule.id, updates)
        outcome.committed = True
