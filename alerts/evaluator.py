"""Dispatch a rule to the evaluator for its kind."""
import logging

from alerts.confirmation import evaluate_confirmation
from alerts.evaluation import Evaluation
from alerts.session import evaluate_session
from alerts.threshold import evaluate_threshold
from models.enums import RuleKind
from models.errors import MalformedRuleError

logger = logging.getLogger("tokenwatch.alerts.evaluator")

# Adding a rule kind means adding one entry here.
EVALUATORS = {
    RuleKind.THRESHOLD: evaluate_threshold,
    RuleKind.CONFIRMATION: evaluate_confirmation,
    RuleKind.SESSION: evaluate_session,
}


def evaluate(rule, observation, now) -> Evaluation:
    """Pure ``(rule, observation, now) -> Evaluation``; performs no I/O."""
    func = EVALUATORS.get(rule.kind)
    if func is None:
        raise MalformedRuleError(f"No evaluator for rule kind {rule.kind!r}", rule_id=rule.id)
    result = func(rule, observation, now)
    if result.event is not None:
        logger.debug(f"Rule {rule.id} emits {result.event.type.value}")
    return result


def indicator_ids(rule):
    """Indicator readings the observation source must supply for this rule."""
    if rule.kind == RuleKind.CONFIRMATION:
        return tuple(i.id for i in rule.payload.indicators)
    return ()
