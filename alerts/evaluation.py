"""Evaluation result shared by all rule-kind evaluators."""
from dataclasses import dataclass, field
from typing import Optional

from models.events import AlertEvent
from models.rules import Rule


@dataclass
class Evaluation:
    """Outcome of one evaluator call.

    ``updates`` holds only the Rule fields that changed (merge semantics);
    ``rule`` is the input rule with those updates applied.
    """
    rule: Rule
    updates: dict = field(default_factory=dict)
    event: Optional[AlertEvent] = None

    @property
    def changed(self):
        return bool(self.updates)

    @classmethod
    def unchanged(cls, rule):
        return cls(rule=rule)

    @classmethod
    def transition(cls, rule, updates, event=None):
        return cls(rule=rule.apply(updates), updates=updates, event=event)
