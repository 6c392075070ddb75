"""Error taxonomy shared by the store, evaluators and scheduler."""


class EngineError(Exception):
    """Base class for engine errors."""
    category = "engine"


class ObservationError(EngineError):
    """Observation fetch failed; retried implicitly on the next tick."""
    category = "observation"

    def __init__(self, message, subject=None):
        super().__init__(message)
        self.subject = subject


class ObservationTimeout(ObservationError):
    """Observation fetch exceeded its time budget."""


class PersistenceError(EngineError):
    """State store or event log write failed."""
    category = "persistence"


class RuleNotFoundError(PersistenceError):
    """The rule row is gone (deleted concurrently)."""

    def __init__(self, rule_id):
        super().__init__(f"Rule not found: {rule_id}")
        self.rule_id = rule_id


class StaleRuleError(PersistenceError):
    """The rule changed between read and write."""

    def __init__(self, rule_id, expected, actual):
        super().__init__(f"Rule {rule_id} moved from revision {expected} to {actual}")
        self.rule_id = rule_id
        self.expected = expected
        self.actual = actual


class MalformedRuleError(EngineError):
    """Rule data cannot be evaluated; not retryable until the rule is edited."""
    category = "malformed"

    def __init__(self, message, rule_id=None):
        super().__init__(message)
        self.rule_id = rule_id
