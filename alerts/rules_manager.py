"""Rule definitions loading: YAML file -> validated Rule objects."""
import logging
import uuid
from datetime import timedelta
from pathlib import Path

import yaml

from alerts.templates import indicators_for, template_names
from models.enums import RuleKind, TriggerKind
from models.observation import Subject
from models.rules import (
    ChannelPrefs, ConfirmationPayload, Rule, SessionParams, SessionPayload,
    ThresholdPayload, Trigger,
)

logger = logging.getLogger("tokenwatch.alerts.rules")


class RuleDefinitionError(ValueError):
    """A rule definition cannot be turned into a Rule."""


def _threshold_payload(d):
    triggers = []
    for t in d.get("triggers", []):
        try:
            kind = TriggerKind(t.get("kind"))
        except ValueError:
            raise RuleDefinitionError(f"Unknown trigger kind: {t.get('kind')}")
        if kind in (TriggerKind.VOLUME_SPIKE, TriggerKind.PRICE_MOVE) and t.get("min_pct") is None:
            raise RuleDefinitionError(f"{kind.value} trigger needs min_pct")
        if kind in (TriggerKind.PRICE_ABOVE, TriggerKind.PRICE_BELOW) and t.get("target_price") is None:
            raise RuleDefinitionError(f"{kind.value} trigger needs target_price")
        triggers.append(Trigger.from_dict(dict(t, kind=kind.value)))
    if not triggers:
        raise RuleDefinitionError("threshold rule needs at least one trigger")
    need = int(d.get("need", 1))
    if need < 1 or need > len(triggers):
        raise RuleDefinitionError(f"need must be between 1 and {len(triggers)}")
    return ThresholdPayload(
        triggers=triggers,
        need=need,
        cooldown_seconds=int(d.get("cooldown_seconds", 3600)),
        stage_max=int(d.get("stage_max", 3)),
    )


def _confirmation_payload(d):
    template = d.get("template")
    indicators = indicators_for(template)
    if indicators is None:
        raise RuleDefinitionError(f"Unknown template: {template} (known: {', '.join(template_names())})")
    need = int(d.get("need", 2))
    if need < 1 or need > len(indicators):
        raise RuleDefinitionError(f"need must be between 1 and {len(indicators)}")
    return ConfirmationPayload(
        template=template,
        need=need,
        expiry_minutes=int(d.get("expiry_minutes", 240)),
        cooldown_minutes=int(d.get("cooldown_minutes", 60)),
        window_minutes=d.get("window_minutes"),
        indicators=indicators,
    )


def _session_payload(d):
    try:
        params = SessionParams.from_dict(d.get("params") or {})
    except (TypeError, ValueError) as e:
        raise RuleDefinitionError(str(e))
    return SessionPayload(params=params)


PAYLOAD_BUILDERS = {
    RuleKind.THRESHOLD: _threshold_payload,
    RuleKind.CONFIRMATION: _confirmation_payload,
    RuleKind.SESSION: _session_payload,
}


def build_rule(definition, now, default_owner="local"):
    """Validate one definition dict and build a fresh Rule."""
    try:
        kind = RuleKind(definition.get("kind"))
    except ValueError:
        raise RuleDefinitionError(f"Unknown rule kind: {definition.get('kind')}")
    asset = definition.get("asset")
    if not asset:
        raise RuleDefinitionError("asset is required")

    payload = PAYLOAD_BUILDERS[kind](definition)
    rule_id = str(definition.get("id") or uuid.uuid4())
    channels = definition.get("channels") or {}

    expires_at = None
    if kind == RuleKind.CONFIRMATION:
        expires_at = now + timedelta(minutes=payload.expiry_minutes)

    return Rule(
        id=rule_id,
        kind=kind,
        subject=Subject(str(asset), str(definition.get("timeframe", "1h"))),
        owner_id=str(definition.get("owner_id") or default_owner),
        name=definition.get("name") or rule_id,
        enabled=bool(definition.get("enabled", True)),
        created_at=now,
        updated_at=now,
        payload=payload,
        expires_at=expires_at,
        channels=ChannelPrefs(
            in_app=bool(channels.get("in_app", True)),
            push=bool(channels.get("push", False)),
        ),
        note=definition.get("note", ""),
    )


class RulesManager:
    def __init__(self, rules_path="config/rules.yaml", default_owner="local"):
        self.rules_path = Path(rules_path)
        self.default_owner = default_owner
        self.definitions = []
        self.load()

    def load(self):
        if not self.rules_path.exists():
            logger.warning(f"Rules file not found: {self.rules_path}")
            return
        with open(self.rules_path) as f:
            data = yaml.safe_load(f) or {}
        self.definitions = data.get("rules", [])
        logger.info(f"Loaded {len(self.definitions)} rule definitions from {self.rules_path}")

    def build_rules(self, now):
        """Valid rules from the file; invalid definitions are skipped with a warning."""
        rules = []
        for d in self.definitions:
            try:
                rules.append(build_rule(d, now, self.default_owner))
            except (RuleDefinitionError, TypeError, ValueError) as e:
                logger.warning(f"Invalid rule definition {d.get('id', '?')}: {e}")
        return rules

    def sync(self, store, now):
        """Create rules that do not exist yet; returns (created, skipped) ids."""
        created, skipped = [], []
        for rule in self.build_rules(now):
            if store.get_rule(rule.id) is not None:
                skipped.append(rule.id)
                continue
            store.create_rule(rule)
            created.append(rule.id)
        return created, skipped
