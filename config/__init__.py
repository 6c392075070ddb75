"""Configuration management."""
import os
import yaml
from pathlib import Path

_DEFAULT_CONFIG = Path(__file__).parent / "default_config.yaml"

ENV_OVERRIDES = {
    "TOKENWATCH_DB_PATH": ("database", "path"),
    "TOKENWATCH_TICK_INTERVAL": ("scheduler", "tick_interval"),
    "TOKENWATCH_BATCH_SIZE": ("scheduler", "batch_size"),
    "TOKENWATCH_RETENTION_DAYS": ("scheduler", "retention_days"),
    "TOKENWATCH_LOG_LEVEL": ("logging", "level"),
    "TOKENWATCH_TELEGRAM_TOKEN": ("telegram", "bot_token"),
}


def load_config(path=None):
    """Load config from YAML, merging defaults with optional overrides."""
    with open(_DEFAULT_CONFIG) as f:
        config = yaml.safe_load(f)

    if path and Path(path).exists():
        with open(path) as f:
            overrides = yaml.safe_load(f) or {}
        config = _deep_merge(config, overrides)

    # Environment variable overrides
    for env_key, config_path in ENV_OVERRIDES.items():
        val = os.environ.get(env_key)
        if val:
            d = config
            for k in config_path[:-1]:
                d = d.setdefault(k, {})
            try:
                d[config_path[-1]] = int(val)
            except ValueError:
                d[config_path[-1]] = val

    _validate_config(config)
    return config


def _deep_merge(base, override):
    """Recursively merge override into base dict."""
    result = base.copy()
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _validate_config(config):
    required_sections = ["database", "scheduler", "source", "logging"]
    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required config section: {section}")

    sched = config["scheduler"]
    for key in ("tick_interval", "batch_size", "retention_days", "workers"):
        if not isinstance(sched.get(key), int) or sched[key] < 1:
            raise ValueError(f"scheduler.{key} must be an integer >= 1")
    if sched.get("fetch_timeout", 0) <= 0:
        raise ValueError("scheduler.fetch_timeout must be > 0")
