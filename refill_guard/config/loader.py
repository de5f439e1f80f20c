"""
Configuration management and loading.

Handles the refill reminder settings snapshot read by the decision engine.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_CONFIG_PATH = "refill_guard.yaml"


@dataclass(frozen=True)
class SettingsState:
    """Read-only settings snapshot for one decision cycle.

    Defaults match a fresh install: reminders on, warn at a week of supply
    left, warn a month after the last refill, four pills a day.
    """
    refill_reminders_enabled: bool = True
    inventory_reminder_threshold_days: int = 7
    time_reminder_threshold_days: int = 30
    daily_pill_target: int = 4

    def __post_init__(self):
        """Validate thresholds and targets are positive."""
        if not isinstance(self.refill_reminders_enabled, bool):
            raise ValueError("refill_reminders_enabled must be a boolean")
        for name in ("inventory_reminder_threshold_days",
                     "time_reminder_threshold_days",
                     "daily_pill_target"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer")
            if value <= 0:
                raise ValueError(f"{name} must be > 0")


_ALLOWED_KEYS = {
    'refill_reminders_enabled',
    'inventory_reminder_threshold_days',
    'time_reminder_threshold_days',
    'daily_pill_target',
}


def load_settings(path: str = DEFAULT_CONFIG_PATH, missing_ok: bool = False) -> SettingsState:
    """Load and validate reminder settings from a YAML file.

    Strict validation ensures a typo in a key is reported instead of
    silently falling back to a default threshold.

    Args:
        path: Path to YAML configuration file
        missing_ok: Return default settings when the file does not exist

    Returns:
        Validated SettingsState object

    Raises:
        FileNotFoundError: If config file doesn't exist and missing_ok is False
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        if missing_ok:
            return SettingsState()
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    # An empty file means "all defaults"
    if raw_config is None:
        return SettingsState()

    if not isinstance(raw_config, dict):
        raise ValueError("Settings file must contain a mapping")

    # Allow the settings to be nested under a 'reminders' section
    if set(raw_config.keys()) == {'reminders'}:
        raw_config = raw_config['reminders']
        if not isinstance(raw_config, dict):
            raise ValueError("'reminders' must be a dictionary")

    return parse_settings(raw_config)


def parse_settings(data: Dict[str, Any]) -> SettingsState:
    """Build a SettingsState from a raw mapping, rejecting unknown keys.

    Args:
        data: Raw settings mapping

    Returns:
        Validated SettingsState

    Raises:
        ValueError: If a key is unknown or a value is invalid
    """
    unknown_keys = set(data.keys()) - _ALLOWED_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    enabled = data.get('refill_reminders_enabled', True)
    if not isinstance(enabled, bool):
        raise ValueError("'refill_reminders_enabled' must be true or false")

    values = {}
    for key in ('inventory_reminder_threshold_days',
                'time_reminder_threshold_days',
                'daily_pill_target'):
        if key not in data:
            continue
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"'{key}' must be a positive integer")
        values[key] = value

    return SettingsState(refill_reminders_enabled=enabled, **values)


def save_settings(settings: SettingsState, path: str = DEFAULT_CONFIG_PATH) -> None:
    """Write settings to a YAML file, e.g. to seed a default config."""
    data = {
        'refill_reminders_enabled': settings.refill_reminders_enabled,
        'inventory_reminder_threshold_days': settings.inventory_reminder_threshold_days,
        'time_reminder_threshold_days': settings.time_reminder_threshold_days,
        'daily_pill_target': settings.daily_pill_target,
    }
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, sort_keys=False)
