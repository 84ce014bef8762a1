"""
Configuration management and loading.

Handles the credit policy file and environment variables.
"""

import os
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from ..core.catalog import OPERATION_COSTS, OperationKind, resolve_operation_kind
from ..storage.db import DEFAULT_DB_PATH

ENV_DB_PATH = "SCAN_CREDITS_DB"
ENV_STRIPE_SECRET_KEY = "STRIPE_SECRET_KEY"
ENV_STRIPE_WEBHOOK_SECRET = "STRIPE_WEBHOOK_SECRET"
ENV_OPENROUTER_API_KEY = "OPENROUTER_API_KEY"


def resolve_timezone(name: str) -> tzinfo:
    """Resolve a timezone name, treating UTC specially so no tz database is needed.

    Raises:
        ValueError: If the name is not a known timezone
    """
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {name}")


def _default_costs() -> Dict[OperationKind, int]:
    return {kind: cost.units for kind, cost in OPERATION_COSTS.items()}


@dataclass(frozen=True)
class CreditPolicy:
    """Credit accounting policy.

    The day boundary for the daily ceiling is midnight in ``timezone``.
    """
    starter_grant: int = 3
    daily_ceiling: int = 10
    timezone: str = "UTC"
    operation_costs: Dict[OperationKind, int] = field(default_factory=_default_costs)

    def __post_init__(self):
        """Validate policy values."""
        if self.starter_grant < 0:
            raise ValueError("starter_grant must be >= 0")
        if self.daily_ceiling <= 0:
            raise ValueError("daily_ceiling must be > 0")
        resolve_timezone(self.timezone)
        missing = set(OperationKind) - set(self.operation_costs)
        if missing:
            raise ValueError(f"Missing operation costs for: {sorted(k.value for k in missing)}")
        for kind, units in self.operation_costs.items():
            if units <= 0:
                raise ValueError(f"cost of '{kind.value}' must be > 0")

    def cost_of(self, kind: OperationKind) -> int:
        """Unit cost of an operation kind under this policy."""
        return self.operation_costs[kind]


def load_credit_policy(path: str) -> CreditPolicy:
    """Load and validate the credit policy from a YAML file.

    Every key is optional and falls back to the CreditPolicy default,
    but unknown keys and out-of-range values are rejected so a typo
    can never silently change what users are charged.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated CreditPolicy object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Credit policy file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return CreditPolicy()
    if not isinstance(raw_config, dict):
        raise ValueError("Credit policy must be a mapping")

    allowed_top_keys = {'starter_grant', 'daily_ceiling', 'timezone', 'operation_costs'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    kwargs = {}
    for key in ('starter_grant', 'daily_ceiling'):
        if key in raw_config:
            value = raw_config[key]
            # bool is an int subclass; reject it explicitly
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"'{key}' must be an integer")
            kwargs[key] = value

    if 'timezone' in raw_config:
        if not isinstance(raw_config['timezone'], str):
            raise ValueError("'timezone' must be a string")
        kwargs['timezone'] = raw_config['timezone']

    if 'operation_costs' in raw_config:
        kwargs['operation_costs'] = _parse_operation_costs(raw_config['operation_costs'])

    return CreditPolicy(**kwargs)


def _parse_operation_costs(data) -> Dict[OperationKind, int]:
    """Parse cost overrides on top of the default cost table.

    Raises:
        ValueError: If a kind is unknown or a cost is not a positive integer
    """
    if not isinstance(data, dict):
        raise ValueError("'operation_costs' must be a dictionary")

    costs = _default_costs()
    for name, units in data.items():
        kind = resolve_operation_kind(name)
        if kind is None:
            valid_kinds = [k.value for k in OperationKind]
            raise ValueError(f"Unknown operation kind '{name}', must be one of: {valid_kinds}")
        if not isinstance(units, int) or isinstance(units, bool) or units <= 0:
            raise ValueError(f"cost of '{name}' must be a positive integer")
        costs[kind] = units
    return costs


def database_path() -> str:
    """Database location from the environment, or the default."""
    return os.environ.get(ENV_DB_PATH, DEFAULT_DB_PATH)


def env_secret(name: str) -> Optional[str]:
    """Read a secret from the environment, treating blank values as unset."""
    value = os.environ.get(name, "").strip()
    return value or None
