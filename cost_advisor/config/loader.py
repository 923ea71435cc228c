"""
Configuration management and loading.

Handles rule thresholds, savings multipliers and price overrides.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict

import yaml

from cost_advisor.core.pricing import PRICE_TABLE, PriceTable
from cost_advisor.storage.models import Service


@dataclass(frozen=True)
class WindowConfig:
    """Trailing windows, in days, used for aggregation."""
    lookback_days: int = 7
    history_days: int = 35

    def __post_init__(self):
        """Validate windows are positive and ordered."""
        if self.lookback_days <= 0:
            raise ValueError("lookback_days must be > 0")
        if self.history_days <= 0:
            raise ValueError("history_days must be > 0")
        if self.history_days < self.lookback_days:
            raise ValueError("history_days must be >= lookback_days")


@dataclass(frozen=True)
class ThresholdConfig:
    """Numeric thresholds the rules compare against."""
    cpu_percent: float = 20.0
    db_connections: float = 5.0
    storage_gb: float = 100.0
    idle_days: float = 7.0
    sustained_days: float = 30.0
    reserved_max_stddev: float = 10.0
    material_change: float = 0.05

    def __post_init__(self):
        """Validate thresholds are positive."""
        for name in (
            "cpu_percent", "db_connections", "storage_gb", "idle_days",
            "sustained_days", "reserved_max_stddev", "material_change"
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")


@dataclass(frozen=True)
class SavingsConfig:
    """Fraction of the monthly cost each kind of change is assumed to save.

    These are placeholder heuristics, not derived from real price deltas.
    """
    resize_down: float = 0.5
    storage_tier: float = 0.4
    reserved: float = 0.3

    def __post_init__(self):
        """Validate multipliers are fractions."""
        for name in ("resize_down", "storage_tier", "reserved"):
            value = getattr(self, name)
            if value <= 0 or value > 1:
                raise ValueError(f"{name} must be in (0, 1]")


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration."""
    windows: WindowConfig = field(default_factory=WindowConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    savings: SavingsConfig = field(default_factory=SavingsConfig)
    price_table: PriceTable = PRICE_TABLE

    def __post_init__(self):
        """Validate the history window can show sustained running."""
        if self.windows.history_days < self.thresholds.sustained_days:
            raise ValueError("history_days must be >= thresholds.sustained_days")
        if self.windows.history_days < self.thresholds.idle_days:
            raise ValueError("history_days must be >= thresholds.idle_days")


_PRICING_SERVICES = {
    "compute": Service.COMPUTE,
    "relational_db": Service.RELATIONAL_DB,
}


def load_engine_config(path: str) -> EngineConfig:
    """Load and validate engine configuration from YAML file.

    Every section is optional and falls back to the defaults, but
    unknown keys and out-of-range values are rejected so a typo never
    silently changes what the rules recommend.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated EngineConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Engine config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'windows', 'thresholds', 'savings', 'pricing'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    windows_data = _section(raw_config, 'windows', {'lookback_days', 'history_days'})
    for key, value in windows_data.items():
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(f"'windows.{key}' must be an integer")
    windows = WindowConfig(**windows_data)

    thresholds = ThresholdConfig(**_numeric_section(
        raw_config, 'thresholds', {
            'cpu_percent', 'db_connections', 'storage_gb', 'idle_days',
            'sustained_days', 'reserved_max_stddev', 'material_change'
        }
    ))

    savings = SavingsConfig(**_numeric_section(
        raw_config, 'savings', {'resize_down', 'storage_tier', 'reserved'}
    ))

    price_table = _parse_pricing(raw_config.get('pricing', {}))

    return EngineConfig(
        windows=windows,
        thresholds=thresholds,
        savings=savings,
        price_table=price_table
    )


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict[str, Any]:
    """Extract an optional dictionary section and reject unknown keys."""
    data = raw_config.get(name, {})
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return dict(data)


def _numeric_section(raw_config: Dict, name: str, allowed_keys: set) -> Dict[str, float]:
    """Extract a section whose values must all be numbers."""
    data = _section(raw_config, name, allowed_keys)
    parsed = {}
    for key, value in data.items():
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ValueError(f"'{name}.{key}' must be a number")
        parsed[key] = float(value)
    return parsed


def _parse_pricing(data: Any) -> PriceTable:
    """Parse price overrides into a new table built from the default one.

    Args:
        data: Pricing section, e.g. ``{'compute': {'t3.micro': 0.01}}``

    Returns:
        PriceTable with overrides applied

    Raises:
        ValueError: If pricing section is invalid
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("'pricing' must be a dictionary")

    allowed_keys = set(_PRICING_SERVICES) | {'default_hourly'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown pricing keys: {unknown_keys}")

    overrides = {}
    for section_name, service in _PRICING_SERVICES.items():
        rates = data.get(section_name, {}) or {}
        if not isinstance(rates, dict):
            raise ValueError(f"'pricing.{section_name}' must be a dictionary")
        for class_key, rate in rates.items():
            if not isinstance(rate, (int, float)) or isinstance(rate, bool) or rate < 0:
                raise ValueError(f"'pricing.{section_name}.{class_key}' must be >= 0")
            overrides[(service, str(class_key))] = Decimal(str(rate))

    default_hourly = None
    if 'default_hourly' in data:
        rate = data['default_hourly']
        if not isinstance(rate, (int, float)) or isinstance(rate, bool) or rate <= 0:
            raise ValueError("'pricing.default_hourly' must be > 0")
        default_hourly = Decimal(str(rate))

    if not overrides and default_hourly is None:
        return PRICE_TABLE
    return PRICE_TABLE.with_overrides(overrides, default_hourly)
