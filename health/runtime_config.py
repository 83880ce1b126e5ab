"""Environment settings and runtime-adjustable scoring configuration."""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic_settings import BaseSettings

from .. import config as _flat_config
from ..config_structured import ConfigError, SystemConfig, get_config, load_config_overrides

logger = logging.getLogger(__name__)

# Keys that may be patched at runtime -> (section, field) on SystemConfig.
_ADJUSTABLE_KEYS: Dict[str, Tuple[str, str]] = {
    "REFERENCE_TRADES": ("scoring", "reference_trades"),
    "MIN_TRADES_FOR_ASSESSMENT": ("scoring", "min_trades_for_assessment"),
    "MIN_DAYS_FOR_ASSESSMENT": ("scoring", "min_days_for_assessment"),
    "HEALTHY_THRESHOLD": ("scoring", "healthy_threshold"),
    "WARNING_THRESHOLD": ("scoring", "warning_threshold"),
    "HYSTERESIS_MARGIN": ("scoring", "hysteresis_margin"),
    "CONFIDENCE_BASE_MARGIN": ("scoring", "confidence_base_margin"),
    "CUSUM_ALLOWANCE_SIGMA": ("drift", "allowance_sigma"),
    "CUSUM_THRESHOLD_SIGMA": ("drift", "threshold_sigma"),
    "HEALTH_EVAL_COOLDOWN_MS": ("evaluator", "eval_cooldown_ms"),
    "HEALTH_STALE_THRESHOLD_MS": ("evaluator", "stale_threshold_ms"),
}

# Semantic validators: key -> (validator_fn, human-readable description).
# Validator returns True if the value is acceptable.  Cross-field rules
# (e.g. warning < healthy) are enforced by the config dataclasses.
CONFIG_VALIDATORS: Dict[str, Tuple[Callable[[Any], bool], str]] = {
    "REFERENCE_TRADES": (
        lambda v: 1 <= v <= 10_000,
        "Must be between 1 and 10000",
    ),
    "MIN_TRADES_FOR_ASSESSMENT": (
        lambda v: 1 <= v <= 1_000,
        "Must be between 1 and 1000",
    ),
    "MIN_DAYS_FOR_ASSESSMENT": (
        lambda v: 1 <= v <= 365,
        "Must be between 1 and 365",
    ),
    "HEALTHY_THRESHOLD": (
        lambda v: 0.0 < v <= 1.0,
        "Must be between 0.0 (exclusive) and 1.0",
    ),
    "WARNING_THRESHOLD": (
        lambda v: 0.0 < v < 1.0,
        "Must be between 0.0 and 1.0 (exclusive)",
    ),
    "HYSTERESIS_MARGIN": (
        lambda v: 0.0 <= v <= 0.2,
        "Must be between 0.0 and 0.2",
    ),
    "CONFIDENCE_BASE_MARGIN": (
        lambda v: 0.0 <= v <= 1.0,
        "Must be between 0.0 and 1.0",
    ),
    "CUSUM_ALLOWANCE_SIGMA": (
        lambda v: 0.0 <= v <= 5.0,
        "Must be between 0.0 and 5.0",
    ),
    "CUSUM_THRESHOLD_SIGMA": (
        lambda v: 0.0 < v <= 20.0,
        "Must be between 0.0 (exclusive) and 20.0",
    ),
    "HEALTH_EVAL_COOLDOWN_MS": (
        lambda v: 0 <= v <= 7 * 24 * 3600 * 1000,
        "Must be between 0 and one week",
    ),
    "HEALTH_STALE_THRESHOLD_MS": (
        lambda v: 0 <= v <= 7 * 24 * 3600 * 1000,
        "Must be between 0 and one week",
    ),
}


class HealthSettings(BaseSettings):
    """Immutable settings loaded from environment / .env file.

    Unset fields leave the health.yaml (or ``config_path``) value in place.
    """

    db_path: Optional[str] = None
    db_timeout_seconds: Optional[float] = None
    config_path: Optional[str] = None
    log_level: Optional[str] = None
    log_format: Optional[str] = None
    eval_cooldown_ms: Optional[int] = None
    stale_threshold_ms: Optional[int] = None

    model_config = {"env_prefix": "STRATEGY_HEALTH_"}

    def build_config(self) -> SystemConfig:
        """Structured config from ``config_path`` (or health.yaml) plus env overrides."""
        cfg = load_config_overrides(self.config_path)
        overrides = {
            "evaluator": {
                "eval_cooldown_ms": self.eval_cooldown_ms,
                "stale_threshold_ms": self.stale_threshold_ms,
            },
            "storage": {
                "db_path": self.db_path,
                "timeout_seconds": self.db_timeout_seconds,
            },
            "log": {
                "level": self.log_level,
                "format": self.log_format,
            },
        }
        sections = {}
        for section, values in overrides.items():
            changed = {k: v for k, v in values.items() if v is not None}
            if changed:
                sections[section] = dataclasses.replace(getattr(cfg, section), **changed)
        return dataclasses.replace(cfg, **sections)


class RuntimeConfig:
    """Get/patch access to the scoring constants, restricted to a whitelist.

    Patches replace the affected section of the ``get_config()`` singleton
    (re-running its validation) and mirror the value onto ``config.py`` so
    both interfaces agree.  Evaluations started after a patch see the new
    value.
    """

    def __init__(self, cfg: Optional[SystemConfig] = None) -> None:
        self._cfg = cfg or get_config()

    def get_adjustable(self) -> Dict[str, Any]:
        """Return the current value of every adjustable key."""
        out: Dict[str, Any] = {}
        for key in sorted(_ADJUSTABLE_KEYS):
            section, name = _ADJUSTABLE_KEYS[key]
            out[key] = getattr(getattr(self._cfg, section), name)
        return out

    def patch(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Apply validated updates and return the new state.

        Raises ``KeyError`` for unknown keys and ``ValueError`` for values
        that cannot be coerced or fail validation.
        """
        bad = set(updates) - set(_ADJUSTABLE_KEYS)
        if bad:
            raise KeyError(f"Keys not adjustable: {sorted(bad)}")
        for key, value in updates.items():
            section, name = _ADJUSTABLE_KEYS[key]
            current_section = getattr(self._cfg, section)
            current = getattr(current_section, name)
            # Coerce to same type as current value
            target_type = type(current)
            try:
                coerced = target_type(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Cannot coerce {key}={value!r} to {target_type.__name__}") from exc
            # Semantic validation
            validator = CONFIG_VALIDATORS.get(key)
            if validator is not None:
                check_fn, description = validator
                if not check_fn(coerced):
                    raise ValueError(
                        f"Invalid value for {key}: {coerced!r}. {description}"
                    )
            try:
                new_section = dataclasses.replace(current_section, **{name: coerced})
            except ConfigError as exc:
                raise ValueError(f"Invalid value for {key}: {coerced!r}. {exc}") from exc
            setattr(self._cfg, section, new_section)
            if hasattr(_flat_config, key):
                setattr(_flat_config, key, coerced)
            logger.info("RuntimeConfig patched %s = %r", key, coerced)
        return self.get_adjustable()
