"""
Monitoring pipeline tuning: presets, overrides and startup validation.

Three presets are available via MONITORING_MODE:
- default: balanced load on the database and the Reddit API
- performance: fewer, smaller batches with longer pauses
- aggressive: more frequent scans and larger batches

Any field can be overridden with the matching MONITOR_* environment variable.
Invalid configuration raises MonitoringConfigError and must stop the process.
"""

import logging
from datetime import timedelta
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from .settings import MIN_TOKEN_SAFETY_MARGIN, Settings, settings as default_settings

logger = logging.getLogger(__name__)

TimeWindow = Literal["day", "week", "month"]


class MonitoringConfigError(ValueError):
    """Raised when monitoring configuration is invalid (fatal at startup)."""
    pass


class MonitoringConfig(BaseModel):
    """Validated tuning knobs for the producer and worker loop."""

    model_config = {"frozen": True}

    # Timing
    producer_interval_minutes: int = Field(default=30, ge=1)
    worker_polling_interval: float = Field(default=10.0, ge=1.0)  # initial idle delay (s)
    rescan_interval_hours: float = Field(default=1.0, gt=0)
    lease_duration_hours: float = Field(default=2.0, gt=0)

    # Processing
    batch_size: int = Field(default=5, ge=1, le=20)
    rate_limit_delay: float = Field(default=2.0, ge=0.5)  # s between Reddit calls

    # Reddit search
    search_limit: int = Field(default=50, ge=1, le=100)
    search_time_window: TimeWindow = "week"  # term never scanned
    rescan_time_window: TimeWindow = "day"  # term scanned before

    # Adaptive idle backoff
    enable_adaptive_delays: bool = True
    idle_delay_floor: float = Field(default=5.0, ge=1.0)
    idle_delay_ceiling: float = Field(default=60.0, ge=1.0)
    max_consecutive_empty_batches: int = Field(default=3, ge=0)
    idle_backoff_factor: float = Field(default=1.5, gt=1.0)
    busy_decay_factor: float = Field(default=0.9, gt=0, le=1.0)
    error_recovery_delay: float = Field(default=30.0, ge=1.0)

    @model_validator(mode="after")
    def check_delay_bounds(self) -> "MonitoringConfig":
        if self.idle_delay_ceiling < self.idle_delay_floor:
            raise ValueError("idle_delay_ceiling must be >= idle_delay_floor")
        return self

    @property
    def rescan_interval(self) -> timedelta:
        return timedelta(hours=self.rescan_interval_hours)

    @property
    def lease_duration(self) -> timedelta:
        return timedelta(hours=self.lease_duration_hours)


DEFAULT_MONITORING_PRESET: dict = {}

PERFORMANCE_MONITORING_PRESET = {
    "producer_interval_minutes": 60,
    "worker_polling_interval": 30.0,
    "rescan_interval_hours": 2.0,
    "batch_size": 3,
    "rate_limit_delay": 5.0,
}

AGGRESSIVE_MONITORING_PRESET = {
    "producer_interval_minutes": 15,
    "worker_polling_interval": 5.0,
    "rescan_interval_hours": 0.5,
    "batch_size": 10,
    "rate_limit_delay": 1.0,
}

MONITORING_PRESETS = {
    "default": DEFAULT_MONITORING_PRESET,
    "performance": PERFORMANCE_MONITORING_PRESET,
    "aggressive": AGGRESSIVE_MONITORING_PRESET,
}

# Settings field -> MonitoringConfig field
_OVERRIDE_FIELDS = {
    "monitor_producer_interval_minutes": "producer_interval_minutes",
    "monitor_rescan_interval_hours": "rescan_interval_hours",
    "monitor_lease_duration_hours": "lease_duration_hours",
    "monitor_batch_size": "batch_size",
    "monitor_rate_limit_delay": "rate_limit_delay",
    "monitor_idle_delay_floor": "idle_delay_floor",
    "monitor_idle_delay_ceiling": "idle_delay_ceiling",
    "monitor_search_limit": "search_limit",
    "monitor_search_time_window": "search_time_window",
}


def _format_errors(exc: ValidationError) -> list[str]:
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "config"
        errors.append(f"{location}: {err['msg']}")
    return errors


def validate_monitoring_config(values: dict) -> list[str]:
    """Return a list of problems with the given config values (empty = valid)."""
    try:
        MonitoringConfig(**values)
    except ValidationError as e:
        return _format_errors(e)
    return []


def get_monitoring_config(settings: Optional[Settings] = None) -> MonitoringConfig:
    """
    Build the monitoring config from the selected preset plus env overrides.

    Raises:
        MonitoringConfigError: unknown mode, token safety margin below
            MIN_TOKEN_SAFETY_MARGIN, or any constraint violation
    """
    settings = settings or default_settings
    mode = settings.monitoring_mode.lower().strip()

    if mode not in MONITORING_PRESETS:
        raise MonitoringConfigError(
            f"Unknown MONITORING_MODE '{mode}' (expected one of {sorted(MONITORING_PRESETS)})"
        )

    if settings.token_safety_margin < MIN_TOKEN_SAFETY_MARGIN:
        raise MonitoringConfigError(
            f"TOKEN_SAFETY_MARGIN must be >= {MIN_TOKEN_SAFETY_MARGIN}s, got {settings.token_safety_margin}"
        )

    values = dict(MONITORING_PRESETS[mode])
    for settings_field, config_field in _OVERRIDE_FIELDS.items():
        override = getattr(settings, settings_field)
        if override is not None:
            values[config_field] = override

    try:
        config = MonitoringConfig(**values)
    except ValidationError as e:
        problems = _format_errors(e)
        raise MonitoringConfigError(
            "Invalid monitoring configuration: " + "; ".join(problems)
        ) from e

    logger.info(
        f"Monitoring config ({mode}): batch_size={config.batch_size}, "
        f"rescan={config.rescan_interval_hours}h, lease={config.lease_duration_hours}h, "
        f"producer every {config.producer_interval_minutes}min, "
        f"rate_limit_delay={config.rate_limit_delay}s"
    )
    return config
