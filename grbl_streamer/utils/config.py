"""Controller configuration.

This module builds a validated, immutable configuration for the controller
from built-in defaults, an optional caller mapping and ``GRBL_STREAMER_*``
environment overrides. Nothing here is read from or written to disk.
"""

import os
import logging
from dataclasses import asdict, dataclass
from typing import Dict, Any, Mapping, Optional

from .constants import (
    ACCOUNTING_BYTES,
    ACCOUNTING_LINES,
    ACK_TIMEOUT_DEFAULT,
    BAUD_DEFAULT,
    BUFFER_CAPACITY_BYTES,
    BUFFER_CAPACITY_LINES,
    SERIAL_CONNECT_DELAY,
    STATUS_POLL_DEFAULT,
    STATUS_POLL_INTERVAL_MIN,
    STATUS_QUERY_FAILURE_LIMIT_DEFAULT,
    STATUS_QUERY_FAILURE_LIMIT_MAX,
    STATUS_QUERY_FAILURE_LIMIT_MIN,
    WATCHDOG_HOMING_TIMEOUT,
)
from .exceptions import ConfigValidationError, ValidationException
from .validation import (
    validate_accounting_mode,
    validate_baud_rate,
    validate_capacity,
    validate_interval,
    validate_unit_mode,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "GRBL_STREAMER_"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "ack_timeout": ACK_TIMEOUT_DEFAULT,
    "baud_rate": BAUD_DEFAULT,
    "buffer_accounting": ACCOUNTING_BYTES,
    "buffer_capacity": None,
    "connect_delay": SERIAL_CONNECT_DELAY,
    "homing_timeout": WATCHDOG_HOMING_TIMEOUT,
    "pause_on_error": False,
    "query_on_connect": True,
    "status_poll_interval": STATUS_POLL_DEFAULT,
    "status_query_failure_limit": STATUS_QUERY_FAILURE_LIMIT_DEFAULT,
    "unit_mode": "mm",
}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _merge_defaults(defaults: Dict[str, Any], loaded: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(defaults)
    for key, loaded_val in loaded.items():
        if key not in defaults:
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        merged[key] = loaded_val
    return merged


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Collect ``GRBL_STREAMER_<KEY>`` overrides for known config keys.

    Args:
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Mapping of config key to raw string value
    """
    environ = os.environ if environ is None else environ
    overrides: Dict[str, str] = {}
    for key in DEFAULT_SETTINGS:
        raw = environ.get(ENV_PREFIX + key.upper())
        if raw is not None and raw != "":
            overrides[key] = raw
    return overrides


@dataclass(frozen=True)
class ControllerConfig:
    """Validated controller settings.

    Example:
        config = ControllerConfig.from_mapping({"buffer_accounting": "lines"})
        config.capacity  # 15
    """

    ack_timeout: float = ACK_TIMEOUT_DEFAULT
    baud_rate: int = BAUD_DEFAULT
    buffer_accounting: str = ACCOUNTING_BYTES
    buffer_capacity: Optional[int] = None
    connect_delay: float = SERIAL_CONNECT_DELAY
    homing_timeout: float = WATCHDOG_HOMING_TIMEOUT
    pause_on_error: bool = False
    query_on_connect: bool = True
    status_poll_interval: float = STATUS_POLL_DEFAULT
    status_query_failure_limit: int = STATUS_QUERY_FAILURE_LIMIT_DEFAULT
    unit_mode: str = "mm"

    def __post_init__(self):
        self.validate()

    @property
    def capacity(self) -> int:
        """Effective buffer capacity in the configured accounting unit."""
        if self.buffer_capacity is not None:
            return int(self.buffer_capacity)
        if self.buffer_accounting == ACCOUNTING_LINES:
            return BUFFER_CAPACITY_LINES
        return BUFFER_CAPACITY_BYTES

    @classmethod
    def from_mapping(
        cls,
        data: Optional[Mapping[str, Any]] = None,
        *,
        use_env: bool = True,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ControllerConfig":
        """Build a config from defaults, a caller mapping and the environment.

        Environment overrides win over the mapping.

        Raises:
            ConfigValidationError: If any value fails validation
        """
        merged = _merge_defaults(DEFAULT_SETTINGS, data or {})
        if use_env:
            merged.update(env_overrides(environ))
        try:
            kwargs = {
                "ack_timeout": float(merged["ack_timeout"]),
                "baud_rate": int(merged["baud_rate"]),
                "buffer_accounting": str(merged["buffer_accounting"]).strip().lower(),
                "buffer_capacity": (
                    None if merged["buffer_capacity"] in (None, "")
                    else int(merged["buffer_capacity"])
                ),
                "connect_delay": float(merged["connect_delay"]),
                "homing_timeout": float(merged["homing_timeout"]),
                "pause_on_error": _coerce_bool(merged["pause_on_error"]),
                "query_on_connect": _coerce_bool(merged["query_on_connect"]),
                "status_poll_interval": float(merged["status_poll_interval"]),
                "status_query_failure_limit": int(merged["status_query_failure_limit"]),
                "unit_mode": str(merged["unit_mode"]).strip().lower(),
            }
        except (TypeError, ValueError) as e:
            raise ConfigValidationError(f"Invalid config value: {e}")
        return cls(**kwargs)

    def validate(self) -> bool:
        """Validate current settings.

        Returns:
            True if valid

        Raises:
            ConfigValidationError: If validation fails
        """
        try:
            validate_baud_rate(self.baud_rate)
            validate_interval(self.status_poll_interval, STATUS_POLL_INTERVAL_MIN)
            validate_interval(self.ack_timeout)
            validate_interval(self.homing_timeout)
            validate_interval(self.connect_delay)
            validate_accounting_mode(self.buffer_accounting)
            validate_unit_mode(self.unit_mode)
            if self.buffer_capacity is not None:
                validate_capacity(self.buffer_capacity)
        except ValidationException as e:
            raise ConfigValidationError(str(e))

        limit = self.status_query_failure_limit
        if not (STATUS_QUERY_FAILURE_LIMIT_MIN <= limit <= STATUS_QUERY_FAILURE_LIMIT_MAX):
            raise ConfigValidationError(f"Invalid status query failure limit: {limit}")

        return True

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)
