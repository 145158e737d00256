"""
Engine configuration resolver.

Single source of truth for the tunables of the key generator and the
evaluator. Values are read from the environment once at import time;
unknown or malformed values are logged and replaced by defaults.

Recognized variables:
    HE_CKKS_SCALE_TOLERANCE   relative tolerance for scale comparison
    HE_CKKS_NOISE_STDDEV      standard deviation of the error distribution
    HE_CKKS_AUDIT_KEYS        record key events in the audit log (true/false)
    HE_CKKS_SECURITY_LEVEL    default security level: none, 128, 192, 256
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_SECURITY_VALUES = {"none": 0, "128": 128, "192": 192, "256": 256}


@dataclass(frozen=True)
class EngineConfig:
    """Immutable engine configuration."""

    # Relative tolerance used when comparing ciphertext scales
    scale_tolerance: float = 1e-9

    # Error distribution (clipped at noise_bound_factor standard deviations)
    noise_standard_deviation: float = 3.2
    noise_bound_factor: float = 6.0

    # Whether KeyGenerator records key events in its audit log
    audit_key_events: bool = True

    # Security level applied when parameters do not name one (0 = none)
    default_security_level: int = 128

    @property
    def noise_max_deviation(self) -> float:
        return self.noise_standard_deviation * self.noise_bound_factor

    def with_overrides(self, **kwargs) -> 'EngineConfig':
        """Return a copy with the given fields replaced."""
        return replace(self, **kwargs)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("%s=%r is not a number, using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("%s=%r must be positive, using %s", name, raw, default)
        return default
    return value


def _bool_env(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    logger.warning("%s=%r is not a boolean, using %s", name, raw, default)
    return default


def _security_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw in _SECURITY_VALUES:
        return _SECURITY_VALUES[raw]
    logger.warning(
        "%s=%r is not a recognized security level (%s), using %s",
        name,
        raw,
        ", ".join(sorted(_SECURITY_VALUES)),
        default,
    )
    return default


def load_config() -> EngineConfig:
    """Resolve the configuration from the current environment."""
    defaults = EngineConfig()
    return EngineConfig(
        scale_tolerance=_float_env("HE_CKKS_SCALE_TOLERANCE", defaults.scale_tolerance),
        noise_standard_deviation=_float_env(
            "HE_CKKS_NOISE_STDDEV", defaults.noise_standard_deviation
        ),
        audit_key_events=_bool_env("HE_CKKS_AUDIT_KEYS", defaults.audit_key_events),
        default_security_level=_security_env(
            "HE_CKKS_SECURITY_LEVEL", defaults.default_security_level
        ),
    )


# Module-level singleton, computed once at import time
_CONFIG: EngineConfig = load_config()


def get_config() -> EngineConfig:
    """Return the process-wide configuration."""
    return _CONFIG


def set_config(config: Optional[EngineConfig] = None) -> EngineConfig:
    """
    Replace the process-wide configuration.

    Passing None re-reads the environment.
    """
    global _CONFIG
    _CONFIG = config if config is not None else load_config()
    return _CONFIG
