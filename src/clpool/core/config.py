"""
Configuration for the pool engine.

Values come from environment variables and are validated eagerly so a bad
deployment fails at startup rather than on the first swap.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .defi.concentrated_liquidity import FeeTier
from .defi.oracle import MAX_CARDINALITY
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class EngineConfig:
    environment: str = "development"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    default_fee: int = FeeTier.STANDARD.fee
    max_observation_cardinality: int = MAX_CARDINALITY


def _get_int(environ: Mapping[str, str], env_var: str, default: int) -> int:
    value = environ.get(env_var, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{env_var} must be an integer, got {value!r}") from None


def load_config(environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """
    Build an EngineConfig from the environment.

    Args:
        environ: Mapping to read instead of ``os.environ``

    Raises:
        ConfigurationError: On any invalid value
    """
    if environ is None:
        environ = os.environ

    environment = environ.get("CLPOOL_ENVIRONMENT", "").strip() or "development"

    log_level = (environ.get("CLPOOL_LOG_LEVEL", "").strip() or "INFO").upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigurationError(f"CLPOOL_LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}, got {log_level!r}")

    log_file = environ.get("CLPOOL_LOG_FILE", "").strip() or None

    default_fee = _get_int(environ, "CLPOOL_DEFAULT_FEE", FeeTier.STANDARD.fee)
    enabled_fees = sorted(tier.fee for tier in FeeTier)
    if default_fee not in enabled_fees:
        raise ConfigurationError(f"CLPOOL_DEFAULT_FEE must be one of {enabled_fees}, got {default_fee}")

    max_cardinality = _get_int(environ, "CLPOOL_MAX_OBSERVATION_CARDINALITY", MAX_CARDINALITY)
    if not 1 <= max_cardinality <= MAX_CARDINALITY:
        raise ConfigurationError(
            f"CLPOOL_MAX_OBSERVATION_CARDINALITY must be in 1..{MAX_CARDINALITY}, got {max_cardinality}"
        )

    config = EngineConfig(
        environment=environment,
        log_level=log_level,
        log_file=log_file,
        default_fee=default_fee,
        max_observation_cardinality=max_cardinality,
    )
    logger.debug("Configuration loaded", extra={"event": "config.loaded", "environment": environment})
    return config
