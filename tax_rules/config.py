"""
Engine defaults.

Values can be overridden through ``TAX_RULES_*`` environment variables:

    TAX_RULES_DEFAULT_PRECISION   decimal places for rules that omit one
    TAX_RULES_DEFAULT_ROUNDING    nearest | floor | ceiling | none
    TAX_RULES_RATE_PLACES         places kept on blended progressive rates
    TAX_RULES_LOG_LEVEL           CLI console log level
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_ENV_PREFIX = "TAX_RULES_"
_ROUNDING_NAMES = ("nearest", "floor", "ceiling", "none")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class EngineConfig:
    default_precision: int = 2
    default_rounding: str = "nearest"
    rate_places: int = 6
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if not 0 <= self.default_precision <= 10:
            raise ValueError(
                f"default_precision must be 0..10, got {self.default_precision}"
            )
        if self.default_rounding not in _ROUNDING_NAMES:
            raise ValueError(
                f"default_rounding must be one of {_ROUNDING_NAMES}, "
                f"got {self.default_rounding!r}"
            )
        if self.rate_places < 0:
            raise ValueError(f"rate_places must be >= 0, got {self.rate_places}")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level!r}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Build a config from the environment, falling back to defaults."""
        env = os.environ if environ is None else environ
        defaults = cls()

        def _int(name: str, fallback: int) -> int:
            raw = env.get(_ENV_PREFIX + name)
            if raw is None or raw.strip() == "":
                return fallback
            try:
                return int(raw)
            except ValueError:
                raise ValueError(f"{_ENV_PREFIX}{name} must be an integer, got {raw!r}")

        return cls(
            default_precision=_int("DEFAULT_PRECISION", defaults.default_precision),
            default_rounding=env.get(
                _ENV_PREFIX + "DEFAULT_ROUNDING", defaults.default_rounding
            ).strip().lower(),
            rate_places=_int("RATE_PLACES", defaults.rate_places),
            log_level=env.get(_ENV_PREFIX + "LOG_LEVEL", defaults.log_level)
            .strip()
            .upper(),
        )


DEFAULT_CONFIG = EngineConfig()
