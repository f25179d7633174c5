"""
stakepool/config.py

Configuration constants and data classes for stakepool.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional
import logging
import os

logger = logging.getLogger("stakepool.config")


# Fixed-point scale of PoolConfig.reward_rate (reward units per second * 1e9)
REWARD_RATE_SCALE = 1_000_000_000

# Width of every on-record counter (total_staked, rewards_distributed, amounts)
U64_MAX = 2 ** 64 - 1

# Key derivation seeds
POOL_SEED = "pool_config"
AUTHORITY_SEED = "authority"
POSITION_SEED = "position"

# Vault purpose tags
STAKE_VAULT_TAG = "stake"
REWARD_VAULT_TAG = "reward"

# REST API defaults
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 24700

# Signed API requests older than this are rejected (seconds)
SIGNATURE_MAX_AGE = 300

# Log line format used by the CLI
LOG_FORMAT = '%(asctime)s [%(name)s] %(levelname)s: %(message)s'

# Environment variable names
ENV_API_HOST = "STAKEPOOL_API_HOST"
ENV_API_PORT = "STAKEPOOL_API_PORT"
ENV_REQUIRE_SIGNATURES = "STAKEPOOL_REQUIRE_SIGNATURES"
ENV_SIGNATURE_MAX_AGE = "STAKEPOOL_SIGNATURE_MAX_AGE"
ENV_LOG_LEVEL = "STAKEPOOL_LOG_LEVEL"
ENV_GENESIS = "STAKEPOOL_GENESIS"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(value: str) -> bool:
    """Parse a boolean environment value."""
    normalized = value.lower().strip()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value: {value}")


@dataclass
class EngineConfig:
    """
    Runtime configuration for a stakepool node.

    Values can be set via:
    1. Environment variables (STAKEPOOL_*)
    2. Command-line flags (see stakepool.cli)
    3. Programmatic construction
    """
    api_host: str = DEFAULT_API_HOST
    api_port: int = DEFAULT_API_PORT
    require_signatures: bool = True
    signature_max_age: int = SIGNATURE_MAX_AGE
    log_level: str = "INFO"
    genesis_path: Optional[str] = None

    def __post_init__(self):
        if not 0 < self.api_port < 65536:
            raise ValueError(f"Invalid API port: {self.api_port}")
        if self.signature_max_age <= 0:
            raise ValueError("signature_max_age must be positive")
        self.log_level = self.log_level.upper()

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EngineConfig":
        """
        Build configuration from environment variables.

        Unset variables keep their defaults. Invalid values raise ValueError.
        """
        env = os.environ if environ is None else environ
        kwargs: Dict[str, Any] = {}

        if env.get(ENV_API_HOST):
            kwargs["api_host"] = env[ENV_API_HOST]
        if env.get(ENV_API_PORT):
            kwargs["api_port"] = int(env[ENV_API_PORT])
        if env.get(ENV_REQUIRE_SIGNATURES):
            kwargs["require_signatures"] = _parse_bool(env[ENV_REQUIRE_SIGNATURES])
        if env.get(ENV_SIGNATURE_MAX_AGE):
            kwargs["signature_max_age"] = int(env[ENV_SIGNATURE_MAX_AGE])
        if env.get(ENV_LOG_LEVEL):
            kwargs["log_level"] = env[ENV_LOG_LEVEL]
        if env.get(ENV_GENESIS):
            kwargs["genesis_path"] = env[ENV_GENESIS]

        config = cls(**kwargs)
        logger.debug(f"Loaded config from environment: {config.to_dict()}")
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        return asdict(self)
