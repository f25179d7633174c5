"""
Tests for stakepool/config.py and stakepool/errors.py
"""

import pytest

from stakepool.config import (
    EngineConfig,
    DEFAULT_API_PORT,
    SIGNATURE_MAX_AGE,
    _parse_bool,
)
from stakepool.errors import ErrorCode, StakingError


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.api_port == DEFAULT_API_PORT
        assert config.require_signatures is True
        assert config.signature_max_age == SIGNATURE_MAX_AGE
        assert config.genesis_path is None

    def test_from_env(self):
        config = EngineConfig.from_env({
            "STAKEPOOL_API_HOST": "0.0.0.0",
            "STAKEPOOL_API_PORT": "9000",
            "STAKEPOOL_REQUIRE_SIGNATURES": "no",
            "STAKEPOOL_SIGNATURE_MAX_AGE": "60",
            "STAKEPOOL_LOG_LEVEL": "debug",
            "STAKEPOOL_GENESIS": "/tmp/genesis.json",
        })
        assert config.api_host == "0.0.0.0"
        assert config.api_port == 9000
        assert config.require_signatures is False
        assert config.signature_max_age == 60
        assert config.log_level == "DEBUG"
        assert config.genesis_path == "/tmp/genesis.json"

    def test_from_env_empty(self):
        assert EngineConfig.from_env({}) == EngineConfig()

    def test_invalid_port(self):
        with pytest.raises(ValueError):
            EngineConfig.from_env({"STAKEPOOL_API_PORT": "70000"})

    def test_invalid_max_age(self):
        with pytest.raises(ValueError):
            EngineConfig(signature_max_age=0)

    def test_invalid_bool(self):
        with pytest.raises(ValueError):
            _parse_bool("maybe")
        assert _parse_bool(" TRUE ") is True

    def test_to_dict(self):
        data = EngineConfig().to_dict()
        assert data["api_port"] == DEFAULT_API_PORT
        assert "require_signatures" in data


class TestStakingError:
    """Tests for StakingError."""

    def test_message(self):
        error = StakingError(ErrorCode.NO_ACTIVE_POSITION, "nothing staked")
        assert error.code == ErrorCode.NO_ACTIVE_POSITION
        assert str(error) == "NO_ACTIVE_POSITION: nothing staked"
        assert error.to_dict() == {"error": "NO_ACTIVE_POSITION", "message": "nothing staked"}

    def test_default_message(self):
        error = StakingError(ErrorCode.ARITHMETIC_OVERFLOW)
        assert error.message == "ARITHMETIC_OVERFLOW"
