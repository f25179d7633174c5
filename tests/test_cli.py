"""
Tests for stakepool/cli.py
"""

import json
from unittest.mock import patch

from click.testing import CliRunner

from stakepool.cli import main
from stakepool.protocol.keys import authority_key, pool_key, position_key


class TestDeriveCommand:
    """Tests for `stakepool derive`."""

    def test_derive_pool_keys(self):
        result = CliRunner().invoke(main, ["derive", "LP"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["pool"] == pool_key("LP")
        assert data["stake_authority"] == authority_key("stake", "LP")
        assert data["reward_authority"] == authority_key("reward", "LP")
        assert "position" not in data

    def test_derive_position_key(self):
        result = CliRunner().invoke(main, ["derive", "LP", "--user", "EAlice"])
        data = json.loads(result.output)
        assert data["position"] == position_key("LP", "EAlice")


class TestServeCommand:
    """Tests for `stakepool serve`."""

    def test_serve_loads_genesis(self, ledger, tmp_path):
        genesis = tmp_path / "genesis.json"
        genesis.write_text(json.dumps(ledger.snapshot()))

        with patch("stakepool.cli.trio.run") as run:
            result = CliRunner().invoke(
                main,
                ["serve", "--genesis", str(genesis), "--port", "9100", "--no-signatures"],
                env={"STAKEPOOL_API_HOST": "0.0.0.0"},
            )

        assert result.exit_code == 0, result.output
        start = run.call_args[0][0]
        api = start.__self__
        assert api.host == "0.0.0.0"
        assert api.port == 9100
        assert api.require_signatures is False
        assert api.engine.ledger.balance_of("alice-lp") == ledger.balance_of("alice-lp")

    def test_serve_rejects_bad_env(self):
        with patch("stakepool.cli.trio.run") as run:
            result = CliRunner().invoke(main, ["serve"], env={"STAKEPOOL_API_PORT": "0"})
        assert result.exit_code != 0
        run.assert_not_called()
