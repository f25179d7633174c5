"""
stakepool/cli.py

Command-line entry point.

    stakepool serve --genesis genesis.json --port 24700
    stakepool derive LP --user EAlice
"""

import json
import logging
import sys
from typing import Optional

import click
import trio

from .config import EngineConfig, LOG_FORMAT
from .ledger import MemoryLedger
from .protocol.custody import VaultPurpose
from .protocol.keys import authority_key, pool_key, position_key

logger = logging.getLogger("stakepool.cli")


@click.group()
def main():
    """Staking-and-reward engine."""


@main.command()
@click.option('--host', default=None, help='API host (env: STAKEPOOL_API_HOST)')
@click.option('--port', type=int, default=None, help='API port (env: STAKEPOOL_API_PORT)')
@click.option('--genesis', 'genesis_path', type=click.Path(exists=True, dir_okay=False),
              default=None, help='Genesis JSON for the in-memory ledger (env: STAKEPOOL_GENESIS)')
@click.option('--no-signatures', is_flag=True, default=False,
              help='Accept unsigned API requests (testing only)')
@click.option('--log-level', default=None,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Log level (env: STAKEPOOL_LOG_LEVEL)')
def serve(
    host: Optional[str],
    port: Optional[int],
    genesis_path: Optional[str],
    no_signatures: bool,
    log_level: Optional[str],
):
    """Run the staking REST API over an in-memory ledger."""
    from .api import StakingAPI
    from .protocol.engine import StakingEngine

    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        raise click.BadParameter(str(e))

    if host:
        config.api_host = host
    if port:
        config.api_port = port
    if genesis_path:
        config.genesis_path = genesis_path
    if no_signatures:
        config.require_signatures = False
    if log_level:
        config.log_level = log_level.upper()

    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)

    if config.genesis_path:
        ledger = MemoryLedger.from_genesis_file(config.genesis_path)
    else:
        logger.warning("No genesis file given, starting with an empty ledger")
        ledger = MemoryLedger()

    if not config.require_signatures:
        logger.warning("Signature verification disabled")

    engine = StakingEngine(ledger)
    api = StakingAPI(
        engine,
        host=config.api_host,
        port=config.api_port,
        require_signatures=config.require_signatures,
        signature_max_age=config.signature_max_age,
    )

    try:
        trio.run(api.start)
    except KeyboardInterrupt:
        logger.info("Shutting down")
        sys.exit(0)


@main.command()
@click.argument('stake_asset_id')
@click.option('--user', default=None, help='Also derive this user\'s position key')
def derive(stake_asset_id: str, user: Optional[str]):
    """Print the record keys and custody addresses of a pool."""
    keys = {
        "stake_asset_id": stake_asset_id,
        "pool": pool_key(stake_asset_id),
        "stake_authority": authority_key(VaultPurpose.STAKE.value, stake_asset_id),
        "reward_authority": authority_key(VaultPurpose.REWARD.value, stake_asset_id),
    }
    if user:
        keys["user"] = user
        keys["position"] = position_key(stake_asset_id, user)
    click.echo(json.dumps(keys, indent=2))


if __name__ == '__main__':
    main()
