"""
stakepool - Staking-and-reward engine

Users lock a stake asset into a per-asset pool and later withdraw it
together with a reward paid from the pool's reward vault at a fixed rate
per second. Built on:
- An external ledger of asset accounts (MemoryLedger for standalone use)
- Deterministically keyed pool and position records
- Engine-held custody authorities for the stake and reward vaults
- REST API for external integrations
- Prometheus metrics for monitoring

Usage:
    from stakepool import MemoryLedger, StakingEngine

    ledger = MemoryLedger.from_genesis_file("genesis.json")
    engine = StakingEngine(ledger)

    engine.initialize_pool("EAdmin", "LP", "RWD", reward_rate=10**9)
    engine.stake_assets("EAlice", "LP", 50 * 10**9, alice_lp_account)
    result = engine.withdraw_assets("EAlice", "LP", alice_lp_account, alice_rwd_account)

REST API Usage:
    from stakepool.api import StakingAPI

    api = StakingAPI(engine, host="0.0.0.0", port=24700)
    trio.run(api.start)
"""

from .config import EngineConfig, REWARD_RATE_SCALE, U64_MAX
from .errors import ErrorCode, StakingError
from .ledger import (
    Ledger,
    MemoryLedger,
    LedgerError,
    InsufficientFunds,
    UnauthorizedTransfer,
    UnknownAccount,
    UnknownAsset,
)
from .protocol import (
    StakingEngine,
    PoolConfig,
    UserStakePosition,
    WithdrawResult,
    Active,
    Inactive,
    CustodyAuthority,
    VaultPurpose,
    compute_reward,
)

__version__ = "1.0.0"
__all__ = [
    "EngineConfig",
    "REWARD_RATE_SCALE",
    "U64_MAX",
    "ErrorCode",
    "StakingError",
    "Ledger",
    "MemoryLedger",
    "LedgerError",
    "InsufficientFunds",
    "UnauthorizedTransfer",
    "UnknownAccount",
    "UnknownAsset",
    "StakingEngine",
    "PoolConfig",
    "UserStakePosition",
    "WithdrawResult",
    "Active",
    "Inactive",
    "CustodyAuthority",
    "VaultPurpose",
    "compute_reward",
]
