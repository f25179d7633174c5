"""
stakepool/protocol/

Pool, position and custody state machine of the staking engine.
"""

from .keys import KeyedStore, derive_key, pool_key, position_key, authority_key
from .custody import CustodyAuthority, DebitAuthorization, VaultPurpose
from .accrual import (
    checked_add,
    checked_sub,
    checked_mul,
    compute_reward,
    elapsed_seconds,
)
from .pool import PoolConfig, PoolRegistry
from .position import (
    Active,
    Inactive,
    PositionManager,
    UserStakePosition,
    WithdrawResult,
)
from .engine import StakingEngine

__all__ = [
    "KeyedStore",
    "derive_key",
    "pool_key",
    "position_key",
    "authority_key",
    "CustodyAuthority",
    "DebitAuthorization",
    "VaultPurpose",
    "checked_add",
    "checked_sub",
    "checked_mul",
    "compute_reward",
    "elapsed_seconds",
    "PoolConfig",
    "PoolRegistry",
    "Active",
    "Inactive",
    "PositionManager",
    "UserStakePosition",
    "WithdrawResult",
    "StakingEngine",
]
