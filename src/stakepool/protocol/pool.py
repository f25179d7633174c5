"""
stakepool/protocol/pool.py

Pool configuration records and their registry.

One pool exists per stake asset. Creating a pool:
- checks the caller is the stake asset's issuance authority
- derives a custody authority per vault purpose (stake, reward)
- opens one custodial vault account per authority on the ledger
- writes a PoolConfig with zeroed counters

Pools are never deleted. Their counters are only changed by the position
manager while it holds the pool's record lock.
"""

import logging
from dataclasses import dataclass, asdict
from typing import List, Optional

from ..config import U64_MAX
from ..errors import ErrorCode, StakingError, from_ledger_error
from ..ledger import Ledger, LedgerError
from .custody import CustodyAuthority, VaultPurpose
from .keys import KeyedStore, pool_key, authority_key

logger = logging.getLogger("stakepool.protocol.pool")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class PoolConfig:
    """
    Aggregate state of one stake/reward asset pairing.

    total_staked always equals the sum of amount_staked over the pool's
    active positions. rewards_distributed never decreases. reward_rate is
    reward units per second scaled by 1e9 and never changes.
    """
    admin: str                  # Stake asset issuer that created the pool
    stake_asset_id: str
    reward_asset_id: str
    stake_vault: str            # Custodial account holding pooled stake
    reward_vault: str           # Custodial account holding reward funds
    reward_rate: int
    total_staked: int = 0
    rewards_distributed: int = 0
    created_at: int = 0

    @property
    def key(self) -> str:
        return pool_key(self.stake_asset_id)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PoolConfig":
        """Create from dictionary."""
        return cls(
            admin=data["admin"],
            stake_asset_id=data["stake_asset_id"],
            reward_asset_id=data["reward_asset_id"],
            stake_vault=data["stake_vault"],
            reward_vault=data["reward_vault"],
            reward_rate=int(data["reward_rate"]),
            total_staked=int(data.get("total_staked", 0)),
            rewards_distributed=int(data.get("rewards_distributed", 0)),
            created_at=int(data.get("created_at", 0)),
        )


# ============================================================================
# POOL REGISTRY
# ============================================================================

class PoolRegistry:
    """
    Creates and looks up pools.

    Usage:
        registry = PoolRegistry(store, ledger)
        pool = registry.initialize("EAdmin", "LP", "RWD", reward_rate=10**9, now=now)
        authority = registry.authority("LP", VaultPurpose.STAKE)
    """

    def __init__(self, store: KeyedStore, ledger: Ledger):
        self.store = store
        self.ledger = ledger

    def initialize(
        self,
        admin: str,
        stake_asset_id: str,
        reward_asset_id: str,
        reward_rate: int,
        now: int,
        admin_reward_account: Optional[str] = None,
    ) -> PoolConfig:
        """
        Create the pool for a stake asset.

        Raises:
            StakingError: POOL_ALREADY_EXISTS, INVALID_REWARD_RATE,
                INVALID_MINT_AUTHORITY, INVALID_ACCOUNT, LEDGER_ERROR
        """
        key = pool_key(stake_asset_id)
        with self.store.locked(key):
            if self.store.contains(key):
                raise StakingError(
                    ErrorCode.POOL_ALREADY_EXISTS,
                    f"Pool already exists for {stake_asset_id}",
                )

            if (
                not isinstance(reward_rate, int) or isinstance(reward_rate, bool)
                or reward_rate <= 0 or reward_rate > U64_MAX
            ):
                raise StakingError(
                    ErrorCode.INVALID_REWARD_RATE,
                    f"Reward rate must be a positive u64, got {reward_rate!r}",
                )

            try:
                issuer = self.ledger.issuer_of(stake_asset_id)
                self.ledger.issuer_of(reward_asset_id)
            except LedgerError as e:
                raise from_ledger_error(e)

            if admin != issuer:
                raise StakingError(
                    ErrorCode.INVALID_MINT_AUTHORITY,
                    f"{admin} is not the issuance authority of {stake_asset_id}",
                )

            if admin_reward_account is not None:
                self._check_admin_reward_account(admin, reward_asset_id, admin_reward_account)

            stake_authority = CustodyAuthority.derive(stake_asset_id, VaultPurpose.STAKE)
            reward_authority = CustodyAuthority.derive(stake_asset_id, VaultPurpose.REWARD)
            try:
                stake_vault = self.ledger.open_account(stake_asset_id, stake_authority)
                reward_vault = self.ledger.open_account(reward_asset_id, reward_authority)
            except LedgerError as e:
                raise from_ledger_error(e)
            stake_authority.bind(stake_vault)
            reward_authority.bind(reward_vault)

            pool = PoolConfig(
                admin=admin,
                stake_asset_id=stake_asset_id,
                reward_asset_id=reward_asset_id,
                stake_vault=stake_vault,
                reward_vault=reward_vault,
                reward_rate=reward_rate,
                created_at=now,
            )
            self.store.put(stake_authority.address, stake_authority)
            self.store.put(reward_authority.address, reward_authority)
            self.store.put(key, pool)

        return pool

    def get(self, stake_asset_id: str) -> Optional[PoolConfig]:
        """Get the pool for a stake asset, or None."""
        return self.store.get(pool_key(stake_asset_id))

    def require(self, stake_asset_id: str) -> PoolConfig:
        """Get the pool for a stake asset, raising POOL_NOT_FOUND."""
        pool = self.get(stake_asset_id)
        if pool is None:
            raise StakingError(ErrorCode.POOL_NOT_FOUND, f"No pool for {stake_asset_id}")
        return pool

    def authority(self, stake_asset_id: str, purpose: VaultPurpose) -> CustodyAuthority:
        """Custody authority of one of the pool's vaults."""
        authority = self.store.get(authority_key(purpose.value, stake_asset_id))
        if authority is None:
            raise StakingError(ErrorCode.POOL_NOT_FOUND, f"No pool for {stake_asset_id}")
        return authority

    def list(self) -> List[PoolConfig]:
        return self.store.records(PoolConfig)

    def _check_admin_reward_account(
        self,
        admin: str,
        reward_asset_id: str,
        account: str,
    ) -> None:
        try:
            info = self.ledger.account_info(account)
        except LedgerError as e:
            raise from_ledger_error(e)
        if info.asset_id != reward_asset_id or info.owner != admin:
            raise StakingError(
                ErrorCode.INVALID_ACCOUNT,
                f"{account} is not a {reward_asset_id} account owned by {admin}",
            )
