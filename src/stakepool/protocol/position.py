"""
stakepool/protocol/position.py

User stake positions.

A position lives at derive_key("position", stake_asset_id, user) and is
never deleted. Its state is one of:

    Inactive(staked_at, last_claimed)
    Active(amount, staked_at, last_claimed)

Staking turns a missing or Inactive position into Active. Withdrawing turns
Active back into Inactive, returning the stake and paying the accrued reward.
Both transitions hold the pool and position record locks for their whole
duration and check everything that can fail before the first ledger transfer.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Union

from ..config import U64_MAX
from ..errors import ErrorCode, StakingError, from_ledger_error
from ..ledger import Ledger, LedgerError, InsufficientFunds
from .accrual import checked_add, checked_sub, compute_reward
from .custody import VaultPurpose
from .keys import KeyedStore, pool_key, position_key
from .pool import PoolConfig, PoolRegistry

logger = logging.getLogger("stakepool.protocol.position")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass(frozen=True)
class Inactive:
    """No stake held. last_claimed is the time of the last withdrawal."""
    staked_at: int = 0
    last_claimed: int = 0


@dataclass(frozen=True)
class Active:
    """Stake held and accruing since last_claimed."""
    amount: int
    staked_at: int
    last_claimed: int

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError("Active position must hold a positive amount")


PositionState = Union[Inactive, Active]


@dataclass
class UserStakePosition:
    """A user's stake in one pool."""
    owner: str
    pool: str                   # stake asset id
    state: PositionState = field(default_factory=Inactive)

    @property
    def key(self) -> str:
        return position_key(self.pool, self.owner)

    @property
    def active(self) -> bool:
        return isinstance(self.state, Active)

    @property
    def amount_staked(self) -> int:
        return self.state.amount if isinstance(self.state, Active) else 0

    @property
    def staked_at(self) -> int:
        return self.state.staked_at

    @property
    def last_claimed(self) -> int:
        return self.state.last_claimed

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'owner': self.owner,
            'pool': self.pool,
            'active': self.active,
            'amount_staked': self.amount_staked,
            'staked_at': self.staked_at,
            'last_claimed': self.last_claimed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserStakePosition":
        """Create from dictionary."""
        staked_at = int(data.get("staked_at", 0))
        last_claimed = int(data.get("last_claimed", 0))
        if data.get("active"):
            state: PositionState = Active(
                amount=int(data["amount_staked"]),
                staked_at=staked_at,
                last_claimed=last_claimed,
            )
        else:
            state = Inactive(staked_at=staked_at, last_claimed=last_claimed)
        return cls(owner=data["owner"], pool=data["pool"], state=state)


@dataclass(frozen=True)
class WithdrawResult:
    """Amounts moved by a withdrawal."""
    returned_stake: int
    reward_paid: int

    def to_dict(self) -> dict:
        return {
            'returned_stake': self.returned_stake,
            'reward_paid': self.reward_paid,
        }


# ============================================================================
# POSITION MANAGER
# ============================================================================

class PositionManager:
    """
    Opens and closes user positions.

    Usage:
        manager = PositionManager(store, ledger, registry)
        position = manager.stake("EAlice", "LP", 50, alice_lp, now=now)
        result = manager.withdraw("EAlice", "LP", alice_lp, alice_rwd, now=later)
    """

    def __init__(self, store: KeyedStore, ledger: Ledger, registry: PoolRegistry):
        self.store = store
        self.ledger = ledger
        self.registry = registry

    def get(self, user: str, stake_asset_id: str) -> Optional[UserStakePosition]:
        return self.store.get(position_key(stake_asset_id, user))

    def active_positions(self, stake_asset_id: str) -> List[UserStakePosition]:
        return [
            p for p in self.store.records(UserStakePosition)
            if p.pool == stake_asset_id and p.active
        ]

    def pending_reward(self, user: str, stake_asset_id: str, now: int) -> int:
        """Reward a withdrawal would pay right now (0 when not staking)."""
        pool = self.registry.require(stake_asset_id)
        position = self.get(user, stake_asset_id)
        if position is None or not position.active:
            return 0
        return compute_reward(pool.reward_rate, position.last_claimed, now)

    # ========================================================================
    # STAKE
    # ========================================================================

    def stake(
        self,
        user: str,
        stake_asset_id: str,
        amount: int,
        source_account: str,
        now: int,
    ) -> UserStakePosition:
        """
        Move ``amount`` from the user's account into the stake vault and open
        (or reactivate) the user's position.

        Raises:
            StakingError: POOL_NOT_FOUND, INVALID_AMOUNT, INVALID_ACCOUNT,
                INSUFFICIENT_TOKEN_BALANCE, ALREADY_ACTIVE_POSITION,
                ARITHMETIC_OVERFLOW, UNAUTHORIZED, LEDGER_ERROR
        """
        if not isinstance(amount, int) or isinstance(amount, bool) or not 0 < amount <= U64_MAX:
            raise StakingError(ErrorCode.INVALID_AMOUNT, f"Invalid stake amount: {amount!r}")

        p_key = pool_key(stake_asset_id)
        pos_key = position_key(stake_asset_id, user)

        with self.store.locked(p_key, pos_key):
            pool: PoolConfig = self.registry.require(stake_asset_id)
            self._check_account(source_account, pool.stake_asset_id, user)

            try:
                balance = self.ledger.balance_of(source_account)
            except LedgerError as e:
                raise from_ledger_error(e)
            if balance < amount:
                raise StakingError(
                    ErrorCode.INSUFFICIENT_TOKEN_BALANCE,
                    f"Balance {balance} is below stake amount {amount}",
                )

            existing: Optional[UserStakePosition] = self.store.get(pos_key)
            if existing is not None and existing.active:
                raise StakingError(
                    ErrorCode.ALREADY_ACTIVE_POSITION,
                    f"{user} already has an active position in {stake_asset_id}",
                )

            new_total = checked_add(pool.total_staked, amount)

            try:
                self.ledger.transfer(source_account, pool.stake_vault, amount, user)
            except InsufficientFunds as e:
                raise StakingError(ErrorCode.INSUFFICIENT_TOKEN_BALANCE, str(e))
            except LedgerError as e:
                raise from_ledger_error(e)

            position = UserStakePosition(
                owner=user,
                pool=stake_asset_id,
                state=Active(amount=amount, staked_at=now, last_claimed=now),
            )
            self.store.put(pos_key, position)
            self.store.put(p_key, replace(pool, total_staked=new_total))

        return position

    # ========================================================================
    # WITHDRAW
    # ========================================================================

    def withdraw(
        self,
        user: str,
        stake_asset_id: str,
        stake_destination: str,
        reward_destination: str,
        now: int,
    ) -> WithdrawResult:
        """
        Close the user's position: return the full stake and pay the reward
        accrued since the last claim.

        Raises:
            StakingError: POOL_NOT_FOUND, NO_ACTIVE_POSITION, INVALID_ACCOUNT,
                INSUFFICIENT_VAULT_BALANCE, ARITHMETIC_OVERFLOW, LEDGER_ERROR
        """
        p_key = pool_key(stake_asset_id)
        pos_key = position_key(stake_asset_id, user)

        with self.store.locked(p_key, pos_key):
            pool: PoolConfig = self.registry.require(stake_asset_id)
            position: Optional[UserStakePosition] = self.store.get(pos_key)
            if position is None or not position.active:
                raise StakingError(
                    ErrorCode.NO_ACTIVE_POSITION,
                    f"{user} has no active position in {stake_asset_id}",
                )

            self._check_account(stake_destination, pool.stake_asset_id, user)
            self._check_account(reward_destination, pool.reward_asset_id, user)

            amount = position.amount_staked
            reward = compute_reward(pool.reward_rate, position.last_claimed, now)

            try:
                vault_balance = self.ledger.balance_of(pool.reward_vault)
            except LedgerError as e:
                raise from_ledger_error(e)
            if vault_balance < reward:
                raise StakingError(
                    ErrorCode.INSUFFICIENT_VAULT_BALANCE,
                    f"Reward vault holds {vault_balance}, owes {reward}",
                )

            new_total = checked_sub(pool.total_staked, amount)
            new_distributed = checked_add(pool.rewards_distributed, reward)

            stake_authority = self.registry.authority(stake_asset_id, VaultPurpose.STAKE)
            reward_authority = self.registry.authority(stake_asset_id, VaultPurpose.REWARD)

            if reward > 0:
                try:
                    self.ledger.transfer(
                        pool.reward_vault,
                        reward_destination,
                        reward,
                        reward_authority.authorize_debit(pool.reward_vault),
                    )
                except LedgerError as e:
                    raise from_ledger_error(e)

            try:
                self.ledger.transfer(
                    pool.stake_vault,
                    stake_destination,
                    amount,
                    stake_authority.authorize_debit(pool.stake_vault),
                )
            except LedgerError as e:
                if reward > 0 and not self._revert_reward(pool, user, reward_destination, reward):
                    # Reward left the vault: record it as a claim, stake stays active
                    self.store.put(p_key, replace(pool, rewards_distributed=new_distributed))
                    self.store.put(pos_key, replace(
                        position,
                        state=replace(position.state, last_claimed=now),
                    ))
                raise from_ledger_error(e)

            self.store.put(p_key, replace(
                pool,
                total_staked=new_total,
                rewards_distributed=new_distributed,
            ))
            self.store.put(pos_key, replace(
                position,
                state=Inactive(staked_at=position.staked_at, last_claimed=now),
            ))

        return WithdrawResult(returned_stake=amount, reward_paid=reward)

    # ========================================================================
    # INTERNAL
    # ========================================================================

    def _check_account(self, account: str, asset_id: str, owner: str) -> None:
        """The account must hold asset_id and belong to owner."""
        try:
            info = self.ledger.account_info(account)
        except LedgerError as e:
            raise from_ledger_error(e)
        if info.asset_id != asset_id or info.owner != owner:
            raise StakingError(
                ErrorCode.INVALID_ACCOUNT,
                f"{account} is not a {asset_id} account owned by {owner}",
            )

    def _revert_reward(
        self,
        pool: PoolConfig,
        user: str,
        reward_destination: str,
        reward: int,
    ) -> bool:
        """Move a paid reward back into the reward vault under the user's authority."""
        try:
            self.ledger.transfer(reward_destination, pool.reward_vault, reward, user)
            return True
        except LedgerError as e:
            logger.error(
                f"Failed to revert reward of {reward} paid to {reward_destination} "
                f"for {user}, recording it as claimed: {e}"
            )
            return False
