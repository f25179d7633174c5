"""
stakepool/protocol/engine.py

Staking engine entry points.

StakingEngine wires the keyed store, pool registry and position manager to a
ledger and a clock, and exposes the state transitions:

- initialize_pool()   -> PoolConfig
- stake_assets()      -> UserStakePosition
- withdraw_assets()   -> WithdrawResult
- fund_reward_vault() -> new reward vault balance

Each call either commits completely or raises StakingError with nothing
changed. Successful transitions are logged and reported to registered
callbacks; every call (successful or not) is reported to operation
listeners, which the metrics collector uses.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ..config import U64_MAX
from ..errors import ErrorCode, StakingError, from_ledger_error
from ..ledger import Ledger, LedgerError, InsufficientFunds
from .accrual import compute_reward, elapsed_seconds
from .keys import KeyedStore
from .pool import PoolConfig, PoolRegistry
from .position import PositionManager, UserStakePosition, WithdrawResult

logger = logging.getLogger("stakepool.protocol.engine")

# (operation, success, error code or None)
OperationListener = Callable[[str, bool, Optional[ErrorCode]], None]


class StakingEngine:
    """
    Staking-and-reward engine over an external ledger.

    Usage:
        engine = StakingEngine(ledger)

        pool = engine.initialize_pool("EAdmin", "LP", "RWD", reward_rate=10**9)
        engine.fund_reward_vault("EAdmin", "LP", admin_rwd_account, 10_000 * 10**9)

        engine.stake_assets("EAlice", "LP", 50 * 10**9, alice_lp)
        result = engine.withdraw_assets("EAlice", "LP", alice_lp, alice_rwd)
        print(result.returned_stake, result.reward_paid)
    """

    def __init__(
        self,
        ledger: Ledger,
        clock: Optional[Callable[[], float]] = None,
        store: Optional[KeyedStore] = None,
    ):
        """
        Initialize StakingEngine.

        Args:
            ledger: Ledger holding stake/reward balances
            clock: Returns current time in seconds (default: time.time)
            store: Record store (default: new empty store)
        """
        self.ledger = ledger
        self.clock = clock or time.time
        self.store = store or KeyedStore()
        self.pools = PoolRegistry(self.store, ledger)
        self.positions = PositionManager(self.store, ledger, self.pools)

        # Callbacks
        self._on_pool_initialized: List[Callable[[PoolConfig], None]] = []
        self._on_stake: List[Callable[[UserStakePosition], None]] = []
        self._on_withdraw: List[Callable[[UserStakePosition, WithdrawResult], None]] = []
        self._operation_listeners: List[OperationListener] = []

    def now(self) -> int:
        """Current time in whole seconds."""
        return int(self.clock())

    # ========================================================================
    # STATE TRANSITIONS
    # ========================================================================

    def initialize_pool(
        self,
        admin: str,
        stake_asset_id: str,
        reward_asset_id: str,
        reward_rate: int,
        admin_reward_account: Optional[str] = None,
    ) -> PoolConfig:
        """
        Create the pool for a stake asset.

        Args:
            admin: Must be the stake asset's issuance authority
            stake_asset_id: Asset users stake
            reward_asset_id: Asset paid as reward
            reward_rate: Reward units per second, scaled by 1e9
            admin_reward_account: Admin's reward-asset account (validated if given)

        Returns:
            The new PoolConfig
        """
        try:
            pool = self.pools.initialize(
                admin=admin,
                stake_asset_id=stake_asset_id,
                reward_asset_id=reward_asset_id,
                reward_rate=reward_rate,
                now=self.now(),
                admin_reward_account=admin_reward_account,
            )
        except StakingError as e:
            self._rejected("initialize_pool", e)
            raise

        logger.info(
            f"Pool initialized: stake={stake_asset_id} reward={reward_asset_id} "
            f"rate={reward_rate} admin={admin}"
        )
        self._completed("initialize_pool")
        self._notify(self._on_pool_initialized, pool)
        return pool

    def stake_assets(
        self,
        user: str,
        stake_asset_id: str,
        amount: int,
        source_account: str,
    ) -> UserStakePosition:
        """
        Stake ``amount`` of the pool's stake asset from ``source_account``.

        Returns:
            The user's now-active position
        """
        try:
            position = self.positions.stake(
                user=user,
                stake_asset_id=stake_asset_id,
                amount=amount,
                source_account=source_account,
                now=self.now(),
            )
        except StakingError as e:
            self._rejected("stake_assets", e)
            raise

        logger.info(f"Staked {amount} {stake_asset_id} for {user}")
        self._completed("stake_assets")
        self._notify(self._on_stake, position)
        return position

    def withdraw_assets(
        self,
        user: str,
        stake_asset_id: str,
        stake_destination: str,
        reward_destination: str,
    ) -> WithdrawResult:
        """
        Withdraw the user's whole stake and claim the accrued reward.

        Returns:
            WithdrawResult(returned_stake, reward_paid)
        """
        try:
            result = self.positions.withdraw(
                user=user,
                stake_asset_id=stake_asset_id,
                stake_destination=stake_destination,
                reward_destination=reward_destination,
                now=self.now(),
            )
        except StakingError as e:
            self._rejected("withdraw_assets", e)
            raise

        logger.info(
            f"Withdrew {result.returned_stake} {stake_asset_id} for {user} "
            f"(reward {result.reward_paid})"
        )
        self._completed("withdraw_assets")
        position = self.positions.get(user, stake_asset_id)
        self._notify(self._on_withdraw, position, result)
        return result

    def fund_reward_vault(
        self,
        funder: str,
        stake_asset_id: str,
        source_account: str,
        amount: int,
    ) -> int:
        """
        Top up a pool's reward vault from a funder's reward-asset account.

        Returns:
            Reward vault balance after funding
        """
        try:
            balance = self._fund(funder, stake_asset_id, source_account, amount)
        except StakingError as e:
            self._rejected("fund_reward_vault", e)
            raise

        logger.info(f"Reward vault of {stake_asset_id} funded with {amount} by {funder}")
        self._completed("fund_reward_vault")
        return balance

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_pool(self, stake_asset_id: str) -> PoolConfig:
        """Get a pool, raising POOL_NOT_FOUND."""
        return self.pools.require(stake_asset_id)

    def list_pools(self) -> List[PoolConfig]:
        return sorted(self.pools.list(), key=lambda p: p.stake_asset_id)

    def get_position(self, user: str, stake_asset_id: str) -> Optional[UserStakePosition]:
        return self.positions.get(user, stake_asset_id)

    def active_positions(self, stake_asset_id: str) -> List[UserStakePosition]:
        return self.positions.active_positions(stake_asset_id)

    def pending_reward(self, user: str, stake_asset_id: str) -> int:
        """Reward the user would receive by withdrawing now."""
        return self.positions.pending_reward(user, stake_asset_id, self.now())

    def reward_vault_balance(self, stake_asset_id: str) -> int:
        pool = self.pools.require(stake_asset_id)
        try:
            return self.ledger.balance_of(pool.reward_vault)
        except LedgerError as e:
            raise from_ledger_error(e)

    def stake_vault_balance(self, stake_asset_id: str) -> int:
        pool = self.pools.require(stake_asset_id)
        try:
            return self.ledger.balance_of(pool.stake_vault)
        except LedgerError as e:
            raise from_ledger_error(e)

    def position_summary(self, user: str, stake_asset_id: str) -> Dict[str, Any]:
        """Position fields plus pending reward and elapsed accrual time."""
        pool = self.pools.require(stake_asset_id)
        position = self.positions.get(user, stake_asset_id)
        exists = position is not None
        if position is None:
            position = UserStakePosition(owner=user, pool=stake_asset_id)

        now = self.now()
        summary = position.to_dict()
        summary['exists'] = exists
        if position.active:
            summary['pending_reward'] = compute_reward(pool.reward_rate, position.last_claimed, now)
            summary['elapsed_seconds'] = elapsed_seconds(now, position.last_claimed)
        else:
            summary['pending_reward'] = 0
            summary['elapsed_seconds'] = 0
        return summary

    # ========================================================================
    # CALLBACKS
    # ========================================================================

    def on_pool_initialized(self, callback: Callable[[PoolConfig], None]) -> None:
        """Register callback for pool initialization events."""
        self._on_pool_initialized.append(callback)

    def on_stake(self, callback: Callable[[UserStakePosition], None]) -> None:
        """Register callback for stake events."""
        self._on_stake.append(callback)

    def on_withdraw(
        self,
        callback: Callable[[UserStakePosition, WithdrawResult], None],
    ) -> None:
        """Register callback for withdraw events."""
        self._on_withdraw.append(callback)

    def add_operation_listener(self, listener: OperationListener) -> None:
        """Register listener called after every operation attempt."""
        self._operation_listeners.append(listener)

    # ========================================================================
    # INTERNAL
    # ========================================================================

    def _fund(self, funder: str, stake_asset_id: str, source_account: str, amount: int) -> int:
        if not isinstance(amount, int) or isinstance(amount, bool) or not 0 < amount <= U64_MAX:
            raise StakingError(ErrorCode.INVALID_AMOUNT, f"Invalid funding amount: {amount!r}")
        pool = self.pools.require(stake_asset_id)
        try:
            info = self.ledger.account_info(source_account)
            if info.asset_id != pool.reward_asset_id:
                raise StakingError(
                    ErrorCode.INVALID_ACCOUNT,
                    f"{source_account} does not hold {pool.reward_asset_id}",
                )
            self.ledger.transfer(source_account, pool.reward_vault, amount, funder)
            return self.ledger.balance_of(pool.reward_vault)
        except InsufficientFunds as e:
            raise StakingError(ErrorCode.INSUFFICIENT_TOKEN_BALANCE, str(e))
        except LedgerError as e:
            raise from_ledger_error(e)

    def _completed(self, operation: str) -> None:
        for listener in self._operation_listeners:
            try:
                listener(operation, True, None)
            except Exception as e:
                logger.error(f"Operation listener error: {e}")

    def _rejected(self, operation: str, error: StakingError) -> None:
        logger.warning(f"{operation} rejected: {error}")
        for listener in self._operation_listeners:
            try:
                listener(operation, False, error.code)
            except Exception as e:
                logger.error(f"Operation listener error: {e}")

    @staticmethod
    def _notify(callbacks: List[Callable], *args: Any) -> None:
        for callback in callbacks:
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Engine callback error: {e}")
