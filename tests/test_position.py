"""
Tests for stakepool/protocol/position.py

Tests position states and the stake/withdraw state machine.
"""

import pytest

from stakepool.errors import ErrorCode, StakingError
from stakepool.ledger import LedgerError, MemoryLedger
from stakepool.protocol.keys import KeyedStore
from stakepool.protocol.pool import PoolRegistry
from stakepool.protocol.position import (
    Active,
    Inactive,
    PositionManager,
    UserStakePosition,
    WithdrawResult,
)

from conftest import SCALE, create_test_genesis

NOW = 1_700_000_000


def create_test_manager(ledger):
    """Position manager over an LP/RWD pool funded with 1000 reward units."""
    store = KeyedStore()
    registry = PoolRegistry(store, ledger)
    pool = registry.initialize("EAdmin", "LP", "RWD", reward_rate=SCALE, now=NOW)
    ledger.transfer("admin-rwd", pool.reward_vault, 1_000 * SCALE, "EAdmin")
    return PositionManager(store, ledger, registry), registry


class FrozenAccountsLedger(MemoryLedger):
    """Ledger that refuses every debit from a frozen account."""

    def __init__(self):
        super().__init__()
        self.frozen = set()

    def transfer(self, from_account, to_account, amount, authorizer):
        if from_account in self.frozen:
            raise LedgerError(f"{from_account} is frozen")
        super().transfer(from_account, to_account, amount, authorizer)


class TestPositionState:
    """Tests for Inactive/Active position states."""

    def test_default_inactive(self):
        position = UserStakePosition(owner="EAlice", pool="LP")
        assert not position.active
        assert position.amount_staked == 0
        assert position.last_claimed == 0

    def test_active_requires_amount(self):
        with pytest.raises(ValueError):
            Active(amount=0, staked_at=NOW, last_claimed=NOW)

    def test_active_fields(self):
        position = UserStakePosition(
            owner="EAlice", pool="LP", state=Active(amount=5, staked_at=NOW, last_claimed=NOW),
        )
        assert position.active
        assert position.amount_staked == 5
        assert position.staked_at == NOW

    def test_from_dict(self):
        position = UserStakePosition.from_dict({
            "owner": "EAlice",
            "pool": "LP",
            "active": True,
            "amount_staked": 7,
            "staked_at": NOW,
            "last_claimed": NOW + 1,
        })
        assert position.state == Active(amount=7, staked_at=NOW, last_claimed=NOW + 1)
        assert position.to_dict()["amount_staked"] == 7

    def test_inactive_from_dict(self):
        position = UserStakePosition.from_dict({"owner": "EAlice", "pool": "LP"})
        assert position.state == Inactive()

    def test_withdraw_result_to_dict(self):
        assert WithdrawResult(5, 2).to_dict() == {"returned_stake": 5, "reward_paid": 2}


class TestStake:
    """Tests for PositionManager.stake."""

    def test_stake(self, ledger):
        manager, registry = create_test_manager(ledger)
        position = manager.stake("EAlice", "LP", 50 * SCALE, "alice-lp", now=NOW)

        assert position.state == Active(amount=50 * SCALE, staked_at=NOW, last_claimed=NOW)
        assert manager.get("EAlice", "LP") == position
        pool = registry.get("LP")
        assert pool.total_staked == 50 * SCALE
        assert ledger.balance_of(pool.stake_vault) == 50 * SCALE
        assert ledger.balance_of("alice-lp") == 50 * SCALE

    @pytest.mark.parametrize("amount", [0, -5, 1.0, True])
    def test_invalid_amount(self, ledger, amount):
        manager, registry = create_test_manager(ledger)
        with pytest.raises(StakingError) as exc:
            manager.stake("EAlice", "LP", amount, "alice-lp", now=NOW)
        assert exc.value.code == ErrorCode.INVALID_AMOUNT

    def test_insufficient_balance(self, ledger):
        manager, registry = create_test_manager(ledger)
        with pytest.raises(StakingError) as exc:
            manager.stake("EAlice", "LP", 101 * SCALE, "alice-lp", now=NOW)
        assert exc.value.code == ErrorCode.INSUFFICIENT_TOKEN_BALANCE
        assert manager.get("EAlice", "LP") is None
        assert registry.get("LP").total_staked == 0

    def test_already_active(self, ledger):
        manager, registry = create_test_manager(ledger)
        manager.stake("EAlice", "LP", 10, "alice-lp", now=NOW)
        with pytest.raises(StakingError) as exc:
            manager.stake("EAlice", "LP", 10, "alice-lp", now=NOW + 1)
        assert exc.value.code == ErrorCode.ALREADY_ACTIVE_POSITION
        assert registry.get("LP").total_staked == 10

    def test_foreign_source_account(self, ledger):
        """Test staking from someone else's account is rejected."""
        manager, registry = create_test_manager(ledger)
        with pytest.raises(StakingError) as exc:
            manager.stake("EAlice", "LP", 10, "bob-lp", now=NOW)
        assert exc.value.code == ErrorCode.INVALID_ACCOUNT
        assert ledger.balance_of("bob-lp") == 100 * SCALE

    def test_wrong_asset_account(self, ledger):
        manager, registry = create_test_manager(ledger)
        with pytest.raises(StakingError) as exc:
            manager.stake("EAlice", "LP", 10, "alice-rwd", now=NOW)
        assert exc.value.code == ErrorCode.INVALID_ACCOUNT

    def test_unknown_pool(self, ledger):
        manager, registry = create_test_manager(ledger)
        with pytest.raises(StakingError) as exc:
            manager.stake("EAlice", "RWD", 10, "alice-rwd", now=NOW)
        assert exc.value.code == ErrorCode.POOL_NOT_FOUND

    def test_total_staked_overflow_changes_nothing(self, ledger):
        """Test a stake overflowing total_staked is rejected with nothing moved."""
        manager, registry = create_test_manager(ledger)
        first = ledger.open_account("LP", "EWhaleA")
        second = ledger.open_account("LP", "EWhaleB")
        ledger.mint("LP", first, 2 ** 63, authorizer="EAdmin")
        ledger.mint("LP", second, 2 ** 63, authorizer="EAdmin")
        manager.stake("EWhaleA", "LP", 2 ** 63, first, now=NOW)

        with pytest.raises(StakingError) as exc:
            manager.stake("EWhaleB", "LP", 2 ** 63, second, now=NOW)

        assert exc.value.code == ErrorCode.ARITHMETIC_OVERFLOW
        assert ledger.balance_of(second) == 2 ** 63
        assert manager.get("EWhaleB", "LP") is None
        assert registry.get("LP").total_staked == 2 ** 63
        assert ledger.balance_of(registry.get("LP").stake_vault) == 2 ** 63


class TestWithdraw:
    """Tests for PositionManager.withdraw."""

    def test_withdraw(self, ledger):
        manager, registry = create_test_manager(ledger)
        manager.stake("EAlice", "LP", 50 * SCALE, "alice-lp", now=NOW)

        result = manager.withdraw("EAlice", "LP", "alice-lp", "alice-rwd", now=NOW + 10)

        assert result == WithdrawResult(returned_stake=50 * SCALE, reward_paid=10 * SCALE)
        assert ledger.balance_of("alice-lp") == 100 * SCALE
        assert ledger.balance_of("alice-rwd") == 10 * SCALE
        pool = registry.get("LP")
        assert pool.total_staked == 0
        assert pool.rewards_distributed == 10 * SCALE

        position = manager.get("EAlice", "LP")
        assert position.state == Inactive(staked_at=NOW, last_claimed=NOW + 10)

    def test_withdraw_same_second_pays_nothing(self, ledger):
        manager, registry = create_test_manager(ledger)
        manager.stake("EAlice", "LP", 5, "alice-lp", now=NOW)
        result = manager.withdraw("EAlice", "LP", "alice-lp", "alice-rwd", now=NOW)
        assert result.reward_paid == 0
        assert result.returned_stake == 5

    def test_no_position(self, ledger):
        manager, registry = create_test_manager(ledger)
        with pytest.raises(StakingError) as exc:
            manager.withdraw("EAlice", "LP", "alice-lp", "alice-rwd", now=NOW)
        assert exc.value.code == ErrorCode.NO_ACTIVE_POSITION

    def test_double_withdraw(self, ledger):
        manager, registry = create_test_manager(ledger)
        manager.stake("EAlice", "LP", 5, "alice-lp", now=NOW)
        manager.withdraw("EAlice", "LP", "alice-lp", "alice-rwd", now=NOW + 1)
        with pytest.raises(StakingError) as exc:
            manager.withdraw("EAlice", "LP", "alice-lp", "alice-rwd", now=NOW + 2)
        assert exc.value.code == ErrorCode.NO_ACTIVE_POSITION

    def test_restake_after_withdraw(self, ledger):
        """Test a withdrawn position can be reactivated in place."""
        manager, registry = create_test_manager(ledger)
        manager.stake("EAlice", "LP", 5, "alice-lp", now=NOW)
        manager.withdraw("EAlice", "LP", "alice-lp", "alice-rwd", now=NOW + 1)
        position = manager.stake("EAlice", "LP", 7, "alice-lp", now=NOW + 5)
        assert position.state == Active(amount=7, staked_at=NOW + 5, last_claimed=NOW + 5)

    def test_destination_must_belong_to_user(self, ledger):
        manager, registry = create_test_manager(ledger)
        manager.stake("EAlice", "LP", 5, "alice-lp", now=NOW)
        with pytest.raises(StakingError) as exc:
            manager.withdraw("EAlice", "LP", "bob-lp", "alice-rwd", now=NOW + 1)
        assert exc.value.code == ErrorCode.INVALID_ACCOUNT
        assert manager.get("EAlice", "LP").active

    def test_insufficient_vault(self, ledger):
        """Test an underfunded reward vault rejects withdraw with nothing changed."""
        manager, registry = create_test_manager(ledger)
        manager.stake("EAlice", "LP", 5, "alice-lp", now=NOW)
        pool_before = registry.get("LP")

        with pytest.raises(StakingError) as exc:
            manager.withdraw("EAlice", "LP", "alice-lp", "alice-rwd", now=NOW + 1001)

        assert exc.value.code == ErrorCode.INSUFFICIENT_VAULT_BALANCE
        assert registry.get("LP") == pool_before
        assert manager.get("EAlice", "LP").active
        assert ledger.balance_of(pool_before.stake_vault) == 5
        assert ledger.balance_of("alice-rwd") == 0

    def test_failed_reward_payout_changes_nothing(self):
        """Test a reward payout failure leaves balances and records unchanged."""
        ledger = FrozenAccountsLedger.from_genesis(create_test_genesis())
        manager, registry = create_test_manager(ledger)
        manager.stake("EAlice", "LP", 5, "alice-lp", now=NOW)
        pool = registry.get("LP")
        ledger.frozen.add(pool.reward_vault)

        with pytest.raises(StakingError) as exc:
            manager.withdraw("EAlice", "LP", "alice-lp", "alice-rwd", now=NOW + 3)

        assert exc.value.code == ErrorCode.LEDGER_ERROR
        assert ledger.balance_of(pool.stake_vault) == 5
        assert ledger.balance_of("alice-lp") == 100 * SCALE - 5
        assert ledger.balance_of("alice-rwd") == 0
        assert registry.get("LP") == pool
        assert manager.get("EAlice", "LP").last_claimed == NOW

    def test_failed_stake_return_reverts_reward(self):
        """Test a failed stake return moves the paid reward back to the vault."""
        ledger = FrozenAccountsLedger.from_genesis(create_test_genesis())
        manager, registry = create_test_manager(ledger)
        manager.stake("EAlice", "LP", 5, "alice-lp", now=NOW)
        pool = registry.get("LP")
        ledger.frozen.add(pool.stake_vault)

        with pytest.raises(StakingError) as exc:
            manager.withdraw("EAlice", "LP", "alice-lp", "alice-rwd", now=NOW + 3)

        assert exc.value.code == ErrorCode.LEDGER_ERROR
        assert ledger.balance_of("alice-rwd") == 0
        assert ledger.balance_of(pool.reward_vault) == 1_000 * SCALE
        assert ledger.balance_of(pool.stake_vault) == 5
        assert registry.get("LP") == pool
        assert manager.get("EAlice", "LP").state == Active(amount=5, staked_at=NOW, last_claimed=NOW)

    def test_unrevertable_reward_recorded_as_claim(self):
        """Test records still match balances when the reward cannot be reverted."""
        ledger = FrozenAccountsLedger.from_genesis(create_test_genesis())
        manager, registry = create_test_manager(ledger)
        manager.stake("EAlice", "LP", 5, "alice-lp", now=NOW)
        pool = registry.get("LP")
        ledger.frozen.update({pool.stake_vault, "alice-rwd"})

        with pytest.raises(StakingError):
            manager.withdraw("EAlice", "LP", "alice-lp", "alice-rwd", now=NOW + 3)

        pool_after = registry.get("LP")
        assert ledger.balance_of("alice-rwd") == 3 * SCALE
        assert pool_after.rewards_distributed == 3 * SCALE
        assert pool_after.total_staked == 5
        assert ledger.balance_of(pool.stake_vault) == 5
        assert manager.get("EAlice", "LP").state == Active(amount=5, staked_at=NOW, last_claimed=NOW + 3)

        ledger.frozen.clear()
        result = manager.withdraw("EAlice", "LP", "alice-lp", "alice-rwd", now=NOW + 3)
        assert result == WithdrawResult(returned_stake=5, reward_paid=0)

    def test_pending_reward(self, ledger):
        manager, registry = create_test_manager(ledger)
        assert manager.pending_reward("EAlice", "LP", now=NOW) == 0
        manager.stake("EAlice", "LP", 5, "alice-lp", now=NOW)
        assert manager.pending_reward("EAlice", "LP", now=NOW + 4) == 4 * SCALE
