"""
Tests for stakepool/protocol/accrual.py
"""

import pytest

from stakepool.config import U64_MAX
from stakepool.errors import ErrorCode, StakingError
from stakepool.protocol.accrual import (
    checked_add,
    checked_sub,
    checked_mul,
    compute_reward,
    elapsed_seconds,
)


class TestCheckedArithmetic:
    """Tests for u64 checked arithmetic."""

    def test_in_range(self):
        assert checked_add(2, 3) == 5
        assert checked_sub(5, 3) == 2
        assert checked_mul(4, 5) == 20
        assert checked_add(U64_MAX - 1, 1) == U64_MAX

    def test_add_overflow(self):
        """Test addition past U64_MAX fails."""
        with pytest.raises(StakingError) as exc:
            checked_add(U64_MAX, 1)
        assert exc.value.code == ErrorCode.ARITHMETIC_OVERFLOW

    def test_sub_underflow(self):
        """Test subtraction below zero fails."""
        with pytest.raises(StakingError) as exc:
            checked_sub(1, 2)
        assert exc.value.code == ErrorCode.ARITHMETIC_OVERFLOW

    def test_mul_overflow(self):
        """Test multiplication past U64_MAX fails."""
        with pytest.raises(StakingError) as exc:
            checked_mul(2 ** 32, 2 ** 32)
        assert exc.value.code == ErrorCode.ARITHMETIC_OVERFLOW


class TestComputeReward:
    """Tests for reward accrual."""

    def test_linear_in_elapsed_time(self):
        """Test reward is rate times elapsed seconds."""
        assert compute_reward(10 ** 9, 100, 102) == 2 * 10 ** 9
        assert compute_reward(7, 0, 10) == 70

    def test_zero_elapsed(self):
        assert compute_reward(10 ** 9, 100, 100) == 0

    def test_clock_backwards_clamps_to_zero(self):
        """Test a clock behind last_claimed accrues nothing."""
        assert elapsed_seconds(90, 100) == 0
        assert compute_reward(10 ** 9, 100, 90) == 0

    def test_monotonic(self):
        """Test reward never decreases as time advances."""
        rewards = [compute_reward(3, 50, t) for t in range(40, 80)]
        assert rewards == sorted(rewards)

    def test_overflow(self):
        """Test an overflowing product is reported."""
        with pytest.raises(StakingError) as exc:
            compute_reward(U64_MAX, 0, 2)
        assert exc.value.code == ErrorCode.ARITHMETIC_OVERFLOW
