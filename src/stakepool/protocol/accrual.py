"""
stakepool/protocol/accrual.py

Reward accrual and checked u64 arithmetic.

Reward accrues linearly at the pool's rate for every active position:

    elapsed = max(0, now - last_claimed)
    reward  = reward_rate * elapsed

reward_rate is already expressed in reward units per second scaled by 1e9,
so the product is paid out as-is. The amount staked does not enter the
formula; every active position earns the full pool rate.
"""

from ..config import U64_MAX
from ..errors import ErrorCode, StakingError


def checked_add(a: int, b: int) -> int:
    """a + b, raising ARITHMETIC_OVERFLOW outside [0, U64_MAX]."""
    result = a + b
    if result > U64_MAX or result < 0:
        raise StakingError(ErrorCode.ARITHMETIC_OVERFLOW, f"{a} + {b} overflows u64")
    return result


def checked_sub(a: int, b: int) -> int:
    """a - b, raising ARITHMETIC_OVERFLOW on underflow."""
    result = a - b
    if result < 0 or result > U64_MAX:
        raise StakingError(ErrorCode.ARITHMETIC_OVERFLOW, f"{a} - {b} underflows u64")
    return result


def checked_mul(a: int, b: int) -> int:
    """a * b, raising ARITHMETIC_OVERFLOW outside [0, U64_MAX]."""
    result = a * b
    if result > U64_MAX or result < 0:
        raise StakingError(ErrorCode.ARITHMETIC_OVERFLOW, f"{a} * {b} overflows u64")
    return result


def elapsed_seconds(now: int, last_claimed: int) -> int:
    """Seconds since last claim; a clock running backwards counts as zero."""
    return max(0, int(now) - int(last_claimed))


def compute_reward(reward_rate: int, last_claimed: int, now: int) -> int:
    """Reward owed for the time elapsed since last_claimed."""
    return checked_mul(reward_rate, elapsed_seconds(now, last_claimed))
