"""
Shared fixtures for stakepool tests.
"""

import pytest

from stakepool.ledger import MemoryLedger
from stakepool.protocol.engine import StakingEngine


SCALE = 10 ** 9
START_TIME = 1_700_000_000


class FakeClock:
    """Controllable clock returning whole seconds."""

    def __init__(self, start: int = START_TIME):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def create_test_genesis() -> dict:
    """Two assets issued by EAdmin plus accounts for EAdmin, EAlice and EBob."""
    return {
        "assets": [
            {"asset_id": "LP", "issuer": "EAdmin"},
            {"asset_id": "RWD", "issuer": "EAdmin"},
            {"asset_id": "FOREIGN", "issuer": "EOutsider"},
        ],
        "accounts": [
            {"asset_id": "RWD", "owner": "EAdmin", "address": "admin-rwd", "balance": 10_000 * SCALE},
            {"asset_id": "LP", "owner": "EAdmin", "address": "admin-lp", "balance": 10 ** 15},
            {"asset_id": "LP", "owner": "EAlice", "address": "alice-lp", "balance": 100 * SCALE},
            {"asset_id": "RWD", "owner": "EAlice", "address": "alice-rwd"},
            {"asset_id": "LP", "owner": "EBob", "address": "bob-lp", "balance": 100 * SCALE},
            {"asset_id": "RWD", "owner": "EBob", "address": "bob-rwd"},
        ],
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return MemoryLedger.from_genesis(create_test_genesis())


@pytest.fixture
def engine(ledger, clock):
    return StakingEngine(ledger, clock=clock)


@pytest.fixture
def pool_engine(engine):
    """Engine with an LP/RWD pool at 1 reward unit per second and 1000 units funded."""
    engine.initialize_pool("EAdmin", "LP", "RWD", reward_rate=SCALE)
    engine.fund_reward_vault("EAdmin", "LP", "admin-rwd", 1_000 * SCALE)
    return engine
