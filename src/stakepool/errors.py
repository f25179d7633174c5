"""
stakepool/errors.py

Error kinds raised by the staking engine.

Every engine failure is a synchronous StakingError carrying an ErrorCode.
No operation leaves partial state behind when it raises.
"""

from enum import Enum
from typing import Any, Dict

from .ledger import LedgerError, UnauthorizedTransfer, UnknownAccount, UnknownAsset


class ErrorCode(Enum):
    """Rejection reasons for engine operations."""
    INVALID_MINT_AUTHORITY = 'INVALID_MINT_AUTHORITY'
    INSUFFICIENT_TOKEN_BALANCE = 'INSUFFICIENT_TOKEN_BALANCE'
    ALREADY_ACTIVE_POSITION = 'ALREADY_ACTIVE_POSITION'
    NO_ACTIVE_POSITION = 'NO_ACTIVE_POSITION'
    INSUFFICIENT_VAULT_BALANCE = 'INSUFFICIENT_VAULT_BALANCE'
    ARITHMETIC_OVERFLOW = 'ARITHMETIC_OVERFLOW'
    POOL_ALREADY_EXISTS = 'POOL_ALREADY_EXISTS'
    POOL_NOT_FOUND = 'POOL_NOT_FOUND'
    INVALID_AMOUNT = 'INVALID_AMOUNT'
    INVALID_REWARD_RATE = 'INVALID_REWARD_RATE'
    INVALID_ACCOUNT = 'INVALID_ACCOUNT'
    UNAUTHORIZED = 'UNAUTHORIZED'
    LEDGER_ERROR = 'LEDGER_ERROR'


class StakingError(Exception):
    """An engine operation was rejected."""

    def __init__(self, code: ErrorCode, message: str = ""):
        self.code = code
        self.message = message or code.value
        super().__init__(f"{code.value}: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': self.code.value,
            'message': self.message,
        }


def from_ledger_error(exc: LedgerError) -> StakingError:
    """Translate a ledger failure into the matching engine error."""
    if isinstance(exc, UnauthorizedTransfer):
        code = ErrorCode.UNAUTHORIZED
    elif isinstance(exc, (UnknownAccount, UnknownAsset)):
        code = ErrorCode.INVALID_ACCOUNT
    else:
        code = ErrorCode.LEDGER_ERROR
    return StakingError(code, str(exc))
