"""
stakepool/protocol/custody.py

Key-less custody authorities for pool vaults.

Each pool owns two vault accounts on the ledger, one for pooled stake and one
for reward funds. A vault is owned by a CustodyAuthority derived from
(stake asset, vault purpose). The authority carries no key material; the only
thing it can do is issue a DebitAuthorization for the single vault it was
bound to when the pool was created.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..config import STAKE_VAULT_TAG, REWARD_VAULT_TAG
from ..errors import ErrorCode, StakingError
from .keys import authority_key

logger = logging.getLogger("stakepool.protocol.custody")


class VaultPurpose(Enum):
    """What a vault holds."""
    STAKE = STAKE_VAULT_TAG
    REWARD = REWARD_VAULT_TAG


@dataclass(frozen=True)
class DebitAuthorization:
    """Opaque token allowing one debit from one vault."""
    address: str
    vault: str


class CustodyAuthority:
    """
    Program-derived signer bound to one vault.

    Usage:
        authority = CustodyAuthority.derive("LP", VaultPurpose.STAKE)
        vault = ledger.open_account("LP", owner=authority)
        authority.bind(vault)

        ledger.transfer(vault, user_account, 10, authority.authorize_debit(vault))
    """

    def __init__(self, stake_asset_id: str, purpose: VaultPurpose):
        self.stake_asset_id = stake_asset_id
        self.purpose = purpose
        self.address = authority_key(purpose.value, stake_asset_id)
        self._vault: Optional[str] = None

    @classmethod
    def derive(cls, stake_asset_id: str, purpose: VaultPurpose) -> "CustodyAuthority":
        return cls(stake_asset_id, purpose)

    @property
    def vault(self) -> Optional[str]:
        return self._vault

    def bind(self, vault: str) -> None:
        """Bind this authority to its vault. Allowed exactly once."""
        if self._vault is not None:
            raise StakingError(
                ErrorCode.INVALID_ACCOUNT,
                f"{self.purpose.value} authority for {self.stake_asset_id} already bound",
            )
        self._vault = vault
        logger.debug(f"Custody authority {self.address[:16]}... bound to vault {vault}")

    def authorize_debit(self, vault: str) -> DebitAuthorization:
        """Authorize a debit from the bound vault; any other vault is refused."""
        if self._vault is None or vault != self._vault:
            raise StakingError(
                ErrorCode.INVALID_ACCOUNT,
                f"{self.purpose.value} authority cannot debit {vault}",
            )
        return DebitAuthorization(address=self.address, vault=vault)

    def to_dict(self) -> Dict[str, Any]:
        """Public description (no capability is exported)."""
        return {
            'stake_asset_id': self.stake_asset_id,
            'purpose': self.purpose.value,
            'address': self.address,
            'vault': self._vault,
        }

    def __repr__(self) -> str:
        return (
            f"CustodyAuthority({self.stake_asset_id!r}, {self.purpose.value}, "
            f"vault={self._vault!r})"
        )
