"""
stakepool/signing.py

Request signing for the staking API, using python-evrmorelib.

Every mutating API request names the identity acting (admin, user, funder)
and carries a signature by that identity's Evrmore key over a deterministic
signing message. The message covers every field that affects the operation
plus a timestamp, so a signature is only valid for that exact amount,
account and pool, and goes stale after SIGNATURE_MAX_AGE. Resubmitting an
identical signed request inside that window is rejected by the API server,
which remembers every accepted (message, signature) pair until it expires.

Usage:
    from stakepool.signing import StakerWallet, stake_signing_message, verify_message

    wallet = StakerWallet.from_entropy(entropy_bytes)
    message = stake_signing_message(wallet.address, "LP", 50, account, timestamp)
    signature = wallet.sign(message)

    assert verify_message(message, signature, address=wallet.address)
"""

import base64
import logging
from typing import Optional, Union

from evrmore import SelectParams
from evrmore.wallet import CEvrmoreSecret, P2PKHEvrmoreAddress
from evrmore.signmessage import signMessage, verifyMessage, EvrmoreMessage

logger = logging.getLogger("stakepool.signing")

SIGNING_PREFIX = "stakepool"


# ============================================================================
# SIGNING MESSAGES
# ============================================================================

def _signing_message(operation: str, *fields: object) -> str:
    return ":".join([SIGNING_PREFIX, operation] + [str(f) for f in fields])


def initialize_signing_message(
    admin: str,
    stake_asset_id: str,
    reward_asset_id: str,
    reward_rate: int,
    timestamp: int,
) -> str:
    """Message an admin signs to create a pool."""
    return _signing_message(
        "initialize_pool", admin, stake_asset_id, reward_asset_id, reward_rate, timestamp,
    )


def stake_signing_message(
    user: str,
    stake_asset_id: str,
    amount: int,
    source_account: str,
    timestamp: int,
) -> str:
    """Message a user signs to stake."""
    return _signing_message("stake", user, stake_asset_id, amount, source_account, timestamp)


def withdraw_signing_message(
    user: str,
    stake_asset_id: str,
    stake_destination: str,
    reward_destination: str,
    timestamp: int,
) -> str:
    """Message a user signs to withdraw."""
    return _signing_message(
        "withdraw", user, stake_asset_id, stake_destination, reward_destination, timestamp,
    )


def fund_signing_message(
    funder: str,
    stake_asset_id: str,
    source_account: str,
    amount: int,
    timestamp: int,
) -> str:
    """Message a funder signs to top up a reward vault."""
    return _signing_message("fund", funder, stake_asset_id, source_account, amount, timestamp)


# ============================================================================
# WALLET
# ============================================================================

class StakerWallet:
    """
    Evrmore key pair used by clients to sign staking requests.

    Use the factory methods from_entropy() or from_wif().
    """

    def __init__(self, private_key: CEvrmoreSecret):
        SelectParams('mainnet')
        self._private_key = private_key
        self._address = P2PKHEvrmoreAddress.from_pubkey(private_key.pub)

    @classmethod
    def from_entropy(cls, entropy: bytes, compressed: bool = True) -> "StakerWallet":
        """Create wallet from exactly 32 bytes of entropy."""
        SelectParams('mainnet')
        if len(entropy) != 32:
            raise ValueError("Entropy must be exactly 32 bytes")
        return cls(CEvrmoreSecret.from_secret_bytes(entropy, compressed=compressed))

    @classmethod
    def from_wif(cls, wif: str) -> "StakerWallet":
        """Create wallet from a WIF private key."""
        SelectParams('mainnet')
        return cls(CEvrmoreSecret(wif))

    @property
    def address(self) -> str:
        return str(self._address)

    @property
    def public_key(self) -> str:
        return self._private_key.pub.hex()

    def sign(self, message: str) -> str:
        """Sign a message; returns the base64 signature as text."""
        signature = signMessage(self._private_key, EvrmoreMessage(message))
        if isinstance(signature, bytes):
            return signature.decode('utf-8')
        return signature


def verify_message(
    message: str,
    signature: Union[bytes, str],
    address: Optional[str] = None,
    pubkey: Optional[Union[str, bytes]] = None,
) -> bool:
    """
    Verify a message signature against an address or public key.

    Malformed signatures verify as False rather than raising.
    """
    if pubkey is None and address is None:
        raise ValueError("Must provide either pubkey or address")

    if isinstance(signature, bytes):
        try:
            signature = signature.decode('utf-8')
        except UnicodeDecodeError:
            signature = base64.b64encode(signature).decode('utf-8')
    if isinstance(pubkey, bytes):
        pubkey = pubkey.hex()

    try:
        return bool(verifyMessage(
            message=EvrmoreMessage(message),
            signature=signature,
            pubkey=pubkey,
            address=address,
        ))
    except Exception as e:
        logger.debug(f"Signature verification failed: {e}")
        return False


def generate_address(pubkey: Union[bytes, str]) -> str:
    """Evrmore address of a public key."""
    SelectParams('mainnet')
    if isinstance(pubkey, str):
        pubkey = bytes.fromhex(pubkey)
    return str(P2PKHEvrmoreAddress.from_pubkey(pubkey))
