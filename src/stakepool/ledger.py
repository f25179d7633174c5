"""
stakepool/ledger.py

Asset ledger interface consumed by the staking engine.

The engine never keeps balances itself. It reads and moves value through a
Ledger:
- transfer(): move an amount between two accounts of the same asset
- balance_of(): current balance of an account
- issuer_of(): issuance (mint) authority of an asset
- open_account(): allocate a new account owned by some identity

MemoryLedger is a thread-safe in-process implementation used by the tests,
the CLI and local development. It can be bootstrapped from a genesis dict:

    {
        "assets": [{"asset_id": "LP", "issuer": "EAdmin..."}],
        "accounts": [
            {"address": "alice-lp", "asset_id": "LP", "owner": "EAlice...", "balance": 100}
        ]
    }
"""

import hashlib
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import U64_MAX

logger = logging.getLogger("stakepool.ledger")


# ============================================================================
# ERRORS
# ============================================================================

class LedgerError(Exception):
    """Base class for ledger failures."""


class InsufficientFunds(LedgerError):
    """Source account balance is below the transfer amount."""


class UnauthorizedTransfer(LedgerError):
    """Authorizer does not control the source account."""


class UnknownAccount(LedgerError):
    """Account address is not known to the ledger."""


class UnknownAsset(LedgerError):
    """Asset identifier is not known to the ledger."""


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class AssetInfo:
    """An asset and its issuance authority."""
    asset_id: str
    issuer: str
    supply: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AssetInfo":
        return cls(
            asset_id=data["asset_id"],
            issuer=data["issuer"],
            supply=int(data.get("supply", 0)),
        )


@dataclass
class AccountInfo:
    """
    A single-asset account.

    Custodial accounts are owned by a capability object rather than a plain
    identity and can only be debited by presenting that capability.
    """
    address: str
    asset_id: str
    owner: str
    balance: int = 0
    custodial: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AccountInfo":
        return cls(
            address=data["address"],
            asset_id=data["asset_id"],
            owner=data["owner"],
            balance=int(data.get("balance", 0)),
            custodial=bool(data.get("custodial", False)),
        )


def authorizer_address(authorizer: Any) -> str:
    """
    Resolve the identity an authorizer acts for.

    Plain identities are strings; capability objects (custody authorities)
    expose an ``address`` attribute.
    """
    if isinstance(authorizer, str):
        return authorizer
    address = getattr(authorizer, "address", None)
    if not isinstance(address, str) or not address:
        raise UnauthorizedTransfer(f"Unrecognized authorizer: {authorizer!r}")
    return address


# ============================================================================
# INTERFACE
# ============================================================================

class Ledger(ABC):
    """Balance bookkeeping service the engine depends on."""

    @abstractmethod
    def transfer(self, from_account: str, to_account: str, amount: int, authorizer: Any) -> None:
        """
        Move ``amount`` from ``from_account`` to ``to_account``.

        Raises:
            InsufficientFunds: source balance below amount
            UnauthorizedTransfer: authorizer does not own the source
            LedgerError: any other rejection
        """

    @abstractmethod
    def balance_of(self, account: str) -> int:
        """Current balance of an account."""

    @abstractmethod
    def issuer_of(self, asset_id: str) -> str:
        """Issuance authority recorded on an asset."""

    @abstractmethod
    def open_account(self, asset_id: str, owner: Any) -> str:
        """
        Allocate a new empty account and return its address.

        ``owner`` is either an identity string or a capability object with an
        ``address``; the latter makes the account custodial.
        """

    @abstractmethod
    def account_info(self, account: str) -> AccountInfo:
        """Asset, owner and balance of an account."""


# ============================================================================
# IN-MEMORY LEDGER
# ============================================================================

class MemoryLedger(Ledger):
    """
    Thread-safe in-process ledger.

    Usage:
        ledger = MemoryLedger()
        ledger.create_asset("LP", issuer="EAdmin")
        alice = ledger.open_account("LP", owner="EAlice")
        ledger.mint("LP", alice, 100, authorizer="EAdmin")
        ledger.transfer(alice, bob, 10, authorizer="EAlice")
    """

    def __init__(self):
        self._assets: Dict[str, AssetInfo] = {}
        self._accounts: Dict[str, AccountInfo] = {}
        self._account_nonce = 0
        self._lock = threading.Lock()

    # ========================================================================
    # ASSETS
    # ========================================================================

    def create_asset(self, asset_id: str, issuer: str) -> AssetInfo:
        """Register a new asset with its issuance authority."""
        with self._lock:
            if asset_id in self._assets:
                raise LedgerError(f"Asset already exists: {asset_id}")
            asset = AssetInfo(asset_id=asset_id, issuer=issuer)
            self._assets[asset_id] = asset
        logger.debug(f"Asset created: {asset_id} (issuer {issuer})")
        return asset

    def issuer_of(self, asset_id: str) -> str:
        with self._lock:
            return self._get_asset(asset_id).issuer

    def mint(self, asset_id: str, account: str, amount: int, authorizer: Any) -> None:
        """Issue new units of an asset into an account (issuer only)."""
        signer = authorizer_address(authorizer)
        with self._lock:
            asset = self._get_asset(asset_id)
            target = self._get_account(account)
            if signer != asset.issuer:
                raise UnauthorizedTransfer(f"{signer} is not the issuer of {asset_id}")
            if target.asset_id != asset_id:
                raise LedgerError(f"Account {account} does not hold {asset_id}")
            self._check_amount(amount)
            if target.balance + amount > U64_MAX:
                raise LedgerError(f"Mint would overflow account {account}")
            target.balance += amount
            asset.supply += amount
        logger.debug(f"Minted {amount} {asset_id} into {account}")

    # ========================================================================
    # ACCOUNTS
    # ========================================================================

    def open_account(self, asset_id: str, owner: Any, address: Optional[str] = None) -> str:
        custodial = not isinstance(owner, str)
        owner_address = authorizer_address(owner)
        with self._lock:
            self._get_asset(asset_id)
            if address is None:
                address = self._generate_address(asset_id, owner_address)
            elif address in self._accounts:
                raise LedgerError(f"Account already exists: {address}")
            self._accounts[address] = AccountInfo(
                address=address,
                asset_id=asset_id,
                owner=owner_address,
                custodial=custodial,
            )
        logger.debug(f"Account opened: {address} ({asset_id}, owner {owner_address})")
        return address

    def account_info(self, account: str) -> AccountInfo:
        with self._lock:
            info = self._get_account(account)
            return AccountInfo(**asdict(info))

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._get_account(account).balance

    def accounts_of(self, owner: str) -> List[AccountInfo]:
        """All accounts owned by an identity."""
        with self._lock:
            return [
                AccountInfo(**asdict(a)) for a in self._accounts.values()
                if a.owner == owner
            ]

    # ========================================================================
    # TRANSFERS
    # ========================================================================

    def transfer(self, from_account: str, to_account: str, amount: int, authorizer: Any) -> None:
        signer = authorizer_address(authorizer)
        with self._lock:
            source = self._get_account(from_account)
            target = self._get_account(to_account)
            self._check_amount(amount)
            if source.asset_id != target.asset_id:
                raise LedgerError(
                    f"Asset mismatch: {source.asset_id} -> {target.asset_id}"
                )
            if signer != source.owner:
                raise UnauthorizedTransfer(
                    f"{signer} cannot debit {from_account}"
                )
            if source.custodial and isinstance(authorizer, str):
                raise UnauthorizedTransfer(
                    f"Custodial account {from_account} requires its custody authority"
                )
            scope = getattr(authorizer, "vault", None)
            if scope is not None and scope != from_account:
                raise UnauthorizedTransfer(
                    f"Authorization scoped to {scope}, not {from_account}"
                )
            if source.balance < amount:
                raise InsufficientFunds(
                    f"{from_account} holds {source.balance}, needs {amount}"
                )
            if target.balance + amount > U64_MAX:
                raise LedgerError(f"Transfer would overflow account {to_account}")
            source.balance -= amount
            target.balance += amount
        logger.debug(f"Transfer {amount} {source.asset_id}: {from_account} -> {to_account}")

    # ========================================================================
    # GENESIS / SNAPSHOT
    # ========================================================================

    @classmethod
    def from_genesis(cls, data: Dict[str, Any]) -> "MemoryLedger":
        """Build a ledger from a genesis dictionary."""
        ledger = cls()
        for asset in data.get("assets", []):
            ledger.create_asset(asset["asset_id"], asset["issuer"])
        for account in data.get("accounts", []):
            address = ledger.open_account(
                account["asset_id"],
                account["owner"],
                address=account.get("address"),
            )
            balance = int(account.get("balance", 0))
            if balance:
                issuer = ledger.issuer_of(account["asset_id"])
                ledger.mint(account["asset_id"], address, balance, authorizer=issuer)
        logger.info(
            f"Ledger loaded from genesis: {len(ledger._assets)} assets, "
            f"{len(ledger._accounts)} accounts"
        )
        return ledger

    @classmethod
    def from_genesis_file(cls, path: Union[str, Path]) -> "MemoryLedger":
        """Build a ledger from a genesis JSON file."""
        with open(path, "r") as f:
            return cls.from_genesis(json.load(f))

    def snapshot(self) -> Dict[str, Any]:
        """Export assets and accounts in genesis format."""
        with self._lock:
            return {
                "assets": [a.to_dict() for a in self._assets.values()],
                "accounts": [a.to_dict() for a in self._accounts.values()],
            }

    # ========================================================================
    # INTERNAL
    # ========================================================================

    def _get_asset(self, asset_id: str) -> AssetInfo:
        asset = self._assets.get(asset_id)
        if asset is None:
            raise UnknownAsset(f"Unknown asset: {asset_id}")
        return asset

    def _get_account(self, account: str) -> AccountInfo:
        info = self._accounts.get(account)
        if info is None:
            raise UnknownAccount(f"Unknown account: {account}")
        return info

    @staticmethod
    def _check_amount(amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise LedgerError(f"Amount must be an integer: {amount!r}")
        if amount <= 0 or amount > U64_MAX:
            raise LedgerError(f"Amount out of range: {amount}")

    def _generate_address(self, asset_id: str, owner: str) -> str:
        """Generate a unique account address from asset, owner and a nonce."""
        self._account_nonce += 1
        data = f"{asset_id}:{owner}:{self._account_nonce}"
        return hashlib.sha256(data.encode()).hexdigest()[:40]
