"""
Base chain client interface.
"""
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, Optional


@dataclass
class EscrowDetails:
    """On-chain escrow record, read-only from this service."""
    escrow_id: int
    sender: str
    recipient: str
    amount: Decimal
    released: bool
    cancelled: bool
    token: str = 'APT'

    @property
    def status(self) -> str:
        if self.released:
            return 'released'
        if self.cancelled:
            return 'cancelled'
        return 'active'

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            'escrowId': data['escrow_id'],
            'sender': data['sender'],
            'recipient': data['recipient'],
            'amount': str(data['amount']),
            'token': data['token'],
            'released': data['released'],
            'cancelled': data['cancelled'],
            'status': self.status,
        }


@dataclass
class EscrowStats:
    total_escrows: int
    total_released: int
    total_cancelled: int
    total_volume: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalEscrows': self.total_escrows,
            'totalReleased': self.total_released,
            'totalCancelled': self.total_cancelled,
            'totalVolume': str(self.total_volume),
        }


ESCROW_TYPE_STANDARD = 0
ESCROW_TYPE_TIME_LOCKED = 1
ESCROW_TYPE_ARBITRATED = 2

ESCROW_TYPE_NAMES = {
    ESCROW_TYPE_STANDARD: 'standard',
    ESCROW_TYPE_TIME_LOCKED: 'time_locked',
    ESCROW_TYPE_ARBITRATED: 'arbitrated',
}


@dataclass
class EscrowV2Details:
    """
    Escrow record from the factory module.

    ``release_time`` and ``expiry_time`` are unix seconds, 0 meaning no
    restriction. Arbitrated escrows may also be released by ``arbitrator``.
    """
    escrow_id: int
    escrow_type: int
    sender: str
    recipient: str
    arbitrator: Optional[str]
    amount: Decimal
    release_time: int
    expiry_time: int
    released: bool
    cancelled: bool
    token: str = 'APT'

    @property
    def type_name(self) -> str:
        return ESCROW_TYPE_NAMES.get(self.escrow_type, 'unknown')

    def status(self, now: Optional[int] = None) -> str:
        if self.released:
            return 'released'
        if self.cancelled:
            return 'cancelled'
        now = int(time.time()) if now is None else now
        if self.expiry_time and now >= self.expiry_time:
            return 'expired'
        if self.release_time and now < self.release_time:
            return 'locked'
        return 'active'

    def to_dict(self, now: Optional[int] = None) -> Dict[str, Any]:
        return {
            'escrowId': self.escrow_id,
            'escrowType': self.type_name,
            'sender': self.sender,
            'recipient': self.recipient,
            'arbitrator': self.arbitrator,
            'amount': str(self.amount),
            'token': self.token,
            'releaseTime': self.release_time,
            'expiryTime': self.expiry_time,
            'released': self.released,
            'cancelled': self.cancelled,
            'status': self.status(now),
        }


@dataclass
class EscrowV2Stats:
    total_escrows: int
    total_released: int
    total_cancelled: int
    total_expired: int
    total_standard: int
    total_time_locked: int
    total_arbitrated: int
    total_volume: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalEscrows': self.total_escrows,
            'totalReleased': self.total_released,
            'totalCancelled': self.total_cancelled,
            'totalExpired': self.total_expired,
            'totalStandard': self.total_standard,
            'totalTimeLocked': self.total_time_locked,
            'totalArbitrated': self.total_arbitrated,
            'totalVolume': str(self.total_volume),
        }


class ChainClient(ABC):
    """
    Abstract base class for the chain RPC facade.

    Signers are objects exposing ``address()`` and
    ``sign_transaction(raw_transaction)``, such as
    ``aptfy.chain.keyless.KeylessAccount``.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the chain client.

        Args:
            config: Network configuration (node URL, module addresses, etc.)
        """
        self.config = config

    @property
    @abstractmethod
    def network(self) -> str:
        """Return the network name (e.g., 'testnet', 'mainnet')."""

    @abstractmethod
    def get_balance(self, address: str, token: str = 'APT') -> Decimal:
        """Return the human-readable balance of ``token`` held by ``address``."""

    @abstractmethod
    def transfer(self, signer, to: str, amount: Decimal, token: str = 'APT') -> str:
        """Transfer tokens and return the committed transaction hash."""

    @abstractmethod
    def create_escrow(self, signer, recipient: str, amount: Decimal, memo: str = '') -> str:
        pass

    @abstractmethod
    def release_escrow(self, signer, escrow_id: int) -> str:
        pass

    @abstractmethod
    def cancel_escrow(self, signer, escrow_id: int) -> str:
        pass

    @abstractmethod
    def escrow_exists(self, escrow_id: int) -> bool:
        pass

    @abstractmethod
    def get_escrow(self, escrow_id: int) -> Optional[EscrowDetails]:
        """
        Fetch escrow details.

        Returns:
            EscrowDetails, or None when no escrow has this id
        """

    @abstractmethod
    def get_escrow_stats(self) -> EscrowStats:
        pass

    @abstractmethod
    def create_standard_escrow(self, signer, recipient: str, amount: Decimal,
                               memo: str = '') -> str:
        pass

    @abstractmethod
    def create_time_locked_escrow(self, signer, recipient: str, amount: Decimal, memo: str,
                                  release_time: int, expiry_time: int) -> str:
        pass

    @abstractmethod
    def create_arbitrated_escrow(self, signer, recipient: str, arbitrator: str, amount: Decimal,
                                 memo: str = '', expiry_time: int = 0) -> str:
        pass

    @abstractmethod
    def release_escrow_v2(self, signer, escrow_id: int) -> str:
        """Release to the recipient; the recipient or the arbitrator may call it."""

    @abstractmethod
    def cancel_escrow_v2(self, signer, escrow_id: int) -> str:
        pass

    @abstractmethod
    def claim_expired_escrow(self, signer, escrow_id: int) -> str:
        """Refund an expired escrow to its sender; anyone may call it."""

    @abstractmethod
    def get_escrow_v2(self, escrow_id: int) -> Optional[EscrowV2Details]:
        pass

    @abstractmethod
    def is_expired(self, escrow_id: int) -> bool:
        pass

    @abstractmethod
    def is_claimable(self, escrow_id: int) -> bool:
        pass

    @abstractmethod
    def get_escrow_v2_stats(self) -> EscrowV2Stats:
        pass

    def get_explorer_url(self, tx_hash: str) -> str:
        """
        Get block explorer URL for transaction.

        Args:
            tx_hash: Transaction hash

        Returns:
            Explorer URL
        """
        return f"{self.config.get('explorer_url', '')}/txn/{tx_hash}?network={self.network}"
