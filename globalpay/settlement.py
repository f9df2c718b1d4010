"""
Settlement Module

Deposits and withdrawals move money across the ledger boundary, so an
external rail has to confirm them. The transfer engine asks a settlement
provider only after the pending entry is committed, then records the
outcome; the provider never touches ledger state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from enum import Enum
import uuid

from .ledger import TransactionStatus
from .payment_methods import PaymentDetails, PaymentMethod


class SettlementDirection(Enum):
    INBOUND = "inbound"    # Deposit: external rail -> ledger
    OUTBOUND = "outbound"  # Withdrawal: ledger -> external rail


@dataclass(frozen=True)
class SettlementRequest:
    transaction_id: str
    account_id: str
    direction: SettlementDirection
    amount: Decimal
    currency: str
    method: PaymentMethod
    details: Optional[PaymentDetails]


@dataclass(frozen=True)
class SettlementResult:
    """
    Provider outcome.

    status is COMPLETED or PENDING; a decline is reported with
    declined=True and a reason, and the pending entry is marked failed.
    """
    status: TransactionStatus
    provider_reference: Optional[str] = None
    declined: bool = False
    reason: Optional[str] = None

    @classmethod
    def decline(cls, reason: str) -> 'SettlementResult':
        return cls(status=TransactionStatus.FAILED, declined=True, reason=reason)


class SettlementProvider(ABC):
    """External payment rail collaborator"""

    @abstractmethod
    def settle(self, request: SettlementRequest) -> SettlementResult:
        pass


class InstantSettlementProvider(SettlementProvider):
    """Confirms every request immediately"""

    def settle(self, request: SettlementRequest) -> SettlementResult:
        return SettlementResult(
            status=TransactionStatus.COMPLETED,
            provider_reference=f"INST{uuid.uuid4().hex[:16].upper()}"
        )
