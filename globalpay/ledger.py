"""
Ledger Data Model

Accounts hold per-currency balances; transactions are append-only log
entries whose only later change is the settlement outcome of a pending
deposit or withdrawal. A ledger mutation bundles balance deltas with the
transaction records that explain them so the store can commit both as one
unit. All monetary values are Decimal and serialized as strings.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
import math

from .currency import as_currency


ZERO = Decimal('0')


class TransactionType(Enum):
    """Kinds of ledger entries"""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    SEND = "send"          # Sender's leg of a transfer
    RECEIVE = "receive"    # Recipient's leg of a transfer
    EXCHANGE = "exchange"  # Conversion between two of the owner's currencies


class TransactionStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def _decimal_map(data: Optional[Dict[str, Any]]) -> Dict[str, Decimal]:
    return {code: Decimal(str(value)) for code, value in (data or {}).items()}


def _string_map(data: Dict[str, Decimal]) -> Dict[str, str]:
    return {code: str(value) for code, value in data.items()}


@dataclass
class Account:
    """
    A user's multi-currency balance holder.

    Currency keys are created lazily on first credit; a missing key means
    zero. total_sent / total_received are informational, per currency.
    """
    id: str
    email: str
    full_name: str
    country: str
    created_at: datetime
    updated_at: datetime
    balances: Dict[str, Decimal] = field(default_factory=dict)
    total_sent: Dict[str, Decimal] = field(default_factory=dict)
    total_received: Dict[str, Decimal] = field(default_factory=dict)
    transaction_count: int = 0

    def balance(self, currency) -> Decimal:
        """Balance in one currency, zero when the key is absent"""
        return self.balances.get(as_currency(currency).code, ZERO)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "country": self.country,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "balances": _string_map(self.balances),
            "total_sent": _string_map(self.total_sent),
            "total_received": _string_map(self.total_received),
            "transaction_count": self.transaction_count
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        return cls(
            id=data["id"],
            email=data["email"],
            full_name=data["full_name"],
            country=data["country"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            balances=_decimal_map(data.get("balances")),
            total_sent=_decimal_map(data.get("total_sent")),
            total_received=_decimal_map(data.get("total_received")),
            transaction_count=int(data.get("transaction_count", 0))
        )


@dataclass(frozen=True)
class Transaction:
    """
    Immutable ledger entry owned by one account.

    A transfer produces two of these (send and receive) sharing one
    reference. total is the ledger delta for the payer: amount + fee.
    """
    id: str
    account_id: str
    type: TransactionType
    amount: Decimal
    currency: str
    fee: Decimal
    total: Decimal
    status: TransactionStatus
    created_at: datetime
    reference: Optional[str] = None
    counterparty_id: Optional[str] = None
    counterparty_label: Optional[str] = None
    description: Optional[str] = None
    payment_method: Optional[str] = None
    idempotency_key: Optional[str] = None
    target_currency: Optional[str] = None
    target_amount: Optional[Decimal] = None
    exchange_rate: Optional[Decimal] = None
    provider_reference: Optional[str] = None

    def __post_init__(self):
        if self.amount <= ZERO:
            raise ValueError("Transaction amount must be positive")
        if self.fee < ZERO:
            raise ValueError("Transaction fee cannot be negative")
        if self.total != self.amount + self.fee:
            raise ValueError("Transaction total must equal amount plus fee")
        if self.type in (TransactionType.DEPOSIT, TransactionType.RECEIVE) and self.fee != ZERO:
            raise ValueError(f"{self.type.value} transactions carry no fee")

    def same_operation(self, type: TransactionType, amount: Decimal, currency: str,
                       counterparty_id: Optional[str] = None,
                       target_currency: Optional[str] = None) -> bool:
        """True if a retried request describes this already committed entry"""
        return (
            self.type == type and
            self.amount == amount and
            self.currency == currency and
            self.counterparty_id == counterparty_id and
            self.target_currency == target_currency
        )

    def settled(self, status: TransactionStatus, provider_reference: Optional[str]) -> 'Transaction':
        """Copy of a pending entry carrying the settlement outcome"""
        return replace(self, status=status, provider_reference=provider_reference)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "account_id": self.account_id,
            "type": self.type.value,
            "amount": str(self.amount),
            "currency": self.currency,
            "fee": str(self.fee),
            "total": str(self.total),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "reference": self.reference,
            "counterparty_id": self.counterparty_id,
            "counterparty_label": self.counterparty_label,
            "description": self.description,
            "payment_method": self.payment_method,
            "idempotency_key": self.idempotency_key,
            "target_currency": self.target_currency,
            "target_amount": str(self.target_amount) if self.target_amount is not None else None,
            "exchange_rate": str(self.exchange_rate) if self.exchange_rate is not None else None,
            "provider_reference": self.provider_reference
        }
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        target_amount = data.get("target_amount")
        exchange_rate = data.get("exchange_rate")
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            type=TransactionType(data["type"]),
            amount=Decimal(data["amount"]),
            currency=data["currency"],
            fee=Decimal(data["fee"]),
            total=Decimal(data["total"]),
            status=TransactionStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            reference=data.get("reference"),
            counterparty_id=data.get("counterparty_id"),
            counterparty_label=data.get("counterparty_label"),
            description=data.get("description"),
            payment_method=data.get("payment_method"),
            idempotency_key=data.get("idempotency_key"),
            target_currency=data.get("target_currency"),
            target_amount=Decimal(target_amount) if target_amount is not None else None,
            exchange_rate=Decimal(exchange_rate) if exchange_rate is not None else None,
            provider_reference=data.get("provider_reference")
        )


@dataclass(frozen=True)
class BalanceDelta:
    """
    Signed change to one account's balance in one currency.

    sent / received feed the informational accumulators and are never
    negative.
    """
    account_id: str
    currency: str
    amount: Decimal
    sent: Decimal = ZERO
    received: Decimal = ZERO

    def __post_init__(self):
        if self.sent < ZERO or self.received < ZERO:
            raise ValueError("Accumulator deltas cannot be negative")


@dataclass(frozen=True)
class LedgerMutation:
    """
    Balance deltas, transaction inserts and settlement updates, committed
    all-or-nothing.

    updates carry new versions of already committed transactions; only
    status and provider_reference may differ from the stored entry.
    """
    deltas: Tuple[BalanceDelta, ...]
    transactions: Tuple[Transaction, ...]
    updates: Tuple[Transaction, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'deltas', tuple(self.deltas))
        object.__setattr__(self, 'transactions', tuple(self.transactions))
        object.__setattr__(self, 'updates', tuple(self.updates))
        if not self.transactions and not self.updates:
            raise ValueError("Ledger mutation must insert or update at least one transaction")
        ids = [txn.id for txn in self.transactions + self.updates]
        if len(set(ids)) != len(ids):
            raise ValueError("Ledger mutation contains duplicate transaction ids")

    def account_ids(self) -> List[str]:
        """Every account touched, sorted so locks are always taken in one order"""
        touched = {delta.account_id for delta in self.deltas}
        touched.update(txn.account_id for txn in self.transactions + self.updates)
        return sorted(touched)


@dataclass(frozen=True)
class TransactionPage:
    """One page of an account's transactions, newest first"""
    items: List[Transaction]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactions": [txn.to_dict() for txn in self.items],
            "pagination": {
                "page": self.page,
                "page_size": self.page_size,
                "total": self.total,
                "pages": self.pages
            }
        }
