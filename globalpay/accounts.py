"""
Account Management Module

Registration and lookup of ledger accounts. Accounts start empty; only the
transfer engine changes balances afterwards.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import uuid

from .currency import get_country
from .errors import InvalidRequest
from .ledger import Account, TransactionStatus, TransactionType, ZERO
from .logging_config import get_logger, log_action
from .payment_methods import EMAIL_PATTERN
from .storage import LedgerStore


OUTGOING_TYPES = (TransactionType.SEND, TransactionType.WITHDRAW)
INCOMING_TYPES = (TransactionType.RECEIVE, TransactionType.DEPOSIT)


@dataclass
class AccountStatistics:
    """Per-currency activity totals derived from the transaction log"""
    account_id: str
    transaction_count: int
    sent: Dict[str, Decimal] = field(default_factory=dict)
    received: Dict[str, Decimal] = field(default_factory=dict)
    fees: Dict[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "transaction_count": self.transaction_count,
            "sent": {code: str(value) for code, value in self.sent.items()},
            "received": {code: str(value) for code, value in self.received.items()},
            "fees": {code: str(value) for code, value in self.fees.items()}
        }


def normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise InvalidRequest(f"Invalid email address '{email}'")
    return normalized


class AccountManager:
    """Creates accounts and answers read-only questions about them"""

    def __init__(self, store: LedgerStore, default_country: str = "KE", page_size: int = 100):
        self.store = store
        self.default_country = default_country
        self.page_size = page_size
        self.logger = get_logger("globalpay.accounts")

    def register_account(self, email: str, full_name: str, country: Optional[str] = None) -> Account:
        """
        Create a new, empty account

        Args:
            email: Login email; normalized to lower case and unique
            full_name: Display name
            country: ISO 3166 alpha-2 code, defaults to the configured country

        Returns:
            The created account

        Raises:
            InvalidRequest: If email, name or country is invalid
            DuplicateAccount: If the email is already registered
        """
        email = normalize_email(email)
        full_name = (full_name or "").strip()
        if not full_name:
            raise InvalidRequest("Full name is required")
        country_code = get_country(country or self.default_country).code

        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            email=email,
            full_name=full_name,
            country=country_code,
            created_at=now,
            updated_at=now
        )
        self.store.create_account(account)

        log_action(
            self.logger, "info", f"Registered account for {email}",
            account_id=account.id, action="register_account", resource=account.id,
            extra={"country": country_code}
        )
        return account

    def get_account(self, account_id: str) -> Account:
        return self.store.get_account(account_id)

    def get_account_by_email(self, email: str) -> Account:
        return self.store.get_account_by_email(normalize_email(email))

    def get_statistics(self, account_id: str) -> AccountStatistics:
        """
        Totals of money sent, received and paid in fees, per currency.

        Only completed entries count. Sent covers sends and withdrawals;
        received covers receives and deposits. Exchanges move money between
        the owner's own balances and count toward neither.
        """
        account = self.store.get_account(account_id)
        stats = AccountStatistics(account_id=account.id, transaction_count=account.transaction_count)

        # Commits landing between pages shift entries onto the next page
        seen = set()
        page = 1
        while True:
            result = self.store.list_transactions(account.id, page=page, page_size=self.page_size)
            for txn in result.items:
                if txn.id in seen or txn.status != TransactionStatus.COMPLETED:
                    continue
                seen.add(txn.id)
                if txn.type in OUTGOING_TYPES:
                    stats.sent[txn.currency] = stats.sent.get(txn.currency, ZERO) + txn.amount
                elif txn.type in INCOMING_TYPES:
                    stats.received[txn.currency] = stats.received.get(txn.currency, ZERO) + txn.amount
                if txn.fee:
                    stats.fees[txn.currency] = stats.fees.get(txn.currency, ZERO) + txn.fee
            if page >= result.pages:
                break
            page += 1

        return stats
