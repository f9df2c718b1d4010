"""
Ledger Error Taxonomy

Every failure the transfer engine or ledger store can surface to a caller.
Each error carries the kind name reported to clients and the HTTP status
the API layer maps it to.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger errors"""

    error_kind = "LedgerError"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Error body returned by the API"""
        return {
            "success": False,
            "message": self.message,
            "errorKind": self.error_kind
        }


# Validation errors: detected before any store access

class InvalidAmount(LedgerError, ValueError):
    """Amount is missing, non-finite, non-positive or above the limit"""
    error_kind = "InvalidAmount"
    http_status = 400


class InvalidCurrency(LedgerError, ValueError):
    """Currency code is malformed or unsupported"""
    error_kind = "InvalidCurrency"
    http_status = 400


class InvalidRequest(LedgerError, ValueError):
    """Any other malformed input (pagination, email, payment details)"""
    error_kind = "InvalidRequest"
    http_status = 400


class SelfTransferNotAllowed(LedgerError):
    """Recipient resolves to the sender"""
    error_kind = "SelfTransferNotAllowed"
    http_status = 400


class Unauthenticated(LedgerError):
    """No caller identity was supplied by the upstream auth layer"""
    error_kind = "Unauthenticated"
    http_status = 401


# Lookup errors: terminal for the request

class AccountNotFound(LedgerError):
    error_kind = "AccountNotFound"
    http_status = 404


class RecipientNotFound(LedgerError):
    error_kind = "RecipientNotFound"
    http_status = 404


class TransactionNotFound(LedgerError):
    error_kind = "TransactionNotFound"
    http_status = 404


class DuplicateAccount(LedgerError):
    error_kind = "DuplicateAccount"
    http_status = 409


# Balance and commit errors

class InsufficientBalance(LedgerError):
    """Payer cannot cover amount plus fee"""
    error_kind = "InsufficientBalance"
    http_status = 409


class Conflict(LedgerError):
    """
    Commit rejected inside the atomic unit.

    For a balance conflict, account_id and currency name the balance that
    would have gone negative.
    """
    error_kind = "Conflict"
    http_status = 409

    def __init__(self, message: str, account_id: Optional[str] = None,
                 currency: Optional[str] = None):
        super().__init__(message)
        self.account_id = account_id
        self.currency = currency

    @property
    def is_balance_conflict(self) -> bool:
        return self.currency is not None


class DuplicateRecord(Conflict):
    """Transaction id or idempotency key already committed"""


class IdempotencyConflict(LedgerError):
    """Idempotency key reused for a different operation"""
    error_kind = "IdempotencyConflict"
    http_status = 409


class SettlementDeclined(LedgerError):
    """Settlement provider refused the deposit or withdrawal"""
    error_kind = "SettlementDeclined"
    http_status = 402


class StoreUnavailable(LedgerError):
    """Persistence layer failed; nothing was written"""
    error_kind = "StoreUnavailable"
    http_status = 503
