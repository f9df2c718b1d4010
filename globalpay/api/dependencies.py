"""
Shared API dependencies: the ledger system container and caller identity
"""

from typing import Optional
import threading

from fastapi import Header

from ..accounts import AccountManager
from ..config import GlobalPayConfig, get_config
from ..errors import Unauthenticated
from ..settlement import SettlementProvider
from ..storage import LedgerStore, create_store
from ..transfers import TransferEngine


class LedgerSystem:
    """Ledger components wired to one store"""

    def __init__(
        self,
        config: Optional[GlobalPayConfig] = None,
        store: Optional[LedgerStore] = None,
        settlement_provider: Optional[SettlementProvider] = None
    ):
        self.config = config or get_config()
        self.store = store or create_store(self.config.database_url, self.config.database_timeout)
        self.account_manager = AccountManager(
            self.store,
            default_country=self.config.default_country,
            page_size=self.config.max_page_size
        )
        self.transfer_engine = TransferEngine.from_config(
            self.store, self.config, settlement_provider=settlement_provider
        )

    def close(self) -> None:
        self.store.close()


_ledger_system: Optional[LedgerSystem] = None
_ledger_system_lock = threading.Lock()


def get_ledger_system() -> LedgerSystem:
    """Process-wide ledger system, built from configuration on first use"""
    global _ledger_system
    if _ledger_system is None:
        with _ledger_system_lock:
            if _ledger_system is None:
                _ledger_system = LedgerSystem()
    return _ledger_system


def get_current_account_id(x_account_id: Optional[str] = Header(None)) -> str:
    """Authenticated account id, resolved upstream and passed in X-Account-Id"""
    if not x_account_id or not x_account_id.strip():
        raise Unauthenticated("X-Account-Id header is required")
    return x_account_id.strip()


def get_idempotency_key(idempotency_key: Optional[str] = Header(None)) -> Optional[str]:
    """Client-generated key from the Idempotency-Key header"""
    return idempotency_key
