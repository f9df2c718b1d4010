"""
Test suite for account registration and statistics
"""

import pytest
from decimal import Decimal

from globalpay.accounts import AccountManager
from globalpay.errors import AccountNotFound, DuplicateAccount, InvalidRequest, SettlementDeclined
from globalpay.ledger import TransactionStatus
from globalpay.settlement import SettlementProvider, SettlementResult
from globalpay.storage import InMemoryLedgerStore
from globalpay.transfers import TransferEngine


class StaticSettlement(SettlementProvider):

    def __init__(self, result: SettlementResult):
        self.result = result

    def settle(self, request):
        return self.result


class TestAccountManager:
    """Test account registration and lookups"""

    def setup_method(self):
        self.store = InMemoryLedgerStore()
        self.manager = AccountManager(self.store)

    def test_register_account(self):
        account = self.manager.register_account(
            email="  Alice@Example.COM ",
            full_name="Alice Wanjiru",
            country="ke"
        )
        assert account.email == "alice@example.com"
        assert account.full_name == "Alice Wanjiru"
        assert account.country == "KE"
        assert account.balances == {}
        assert account.transaction_count == 0

        assert self.manager.get_account(account.id).email == "alice@example.com"
        assert self.manager.get_account_by_email("ALICE@example.com").id == account.id

    def test_default_country(self):
        account = self.manager.register_account("bob@example.com", "Bob")
        assert account.country == "KE"

        manager = AccountManager(self.store, default_country="GB")
        assert manager.register_account("carol@example.com", "Carol").country == "GB"

    def test_duplicate_email_is_case_insensitive(self):
        self.manager.register_account("alice@example.com", "Alice")
        with pytest.raises(DuplicateAccount):
            self.manager.register_account("ALICE@example.com", "Another Alice")

    @pytest.mark.parametrize("email", ["", "alice", "alice@", "@example.com", "a b@example.com"])
    def test_invalid_email(self, email):
        with pytest.raises(InvalidRequest, match="Invalid email"):
            self.manager.register_account(email, "Alice")

    def test_invalid_country(self):
        with pytest.raises(InvalidRequest, match="Unsupported country"):
            self.manager.register_account("alice@example.com", "Alice", country="XX")

    def test_name_required(self):
        with pytest.raises(InvalidRequest, match="Full name is required"):
            self.manager.register_account("alice@example.com", "   ")

    def test_unknown_account(self):
        with pytest.raises(AccountNotFound):
            self.manager.get_account("missing")


class TestAccountStatistics:

    def setup_method(self):
        self.store = InMemoryLedgerStore()
        # Small page size so statistics have to walk several pages
        self.manager = AccountManager(self.store, page_size=2)
        self.engine = TransferEngine(self.store)
        self.alice = self.manager.register_account("alice@example.com", "Alice", "KE")
        self.bob = self.manager.register_account("bob@example.com", "Bob", "KE")

    def test_statistics_per_currency(self):
        self.engine.deposit(self.alice.id, "1000", "USD")
        self.engine.deposit(self.alice.id, "5000", "KES")
        self.engine.send(self.alice.id, "bob@example.com", "100", "USD")      # fee 1.00
        self.engine.withdraw(self.alice.id, "1000", "KES")                    # fee 5.50
        self.engine.exchange(self.alice.id, "10", "USD", "EUR")

        stats = self.manager.get_statistics(self.alice.id)
        assert stats.transaction_count == 5
        assert stats.sent == {"USD": Decimal("100"), "KES": Decimal("1000")}
        assert stats.received == {"USD": Decimal("1000"), "KES": Decimal("5000")}
        assert stats.fees == {"USD": Decimal("1.00"), "KES": Decimal("5.50")}

        bob_stats = self.manager.get_statistics(self.bob.id)
        assert bob_stats.received == {"USD": Decimal("100")}
        assert bob_stats.sent == {}
        assert bob_stats.fees == {}

    def test_statistics_to_dict(self):
        self.engine.deposit(self.alice.id, "20", "USD")
        data = self.manager.get_statistics(self.alice.id).to_dict()
        assert data == {
            "account_id": self.alice.id,
            "transaction_count": 1,
            "sent": {},
            "received": {"USD": "20.00"},
            "fees": {}
        }

    def test_unsettled_entries_are_not_counted(self):
        self.engine.deposit(self.alice.id, "300", "USD")
        pending = TransferEngine(self.store, settlement_provider=StaticSettlement(
            SettlementResult(TransactionStatus.PENDING, "BANK-1")
        ))
        pending.deposit(self.alice.id, "500", "USD", method="bank")
        declined = TransferEngine(self.store, settlement_provider=StaticSettlement(
            SettlementResult.decline("Bank rejected payout")
        ))
        with pytest.raises(SettlementDeclined):
            declined.withdraw(self.alice.id, "100", "USD")

        stats = self.manager.get_statistics(self.alice.id)
        assert stats.received == {"USD": Decimal("300")}
        assert stats.sent == {}
        assert stats.fees == {}

    def test_commit_between_pages_is_not_double_counted(self, monkeypatch):
        for _ in range(3):
            self.engine.deposit(self.alice.id, "10", "USD")

        list_transactions = self.store.list_transactions
        pages = []

        def list_then_deposit(account_id, page=1, page_size=20):
            result = list_transactions(account_id, page=page, page_size=page_size)
            if not pages:
                # Shifts the oldest entry of page 1 onto page 2
                self.engine.deposit(self.alice.id, "10", "USD")
            pages.append(page)
            return result

        monkeypatch.setattr(self.store, "list_transactions", list_then_deposit)

        stats = self.manager.get_statistics(self.alice.id)
        assert pages == [1, 2]
        assert stats.received == {"USD": Decimal("30")}
