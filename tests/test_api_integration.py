"""
Integration tests for the GlobalPay Ledger API
Tests end-to-end flows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from globalpay.api import create_app
from globalpay.api.dependencies import LedgerSystem
from globalpay.config import GlobalPayConfig
from globalpay.storage import InMemoryLedgerStore


@pytest.fixture
def client():
    """Test client backed by a fresh in-memory ledger"""
    system = LedgerSystem(config=GlobalPayConfig(database_url="memory://"), store=InMemoryLedgerStore())
    with TestClient(create_app(system)) as client:
        yield client
    system.close()


def register(client, email, name, country="KE"):
    r = client.post("/accounts", json={"email": email, "full_name": name, "country": country})
    assert r.status_code == 201
    return r.json()["account"]["id"]


def as_account(account_id, idempotency_key=None):
    headers = {"X-Account-Id": account_id}
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    return headers


@pytest.fixture
def funded(client):
    """Alice with 1000.00 USD and Bob with nothing, both in Kenya"""
    alice = register(client, "alice@example.com", "Alice Wanjiru")
    bob = register(client, "bob@example.com", "Bob Otieno")
    r = client.post("/transactions/deposit", json={"amount": "1000", "currency": "USD"},
                    headers=as_account(alice))
    assert r.status_code == 201
    return alice, bob


class TestHealthEndpoints:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "GlobalPay Ledger API"
        assert "transactions" in data["endpoints"]

    def test_request_id_is_echoed(self, client):
        r = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert r.headers["X-Request-ID"] == "req-42"

    def test_request_id_is_generated(self, client):
        r = client.get("/health")
        assert len(r.headers["X-Request-ID"]) == 32


class TestAccountFlow:

    def test_register_account(self, client):
        r = client.post("/accounts", json={"email": "Alice@Example.com", "full_name": "Alice"})
        assert r.status_code == 201
        account = r.json()["account"]
        assert account["email"] == "alice@example.com"
        assert account["country"] == "KE"
        assert account["balances"] == {}

    def test_duplicate_registration(self, client):
        register(client, "alice@example.com", "Alice")
        r = client.post("/accounts", json={"email": "alice@example.com", "full_name": "Alice"})
        assert r.status_code == 409
        assert r.json()["errorKind"] == "DuplicateAccount"

    def test_missing_field(self, client):
        r = client.post("/accounts", json={"email": "alice@example.com"})
        assert r.status_code == 400
        data = r.json()
        assert data["success"] is False
        assert data["errorKind"] == "InvalidRequest"
        assert "full_name" in data["message"]

    def test_caller_identity_required(self, client):
        r = client.get("/accounts/me")
        assert r.status_code == 401
        assert r.json()["errorKind"] == "Unauthenticated"

    def test_unknown_caller(self, client):
        r = client.get("/accounts/me", headers=as_account("nobody"))
        assert r.status_code == 404
        assert r.json()["errorKind"] == "AccountNotFound"

    def test_balances_after_deposit(self, client, funded):
        alice, _ = funded
        r = client.get("/accounts/me", headers=as_account(alice))
        assert r.status_code == 200
        account = r.json()["account"]
        assert account["balances"] == {"USD": "1000.00"}
        assert account["transaction_count"] == 1


class TestTransferFlow:

    def test_send_money(self, client, funded):
        alice, bob = funded
        r = client.post("/transactions/send", json={
            "recipient": "bob@example.com", "amount": "100", "currency": "USD", "description": "Lunch"
        }, headers=as_account(alice))
        assert r.status_code == 201
        txn = r.json()["transaction"]
        assert txn["type"] == "send"
        assert txn["fee"] == "1.00"
        assert txn["total"] == "101.00"
        assert txn["counterparty_id"] == bob

        alice_account = client.get("/accounts/me", headers=as_account(alice)).json()["account"]
        bob_account = client.get("/accounts/me", headers=as_account(bob)).json()["account"]
        assert alice_account["balances"]["USD"] == "899.00"
        assert alice_account["total_sent"] == {"USD": "100.00"}
        assert bob_account["balances"]["USD"] == "100.00"

        r = client.get(f"/transactions/reference/{txn['reference']}", headers=as_account(bob))
        assert r.status_code == 200
        legs = r.json()["transactions"]
        assert [leg["type"] for leg in legs] == ["send", "receive"]

    def test_self_send(self, client, funded):
        alice, _ = funded
        r = client.post("/transactions/send", json={
            "recipient": "alice@example.com", "amount": "10", "currency": "USD"
        }, headers=as_account(alice))
        assert r.status_code == 400
        assert r.json()["errorKind"] == "SelfTransferNotAllowed"

    def test_unknown_recipient(self, client, funded):
        alice, _ = funded
        r = client.post("/transactions/send", json={
            "recipient": "nobody@example.com", "amount": "10", "currency": "USD"
        }, headers=as_account(alice))
        assert r.status_code == 404
        assert r.json()["errorKind"] == "RecipientNotFound"

    def test_insufficient_withdrawal(self, client, funded):
        _, bob = funded
        r = client.post("/transactions/withdraw", json={"amount": "10", "currency": "KES"},
                        headers=as_account(bob))
        assert r.status_code == 409
        data = r.json()
        assert data["errorKind"] == "InsufficientBalance"
        assert "KES" in data["message"]

    @pytest.mark.parametrize("amount,kind", [
        (-5, "InvalidAmount"),
        ("0", "InvalidAmount"),
        ("ten", "InvalidAmount"),
        (True, "InvalidRequest"),
        ([10], "InvalidRequest"),
    ])
    def test_invalid_amount(self, client, funded, amount, kind):
        alice, _ = funded
        r = client.post("/transactions/deposit", json={"amount": amount, "currency": "USD"},
                        headers=as_account(alice))
        assert r.status_code == 400
        assert r.json()["errorKind"] == kind

    def test_invalid_currency(self, client, funded):
        alice, _ = funded
        r = client.post("/transactions/deposit", json={"amount": "5", "currency": "XYZ"},
                        headers=as_account(alice))
        assert r.status_code == 400
        assert r.json()["errorKind"] == "InvalidCurrency"

    def test_withdraw_with_payment_details(self, client, funded):
        alice, _ = funded
        r = client.post("/transactions/withdraw", json={
            "amount": "100", "currency": "USD", "method": "paypal",
            "payment_details": {"email": "alice@example.com"}
        }, headers=as_account(alice))
        assert r.status_code == 201
        txn = r.json()["transaction"]
        # 0.5% + 3.9% + 0.50
        assert txn["fee"] == "4.90"
        assert txn["counterparty_label"] == "PayPal al****@example.com"

    def test_idempotent_retry(self, client, funded):
        alice, bob = funded
        body = {"recipient": "bob@example.com", "amount": "50", "currency": "USD"}
        first = client.post("/transactions/send", json=body, headers=as_account(alice, "retry-1"))
        second = client.post("/transactions/send", json=body, headers=as_account(alice, "retry-1"))
        assert first.status_code == second.status_code == 201
        assert first.json()["transaction"]["id"] == second.json()["transaction"]["id"]

        bob_account = client.get("/accounts/me", headers=as_account(bob)).json()["account"]
        assert bob_account["balances"]["USD"] == "50.00"

        body["amount"] = "60"
        r = client.post("/transactions/send", json=body, headers=as_account(alice, "retry-1"))
        assert r.status_code == 409
        assert r.json()["errorKind"] == "IdempotencyConflict"

    def test_exchange(self, client, funded):
        alice, _ = funded
        r = client.post("/transactions/exchange", json={
            "amount": "50", "from_currency": "USD", "to_currency": "EUR"
        }, headers=as_account(alice))
        assert r.status_code == 201
        assert r.json()["transaction"]["target_amount"] == "46.00"

        balances = client.get("/accounts/me", headers=as_account(alice)).json()["account"]["balances"]
        assert balances == {"USD": "950.00", "EUR": "46.00"}


class TestTransactionQueries:

    def test_list_transactions(self, client, funded):
        alice, _ = funded
        client.post("/transactions/send", json={
            "recipient": "bob@example.com", "amount": "10", "currency": "USD"
        }, headers=as_account(alice))

        r = client.get("/transactions", params={"page_size": 1}, headers=as_account(alice))
        assert r.status_code == 200
        data = r.json()
        assert data["pagination"] == {"page": 1, "page_size": 1, "total": 2, "pages": 2}
        assert data["transactions"][0]["type"] == "send"

    def test_page_size_limit(self, client, funded):
        alice, _ = funded
        r = client.get("/transactions", params={"page_size": 500}, headers=as_account(alice))
        assert r.status_code == 400
        assert r.json()["errorKind"] == "InvalidRequest"

    def test_get_transaction(self, client, funded):
        alice, bob = funded
        listing = client.get("/transactions", headers=as_account(alice)).json()
        txn_id = listing["transactions"][0]["id"]

        r = client.get(f"/transactions/{txn_id}", headers=as_account(alice))
        assert r.status_code == 200
        assert r.json()["transaction"]["type"] == "deposit"

        r = client.get(f"/transactions/{txn_id}", headers=as_account(bob))
        assert r.status_code == 404
        assert r.json()["errorKind"] == "TransactionNotFound"

    def test_statistics(self, client, funded):
        alice, _ = funded
        client.post("/transactions/send", json={
            "recipient": "bob@example.com", "amount": "100", "currency": "USD"
        }, headers=as_account(alice))

        r = client.get("/accounts/me/statistics", headers=as_account(alice))
        assert r.status_code == 200
        stats = r.json()["statistics"]
        assert stats["transaction_count"] == 2
        assert stats["sent"] == {"USD": "100.00"}
        assert stats["fees"] == {"USD": "1.00"}


class TestRateEndpoints:

    def test_exchange_rate(self, client):
        r = client.get("/rates/exchange-rate", params={"from": "USD", "to": "EUR"})
        assert r.status_code == 200
        rate = r.json()["exchange_rate"]
        assert rate["rate"] == "0.92"
        assert rate["is_fallback"] is False

    def test_fallback_rate(self, client):
        r = client.get("/rates/exchange-rate", params={"from": "USD", "to": "JPY"})
        assert r.status_code == 200
        rate = r.json()["exchange_rate"]
        assert rate["rate"] == "1"
        assert rate["is_fallback"] is True

    def test_fee_quote(self, client):
        r = client.post("/rates/fees", json={
            "amount": "100", "currency": "USD", "from_country": "KE", "to_country": "US"
        })
        assert r.status_code == 200
        fees = r.json()["fees"]
        assert fees["corridor"] == "international"
        assert fees["total"] == "5.00"

    def test_countries(self, client):
        r = client.get("/rates/countries")
        assert r.status_code == 200
        codes = [country["code"] for country in r.json()["countries"]]
        assert codes[0] == "KE"

        r = client.get("/rates/countries/ke")
        assert r.json()["country"]["payment_methods"] == ["mpesa", "card", "bank"]

        r = client.get("/rates/countries/XX")
        assert r.status_code == 400

    def test_currencies(self, client):
        r = client.get("/rates/currencies")
        currencies = {c["code"]: c for c in r.json()["currencies"]}
        assert currencies["KES"]["symbol"] == "KSh"
        assert currencies["JPY"]["precision"] == 0

    def test_payment_methods(self, client):
        r = client.get("/rates/payment-methods/fr")
        assert r.json() == {"success": True, "country": "FR", "payment_methods": ["card", "bank"]}
