"""
Ledger Store Module

Provides the abstract ledger store and implementations for in-memory
(testing), SQLite and PostgreSQL persistence. The store is the sole writer
of balance state: every balance change arrives as a LedgerMutation and is
committed atomically together with its transaction records, re-checking
non-negativity inside the atomic unit.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
from contextlib import contextmanager
from pathlib import Path
import copy
import json
import sqlite3
import threading

from .errors import (
    AccountNotFound, Conflict, DuplicateAccount, DuplicateRecord,
    InvalidRequest, LedgerError, StoreUnavailable, TransactionNotFound
)
from .ledger import Account, LedgerMutation, Transaction, TransactionPage, ZERO
from .logging_config import get_logger


logger = get_logger("globalpay.storage")


def apply_mutation_to_accounts(
    accounts: Dict[str, Account],
    mutation: LedgerMutation,
    now: datetime
) -> Dict[str, Account]:
    """
    Compute the post-commit state of every account a mutation touches

    Args:
        accounts: Current state of the touched accounts, keyed by id
        mutation: Deltas and transaction inserts to apply
        now: Commit timestamp

    Returns:
        Updated copies of the accounts; the inputs are left untouched

    Raises:
        AccountNotFound: If a delta or transaction names an unknown account
        Conflict: If any resulting balance would be negative
    """
    for account_id in mutation.account_ids():
        if account_id not in accounts:
            raise AccountNotFound(f"Account {account_id} not found")

    updated = {account_id: copy.deepcopy(account) for account_id, account in accounts.items()}
    touched: List[Tuple[str, str]] = []

    for delta in mutation.deltas:
        account = updated[delta.account_id]
        account.balances[delta.currency] = account.balances.get(delta.currency, ZERO) + delta.amount
        if delta.sent:
            account.total_sent[delta.currency] = account.total_sent.get(delta.currency, ZERO) + delta.sent
        if delta.received:
            account.total_received[delta.currency] = (
                account.total_received.get(delta.currency, ZERO) + delta.received
            )
        touched.append((delta.account_id, delta.currency))

    # Checked on final balances only; intermediate states are never visible
    for account_id, currency in touched:
        if updated[account_id].balances[currency] < ZERO:
            raise Conflict(
                f"Balance of account {account_id} in {currency} would become negative",
                account_id=account_id,
                currency=currency
            )

    for txn in mutation.transactions:
        updated[txn.account_id].transaction_count += 1
    for account in updated.values():
        account.updated_at = now

    return updated


def _check_page(page: int, page_size: int) -> None:
    if page < 1:
        raise InvalidRequest("Page must be 1 or greater")
    if page_size < 1:
        raise InvalidRequest("Page size must be 1 or greater")


class LedgerStore(ABC):
    """Abstract interface for ledger persistence backends"""

    @abstractmethod
    def create_account(self, account: Account) -> None:
        """Insert a new, empty account (raises DuplicateAccount on email reuse)"""
        pass

    @abstractmethod
    def get_account(self, account_id: str) -> Account:
        """Load an account (raises AccountNotFound)"""
        pass

    @abstractmethod
    def find_account_by_email(self, email: str) -> Optional[Account]:
        """Look up an account by its normalized email"""
        pass

    @abstractmethod
    def apply_ledger_mutation(self, mutation: LedgerMutation) -> None:
        """
        Commit balance deltas, transaction inserts and updates as one atomic unit

        Raises:
            Conflict: If a balance would go negative at commit time
            DuplicateRecord: If a transaction id or idempotency key exists
            TransactionNotFound: If an update names an unknown transaction
            AccountNotFound: If a touched account does not exist
            StoreUnavailable: If the persistence layer fails
        """
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    def find_by_idempotency_key(self, account_id: str, idempotency_key: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    def get_transactions_by_reference(self, reference: str) -> List[Transaction]:
        """Both legs of a transfer, in commit order"""
        pass

    @abstractmethod
    def list_transactions(self, account_id: str, page: int = 1, page_size: int = 20) -> TransactionPage:
        """Page through an account's transactions, newest first"""
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def get_account_by_email(self, email: str) -> Account:
        account = self.find_account_by_email(email)
        if not account:
            raise AccountNotFound(f"No account registered for {email}")
        return account


class InMemoryLedgerStore(LedgerStore):
    """
    In-memory store for testing.

    A single re-entrant lock serializes every mutation; writes inside the
    atomic unit are recorded in an undo log so a failure part-way through
    restores the previous state.
    """

    def __init__(self):
        self._accounts: Dict[str, Dict] = {}
        self._emails: Dict[str, str] = {}
        self._transactions: List[Transaction] = []
        self._by_id: Dict[str, Transaction] = {}
        self._by_account: Dict[str, List[Transaction]] = {}
        self._by_idempotency_key: Dict[Tuple[str, str], Transaction] = {}
        self._lock = threading.RLock()
        self._undo_accounts: Optional[Dict[str, Optional[Dict]]] = None
        self._undo_transactions: Optional[List[Transaction]] = None
        self._undo_updates: Optional[List[Tuple[Transaction, Transaction]]] = None

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        with self._lock:
            self._undo_accounts = {}
            self._undo_transactions = []
            self._undo_updates = []
            try:
                yield
            except BaseException:
                self._rollback()
                raise
            finally:
                self._undo_accounts = None
                self._undo_transactions = None
                self._undo_updates = None

    def _rollback(self) -> None:
        for previous, current in reversed(self._undo_updates):
            self._replace_transaction(current, previous)
        for txn in reversed(self._undo_transactions):
            self._transactions.remove(txn)
            del self._by_id[txn.id]
            self._by_account[txn.account_id].remove(txn)
            if txn.idempotency_key:
                del self._by_idempotency_key[(txn.account_id, txn.idempotency_key)]
        for account_id, previous in self._undo_accounts.items():
            self._accounts[account_id] = previous

    def _write_account(self, account: Account) -> None:
        if self._undo_accounts is not None and account.id not in self._undo_accounts:
            self._undo_accounts[account.id] = self._accounts.get(account.id)
        # Serialized copy prevents external mutation
        self._accounts[account.id] = account.to_dict()

    def _insert_transaction(self, txn: Transaction) -> None:
        if txn.id in self._by_id:
            raise DuplicateRecord(f"Transaction {txn.id} already exists")
        key = (txn.account_id, txn.idempotency_key)
        if txn.idempotency_key and key in self._by_idempotency_key:
            raise DuplicateRecord(f"Idempotency key {txn.idempotency_key} already used")
        self._transactions.append(txn)
        self._by_id[txn.id] = txn
        self._by_account.setdefault(txn.account_id, []).append(txn)
        if txn.idempotency_key:
            self._by_idempotency_key[key] = txn
        if self._undo_transactions is not None:
            self._undo_transactions.append(txn)

    def _replace_transaction(self, old: Transaction, new: Transaction) -> None:
        entries = self._by_account[old.account_id]
        entries[next(i for i, txn in enumerate(entries) if txn.id == old.id)] = new
        self._transactions[next(i for i, txn in enumerate(self._transactions) if txn.id == old.id)] = new
        self._by_id[new.id] = new
        if new.idempotency_key:
            self._by_idempotency_key[(new.account_id, new.idempotency_key)] = new

    def _update_transaction(self, txn: Transaction) -> None:
        previous = self._by_id.get(txn.id)
        if previous is None:
            raise TransactionNotFound(f"Transaction {txn.id} not found")
        self._replace_transaction(previous, txn)
        if self._undo_updates is not None:
            self._undo_updates.append((previous, txn))

    def create_account(self, account: Account) -> None:
        with self._lock:
            if account.email in self._emails:
                raise DuplicateAccount(f"An account already exists for {account.email}")
            if account.id in self._accounts:
                raise DuplicateAccount(f"Account {account.id} already exists")
            self._write_account(account)
            self._emails[account.email] = account.id

    def get_account(self, account_id: str) -> Account:
        with self._lock:
            data = self._accounts.get(account_id)
            if data is None:
                raise AccountNotFound(f"Account {account_id} not found")
            return Account.from_dict(data)

    def find_account_by_email(self, email: str) -> Optional[Account]:
        with self._lock:
            account_id = self._emails.get(email)
            if account_id is None:
                return None
            return Account.from_dict(self._accounts[account_id])

    def apply_ledger_mutation(self, mutation: LedgerMutation) -> None:
        with self.atomic():
            accounts = {
                account_id: Account.from_dict(self._accounts[account_id])
                for account_id in mutation.account_ids()
                if account_id in self._accounts
            }
            updated = apply_mutation_to_accounts(accounts, mutation, datetime.now(timezone.utc))
            for txn in mutation.transactions:
                self._insert_transaction(txn)
            for txn in mutation.updates:
                self._update_transaction(txn)
            for account_id in mutation.account_ids():
                self._write_account(updated[account_id])

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            return self._by_id.get(transaction_id)

    def find_by_idempotency_key(self, account_id: str, idempotency_key: str) -> Optional[Transaction]:
        with self._lock:
            return self._by_idempotency_key.get((account_id, idempotency_key))

    def get_transactions_by_reference(self, reference: str) -> List[Transaction]:
        with self._lock:
            return [txn for txn in self._transactions if txn.reference == reference]

    def list_transactions(self, account_id: str, page: int = 1, page_size: int = 20) -> TransactionPage:
        _check_page(page, page_size)
        with self._lock:
            entries = self._by_account.get(account_id, [])
            newest_first = entries[::-1]
            start = (page - 1) * page_size
            return TransactionPage(
                items=newest_first[start:start + page_size],
                total=len(entries),
                page=page,
                page_size=page_size
            )

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLLedgerStore(LedgerStore):
    """
    Shared implementation for DB-API backends.

    Statements are written with '?' placeholders; backends using another
    paramstyle translate them in _sql(). The connection runs in autocommit
    mode and every mutation is bracketed by explicit BEGIN / COMMIT.
    """

    placeholder = "?"
    serial_column = "INTEGER PRIMARY KEY AUTOINCREMENT"
    integrity_errors: Tuple[type, ...] = ()
    retryable_errors: Tuple[type, ...] = ()
    unavailable_errors: Tuple[type, ...] = ()

    def __init__(self):
        self._lock = threading.RLock()
        self._connection = None

    # Backend hooks

    @abstractmethod
    def _begin(self, cursor) -> None:
        pass

    def _lock_accounts(self, cursor, account_ids: List[str]) -> None:
        """Take row locks on the touched accounts (no-op where BEGIN locks)"""
        pass

    def _sql(self, statement: str) -> str:
        if self.placeholder == "?":
            return statement
        return statement.replace("?", self.placeholder)

    def _execute(self, cursor, statement: str, params: tuple = ()):
        cursor.execute(self._sql(statement), params)
        return cursor

    @contextmanager
    def _translate_errors(self, operation: str):
        """Map driver exceptions to ledger errors"""
        try:
            yield
        except LedgerError:
            raise
        except self.integrity_errors as e:
            raise DuplicateRecord(f"{operation} violated a uniqueness constraint: {e}") from e
        except self.retryable_errors as e:
            logger.warning(f"{operation} lost a lock race: {e}")
            raise Conflict(f"{operation} conflicted with a concurrent commit") from e
        except self.unavailable_errors as e:
            logger.error(f"{operation} failed: {e}")
            raise StoreUnavailable(f"Ledger store unavailable during {operation}") from e

    @contextmanager
    def atomic(self):
        """Context manager yielding a cursor inside one database transaction"""
        with self._lock:
            cursor = self._connection.cursor()
            try:
                self._begin(cursor)
                try:
                    yield cursor
                    cursor.execute("COMMIT")
                except BaseException:
                    self._rollback(cursor)
                    raise
            finally:
                cursor.close()

    def _rollback(self, cursor) -> None:
        try:
            cursor.execute("ROLLBACK")
        except self.unavailable_errors as e:
            # The original failure is re-raised by the caller
            logger.error(f"Rollback failed: {e}")

    def _create_schema(self) -> None:
        statements = [
            """
            CREATE TABLE IF NOT EXISTS accounts (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                full_name TEXT NOT NULL,
                country TEXT NOT NULL,
                transaction_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS account_balances (
                account_id TEXT NOT NULL REFERENCES accounts(id),
                currency TEXT NOT NULL,
                balance TEXT NOT NULL,
                total_sent TEXT NOT NULL,
                total_received TEXT NOT NULL,
                PRIMARY KEY (account_id, currency)
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS transactions (
                seq {self.serial_column},
                id TEXT NOT NULL UNIQUE,
                account_id TEXT NOT NULL REFERENCES accounts(id),
                reference TEXT,
                idempotency_key TEXT,
                created_at TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_transactions_account ON transactions(account_id, seq)",
            "CREATE INDEX IF NOT EXISTS idx_transactions_reference ON transactions(reference)",
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_idempotency
            ON transactions(account_id, idempotency_key)
            """,
        ]
        with self._translate_errors("schema creation"), self.atomic() as cursor:
            for statement in statements:
                cursor.execute(statement)

    # Reads

    def _load_account(self, cursor, account_id: str) -> Optional[Account]:
        row = self._execute(cursor, """
            SELECT id, email, full_name, country, transaction_count, created_at, updated_at
            FROM accounts WHERE id = ?
        """, (account_id,)).fetchone()
        if row is None:
            return None

        account = Account(
            id=row[0],
            email=row[1],
            full_name=row[2],
            country=row[3],
            transaction_count=int(row[4]),
            created_at=datetime.fromisoformat(row[5]),
            updated_at=datetime.fromisoformat(row[6])
        )
        balance_rows = self._execute(cursor, """
            SELECT currency, balance, total_sent, total_received
            FROM account_balances WHERE account_id = ? ORDER BY currency
        """, (account_id,)).fetchall()
        for currency, balance, total_sent, total_received in balance_rows:
            account.balances[currency] = Decimal(balance)
            if Decimal(total_sent):
                account.total_sent[currency] = Decimal(total_sent)
            if Decimal(total_received):
                account.total_received[currency] = Decimal(total_received)
        return account

    def _read(self, operation: str, reader):
        with self._lock, self._translate_errors(operation):
            cursor = self._connection.cursor()
            try:
                return reader(cursor)
            finally:
                cursor.close()

    def get_account(self, account_id: str) -> Account:
        account = self._read("get_account", lambda cursor: self._load_account(cursor, account_id))
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found")
        return account

    def find_account_by_email(self, email: str) -> Optional[Account]:
        def reader(cursor):
            row = self._execute(cursor, "SELECT id FROM accounts WHERE email = ?", (email,)).fetchone()
            return self._load_account(cursor, row[0]) if row else None
        return self._read("find_account_by_email", reader)

    def _fetch_transactions(self, operation: str, where: str, params: tuple) -> List[Transaction]:
        def reader(cursor):
            rows = self._execute(
                cursor, f"SELECT data FROM transactions WHERE {where} ORDER BY seq", params
            ).fetchall()
            return [Transaction.from_dict(json.loads(row[0])) for row in rows]
        return self._read(operation, reader)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        found = self._fetch_transactions("get_transaction", "id = ?", (transaction_id,))
        return found[0] if found else None

    def find_by_idempotency_key(self, account_id: str, idempotency_key: str) -> Optional[Transaction]:
        found = self._fetch_transactions(
            "find_by_idempotency_key", "account_id = ? AND idempotency_key = ?",
            (account_id, idempotency_key)
        )
        return found[0] if found else None

    def get_transactions_by_reference(self, reference: str) -> List[Transaction]:
        return self._fetch_transactions("get_transactions_by_reference", "reference = ?", (reference,))

    def list_transactions(self, account_id: str, page: int = 1, page_size: int = 20) -> TransactionPage:
        _check_page(page, page_size)

        def reader(cursor):
            total = self._execute(
                cursor, "SELECT COUNT(*) FROM transactions WHERE account_id = ?", (account_id,)
            ).fetchone()[0]
            rows = self._execute(cursor, """
                SELECT data FROM transactions WHERE account_id = ?
                ORDER BY seq DESC LIMIT ? OFFSET ?
            """, (account_id, page_size, (page - 1) * page_size)).fetchall()
            return TransactionPage(
                items=[Transaction.from_dict(json.loads(row[0])) for row in rows],
                total=int(total),
                page=page,
                page_size=page_size
            )
        return self._read("list_transactions", reader)

    # Writes

    def create_account(self, account: Account) -> None:
        try:
            with self._translate_errors("create_account"), self.atomic() as cursor:
                self._execute(cursor, """
                    INSERT INTO accounts (id, email, full_name, country, transaction_count, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (account.id, account.email, account.full_name, account.country,
                      account.transaction_count, account.created_at.isoformat(),
                      account.updated_at.isoformat()))
        except DuplicateRecord as e:
            raise DuplicateAccount(f"An account already exists for {account.email}") from e

    def _write_account(self, cursor, account: Account, currencies: List[str]) -> None:
        self._execute(cursor, """
            UPDATE accounts SET transaction_count = ?, updated_at = ? WHERE id = ?
        """, (account.transaction_count, account.updated_at.isoformat(), account.id))
        for currency in currencies:
            self._execute(cursor, """
                INSERT INTO account_balances (account_id, currency, balance, total_sent, total_received)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (account_id, currency) DO UPDATE SET
                    balance = excluded.balance,
                    total_sent = excluded.total_sent,
                    total_received = excluded.total_received
            """, (account.id, currency,
                  str(account.balances.get(currency, ZERO)),
                  str(account.total_sent.get(currency, ZERO)),
                  str(account.total_received.get(currency, ZERO))))

    def _insert_transaction(self, cursor, txn: Transaction) -> None:
        self._execute(cursor, """
            INSERT INTO transactions (id, account_id, reference, idempotency_key, created_at, data)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (txn.id, txn.account_id, txn.reference, txn.idempotency_key,
              txn.created_at.isoformat(), json.dumps(txn.to_dict())))

    def _update_transaction(self, cursor, txn: Transaction) -> None:
        self._execute(cursor, "UPDATE transactions SET data = ? WHERE id = ? AND account_id = ?",
                      (json.dumps(txn.to_dict()), txn.id, txn.account_id))
        if cursor.rowcount == 0:
            raise TransactionNotFound(f"Transaction {txn.id} not found")

    def apply_ledger_mutation(self, mutation: LedgerMutation) -> None:
        account_ids = mutation.account_ids()
        with self._translate_errors("apply_ledger_mutation"), self.atomic() as cursor:
            self._lock_accounts(cursor, account_ids)
            accounts = {}
            for account_id in account_ids:
                account = self._load_account(cursor, account_id)
                if account is not None:
                    accounts[account_id] = account

            updated = apply_mutation_to_accounts(accounts, mutation, datetime.now(timezone.utc))

            for txn in mutation.transactions:
                self._insert_transaction(cursor, txn)
            for txn in mutation.updates:
                self._update_transaction(cursor, txn)
            for account_id in account_ids:
                currencies = sorted({d.currency for d in mutation.deltas if d.account_id == account_id})
                self._write_account(cursor, updated[account_id], currencies)

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class SQLiteLedgerStore(SQLLedgerStore):
    """
    SQLite store.

    BEGIN IMMEDIATE takes the database write lock up front, so concurrent
    writers (threads or processes) are serialized before reading balances.
    """

    integrity_errors = (sqlite3.IntegrityError,)
    unavailable_errors = (sqlite3.Error,)

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 30.0):
        super().__init__()
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(
            self.db_path, timeout=timeout, check_same_thread=False, isolation_level=None
        )
        self._connection.execute("PRAGMA foreign_keys = ON")
        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            self._connection.execute("PRAGMA journal_mode = WAL")
            self._connection.execute("PRAGMA synchronous = NORMAL")
        self._create_schema()

    def _begin(self, cursor) -> None:
        cursor.execute("BEGIN IMMEDIATE")


class PostgreSQLLedgerStore(SQLLedgerStore):
    """
    PostgreSQL store.

    Touched account rows are locked with SELECT ... FOR UPDATE in id order,
    which serializes concurrent mutations of the same account and rules
    out lock-order deadlocks between transfers.
    """

    placeholder = "%s"
    serial_column = "BIGSERIAL PRIMARY KEY"

    def __init__(self, connection_string: str, timeout: float = 30.0):
        super().__init__()
        try:
            import psycopg2
            import psycopg2.extensions
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.integrity_errors = (psycopg2.IntegrityError,)
        self.retryable_errors = (psycopg2.extensions.TransactionRollbackError,)
        self.unavailable_errors = (psycopg2.Error,)
        self.connection_string = connection_string

        try:
            self._connection = psycopg2.connect(
                connection_string,
                connect_timeout=max(1, int(timeout)),
                options=f"-c lock_timeout={int(timeout * 1000)}"
            )
        except psycopg2.Error as e:
            raise StoreUnavailable("Could not connect to PostgreSQL") from e
        self._connection.autocommit = True
        self._create_schema()

    def _begin(self, cursor) -> None:
        cursor.execute("BEGIN")

    def _lock_accounts(self, cursor, account_ids: List[str]) -> None:
        for account_id in account_ids:
            self._execute(cursor, "SELECT id FROM accounts WHERE id = ? FOR UPDATE", (account_id,))


def create_store(database_url: str, timeout: float = 30.0) -> LedgerStore:
    """
    Build a ledger store from a database URL

    Accepts memory://, sqlite:///<path> (including sqlite:///:memory:)
    and postgresql://...
    """
    if database_url.startswith("memory://"):
        return InMemoryLedgerStore()
    if database_url.startswith("sqlite:///"):
        return SQLiteLedgerStore(database_url[len("sqlite:///"):] or ":memory:", timeout=timeout)
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLLedgerStore(database_url, timeout=timeout)
    raise ValueError(f"Unsupported database URL: {database_url}")
