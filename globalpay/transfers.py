"""
Transfer Engine Module

The only component that moves money. Every operation follows the same
cycle: validate the request, resolve accounts, compute the fee, pre-check
the payer's balance, then hand one LedgerMutation to the store. Deposits
and withdrawals commit a pending entry before the payment rail is asked to
settle, and record the outcome in a second mutation. The store
re-checks non-negativity inside its atomic unit; when a concurrent commit
wins the race the engine rebuilds the mutation against fresh balances and
tries again, up to commit_retry_limit times.
"""

from decimal import Decimal
from datetime import datetime, timezone
from contextlib import contextmanager
from typing import Callable, List, Optional, Tuple

from .currency import (
    CurrencyLike, ExchangeRate, ExchangeRateTable, Money, as_currency,
    get_country, to_decimal
)
from .errors import (
    AccountNotFound, Conflict, IdempotencyConflict, InsufficientBalance, InvalidAmount,
    InvalidCurrency, InvalidRequest, LedgerError, RecipientNotFound, SelfTransferNotAllowed,
    SettlementDeclined, TransactionNotFound
)
from .fees import Corridor, FeeBreakdown, FeeCalculator, FeeSchedule
from .identifiers import IdentifierGenerator
from .ledger import (
    Account, BalanceDelta, LedgerMutation, Transaction, TransactionPage,
    TransactionStatus, TransactionType, ZERO
)
from .logging_config import get_logger, log_action
from .payment_methods import PaymentDetails, PaymentMethod, parse_payment_details
from .settlement import (
    InstantSettlementProvider, SettlementDirection, SettlementProvider, SettlementRequest
)
from .storage import LedgerStore


MAX_IDEMPOTENCY_KEY_LENGTH = 255

Builder = Callable[[bool], Tuple[LedgerMutation, Transaction]]
Replay = Callable[[], Optional[Transaction]]


class TransferEngine:
    """
    Executes deposits, withdrawals, sends and exchanges against a ledger store.

    The engine holds no mutable state of its own and may be shared by any
    number of concurrent callers.
    """

    def __init__(
        self,
        store: LedgerStore,
        fee_calculator: Optional[FeeCalculator] = None,
        rate_table: Optional[ExchangeRateTable] = None,
        id_generator: Optional[IdentifierGenerator] = None,
        settlement_provider: Optional[SettlementProvider] = None,
        max_transaction_amount: Decimal = Decimal("1000000"),
        commit_retry_limit: int = 1,
        default_page_size: int = 20,
        max_page_size: int = 100,
        default_withdraw_method: PaymentMethod = PaymentMethod.BANK
    ):
        self.store = store
        self.fee_calculator = fee_calculator or FeeCalculator()
        self.rate_table = rate_table or ExchangeRateTable()
        self.id_generator = id_generator or IdentifierGenerator()
        self.settlement_provider = settlement_provider or InstantSettlementProvider()
        self.max_transaction_amount = Decimal(str(max_transaction_amount))
        self.commit_retry_limit = commit_retry_limit
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.default_withdraw_method = PaymentMethod.from_value(default_withdraw_method)
        self.logger = get_logger("globalpay.transfers")

    @classmethod
    def from_config(cls, store: LedgerStore, config,
                    settlement_provider: Optional[SettlementProvider] = None) -> 'TransferEngine':
        return cls(
            store=store,
            fee_calculator=FeeCalculator(FeeSchedule.from_config(config)),
            rate_table=ExchangeRateTable(fallback_rate=Decimal(config.fallback_exchange_rate)),
            settlement_provider=settlement_provider,
            max_transaction_amount=Decimal(config.max_transaction_amount),
            commit_retry_limit=config.commit_retry_limit,
            default_page_size=config.default_page_size,
            max_page_size=config.max_page_size,
            default_withdraw_method=config.default_withdraw_method
        )

    # Money-moving operations

    def deposit(
        self,
        account_id: str,
        amount,
        currency: CurrencyLike,
        method=PaymentMethod.CARD,
        payment_details: Optional[dict] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> Transaction:
        """
        Credit an account with money arriving from an external rail

        Deposits carry no fee. The entry is committed as pending first, which
        claims the idempotency key, and only then is the rail charged. A
        settlement that comes back pending leaves the entry pending and the
        balance uncredited; a decline marks it failed.

        Raises:
            InvalidAmount, InvalidCurrency, InvalidRequest, AccountNotFound,
            IdempotencyConflict, SettlementDeclined, StoreUnavailable
        """
        with self._operation("deposit", account_id):
            money = self._validate_amount(amount, currency)
            method, details = self._external_method(method, payment_details)
            key = self._validate_idempotency_key(idempotency_key)

            account = self.store.get_account(account_id)
            replay = self._replay_check(account.id, key, TransactionType.DEPOSIT, money)
            existing = replay()
            if existing:
                return existing

            def build(retry: bool) -> Tuple[LedgerMutation, Transaction]:
                txn = Transaction(
                    id=self.id_generator.new_transaction_id(),
                    account_id=account.id,
                    type=TransactionType.DEPOSIT,
                    amount=money.amount,
                    currency=money.currency.code,
                    fee=ZERO,
                    total=money.amount,
                    status=TransactionStatus.PENDING,
                    created_at=datetime.now(timezone.utc),
                    counterparty_label=details.display() if details else None,
                    description=description,
                    payment_method=method.value,
                    idempotency_key=key
                )
                return LedgerMutation([], [txn]), txn

            pending, created = self._commit("deposit", build, replay)
            if not created:
                return pending

            txn = self._settle("deposit", pending, SettlementDirection.INBOUND, method, details)
            self._log_committed("deposit", txn)
            return txn

    def withdraw(
        self,
        account_id: str,
        amount,
        currency: CurrencyLike,
        method=None,
        payment_details: Optional[dict] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> Transaction:
        """
        Debit amount plus the local-corridor fee and pay it out

        The debit is committed as a pending hold before the rail is asked to
        pay, so a concurrent spend can never use the same funds. A decline
        marks the hold failed and credits the total back.

        Raises:
            InvalidAmount, InvalidCurrency, InvalidRequest, AccountNotFound,
            IdempotencyConflict, InsufficientBalance, SettlementDeclined,
            StoreUnavailable
        """
        with self._operation("withdraw", account_id):
            money = self._validate_amount(amount, currency)
            method, details = self._external_method(method or self.default_withdraw_method, payment_details)
            key = self._validate_idempotency_key(idempotency_key)

            account = self.store.get_account(account_id)
            replay = self._replay_check(account.id, key, TransactionType.WITHDRAW, money)
            existing = replay()
            if existing:
                return existing

            fee = self.fee_calculator.compute_fee(money, Corridor.LOCAL, method)
            total = money + fee.total
            self._check_balance(account, total)

            def build(retry: bool) -> Tuple[LedgerMutation, Transaction]:
                if retry:
                    self._check_balance(self.store.get_account(account.id), total)
                txn = Transaction(
                    id=self.id_generator.new_transaction_id(),
                    account_id=account.id,
                    type=TransactionType.WITHDRAW,
                    amount=money.amount,
                    currency=money.currency.code,
                    fee=fee.total.amount,
                    total=total.amount,
                    status=TransactionStatus.PENDING,
                    created_at=datetime.now(timezone.utc),
                    counterparty_label=details.display() if details else None,
                    description=description,
                    payment_method=method.value,
                    idempotency_key=key
                )
                delta = BalanceDelta(account.id, money.currency.code, -total.amount)
                return LedgerMutation([delta], [txn]), txn

            hold, created = self._commit("withdraw", build, replay)
            if not created:
                return hold

            txn = self._settle("withdraw", hold, SettlementDirection.OUTBOUND, method, details)
            self._log_committed("withdraw", txn)
            return txn

    def send(
        self,
        sender_id: str,
        recipient_key: str,
        amount,
        currency: CurrencyLike,
        description: Optional[str] = None,
        method=PaymentMethod.WALLET,
        express: bool = False,
        idempotency_key: Optional[str] = None
    ) -> Transaction:
        """
        Move money from the sender's balance to another account

        The recipient is resolved by email, or by account id. The fee comes
        from the sender's corridor (sender and recipient country) and
        method. Both legs share one reference and commit as one unit.

        Returns:
            The sender's leg (type send)

        Raises:
            InvalidAmount, InvalidCurrency, InvalidRequest, AccountNotFound,
            RecipientNotFound, SelfTransferNotAllowed, IdempotencyConflict,
            InsufficientBalance, StoreUnavailable
        """
        with self._operation("send", sender_id):
            money = self._validate_amount(amount, currency)
            method = PaymentMethod.from_value(method or PaymentMethod.WALLET)
            key = self._validate_idempotency_key(idempotency_key)
            recipient_key = (recipient_key or "").strip()
            if not recipient_key:
                raise InvalidRequest("Recipient is required")
            if recipient_key == sender_id:
                raise SelfTransferNotAllowed("Cannot send money to yourself")

            sender = self.store.get_account(sender_id)
            recipient = self._resolve_recipient(recipient_key)
            if recipient.id == sender.id:
                raise SelfTransferNotAllowed("Cannot send money to yourself")

            replay = self._replay_check(sender.id, key, TransactionType.SEND, money, counterparty_id=recipient.id)
            existing = replay()
            if existing:
                return existing

            corridor = self.fee_calculator.corridor_for(sender.country, recipient.country, express)
            fee = self.fee_calculator.compute_fee(money, corridor, method)
            total = money + fee.total
            self._check_balance(sender, total)

            def build(retry: bool) -> Tuple[LedgerMutation, Transaction]:
                if retry:
                    self._check_balance(self.store.get_account(sender.id), total)
                reference = self.id_generator.new_reference()
                now = datetime.now(timezone.utc)
                send_leg = Transaction(
                    id=self.id_generator.new_transaction_id(),
                    account_id=sender.id,
                    type=TransactionType.SEND,
                    amount=money.amount,
                    currency=money.currency.code,
                    fee=fee.total.amount,
                    total=total.amount,
                    status=TransactionStatus.COMPLETED,
                    created_at=now,
                    reference=reference,
                    counterparty_id=recipient.id,
                    counterparty_label=recipient.email,
                    description=description,
                    payment_method=method.value,
                    idempotency_key=key
                )
                receive_leg = Transaction(
                    id=self.id_generator.new_transaction_id(),
                    account_id=recipient.id,
                    type=TransactionType.RECEIVE,
                    amount=money.amount,
                    currency=money.currency.code,
                    fee=ZERO,
                    total=money.amount,
                    status=TransactionStatus.COMPLETED,
                    created_at=now,
                    reference=reference,
                    counterparty_id=sender.id,
                    counterparty_label=sender.email,
                    description=description,
                    payment_method=method.value
                )
                deltas = [
                    BalanceDelta(sender.id, money.currency.code, -total.amount, sent=money.amount),
                    BalanceDelta(recipient.id, money.currency.code, money.amount, received=money.amount),
                ]
                return LedgerMutation(deltas, [send_leg, receive_leg]), send_leg

            txn, _ = self._commit("send", build, replay)
            self._log_committed("send", txn, extra={"corridor": corridor.value, "recipient": recipient.id})
            return txn

    def exchange(
        self,
        account_id: str,
        amount,
        from_currency: CurrencyLike,
        to_currency: CurrencyLike,
        idempotency_key: Optional[str] = None
    ) -> Transaction:
        """
        Convert part of one balance into another currency at the table rate

        Only pairs with a real table entry can be exchanged; the fallback
        rate is never used to move money.

        Raises:
            InvalidAmount, InvalidCurrency, InvalidRequest, AccountNotFound,
            IdempotencyConflict, InsufficientBalance, StoreUnavailable
        """
        with self._operation("exchange", account_id):
            money = self._validate_amount(amount, from_currency)
            target = as_currency(to_currency)
            if target == money.currency:
                raise InvalidRequest("Cannot exchange a currency into itself")
            if not self.rate_table.has_rate(money.currency, target):
                raise InvalidCurrency(
                    f"No exchange rate available for {money.currency.code} -> {target.code}"
                )
            rate = self.rate_table.rate(money.currency, target)
            converted = self.rate_table.convert(money, target)
            if not converted.is_positive():
                raise InvalidAmount(f"Amount is too small to convert into {target.code}")
            key = self._validate_idempotency_key(idempotency_key)

            account = self.store.get_account(account_id)
            replay = self._replay_check(
                account.id, key, TransactionType.EXCHANGE, money, target_currency=target.code
            )
            existing = replay()
            if existing:
                return existing

            self._check_balance(account, money)

            def build(retry: bool) -> Tuple[LedgerMutation, Transaction]:
                if retry:
                    self._check_balance(self.store.get_account(account.id), money)
                txn = Transaction(
                    id=self.id_generator.new_transaction_id(),
                    account_id=account.id,
                    type=TransactionType.EXCHANGE,
                    amount=money.amount,
                    currency=money.currency.code,
                    fee=ZERO,
                    total=money.amount,
                    status=TransactionStatus.COMPLETED,
                    created_at=datetime.now(timezone.utc),
                    idempotency_key=key,
                    target_currency=target.code,
                    target_amount=converted.amount,
                    exchange_rate=rate
                )
                deltas = [
                    BalanceDelta(account.id, money.currency.code, -money.amount),
                    BalanceDelta(account.id, target.code, converted.amount),
                ]
                return LedgerMutation(deltas, [txn]), txn

            txn, _ = self._commit("exchange", build, replay)
            self._log_committed("exchange", txn, extra={
                "target_currency": target.code, "target_amount": str(converted.amount), "rate": str(rate)
            })
            return txn

    # Read-only operations

    def quote_fee(self, amount, currency: CurrencyLike, from_country: str, to_country: str,
                  method=None, express: bool = False) -> FeeBreakdown:
        """Fee a send between two countries would cost, without moving money"""
        money = self._validate_amount(amount, currency)
        from_code = get_country(from_country).code
        to_code = get_country(to_country).code
        method = PaymentMethod.from_value(method) if method else None
        corridor = self.fee_calculator.corridor_for(from_code, to_code, express)
        return self.fee_calculator.compute_fee(money, corridor, method)

    def exchange_rate(self, from_currency: CurrencyLike, to_currency: CurrencyLike) -> ExchangeRate:
        return self.rate_table.quote(from_currency, to_currency)

    def list_transactions(self, account_id: str, page: int = 1,
                          page_size: Optional[int] = None) -> TransactionPage:
        if page_size is None:
            page_size = self.default_page_size
        if page < 1:
            raise InvalidRequest("Page must be 1 or greater")
        if not 1 <= page_size <= self.max_page_size:
            raise InvalidRequest(f"Page size must be between 1 and {self.max_page_size}")
        account = self.store.get_account(account_id)
        return self.store.list_transactions(account.id, page=page, page_size=page_size)

    def get_transaction(self, account_id: str, transaction_id: str) -> Transaction:
        """A transaction owned by the account; other accounts' entries are not found"""
        txn = self.store.get_transaction(transaction_id)
        if txn is None or txn.account_id != account_id:
            raise TransactionNotFound(f"Transaction {transaction_id} not found")
        return txn

    def get_transfer(self, account_id: str, reference: str) -> List[Transaction]:
        """Both legs of a transfer the account took part in"""
        legs = self.store.get_transactions_by_reference(reference)
        if not any(leg.account_id == account_id for leg in legs):
            raise TransactionNotFound(f"Transfer {reference} not found")
        return legs

    # Helpers

    @contextmanager
    def _operation(self, operation: str, account_id: str):
        try:
            yield
        except LedgerError as e:
            level = "error" if e.http_status >= 500 else "warning"
            log_action(
                self.logger, level, f"{operation} rejected: {e.message}",
                account_id=account_id, action=operation,
                extra={"error_kind": e.error_kind}
            )
            raise

    def _validate_amount(self, amount, currency: CurrencyLike) -> Money:
        currency = as_currency(currency)
        money = Money(to_decimal(amount), currency)
        if not money.is_positive():
            raise InvalidAmount("Amount must be greater than zero")
        if money.amount > self.max_transaction_amount:
            raise InvalidAmount(f"Amount exceeds the maximum of {self.max_transaction_amount}")
        return money

    @staticmethod
    def _validate_idempotency_key(key: Optional[str]) -> Optional[str]:
        if key is None:
            return None
        key = key.strip()
        if not key or len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise InvalidRequest(f"Idempotency key must be 1-{MAX_IDEMPOTENCY_KEY_LENGTH} characters")
        return key

    @staticmethod
    def _external_method(method, payment_details: Optional[dict]) -> Tuple[PaymentMethod, Optional[PaymentDetails]]:
        method = PaymentMethod.from_value(method)
        if method == PaymentMethod.WALLET:
            raise InvalidRequest("Deposits and withdrawals need an external payment method")
        details = parse_payment_details(method, payment_details) if payment_details is not None else None
        return method, details

    def _resolve_recipient(self, recipient_key: str) -> Account:
        try:
            if "@" in recipient_key:
                return self.store.get_account_by_email(recipient_key.lower())
            return self.store.get_account(recipient_key)
        except AccountNotFound:
            raise RecipientNotFound(f"Recipient '{recipient_key}' not found") from None

    @staticmethod
    def _check_balance(account: Account, required: Money) -> None:
        available = account.balance(required.currency)
        if available < required.amount:
            raise InsufficientBalance(
                f"Insufficient {required.currency.code} balance: "
                f"available {available}, required {required.amount}"
            )

    def _replay_check(self, account_id: str, key: Optional[str], txn_type: TransactionType,
                      money: Money, counterparty_id: Optional[str] = None,
                      target_currency: Optional[str] = None) -> Replay:
        """Lookup returning the committed entry for a retried request"""
        def replay() -> Optional[Transaction]:
            if key is None:
                return None
            existing = self.store.find_by_idempotency_key(account_id, key)
            if existing is None:
                return None
            if not existing.same_operation(txn_type, money.amount, money.currency.code,
                                           counterparty_id, target_currency):
                raise IdempotencyConflict(f"Idempotency key '{key}' was used for a different operation")
            if existing.status == TransactionStatus.FAILED:
                raise SettlementDeclined(f"{txn_type.value} {existing.id} was declined by the payment rail")
            log_action(
                self.logger, "info", f"Replayed {txn_type.value} for idempotency key",
                account_id=account_id, action=txn_type.value, resource=existing.id
            )
            return existing
        return replay

    def _settle(self, operation: str, pending: Transaction, direction: SettlementDirection,
                method: PaymentMethod, details: Optional[PaymentDetails]) -> Transaction:
        """
        Ask the rail to settle a committed pending entry and record the outcome

        A confirmed deposit is credited; a declined withdrawal gets its hold
        credited back. Either way the entry's status is updated in the same
        commit as the balance change.
        """
        result = self.settlement_provider.settle(SettlementRequest(
            transaction_id=pending.id,
            account_id=pending.account_id,
            direction=direction,
            amount=pending.amount,
            currency=pending.currency,
            method=method,
            details=details
        ))

        if result.declined:
            settled = pending.settled(TransactionStatus.FAILED, result.provider_reference)
            credit = direction == SettlementDirection.OUTBOUND
        else:
            settled = pending.settled(result.status, result.provider_reference)
            credit = direction == SettlementDirection.INBOUND and result.status == TransactionStatus.COMPLETED

        if settled != pending:
            deltas = [BalanceDelta(pending.account_id, pending.currency, pending.total)] if credit else []
            try:
                self.store.apply_ledger_mutation(LedgerMutation(deltas, [], updates=[settled]))
            except LedgerError as e:
                log_action(
                    self.logger, "error", f"{operation} settlement outcome not recorded: {e.message}",
                    account_id=pending.account_id, action=operation, resource=pending.id,
                    extra={"status": settled.status.value, "provider_reference": result.provider_reference}
                )
                raise

        if result.declined:
            raise SettlementDeclined(result.reason or f"{method.value} settlement declined")
        return settled

    def _commit(self, operation: str, build: Builder, replay: Replay) -> Tuple[Transaction, bool]:
        """
        Apply a built mutation, rebuilding it after a lost commit race

        Returns:
            The committed entry and whether this call created it; False means
            a concurrent request with the same idempotency key won
        """
        attempt = 0
        while True:
            mutation, txn = build(attempt > 0)
            try:
                self.store.apply_ledger_mutation(mutation)
                return txn, True
            except Conflict as e:
                existing = replay()
                if existing:
                    return existing, False
                if attempt >= self.commit_retry_limit:
                    if e.is_balance_conflict:
                        raise InsufficientBalance(
                            f"Insufficient {e.currency} balance at commit time"
                        ) from e
                    raise
                attempt += 1
                log_action(
                    self.logger, "warning", f"{operation} commit conflict, retrying: {e.message}",
                    account_id=txn.account_id, action=operation,
                    extra={"attempt": attempt}
                )

    def _log_committed(self, operation: str, txn: Transaction, extra: Optional[dict] = None) -> None:
        data = {
            "transaction_id": txn.id,
            "reference": txn.reference,
            "amount": str(txn.amount),
            "fee": str(txn.fee),
            "currency": txn.currency,
            "status": txn.status.value
        }
        data.update(extra or {})
        log_action(
            self.logger, "info", f"{operation} committed",
            account_id=txn.account_id, action=operation, resource=txn.id, extra=data
        )
