"""
Transaction endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .dependencies import (
    LedgerSystem, get_current_account_id, get_idempotency_key, get_ledger_system
)
from .schemas import DepositRequest, ExchangeRequest, SendRequest, WithdrawRequest


router = APIRouter()


def _result(transaction, message: str) -> dict:
    return {
        "success": True,
        "transaction": transaction.to_dict(),
        "message": message
    }


@router.get("")
def list_transactions(
    page: int = Query(1),
    page_size: Optional[int] = Query(None),
    account_id: str = Depends(get_current_account_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the caller's transactions, newest first"""
    result = system.transfer_engine.list_transactions(account_id, page=page, page_size=page_size)
    response = {"success": True}
    response.update(result.to_dict())
    return response


@router.get("/reference/{reference}")
def get_transfer(
    reference: str,
    account_id: str = Depends(get_current_account_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Both legs of a transfer the caller took part in"""
    legs = system.transfer_engine.get_transfer(account_id, reference)
    return {
        "success": True,
        "reference": reference,
        "transactions": [leg.to_dict() for leg in legs]
    }


@router.get("/{transaction_id}")
def get_transaction(
    transaction_id: str,
    account_id: str = Depends(get_current_account_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get one of the caller's transactions"""
    transaction = system.transfer_engine.get_transaction(account_id, transaction_id)
    return {"success": True, "transaction": transaction.to_dict()}


@router.post("/deposit", status_code=201)
def deposit(
    request: DepositRequest,
    account_id: str = Depends(get_current_account_id),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Deposit money from an external payment method"""
    transaction = system.transfer_engine.deposit(
        account_id=account_id,
        amount=request.amount,
        currency=request.currency,
        method=request.method,
        payment_details=request.payment_details,
        description=request.description,
        idempotency_key=idempotency_key
    )
    return _result(transaction, "Deposit processed successfully")


@router.post("/withdraw", status_code=201)
def withdraw(
    request: WithdrawRequest,
    account_id: str = Depends(get_current_account_id),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Withdraw money to an external payment method"""
    transaction = system.transfer_engine.withdraw(
        account_id=account_id,
        amount=request.amount,
        currency=request.currency,
        method=request.method,
        payment_details=request.payment_details,
        description=request.description,
        idempotency_key=idempotency_key
    )
    return _result(transaction, "Withdrawal processed successfully")


@router.post("/send", status_code=201)
def send(
    request: SendRequest,
    account_id: str = Depends(get_current_account_id),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Send money to another account"""
    transaction = system.transfer_engine.send(
        sender_id=account_id,
        recipient_key=request.recipient,
        amount=request.amount,
        currency=request.currency,
        description=request.description,
        method=request.method,
        express=request.express,
        idempotency_key=idempotency_key
    )
    return _result(transaction, "Money sent successfully")


@router.post("/exchange", status_code=201)
def exchange(
    request: ExchangeRequest,
    account_id: str = Depends(get_current_account_id),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Convert between two of the caller's balances"""
    transaction = system.transfer_engine.exchange(
        account_id=account_id,
        amount=request.amount,
        from_currency=request.from_currency,
        to_currency=request.to_currency,
        idempotency_key=idempotency_key
    )
    return _result(transaction, "Currency exchanged successfully")
