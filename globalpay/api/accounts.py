"""
Account endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import LedgerSystem, get_current_account_id, get_ledger_system
from .schemas import RegisterAccountRequest


router = APIRouter()


@router.post("", status_code=201)
def register_account(
    request: RegisterAccountRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Register a new, empty account"""
    account = system.account_manager.register_account(
        email=request.email,
        full_name=request.full_name,
        country=request.country
    )
    return {
        "success": True,
        "account": account.to_dict(),
        "message": "Account registered successfully"
    }


@router.get("/me")
def get_my_account(
    account_id: str = Depends(get_current_account_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get the caller's account with its balances"""
    account = system.account_manager.get_account(account_id)
    return {"success": True, "account": account.to_dict()}


@router.get("/me/statistics")
def get_my_statistics(
    account_id: str = Depends(get_current_account_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Per-currency totals sent, received and paid in fees"""
    stats = system.account_manager.get_statistics(account_id)
    return {"success": True, "statistics": stats.to_dict()}
