"""
Rate, fee and reference-data endpoints
"""

from fastapi import APIRouter, Depends, Query

from .dependencies import LedgerSystem, get_ledger_system
from .schemas import FeeQuoteRequest
from ..currency import CURRENCY_SYMBOLS, SUPPORTED_COUNTRIES, Currency, get_country, supported_currencies
from ..payment_methods import methods_for_country


router = APIRouter()


@router.get("/exchange-rate")
def get_exchange_rate(
    from_currency: str = Query(..., alias="from"),
    to_currency: str = Query(..., alias="to"),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Quote the multiplicative rate for a currency pair"""
    rate = system.transfer_engine.exchange_rate(from_currency, to_currency)
    return {"success": True, "exchange_rate": rate.to_dict()}


@router.post("/fees")
def quote_fee(
    request: FeeQuoteRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Fee a send would cost, without moving money"""
    breakdown = system.transfer_engine.quote_fee(
        amount=request.amount,
        currency=request.currency,
        from_country=request.from_country,
        to_country=request.to_country,
        method=request.method,
        express=request.express
    )
    return {"success": True, "fees": breakdown.to_dict()}


@router.get("/countries")
async def list_countries():
    """Supported countries"""
    return {
        "success": True,
        "countries": [country.to_dict() for country in SUPPORTED_COUNTRIES.values()]
    }


@router.get("/countries/{code}")
async def get_country_details(code: str):
    """One country's currency, dial code and payment methods"""
    country = get_country(code)
    details = country.to_dict()
    details["payment_methods"] = [method.value for method in methods_for_country(country.code)]
    return {"success": True, "country": details}


@router.get("/currencies")
async def list_currencies():
    """Currencies used by supported countries"""
    currencies = []
    for code in supported_currencies():
        currencies.append({
            "code": code,
            "precision": Currency[code].precision,
            "symbol": CURRENCY_SYMBOLS.get(code, code)
        })
    return {"success": True, "currencies": currencies}


@router.get("/payment-methods/{country}")
async def list_payment_methods(country: str):
    """Payment methods available in a country"""
    return {
        "success": True,
        "country": country.upper(),
        "payment_methods": [method.value for method in methods_for_country(country)]
    }
