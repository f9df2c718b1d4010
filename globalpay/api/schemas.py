"""
Pydantic schemas for API requests
"""

from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr


# Amounts arrive as JSON numbers or decimal strings; booleans are rejected
AmountField = Union[StrictStr, StrictInt, StrictFloat]


class RegisterAccountRequest(BaseModel):
    email: str
    full_name: str
    country: Optional[str] = Field(None, description="ISO 3166 alpha-2 code, defaults to KE")


class DepositRequest(BaseModel):
    amount: AmountField = Field(..., description="Decimal amount (string preferred)")
    currency: str = Field(..., description="Currency code (USD, EUR, etc.)")
    method: str = Field("card", description="card, bank, mpesa, paypal or crypto")
    payment_details: Optional[Dict[str, Any]] = None
    description: Optional[str] = None


class WithdrawRequest(BaseModel):
    amount: AmountField
    currency: str
    method: Optional[str] = Field(None, description="Defaults to bank")
    payment_details: Optional[Dict[str, Any]] = None
    description: Optional[str] = None


class SendRequest(BaseModel):
    recipient: str = Field(..., description="Recipient email or account id")
    amount: AmountField
    currency: str
    description: Optional[str] = None
    method: str = "wallet"
    express: bool = False


class ExchangeRequest(BaseModel):
    amount: AmountField
    from_currency: str
    to_currency: str


class FeeQuoteRequest(BaseModel):
    amount: AmountField
    currency: str
    from_country: str
    to_country: str
    method: Optional[str] = None
    express: bool = False
