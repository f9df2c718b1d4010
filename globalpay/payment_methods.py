"""
Payment Methods Module

Each payment method has its own details variant with the fields that
method requires. Variants validate themselves on construction and render a
masked label suitable for transaction records and logs.
"""

from dataclasses import dataclass, fields
from datetime import date
from typing import Any, ClassVar, Dict, List, Optional, Type
from enum import Enum
import re

from .errors import InvalidRequest


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
IBAN_PATTERN = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]{1,30}$")
SWIFT_PATTERN = re.compile(r"^[A-Z]{6}[A-Z0-9]{2}([A-Z0-9]{3})?$")
PHONE_PATTERN = re.compile(r"^\+?\d{10,15}$")
ACCOUNT_NUMBER_PATTERN = re.compile(r"^[A-Z0-9]{4,34}$")
WALLET_ADDRESS_PATTERN = re.compile(r"^[A-Za-z0-9]{20,100}$")


class PaymentMethod(Enum):
    """Rails money can enter or leave the ledger through"""
    CARD = "card"
    BANK = "bank"
    MPESA = "mpesa"
    PAYPAL = "paypal"
    CRYPTO = "crypto"
    WALLET = "wallet"  # Internal balance, used for peer-to-peer sends

    @classmethod
    def from_value(cls, value) -> 'PaymentMethod':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidRequest(f"Unsupported payment method '{value}'") from None


METHODS_BY_COUNTRY: Dict[str, List[PaymentMethod]] = {
    "KE": [PaymentMethod.MPESA, PaymentMethod.CARD, PaymentMethod.BANK],
    "US": [PaymentMethod.CARD, PaymentMethod.PAYPAL, PaymentMethod.BANK],
    "GB": [PaymentMethod.CARD, PaymentMethod.PAYPAL, PaymentMethod.BANK],
    "NG": [PaymentMethod.CARD, PaymentMethod.BANK],
}
DEFAULT_METHODS = [PaymentMethod.CARD, PaymentMethod.BANK]


def methods_for_country(country_code: str) -> List[PaymentMethod]:
    """Payment methods available in a country"""
    return list(METHODS_BY_COUNTRY.get((country_code or "").strip().upper(), DEFAULT_METHODS))


def mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    return f"{local[:2]}****@{domain}"


def mask_phone(phone: str) -> str:
    return f"{phone[:4]}****{phone[-4:]}"


def _require(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidRequest(f"{name} is required")
    return str(value).strip()


@dataclass(frozen=True)
class PaymentDetails:
    """Base class for method-specific payment details"""

    method: ClassVar[PaymentMethod]

    def display(self) -> str:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        result = {"method": self.method.value}
        result.update({f.name: getattr(self, f.name) for f in fields(self)})
        return result


@dataclass(frozen=True)
class CardDetails(PaymentDetails):
    method: ClassVar[PaymentMethod] = PaymentMethod.CARD

    brand: str
    last4: str
    expiry_month: int
    expiry_year: int

    def __post_init__(self):
        _require(self.brand, "Card brand")
        if not re.fullmatch(r"\d{4}", str(self.last4 or "")):
            raise InvalidRequest("Card last4 must be exactly four digits")
        if not 1 <= int(self.expiry_month) <= 12:
            raise InvalidRequest("Card expiry month must be between 1 and 12")
        if not 2000 <= int(self.expiry_year) <= 2100:
            raise InvalidRequest("Card expiry year must be a four digit year")
        if self.is_expired():
            raise InvalidRequest("Card has expired")

    def is_expired(self, today: Optional[date] = None) -> bool:
        """Cards are valid through the end of their expiry month"""
        today = today or date.today()
        return (int(self.expiry_year), int(self.expiry_month)) < (today.year, today.month)

    def display(self) -> str:
        return f"{self.brand} **** **** **** {self.last4}"


@dataclass(frozen=True)
class BankDetails(PaymentDetails):
    method: ClassVar[PaymentMethod] = PaymentMethod.BANK

    bank_name: str
    account_number: str
    iban: Optional[str] = None
    swift_code: Optional[str] = None

    def __post_init__(self):
        _require(self.bank_name, "Bank name")
        account_number = re.sub(r"\s", "", _require(self.account_number, "Account number")).upper()
        if not ACCOUNT_NUMBER_PATTERN.match(account_number):
            raise InvalidRequest("Account number must be 4-34 letters or digits")
        object.__setattr__(self, 'account_number', account_number)

        if self.iban:
            iban = re.sub(r"\s", "", self.iban).upper()
            if not IBAN_PATTERN.match(iban):
                raise InvalidRequest("Invalid IBAN")
            object.__setattr__(self, 'iban', iban)
        if self.swift_code:
            swift = self.swift_code.strip().upper()
            if not SWIFT_PATTERN.match(swift):
                raise InvalidRequest("Invalid SWIFT/BIC code")
            object.__setattr__(self, 'swift_code', swift)

    def display(self) -> str:
        return f"{self.bank_name} ****{self.account_number[-4:]}"


@dataclass(frozen=True)
class MobileMoneyDetails(PaymentDetails):
    method: ClassVar[PaymentMethod] = PaymentMethod.MPESA

    phone_number: str
    provider: str = "M-Pesa"

    def __post_init__(self):
        _require(self.provider, "Mobile money provider")
        phone = re.sub(r"[\s-]", "", _require(self.phone_number, "Phone number"))
        if not PHONE_PATTERN.match(phone):
            raise InvalidRequest("Phone number must be 10-15 digits")
        object.__setattr__(self, 'phone_number', phone)

    def display(self) -> str:
        return f"{self.provider} {mask_phone(self.phone_number)}"


@dataclass(frozen=True)
class PayPalDetails(PaymentDetails):
    method: ClassVar[PaymentMethod] = PaymentMethod.PAYPAL

    email: str

    def __post_init__(self):
        email = _require(self.email, "PayPal email").lower()
        if not EMAIL_PATTERN.match(email):
            raise InvalidRequest("Invalid PayPal email")
        object.__setattr__(self, 'email', email)

    def display(self) -> str:
        return f"PayPal {mask_email(self.email)}"


@dataclass(frozen=True)
class CryptoDetails(PaymentDetails):
    method: ClassVar[PaymentMethod] = PaymentMethod.CRYPTO

    network: str
    wallet_address: str

    def __post_init__(self):
        _require(self.network, "Crypto network")
        if not WALLET_ADDRESS_PATTERN.match(_require(self.wallet_address, "Wallet address")):
            raise InvalidRequest("Invalid wallet address")

    def display(self) -> str:
        return f"{self.network} {self.wallet_address[:6]}...{self.wallet_address[-4:]}"


@dataclass(frozen=True)
class WalletDetails(PaymentDetails):
    method: ClassVar[PaymentMethod] = PaymentMethod.WALLET

    def display(self) -> str:
        return "GlobalPay wallet"


DETAILS_BY_METHOD: Dict[PaymentMethod, Type[PaymentDetails]] = {
    PaymentMethod.CARD: CardDetails,
    PaymentMethod.BANK: BankDetails,
    PaymentMethod.MPESA: MobileMoneyDetails,
    PaymentMethod.PAYPAL: PayPalDetails,
    PaymentMethod.CRYPTO: CryptoDetails,
    PaymentMethod.WALLET: WalletDetails,
}


def parse_payment_details(method, data: Optional[Dict[str, Any]] = None) -> PaymentDetails:
    """
    Build the details variant for a payment method

    Args:
        method: PaymentMethod or its string value
        data: Field values; unknown keys are rejected

    Raises:
        InvalidRequest: If the method is unknown or a field is missing or invalid
    """
    method = PaymentMethod.from_value(method)
    details_class = DETAILS_BY_METHOD[method]
    data = {k: v for k, v in (data or {}).items() if k != "method"}

    allowed = {f.name for f in fields(details_class)}
    unknown = set(data) - allowed
    if unknown:
        raise InvalidRequest(f"Unexpected {method.value} fields: {', '.join(sorted(unknown))}")
    try:
        return details_class(**data)
    except TypeError as e:
        raise InvalidRequest(f"Incomplete {method.value} details: {e}") from None
    except ValueError as e:
        if isinstance(e, InvalidRequest):
            raise
        raise InvalidRequest(f"Invalid {method.value} details: {e}") from None
