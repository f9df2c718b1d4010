"""
Multi-Currency Support Module

Currency codes with their minor-unit precision, country metadata, and the
static exchange-rate table. NEVER uses float for monetary values.
Everything here is a pure lookup: no state is mutated after import, so the
table is safe to share between threads without locking.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple, Union
from enum import Enum
import re

from .errors import InvalidAmount, InvalidCurrency, InvalidRequest

# Set global decimal context for financial precision
getcontext().prec = 28

CURRENCY_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")


class Currency(Enum):
    """ISO 4217 currency codes with minor-unit precision"""
    # Africa
    KES = ("KES", 2)
    NGN = ("NGN", 2)
    ZAR = ("ZAR", 2)
    GHS = ("GHS", 2)
    TZS = ("TZS", 2)
    UGX = ("UGX", 0)
    RWF = ("RWF", 0)
    ETB = ("ETB", 2)
    EGP = ("EGP", 2)
    MAD = ("MAD", 2)
    # Americas
    USD = ("USD", 2)
    CAD = ("CAD", 2)
    MXN = ("MXN", 2)
    BRL = ("BRL", 2)
    ARS = ("ARS", 2)
    COP = ("COP", 2)
    CLP = ("CLP", 0)
    PEN = ("PEN", 2)
    # Europe
    GBP = ("GBP", 2)
    EUR = ("EUR", 2)
    CHF = ("CHF", 2)
    SEK = ("SEK", 2)
    NOK = ("NOK", 2)
    DKK = ("DKK", 2)
    # Asia
    JPY = ("JPY", 0)
    CNY = ("CNY", 2)
    INR = ("INR", 2)
    KRW = ("KRW", 0)
    SGD = ("SGD", 2)
    MYR = ("MYR", 2)
    THB = ("THB", 2)
    VND = ("VND", 0)
    PHP = ("PHP", 2)
    IDR = ("IDR", 0)
    PKR = ("PKR", 2)
    BDT = ("BDT", 2)
    LKR = ("LKR", 2)
    # Middle East
    AED = ("AED", 2)
    SAR = ("SAR", 2)
    QAR = ("QAR", 2)
    KWD = ("KWD", 3)
    ILS = ("ILS", 2)
    TRY = ("TRY", 2)
    # Oceania
    AUD = ("AUD", 2)
    NZD = ("NZD", 2)

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """
        Resolve a currency code (case-insensitive)

        Raises:
            InvalidCurrency: If the code is malformed or not supported
        """
        if not isinstance(code, str):
            raise InvalidCurrency("Currency code must be a string")
        normalized = code.strip().upper()
        if not CURRENCY_CODE_PATTERN.match(normalized):
            raise InvalidCurrency(f"Invalid currency code '{code}'")
        try:
            return cls[normalized]
        except KeyError:
            raise InvalidCurrency(f"Unsupported currency '{normalized}'") from None

    def quantize(self, value: Decimal) -> Decimal:
        """Round to this currency's minor unit (half-up)"""
        return value.quantize(Decimal('0.1') ** self.precision, rounding=ROUND_HALF_UP)


CurrencyLike = Union[Currency, str]


def as_currency(value: CurrencyLike) -> Currency:
    if isinstance(value, Currency):
        return value
    return Currency.from_code(value)


CURRENCY_SYMBOLS: Dict[str, str] = {
    "USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥", "CNY": "¥", "INR": "₹",
    "KES": "KSh", "NGN": "₦", "ZAR": "R", "BRL": "R$", "MXN": "$", "AUD": "A$",
    "CAD": "C$", "CHF": "Fr", "AED": "د.إ", "SAR": "ر.س", "PKR": "₨", "BDT": "৳",
}


def to_decimal(value: Union[Decimal, int, str, float]) -> Decimal:
    """
    Convert user input to a finite Decimal

    Floats go through str() so 0.1 stays 0.1.

    Raises:
        InvalidAmount: If the value is not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmount("Amount must be a number")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Amount '{value}' is not a valid number") from None
    if not result.is_finite():
        raise InvalidAmount("Amount must be finite")
    return result


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    The amount is rounded to the currency's minor unit on creation.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        object.__setattr__(self, 'amount', self.currency.quantize(self.amount))

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Decimal) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


@dataclass(frozen=True)
class Country:
    """Country metadata used for corridor classification"""
    code: str
    name: str
    currency: Currency
    dial_code: str
    continent: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "code": self.code,
            "name": self.name,
            "currency": self.currency.code,
            "dial_code": self.dial_code,
            "continent": self.continent
        }


def _country(code: str, name: str, currency: str, dial_code: str, continent: str) -> Country:
    return Country(code, name, Currency[currency], dial_code, continent)


SUPPORTED_COUNTRIES: Dict[str, Country] = {c.code: c for c in [
    # Africa
    _country("KE", "Kenya", "KES", "+254", "Africa"),
    _country("NG", "Nigeria", "NGN", "+234", "Africa"),
    _country("ZA", "South Africa", "ZAR", "+27", "Africa"),
    _country("GH", "Ghana", "GHS", "+233", "Africa"),
    _country("TZ", "Tanzania", "TZS", "+255", "Africa"),
    _country("UG", "Uganda", "UGX", "+256", "Africa"),
    _country("RW", "Rwanda", "RWF", "+250", "Africa"),
    _country("ET", "Ethiopia", "ETB", "+251", "Africa"),
    _country("EG", "Egypt", "EGP", "+20", "Africa"),
    _country("MA", "Morocco", "MAD", "+212", "Africa"),
    # North America
    _country("US", "United States", "USD", "+1", "North America"),
    _country("CA", "Canada", "CAD", "+1", "North America"),
    _country("MX", "Mexico", "MXN", "+52", "North America"),
    # South America
    _country("BR", "Brazil", "BRL", "+55", "South America"),
    _country("AR", "Argentina", "ARS", "+54", "South America"),
    _country("CO", "Colombia", "COP", "+57", "South America"),
    _country("CL", "Chile", "CLP", "+56", "South America"),
    _country("PE", "Peru", "PEN", "+51", "South America"),
    # Europe
    _country("GB", "United Kingdom", "GBP", "+44", "Europe"),
    _country("DE", "Germany", "EUR", "+49", "Europe"),
    _country("FR", "France", "EUR", "+33", "Europe"),
    _country("IT", "Italy", "EUR", "+39", "Europe"),
    _country("ES", "Spain", "EUR", "+34", "Europe"),
    _country("NL", "Netherlands", "EUR", "+31", "Europe"),
    _country("CH", "Switzerland", "CHF", "+41", "Europe"),
    _country("SE", "Sweden", "SEK", "+46", "Europe"),
    _country("NO", "Norway", "NOK", "+47", "Europe"),
    _country("DK", "Denmark", "DKK", "+45", "Europe"),
    # Asia
    _country("JP", "Japan", "JPY", "+81", "Asia"),
    _country("CN", "China", "CNY", "+86", "Asia"),
    _country("IN", "India", "INR", "+91", "Asia"),
    _country("KR", "South Korea", "KRW", "+82", "Asia"),
    _country("SG", "Singapore", "SGD", "+65", "Asia"),
    _country("MY", "Malaysia", "MYR", "+60", "Asia"),
    _country("TH", "Thailand", "THB", "+66", "Asia"),
    _country("VN", "Vietnam", "VND", "+84", "Asia"),
    _country("PH", "Philippines", "PHP", "+63", "Asia"),
    _country("ID", "Indonesia", "IDR", "+62", "Asia"),
    _country("PK", "Pakistan", "PKR", "+92", "Asia"),
    _country("BD", "Bangladesh", "BDT", "+880", "Asia"),
    _country("LK", "Sri Lanka", "LKR", "+94", "Asia"),
    # Middle East
    _country("AE", "UAE", "AED", "+971", "Middle East"),
    _country("SA", "Saudi Arabia", "SAR", "+966", "Middle East"),
    _country("QA", "Qatar", "QAR", "+974", "Middle East"),
    _country("KW", "Kuwait", "KWD", "+965", "Middle East"),
    _country("IL", "Israel", "ILS", "+972", "Middle East"),
    _country("TR", "Turkey", "TRY", "+90", "Middle East"),
    # Oceania
    _country("AU", "Australia", "AUD", "+61", "Oceania"),
    _country("NZ", "New Zealand", "NZD", "+64", "Oceania"),
]}


def get_country(code: str) -> Country:
    """
    Look up country metadata by ISO 3166 alpha-2 code

    Raises:
        InvalidRequest: If the country is not supported
    """
    country = SUPPORTED_COUNTRIES.get((code or "").strip().upper())
    if not country:
        raise InvalidRequest(f"Unsupported country '{code}'")
    return country


def supported_currencies() -> List[str]:
    """Currency codes used by at least one supported country, in table order"""
    seen: List[str] = []
    for country in SUPPORTED_COUNTRIES.values():
        if country.currency.code not in seen:
            seen.append(country.currency.code)
    return seen


# Multiplicative rates: amount_in_to = amount_in_from * rate
DEFAULT_RATES: Dict[Tuple[str, str], Decimal] = {
    ("USD", "EUR"): Decimal("0.92"),
    ("USD", "GBP"): Decimal("0.79"),
    ("USD", "KES"): Decimal("150"),
    ("USD", "NGN"): Decimal("1550"),
    ("USD", "INR"): Decimal("83"),
    ("USD", "AED"): Decimal("3.67"),
    ("EUR", "USD"): Decimal("1.09"),
    ("EUR", "GBP"): Decimal("0.86"),
    ("EUR", "KES"): Decimal("163"),
    ("GBP", "USD"): Decimal("1.27"),
    ("GBP", "EUR"): Decimal("1.16"),
    ("GBP", "KES"): Decimal("190"),
    ("KES", "USD"): Decimal("0.0067"),
    ("KES", "EUR"): Decimal("0.0061"),
    ("KES", "GBP"): Decimal("0.0053"),
}

DEFAULT_FALLBACK_RATE = Decimal("1")


@dataclass(frozen=True)
class ExchangeRate:
    """A quoted rate for one currency pair"""
    from_currency: Currency
    to_currency: Currency
    rate: Decimal
    is_fallback: bool
    timestamp: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "from": self.from_currency.code,
            "to": self.to_currency.code,
            "rate": str(self.rate),
            "is_fallback": self.is_fallback,
            "timestamp": self.timestamp.isoformat()
        }


class ExchangeRateTable:
    """
    Static exchange-rate table.

    Pairs are directional; no inverse is derived. A pair missing from the
    table quotes the fallback rate, which is fixed per table instance so
    every caller sees the same answer for the same pair.
    """

    def __init__(self, rates: Optional[Dict[Tuple[str, str], Decimal]] = None,
                 fallback_rate: Decimal = DEFAULT_FALLBACK_RATE):
        fallback_rate = Decimal(str(fallback_rate))
        if fallback_rate <= 0:
            raise ValueError("Fallback rate must be positive")
        self._rates: Dict[Tuple[str, str], Decimal] = {}
        for (src, dst), value in (DEFAULT_RATES if rates is None else rates).items():
            value = Decimal(str(value))
            if value <= 0:
                raise ValueError(f"Rate for {src}/{dst} must be positive")
            self._rates[(src.upper(), dst.upper())] = value
        self.fallback_rate = fallback_rate

    def has_rate(self, from_currency: CurrencyLike, to_currency: CurrencyLike) -> bool:
        """True if the pair is identical or has a real table entry"""
        src, dst = as_currency(from_currency), as_currency(to_currency)
        return src == dst or (src.code, dst.code) in self._rates

    def rate(self, from_currency: CurrencyLike, to_currency: CurrencyLike) -> Decimal:
        """Multiplicative rate; exactly 1 for identical currencies"""
        return self.quote(from_currency, to_currency).rate

    def quote(self, from_currency: CurrencyLike, to_currency: CurrencyLike) -> ExchangeRate:
        src, dst = as_currency(from_currency), as_currency(to_currency)
        now = datetime.now(timezone.utc)
        if src == dst:
            return ExchangeRate(src, dst, Decimal("1"), False, now)
        value = self._rates.get((src.code, dst.code))
        if value is None:
            return ExchangeRate(src, dst, self.fallback_rate, True, now)
        return ExchangeRate(src, dst, value, False, now)

    def convert(self, money: Money, to_currency: CurrencyLike) -> Money:
        """
        Convert money at a real table rate

        Raises:
            InvalidCurrency: If the pair has no table entry
        """
        dst = as_currency(to_currency)
        if not self.has_rate(money.currency, dst):
            raise InvalidCurrency(
                f"No exchange rate available for {money.currency.code} -> {dst.code}"
            )
        return Money(money.amount * self.rate(money.currency, dst), dst)
