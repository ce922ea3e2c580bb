"""Currency -- ISO 4217 code validation and precision-derived rounding for quotes."""

import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar

from quote_kernel.exceptions import InvalidCurrencyError

_CODE_RE = re.compile(r"^[A-Z]{3}$")

# Active ISO 4217 currency codes.  The fund, precious-metal, testing and
# "no currency" codes (XAU, XDR, XTS, XXX, ...) are not quoting currencies.
ISO_4217_CODES = frozenset("""
    AED AFN ALL AMD ANG AOA ARS AUD AWG AZN BAM BBD BDT BGN BHD BIF BMD BND
    BOB BOV BRL BSD BTN BWP BYN BZD CAD CDF CHE CHF CHW CLF CLP CNY COP COU
    CRC CUC CUP CVE CZK DJF DKK DOP DZD EGP ERN ETB EUR FJD FKP GBP GEL GHS
    GIP GMD GNF GTQ GYD HKD HNL HTG HUF IDR ILS INR IQD IRR ISK JMD JOD JPY
    KES KGS KHR KMF KPW KRW KWD KYD KZT LAK LBP LKR LRD LSL LYD MAD MDL MGA
    MKD MMK MNT MOP MRU MUR MVR MWK MXN MXV MYR MZN NAD NGN NIO NOK NPR NZD
    OMR PAB PEN PGK PHP PKR PLN PYG QAR RON RSD RUB RWF SAR SBD SCR SDG SEK
    SGD SHP SLE SLL SOS SRD SSP STN SVC SYP SZL THB TJS TMT TND TOP TRY TTD
    TWD TZS UAH UGX USD USN UYI UYU UYW UZS VED VES VND VUV WST XAF XCD XCG
    XOF XPF YER ZAR ZMW ZWG ZWL
""".split())


def quantum(decimal_places: int) -> Decimal:
    """Exponent for Decimal.quantize(): 0 -> 1, 2 -> 0.01."""
    return Decimal(1).scaleb(-decimal_places)


def round_money(value: Decimal, decimal_places: int = 2) -> Decimal:
    """
    Round half-up to ``decimal_places``.

    The only sanctioned rounding function for monetary values.
    """
    return value.quantize(quantum(decimal_places), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CurrencyPolicy:
    """
    Resolves minor-unit precision per ISO 4217 code.

    Contract:
        A code is accepted when it is an active ISO 4217 code or has a
        configured override.  ``decimal_places(code)`` consults the
        overrides first, then the built-in table of currencies without two
        minor units, then the configured default.
    """

    default_decimal_places: int = 2
    overrides: dict[str, int] = field(default_factory=dict)

    _BUILTIN: ClassVar[dict[str, int]] = {
        # No minor units
        "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0,
        "KMF": 0, "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "UYI": 0,
        "VND": 0, "VUV": 0, "XAF": 0, "XOF": 0, "XPF": 0,
        # Three minor units
        "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
        # Four minor units
        "CLF": 4, "UYW": 4,
    }

    @classmethod
    def from_config(cls, pricing) -> "CurrencyPolicy":
        return cls(
            default_decimal_places=pricing.default_decimal_places,
            overrides=dict(pricing.currency_decimal_places),
        )

    def is_known(self, code: str) -> bool:
        return code in ISO_4217_CODES or code in self.overrides

    def validate(self, code: str) -> str:
        """Normalize a currency code; unknown or malformed codes are rejected."""
        if not isinstance(code, str):
            raise InvalidCurrencyError(str(code))
        normalized = code.strip().upper()
        if not _CODE_RE.match(normalized) or not self.is_known(normalized):
            raise InvalidCurrencyError(code)
        return normalized

    def decimal_places(self, code: str) -> int:
        code = self.validate(code)
        if code in self.overrides:
            return self.overrides[code]
        return self._BUILTIN.get(code, self.default_decimal_places)
