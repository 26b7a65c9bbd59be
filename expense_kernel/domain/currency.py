"""Currency -- supported ISO 4217 codes and precision-derived rounding."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def quantize_string(self) -> str:
        """String for Decimal.quantize() to round to this currency's precision."""
        if self.decimal_places == 0:
            return "1"
        return "0." + "0" * self.decimal_places


def _two(code: str, name: str) -> CurrencyInfo:
    return CurrencyInfo(code, 2, name)


class CurrencyRegistry:
    """Registry of currencies accepted for expense submission."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        c.code: c
        for c in (
            # Major currencies
            _two("USD", "US Dollar"),
            _two("EUR", "Euro"),
            _two("GBP", "Pound Sterling"),
            _two("INR", "Indian Rupee"),
            CurrencyInfo("JPY", 0, "Japanese Yen"),
            _two("CAD", "Canadian Dollar"),
            _two("AUD", "Australian Dollar"),
            _two("CHF", "Swiss Franc"),
            _two("CNY", "Chinese Yuan"),
            _two("AED", "UAE Dirham"),
            _two("SGD", "Singapore Dollar"),
            _two("HKD", "Hong Kong Dollar"),
            _two("NZD", "New Zealand Dollar"),
            # Europe
            _two("SEK", "Swedish Krona"),
            _two("NOK", "Norwegian Krone"),
            _two("DKK", "Danish Krone"),
            _two("PLN", "Polish Zloty"),
            _two("CZK", "Czech Koruna"),
            _two("HUF", "Hungarian Forint"),
            _two("RUB", "Russian Ruble"),
            _two("TRY", "Turkish Lira"),
            # Americas
            _two("BRL", "Brazilian Real"),
            _two("MXN", "Mexican Peso"),
            # Asia-Pacific
            CurrencyInfo("KRW", 0, "South Korean Won"),
            _two("THB", "Thai Baht"),
            _two("MYR", "Malaysian Ringgit"),
            _two("IDR", "Indonesian Rupiah"),
            _two("PHP", "Philippine Peso"),
            CurrencyInfo("VND", 0, "Vietnamese Dong"),
            # Middle East
            _two("ILS", "Israeli New Shekel"),
            _two("SAR", "Saudi Riyal"),
            _two("QAR", "Qatari Riyal"),
            CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
            CurrencyInfo("BHD", 3, "Bahraini Dinar"),
            CurrencyInfo("OMR", 3, "Omani Rial"),
            CurrencyInfo("JOD", 3, "Jordanian Dinar"),
            _two("LBP", "Lebanese Pound"),
            # Africa
            _two("ZAR", "South African Rand"),
            _two("EGP", "Egyptian Pound"),
            _two("MAD", "Moroccan Dirham"),
            CurrencyInfo("TND", 3, "Tunisian Dinar"),
            _two("DZD", "Algerian Dinar"),
            CurrencyInfo("LYD", 3, "Libyan Dinar"),
            _two("SDG", "Sudanese Pound"),
            _two("ETB", "Ethiopian Birr"),
            _two("KES", "Kenyan Shilling"),
            CurrencyInfo("UGX", 0, "Ugandan Shilling"),
            _two("TZS", "Tanzanian Shilling"),
            _two("ZMW", "Zambian Kwacha"),
            _two("BWP", "Botswana Pula"),
            _two("SZL", "Swazi Lilangeni"),
            _two("LSL", "Lesotho Loti"),
            _two("NAD", "Namibian Dollar"),
            _two("MZN", "Mozambican Metical"),
            _two("AOA", "Angolan Kwanza"),
            _two("GHS", "Ghanaian Cedi"),
            _two("NGN", "Nigerian Naira"),
            CurrencyInfo("XOF", 0, "West African CFA Franc"),
            CurrencyInfo("XAF", 0, "Central African CFA Franc"),
            _two("CDF", "Congolese Franc"),
            CurrencyInfo("RWF", 0, "Rwandan Franc"),
            CurrencyInfo("BIF", 0, "Burundian Franc"),
            CurrencyInfo("KMF", 0, "Comorian Franc"),
            CurrencyInfo("DJF", 0, "Djiboutian Franc"),
            _two("SOS", "Somali Shilling"),
            _two("ERN", "Eritrean Nakfa"),
            _two("MUR", "Mauritian Rupee"),
            _two("SCR", "Seychellois Rupee"),
            _two("SLL", "Sierra Leonean Leone"),
            _two("GMD", "Gambian Dalasi"),
            CurrencyInfo("GNF", 0, "Guinean Franc"),
            _two("LRD", "Liberian Dollar"),
            _two("CVE", "Cape Verdean Escudo"),
            _two("STN", "Sao Tome and Principe Dobra"),
        )
    }

    @classmethod
    def normalize(cls, code: str | None) -> str:
        """Trim and uppercase a code without validating it."""
        return (code or "").strip().upper()

    @classmethod
    def is_valid(cls, code: str | None) -> bool:
        """Check whether a currency code is supported."""
        return cls.normalize(code) in cls._CURRENCIES

    @classmethod
    def validate(cls, code: str | None) -> str:
        """
        Validate and normalize a currency code.

        Raises:
            ValueError: If the code is not 3 characters or not supported.
        """
        normalized = cls.normalize(code)
        if len(normalized) != 3:
            raise ValueError(
                f"Currency code must be 3 characters, got {code!r}"
            )
        if normalized not in cls._CURRENCIES:
            raise ValueError(f"Invalid ISO 4217 currency code: {code!r}")
        return normalized

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo:
        return cls._CURRENCIES[cls.validate(code)]

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES)

    @classmethod
    def round_amount(cls, amount: Decimal, code: str) -> Decimal:
        """Round an amount to the currency's minor unit (half up)."""
        info = cls.get_info(code)
        return amount.quantize(Decimal(info.quantize_string), rounding=ROUND_HALF_UP)
