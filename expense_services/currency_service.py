"""
Currency conversion for expense submission.

Responsibility:
    Convert a submitted amount into the tenant's base currency exactly
    once, using exchange rates fetched over HTTP and held in an explicit,
    injected TTL cache.

Architecture position:
    Services -- imperative shell around an external rate API.

Invariants enforced:
    - Same-currency conversion is exact with rate 1 and makes no request.
    - The converted amount is rounded half-up to the target currency's
      minor units; the rate is kept unrounded as returned by the source.
    - The cache is an object owned by whoever builds the converter.  There
      is no process-global rate table.

Failure modes:
    - CurrencyConversionError for transport errors, non-2xx responses,
      malformed payloads, or a pair the source does not quote.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx

from expense_kernel.domain.currency import CurrencyRegistry
from expense_kernel.domain.expense import CurrencyConversion
from expense_kernel.exceptions import CurrencyConversionError
from expense_kernel.logging_config import get_logger

logger = get_logger("services.currency")

DEFAULT_API_BASE = "https://api.exchangerate-api.com/v4/latest"
DEFAULT_CACHE_TTL_SECONDS = 3600


class RateSource(Protocol):
    """Anything that can return the rate table for a base currency."""

    def fetch_rates(self, base_currency: str) -> dict[str, Decimal]:
        ...


@dataclass(frozen=True)
class _CacheEntry:
    rates: dict[str, Decimal]
    fetched_at: float


class ExchangeRateCache:
    """Rate tables keyed by base currency, expiring after ``ttl_seconds``.

    Thread-safe.  ``monotonic`` is injectable so tests can move time.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._monotonic = monotonic
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, base_currency: str) -> dict[str, Decimal] | None:
        with self._lock:
            entry = self._entries.get(base_currency)
            if entry is None:
                return None
            if self._monotonic() - entry.fetched_at >= self.ttl_seconds:
                del self._entries[base_currency]
                return None
            return entry.rates

    def put(self, base_currency: str, rates: dict[str, Decimal]) -> None:
        with self._lock:
            self._entries[base_currency] = _CacheEntry(
                rates=dict(rates), fetched_at=self._monotonic(),
            )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class HttpRateSource:
    """Fetches ``GET {api_base}/{base}`` and reads its ``rates`` map."""

    def __init__(
        self,
        api_base: str = DEFAULT_API_BASE,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.api_base = api_base.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def fetch_rates(self, base_currency: str) -> dict[str, Decimal]:
        url = f"{self.api_base}/{base_currency}"
        try:
            response = self._client.get(url)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise CurrencyConversionError(base_currency, "*", str(exc)) from exc
        except ValueError as exc:
            raise CurrencyConversionError(
                base_currency, "*", "Rate response is not valid JSON",
            ) from exc

        raw_rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(raw_rates, dict):
            raise CurrencyConversionError(
                base_currency, "*", "Rate response has no rates table",
            )

        rates: dict[str, Decimal] = {}
        for code, value in raw_rates.items():
            try:
                # str() first so float quotes keep their printed digits
                rates[str(code).upper()] = Decimal(str(value))
            except InvalidOperation:
                logger.warning(
                    "exchange_rate_unparseable",
                    extra={"base_currency": base_currency, "currency": code},
                )
        logger.info(
            "exchange_rates_fetched",
            extra={"base_currency": base_currency, "rate_count": len(rates)},
        )
        return rates

    def close(self) -> None:
        self._client.close()


class CurrencyConverter:
    """Converts amounts between currencies through a cached rate source."""

    def __init__(self, source: RateSource, cache: ExchangeRateCache | None = None):
        self._source = source
        self._cache = cache if cache is not None else ExchangeRateCache()

    def get_rates(self, base_currency: str) -> dict[str, Decimal]:
        base = CurrencyRegistry.normalize(base_currency)
        rates = self._cache.get(base)
        if rates is not None:
            logger.debug("exchange_rate_cache_hit", extra={"base_currency": base})
            return rates
        rates = self._source.fetch_rates(base)
        self._cache.put(base, rates)
        return rates

    def convert(
        self, amount: Decimal, from_currency: str, to_currency: str,
    ) -> CurrencyConversion:
        """
        Convert ``amount`` from one currency into another.

        Raises:
            CurrencyConversionError: Rates unavailable or pair not quoted.
        """
        source = CurrencyRegistry.normalize(from_currency)
        target = CurrencyRegistry.normalize(to_currency)

        if source == target:
            return CurrencyConversion(
                original_amount=amount,
                original_currency=source,
                converted_amount=CurrencyRegistry.round_amount(amount, target),
                converted_currency=target,
                rate=Decimal("1"),
            )

        try:
            rates = self.get_rates(source)
        except CurrencyConversionError as exc:
            raise CurrencyConversionError(source, target, exc.reason) from exc

        rate = rates.get(target)
        if rate is None:
            raise CurrencyConversionError(
                source, target, f"Currency {target} not supported",
            )

        converted = CurrencyRegistry.round_amount(amount * rate, target)
        logger.info(
            "currency_converted",
            extra={
                "from_currency": source,
                "to_currency": target,
                "rate": rate,
                "original_amount": amount,
                "converted_amount": converted,
            },
        )
        return CurrencyConversion(
            original_amount=amount,
            original_currency=source,
            converted_amount=converted,
            converted_currency=target,
            rate=rate,
        )
