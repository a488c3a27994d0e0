"""Exchange rate sources backed by public HTTP providers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, Union

import httpx

from fxledger.rates import (
    SUPPORTED_CURRENCIES,
    RateError,
    RateFetchFailed,
    RateTable,
    normalize,
)

logger = logging.getLogger(__name__)

EXCHANGERATE_HOST_URL = "https://api.exchangerate.host"
FRANKFURTER_URL = "https://api.frankfurter.app"
DEFAULT_TIMEOUT_SECONDS = 8.0


@dataclass(frozen=True)
class RateFetchOk:
    table: RateTable
    provider: str


@dataclass(frozen=True)
class RateFetchFailure:
    reason: str


RateFetchResult = Union[RateFetchOk, RateFetchFailure]


class RateProvider(Protocol):
    name: str

    def request(self, base: str, symbols: Sequence[str]) -> tuple[str, dict[str, str]]:
        ...


@dataclass(frozen=True)
class ExchangeRateHostProvider:
    """exchangerate.host ``/latest`` endpoint, keyed by ``base`` and ``symbols``."""

    access_key: str | None = None
    base_url: str = EXCHANGERATE_HOST_URL
    name: str = "exchangerate.host"

    def request(self, base: str, symbols: Sequence[str]) -> tuple[str, dict[str, str]]:
        params = {"base": base, "symbols": ",".join(symbols)}
        if self.access_key:
            params["access_key"] = self.access_key
        return f"{self.base_url}/latest", params


@dataclass(frozen=True)
class FrankfurterProvider:
    """Frankfurter (ECB data) ``/latest`` endpoint, keyed by ``from`` and ``to``."""

    base_url: str = FRANKFURTER_URL
    name: str = "frankfurter"

    def request(self, base: str, symbols: Sequence[str]) -> tuple[str, dict[str, str]]:
        wanted = [symbol for symbol in symbols if symbol != base]
        return f"{self.base_url}/latest", {"from": base, "to": ",".join(wanted)}


def default_providers(
    exchangerate_host_key: str | None = None,
    exchangerate_host_url: str = EXCHANGERATE_HOST_URL,
    frankfurter_url: str = FRANKFURTER_URL,
) -> list[RateProvider]:
    """exchangerate.host only takes part when an access key is configured."""
    providers: list[RateProvider] = []
    if exchangerate_host_key:
        providers.append(
            ExchangeRateHostProvider(
                access_key=exchangerate_host_key, base_url=exchangerate_host_url
            )
        )
    providers.append(FrankfurterProvider(base_url=frankfurter_url))
    return providers


def fallback_table(base: str) -> RateTable:
    return RateTable.defaults(base)


def parse_rates_payload(payload: Any, base: str) -> RateTable:
    """Turn a provider JSON body into a table relative to ``base``.

    Raises RateFetchFailed when the body does not carry a usable ``rates`` mapping.
    """
    if not isinstance(payload, Mapping):
        raise RateFetchFailed("Rate provider response is not a JSON object")
    rates = payload.get("rates")
    if not isinstance(rates, Mapping):
        raise RateFetchFailed("Rate provider response missing rates")

    echoed_base = payload.get("base")
    if not isinstance(echoed_base, str) or not echoed_base.strip():
        echoed_base = base
    present = {code: value for code, value in rates.items() if value is not None}
    try:
        table = RateTable.from_mapping({**present, "base": echoed_base})
        return normalize(table, base)
    except RateError as exc:
        raise RateFetchFailed(f"Rate provider returned invalid rates: {exc}") from exc


class RateSource:
    """Fetch rate tables from upstream providers with a built-in fallback.

    ``fetch`` never raises for provider problems; callers that need to know
    whether live rates were used call ``fetch_result`` instead.
    """

    def __init__(
        self,
        providers: Sequence[RateProvider] | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        symbols: Sequence[str] = SUPPORTED_CURRENCIES,
    ) -> None:
        self.providers = list(providers) if providers is not None else default_providers()
        self.symbols = tuple(symbols)
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "RateSource":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, base: str) -> RateTable:
        base = base.strip().upper()
        result = await self.fetch_result(base)
        if isinstance(result, RateFetchOk):
            return result.table
        logger.warning(f"Using built-in rates for {base}: {result.reason}")
        return fallback_table(base)

    async def fetch_result(self, base: str) -> RateFetchResult:
        base = base.strip().upper()
        reasons: list[str] = []
        for provider in self.providers:
            try:
                table = await self._fetch_from(provider, base)
            except RateFetchFailed as exc:
                logger.warning(f"Rate provider {provider.name} failed for {base}: {exc}")
                reasons.append(f"{provider.name}: {exc}")
                continue
            return RateFetchOk(table=table, provider=provider.name)
        return RateFetchFailure(reason="; ".join(reasons) or "No rate providers configured")

    async def _fetch_from(self, provider: RateProvider, base: str) -> RateTable:
        url, params = provider.request(base, self.symbols)
        client = await self._get_client()
        try:
            response = await client.get(url, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise RateFetchFailed(f"{provider.name} unavailable: {exc}") from exc
        except ValueError as exc:
            raise RateFetchFailed(f"{provider.name} returned malformed JSON") from exc
        return parse_rates_payload(payload, base)
