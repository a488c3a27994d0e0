from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Iterator, Mapping

SUPPORTED_CURRENCIES: tuple[str, ...] = ("PLN", "USD", "EUR", "DKK", "GBP")

FALLBACK_ANCHOR = "EUR"

# Units of each currency per 1 EUR.
DEFAULT_RATES: Mapping[str, Decimal] = MappingProxyType(
    {
        "EUR": Decimal("1"),
        "USD": Decimal("1.1"),
        "PLN": Decimal("4.6"),
        "DKK": Decimal("7.44"),
        "GBP": Decimal("0.86"),
    }
)

ONE = Decimal("1")
RELATIVE_TOLERANCE = Decimal("1e-9")


class RateError(Exception):
    """Base exception for rate table problems."""


class InvalidRateValue(RateError, ValueError):
    """A rate entry could not be coerced to a finite positive number."""


class IncompleteRateTable(RateError):
    """A rate table lacks the display base or a second supported currency."""


class RateFetchFailed(RateError):
    """An upstream rate provider could not deliver a usable table."""


@dataclass(frozen=True)
class RateTable:
    """Exchange rates relative to ``base``.

    ``rates[X]`` is how many units of X equal one unit of ``base``. Tables are
    never changed after construction; rebasing returns a new table.
    """

    rates: Mapping[str, Decimal] = field(default_factory=dict)
    base: str | None = None

    def __post_init__(self) -> None:
        rates = {
            _clean_code(code): coerce_rate(code, value) for code, value in self.rates.items()
        }
        object.__setattr__(self, "rates", MappingProxyType(rates))
        if self.base is not None:
            object.__setattr__(self, "base", _clean_code(self.base))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "RateTable":
        """Build a table from a provider-style dict with an optional ``base`` key.

        Values are coerced but not rebased.
        """
        base = raw.get("base")
        rates = {code: value for code, value in raw.items() if code != "base"}
        return cls(rates=rates, base=base or None)

    @classmethod
    def defaults(cls, base: str = FALLBACK_ANCHOR) -> "RateTable":
        return normalize(cls(rates=DEFAULT_RATES, base=FALLBACK_ANCHOR), base)

    def get(self, currency: str | None, default: Decimal | None = None) -> Decimal | None:
        if not currency:
            return default
        return self.rates.get(_clean_code(currency), default)

    def __getitem__(self, currency: str) -> Decimal:
        return self.rates[_clean_code(currency)]

    def __contains__(self, currency: object) -> bool:
        return isinstance(currency, str) and _clean_code(currency) in self.rates

    def __iter__(self) -> Iterator[str]:
        return iter(self.rates)

    def __len__(self) -> int:
        return len(self.rates)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.rates)
        if self.base is not None:
            payload["base"] = self.base
        return payload

    def equivalent(self, other: "RateTable") -> bool:
        """True when both tables agree on every shared currency after rebasing."""
        shared = set(self.rates) & set(other.rates)
        if not shared:
            return False
        pivot = self.base if self.base in shared else sorted(shared)[0]
        left = normalize(self, pivot)
        right = normalize(other, pivot)
        for code in shared:
            if not _close(left.rates[code], right.rates[code]):
                return False
        return True


def normalize(table: RateTable | Mapping[str, Any], target_base: str) -> RateTable:
    """Rebase ``table`` so that its entries are units per one ``target_base``."""
    if not isinstance(table, RateTable):
        table = RateTable.from_mapping(table)
    target = _clean_code(target_base)
    result = dict(table.rates)

    if table.base is not None and table.base != target:
        divisor = result.get(target)
        if divisor is None:
            divisor = result.get(table.base, ONE)
        result = {code: value / divisor for code, value in result.items()}
        result.setdefault(target, ONE)
    elif table.base == target:
        result[target] = ONE
    else:
        # No declared base: the values are assumed to be relative to target.
        result.setdefault(target, ONE)

    return RateTable(rates=result, base=target)


def coerce_rate(code: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise InvalidRateValue(f"Rate for {code} is not numeric: {value!r}")
    try:
        rate = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise InvalidRateValue(f"Rate for {code} is not numeric: {value!r}") from exc
    if not rate.is_finite():
        raise InvalidRateValue(f"Rate for {code} is not finite: {value!r}")
    if rate <= 0:
        raise InvalidRateValue(f"Rate for {code} must be positive: {value!r}")
    return rate


def validate_table(
    table: RateTable,
    target_base: str,
    supported: tuple[str, ...] = SUPPORTED_CURRENCIES,
) -> RateTable:
    """Raise IncompleteRateTable unless the target and one other supported code are usable."""
    target = _clean_code(target_base)
    if not _usable(table.get(target)):
        raise IncompleteRateTable(f"Rate table is missing base currency {target}")
    others = [code for code in supported if code != target and _usable(table.get(code))]
    if not others:
        raise IncompleteRateTable(
            f"Rate table for {target} has no other supported currency"
        )
    return table


def _usable(value: Decimal | None) -> bool:
    return value is not None and value.is_finite() and value > 0


def _close(left: Decimal, right: Decimal) -> bool:
    scale = max(abs(left), abs(right), ONE)
    return abs(left - right) <= RELATIVE_TOLERANCE * scale


def _clean_code(code: str) -> str:
    return str(code).strip().upper()
