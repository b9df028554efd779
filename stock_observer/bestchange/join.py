from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Mapping, Sequence

from ..errors import JoinMissError
from .tables import RawExchangeRate


@dataclass(frozen=True)
class ExchangeRate:
    exchanger_name: str
    source_currency_name: str
    target_currency_name: str
    give_rate: Decimal
    get_rate: Decimal


@dataclass
class JoinResult:
    rates: List[ExchangeRate] = field(default_factory=list)
    misses: List[JoinMissError] = field(default_factory=list)

    @property
    def dropped(self) -> int:
        return len(self.misses)


def join_rates(
    rates: Sequence[RawExchangeRate],
    exchangers: Mapping[int, str],
    currencies: Mapping[int, str],
) -> JoinResult:
    """Resolve exchanger and currency ids of each raw rate into names.

    All three inputs must come from the same snapshot. Output order follows
    ``rates``; a record with any unresolved id is dropped and reported in
    ``misses`` instead of failing the join.
    """
    result = JoinResult()
    for raw in rates:
        exchanger = exchangers.get(raw.exchanger_id)
        if exchanger is None:
            result.misses.append(JoinMissError("exchanger", raw.exchanger_id, raw))
            continue
        source = currencies.get(raw.source_currency_id)
        if source is None:
            result.misses.append(JoinMissError("currency", raw.source_currency_id, raw))
            continue
        target = currencies.get(raw.target_currency_id)
        if target is None:
            result.misses.append(JoinMissError("currency", raw.target_currency_id, raw))
            continue
        result.rates.append(ExchangeRate(exchanger, source, target, raw.give_rate, raw.get_rate))
    return result
