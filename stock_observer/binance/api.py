from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..config import BinanceConfig
from ..errors import CycleAbortError, DecodeError, TransportError
from ..labels import LabelNormalizer, normalize
from ..sink import MetricsSink, Observer, skipped_records
from ..tasks import check_cancelled, run_best_effort


logger = logging.getLogger(__name__)

SOURCE = "binance"
NAMESPACE = "binance"
QUOTE_LABELS = ("tradeType", "asset", "fiat")
USER_AGENT = "stock-observer/1.0"


class TradeType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class QuoteQuery:
    asset: str
    fiat: str
    trade_type: TradeType
    merchant_check: bool = True
    page: int = 1
    rows: int = 20

    @property
    def key(self) -> str:
        return f"{self.trade_type.value}:{self.asset}:{self.fiat}"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "asset": self.asset,
            "fiat": self.fiat,
            "merchantCheck": self.merchant_check,
            "page": self.page,
            "publisherType": None,
            "rows": self.rows,
            "tradeType": self.trade_type.value,
        }


@dataclass(frozen=True)
class MarketQuote:
    trade_type: TradeType
    asset: str
    fiat: str
    price: Decimal
    tradable_quantity: Decimal
    commission_rate: Decimal


@dataclass
class QuoteBatch:
    query: QuoteQuery
    quotes: List[MarketQuote] = field(default_factory=list)
    skipped: int = 0


@dataclass
class BatchReport:
    queries: int = 0
    failed: int = 0
    observed: int = 0
    skipped: int = 0

    def summary(self) -> str:
        return f"queries={self.queries} failed={self.failed} observed={self.observed} skipped={self.skipped}"


def build_queries(
    assets: Iterable[str],
    fiats: Iterable[str],
    rows: int = 20,
    page: int = 1,
    merchant_check: bool = True,
) -> List[QuoteQuery]:
    """One BUY and one SELL query per distinct (fiat, asset) pair, in first-seen order."""
    assets = list(dict.fromkeys(assets))
    fiats = list(dict.fromkeys(fiats))
    return [
        QuoteQuery(asset, fiat, trade_type, merchant_check=merchant_check, page=page, rows=rows)
        for fiat in fiats
        for asset in assets
        for trade_type in (TradeType.BUY, TradeType.SELL)
    ]


def fetch_quotes(address: str, query: QuoteQuery, timeout: float = 15.0) -> bytes:
    """POST ``query`` to the P2P advertisement search and return the raw body."""
    body = json.dumps(query.to_payload()).encode("utf-8")
    req = Request(
        address,
        data=body,
        method="POST",
        headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
    )
    try:
        with urlopen(req, timeout=timeout) as resp:
            return resp.read()
    except HTTPError as e:
        detail = e.read().decode("utf-8", "replace") if e.fp is not None else ""
        raise TransportError(f"unsuccessful request, status code {e.code}, response body: {detail}") from e
    except (URLError, OSError) as e:
        raise TransportError(f"could not send a request: {e}") from e


def _decimal(value: Any) -> Decimal:
    if not isinstance(value, str):
        raise DecodeError(f"expected string-encoded number, got {value!r}")
    try:
        d = Decimal(value)
    except InvalidOperation as e:
        raise DecodeError(f"not a number: {value!r}") from e
    if not d.is_finite():
        raise DecodeError(f"not a finite number: {value!r}")
    return d


def _quote_from_adv(adv: Any, query: QuoteQuery) -> MarketQuote:
    if not isinstance(adv, dict):
        raise DecodeError("missing adv object")
    try:
        trade_type = TradeType(adv.get("tradeType") or query.trade_type.value)
    except ValueError as e:
        raise DecodeError(f"unknown tradeType {adv.get('tradeType')!r}") from e
    return MarketQuote(
        trade_type=trade_type,
        asset=adv.get("asset") or query.asset,
        fiat=adv.get("fiatUnit") or query.fiat,
        price=_decimal(adv.get("price")),
        tradable_quantity=_decimal(adv.get("tradableQuantity")),
        commission_rate=_decimal(adv.get("commissionRate")),
    )


def parse_quotes(body: bytes, query: QuoteQuery) -> QuoteBatch:
    """Decode a search response into quotes.

    A body that is not a JSON object with a ``data`` list fails the query; an
    entry with a malformed numeric field is skipped and counted.
    """
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise DecodeError(f"could not unmarshal response body: {e}") from e
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, list):
        raise DecodeError("response has no data list")

    batch = QuoteBatch(query)
    for entry in data:
        try:
            adv = entry.get("adv") if isinstance(entry, dict) else None
            batch.quotes.append(_quote_from_adv(adv, query))
        except DecodeError as e:
            logger.debug("%s: skipping advertisement: %s", query.key, e)
            batch.skipped += 1
    return batch


@dataclass(frozen=True)
class QuoteObservers:
    price: Observer
    tradable_quantity: Observer
    commission_rate: Observer

    @classmethod
    def register(cls, sink: MetricsSink) -> "QuoteObservers":
        return cls(
            price=sink.summary(NAMESPACE, "price", QUOTE_LABELS),
            tradable_quantity=sink.summary(NAMESPACE, "tradableQuantity", QUOTE_LABELS),
            commission_rate=sink.summary(NAMESPACE, "commissionRate", QUOTE_LABELS),
        )

    def record(self, quote: MarketQuote, normalizer: LabelNormalizer = normalize) -> None:
        labels = normalizer.labels(quote.trade_type.value, quote.asset, quote.fiat)
        self.price.record(labels, quote.price)
        self.tradable_quantity.record(labels, quote.tradable_quantity)
        self.commission_rate.record(labels, quote.commission_rate)


Fetcher = Callable[[str, QuoteQuery, float], bytes]


def collect(
    cfg: BinanceConfig,
    sink: MetricsSink,
    normalizer: LabelNormalizer = normalize,
    fetch: Optional[Fetcher] = None,
    cancel: Optional[threading.Event] = None,
) -> BatchReport:
    """Query every (asset, fiat, tradeType) triple in parallel and record the results.

    Each query is an independent observation: a failed query is logged and
    only its own quotes are missing from this cycle.
    Only when every query fails is the whole cycle reported as aborted.
    """
    logger.info("binance data gathering started")
    fetch = fetch or fetch_quotes
    if cancel is not None:
        check_cancelled(cancel)
    observers = QuoteObservers.register(sink)
    skipped_counter = skipped_records(sink)
    queries = build_queries(cfg.assets, cfg.fiats, cfg.rows, cfg.page, cfg.merchant_check)

    def make_task(query: QuoteQuery):
        def task(cancel: threading.Event) -> QuoteBatch:
            check_cancelled(cancel)
            batch = parse_quotes(fetch(cfg.address, query, cfg.timeout), query)
            for quote in batch.quotes:
                observers.record(quote, normalizer)
            if batch.skipped:
                skipped_counter.labels(SOURCE, "quotes").inc(batch.skipped)
            return batch

        return task

    result = run_best_effort(
        {q.key: make_task(q) for q in queries},
        max_workers=cfg.max_workers,
        name="binance-quotes",
    )
    report = BatchReport(
        queries=len(queries),
        failed=len(result.errors),
        observed=sum(len(b.quotes) for b in result.results.values()),
        skipped=sum(b.skipped for b in result.results.values()),
    )
    if queries and not result.results:
        raise CycleAbortError(f"all {len(queries)} binance queries failed: {report.summary()}")
    if result.ok:
        logger.info("binance api data is successfully gathered: %s", report.summary())
    else:
        logger.warning("binance api data gathered with errors: %s", report.summary())
    return report
