from __future__ import annotations

import io
import json
from decimal import Decimal
from urllib.error import HTTPError, URLError

import pytest

from stock_observer.binance import api as binance_api
from stock_observer.binance.api import QuoteQuery, TradeType, build_queries, fetch_quotes, parse_quotes
from stock_observer.config import BinanceConfig
from stock_observer.errors import CycleAbortError, DecodeError, TransportError
from stock_observer.labels import LabelNormalizer
from stock_observer.sink import MetricsSink


plain = LabelNormalizer(transliterate=str)

QUERY = QuoteQuery("USDT", "RUB", TradeType.BUY)


def _adv(price="95.5", qty="100.00", commission="0.00100000", trade_type="BUY", asset="USDT", fiat="RUB"):
    return {
        "adv": {
            "tradeType": trade_type,
            "asset": asset,
            "fiatUnit": fiat,
            "price": price,
            "tradableQuantity": qty,
            "commissionRate": commission,
        },
        "advertiser": {"nickName": "someone"},
    }


def _body(*entries) -> bytes:
    return json.dumps({"code": "000000", "data": list(entries), "success": True}).encode()


class _FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def test_build_queries():
    qs = build_queries(["USDT", "BTC"], ["RUB", "KZT"], rows=10)
    assert len(qs) == 8
    assert {q.trade_type for q in qs} == {TradeType.BUY, TradeType.SELL}
    assert len({q.key for q in qs}) == 8
    assert all(q.rows == 10 for q in qs)


def test_payload():
    assert QUERY.to_payload() == {
        "asset": "USDT",
        "fiat": "RUB",
        "merchantCheck": True,
        "page": 1,
        "publisherType": None,
        "rows": 20,
        "tradeType": "BUY",
    }


def test_parse_quotes_decimals_and_depth():
    batch = parse_quotes(_body(_adv(), _adv(price="96.1", qty="5")), QUERY)
    assert batch.skipped == 0
    assert [q.price for q in batch.quotes] == [Decimal("95.5"), Decimal("96.1")]
    q = batch.quotes[0]
    assert q.trade_type is TradeType.BUY
    assert (q.asset, q.fiat) == ("USDT", "RUB")
    assert q.commission_rate == Decimal("0.001")


def test_parse_quotes_skips_malformed_entries():
    entries = [
        _adv(),
        _adv(price="n/a"),
        _adv(qty=None),
        _adv(commission="Infinity"),
        _adv(trade_type="HOLD"),
        {"adv": None},
        "junk",
    ]
    batch = parse_quotes(_body(*entries), QUERY)
    assert len(batch.quotes) == 1
    assert batch.skipped == 6


def test_parse_quotes_falls_back_to_query_labels():
    entry = _adv()
    del entry["adv"]["fiatUnit"]
    del entry["adv"]["tradeType"]
    q = parse_quotes(_body(entry), QuoteQuery("USDT", "EUR", TradeType.SELL)).quotes[0]
    assert q.fiat == "EUR" and q.trade_type is TradeType.SELL


@pytest.mark.parametrize("body", [b"<html>", b"[]", b'{"data": null}', b'{"code": "1"}'])
def test_parse_quotes_bad_body(body):
    with pytest.raises(DecodeError):
        parse_quotes(body, QUERY)


def test_fetch_quotes_posts_json(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout):
        seen["req"], seen["timeout"] = req, timeout
        return _FakeResponse(b"{}")

    monkeypatch.setattr(binance_api, "urlopen", fake_urlopen)
    assert fetch_quotes("https://example.invalid/search", QUERY, timeout=3) == b"{}"
    req = seen["req"]
    assert req.get_method() == "POST"
    assert json.loads(req.data) == QUERY.to_payload()
    assert req.get_header("Content-type") == "application/json"
    assert seen["timeout"] == 3


def test_fetch_quotes_http_error(monkeypatch):
    def fake_urlopen(req, timeout):
        raise HTTPError(req.full_url, 403, "Forbidden", {}, io.BytesIO(b"denied"))

    monkeypatch.setattr(binance_api, "urlopen", fake_urlopen)
    with pytest.raises(TransportError, match="403.*denied"):
        fetch_quotes("https://example.invalid/search", QUERY)


def test_fetch_quotes_network_error(monkeypatch):
    def fake_urlopen(req, timeout):
        raise URLError(TimeoutError("timed out"))

    monkeypatch.setattr(binance_api, "urlopen", fake_urlopen)
    with pytest.raises(TransportError):
        fetch_quotes("https://example.invalid/search", QUERY)


def test_collect_best_effort():
    cfg = BinanceConfig(address="https://example.invalid/search", assets=("USDT", "BTC"), fiats=("RUB",))

    def fake_fetch(address, query, timeout):
        if query.asset == "BTC" and query.trade_type is TradeType.SELL:
            raise TransportError("timed out")
        return _body(_adv(trade_type=query.trade_type.value, asset=query.asset, price="2"))

    sink = MetricsSink()
    report = binance_api.collect(cfg, sink, plain, fetch=fake_fetch)
    assert (report.queries, report.failed, report.observed) == (4, 1, 3)

    reg = sink.registry
    for trade_type, asset in (("BUY", "USDT"), ("SELL", "USDT"), ("BUY", "BTC")):
        labels = {"tradeType": trade_type, "asset": asset, "fiat": "RUB"}
        for name in ("binance_price", "binance_tradableQuantity", "binance_commissionRate"):
            assert reg.get_sample_value(f"{name}_count", labels) == 1.0
    assert reg.get_sample_value("binance_price_count", {"tradeType": "SELL", "asset": "BTC", "fiat": "RUB"}) is None


def test_collect_counts_skipped_entries():
    cfg = BinanceConfig(assets=("USDT",), fiats=("RUB",))
    sink = MetricsSink()
    report = binance_api.collect(cfg, sink, plain, fetch=lambda a, q, t: _body(_adv(), _adv(price="bad")))
    assert report.failed == 0 and report.observed == 2 and report.skipped == 2
    labels = {"source": "binance", "table": "quotes"}
    assert sink.registry.get_sample_value("stock_observer_skipped_records_total", labels) == 2.0


def test_collect_all_queries_failed_aborts():
    cfg = BinanceConfig(assets=("USDT", "BTC"), fiats=("RUB",))

    def down(address, query, timeout):
        raise TransportError("timed out")

    sink = MetricsSink()
    with pytest.raises(CycleAbortError, match="all 4"):
        binance_api.collect(cfg, sink, plain, fetch=down)


def test_build_queries_drops_duplicates():
    qs = build_queries(["USDT", "USDT", "BTC"], ["RUB", "RUB"])
    assert [q.key for q in qs] == ["BUY:USDT:RUB", "SELL:USDT:RUB", "BUY:BTC:RUB", "SELL:BTC:RUB"]
