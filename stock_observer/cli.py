from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Optional

from prometheus_client import start_http_server

from .bestchange import api as bestchange_api
from .binance import api as binance_api
from .config import RATE_SERIES_CHOICES, SOURCES, BestchangeConfig, BinanceConfig, RunConfig
from .sink import MetricsSink, cycle_failures, last_success
from .tasks import run_best_effort


logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)


def run_once(cfg: RunConfig, sink: MetricsSink) -> int:
    """Run one cycle of every selected source. Sources are independent of each other."""
    tasks = {}
    if "binance" in cfg.sources:
        tasks["binance"] = lambda cancel: binance_api.collect(cfg.binance, sink, cancel=cancel)
    if "bestchange" in cfg.sources:
        tasks["bestchange"] = lambda cancel: bestchange_api.collect(cfg.bestchange, sink, cancel=cancel)

    result = run_best_effort(tasks, name="sources")
    failures = cycle_failures(sink)
    succeeded = last_success(sink)
    for source in result.results:
        succeeded.labels(source).set_to_current_time()
    for source, err in result.errors.items():
        # Previously published values stay in the registry untouched
        logger.error("%s cycle failed: %s", source, err)
        failures.labels(source).inc()
    return 0 if result.ok else 1


def run_forever(cfg: RunConfig, sink: MetricsSink, stop: threading.Event) -> None:
    while not stop.is_set():
        try:
            run_once(cfg, sink)
        except Exception:
            logger.exception("unexpected error in ingestion cycle")
        stop.wait(cfg.interval)


def _csv(value: str) -> tuple:
    return tuple(v.strip() for v in value.split(",") if v.strip())


def parse_args(argv: Optional[list[str]] = None) -> RunConfig:
    p = argparse.ArgumentParser(description="Publish Binance P2P quotes and BestChange rates as Prometheus metrics")
    p.add_argument(
        "--source",
        action="append",
        choices=SOURCES,
        help="Source to ingest; repeatable (default: all)",
    )
    p.add_argument("--assets", type=_csv, default=BinanceConfig.assets, help="Comma-separated Binance assets")
    p.add_argument("--fiats", type=_csv, default=BinanceConfig.fiats, help="Comma-separated Binance fiats")
    p.add_argument("--rows", type=int, default=BinanceConfig.rows, help="Advertisements per query")
    p.add_argument("--binance-address", default=BinanceConfig.address, help="P2P search endpoint")
    p.add_argument("--bestchange-url", default=BestchangeConfig.api_url, help="BestChange info.zip URL")
    p.add_argument(
        "--rate-series",
        choices=RATE_SERIES_CHOICES,
        default=BestchangeConfig.rate_series,
        help="Publish the give rate as exchangeRate (single) or giveRate/getRate (split)",
    )
    p.add_argument("--interval", type=float, default=RunConfig.interval, help="Seconds between cycles")
    p.add_argument("--metrics-port", type=int, default=RunConfig.metrics_port, help="Port for the /metrics endpoint")
    p.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    p.add_argument("--debug", action="store_true", help="Verbose logging")
    args = p.parse_args(argv)

    return RunConfig(
        binance=BinanceConfig(
            address=args.binance_address,
            assets=args.assets,
            fiats=args.fiats,
            rows=args.rows,
        ),
        bestchange=BestchangeConfig(api_url=args.bestchange_url, rate_series=args.rate_series),
        sources=tuple(args.source) if args.source else SOURCES,
        interval=args.interval,
        metrics_port=args.metrics_port,
        once=args.once,
        debug=args.debug,
    )


def main(argv: Optional[list[str]] = None) -> int:
    cfg = parse_args(argv)
    configure_logging(cfg.debug)
    sink = MetricsSink()
    try:
        if cfg.once:
            return run_once(cfg, sink)
        start_http_server(cfg.metrics_port, registry=sink.registry)
        logger.info("serving metrics on :%d, cycle every %.0fs", cfg.metrics_port, cfg.interval)
        stop = threading.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, lambda signum, frame: stop.set())
        run_forever(cfg, sink, stop)
        return 0
    except Exception as e:  # surface clear error message
        logger.error("%s", e)
        if cfg.debug:
            raise
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
