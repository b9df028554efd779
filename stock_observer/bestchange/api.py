from __future__ import annotations

import logging
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..config import BestchangeConfig
from ..labels import LabelNormalizer, normalize
from ..sink import MetricsSink, Observer, dropped_records, skipped_records
from ..tasks import check_cancelled, run_fail_fast
from . import tables
from .archive import SnapshotFiles, download_archive, unpack_archive
from .join import ExchangeRate, JoinResult, join_rates


logger = logging.getLogger(__name__)

SOURCE = "bestchange"
NAMESPACE = "bestchange"
RATE_LABELS = ("exchanger", "source", "target")


@dataclass
class CycleReport:
    observed: int = 0
    dropped: int = 0
    skipped: Dict[str, int] = field(default_factory=dict)

    def summary(self) -> str:
        skipped = " ".join(f"{k}={v}" for k, v in sorted(self.skipped.items()))
        return f"observed={self.observed} dropped={self.dropped} skipped[{skipped}]"


def rate_observers(sink: MetricsSink, rate_series: str = "single") -> List[Tuple[Observer, Callable[[ExchangeRate], object]]]:
    """Series to record each joined rate into, paired with the value they take."""
    if rate_series == "single":
        return [(sink.summary(NAMESPACE, "exchangeRate", RATE_LABELS), lambda r: r.give_rate)]
    if rate_series == "split":
        return [
            (sink.summary(NAMESPACE, "giveRate", RATE_LABELS), lambda r: r.give_rate),
            (sink.summary(NAMESPACE, "getRate", RATE_LABELS), lambda r: r.get_rate),
        ]
    raise ValueError(f"unknown rate_series {rate_series!r}")


def parse_snapshot(files: SnapshotFiles, encoding: str = tables.DEFAULT_ENCODING) -> Dict[str, object]:
    """Parse the three tables in parallel; any failure aborts the whole snapshot."""
    return run_fail_fast(
        {
            "currencies": lambda cancel: tables.parse_currencies(files.currencies, encoding),
            "exchangers": lambda cancel: tables.parse_exchangers(files.exchangers, encoding),
            "rates": lambda cancel: tables.parse_rates(files.rates, encoding),
        },
        name="bestchange-parse",
    )


def observe_snapshot(
    files: SnapshotFiles,
    sink: MetricsSink,
    normalizer: LabelNormalizer = normalize,
    rate_series: str = "single",
    encoding: str = tables.DEFAULT_ENCODING,
    joiner: Callable[..., JoinResult] = join_rates,
) -> CycleReport:
    observers = rate_observers(sink, rate_series)
    parsed = parse_snapshot(files, encoding)
    currencies: tables.IdNameTable = parsed["currencies"]  # type: ignore[assignment]
    exchangers: tables.IdNameTable = parsed["exchangers"]  # type: ignore[assignment]
    raw_rates: tables.RateTable = parsed["rates"]  # type: ignore[assignment]

    report = CycleReport()
    skipped_counter = skipped_records(sink)
    for table, parsed_table in (("currencies", currencies), ("exchangers", exchangers), ("rates", raw_rates)):
        report.skipped[table] = parsed_table.skipped
        if parsed_table.skipped:
            logger.warning("skipped %d malformed %s lines", parsed_table.skipped, table)
            skipped_counter.labels(SOURCE, table).inc(parsed_table.skipped)

    joined = joiner(raw_rates.rates, exchangers.names, currencies.names)
    report.dropped = joined.dropped
    if joined.dropped:
        dropped_records(sink).labels(SOURCE).inc(joined.dropped)
        logger.info("dropped %d rates with unresolved ids (first: %s)", joined.dropped, joined.misses[0])

    for rate in joined.rates:
        labels = normalizer.labels(rate.exchanger_name, rate.source_currency_name, rate.target_currency_name)
        for observer, value in observers:
            observer.record(labels, value(rate))
        report.observed += 1
    return report


def collect(
    cfg: BestchangeConfig,
    sink: MetricsSink,
    normalizer: LabelNormalizer = normalize,
    workdir: Optional[Path] = None,
    cancel: Optional[threading.Event] = None,
) -> CycleReport:
    """Run one snapshot cycle: download, unpack, parse, join, observe.

    Nothing is kept between cycles; the archive lives in a temporary directory.
    """
    if cancel is not None:
        check_cancelled(cancel)
    with tempfile.TemporaryDirectory(prefix="bestchange_", dir=workdir) as tmp:
        tmp_dir = Path(tmp)
        zip_path = download_archive(cfg.api_url, tmp_dir, timeout=cfg.timeout)
        files = unpack_archive(zip_path, tmp_dir / "tables")
        report = observe_snapshot(files, sink, normalizer, cfg.rate_series, cfg.encoding)
    logger.info("bestchange api data is successfully gathered: %s", report.summary())
    return report
