"""Metrics sink: an explicit prometheus_client registry passed into the pipeline.

Series families are declared lazily on first use and cached per
``(namespace, name)``. Label cardinality grows with the free-text names coming
from upstream (exchangers, currencies, assets); nothing here caps it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Sequence, Tuple, Union

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary


Number = Union[int, float, Decimal]


@dataclass(frozen=True)
class Observer:
    """Records values into one Summary family with a fixed ordered label set."""

    metric: Summary
    labelnames: Tuple[str, ...]

    def record(self, labels: Sequence[str], value: Number) -> None:
        if len(labels) != len(self.labelnames):
            raise ValueError(f"expected labels {self.labelnames}, got {tuple(labels)}")
        self.metric.labels(*labels).observe(float(value))


class MetricsSink:
    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._families: Dict[Tuple[str, str], Tuple[str, Tuple[str, ...], object]] = {}
        self._lock = threading.Lock()

    def _declare(self, kind: str, cls, namespace: str, name: str, labelnames: Sequence[str], documentation: str):
        labelnames = tuple(labelnames)
        key = (namespace, name)
        with self._lock:
            existing = self._families.get(key)
            if existing is not None:
                existing_kind, existing_labels, metric = existing
                if existing_kind != kind or existing_labels != labelnames:
                    raise ValueError(
                        f"{namespace}_{name} already declared as {existing_kind}{existing_labels}"
                    )
                return metric
            metric = cls(
                name,
                documentation or f"{namespace} {name}",
                labelnames=labelnames,
                namespace=namespace,
                registry=self.registry,
            )
            self._families[key] = (kind, labelnames, metric)
            return metric

    def summary(self, namespace: str, name: str, labelnames: Sequence[str], documentation: str = "") -> Observer:
        metric = self._declare("summary", Summary, namespace, name, labelnames, documentation)
        return Observer(metric, tuple(labelnames))

    def counter(self, namespace: str, name: str, labelnames: Sequence[str], documentation: str = "") -> Counter:
        return self._declare("counter", Counter, namespace, name, labelnames, documentation)

    def gauge(self, namespace: str, name: str, labelnames: Sequence[str], documentation: str = "") -> Gauge:
        return self._declare("gauge", Gauge, namespace, name, labelnames, documentation)


BOOKKEEPING_NAMESPACE = "stock_observer"


def skipped_records(sink: MetricsSink) -> Counter:
    return sink.counter(
        BOOKKEEPING_NAMESPACE,
        "skipped_records",
        ("source", "table"),
        "Raw records skipped because they could not be parsed",
    )


def dropped_records(sink: MetricsSink) -> Counter:
    return sink.counter(
        BOOKKEEPING_NAMESPACE,
        "dropped_records",
        ("source",),
        "Parsed records dropped because a referenced id did not resolve",
    )


def cycle_failures(sink: MetricsSink) -> Counter:
    return sink.counter(
        BOOKKEEPING_NAMESPACE,
        "cycle_failures",
        ("source",),
        "Ingestion cycles that failed or were aborted",
    )


def last_success(sink: MetricsSink) -> Gauge:
    return sink.gauge(
        BOOKKEEPING_NAMESPACE,
        "last_success_timestamp_seconds",
        ("source",),
        "Unix time of the last fully successful cycle",
    )
