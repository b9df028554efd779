from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple


BINANCE_P2P_SEARCH = "https://p2p.binance.com/bapi/c2c/v2/friendly/c2c/adv/search"
BESTCHANGE_INFO_ZIP = "http://api.bestchange.ru/info.zip"

RATE_SERIES_CHOICES = ("single", "split")
SOURCES = ("binance", "bestchange")


@dataclass(frozen=True)
class BinanceConfig:
    address: str = BINANCE_P2P_SEARCH
    assets: Tuple[str, ...] = ("USDT", "BTC")
    fiats: Tuple[str, ...] = ("RUB",)
    rows: int = 20
    page: int = 1
    merchant_check: bool = True
    timeout: float = 15.0
    max_workers: int = 8


@dataclass(frozen=True)
class BestchangeConfig:
    api_url: str = BESTCHANGE_INFO_ZIP
    timeout: float = 60.0
    # "single": give rate as exchangeRate; "split": giveRate and getRate
    rate_series: str = "single"
    encoding: str = "cp1251"

    def __post_init__(self) -> None:
        if self.rate_series not in RATE_SERIES_CHOICES:
            raise ValueError(f"rate_series must be one of {RATE_SERIES_CHOICES}, got {self.rate_series!r}")


@dataclass
class RunConfig:
    binance: BinanceConfig = field(default_factory=BinanceConfig)
    bestchange: BestchangeConfig = field(default_factory=BestchangeConfig)
    sources: Tuple[str, ...] = SOURCES
    interval: float = 60.0
    metrics_port: int = 9090
    once: bool = False
    debug: bool = False
