"""Parsers for the three BestChange snapshot tables.

Files are semicolon-delimited without header or quoting, cp1251 encoded:

  bm_cy.dat     id;position;name;...
  bm_exch.dat   id;name;...
  bm_rates.dat  give_id;get_id;exchanger_id;give_rate;get_rate;reserve;...

A malformed line is skipped and counted; it never aborts the rest of the file.
"""

from __future__ import annotations

import csv
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional, Tuple, Union

import pandas as pd
from pandas.errors import EmptyDataError, ParserError

from ..errors import DecodeError


Source = Union[str, Path, BinaryIO]

DEFAULT_ENCODING = "cp1251"
DELIMITER = ";"

_INT_PATTERN = re.compile(r"[+-]?\d+")


@dataclass(frozen=True)
class TableLayout:
    """Column positions of one table; columns past the last used one are ignored."""

    name: str
    id_columns: Dict[str, int]
    text_columns: Dict[str, int] = field(default_factory=dict)
    decimal_columns: Dict[str, int] = field(default_factory=dict)

    @property
    def width(self) -> int:
        cols = {**self.id_columns, **self.text_columns, **self.decimal_columns}
        return max(cols.values()) + 1


CURRENCIES = TableLayout("currencies", id_columns={"id": 0}, text_columns={"name": 2})
EXCHANGERS = TableLayout("exchangers", id_columns={"id": 0}, text_columns={"name": 1})
RATES = TableLayout(
    "rates",
    id_columns={"source_currency_id": 0, "target_currency_id": 1, "exchanger_id": 2},
    decimal_columns={"give_rate": 3, "get_rate": 4},
)


@dataclass(frozen=True)
class RawExchangeRate:
    exchanger_id: int
    source_currency_id: int
    target_currency_id: int
    give_rate: Decimal
    get_rate: Decimal


@dataclass(frozen=True)
class IdNameTable:
    names: Dict[int, str]
    skipped: int = 0

    def __len__(self) -> int:
        return len(self.names)


@dataclass(frozen=True)
class RateTable:
    rates: List[RawExchangeRate]
    skipped: int = 0

    def __len__(self) -> int:
        return len(self.rates)


def _to_int(value: object) -> Optional[int]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return int(value) if _INT_PATTERN.fullmatch(value) else None


def _to_text(value: object) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _to_decimal(value: object) -> Optional[Decimal]:
    if not isinstance(value, str):
        return None
    try:
        d = Decimal(value.strip())
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


def _convert(raw: pd.Series, fn: Callable[[object], object]) -> pd.Series:
    # object dtype keeps Python ints/Decimals intact instead of coercing to float
    return pd.Series([fn(v) for v in raw], index=raw.index, dtype=object)


def _read_raw(source: Source, width: int, encoding: str) -> pd.DataFrame:
    try:
        return pd.read_csv(
            source,
            sep=DELIMITER,
            header=None,
            names=list(range(width)),
            index_col=False,
            dtype=str,
            na_filter=False,
            quoting=csv.QUOTE_NONE,
            encoding=encoding,
            encoding_errors="replace",
            engine="python",
            skip_blank_lines=True,
            # Trailing columns past the layout are ignored; short lines are padded with NaN
            on_bad_lines=lambda fields: fields[:width],
        )
    except EmptyDataError:
        return pd.DataFrame(columns=list(range(width)))
    except (OSError, ParserError) as e:
        raise DecodeError(f"could not read table {source}: {e}") from e


def read_table(source: Source, layout: TableLayout, encoding: str = DEFAULT_ENCODING) -> Tuple[pd.DataFrame, int]:
    """Read ``source`` into a frame with the layout's named, typed columns.

    Returns ``(frame, skipped)`` where ``frame`` only contains valid rows, in
    file order, and ``skipped`` counts the malformed lines.
    """
    raw = _read_raw(source, layout.width, encoding)

    converters = [(name, pos, _to_int) for name, pos in layout.id_columns.items()]
    converters += [(name, pos, _to_text) for name, pos in layout.text_columns.items()]
    converters += [(name, pos, _to_decimal) for name, pos in layout.decimal_columns.items()]
    if raw.empty:
        return pd.DataFrame(columns=[name for name, _, _ in converters]), 0

    frame = pd.DataFrame(index=raw.index)
    valid = pd.Series(True, index=raw.index)
    for name, pos, fn in converters:
        col = _convert(raw[pos], fn)
        valid &= col.notna()
        frame[name] = col

    frame = frame[valid].reset_index(drop=True)
    return frame, int((~valid).sum())


def _id_name_table(source: Source, layout: TableLayout, encoding: str) -> IdNameTable:
    frame, skipped = read_table(source, layout, encoding)
    # Repeated ids: the last occurrence wins, earlier ones count as skipped
    dupes = frame.duplicated(subset="id", keep="last")
    frame = frame[~dupes]
    names = {int(i): str(n) for i, n in zip(frame["id"], frame["name"])}
    return IdNameTable(names, skipped + int(dupes.sum()))


def parse_currencies(source: Source, encoding: str = DEFAULT_ENCODING) -> IdNameTable:
    return _id_name_table(source, CURRENCIES, encoding)


def parse_exchangers(source: Source, encoding: str = DEFAULT_ENCODING) -> IdNameTable:
    return _id_name_table(source, EXCHANGERS, encoding)


def parse_rates(source: Source, encoding: str = DEFAULT_ENCODING) -> RateTable:
    frame, skipped = read_table(source, RATES, encoding)
    rates = [
        RawExchangeRate(
            exchanger_id=int(row.exchanger_id),
            source_currency_id=int(row.source_currency_id),
            target_currency_id=int(row.target_currency_id),
            give_rate=row.give_rate,
            get_rate=row.get_rate,
        )
        for row in frame.itertuples(index=False)
    ]
    return RateTable(rates, skipped)
