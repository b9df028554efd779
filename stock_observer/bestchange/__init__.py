"""BestChange bulk snapshot source.

Downloads the ``info.zip`` archive, parses its currency, exchanger and rate
tables in parallel, joins them and records normalized exchange rates.
"""

__all__ = [
    "api",
    "archive",
    "join",
    "tables",
]
