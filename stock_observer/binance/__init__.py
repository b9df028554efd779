"""Binance P2P advertisement quotes.

Queries the P2P search for every configured (asset, fiat, trade type) and
records price, tradable quantity and commission rate of each advertisement.
"""

__all__ = [
    "api",
]
