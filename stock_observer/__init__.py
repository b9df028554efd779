"""Stock Observer - periodic exchange rate ingestion into Prometheus metrics.

Provides:
- Binance P2P quote feed (best-effort per query)
- BestChange snapshot feed (fail-fast across its three joined tables)
- Label normalization and an explicit metrics sink
"""

__version__ = "0.1.0"

# Expose main submodules
from . import bestchange
from . import binance

__all__ = ["bestchange", "binance", "__version__"]
