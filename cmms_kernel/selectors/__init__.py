"""Read-only selectors for the CMMS kernel (query side)."""

from cmms_kernel.selectors.stock_selector import StockSelector

__all__ = ["StockSelector"]
