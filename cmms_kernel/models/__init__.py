"""ORM models for the stock ledger."""

from cmms_kernel.models.inventory import InventoryItemModel, StockTransactionModel

__all__ = [
    "InventoryItemModel",
    "StockTransactionModel",
]
