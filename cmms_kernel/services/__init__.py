"""Services for the CMMS kernel (write side)."""

from cmms_kernel.services.inventory_service import InventoryService
from cmms_kernel.services.retry import AtomicRetry, AttemptOutcome, RetryPolicy
from cmms_kernel.services.sequence_service import SequenceCounter, SequenceService
from cmms_kernel.services.stock_ledger import StockLedgerService

__all__ = [
    "AtomicRetry",
    "AttemptOutcome",
    "InventoryService",
    "RetryPolicy",
    "SequenceCounter",
    "SequenceService",
    "StockLedgerService",
]
