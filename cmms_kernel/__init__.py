"""
CMMS Kernel - maintenance stock ledger

An append-only inventory ledger with:
- Atomic quantity mutation plus transaction record
- Optimistic commit with bounded retry
- Derived stock status and value
- Sequential part numbers
"""

__version__ = "0.1.0"
