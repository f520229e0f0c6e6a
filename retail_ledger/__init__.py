"""
Retail Ledger Service

Account store, append-only transaction log, beneficiary directory and a
transfer engine with atomic, idempotent money movement. All monetary values
use Decimal.
"""

__version__ = "1.0.0"
