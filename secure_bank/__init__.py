"""
Secure Bank Service

An in-memory bank account ledger with method-level authorization,
Decimal-precise balances and a hash-chained audit trail.
"""

__version__ = "1.0.0"
