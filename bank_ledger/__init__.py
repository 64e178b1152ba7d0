"""
Bank Ledger

An atomic ledger engine for a demo bank: deposits, withdrawals, transfers,
bill payments, savings goals, scheduled transfers and money requests, all
applied through optimistic multi-document transactions with Decimal math.
"""

__version__ = "1.0.0"
