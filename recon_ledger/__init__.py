"""
Reconciliation Ledger

Match-lifecycle state machine and tamper-evident audit chain for
ledger/statement reconciliation.
"""

__version__ = "0.1.0"
