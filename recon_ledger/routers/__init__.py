"""
Reconciliation Ledger - Routers Package

FastAPI route handlers.

Routers:
- transactions: Transaction import and listing
- matches: Match lifecycle (create, approve, comment, unmatch)
- audit: Audit chain queries and verification
- periods: Financial period locks
"""

from recon_ledger.routers import audit, matches, periods, transactions

__all__ = ["audit", "matches", "periods", "transactions"]
