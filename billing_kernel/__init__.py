"""
Billing Kernel - condominium billing core

A transactional billing and cash-movement kernel with:
- Gapless per-tenant folio numbering
- Row-locked payment allocation against charges
- Append-only unit credit ledger with FIFO application
- Reconciliation-aware cancellation of payments and egresses
- Full auditability via per-operation audit log rows
"""

__version__ = "0.1.0"
