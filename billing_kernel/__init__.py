"""
Billing Kernel - Invoice & Payment Reconciliation Engine

A transactional engine for course invoices and organization payments with:
- Integer minor-unit money (no float drift)
- Oldest-first payment ordering per organization
- Verification workflow before payments reach the ledger
- Per-invoice serialization and idempotent payment submission
- Hash-chained audit trail of every state transition
"""

__version__ = "0.1.0"
