"""Stores - the persistence seam written only by ReconciliationService."""

from billing_kernel.stores.invoice_store import InvoiceStore
from billing_kernel.stores.payment_store import PaymentStore

__all__ = ["InvoiceStore", "PaymentStore"]
