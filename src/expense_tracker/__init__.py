"""
Scanned document → Structured extraction → Expense reconciliation

A deterministic, testable pipeline that turns invoices, receipts and bank
statements into accounts, suppliers, expenses and timeline entries, with
strict deduplication across repeated uploads.
"""

__version__ = "0.1.0"
