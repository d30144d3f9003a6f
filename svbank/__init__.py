"""
SV Bank Transaction Core

Money-movement core for the SV Bank demo: account balances, an append-only
transaction ledger and the staff loan-approval workflow. All balance math
uses Decimal and every mutation is applied in an all-or-nothing atomic unit.
"""

__version__ = "1.0.0"
