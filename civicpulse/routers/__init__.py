"""
CivicPulse - Routers Package

FastAPI route handlers.

Routers:
- billing: add-on and plan changes, ledger, entitlements
- mandate: administrative mandate orders, invoices, renewals
- quotes: quotes and their public token endpoints
"""

from civicpulse.routers import billing, mandate, quotes

__all__ = ["billing", "mandate", "quotes"]
