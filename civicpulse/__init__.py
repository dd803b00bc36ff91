"""
CivicPulse - Subscription Billing & Administrative Mandate Engine
"""

__version__ = "1.0.0"
