"""
CivicPulse - Schemas Package

Pydantic schemas for request/response validation and billing value objects.
"""

from civicpulse.schemas.snapshot import AddonSnapshotLine, AddonsSnapshot, to_money

__all__ = [
    "AddonSnapshotLine",
    "AddonsSnapshot",
    "to_money",
]
