"""
CivicPulse - Ledger Service

Append-only credit/debit log per tenant. Entries are staged on the
caller's session so they commit in the same transaction as the billing
change that produced them. The balance is derived by query on every read.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.models.billing import BillingChange, LedgerEntry
from civicpulse.models.billing_enums import LedgerEntryType
from civicpulse.schemas.snapshot import to_money
from civicpulse.utils.error_handling import BillingIntegrityException

logger = logging.getLogger(__name__)


class LedgerService:
    def __init__(self, db: AsyncSession):
        self.db = db

    def record_entry(
        self,
        tenant_id: UUID,
        entry_type: LedgerEntryType,
        amount: Decimal,
        description: Optional[str] = None,
        billing_change_id: Optional[UUID] = None,
    ) -> LedgerEntry:
        """Stage one ledger row. The amount must be finite and >= 0."""
        try:
            value = Decimal(amount)
        except (InvalidOperation, TypeError, ValueError) as e:
            raise BillingIntegrityException(f"Ledger amount {amount!r} is not a number") from e
        if not value.is_finite() or value < 0:
            raise BillingIntegrityException(
                f"Ledger amount must be a finite non-negative number, got {amount}",
                details={"tenant_id": str(tenant_id), "entry_type": entry_type.value},
            )

        entry = LedgerEntry(
            tenant_id=tenant_id,
            billing_change_id=billing_change_id,
            entry_type=entry_type,
            amount=to_money(value),
            description=description,
        )
        self.db.add(entry)
        return entry

    def post_change(self, change: BillingChange, description: str) -> List[LedgerEntry]:
        """One CREDIT and/or one DEBIT for a billing change, each only if > 0."""
        entries = []
        if change.prorata_credit and change.prorata_credit > 0:
            entries.append(self.record_entry(
                tenant_id=change.tenant_id,
                entry_type=LedgerEntryType.CREDIT,
                amount=change.prorata_credit,
                description=f"Prorata credit - {description}",
                billing_change_id=change.id,
            ))
        if change.prorata_debit and change.prorata_debit > 0:
            entries.append(self.record_entry(
                tenant_id=change.tenant_id,
                entry_type=LedgerEntryType.DEBIT,
                amount=change.prorata_debit,
                description=f"Prorata debit - {description}",
                billing_change_id=change.id,
            ))
        return entries

    async def get_balance(self, tenant_id: UUID) -> Decimal:
        """Sum of credits minus sum of debits."""
        signed = case(
            (LedgerEntry.entry_type == LedgerEntryType.CREDIT, LedgerEntry.amount),
            else_=-LedgerEntry.amount,
        )
        result = await self.db.execute(
            select(func.coalesce(func.sum(signed), 0)).where(LedgerEntry.tenant_id == tenant_id)
        )
        return to_money(Decimal(str(result.scalar_one())))

    async def list_entries(self, tenant_id: UUID) -> List[LedgerEntry]:
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.tenant_id == tenant_id)
            .order_by(LedgerEntry.created_at, LedgerEntry.id)
        )
        return list(result.scalars().all())
