"""
CivicPulse - Document Numbering

Sequential human-readable numbers per (year, prefix):
DV-2026-00001 (quotes and orders), BC-2026-00001 (purchase-order
acknowledgements), FA-2026-00001 (invoices).
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.config import settings
from civicpulse.models.billing_enums import DocumentType
from civicpulse.models.document_sequence import DocumentSequence
from civicpulse.utils.dates import utc_today

logger = logging.getLogger(__name__)


def format_document_number(prefix: str, year: int, number: int) -> str:
    return f"{prefix}-{year}-{number:0{settings.document_sequence_digits}d}"


class DocumentNumberService:
    """Allocates numbers inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def next_number(self, document_type: DocumentType, today: Optional[date] = None) -> str:
        year = (today or utc_today()).year
        prefix = document_type.value

        result = await self.db.execute(
            select(DocumentSequence)
            .where(DocumentSequence.year == year)
            .where(DocumentSequence.prefix == prefix)
            .with_for_update()
        )
        sequence = result.scalar_one_or_none()
        if sequence is None:
            sequence = DocumentSequence(year=year, prefix=prefix, last_number=0)
            self.db.add(sequence)

        sequence.last_number += 1
        await self.db.flush()

        number = format_document_number(prefix, year, sequence.last_number)
        logger.debug(f"Allocated document number {number}")
        return number
