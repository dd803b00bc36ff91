"""
CivicPulse - Document Sequence Model

Yearly counters behind quote, order and invoice numbers.
"""

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from civicpulse.models.base import BaseModel


class DocumentSequence(BaseModel):
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint("year", "prefix", name="uq_document_sequences_year_prefix"),
    )

    year: Mapped[int] = mapped_column(Integer, nullable=False)
    prefix: Mapped[str] = mapped_column(String(5), nullable=False)
    last_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
