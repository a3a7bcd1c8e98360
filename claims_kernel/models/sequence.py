"""
Module: claims_kernel.models.sequence
Responsibility: Named counter rows backing ``PersistenceGateway.next_sequence``
    on the SQL adapter.  One row per sequence name, incremented under a
    row lock; the aggregate max-plus-one pattern is never used.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from claims_kernel.db.base import Base


class SequenceCounterModel(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
