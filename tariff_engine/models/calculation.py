"""
Insurance Calculation Model.

Immutable snapshot of one adjudication. A recomputation inserts a new row
and flips is_valid on the row it supersedes; nothing else is ever updated.
"""

from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, Date, DateTime, Enum as SAEnum, Index, String, text
from sqlalchemy import Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column

from tariff_engine.core.enums import CalculationType
from tariff_engine.models.base import Base, JSONType


class InsuranceCalculationModel(Base):
    """Persisted AdjudicationResult."""

    __tablename__ = "insurance_calculations"

    id: Mapped[UUID] = mapped_column(SAUuid(as_uuid=True), primary_key=True)
    billing_line_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Reception item this calculation prices",
    )
    service_id: Mapped[str] = mapped_column(String(100), nullable=False)
    department_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    patient_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    as_of: Mapped[date] = mapped_column(Date, nullable=False)

    service_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_insurer_share: Mapped[int] = mapped_column(BigInteger, nullable=False)
    final_patient_share: Mapped[int] = mapped_column(BigInteger, nullable=False)
    deductible_applied: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    calculation_type: Mapped[CalculationType] = mapped_column(
        SAEnum(CalculationType, native_enum=False, length=20),
        nullable=False,
    )
    coverage_lines: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    source_versions: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    is_valid: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    superseded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_insurance_calculations_line_valid", "billing_line_id", "is_valid"),
        # At most one valid result per billing line
        Index(
            "uq_insurance_calculations_valid_line",
            "billing_line_id",
            unique=True,
            postgresql_where=text("is_valid"),
            sqlite_where=text("is_valid"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<InsuranceCalculationModel(id={self.id}, line={self.billing_line_id}, "
            f"amount={self.service_amount}, valid={self.is_valid})>"
        )
