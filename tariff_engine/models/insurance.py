"""
Insurance Models: plans, tariffs, patient enrollments and business rules.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy import Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column

from tariff_engine.core.enums import BusinessRuleType, InsurerType
from tariff_engine.models.base import Base, SoftDeleteModel, TimeStampedModel, UUIDModel


class InsurancePlanModel(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """Insurer plan with its default coverage."""

    __tablename__ = "insurance_plans"

    insurer_id: Mapped[UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    insurer_type: Mapped[InsurerType] = mapped_column(
        SAEnum(InsurerType, native_enum=False, length=30),
        default=InsurerType.PUBLIC,
        nullable=False,
    )
    coverage_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        default=Decimal("0"),
        nullable=False,
        comment="Default insurer share when a tariff sets none",
    )
    deductible: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)


class TariffModel(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """
    How one insurer covers one service over a validity window.

    Edits bump version_token; rows are soft-deleted so historical
    calculations stay explainable.
    """

    __tablename__ = "insurance_tariffs"

    insurer_id: Mapped[UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False)
    service_id: Mapped[UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False)
    plan_id: Mapped[Optional[UUID]] = mapped_column(
        SAUuid(as_uuid=True),
        ForeignKey("insurance_plans.id"),
        nullable=True,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Lower value wins",
    )
    tariff_price: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Insurer's price basis for the service",
    )
    is_flat_rate: Mapped[bool] = mapped_column(default=False, nullable=False)
    patient_share_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    insurer_share_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    min_patient_copay: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    max_insurer_payment: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    deductible: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    version_token: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version_token}

    __table_args__ = (
        Index("ix_insurance_tariffs_pair", "insurer_id", "service_id", "priority"),
    )

    def __repr__(self) -> str:
        return (
            f"<TariffModel(insurer={self.insurer_id}, service={self.service_id}, "
            f"priority={self.priority}, v={self.version_token})>"
        )


class PatientModel(Base, UUIDModel, TimeStampedModel):
    """Demographics read from the patient registry."""

    __tablename__ = "patients"

    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)


class PatientInsuranceModel(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """A patient's enrollment in an insurance plan."""

    __tablename__ = "patient_insurances"

    patient_id: Mapped[UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False, index=True)
    insurer_id: Mapped[UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False)
    plan_id: Mapped[UUID] = mapped_column(
        SAUuid(as_uuid=True),
        ForeignKey("insurance_plans.id"),
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
        comment="Payer order; lowest is primary",
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    supplementary_insurer_id: Mapped[Optional[UUID]] = mapped_column(SAUuid(as_uuid=True), nullable=True)
    supplementary_plan_id: Mapped[Optional[UUID]] = mapped_column(
        SAUuid(as_uuid=True),
        ForeignKey("insurance_plans.id"),
        nullable=True,
    )


class BusinessRuleModel(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """
    Declarative override rule.

    conditions and actions are stored as JSON text and compiled when loaded.
    """

    __tablename__ = "business_rules"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    rule_type: Mapped[BusinessRuleType] = mapped_column(
        SAEnum(BusinessRuleType, native_enum=False, length=30),
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Higher value evaluated first",
    )
    insurance_plan_id: Mapped[Optional[UUID]] = mapped_column(SAUuid(as_uuid=True), nullable=True)
    service_category_id: Mapped[Optional[UUID]] = mapped_column(SAUuid(as_uuid=True), nullable=True)
    service_id: Mapped[Optional[UUID]] = mapped_column(SAUuid(as_uuid=True), nullable=True)
    conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actions: Mapped[str] = mapped_column(Text, nullable=False)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    version_token: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version_token}

    __table_args__ = (
        Index("ix_business_rules_scope", "insurance_plan_id", "service_category_id", "service_id"),
    )
