"""
Pricing Models: financial factors, service price specs and overrides.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    event,
    inspect,
)
from sqlalchemy import Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tariff_engine.core.enums import FactorScope, FactorType
from tariff_engine.models.base import Base, SoftDeleteModel, TimeStampedModel, UUIDModel
from tariff_engine.utils.errors import FrozenFactorMutation


class FinancialFactorModel(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """
    Year-bound factor value (technical or professional).

    Frozen rows are append-only: their value can never be updated.
    """

    __tablename__ = "financial_factors"

    factor_type: Mapped[FactorType] = mapped_column(
        SAEnum(FactorType, native_enum=False, length=20),
        nullable=False,
        comment="Technical or professional",
    )
    scope: Mapped[FactorScope] = mapped_column(
        SAEnum(FactorScope, native_enum=False, length=20),
        nullable=False,
        comment="Hashtagged or standard services",
    )
    financial_year: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="Financial year label",
    )
    value: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Factor value in minor units per coefficient point",
    )
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_frozen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frozen_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    version_token: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version_token}

    __table_args__ = (
        Index("ix_financial_factors_lookup", "factor_type", "scope", "financial_year"),
    )

    def __repr__(self) -> str:
        return (
            f"<FinancialFactorModel(type={self.factor_type}, scope={self.scope}, "
            f"year={self.financial_year}, value={self.value}, frozen={self.is_frozen})>"
        )

    def freeze(self) -> None:
        """Make the value authoritative for its financial year."""
        if not self.is_frozen:
            self.is_frozen = True
            self.frozen_at = datetime.now().astimezone()


@event.listens_for(FinancialFactorModel, "before_update")
def _reject_frozen_value_change(mapper, connection, target: FinancialFactorModel) -> None:
    """Frozen factors may be deactivated or soft-deleted, never revalued."""
    state = inspect(target)
    value_history = state.attrs.value.history
    was_frozen = state.attrs.is_frozen.history.deleted
    frozen_before = was_frozen[0] if was_frozen else target.is_frozen
    if frozen_before and not target.is_frozen:
        raise FrozenFactorMutation(f"Factor {target.id} is frozen and cannot be unfrozen")
    if frozen_before and value_history.has_changes():
        raise FrozenFactorMutation(
            f"Factor {target.id} for year {target.financial_year} is frozen; "
            "create a new factor instead of changing its value"
        )


class ServiceTemplateModel(Base, UUIDModel, TimeStampedModel):
    """Default coefficients shared by services created from a template."""

    __tablename__ = "service_templates"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    default_technical_coefficient: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)
    default_professional_coefficient: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)


class ServicePricingModel(Base, UUIDModel, TimeStampedModel):
    """How one catalog service is priced."""

    __tablename__ = "service_pricing"

    service_id: Mapped[UUID] = mapped_column(
        SAUuid(as_uuid=True),
        nullable=False,
        unique=True,
        comment="Service catalog ID",
    )
    service_category_id: Mapped[Optional[UUID]] = mapped_column(
        SAUuid(as_uuid=True),
        nullable=True,
        index=True,
    )
    is_coefficient_priced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    flat_price: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    technical_coefficient: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)
    professional_coefficient: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)
    factor_type: Mapped[FactorType] = mapped_column(
        SAEnum(FactorType, native_enum=False, length=20),
        default=FactorType.TECHNICAL,
        nullable=False,
    )
    factor_scope: Mapped[FactorScope] = mapped_column(
        SAEnum(FactorScope, native_enum=False, length=20),
        default=FactorScope.HASHTAGGED,
        nullable=False,
    )
    split_component_factors: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    template_id: Mapped[Optional[UUID]] = mapped_column(
        SAUuid(as_uuid=True),
        ForeignKey("service_templates.id"),
        nullable=True,
    )

    template: Mapped[Optional[ServiceTemplateModel]] = relationship(lazy="joined")


class DepartmentOverrideModel(Base, UUIDModel, TimeStampedModel, SoftDeleteModel):
    """Department-specific coefficients for a service."""

    __tablename__ = "department_service_overrides"

    service_id: Mapped[UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False)
    department_id: Mapped[UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False)
    override_technical: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)
    override_professional: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)

    __table_args__ = (
        Index(
            "ix_department_service_overrides_pair",
            "service_id",
            "department_id",
            unique=True,
        ),
    )
