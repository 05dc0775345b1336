"""
Service Pricer.

Resolves the base price of one service instance:
- Flat stored price, or
- Coefficients x frozen financial factor, with department overrides
  and service-template defaults for missing coefficients.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional

from tariff_engine.core.config import EngineSettings, get_engine_settings
from tariff_engine.core.enums import FactorScope, FactorType
from tariff_engine.core.money import financial_year_for, round_minor
from tariff_engine.schemas.records import FinancialFactor, ServicePriceSpec
from tariff_engine.services.factor_registry import FactorRegistry
from tariff_engine.services.record_filters import is_live
from tariff_engine.utils.errors import InvalidCoverageConfiguration, UnknownReference
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ServicePrice:
    """Base price of a service with the inputs it was derived from."""

    service_id: Any
    amount: int
    is_coefficient_priced: bool
    financial_year: Optional[int] = None
    technical_coefficient: Optional[Decimal] = None
    professional_coefficient: Optional[Decimal] = None
    factors: list[FinancialFactor] = field(default_factory=list)


class ServicePricer:
    """Prices services from their price specs and the factor registry."""

    def __init__(
        self,
        price_specs: Mapping[Any, ServicePriceSpec],
        factor_registry: FactorRegistry,
        settings: Optional[EngineSettings] = None,
    ):
        self.price_specs = price_specs
        self.factor_registry = factor_registry
        self.settings = settings or get_engine_settings()

    def price(self, service_id: Any, department_id: Any, as_of: date) -> int:
        """
        Base price of a service in minor units.

        Raises:
            UnknownReference: Service has no price spec
            InvalidCoverageConfiguration: Coefficients cannot be resolved
            FactorNotFrozen / AmbiguousFactor: From the factor registry
        """
        return self.price_breakdown(service_id, department_id, as_of).amount

    def price_breakdown(self, service_id: Any, department_id: Any, as_of: date) -> ServicePrice:
        """Price a service and keep the coefficients and factors used."""
        spec = self.price_specs.get(service_id)
        if spec is None:
            raise UnknownReference("service", service_id)

        if not spec.is_coefficient_priced:
            return ServicePrice(
                service_id=service_id,
                amount=spec.flat_price,  # type: ignore[arg-type]
                is_coefficient_priced=False,
            )

        technical, professional = self.effective_coefficients(spec, department_id)
        year = financial_year_for(as_of, self.settings)

        if spec.split_component_factors:
            technical_factor = self.factor_registry.resolve_record(
                FactorType.TECHNICAL, spec.factor_scope, year, as_of
            )
            # Professional factor does not vary with the hashtag scope
            professional_factor = self.factor_registry.resolve_record(
                FactorType.PROFESSIONAL, FactorScope.STANDARD, year, as_of
            )
            raw = technical * technical_factor.value + professional * professional_factor.value
            factors = [technical_factor, professional_factor]
        else:
            factor = self.factor_registry.resolve_record(
                spec.factor_type, spec.factor_scope, year, as_of
            )
            raw = (technical + professional) * factor.value
            factors = [factor]

        amount = round_minor(raw)
        logger.debug(
            f"Priced service {service_id}: tech={technical}, prof={professional}, "
            f"year={year}, amount={amount}"
        )
        return ServicePrice(
            service_id=service_id,
            amount=amount,
            is_coefficient_priced=True,
            financial_year=year,
            technical_coefficient=technical,
            professional_coefficient=professional,
            factors=factors,
        )

    @staticmethod
    def effective_coefficients(
        spec: ServicePriceSpec, department_id: Any
    ) -> tuple[Decimal, Decimal]:
        """
        Technical and professional coefficients for a department.

        Each coefficient resolves independently: department override, then the
        service's own value, then the template default.
        """
        override = spec.department_overrides.get(department_id) if department_id is not None else None
        if override is not None and not is_live(override):
            override = None
        template = spec.template

        technical = _first_present(
            override.override_technical if override else None,
            spec.technical_coefficient,
            template.default_technical_coefficient if template else None,
        )
        professional = _first_present(
            override.override_professional if override else None,
            spec.professional_coefficient,
            template.default_professional_coefficient if template else None,
        )
        if technical is None or professional is None:
            raise InvalidCoverageConfiguration(
                f"Service {spec.service_id} is coefficient-priced but has no "
                f"{'technical' if technical is None else 'professional'} coefficient"
            )
        return technical, professional


def _first_present(*values: Optional[Decimal]) -> Optional[Decimal]:
    for value in values:
        if value is not None:
            return value
    return None
