"""
Pydantic Schemas for Coverage Adjudication.

An AdjudicationResult is immutable once built. Recomputation produces a new
result and the recorder flips is_valid on the one it supersedes.
"""

import hashlib
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

from tariff_engine.core.enums import CalculationType, PayerRank, SourceKind


class SourceVersion(BaseModel):
    """Version token of one source record read during adjudication."""

    model_config = ConfigDict(frozen=True)

    kind: SourceKind
    record_id: str
    version: int

    @property
    def key(self) -> tuple[SourceKind, str]:
        return (self.kind, self.record_id)


class CoverageLine(BaseModel):
    """One payer's share of a service amount."""

    model_config = ConfigDict(frozen=True)

    payer_rank: PayerRank
    enrollment_id: Any
    insurer_id: Any
    plan_id: Optional[Any] = None
    applied_tariff_id: Optional[Any] = None
    percent_applied: Decimal = Decimal("0")
    deductible_applied: int = 0
    gross_allocation: int = 0
    capped_allocation: int = 0
    is_covered: bool = True
    note: Optional[str] = None


class AdjudicationResult(BaseModel):
    """Itemized allocation of one service amount across payers and patient."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    calculation_id: UUID = Field(default_factory=uuid4)
    billing_line_id: Optional[str] = None

    service_id: Any
    department_id: Optional[Any] = None
    patient_id: Any
    as_of: date

    service_amount: int
    coverage_lines: list[CoverageLine] = Field(default_factory=list)
    final_patient_share: int
    deductible_applied: int = 0
    calculation_type: CalculationType

    is_valid: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source_version_tokens: list[SourceVersion] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_insurer_share(self) -> int:
        """Sum of all payers' capped allocations."""
        return sum(line.capped_allocation for line in self.coverage_lines)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def fingerprint(self) -> str:
        """Digest of the allocation content, excluding ids, flags and timestamps."""
        payload = self.model_dump_json(
            include={
                "service_id",
                "department_id",
                "patient_id",
                "as_of",
                "service_amount",
                "coverage_lines",
                "final_patient_share",
                "deductible_applied",
                "calculation_type",
                "source_version_tokens",
            }
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @property
    def primary_line(self) -> Optional[CoverageLine]:
        return self.coverage_lines[0] if self.coverage_lines else None

    def balances(self) -> bool:
        """Payer lines and patient share add up to the service amount."""
        return self.total_insurer_share + self.final_patient_share == self.service_amount


class Committed(BaseModel):
    """Outcome of a successful record()."""

    model_config = ConfigDict(frozen=True)

    result: AdjudicationResult
    superseded_id: Optional[UUID] = None
    replayed: bool = False
