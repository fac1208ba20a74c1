"""
Status derivation for bike benefits.

The benefit status is a view over raw facts (the step marker plus set-once
timestamps). It is never written by an employee, so the mapping below is the
only place that decides "where is this enrollment right now".

All functions here are pure: no clock reads, no I/O.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from .statuses import BenefitStatus, BikeStep, ContractStatus

logger = logging.getLogger(__name__)

# Contract timestamps in signing order, paired with the status they unlock.
CONTRACT_STAGE_COLUMNS: tuple[tuple[str, ContractStatus], ...] = (
    ("contract_viewed_at", ContractStatus.VIEWED_BY_EMPLOYEE),
    ("contract_employee_signed_at", ContractStatus.SIGNED_BY_EMPLOYEE),
    ("contract_employer_signed_at", ContractStatus.SIGNED_BY_EMPLOYER),
    ("contract_approved_at", ContractStatus.APPROVED),
)

CONTRACT_STATUS_COLUMN: dict[ContractStatus, str] = {
    status: column for column, status in CONTRACT_STAGE_COLUMNS
}
CONTRACT_STATUS_COLUMN[ContractStatus.TERMINATED] = "contract_terminated_at"


class ContractOrderViolation(ValueError):
    """A later contract stage is set while an earlier one is missing."""

    def __init__(self, column: str, missing: str):
        super().__init__(f"{column} is set while {missing} is not")
        self.column = column
        self.missing = missing


class BenefitRecord(BaseModel):
    """One employee enrollment attempt, as stored in bike_benefits."""

    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    id: str
    user_id: Optional[str] = None
    bike_id: Optional[str] = None

    step: Optional[BikeStep] = None
    benefit_status: Optional[BenefitStatus] = None
    contract_status: ContractStatus = ContractStatus.NOT_STARTED

    live_test_location: Optional[str] = None
    live_test_location_coords: Optional[str] = None
    live_test_location_name: Optional[str] = None
    live_test_whatsapp_sent_at: Optional[datetime] = None
    live_test_checked_in_at: Optional[datetime] = None

    committed_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None

    contract_requested_at: Optional[datetime] = None
    contract_viewed_at: Optional[datetime] = None
    contract_employee_signed_at: Optional[datetime] = None
    contract_employer_signed_at: Optional[datetime] = None
    contract_approved_at: Optional[datetime] = None
    contract_terminated_at: Optional[datetime] = None

    delivered_at: Optional[datetime] = None

    benefit_terminated_at: Optional[datetime] = None
    benefit_insurance_claim_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_frozen(self) -> bool:
        """Terminated or under insurance claim: no further step progression."""
        return self.benefit_terminated_at is not None or self.benefit_insurance_claim_at is not None


def derive_benefit_status(record: BenefitRecord) -> BenefitStatus:
    """
    Map a benefit's stored facts to its BenefitStatus.

    First matching rule wins:
        1. benefit_terminated_at set              → terminated
        2. benefit_insurance_claim_at set         → insurance_claim
        3. step pickup_delivery and delivered     → active
        4. step book_live_test and WhatsApp sent  → testing
        5. any step                               → searching
        6. no step                                → inactive
    """
    if record.benefit_terminated_at is not None:
        return BenefitStatus.TERMINATED
    if record.benefit_insurance_claim_at is not None:
        return BenefitStatus.INSURANCE_CLAIM
    if record.step == BikeStep.PICKUP_DELIVERY and record.delivered_at is not None:
        return BenefitStatus.ACTIVE
    if record.step == BikeStep.BOOK_LIVE_TEST and record.live_test_whatsapp_sent_at is not None:
        return BenefitStatus.TESTING
    if record.step is not None:
        return BenefitStatus.SEARCHING
    return BenefitStatus.INACTIVE


def check_contract_order(record: BenefitRecord) -> None:
    """Raise ContractOrderViolation if the signing timestamps skip a stage."""
    missing: Optional[str] = None
    for column, _status in CONTRACT_STAGE_COLUMNS:
        if getattr(record, column) is None:
            if missing is None:
                missing = column
        elif missing is not None:
            raise ContractOrderViolation(column, missing)


def derive_contract_status(record: BenefitRecord) -> ContractStatus:
    """
    Derive the contract status from the contract timestamps.

    Termination wins; otherwise the furthest stage reached in signing order.
    """
    check_contract_order(record)
    if record.contract_terminated_at is not None:
        return ContractStatus.TERMINATED

    status = ContractStatus.NOT_STARTED
    for column, stage_status in CONTRACT_STAGE_COLUMNS:
        if getattr(record, column) is None:
            break
        status = stage_status
    return status


# =============================================================================
# SUMMARIES
# =============================================================================


class BenefitStatusSummary(BaseModel):
    status: BenefitStatus
    count: int


class ContractStatusSummary(BaseModel):
    status: ContractStatus
    count: int


class StatusSummary(BaseModel):
    benefits: list[BenefitStatusSummary] = Field(default_factory=list)
    contracts: list[ContractStatusSummary] = Field(default_factory=list)
    total: int = 0


def summarize_statuses(records: Iterable[BenefitRecord]) -> StatusSummary:
    """Count records per derived benefit and contract status (all statuses listed)."""
    benefit_counts: Counter[BenefitStatus] = Counter()
    contract_counts: Counter[ContractStatus] = Counter()
    total = 0
    for record in records:
        total += 1
        benefit_counts[derive_benefit_status(record)] += 1
        try:
            contract_status = derive_contract_status(record)
        except ContractOrderViolation as exc:
            logger.warning("Benefit %s has out-of-order contract timestamps: %s", record.id, exc)
            contract_status = record.contract_status
        contract_counts[contract_status] += 1

    return StatusSummary(
        benefits=[BenefitStatusSummary(status=s, count=benefit_counts[s]) for s in BenefitStatus],
        contracts=[
            ContractStatusSummary(status=s, count=contract_counts[s]) for s in ContractStatus
        ],
        total=total,
    )
