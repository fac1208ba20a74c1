"""
Benefit workflow: status derivation and gated transitions.
"""

from .derivation import (
    BenefitRecord,
    ContractOrderViolation,
    derive_benefit_status,
    derive_contract_status,
    summarize_statuses,
)
from .statuses import BenefitStatus, BikeStep, BikeType, ContractStatus, UserRole
from .transitions import (
    Actor,
    PlannedWrite,
    plan_administrative_flag,
    plan_contract_transition,
    plan_fact,
    plan_step_advance,
    validate_contract_update,
)

__all__ = [
    "Actor",
    "BenefitRecord",
    "BenefitStatus",
    "BikeStep",
    "BikeType",
    "ContractOrderViolation",
    "ContractStatus",
    "PlannedWrite",
    "UserRole",
    "derive_benefit_status",
    "derive_contract_status",
    "plan_administrative_flag",
    "plan_contract_transition",
    "plan_fact",
    "plan_step_advance",
    "summarize_statuses",
    "validate_contract_update",
]
