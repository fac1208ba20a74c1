"""
Benefit workflow enumerations and their display configuration.

Values must match the Postgres enums in the Supabase schema exactly.

Benefit flow (derived, never written by employees):
    inactive → searching → testing → ... → active
    insurance_claim / terminated are imposed manually by HR.

Contract flow (persisted, strictly linear):
    not_started → viewed_by_employee → signed_by_employee
        → signed_by_employer → approved
    terminated is reachable from any non-terminal status.

Usage:
    from benefit_engine.workflow.statuses import ContractStatus, next_contract_status

    next_contract_status(ContractStatus.SIGNED_BY_EMPLOYEE)  # SIGNED_BY_EMPLOYER
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class BikeStep(str, Enum):
    """Discrete stage marker of the guided enrollment."""

    CHOOSE_BIKE = "choose_bike"
    BOOK_LIVE_TEST = "book_live_test"
    COMMIT_TO_BIKE = "commit_to_bike"
    SIGN_CONTRACT = "sign_contract"
    PICKUP_DELIVERY = "pickup_delivery"


class BenefitStatus(str, Enum):
    INACTIVE = "inactive"
    SEARCHING = "searching"
    TESTING = "testing"
    ACTIVE = "active"
    INSURANCE_CLAIM = "insurance_claim"
    TERMINATED = "terminated"


class ContractStatus(str, Enum):
    NOT_STARTED = "not_started"
    VIEWED_BY_EMPLOYEE = "viewed_by_employee"
    SIGNED_BY_EMPLOYEE = "signed_by_employee"
    SIGNED_BY_EMPLOYER = "signed_by_employer"
    APPROVED = "approved"
    TERMINATED = "terminated"


class ProfileStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class BikeType(str, Enum):
    E_MTB_HARDTAIL_29 = "e_mtb_hardtail_29"
    E_MTB_HARDTAIL_27_5 = "e_mtb_hardtail_27_5"
    E_FULL_SUSPENSION_29 = "e_full_suspension_29"
    E_FULL_SUSPENSION_27_5 = "e_full_suspension_27_5"
    E_CITY_BIKE = "e_city_bike"
    E_TOURING = "e_touring"
    E_ROAD_RACE = "e_road_race"
    E_CARGO_BIKE = "e_cargo_bike"
    E_KIDS_24 = "e_kids_24"


class UserRole(str, Enum):
    ADMIN = "admin"
    HR = "hr"
    EMPLOYEE = "employee"


# =============================================================================
# ORDERING
# =============================================================================

STEP_ORDER: List[BikeStep] = list(BikeStep)

CONTRACT_TRANSITIONS: Dict[ContractStatus, Optional[ContractStatus]] = {
    ContractStatus.NOT_STARTED: ContractStatus.VIEWED_BY_EMPLOYEE,
    ContractStatus.VIEWED_BY_EMPLOYEE: ContractStatus.SIGNED_BY_EMPLOYEE,
    ContractStatus.SIGNED_BY_EMPLOYEE: ContractStatus.SIGNED_BY_EMPLOYER,
    ContractStatus.SIGNED_BY_EMPLOYER: ContractStatus.APPROVED,
    ContractStatus.APPROVED: None,  # Terminal
    ContractStatus.TERMINATED: None,  # Terminal
}

TERMINAL_BENEFIT_STATUSES = frozenset({BenefitStatus.ACTIVE, BenefitStatus.TERMINATED})
TERMINAL_CONTRACT_STATUSES = frozenset({ContractStatus.APPROVED, ContractStatus.TERMINATED})


def next_contract_status(current: ContractStatus) -> Optional[ContractStatus]:
    """Get the next expected contract status, or None if terminal."""
    return CONTRACT_TRANSITIONS[ContractStatus(current)]


def step_index(step: BikeStep) -> int:
    return STEP_ORDER.index(BikeStep(step))


def is_benefit_terminal(status: Optional[BenefitStatus]) -> bool:
    """
    Check if a benefit is in a terminal state (cannot progress further).

    insurance_claim is an administrative override, not a terminal state.
    """
    if not status:
        return False
    return BenefitStatus(status) in TERMINAL_BENEFIT_STATUSES


def is_contract_terminal(status: ContractStatus) -> bool:
    return ContractStatus(status) in TERMINAL_CONTRACT_STATUSES


def is_benefit_status(value: str) -> bool:
    return value in {s.value for s in BenefitStatus}


def is_contract_status(value: str) -> bool:
    return value in {s.value for s in ContractStatus}


# =============================================================================
# DISPLAY CONFIGURATION
# =============================================================================


@dataclass(frozen=True)
class StatusDisplay:
    label: str
    color: str
    description: str


BENEFIT_STATUS_CONFIG: Dict[BenefitStatus, StatusDisplay] = {
    BenefitStatus.INACTIVE: StatusDisplay("Inactive", "gray", "Benefit created but not yet started"),
    BenefitStatus.SEARCHING: StatusDisplay("Searching", "blue", "Employee is browsing and choosing bikes"),
    BenefitStatus.TESTING: StatusDisplay("Testing", "orange", "Employee has booked a live test"),
    BenefitStatus.ACTIVE: StatusDisplay("Active", "green", "Bike delivered, benefit is active"),
    BenefitStatus.INSURANCE_CLAIM: StatusDisplay(
        "Insurance Claim", "red", "Insurance claim has been filed"
    ),
    BenefitStatus.TERMINATED: StatusDisplay("Terminated", "darkgray", "Benefit has been terminated"),
}

CONTRACT_STATUS_CONFIG: Dict[ContractStatus, StatusDisplay] = {
    ContractStatus.NOT_STARTED: StatusDisplay("Not Started", "gray", "Contract not yet generated"),
    ContractStatus.VIEWED_BY_EMPLOYEE: StatusDisplay(
        "Viewed by Employee", "blue", "Employee has viewed the contract"
    ),
    ContractStatus.SIGNED_BY_EMPLOYEE: StatusDisplay(
        "Signed by Employee", "lightblue", "Employee has signed the contract"
    ),
    ContractStatus.SIGNED_BY_EMPLOYER: StatusDisplay(
        "Signed by Employer", "yellow", "Employer has signed the contract"
    ),
    ContractStatus.APPROVED: StatusDisplay(
        "Approved", "green", "Contract fully executed by both parties"
    ),
    ContractStatus.TERMINATED: StatusDisplay("Terminated", "red", "Contract has been terminated"),
}


def format_benefit_status(status: Optional[BenefitStatus]) -> str:
    if not status:
        return "Not Started"
    return BENEFIT_STATUS_CONFIG[BenefitStatus(status)].label


def format_contract_status(status: ContractStatus) -> str:
    return CONTRACT_STATUS_CONFIG[ContractStatus(status)].label
