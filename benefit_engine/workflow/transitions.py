"""
Workflow gates: who may advance which step, and how.

Every operation here is planned against a snapshot of the record and returns
a PlannedWrite: the column values to set plus the PostgREST guard filters the
store must still match when it applies them. The guards make each write
set-once and order-preserving even when two writers race on the same row;
the loser matches zero rows and reports a conflict instead of overwriting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Mapping

from ..core.errors import BenefitFrozenError, ForbiddenError, WorkflowViolation
from .derivation import (
    CONTRACT_STAGE_COLUMNS,
    CONTRACT_STATUS_COLUMN,
    BenefitRecord,
    ContractOrderViolation,
    derive_benefit_status,
    derive_contract_status,
)
from .statuses import (
    BenefitStatus,
    BikeStep,
    ContractStatus,
    UserRole,
    is_contract_terminal,
    step_index,
)

HR_ROLES: FrozenSet[UserRole] = frozenset({UserRole.HR, UserRole.ADMIN})
ALL_ROLES: FrozenSet[UserRole] = frozenset(UserRole)

CONTRACT_TRANSITION_ROLES: Dict[ContractStatus, FrozenSet[UserRole]] = {
    ContractStatus.VIEWED_BY_EMPLOYEE: frozenset({UserRole.EMPLOYEE}),
    ContractStatus.SIGNED_BY_EMPLOYEE: frozenset({UserRole.EMPLOYEE}),
    ContractStatus.SIGNED_BY_EMPLOYER: HR_ROLES,
    ContractStatus.APPROVED: HR_ROLES,
    ContractStatus.TERMINATED: HR_ROLES,
}

# Set-once progress facts that are not part of the contract chain.
FACT_COLUMNS: Dict[str, str] = {
    "live_test_whatsapp_sent": "live_test_whatsapp_sent_at",
    "live_test_checked_in": "live_test_checked_in_at",
    "committed": "committed_at",
    "checked_in": "checked_in_at",
    "contract_requested": "contract_requested_at",
    "delivered": "delivered_at",
}

FACT_ROLES: Dict[str, FrozenSet[UserRole]] = {
    "live_test_whatsapp_sent": HR_ROLES,
    "live_test_checked_in": ALL_ROLES,
    "committed": ALL_ROLES,
    "checked_in": ALL_ROLES,
    "contract_requested": ALL_ROLES,
    "delivered": HR_ROLES,
}

ADMINISTRATIVE_COLUMNS: Dict[BenefitStatus, str] = {
    BenefitStatus.TERMINATED: "benefit_terminated_at",
    BenefitStatus.INSURANCE_CLAIM: "benefit_insurance_claim_at",
}

_NOT_FROZEN_GUARD = {
    "benefit_terminated_at": "is.null",
    "benefit_insurance_claim_at": "is.null",
}


@dataclass(frozen=True)
class Actor:
    """The authenticated caller performing a workflow action."""

    user_id: str
    role: UserRole

    @property
    def is_hr(self) -> bool:
        return self.role in HR_ROLES


@dataclass(frozen=True)
class PlannedWrite:
    """Column values to PATCH plus the guard filters that must still hold."""

    values: Dict[str, Any]
    guard: Dict[str, str] = field(default_factory=dict)


def _timestamp(at: datetime) -> str:
    return at.isoformat()


def _derived_status(record: BenefitRecord, **changes: Any) -> str:
    """Benefit status after applying `changes`, for the persisted copy."""
    return derive_benefit_status(record.model_copy(update=changes)).value


def _require_role(actor: Actor, allowed: FrozenSet[UserRole], record: BenefitRecord) -> None:
    if actor.role not in allowed:
        raise ForbiddenError()
    # Employees may only act on their own enrollment
    if actor.role == UserRole.EMPLOYEE and record.user_id != actor.user_id:
        raise ForbiddenError()


def _require_not_frozen(record: BenefitRecord) -> None:
    if record.benefit_terminated_at is not None:
        raise BenefitFrozenError("benefit_terminated")
    if record.benefit_insurance_claim_at is not None:
        raise BenefitFrozenError("benefit_insurance_claim")


# =============================================================================
# CONTRACT
# =============================================================================


def validate_contract_update(
    record: BenefitRecord, updates: Mapping[str, datetime]
) -> ContractStatus:
    """
    Validate a raw write of contract timestamps against the signing order.

    Rejects overwriting an existing timestamp, skipping a stage (e.g. the
    employer signing before the employee), and any write to a contract that
    is already approved or terminated. Returns the resulting status.
    """
    try:
        current = derive_contract_status(record)
    except ContractOrderViolation as exc:
        raise WorkflowViolation("contract_order_corrupt", column=exc.column) from exc

    known = {column for column, _ in CONTRACT_STAGE_COLUMNS} | {"contract_terminated_at"}
    for column in updates:
        if column not in known:
            raise WorkflowViolation("unknown_contract_column", column=column)
        if getattr(record, column) is not None:
            raise WorkflowViolation("timestamp_already_set", column=column)

    if is_contract_terminal(current):
        raise WorkflowViolation("contract_terminal", current=current.value)

    candidate = record.model_copy(update=dict(updates))
    try:
        return derive_contract_status(candidate)
    except ContractOrderViolation as exc:
        raise WorkflowViolation(
            "out_of_order", column=exc.column, missing=exc.missing, current=current.value
        ) from exc


def plan_contract_transition(
    record: BenefitRecord,
    target: ContractStatus,
    actor: Actor,
    at: datetime,
) -> PlannedWrite:
    """Plan moving the contract one step forward (or terminating it)."""
    target = ContractStatus(target)
    if target == ContractStatus.NOT_STARTED:
        raise WorkflowViolation("backward_transition", target=target.value)

    _require_role(actor, CONTRACT_TRANSITION_ROLES[target], record)

    column = CONTRACT_STATUS_COLUMN[target]
    if target != ContractStatus.TERMINATED and getattr(record, column) is not None:
        raise WorkflowViolation(
            "backward_transition",
            current=record.contract_status.value,
            target=target.value,
        )

    validate_contract_update(record, {column: at})

    guard: Dict[str, str] = {column: "is.null", "contract_terminated_at": "is.null"}
    stage_columns = [c for c, _ in CONTRACT_STAGE_COLUMNS]
    if target == ContractStatus.TERMINATED:
        guard["contract_approved_at"] = "is.null"
    else:
        position = stage_columns.index(column)
        if position > 0:
            guard[stage_columns[position - 1]] = "not.is.null"

    return PlannedWrite(
        values={column: _timestamp(at), "contract_status": target.value},
        guard=guard,
    )


# =============================================================================
# BENEFIT STEPS
# =============================================================================


def plan_step_advance(
    record: BenefitRecord,
    target: BikeStep,
    actor: Actor,
) -> PlannedWrite:
    """Plan moving the enrollment forward to `target` (never backward)."""
    target = BikeStep(target)
    _require_role(actor, ALL_ROLES, record)
    _require_not_frozen(record)

    current_index = step_index(record.step) if record.step is not None else -1
    if step_index(target) <= current_index:
        raise WorkflowViolation(
            "step_not_forward",
            current=record.step.value if record.step else None,
            target=target.value,
        )

    guard = dict(_NOT_FROZEN_GUARD)
    guard["step"] = f"eq.{record.step.value}" if record.step is not None else "is.null"
    values = {"step": target.value, "benefit_status": _derived_status(record, step=target)}
    return PlannedWrite(values=values, guard=guard)


def plan_fact(
    record: BenefitRecord,
    fact: str,
    actor: Actor,
    at: datetime,
) -> PlannedWrite:
    """Plan recording a set-once progress fact (delivery, check-in, ...)."""
    if fact not in FACT_COLUMNS:
        raise WorkflowViolation("unknown_fact", fact=fact)

    _require_role(actor, FACT_ROLES[fact], record)
    _require_not_frozen(record)

    column = FACT_COLUMNS[fact]
    if getattr(record, column) is not None:
        raise WorkflowViolation("timestamp_already_set", column=column)

    guard = dict(_NOT_FROZEN_GUARD)
    guard[column] = "is.null"
    values = {column: _timestamp(at), "benefit_status": _derived_status(record, **{column: at})}
    return PlannedWrite(values=values, guard=guard)


def plan_administrative_flag(
    record: BenefitRecord,
    flag: BenefitStatus,
    actor: Actor,
    at: datetime,
) -> PlannedWrite:
    """Plan an HR-imposed override: terminate the benefit or file an insurance claim."""
    flag = BenefitStatus(flag)
    if flag not in ADMINISTRATIVE_COLUMNS:
        raise WorkflowViolation("not_administrative", target=flag.value)

    _require_role(actor, HR_ROLES, record)

    if record.benefit_terminated_at is not None:
        raise BenefitFrozenError("benefit_terminated")

    column = ADMINISTRATIVE_COLUMNS[flag]
    if getattr(record, column) is not None:
        raise WorkflowViolation("timestamp_already_set", column=column)

    guard = {column: "is.null", "benefit_terminated_at": "is.null"}
    return PlannedWrite(values={column: _timestamp(at), "benefit_status": flag.value}, guard=guard)
