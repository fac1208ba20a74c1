"""
Bike Benefit Engine - Benefits Router

Read a benefit with its derived statuses, and drive the workflow.

Key endpoints:
- GET  /benefits/summary                 - status counts for the caller's company (hr/admin)
- GET  /benefits/{id}                    - record + derived benefit/contract status
- POST /benefits/{id}/step               - advance the enrollment step
- POST /benefits/{id}/contract           - move the contract one stage forward
- POST /benefits/{id}/facts/{fact}       - record a set-once progress fact
- POST /benefits/{id}/terminate          - hr/admin: terminate the benefit
- POST /benefits/{id}/insurance-claim    - hr/admin: flag an insurance claim

Employees see and act on their own record only; hr/admin act on records of
employees in their own company.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from ..core.errors import ERROR_STORE_FAILED, ForbiddenError, NotFoundError, UpstreamError, WorkflowViolation
from ..core.logging import LogContext
from ..core.security import Principal, require_any_role, require_role, resolve_company
from ..services import StoreError, SupabaseServices, get_services
from ..workflow.derivation import (
    BenefitRecord,
    ContractOrderViolation,
    StatusSummary,
    derive_benefit_status,
    derive_contract_status,
    summarize_statuses,
)
from ..workflow.statuses import (
    BenefitStatus,
    BikeStep,
    ContractStatus,
    UserRole,
    format_benefit_status,
    format_contract_status,
    is_benefit_terminal,
    is_contract_terminal,
    next_contract_status,
)
from ..workflow.transitions import (
    Actor,
    PlannedWrite,
    plan_administrative_flag,
    plan_contract_transition,
    plan_fact,
    plan_step_advance,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/benefits", tags=["Benefits"])

HR_ROLE_NAMES = [UserRole.HR.value, UserRole.ADMIN.value]


# =============================================================================
# Models
# =============================================================================


class BenefitView(BaseModel):
    """A benefit record with its derived statuses."""

    record: dict[str, Any]
    benefit_status: BenefitStatus
    benefit_status_label: str
    benefit_terminal: bool
    contract_status: ContractStatus
    contract_status_label: str
    contract_terminal: bool
    next_contract_status: Optional[ContractStatus] = None
    contract_order_valid: bool = True
    frozen: bool


class StepRequest(BaseModel):
    step: BikeStep


class ContractRequest(BaseModel):
    status: ContractStatus


def _view(record: BenefitRecord) -> BenefitView:
    benefit_status = derive_benefit_status(record)
    order_valid = True
    try:
        contract_status = derive_contract_status(record)
    except ContractOrderViolation as e:
        logger.warning(f"Benefit {record.id} has out-of-order contract timestamps: {e}")
        contract_status = record.contract_status
        order_valid = False

    return BenefitView(
        record=record.model_dump(mode="json"),
        benefit_status=benefit_status,
        benefit_status_label=format_benefit_status(benefit_status),
        benefit_terminal=is_benefit_terminal(benefit_status),
        contract_status=contract_status,
        contract_status_label=format_contract_status(contract_status),
        contract_terminal=is_contract_terminal(contract_status),
        next_contract_status=next_contract_status(contract_status),
        contract_order_valid=order_valid,
        frozen=record.is_frozen,
    )


# =============================================================================
# Access helpers
# =============================================================================


def _actor(principal: Principal) -> Actor:
    role = principal.user_role
    if role is None:
        raise ForbiddenError()
    return Actor(user_id=principal.subject, role=role)


async def _load_for(
    benefit_id: str,
    principal: Principal,
    services: SupabaseServices,
    path: str,
) -> BenefitRecord:
    """Fetch a benefit the caller is allowed to see, else 403/404."""
    try:
        record = await services.benefits.get(benefit_id)
    except StoreError as e:
        logger.error(f"Benefit lookup failed for {benefit_id}: {e}")
        raise UpstreamError(ERROR_STORE_FAILED) from e

    if record is None:
        raise NotFoundError(path)

    if principal.user_role == UserRole.EMPLOYEE:
        if record.user_id != principal.subject:
            raise ForbiddenError()
        return record

    # hr/admin: the record's owner must belong to the caller's company
    company_id = await resolve_company(principal, services.profiles)
    try:
        owner = await services.profiles.get_profile(record.user_id) if record.user_id else None
    except StoreError as e:
        raise UpstreamError(ERROR_STORE_FAILED) from e
    if owner is None or owner.company_id != company_id:
        raise ForbiddenError()
    return record


async def _apply(
    benefit_id: str,
    write: PlannedWrite,
    services: SupabaseServices,
) -> BenefitRecord:
    try:
        updated = await services.benefits.apply(benefit_id, write)
    except StoreError as e:
        logger.error(f"Benefit write failed for {benefit_id}: {e}")
        raise UpstreamError(ERROR_STORE_FAILED) from e

    if updated is None:
        # Guard no longer matched: another writer moved the record first
        raise WorkflowViolation("concurrent_update")
    return updated


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Reads
# =============================================================================


@router.get("/summary", response_model=StatusSummary)
async def benefits_summary(
    principal: Principal = Depends(require_role(HR_ROLE_NAMES)),
    services: SupabaseServices = Depends(get_services),
) -> StatusSummary:
    """Per-status counts over every benefit in the caller's company."""
    company_id = await resolve_company(principal, services.profiles)
    try:
        records = await services.benefits.list_for_company(company_id)
    except StoreError as e:
        raise UpstreamError(ERROR_STORE_FAILED) from e
    return summarize_statuses(records)


@router.get("/{benefit_id}", response_model=BenefitView)
async def get_benefit(
    benefit_id: str,
    request: Request,
    principal: Principal = Depends(require_any_role()),
    services: SupabaseServices = Depends(get_services),
) -> BenefitView:
    record = await _load_for(benefit_id, principal, services, request.url.path)
    return _view(record)


# =============================================================================
# Writes
# =============================================================================


@router.post("/{benefit_id}/step", response_model=BenefitView)
async def advance_step(
    benefit_id: str,
    body: StepRequest,
    request: Request,
    principal: Principal = Depends(require_any_role()),
    services: SupabaseServices = Depends(get_services),
) -> BenefitView:
    record = await _load_for(benefit_id, principal, services, request.url.path)
    write = plan_step_advance(record, body.step, _actor(principal))
    with LogContext(benefit_id=benefit_id):
        updated = await _apply(benefit_id, write, services)
        logger.info(f"Step advanced to {body.step.value}")
    return _view(updated)


@router.post("/{benefit_id}/contract", response_model=BenefitView)
async def transition_contract(
    benefit_id: str,
    body: ContractRequest,
    request: Request,
    principal: Principal = Depends(require_any_role()),
    services: SupabaseServices = Depends(get_services),
) -> BenefitView:
    record = await _load_for(benefit_id, principal, services, request.url.path)
    write = plan_contract_transition(record, body.status, _actor(principal), _now())
    with LogContext(benefit_id=benefit_id):
        updated = await _apply(benefit_id, write, services)
        logger.info(f"Contract moved to {body.status.value}")
    return _view(updated)


@router.post("/{benefit_id}/facts/{fact}", response_model=BenefitView)
async def record_fact(
    benefit_id: str,
    fact: str,
    request: Request,
    principal: Principal = Depends(require_any_role()),
    services: SupabaseServices = Depends(get_services),
) -> BenefitView:
    record = await _load_for(benefit_id, principal, services, request.url.path)
    write = plan_fact(record, fact, _actor(principal), _now())
    updated = await _apply(benefit_id, write, services)
    return _view(updated)


@router.post("/{benefit_id}/terminate", response_model=BenefitView)
async def terminate_benefit(
    benefit_id: str,
    request: Request,
    principal: Principal = Depends(require_role(HR_ROLE_NAMES)),
    services: SupabaseServices = Depends(get_services),
) -> BenefitView:
    record = await _load_for(benefit_id, principal, services, request.url.path)
    write = plan_administrative_flag(record, BenefitStatus.TERMINATED, _actor(principal), _now())
    with LogContext(benefit_id=benefit_id):
        updated = await _apply(benefit_id, write, services)
        logger.info(f"Benefit terminated by {principal.subject}")
    return _view(updated)


@router.post("/{benefit_id}/insurance-claim", response_model=BenefitView)
async def flag_insurance_claim(
    benefit_id: str,
    request: Request,
    principal: Principal = Depends(require_role(HR_ROLE_NAMES)),
    services: SupabaseServices = Depends(get_services),
) -> BenefitView:
    record = await _load_for(benefit_id, principal, services, request.url.path)
    write = plan_administrative_flag(
        record, BenefitStatus.INSURANCE_CLAIM, _actor(principal), _now()
    )
    with LogContext(benefit_id=benefit_id):
        updated = await _apply(benefit_id, write, services)
        logger.info(f"Insurance claim flagged by {principal.subject}")
    return _view(updated)
