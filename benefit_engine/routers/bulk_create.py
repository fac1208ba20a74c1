"""
Bike Benefit Engine - Bulk Create Router

POST /bulk-create: invite a CSV of employees into the caller's company.

The body is either raw CSV text or a multipart form whose first file is the
CSV. Only hr/admin callers may upload; the company is always taken from the
caller's profile.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from ..core.security import Principal, require_role
from ..ingest.bulk_invite import BulkInvitePipeline
from ..ingest.csv_parser import parse_invite_csv, read_csv_from_request
from ..services import SupabaseServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Bulk Create"])


class RowResultModel(BaseModel):
    email: str
    invited: bool
    status: Optional[str] = None
    error: Optional[str] = None
    body: Any = None


class BulkCreateResponse(BaseModel):
    """`created` is the number of rows processed, whatever their outcome."""

    created: int
    results: list[RowResultModel]


@router.post(
    "/bulk-create",
    response_model=BulkCreateResponse,
    response_model_exclude_none=True,
    summary="Bulk-invite employees from a CSV",
)
async def bulk_create(
    request: Request,
    principal: Principal = Depends(require_role()),
    services: SupabaseServices = Depends(get_services),
) -> dict[str, Any]:
    pipeline = BulkInvitePipeline(services)
    company_id = await pipeline.resolve_company(principal)

    text = await read_csv_from_request(request)
    parsed = parse_invite_csv(text)

    logger.info(
        f"Bulk create by {principal.subject}: {len(parsed.rows)} rows",
        extra={"company_id": company_id, "count": len(parsed.rows)},
    )
    report = await pipeline.import_rows(parsed, company_id)
    return report.to_dict()
