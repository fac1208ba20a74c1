"""
benefit_engine/ingest/bulk_invite.py
====================================
Guarded, idempotent bulk invitation of employees from a CSV.

Guarantees:
1. Only hr/admin callers (token claim AND user_roles row) may import
2. Invites always land in the caller's own company
3. Same file imported twice = no duplicates (global, case-insensitive email)
4. One bad row never aborts the batch; it becomes a row result

Usage:
    from benefit_engine.ingest.bulk_invite import BulkInvitePipeline

    pipeline = BulkInvitePipeline(services)
    principal = await pipeline.authorize_caller(authorization_header)
    company_id = await pipeline.resolve_company(principal)
    report = await pipeline.import_rows(parse_invite_csv(text), company_id)
    print(report.summary())

CLI:
    python -m benefit_engine.ingest.bulk_invite --file invites.csv --dry-run
    python -m benefit_engine.ingest.bulk_invite --file invites.csv --company-id <uuid>

Design:
    1. Rows are processed sequentially in file order
    2. Emails created earlier in the batch are answered from memory
    3. A global lookup finds invites that already exist in any company
    4. The insert relies on the unique email index; a conflict is
       reported as already_exists, never as a failure
    5. Without that index, lookup+insert is serialized per email
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set

from ..core.logging import LogContext, Timer
from ..core.security import Principal, authenticate, authorize, resolve_company
from ..services import StoreError, SupabaseServices
from .csv_parser import InviteRow, ParseResult, parse_invite_csv

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STATUS_CREATED = "created"
STATUS_ALREADY_EXISTS = "already_exists"

ROW_LOOKUP_FAILED = "lookup_failed"
ROW_INSERT_FAILED = "insert_failed"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(slots=True)
class RowResult:
    """Outcome for one CSV row, as returned to the uploader."""

    email: str
    invited: bool
    status: Optional[str] = None
    error: Optional[str] = None
    body: Any = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"email": self.email, "invited": self.invited}
        if self.status is not None:
            out["status"] = self.status
        if self.error is not None:
            out["error"] = self.error
        if self.body is not None:
            out["body"] = self.body
        return out


@dataclass(slots=True)
class BulkInviteReport:
    """Result of a bulk import. `created` counts rows processed, not rows inserted."""

    batch_id: str
    results: List[RowResult] = field(default_factory=list)

    @property
    def created(self) -> int:
        return len(self.results)

    @property
    def invited_count(self) -> int:
        return sum(1 for r in self.results if r.invited)

    @property
    def existing_count(self) -> int:
        return sum(1 for r in self.results if r.status == STATUS_ALREADY_EXISTS)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.error is not None)

    def to_dict(self) -> Dict[str, Any]:
        return {"created": self.created, "results": [r.to_dict() for r in self.results]}

    def summary(self) -> str:
        """Human-readable summary of the import."""
        return (
            f"Batch {self.batch_id}: {self.created} processed, "
            f"{self.invited_count} invited, "
            f"{self.existing_count} already existed, "
            f"{self.failed_count} failed"
        )


# =============================================================================
# Per-email serialization
# =============================================================================


class EmailLockRegistry:
    """
    Process-wide per-email locks.

    Only used when the invite store has no unique email index; otherwise the
    index decides the race.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                self._locks.pop(key, None)


EMAIL_LOCKS = EmailLockRegistry()


# =============================================================================
# Bulk Invite Pipeline
# =============================================================================


class BulkInvitePipeline:
    """
    Guarded bulk invite pipeline.

    The gating steps (authorize_caller, resolve_company) raise
    BenefitEngineError subclasses; import_rows never raises for a row.
    """

    def __init__(self, services: SupabaseServices, locks: Optional[EmailLockRegistry] = None):
        self._services = services
        self._config = services.config
        self._locks = locks if locks is not None else EMAIL_LOCKS

    async def authorize_caller(self, authorization: Optional[str]) -> Principal:
        """Decode the bearer token and require an allowed role (401/403/500)."""
        principal = authenticate(authorization)
        return await authorize(principal, self._config.allowed_roles, self._services.roles)

    async def resolve_company(self, principal: Principal) -> str:
        """The caller's company id, from their profile."""
        return await resolve_company(principal, self._services.profiles)

    async def run(self, authorization: Optional[str], csv_text: str) -> BulkInviteReport:
        """Full guarded import: authorize, resolve tenant, parse, import."""
        principal = await self.authorize_caller(authorization)
        company_id = await self.resolve_company(principal)
        return await self.import_rows(parse_invite_csv(csv_text), company_id)

    async def import_rows(
        self,
        parsed: ParseResult,
        company_id: str,
        batch_id: Optional[str] = None,
    ) -> BulkInviteReport:
        """Invite every row into `company_id`, in file order."""
        report = BulkInviteReport(batch_id=batch_id or str(uuid.uuid4())[:8])
        created: Set[str] = set()

        with LogContext(batch_id=report.batch_id, company_id=company_id), Timer() as timer:
            logger.info(f"Bulk invite started: {len(parsed.rows)} rows", extra={"count": len(parsed.rows)})

            for row in parsed.rows:
                result = await self._process_row(row, company_id, created)
                report.results.append(result)

            logger.info(
                report.summary(),
                extra={"count": report.created, "duration_ms": round(timer.elapsed_ms, 2)},
            )

        return report

    async def _process_row(self, row: InviteRow, company_id: str, created: Set[str]) -> RowResult:
        if row.error is not None:
            return RowResult(email=row.email, invited=False, error=row.error)

        if row.email_key in created:
            return RowResult(email=row.email, invited=False, status=STATUS_ALREADY_EXISTS)

        if self._config.email_unique_constraint:
            return await self._invite(row, company_id, created)

        async with self._locks.hold(row.email_key):
            return await self._invite(row, company_id, created)

    async def _invite(self, row: InviteRow, company_id: str, created: Set[str]) -> RowResult:
        invites = self._services.invites

        try:
            existing = await invites.find_by_email(row.email)
        except StoreError as e:
            logger.warning(
                f"Invite lookup failed for row {row.row_index}: {e}",
                extra={"row_index": row.row_index},
            )
            return RowResult(email=row.email, invited=False, error=ROW_LOOKUP_FAILED, body=e.body)

        if existing:
            return RowResult(email=row.email, invited=False, status=STATUS_ALREADY_EXISTS)

        try:
            record = await invites.create(row.to_invite(company_id))
        except StoreError as e:
            if e.is_unique_violation:
                # Lost a race with a concurrent import of the same address
                return RowResult(email=row.email, invited=False, status=STATUS_ALREADY_EXISTS)
            logger.warning(
                f"Invite insert failed for row {row.row_index}: {e}",
                extra={"row_index": row.row_index, "status": e.status_code},
            )
            return RowResult(email=row.email, invited=False, error=ROW_INSERT_FAILED, body=e.body)

        created.add(row.email_key)
        return RowResult(
            email=row.email,
            invited=True,
            status=STATUS_CREATED,
            body=record.model_dump(mode="json", exclude_none=True),
        )


# =============================================================================
# CLI
# =============================================================================


async def _import_file(text: str, company_id: str) -> BulkInviteReport:
    from ..config import get_settings

    services = SupabaseServices.from_config(get_settings().pipeline_config())
    try:
        pipeline = BulkInvitePipeline(services)
        return await pipeline.import_rows(parse_invite_csv(text), company_id)
    finally:
        await services.aclose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="Bulk employee invite importer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Validate only (no Supabase calls)
    python -m benefit_engine.ingest.bulk_invite --file invites.csv --dry-run

    # Import into a company with service credentials
    python -m benefit_engine.ingest.bulk_invite --file invites.csv --company-id <uuid>
""",
    )
    parser.add_argument(
        "--file",
        "-f",
        required=True,
        help="Path to the CSV file to import",
    )
    parser.add_argument(
        "--company-id",
        help="Company that receives the invites (required unless --dry-run)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse and validate without writing to Supabase",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not args.dry_run and not args.company_id:
        parser.error("--company-id is required unless --dry-run is given")

    try:
        text = Path(args.file).read_text(encoding="utf-8-sig")

        if args.dry_run:
            parsed = parse_invite_csv(text)
            print("\n" + "=" * 60)
            print(
                f"DRY RUN: {len(parsed.rows)} rows, "
                f"{len(parsed.valid_rows)} valid, {len(parsed.errored_rows)} invalid"
            )
            for row in parsed.errored_rows:
                print(f"  row {row.row_index}: {row.email or '<blank>'} -> {row.error}")
            print("=" * 60)
            return 0

        report = asyncio.run(_import_file(text, args.company_id))
        print("\n" + "=" * 60)
        print(report.summary())
        print("=" * 60)
        return 1 if report.failed_count else 0

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.exception("Import failed")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
