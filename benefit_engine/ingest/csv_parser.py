"""
benefit_engine/ingest/csv_parser.py
===================================
CSV intake for employee invites.

Turns an uploaded CSV (raw request body or the first file of a multipart
form) into validated InviteRow records. Whole-file problems raise
BadRequestError (400); row problems are recorded on the row and never stop
the rest of the file.

Usage:
    from benefit_engine.ingest.csv_parser import parse_invite_csv

    parsed = parse_invite_csv(text)
    for row in parsed.valid_rows:
        ...
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from fastapi import Request
from starlette.datastructures import UploadFile

from ..core.errors import (
    ERROR_EMPTY_CSV,
    ERROR_MISSING_BOUNDARY,
    ERROR_MISSING_HEADER,
    ERROR_NO_FILE,
    ERROR_NO_ROWS,
    BadRequestError,
)
from ..services.stores import InviteCreate

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Row-level error codes
ROW_INVALID_EMAIL = "invalid_email"
ROW_MISSING_FIRST_NAME = "missing_first_name"
ROW_MISSING_LAST_NAME = "missing_last_name"
ROW_INVALID_HIRE_DATE = "invalid_hire_date"

# Canonical CSV headers, keyed by the header lowercased with spaces,
# dashes and underscores removed.
CANONICAL_HEADERS = {
    "email": "email",
    "emailaddress": "email",
    "mail": "email",
    "firstname": "first_name",
    "givenname": "first_name",
    "lastname": "last_name",
    "surname": "last_name",
    "familyname": "last_name",
    "description": "description",
    "notes": "description",
    "department": "department",
    "dept": "department",
    "hiredate": "hire_date",
    "startdate": "hire_date",
    "companyid": "company_id",
}

REQUIRED_COLUMNS = ["email"]

# The tenant always comes from the caller's profile
IGNORED_COLUMNS = frozenset({"company_id"})

HIRE_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%d.%m.%Y", "%d-%m-%Y")

_EPOCH_MS = re.compile(r"^-?\d+$")


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(slots=True)
class InviteRow:
    """One parsed CSV row. `error` is set when the row failed validation."""

    row_index: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    description: Optional[str] = None
    department: Optional[str] = None
    hire_date: Optional[date] = None
    error: Optional[str] = None

    @property
    def email_key(self) -> str:
        """Dedupe key: emails are unique case-insensitively."""
        return self.email.casefold()

    def to_invite(self, company_id: str) -> InviteCreate:
        return InviteCreate(
            email=self.email,
            company_id=company_id,
            first_name=self.first_name,
            last_name=self.last_name,
            description=self.description,
            department=self.department,
            hire_date=self.hire_date,
        )


@dataclass(slots=True)
class ParseResult:
    """Result of CSV parsing."""

    rows: List[InviteRow]
    headers: List[str]
    header_mapping: Dict[str, Optional[str]]
    ignored_columns: List[str] = field(default_factory=list)

    @property
    def valid_rows(self) -> List[InviteRow]:
        return [r for r in self.rows if r.error is None]

    @property
    def errored_rows(self) -> List[InviteRow]:
        return [r for r in self.rows if r.error is not None]


# =============================================================================
# Helper Functions
# =============================================================================


def map_headers(raw_headers: List[str]) -> Dict[str, Optional[str]]:
    """Map raw CSV headers to canonical column names (None for unknown)."""
    mapping: Dict[str, Optional[str]] = {}
    for raw in raw_headers:
        normalized = raw.lower().strip().replace(" ", "").replace("-", "").replace("_", "")
        mapping[raw] = CANONICAL_HEADERS.get(normalized)
    return mapping


def parse_hire_date(value: str) -> date:
    """
    Parse a hire date cell.

    Integers are epoch milliseconds (spreadsheet exports); anything else is
    tried as ISO 8601 and then a few common day/month layouts.

    Raises:
        ValueError: if no interpretation fits
    """
    value = value.strip()
    if _EPOCH_MS.match(value):
        try:
            return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc).date()
        except (OverflowError, OSError) as e:
            raise ValueError(f"epoch out of range: {value}") from e

    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    for fmt in HIRE_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue

    raise ValueError(f"unrecognized date: {value}")


# =============================================================================
# Request body
# =============================================================================


async def read_csv_from_request(request: Request) -> str:
    """
    Get CSV text from a request: the first file of a multipart form, or the
    raw body for any other content type.
    """
    content_type = request.headers.get("content-type", "")

    if content_type.lower().startswith("multipart/form-data"):
        if "boundary=" not in content_type:
            raise BadRequestError(ERROR_MISSING_BOUNDARY)

        form = await request.form()
        try:
            for _name, value in form.multi_items():
                if isinstance(value, UploadFile):
                    content = await value.read()
                    return content.decode("utf-8-sig", errors="replace")
        finally:
            await form.close()
        raise BadRequestError(ERROR_NO_FILE)

    text = (await request.body()).decode("utf-8-sig", errors="replace")
    if not text.strip():
        raise BadRequestError(ERROR_EMPTY_CSV)
    return text


# =============================================================================
# CSV Parser
# =============================================================================


def parse_invite_csv(text: str) -> ParseResult:
    """
    Parse CSV text into InviteRow records.

    Raises:
        BadRequestError: empty_csv, missing_header (with `missing`), no_rows
    """
    if not text or not text.strip():
        raise BadRequestError(ERROR_EMPTY_CSV)

    reader = csv.reader(io.StringIO(text.strip(), newline=""))
    lines = [[cell.strip() for cell in line] for line in reader if any(c.strip() for c in line)]
    if not lines:
        raise BadRequestError(ERROR_EMPTY_CSV)

    headers = lines[0]
    header_mapping = map_headers(headers)

    mapped_cols = {v for v in header_mapping.values() if v}
    for required in REQUIRED_COLUMNS:
        if required not in mapped_cols:
            raise BadRequestError(ERROR_MISSING_HEADER, missing=required)

    ignored = [raw for raw, canonical in header_mapping.items() if canonical in IGNORED_COLUMNS]
    if ignored:
        logger.warning(f"Ignoring tenant columns in upload: {ignored}")

    data = lines[1:]
    if not data:
        raise BadRequestError(ERROR_NO_ROWS)

    rows = [_parse_row(idx, dict(zip(headers, line)), header_mapping) for idx, line in enumerate(data)]
    return ParseResult(
        rows=rows,
        headers=headers,
        header_mapping=header_mapping,
        ignored_columns=ignored,
    )


def _parse_row(
    row_idx: int,
    row: Dict[str, str],
    header_mapping: Dict[str, Optional[str]],
) -> InviteRow:
    """Validate a single CSV row into an InviteRow (first failure wins)."""
    mapped: Dict[str, str] = {}
    present = set()
    for raw_col, canonical_col in header_mapping.items():
        if not canonical_col or canonical_col in IGNORED_COLUMNS:
            continue
        present.add(canonical_col)
        value = row.get(raw_col, "").strip()
        if value and canonical_col not in mapped:
            mapped[canonical_col] = value

    parsed = InviteRow(
        row_index=row_idx,
        email=mapped.get("email", ""),
        first_name=mapped.get("first_name"),
        last_name=mapped.get("last_name"),
        description=mapped.get("description"),
        department=mapped.get("department"),
    )

    if "@" not in parsed.email:
        parsed.error = ROW_INVALID_EMAIL
    elif "first_name" in present and not parsed.first_name:
        parsed.error = ROW_MISSING_FIRST_NAME
    elif "last_name" in present and not parsed.last_name:
        parsed.error = ROW_MISSING_LAST_NAME
    elif "hire_date" in mapped:
        try:
            parsed.hire_date = parse_hire_date(mapped["hire_date"])
        except ValueError:
            parsed.error = ROW_INVALID_HIRE_DATE

    if parsed.error:
        logger.debug(f"Row {row_idx} rejected: {parsed.error}", extra={"row_index": row_idx})
    return parsed
