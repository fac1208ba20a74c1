"""CSV intake of employee invites."""

from .bulk_invite import BulkInvitePipeline, BulkInviteReport, EmailLockRegistry, RowResult
from .csv_parser import InviteRow, ParseResult, parse_hire_date, parse_invite_csv, read_csv_from_request

__all__ = [
    "BulkInvitePipeline",
    "BulkInviteReport",
    "EmailLockRegistry",
    "InviteRow",
    "ParseResult",
    "RowResult",
    "parse_hire_date",
    "parse_invite_csv",
    "read_csv_from_request",
]
