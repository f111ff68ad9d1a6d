"""Core utilities shared across agentpane modules"""

from .ids import JobKind, ParsedJobId, get_job_kind, get_native_id, make_job_id, parse_job_id, short_id

__all__ = [
    "JobKind",
    "ParsedJobId",
    "make_job_id",
    "parse_job_id",
    "get_job_kind",
    "get_native_id",
    "short_id",
]
