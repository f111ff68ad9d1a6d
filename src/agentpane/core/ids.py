"""Job ID utilities

Jobs are owned either by the terminal host or by the local job table, so
job IDs carry a namespace prefix that tells the router where to dispatch:

- tmux:<pane_id>   - process running in a tmux pane (e.g., tmux:%3)
- proc:<n>         - detached OS process started by agentpane (e.g., proc:7)
"""

from dataclasses import dataclass
from enum import Enum


class JobKind(Enum):
    """Job owner namespace."""

    TMUX = "tmux"
    PROC = "proc"


@dataclass(frozen=True)
class ParsedJobId:
    """Parsed namespaced job ID."""

    kind: JobKind
    native_id: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.native_id}"


def make_job_id(kind: JobKind | str, native_id: str | int) -> str:
    """Create a namespaced job ID.

    Args:
        kind: Job namespace ("tmux", "proc") or JobKind enum
        native_id: Owner-local identifier (tmux pane id, local counter)

    Returns:
        Namespaced ID like "tmux:%3" or "proc:7"
    """
    if isinstance(kind, JobKind):
        kind = kind.value
    return f"{kind}:{native_id}"


def parse_job_id(job_id: str) -> ParsedJobId | None:
    """Parse a namespaced job ID, or None if it is not one."""
    kind, sep, native = job_id.partition(":")
    if not sep or not native:
        return None
    try:
        return ParsedJobId(kind=JobKind(kind), native_id=native)
    except ValueError:
        return None


def get_job_kind(job_id: str) -> JobKind | None:
    parsed = parse_job_id(job_id)
    return parsed.kind if parsed else None


def get_native_id(job_id: str) -> str:
    """Extract the native part, or return the input unchanged if not namespaced."""
    parsed = parse_job_id(job_id)
    return parsed.native_id if parsed else job_id


def short_id(value: str | None, length: int = 8) -> str:
    """Short display form of a session/job ID for logging."""
    if not value:
        return "-"
    return value.split(":")[-1][:length]
