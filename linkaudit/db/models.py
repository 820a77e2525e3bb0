"""Dataclass models representing DB rows.

These are plain Python objects – not ORM models.  The DB layer serialises /
deserialises to and from these types.  Status, priority and type columns are
closed ``str`` enumerations so a value outside the set fails at the row
boundary instead of falling through to a default further down.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class LinkType(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    DOWNLOAD = "download"
    ANCHOR = "anchor"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Ordering key; higher is more important."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.CRITICAL: 3,
}


class LinkStatus(str, Enum):
    VALID = "valid"
    BROKEN = "broken"
    REDIRECT = "redirect"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class CorrectionType(str, Enum):
    TYPO = "typo"
    EXTENSION = "extension"
    REDIRECT = "redirect"
    MOVED = "moved"
    SIMILAR = "similar"


class JobType(str, Enum):
    FULL_AUDIT = "full_audit"
    QUICK_CHECK = "quick_check"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class ScannedLink:
    url: str
    source_file: str
    link_type: LinkType
    priority: Priority
    source_line: Optional[int] = None
    context: str = ""
    id: Optional[int] = None
    created_at: Optional[int] = None

    @property
    def key(self) -> tuple[str, str, Optional[int]]:
        """Identity of a link within a single scan."""
        return (self.url, self.source_file, self.source_line)


@dataclass
class ValidationResult:
    url: str
    status: LinkStatus
    response_time_ms: int
    checked_at: int
    status_code: Optional[int] = None
    redirect_url: Optional[str] = None
    error_message: Optional[str] = None
    id: Optional[int] = None


@dataclass
class CorrectionSuggestion:
    """A proposed fix for one broken link.  Not persisted until applied."""

    original_url: str
    suggested_url: str
    confidence: float
    correction_type: CorrectionType
    reasoning: str

    def __post_init__(self) -> None:
        self.confidence = min(1.0, max(0.0, float(self.confidence)))


@dataclass
class AppliedCorrection:
    original_url: str
    corrected_url: str
    file_path: str
    correction_type: CorrectionType
    rollback_id: str
    rollback_data: str
    applied_at: int
    confidence: Optional[float] = None
    source_line: Optional[int] = None
    id: Optional[int] = None

    @property
    def new_url(self) -> str:
        return self.corrected_url

    @property
    def backup_created(self) -> bool:
        return bool(self.rollback_id and self.rollback_data)

    def rollback_payload(self) -> dict[str, Any]:
        """Decode the stored pre-image metadata."""
        return json.loads(self.rollback_data)


@dataclass
class AuditRun:
    total_links: int
    broken_links: int
    corrected_links: int
    execution_time: float
    created_at: int
    seo_score: Optional[int] = None
    report_path: Optional[str] = None
    id: Optional[int] = None


@dataclass
class HealthMetric:
    date: str
    total_links: int
    broken_links: int
    health_score: int
    response_time_avg: Optional[float]
    created_at: int
    id: Optional[int] = None


@dataclass
class ScheduledJob:
    id: str
    job_type: JobType
    priority: int
    scheduled_at: float
    status: JobStatus
    created_at: int
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.job_type.value,
            "priority": self.priority,
            "scheduled_at": self.scheduled_at,
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
            "metadata": self.metadata,
        }


@dataclass
class ResourceRequest:
    id: int
    user_email: str
    requested_url: str
    source_url: str
    created_at: int
    message: Optional[str] = None
