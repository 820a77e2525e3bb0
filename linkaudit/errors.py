"""Exception hierarchy for the audit core."""

from __future__ import annotations


class LinkAuditError(Exception):
    """Base class for all audit errors."""


class CorrectionError(LinkAuditError):
    """A correction could not be applied; the source file is left untouched."""


class StaleLocationError(CorrectionError):
    """The original URL is no longer present at the recorded location."""

    def __init__(self, file_path: str, url: str, line: int | None = None) -> None:
        where = f"{file_path}:{line}" if line else file_path
        super().__init__(f"Original URL {url!r} not found at {where}")
        self.file_path = file_path
        self.url = url
        self.line = line


class RollbackError(CorrectionError):
    """A recorded correction could not be rolled back."""


class LowConfidenceError(LinkAuditError):
    """Best correction candidate is below the manual-fix floor."""

    def __init__(self, url: str, confidence: float | None, floor: float) -> None:
        if confidence is None:
            detail = "no correction candidate found"
        else:
            detail = f"best candidate confidence {confidence:.2f} < {floor:.2f}"
        super().__init__(f"Manual intervention required for {url!r}: {detail}")
        self.url = url
        self.confidence = confidence
        self.floor = floor


class JobStateError(LinkAuditError):
    """Illegal scheduled-job state transition."""


class RateLimitError(LinkAuditError):
    """Per-user daily quota exceeded."""
