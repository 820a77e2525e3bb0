"""End-to-end audit orchestration."""

from linkaudit.pipeline.service import AuditService, PipelineResult

__all__ = ["AuditService", "PipelineResult"]
