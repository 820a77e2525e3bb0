"""Audit report aggregation."""

from linkaudit.report.generator import AuditReport, ReportConfig, ReportGenerator, health_score

__all__ = ["AuditReport", "ReportConfig", "ReportGenerator", "health_score"]
