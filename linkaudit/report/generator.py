"""Aggregate validation results into a health summary and SEO-impact estimate.

The generator is read-only: it never touches the store and tolerates partial
data (results with no matching scanned link are counted but carry no file or
priority context).
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from linkaudit.config import Settings
from linkaudit.db.models import (
    AppliedCorrection,
    LinkStatus,
    LinkType,
    Priority,
    ScannedLink,
    ValidationResult,
)

logger = logging.getLogger(__name__)

MAX_PRIORITY_ACTIONS = 5


@dataclass
class ReportConfig:
    loss_cap: float = 25.0
    internal_multiplier: float = 1.5
    priority_weights: Dict[Priority, float] = field(default_factory=lambda: {
        Priority.CRITICAL: 5.0,
        Priority.HIGH: 3.0,
        Priority.MEDIUM: 1.0,
        Priority.LOW: 0.5,
    })

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReportConfig":
        return cls(loss_cap=settings.estimated_loss_cap)


@dataclass
class ReportSummary:
    total_links: int
    valid_links: int
    broken_links: int
    corrected_links: int
    pending_links: int
    seo_health_score: int


@dataclass
class SeoImpact:
    critical_issues: int
    estimated_traffic_loss: float
    affected_pages: int
    priority_actions: List[str]


@dataclass
class BrokenLinkDetail:
    url: str
    source_files: List[str]
    link_type: Optional[LinkType]
    priority: Priority
    status_code: Optional[int]
    error: str
    impact: float
    suggested_actions: List[str]


@dataclass
class AuditReport:
    generated_at: int
    summary: ReportSummary
    seo_impact: SeoImpact
    broken_links: List[BrokenLinkDetail]
    recommendations: List[str]
    average_response_time_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for detail in data["broken_links"]:
            detail["link_type"] = detail["link_type"].value if detail["link_type"] else None
            detail["priority"] = detail["priority"].value
        return data

    def write_report(self, path: Path) -> Path:
        """Write the report as pretty-printed JSON and return the path."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        return path


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def health_score(total: int, broken: int) -> int:
    """Percentage of links not broken; 100 for an empty audit."""
    if total <= 0:
        return 100
    broken = min(max(broken, 0), total)
    return round(100 * (total - broken) / total)


def _highest_priority(links: Iterable[ScannedLink]) -> Priority:
    best = Priority.LOW
    for link in links:
        if link.priority.rank > best.rank:
            best = link.priority
    return best


def _suggested_actions(result: ValidationResult, link_type: Optional[LinkType]) -> List[str]:
    actions: List[str] = []
    code = result.status_code
    if code == 404:
        actions.append("Restore the page or add a 301 redirect to its replacement")
    elif code in (401, 403):
        actions.append("Check access permissions on the target")
    elif code is not None and code >= 500:
        actions.append("Server error: check the target host and retry later")
    if link_type is LinkType.INTERNAL:
        actions.append("Update the link to a valid internal page")
    elif link_type is LinkType.DOWNLOAD:
        actions.append("Upload the missing file or publish a placeholder page")
    elif link_type is LinkType.EXTERNAL:
        actions.append("Replace with an alternative external source or remove the link")
    elif link_type is LinkType.ANCHOR:
        actions.append("Add the missing anchor id to the page or fix the fragment")
    return actions


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class ReportGenerator:
    def __init__(self, config: Optional[ReportConfig] = None) -> None:
        self.config = config or ReportConfig()

    def link_impact(self, priority: Priority, link_type: Optional[LinkType]) -> float:
        weight = self.config.priority_weights[priority]
        if link_type is LinkType.INTERNAL:
            weight *= self.config.internal_multiplier
        return weight

    def generate(
        self,
        results: List[ValidationResult],
        scanned_links: Iterable[ScannedLink] = (),
        corrections: Iterable[AppliedCorrection] = (),
    ) -> AuditReport:
        by_url: Dict[str, List[ScannedLink]] = {}
        for link in scanned_links:
            by_url.setdefault(link.url, []).append(link)

        total = len(results)
        counts = {status: 0 for status in LinkStatus}
        for result in results:
            counts[result.status] += 1

        broken_results = [r for r in results if r.status is LinkStatus.BROKEN]
        corrected = len({c.original_url for c in corrections})

        summary = ReportSummary(
            total_links=total,
            valid_links=counts[LinkStatus.VALID] + counts[LinkStatus.REDIRECT],
            broken_links=counts[LinkStatus.BROKEN],
            corrected_links=corrected,
            pending_links=counts[LinkStatus.TIMEOUT] + counts[LinkStatus.UNKNOWN],
            seo_health_score=health_score(total, counts[LinkStatus.BROKEN]),
        )

        details = [self._detail(r, by_url.get(r.url, [])) for r in broken_results]
        details.sort(key=lambda d: (d.impact, d.priority.rank), reverse=True)

        critical = sum(1 for d in details if d.priority is Priority.CRITICAL)
        loss = min(self.config.loss_cap, sum(d.impact for d in details))
        affected = {f for d in details for f in d.source_files}

        impact = SeoImpact(
            critical_issues=critical,
            estimated_traffic_loss=round(loss, 2),
            affected_pages=len(affected),
            priority_actions=self._priority_actions(details, critical),
        )

        timings = [r.response_time_ms for r in results if r.response_time_ms is not None]
        report = AuditReport(
            generated_at=int(time.time()),
            summary=summary,
            seo_impact=impact,
            broken_links=details,
            recommendations=self._recommendations(summary, impact, details),
            average_response_time_ms=round(sum(timings) / len(timings), 1) if timings else None,
        )
        logger.info(
            "[REPORT] %d links, %d broken, score %d, estimated loss %.1f%%",
            total, summary.broken_links, summary.seo_health_score, impact.estimated_traffic_loss,
        )
        return report

    def _detail(self, result: ValidationResult, links: List[ScannedLink]) -> BrokenLinkDetail:
        priority = _highest_priority(links)
        link_type = links[0].link_type if links else None
        return BrokenLinkDetail(
            url=result.url,
            source_files=sorted({link.source_file for link in links}),
            link_type=link_type,
            priority=priority,
            status_code=result.status_code,
            error=result.error_message or f"HTTP {result.status_code}",
            impact=self.link_impact(priority, link_type),
            suggested_actions=_suggested_actions(result, link_type),
        )

    def _priority_actions(self, details: List[BrokenLinkDetail], critical: int) -> List[str]:
        actions: List[str] = []
        if critical > 0:
            actions.append(f"Fix {critical} critical links now")
        internal = sum(1 for d in details if d.link_type is LinkType.INTERNAL)
        if internal:
            actions.append(f"Repair {internal} broken internal links (high SEO impact)")
        downloads = sum(1 for d in details if d.link_type is LinkType.DOWNLOAD)
        if downloads:
            actions.append(f"Restore or replace {downloads} missing downloadable resources")
        external = sum(1 for d in details if d.link_type is LinkType.EXTERNAL)
        if external:
            actions.append(f"Replace or remove {external} dead external links")
        if len(details) > 10:
            actions.append("Enable scheduled link monitoring")
        return actions[:MAX_PRIORITY_ACTIONS]

    def _recommendations(
        self,
        summary: ReportSummary,
        impact: SeoImpact,
        details: List[BrokenLinkDetail],
    ) -> List[str]:
        recommendations: List[str] = []
        if summary.seo_health_score < 80:
            recommendations.append("Link health score is low: run a full audit and review the report")
        if impact.critical_issues > 0:
            recommendations.append("Critical links are broken: immediate intervention required")
        if impact.estimated_traffic_loss > 5:
            recommendations.append(
                f"Estimated traffic loss {impact.estimated_traffic_loss:.1f}%: prioritise fixes"
            )
        if any(d.link_type is LinkType.INTERNAL for d in details):
            recommendations.append("Add 301 redirects for removed internal pages")
        if summary.pending_links > 0:
            recommendations.append(f"Re-check {summary.pending_links} links that timed out or could not be checked")
        if len(details) > 5:
            recommendations.append("Schedule regular automated audits")
        return recommendations
