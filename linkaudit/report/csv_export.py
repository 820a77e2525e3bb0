"""CSV exports of an audit report and of applied corrections.

Reports are exported from their dict form (``AuditReport.to_dict()`` or a
JSON report read back from disk), so a past run can be exported without
re-validating anything.
"""

from __future__ import annotations

import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from linkaudit.db.models import AppliedCorrection

logger = logging.getLogger(__name__)

BROKEN_LINK_FIELDS = [
    "url",
    "priority",
    "link_type",
    "status_code",
    "error",
    "impact",
    "source_files",
    "suggested_actions",
]

CORRECTION_FIELDS = [
    "rollback_id",
    "original_url",
    "corrected_url",
    "file_path",
    "source_line",
    "correction_type",
    "confidence",
    "applied_at",
]


def _iso(timestamp: Optional[float]) -> str:
    if timestamp is None:
        return ""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _open(path: Path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path.open("w", newline="", encoding="utf-8")


def filter_broken_links(
    broken_links: Iterable[Mapping[str, Any]],
    priority: Optional[str] = None,
    link_type: Optional[str] = None,
) -> List[Mapping[str, Any]]:
    return [
        detail for detail in broken_links
        if (priority is None or detail.get("priority") == priority)
        and (link_type is None or detail.get("link_type") == link_type)
    ]


def write_broken_links_csv(
    path: Path,
    broken_links: Iterable[Mapping[str, Any]],
    priority: Optional[str] = None,
    link_type: Optional[str] = None,
) -> int:
    """One row per broken URL, optionally limited to a priority and/or link type.

    Returns the number of rows written.
    """
    rows = filter_broken_links(broken_links, priority, link_type)
    with _open(path) as handle:
        writer = csv.DictWriter(handle, fieldnames=BROKEN_LINK_FIELDS)
        writer.writeheader()
        for detail in rows:
            writer.writerow({
                "url": detail["url"],
                "priority": detail.get("priority") or "",
                "link_type": detail.get("link_type") or "",
                "status_code": detail.get("status_code") or "",
                "error": detail.get("error") or "",
                "impact": detail.get("impact", ""),
                "source_files": "; ".join(detail.get("source_files") or []),
                "suggested_actions": "; ".join(detail.get("suggested_actions") or []),
            })
    logger.info("[REPORT] %d broken links exported to %s", len(rows), path)
    return len(rows)


def write_summary_csv(path: Path, report: Mapping[str, Any]) -> Path:
    """Two-column ``metric,value`` export of the summary and SEO impact."""
    summary: Dict[str, Any] = report.get("summary") or {}
    impact: Dict[str, Any] = report.get("seo_impact") or {}
    rows = [("generated_at", _iso(report.get("generated_at")))]
    rows.extend(summary.items())
    rows.extend((key, value) for key, value in impact.items() if key != "priority_actions")
    rows.append(("average_response_time_ms", report.get("average_response_time_ms")))
    rows.extend(("priority_action", action) for action in impact.get("priority_actions", []))
    rows.extend(("recommendation", rec) for rec in report.get("recommendations", []))

    with _open(path) as handle:
        writer = csv.writer(handle)
        writer.writerow(["metric", "value"])
        for key, value in rows:
            writer.writerow([key, "" if value is None else value])
    return Path(path)


def write_corrections_csv(path: Path, corrections: Iterable[AppliedCorrection]) -> int:
    """One row per applied correction; returns the number of rows written."""
    count = 0
    with _open(path) as handle:
        writer = csv.DictWriter(handle, fieldnames=CORRECTION_FIELDS)
        writer.writeheader()
        for c in corrections:
            writer.writerow({
                "rollback_id": c.rollback_id,
                "original_url": c.original_url,
                "corrected_url": c.corrected_url,
                "file_path": c.file_path,
                "source_line": c.source_line or "",
                "correction_type": c.correction_type.value,
                "confidence": "" if c.confidence is None else f"{c.confidence:.2f}",
                "applied_at": _iso(c.applied_at),
            })
            count += 1
    logger.info("[REPORT] %d corrections exported to %s", count, path)
    return count


def export_report_csv(
    out_dir: Path,
    report: Mapping[str, Any],
    corrections: Iterable[AppliedCorrection] = (),
    priority: Optional[str] = None,
    link_type: Optional[str] = None,
) -> Dict[str, Path]:
    """Write ``summary.csv``, ``broken-links.csv`` and ``corrections.csv`` into *out_dir*."""
    out_dir = Path(out_dir)
    paths = {
        "summary": out_dir / "summary.csv",
        "broken_links": out_dir / "broken-links.csv",
        "corrections": out_dir / "corrections.csv",
    }
    write_summary_csv(paths["summary"], report)
    write_broken_links_csv(paths["broken_links"], report.get("broken_links") or [], priority, link_type)
    write_corrections_csv(paths["corrections"], corrections)
    return paths
