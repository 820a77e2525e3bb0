"""Threshold alerts over audit history.

Rules are evaluated against the latest ``audit_history`` row (and up to four
earlier rows for trend detection).  Every rule type has its own cooldown so a
persistently unhealthy site does not produce one email per audit.  Delivery
is best-effort: a failing notifier is logged and reported in the returned
:class:`AlertOutcome`, never raised.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from linkaudit.config import Settings
from linkaudit.db import history as history_db
from linkaudit.db import resource_requests as requests_db
from linkaudit.db.models import AuditRun
from linkaudit.alerts.notifier import Notifier
from linkaudit.report.generator import health_score

logger = logging.getLogger(__name__)

TREND_WINDOW = 5
TREND_MIN_RUNS = 3
TREND_DECREASING_SHARE = 0.6


@dataclass
class AlertConfig:
    enabled: bool = True
    recipient: str = "admin@localhost"
    health_score_threshold: int = 85
    health_drop_threshold: int = 10
    critical_threshold: int = 1
    broken_threshold: int = 25
    broken_increase_threshold: int = 10
    cooldown_minutes: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "AlertConfig":
        return cls(
            enabled=settings.alerts_enabled,
            recipient=settings.admin_email,
            health_score_threshold=settings.alert_health_score_threshold,
            health_drop_threshold=settings.alert_health_drop_threshold,
            critical_threshold=settings.alert_critical_threshold,
            broken_threshold=settings.alert_broken_threshold,
            broken_increase_threshold=settings.alert_broken_increase_threshold,
            cooldown_minutes=settings.alert_cooldown_minutes,
        )


@dataclass
class Alert:
    kind: str
    message: str


@dataclass
class AlertOutcome:
    triggered: List[Alert] = field(default_factory=list)
    sent: bool = False
    error: Optional[str] = None


def _score(run: AuditRun) -> int:
    if run.seo_score is not None:
        return run.seo_score
    return health_score(run.total_links, run.broken_links)


def is_decreasing_trend(scores_oldest_first: List[float]) -> bool:
    """At least 60% of consecutive steps go down, over at least three runs."""
    if len(scores_oldest_first) < TREND_MIN_RUNS:
        return False
    steps = list(zip(scores_oldest_first, scores_oldest_first[1:]))
    decreasing = sum(1 for before, after in steps if after < before)
    return decreasing / len(steps) >= TREND_DECREASING_SHARE


class AlertManager:
    def __init__(
        self,
        conn: sqlite3.Connection,
        notifier: Notifier,
        config: Optional[AlertConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.conn = conn
        self.notifier = notifier
        self.config = config or AlertConfig()
        self._clock = clock
        self._last_sent: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Cooldown
    # ------------------------------------------------------------------

    def _cooling_down(self, kind: str) -> bool:
        last = self._last_sent.get(kind)
        return last is not None and self._clock() - last < self.config.cooldown_minutes * 60

    def reset_cooldowns(self) -> None:
        self._last_sent.clear()

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def check_rules(self, critical_issues: int = 0) -> List[Alert]:
        """Return every rule that matches the latest audit (ignores cooldown)."""
        recent = history_db.recent_audits(self.conn, TREND_WINDOW)
        if not recent:
            return []
        latest = recent[0]
        previous = recent[1] if len(recent) > 1 else None
        score = _score(latest)
        cfg = self.config
        alerts: List[Alert] = []

        if score < cfg.health_score_threshold:
            alerts.append(Alert(
                "low_health_score",
                f"Link health score is {score}/100 (threshold {cfg.health_score_threshold}).",
            ))
        if previous is not None:
            drop = _score(previous) - score
            if drop >= cfg.health_drop_threshold:
                alerts.append(Alert(
                    "health_score_drop",
                    f"Health score dropped {drop} points since the previous audit "
                    f"({_score(previous)} -> {score}).",
                ))
            increase = latest.broken_links - previous.broken_links
            if increase >= cfg.broken_increase_threshold:
                alerts.append(Alert(
                    "broken_links_increase",
                    f"Broken links increased by {increase} "
                    f"({previous.broken_links} -> {latest.broken_links}).",
                ))
        if critical_issues >= cfg.critical_threshold > 0:
            alerts.append(Alert(
                "critical_links",
                f"{critical_issues} critical links are broken.",
            ))
        if latest.broken_links >= cfg.broken_threshold:
            alerts.append(Alert(
                "broken_links",
                f"{latest.broken_links} broken links out of {latest.total_links}.",
            ))

        scores = [_score(run) for run in reversed(recent)]
        if is_decreasing_trend(scores):
            alerts.append(Alert(
                "negative_trend",
                "Health score is trending down over the last "
                f"{len(scores)} audits: {' -> '.join(str(s) for s in scores)}.",
            ))
        return alerts

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(self, critical_issues: int = 0) -> AlertOutcome:
        """Check rules, honour cooldowns, and notify once for all new alerts."""
        outcome = AlertOutcome()
        if not self.config.enabled:
            return outcome

        try:
            matched = self.check_rules(critical_issues)
        except sqlite3.Error as exc:
            logger.error("[ALERT] Could not read audit history: %s", exc)
            outcome.error = str(exc)
            return outcome

        outcome.triggered = [a for a in matched if not self._cooling_down(a.kind)]
        if not outcome.triggered:
            return outcome

        subject = f"[LinkAudit] {len(outcome.triggered)} alert(s): " + ", ".join(
            a.kind for a in outcome.triggered
        )
        body = "\n".join(f"- {a.message}" for a in outcome.triggered)
        if self._deliver(subject, body, outcome):
            now = self._clock()
            for alert in outcome.triggered:
                self._last_sent[alert.kind] = now
        return outcome

    def _deliver(self, subject: str, body: str, outcome: AlertOutcome) -> bool:
        try:
            self.notifier.send(self.config.recipient, subject, body)
        except Exception as exc:  # noqa: BLE001
            logger.error("[ALERT] Notification failed: %s", exc)
            outcome.error = f"{type(exc).__name__}: {exc}"
            return False
        outcome.sent = True
        return True

    def render_weekly_summary(self, days: int = 7) -> Optional[str]:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        start = now - timedelta(days=days)
        audits = history_db.audits_since(self.conn, int(start.timestamp()))
        if not audits:
            return None

        first, last = audits[0], audits[-1]
        scores = [_score(a) for a in audits]
        lines = [
            f"Period: {start:%Y-%m-%d} - {now:%Y-%m-%d}",
            f"Audits run: {len(audits)}",
            f"Average health score: {round(sum(scores) / len(scores))}",
            f"Broken links (latest): {last.broken_links}",
            f"Corrections applied: {sum(a.corrected_links for a in audits)}",
            f"Health score change: {_score(last) - _score(first):+d}",
            f"Broken links change: {last.broken_links - first.broken_links:+d}",
        ]
        top = requests_db.top_requested(self.conn, int(start.timestamp()), limit=5)
        if top:
            lines.append("")
            lines.append("Most requested resources:")
            lines.extend(f"  {count:>3}  {url}" for url, count in top)
        return "\n".join(lines)

    def send_weekly_summary(self, days: int = 7) -> AlertOutcome:
        outcome = AlertOutcome()
        if not self.config.enabled:
            return outcome
        body = self.render_weekly_summary(days)
        if body is None:
            logger.info("[ALERT] No audits in the last %d days; weekly summary skipped", days)
            return outcome
        self._deliver("[LinkAudit] Weekly link health summary", body, outcome)
        return outcome

    def notify(self, subject: str, body: str) -> AlertOutcome:
        """Send an ad-hoc notification with the same best-effort policy."""
        outcome = AlertOutcome()
        self._deliver(subject, body, outcome)
        return outcome
