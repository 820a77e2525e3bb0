"""Health alerts and notification channels."""

from linkaudit.alerts.manager import AlertConfig, AlertManager, AlertOutcome
from linkaudit.alerts.notifier import LogNotifier, Notifier, SmtpNotifier, notifier_from_settings

__all__ = [
    "AlertConfig",
    "AlertManager",
    "AlertOutcome",
    "LogNotifier",
    "Notifier",
    "SmtpNotifier",
    "notifier_from_settings",
]
