"""Centralised settings for the link audit backend.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).

Components never read ``settings`` directly at call time; they receive a
config object built from it (``ScannerConfig.from_settings(settings)`` etc.)
so tests and the scheduler can run with isolated configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (two levels up from this file)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("LINKAUDIT_WORKSPACE", Path.home() / ".linkaudit_data")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite database file."""
        return self.workspace_dir / "audit.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    @property
    def backup_dir(self) -> Path:
        """Directory holding per-correction backup copies."""
        return self.workspace_dir / "backups"

    @property
    def report_dir(self) -> Path:
        """Directory where JSON audit reports are written."""
        return self.workspace_dir / "reports"

    # ------------------------------------------------------------------
    # Content source
    # ------------------------------------------------------------------
    content_root: Path = field(
        default_factory=lambda: Path(os.environ.get("LINKAUDIT_CONTENT_ROOT", "."))
    )
    sitemap_path: str = field(
        default_factory=lambda: os.environ.get("LINKAUDIT_SITEMAP_PATH", "public/sitemap.xml")
    )

    # ------------------------------------------------------------------
    # Scanner
    # ------------------------------------------------------------------
    base_url: str = field(
        default_factory=lambda: os.environ.get("LINKAUDIT_BASE_URL", "http://localhost:3000")
    )
    scan_max_depth: int = field(
        default_factory=lambda: int(os.environ.get("SCAN_MAX_DEPTH", "1"))
    )
    scan_include_external: bool = field(
        default_factory=lambda: _env_bool("SCAN_INCLUDE_EXTERNAL", "true")
    )
    scan_exclude_patterns: list[str] = field(
        default_factory=lambda: _env_list(
            "SCAN_EXCLUDE_PATTERNS", "node_modules/**,.git/**,.next/**"
        )
    )
    scan_file_extensions: list[str] = field(
        default_factory=lambda: _env_list(
            "SCAN_FILE_EXTENSIONS", ".html,.htm,.md,.mdx,.tsx,.jsx,.ts,.js,.json"
        )
    )

    # ------------------------------------------------------------------
    # Validator
    # ------------------------------------------------------------------
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("VALIDATION_TIMEOUT", "10.0"))
    )
    retry_attempts: int = field(
        default_factory=lambda: int(os.environ.get("VALIDATION_RETRY_ATTEMPTS", "2"))
    )
    user_agent: str = field(
        default_factory=lambda: os.environ.get(
            "VALIDATION_USER_AGENT",
            "Mozilla/5.0 (compatible; LinkAudit-Bot/1.0)",
        )
    )
    follow_redirects: bool = field(
        default_factory=lambda: _env_bool("VALIDATION_FOLLOW_REDIRECTS", "true")
    )
    check_anchors: bool = field(
        default_factory=lambda: _env_bool("VALIDATION_CHECK_ANCHORS", "false")
    )
    batch_size: int = field(
        default_factory=lambda: int(os.environ.get("VALIDATION_BATCH_SIZE", "10"))
    )
    rate_limit_delay: float = field(
        default_factory=lambda: float(os.environ.get("RATE_LIMIT_DELAY", "1.0"))
    )
    retry_backoff: float = field(
        default_factory=lambda: float(os.environ.get("RETRY_BACKOFF", "1.0"))
    )
    validation_cache_ttl: float = field(
        default_factory=lambda: float(os.environ.get("VALIDATION_CACHE_TTL", "3600"))
    )
    local_validation: bool = field(
        default_factory=lambda: _env_bool("VALIDATION_LOCAL_FILES", "true")
    )

    # ------------------------------------------------------------------
    # Corrector
    # ------------------------------------------------------------------
    auto_apply_confidence: float = field(
        default_factory=lambda: float(os.environ.get("AUTO_APPLY_CONFIDENCE", "0.8"))
    )
    manual_fix_confidence: float = field(
        default_factory=lambda: float(os.environ.get("MANUAL_FIX_CONFIDENCE", "0.7"))
    )
    typo_max_distance: int = field(
        default_factory=lambda: int(os.environ.get("TYPO_MAX_DISTANCE", "2"))
    )
    max_auto_corrections: int = field(
        default_factory=lambda: int(os.environ.get("MAX_AUTO_CORRECTIONS", "5"))
    )
    backup_retention_days: int = field(
        default_factory=lambda: int(os.environ.get("BACKUP_RETENTION_DAYS", "30"))
    )

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------
    estimated_loss_cap: float = field(
        default_factory=lambda: float(os.environ.get("ESTIMATED_LOSS_CAP", "25.0"))
    )

    # ------------------------------------------------------------------
    # Alerts / notification
    # ------------------------------------------------------------------
    alerts_enabled: bool = field(
        default_factory=lambda: _env_bool("ALERTS_ENABLED", "true")
    )
    admin_email: str = field(
        default_factory=lambda: os.environ.get("ADMIN_EMAIL", "admin@localhost")
    )
    alert_health_score_threshold: int = field(
        default_factory=lambda: int(os.environ.get("ALERT_HEALTH_SCORE_THRESHOLD", "85"))
    )
    alert_health_drop_threshold: int = field(
        default_factory=lambda: int(os.environ.get("ALERT_HEALTH_DROP_THRESHOLD", "10"))
    )
    alert_critical_threshold: int = field(
        default_factory=lambda: int(os.environ.get("ALERT_CRITICAL_THRESHOLD", "1"))
    )
    alert_broken_threshold: int = field(
        default_factory=lambda: int(os.environ.get("ALERT_BROKEN_THRESHOLD", "25"))
    )
    alert_broken_increase_threshold: int = field(
        default_factory=lambda: int(os.environ.get("ALERT_BROKEN_INCREASE_THRESHOLD", "10"))
    )
    alert_cooldown_minutes: int = field(
        default_factory=lambda: int(os.environ.get("ALERT_COOLDOWN_MINUTES", "60"))
    )
    smtp_host: str = field(
        default_factory=lambda: os.environ.get("SMTP_HOST", "")
    )
    smtp_port: int = field(
        default_factory=lambda: int(os.environ.get("SMTP_PORT", "587"))
    )
    smtp_user: str = field(
        default_factory=lambda: os.environ.get("SMTP_USER", "")
    )
    smtp_password: str = field(
        default_factory=lambda: os.environ.get("SMTP_PASSWORD", "")
    )
    smtp_from: str = field(
        default_factory=lambda: os.environ.get("SMTP_FROM", "linkaudit@localhost")
    )

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------
    scheduler_enabled: bool = field(
        default_factory=lambda: _env_bool("SCHEDULER_ENABLED", "true")
    )
    job_max_age_hours: float = field(
        default_factory=lambda: float(os.environ.get("SCHEDULER_JOB_MAX_AGE_HOURS", "24"))
    )
    quick_check_limit: int = field(
        default_factory=lambda: int(os.environ.get("QUICK_CHECK_LIMIT", "10"))
    )

    # ------------------------------------------------------------------
    # Resource-request intake
    # ------------------------------------------------------------------
    resource_requests_per_day: int = field(
        default_factory=lambda: int(os.environ.get("RESOURCE_REQUESTS_PER_DAY", "3"))
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO")
    )

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)

    @property
    def resolved_sitemap_path(self) -> Path:
        """Sitemap location, resolved against ``content_root`` when relative."""
        path = Path(self.sitemap_path)
        return path if path.is_absolute() else self.content_root / path


# Default configuration source.  Components take their config through their
# constructors; this instance is only read where an entry point builds them:
#   from linkaudit.config import settings
settings = Settings()
