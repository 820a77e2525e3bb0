"""Corrector: rank fixes for broken links and write them back to source files.

Every applied correction captures the full pre-image of the edited file
(base64 + sha256) so :meth:`Corrector.rollback_correction` can restore it
byte-for-byte.  A physical copy is also kept under
``<backup_dir>/<rollback_id>/``.

The sha256 of the written content is recorded too: a rollback only restores
the pre-image while the file still holds exactly that content, so corrections
to the same file are undone newest first and later edits are never lost.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
import re
import secrets
import shutil
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from linkaudit.config import Settings
from linkaudit.corrector.candidates import (
    KnownGood,
    extension_candidates,
    redirect_candidates,
    similar_candidates,
    typo_candidates,
)
from linkaudit.db import corrections as corrections_db
from linkaudit.db.models import (
    AppliedCorrection,
    CorrectionSuggestion,
    LinkType,
    ScannedLink,
    ValidationResult,
)
from linkaudit.errors import CorrectionError, RollbackError, StaleLocationError

logger = logging.getLogger(__name__)


@dataclass
class CorrectorConfig:
    base_url: str = "http://localhost:3000"
    auto_apply_confidence: float = 0.8
    manual_fix_confidence: float = 0.7
    typo_max_distance: int = 2
    max_auto_corrections: int = 5
    backup_retention_days: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "CorrectorConfig":
        return cls(
            base_url=settings.base_url,
            auto_apply_confidence=settings.auto_apply_confidence,
            manual_fix_confidence=settings.manual_fix_confidence,
            typo_max_distance=settings.typo_max_distance,
            max_auto_corrections=settings.max_auto_corrections,
            backup_retention_days=settings.backup_retention_days,
        )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _occurrence_pattern(url: str) -> re.Pattern[bytes]:
    """Match *url* as a whole token, not as a prefix of a longer URL."""
    escaped = re.escape(url.encode("utf-8"))
    return re.compile(rb"(?<![\w/.\-])" + escaped + rb"(?![\w/.\-])")


def _new_rollback_id() -> str:
    return f"rollback_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _write_atomic(path: Path, data: bytes) -> None:
    tmp = path.with_name(f".{path.name}.linkaudit-tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)


class Corrector:
    """Generate, apply and undo link corrections."""

    def __init__(
        self,
        config: CorrectorConfig,
        content_root: Path,
        backup_dir: Path,
        conn: Optional[sqlite3.Connection] = None,
        known_good: Iterable[str] = (),
        static_roots: Optional[Sequence[Path]] = None,
    ) -> None:
        self.config = config
        self.content_root = Path(content_root)
        self.backup_dir = Path(backup_dir)
        self.conn = conn
        self.known_good = KnownGood(known_good)
        if static_roots is None:
            static_roots = [self.content_root / "public", self.content_root]
        self.static_roots = list(static_roots)

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def add_known_good(self, urls: Iterable[str]) -> None:
        self.known_good.update(urls)

    def candidates(
        self,
        link: ScannedLink,
        validation: Optional[ValidationResult] = None,
    ) -> List[CorrectionSuggestion]:
        """All candidates for *link*, best first."""
        redirect_url = validation.redirect_url if validation else None
        found: List[CorrectionSuggestion] = list(
            redirect_candidates(link.url, redirect_url, self.config.base_url)
        )
        if link.link_type is not LinkType.EXTERNAL:
            found.extend(typo_candidates(link.url, self.known_good, self.config.typo_max_distance))
            found.extend(extension_candidates(link.url, self.known_good, self.static_roots))
            found.extend(similar_candidates(link.url, self.known_good))

        best: dict[str, CorrectionSuggestion] = {}
        for suggestion in found:
            if suggestion.suggested_url == link.url:
                continue
            current = best.get(suggestion.suggested_url)
            if current is None or suggestion.confidence > current.confidence:
                best[suggestion.suggested_url] = suggestion
        return sorted(best.values(), key=lambda s: s.confidence, reverse=True)

    def suggest(
        self,
        link: ScannedLink,
        validation: Optional[ValidationResult] = None,
    ) -> Optional[CorrectionSuggestion]:
        """Top-ranked candidate for *link*, or ``None``."""
        ranked = self.candidates(link, validation)
        return ranked[0] if ranked else None

    # ------------------------------------------------------------------
    # Apply / rollback
    # ------------------------------------------------------------------

    def _resolve(self, file_path: str) -> Path:
        path = Path(file_path)
        return path if path.is_absolute() else self.content_root / path

    def _backup(self, rollback_id: str, path: Path, original: bytes) -> Path:
        try:
            relative = path.resolve().relative_to(self.content_root.resolve())
        except ValueError:
            relative = Path(path.name)
        target = self.backup_dir / rollback_id / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(original)
        return target

    def apply_correction(self, link: ScannedLink, suggestion: CorrectionSuggestion) -> AppliedCorrection:
        """Rewrite *link* in its source file to ``suggestion.suggested_url``.

        Raises:
            StaleLocationError: The original URL is not at the recorded location.
            CorrectionError: The target is ambiguous or the file cannot be written.
        """
        path = self._resolve(link.source_file)
        try:
            original = path.read_bytes()
        except OSError as exc:
            raise CorrectionError(f"Cannot read {link.source_file}: {exc}") from exc

        pattern = _occurrence_pattern(suggestion.original_url)
        replacement = suggestion.suggested_url.encode("utf-8")

        if link.source_line:
            lines = original.splitlines(keepends=True)
            index = link.source_line - 1
            if index >= len(lines) or not pattern.search(lines[index]):
                raise StaleLocationError(link.source_file, suggestion.original_url, link.source_line)
            lines[index] = pattern.sub(lambda _m: replacement, lines[index])
            updated = b"".join(lines)
        else:
            matches = pattern.findall(original)
            if not matches:
                raise StaleLocationError(link.source_file, suggestion.original_url)
            if len(matches) > 1:
                raise CorrectionError(
                    f"Ambiguous correction target: {suggestion.original_url!r} occurs "
                    f"{len(matches)} times in {link.source_file} and no line is recorded"
                )
            updated = pattern.sub(lambda _m: replacement, original)

        rollback_id = _new_rollback_id()
        rollback_data = json.dumps({
            "file_path": str(path),
            "encoding": "base64",
            "content": base64.b64encode(original).decode("ascii"),
            "sha256": hashlib.sha256(original).hexdigest(),
            "applied_sha256": hashlib.sha256(updated).hexdigest(),
        })

        try:
            self._backup(rollback_id, path, original)
            _write_atomic(path, updated)
        except OSError as exc:
            raise CorrectionError(f"Cannot write {link.source_file}: {exc}") from exc

        correction = AppliedCorrection(
            original_url=suggestion.original_url,
            corrected_url=suggestion.suggested_url,
            file_path=link.source_file,
            source_line=link.source_line,
            correction_type=suggestion.correction_type,
            confidence=suggestion.confidence,
            rollback_id=rollback_id,
            rollback_data=rollback_data,
            applied_at=int(time.time()),
        )
        if self.conn is not None:
            corrections_db.insert_correction(self.conn, correction)

        logger.info(
            "[CORRECT] %s -> %s in %s:%s (%s, %.2f)",
            correction.original_url, correction.corrected_url, link.source_file,
            link.source_line, suggestion.correction_type.value, suggestion.confidence,
        )
        return correction

    def _lookup(self, rollback_id: str) -> AppliedCorrection:
        if self.conn is None:
            raise RollbackError("No correction store configured")
        correction = corrections_db.get_by_rollback_id(self.conn, rollback_id)
        if correction is None:
            raise RollbackError(f"Unknown rollback id: {rollback_id!r}")
        return correction

    def rollback_correction(self, rollback_id: str) -> AppliedCorrection:
        """Restore the exact pre-image recorded for *rollback_id*.

        Raises:
            RollbackError: Unknown id, already rolled back, corrupt data, or
                the file changed after the correction (a later correction or
                a manual edit); the file is left untouched.
        """
        correction = self._lookup(rollback_id)
        if corrections_db.is_rolled_back(self.conn, rollback_id):
            raise RollbackError(f"Correction {rollback_id!r} was already rolled back")

        try:
            payload = correction.rollback_payload()
            content = base64.b64decode(payload["content"], validate=True)
        except (ValueError, KeyError, TypeError) as exc:
            raise RollbackError(f"Corrupt rollback data for {rollback_id!r}: {exc}") from exc

        if hashlib.sha256(content).hexdigest() != payload.get("sha256"):
            raise RollbackError(f"Rollback data checksum mismatch for {rollback_id!r}")

        path = Path(payload.get("file_path") or self._resolve(correction.file_path))
        expected = payload.get("applied_sha256")
        if expected:
            try:
                current = path.read_bytes()
            except OSError as exc:
                raise RollbackError(f"Cannot read {path}: {exc}") from exc
            if hashlib.sha256(current).hexdigest() != expected:
                raise RollbackError(
                    f"{correction.file_path} changed after correction {rollback_id!r}; "
                    "roll back later corrections to this file first"
                )

        try:
            _write_atomic(path, content)
        except OSError as exc:
            raise RollbackError(f"Cannot restore {path}: {exc}") from exc

        corrections_db.mark_rolled_back(self.conn, rollback_id)
        logger.info("[CORRECT] Rolled back %s (%s)", rollback_id, correction.file_path)
        return correction

    def verify_correction(self, rollback_id: str) -> bool:
        """``True`` if the file holds the corrected URL and not the original."""
        correction = self._lookup(rollback_id)
        path = Path(correction.rollback_payload().get("file_path") or self._resolve(correction.file_path))
        try:
            data = path.read_bytes()
        except OSError:
            return False
        has_new = _occurrence_pattern(correction.corrected_url).search(data) is not None
        has_old = _occurrence_pattern(correction.original_url).search(data) is not None
        return has_new and not has_old

    def cleanup_old_backups(self, days: Optional[int] = None) -> int:
        """Delete backup directories older than *days*; returns how many."""
        days = self.config.backup_retention_days if days is None else days
        if not self.backup_dir.is_dir():
            return 0
        cutoff = time.time() - days * 86400
        removed = 0
        for entry in self.backup_dir.iterdir():
            if entry.is_dir() and entry.name.startswith("rollback_") and entry.stat().st_mtime < cutoff:
                shutil.rmtree(entry)
                removed += 1
        if removed:
            logger.info("[CORRECT] Removed %d expired backups", removed)
        return removed
