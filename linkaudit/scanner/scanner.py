"""Scanner: walks the content root and the sitemap, producing scanned links."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from linkaudit.config import Settings
from linkaudit.db.models import LinkType, ScannedLink
from linkaudit.scanner.classifier import LinkClassifier
from linkaudit.scanner.extractor import extract_links
from linkaudit.scanner.sitemap import SitemapExtractor

logger = logging.getLogger(__name__)


@dataclass
class ScannerConfig:
    base_url: str = "http://localhost:3000"
    max_depth: int = 1
    include_external: bool = True
    exclude_patterns: List[str] = field(default_factory=list)
    follow_redirects: bool = True
    file_extensions: List[str] = field(
        default_factory=lambda: [".html", ".htm", ".md", ".mdx", ".tsx", ".jsx", ".ts", ".js", ".json"]
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScannerConfig":
        return cls(
            base_url=settings.base_url,
            max_depth=settings.scan_max_depth,
            include_external=settings.scan_include_external,
            exclude_patterns=list(settings.scan_exclude_patterns),
            follow_redirects=settings.follow_redirects,
            file_extensions=list(settings.scan_file_extensions),
        )


@dataclass
class ScanResult:
    links: List[ScannedLink] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    files_scanned: int = 0
    sitemap_files: List[str] = field(default_factory=list)
    sitemap_pages: List[str] = field(default_factory=list)

    def by_type(self, link_type: LinkType) -> List[ScannedLink]:
        return [link for link in self.links if link.link_type is link_type]


# ---------------------------------------------------------------------------
# Exclude globs
# ---------------------------------------------------------------------------

def glob_to_regex(pattern: str) -> re.Pattern:
    """Translate a path glob: ``**`` spans directories, ``*`` stays in one."""
    out = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out))


class ExcludeMatcher:
    def __init__(self, patterns: Iterable[str]) -> None:
        self._compiled = [(p, glob_to_regex(p)) for p in patterns if p]

    def matches(self, path: str) -> bool:
        path = path.replace(os.sep, "/")
        if path.startswith("./"):
            path = path[2:]
        name = path.rsplit("/", 1)[-1]
        for raw, regex in self._compiled:
            if regex.fullmatch(path):
                return True
            if "/" not in raw and regex.fullmatch(name):
                return True
        return False


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------

class Scanner:
    """Collect links from the files under ``root`` and from the sitemap."""

    def __init__(self, config: ScannerConfig, root: Path, sitemap_path: Optional[Path] = None) -> None:
        self.config = config
        self.root = Path(root)
        self.sitemap_path = sitemap_path
        self.classifier = LinkClassifier(config.base_url)
        self.excludes = ExcludeMatcher(config.exclude_patterns)
        self._extensions = {ext.lower() for ext in config.file_extensions}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def scan(self) -> ScanResult:
        """Full scan: content files, then sitemap, filtered and deduplicated."""
        result = ScanResult()
        logger.info("[SCAN] Scanning %s", self.root)

        for path in self._iter_files():
            self._scan_file(path, result)

        if self.sitemap_path is not None:
            self._scan_sitemap(self.sitemap_path, result)

        result.links = self._filter(result.links)
        logger.info(
            "[SCAN] %d unique links in %d files (%d errors)",
            len(result.links), result.files_scanned, len(result.errors),
        )
        return result

    def scan_files(self, paths: Iterable[Path]) -> ScanResult:
        """Scan an explicit list of files (no directory walk, no sitemap)."""
        result = ScanResult()
        for path in paths:
            path = Path(path)
            if not path.is_absolute():
                path = self.root / path
            self._scan_file(path, result)
        result.links = self._filter(result.links)
        return result

    def sitemap_pages(self) -> List[str]:
        """Site paths listed in the sitemap; empty when there is none."""
        if self.sitemap_path is None or not self.sitemap_path.is_file():
            return []
        return SitemapExtractor(self.classifier, self.config.max_depth).page_urls(self.sitemap_path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def _iter_files(self):
        for dirpath, dirnames, filenames in os.walk(self.root):
            current = Path(dirpath)
            # Prune excluded directories in place so os.walk skips them.
            dirnames[:] = sorted(
                d for d in dirnames
                if not self.excludes.matches(self._relative(current / d) + "/")
            )
            for name in sorted(filenames):
                path = current / name
                if path.suffix.lower() in self._extensions:
                    yield path

    def _scan_file(self, path: Path, result: ScanResult) -> None:
        relative = self._relative(path)
        try:
            text = path.read_text(encoding="utf-8", errors="strict")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("[SCAN] Skipping %s: %s", relative, exc)
            result.errors.append(f"Error reading {relative}: {exc}")
            return

        result.files_scanned += 1
        for raw in extract_links(text, relative):
            link_type, priority = self.classifier.classify(raw.url, relative, raw.context)
            result.links.append(
                ScannedLink(
                    url=raw.url,
                    source_file=relative,
                    source_line=raw.line,
                    link_type=link_type,
                    priority=priority,
                    context=raw.context,
                )
            )

    def _scan_sitemap(self, path: Path, result: ScanResult) -> None:
        if not path.is_file():
            logger.warning("[SCAN] Sitemap not found: %s", path)
            result.errors.append(f"Sitemap not found: {self._relative(path)}")
            return
        extractor = SitemapExtractor(self.classifier, self.config.max_depth)
        sitemap = extractor.extract(path, self._relative(path))
        result.links.extend(sitemap.links)
        result.errors.extend(sitemap.errors)
        result.sitemap_files.extend(sitemap.files)
        result.sitemap_pages.extend(sitemap.pages)

    def _filter(self, links: List[ScannedLink]) -> List[ScannedLink]:
        seen: set = set()
        kept: List[ScannedLink] = []
        for link in links:
            if self.excludes.matches(link.source_file):
                continue
            if link.link_type is LinkType.EXTERNAL and not self.config.include_external:
                continue
            if link.key in seen:
                continue
            seen.add(link.key)
            kept.append(link)
        return kept
