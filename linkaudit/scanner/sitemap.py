"""Sitemap parsing: ``urlset`` documents and recursive ``sitemapindex`` files."""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlsplit

from linkaudit.db.models import ScannedLink
from linkaudit.scanner.classifier import LinkClassifier

logger = logging.getLogger(__name__)

_LOC_LINE = re.compile(r"<(?:\w+:)?loc>\s*([^<\s]+)\s*</(?:\w+:)?loc>", re.IGNORECASE)


@dataclass
class SitemapResult:
    links: List[ScannedLink] = field(default_factory=list)
    pages: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower() if "}" in tag else tag.lower()


def _child_locs(root: ET.Element, entry_tag: str) -> List[str]:
    locs: List[str] = []
    for node in root.iter():
        if _local_name(node.tag) != entry_tag:
            continue
        for child in node:
            if _local_name(child.tag) == "loc" and (child.text or "").strip():
                locs.append(child.text.strip())
                break
    return locs


def _loc_line_numbers(text: str) -> dict[str, int]:
    """Map each ``<loc>`` value to the first line it appears on."""
    lines: dict[str, int] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        for match in _LOC_LINE.finditer(line):
            lines.setdefault(match.group(1), lineno)
    return lines


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class SitemapExtractor:
    """Turn a local sitemap file into :class:`ScannedLink` records.

    Nested sitemaps referenced from a ``sitemapindex`` are followed only when
    they resolve to a file next to the index (``/sitemap-blog.xml`` on this
    site maps to ``<index dir>/sitemap-blog.xml``), up to ``max_depth`` levels.
    """

    def __init__(self, classifier: LinkClassifier, max_depth: int = 1) -> None:
        self.classifier = classifier
        self.max_depth = max_depth

    def extract(self, path: Path, display_path: Optional[str] = None) -> SitemapResult:
        result = SitemapResult()
        self._extract(path, display_path or str(path), 0, result, set())
        return result

    def page_urls(self, path: Path) -> List[str]:
        """Known-good site paths listed in the sitemap (and nested sitemaps)."""
        return self.extract(path).pages

    def _extract(
        self,
        path: Path,
        display_path: str,
        depth: int,
        result: SitemapResult,
        visited: set[Path],
    ) -> None:
        resolved = path.resolve()
        if resolved in visited:
            return
        visited.add(resolved)

        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("[SCAN] Cannot read sitemap %s: %s", display_path, exc)
            result.errors.append(f"Error reading sitemap {display_path}: {exc}")
            return

        try:
            root = ET.fromstring(text)
        except ET.ParseError as exc:
            logger.warning("[SCAN] Malformed sitemap %s: %s", display_path, exc)
            result.errors.append(f"Malformed sitemap {display_path}: {exc}")
            return

        result.files.append(display_path)
        kind = _local_name(root.tag)
        if kind == "sitemapindex":
            if depth >= self.max_depth:
                logger.info("[SCAN] Sitemap index %s not followed (max depth %d)", display_path, self.max_depth)
                return
            for loc in _child_locs(root, "sitemap"):
                child = path.parent / Path(urlsplit(loc).path).name
                if child.is_file():
                    child_display = str(Path(display_path).parent / child.name)
                    self._extract(child, child_display, depth + 1, result, visited)
                else:
                    result.errors.append(f"Nested sitemap not found locally: {loc}")
            return

        if kind != "urlset":
            result.errors.append(f"Unrecognised sitemap root <{kind}> in {display_path}")
            return

        line_numbers = _loc_line_numbers(text)
        for loc in _child_locs(root, "url"):
            url = self.classifier.site_path(loc)
            link_type, priority = self.classifier.classify(url, display_path, "sitemap")
            result.links.append(
                ScannedLink(
                    url=url,
                    source_file=display_path,
                    source_line=line_numbers.get(loc),
                    link_type=link_type,
                    priority=priority,
                    context=f"Sitemap entry: {loc}",
                )
            )
            result.pages.append(url)
