"""Link type and priority heuristics."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from urllib.parse import urlsplit

from linkaudit.db.models import LinkType, Priority

DOWNLOAD_EXTENSIONS = frozenset({
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".rar", ".tar", ".gz", ".7z",
    ".mp3", ".mp4", ".avi", ".mov", ".wmv",
    ".csv", ".txt", ".epub",
})

CRITICAL_PATHS = frozenset({
    "/", "/contact", "/services", "/about", "/pricing",
    "/checkout", "/cart", "/buy", "/signup",
})

_PURCHASE_OR_CONTACT = re.compile(r"^/(contact|checkout|cart|buy|signup|pricing|order)(/|$)")
_NAV_CONTEXT = re.compile(r"\b(nav|navbar|navigation|menu|header)\b", re.IGNORECASE)
_STRUCTURAL_SOURCE = re.compile(r"(layout|navigation|navbar|header|footer|menu)", re.IGNORECASE)
_CONTENT_PATHS = re.compile(r"^/(blog|ressources|resources|articles|news|docs)(/|$)")


def _normalise_path(path: str) -> str:
    path = path.split("#", 1)[0].split("?", 1)[0]
    if len(path) > 1:
        path = path.rstrip("/")
    return path or "/"


class LinkClassifier:
    """Assign a :class:`LinkType` and :class:`Priority` to a raw URL."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")
        self._base_host = urlsplit(self.base_url).netloc.lower()

    # ------------------------------------------------------------------
    # Type
    # ------------------------------------------------------------------

    def is_same_site(self, url: str) -> bool:
        parts = urlsplit(url)
        return bool(parts.netloc) and parts.netloc.lower() == self._base_host

    def site_path(self, url: str) -> str:
        """Reduce an absolute URL on this site to its path (+query/fragment)."""
        if not self.is_same_site(url):
            return url
        parts = urlsplit(url)
        path = parts.path or "/"
        if parts.query:
            path += "?" + parts.query
        if parts.fragment:
            path += "#" + parts.fragment
        return path

    def link_type(self, url: str) -> LinkType:
        if url.startswith("#"):
            return LinkType.ANCHOR
        parts = urlsplit(url)
        if parts.scheme in ("http", "https") or url.startswith("//"):
            if not self.is_same_site(url):
                return LinkType.EXTERNAL
        if PurePosixPath(parts.path).suffix.lower() in DOWNLOAD_EXTENSIONS:
            return LinkType.DOWNLOAD
        return LinkType.INTERNAL

    # ------------------------------------------------------------------
    # Priority
    # ------------------------------------------------------------------

    def priority(self, url: str, link_type: LinkType, source_file: str = "", context: str = "") -> Priority:
        if link_type is LinkType.ANCHOR:
            return Priority.LOW

        path = _normalise_path(urlsplit(self.site_path(url)).path or "/")
        in_navigation = bool(_NAV_CONTEXT.search(context))

        if link_type is LinkType.INTERNAL:
            if path in CRITICAL_PATHS or _PURCHASE_OR_CONTACT.match(path):
                return Priority.CRITICAL
            if in_navigation:
                return Priority.CRITICAL
            if path.startswith("/api/") or _STRUCTURAL_SOURCE.search(PurePosixPath(source_file).name):
                return Priority.HIGH
            if _CONTENT_PATHS.match(path):
                return Priority.MEDIUM
            return Priority.LOW
        if link_type is LinkType.DOWNLOAD:
            return Priority.HIGH
        if link_type is LinkType.EXTERNAL:
            return Priority.HIGH if in_navigation else Priority.MEDIUM
        return Priority.LOW

    def classify(self, url: str, source_file: str = "", context: str = "") -> tuple[LinkType, Priority]:
        link_type = self.link_type(url)
        return link_type, self.priority(url, link_type, source_file, context)
