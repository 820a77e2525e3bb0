"""Filesystem checks for same-site routes and downloadable files.

Pages and static files of the audited site live under the content root, so a
same-site link can be confirmed on disk without a request.  Three layouts are
recognised:

* static files under ``public/`` (or the content root itself),
* static pages: ``<path>.html``, ``<path>/index.html``, ``<path>.md``/``.mdx``,
* app-router pages: ``src/app/<route>/page.tsx`` (and ``app/``), including
  ``[param]``, ``[...param]``, ``[[...param]]`` and ``(group)`` directories.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from urllib.parse import unquote, urlsplit

from linkaudit.db.models import LinkType

logger = logging.getLogger(__name__)

LOCAL_TYPES = frozenset({LinkType.INTERNAL, LinkType.DOWNLOAD})

PAGE_FILES = ("page.tsx", "page.ts", "page.jsx", "page.js", "page.mdx", "page.md")
STATIC_PAGE_SUFFIXES = (".html", ".htm", ".md", ".mdx")
INDEX_FILES = ("index.html", "index.htm", "index.md", "index.mdx")
# Fallback folders searched by file name for downloads.
DOWNLOAD_DIRS = ("downloads", "assets", "ressources/downloads", "resources/downloads")


def _page_file(directory: Path) -> Optional[Path]:
    for name in PAGE_FILES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def _is_group(name: str) -> bool:
    return name.startswith("(") and name.endswith(")")


def _is_catch_all(name: str) -> bool:
    return name.startswith("[...") or name.startswith("[[...")


def _is_param(name: str) -> bool:
    return name.startswith("[") and name.endswith("]") and not _is_catch_all(name)


class LocalFileValidator:
    """Locate the file that serves a same-site URL.

    :meth:`locate` returns the file, or ``None`` when nothing on disk serves
    the URL.  Lookups are cached per URL until :meth:`clear_cache`.
    """

    def __init__(
        self,
        content_root: Path,
        base_url: str,
        public_dir: str = "public",
        app_dirs: Sequence[str] = ("src/app", "app"),
    ) -> None:
        self.content_root = Path(content_root)
        self.public_root = self.content_root / public_dir
        self.app_roots = [self.content_root / d for d in app_dirs]
        self._base_host = urlsplit(base_url).netloc.lower()
        self._cache: Dict[str, Optional[Path]] = {}
        self._lock = threading.Lock()

    def route_path(self, url: str) -> Optional[str]:
        """Decoded site path of *url*, or ``None`` if it cannot be checked on disk.

        Off-site URLs, page-relative paths and paths climbing out of the
        content root are not checkable.
        """
        parts = urlsplit(url)
        if parts.scheme or parts.netloc:
            if parts.scheme not in ("", "http", "https") or parts.netloc.lower() != self._base_host:
                return None
        path = unquote(parts.path) or "/"
        if not path.startswith("/") or ".." in path.split("/"):
            return None
        return path

    def locate(self, url: str, link_type: LinkType) -> Optional[Path]:
        if link_type not in LOCAL_TYPES:
            return None
        with self._lock:
            if url in self._cache:
                return self._cache[url]

        path = self.route_path(url)
        found: Optional[Path] = None
        if path is not None:
            found = self._static_file(path, download=link_type is LinkType.DOWNLOAD)
            if found is None and link_type is LinkType.INTERNAL:
                found = self._page(path)

        with self._lock:
            self._cache[url] = found
        logger.debug("[VALIDATE] local %s -> %s", url, found)
        return found

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _static_file(self, path: str, download: bool) -> Optional[Path]:
        relative = path.strip("/")
        if not relative:
            return None
        candidates: List[Path] = [self.public_root / relative, self.content_root / relative]
        if download:
            name = relative.rsplit("/", 1)[-1]
            candidates.extend(self.public_root / folder / name for folder in DOWNLOAD_DIRS)
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    def _page(self, path: str) -> Optional[Path]:
        relative = path.strip("/")
        for root in (self.content_root, self.public_root):
            base = root / relative if relative else root
            names = [base / name for name in INDEX_FILES]
            if relative:
                names = [base.with_name(base.name + suffix) for suffix in STATIC_PAGE_SUFFIXES] + names
            for candidate in names:
                if candidate.is_file():
                    return candidate

        segments = [s for s in relative.split("/") if s]
        for app_root in self.app_roots:
            found = self._app_route(app_root, segments)
            if found is not None:
                return found
        return None

    def _app_route(self, directory: Path, segments: List[str]) -> Optional[Path]:
        if not directory.is_dir():
            return None
        if not segments:
            page = _page_file(directory)
            if page is not None:
                return page

        for child in sorted(p for p in directory.iterdir() if p.is_dir()):
            name = child.name
            if _is_group(name):
                found = self._app_route(child, segments)
            elif not segments:
                # Only an optional catch-all also serves its parent route.
                found = _page_file(child) if name.startswith("[[...") else None
            elif name == segments[0] or _is_param(name):
                found = self._app_route(child, segments[1:])
            elif _is_catch_all(name):
                found = _page_file(child)
            else:
                found = None
            if found is not None:
                return found
        return None
