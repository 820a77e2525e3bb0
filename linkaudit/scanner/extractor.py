"""Line-oriented link extraction from markup, JSX, Markdown and JSON sources."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Iterator, List, NamedTuple

MAX_URL_LENGTH = 2000
CONTEXT_LENGTH = 200

_SKIPPED_SCHEMES = ("data:", "javascript:", "mailto:", "tel:")

_Q = r"""["']([^"']+)["']"""

# Lines end at CR, LF or CRLF only (same as bytes.splitlines in the corrector).
_LINE_BREAK = re.compile(r"\r\n|\r|\n")

# (label, compiled pattern, capture group holding the URL)
_MARKUP_PATTERNS = [
    ("Anchor tag", re.compile(r"<a\s+[^>]*href=" + _Q, re.IGNORECASE), 1),
    ("Link tag", re.compile(r"<link\s+[^>]*href=" + _Q, re.IGNORECASE), 1),
    ("Image tag", re.compile(r"<img\s+[^>]*src=" + _Q, re.IGNORECASE), 1),
    ("Script tag", re.compile(r"<script\s+[^>]*src=" + _Q, re.IGNORECASE), 1),
]

_JSX_PATTERNS = [
    ("Next.js Link", re.compile(r"<Link\s+[^>]*href=" + _Q), 1),
    ("Next.js Image", re.compile(r"<Image\s+[^>]*src=" + _Q), 1),
    ("Router push", re.compile(r"router\.push\(" + _Q + r"\)"), 1),
    ("Redirect", re.compile(r"\bredirect\(" + _Q + r"\)"), 1),
    ("Fetch call", re.compile(r"\bfetch\(" + _Q), 1),
]

_MARKDOWN_PATTERNS = [
    ("Markdown image", re.compile(r"!\[([^\]]*)\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)"), 2),
    ("Markdown link", re.compile(r"(?<!!)\[([^\]]*)\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)"), 2),
    ("Markdown reference", re.compile(r"^\s*\[([^\]]+)\]:\s*(\S+)"), 2),
]

_JSON_PATTERNS = [
    ("JSON value", re.compile(r""":\s*"((?:https?://|/)[^"\s]*)\""""), 1),
    ("JSON array item", re.compile(r"""^\s*"((?:https?://|/)[^"\s]*)"\s*,?\s*$"""), 1),
]

_PATTERNS_BY_SUFFIX = {
    ".html": _MARKUP_PATTERNS,
    ".htm": _MARKUP_PATTERNS,
    ".tsx": _MARKUP_PATTERNS + _JSX_PATTERNS,
    ".jsx": _MARKUP_PATTERNS + _JSX_PATTERNS,
    ".ts": _JSX_PATTERNS,
    ".js": _JSX_PATTERNS,
    ".md": _MARKDOWN_PATTERNS + _MARKUP_PATTERNS,
    ".mdx": _MARKDOWN_PATTERNS + _MARKUP_PATTERNS + _JSX_PATTERNS,
    ".json": _JSON_PATTERNS,
}


class RawLink(NamedTuple):
    """A URL as found in source text, before classification."""

    url: str
    line: int
    context: str


def is_auditable(url: str) -> bool:
    """Return ``False`` for values that are not link targets we can check."""
    if not url or len(url) > MAX_URL_LENGTH:
        return False
    if url.lower().startswith(_SKIPPED_SCHEMES):
        return False
    # Template expressions (`${slug}`, `{href}`) are resolved at runtime.
    if "${" in url or "{" in url:
        return False
    return True


def patterns_for(path: str) -> list:
    return _PATTERNS_BY_SUFFIX.get(PurePosixPath(path).suffix.lower(), _MARKUP_PATTERNS)


def extract_links(text: str, path: str) -> List[RawLink]:
    """Extract every auditable URL in *text*, one entry per occurrence.

    The pattern set is chosen from the suffix of *path*.  Line numbers are
    1-based; ``context`` is the stripped source line truncated to
    ``CONTEXT_LENGTH`` characters and prefixed with the matching pattern label.
    """
    patterns = patterns_for(path)
    return list(_iter_links(text, patterns))


def _iter_links(text: str, patterns: list) -> Iterator[RawLink]:
    for lineno, line in enumerate(_LINE_BREAK.split(text), start=1):
        seen_on_line: set[tuple[int, str]] = set()
        for label, pattern, group in patterns:
            for match in pattern.finditer(line):
                url = match.group(group).strip()
                position = match.start(group)
                if (position, url) in seen_on_line or not is_auditable(url):
                    continue
                seen_on_line.add((position, url))
                context = f"{label}: {line.strip()}"[:CONTEXT_LENGTH]
                yield RawLink(url=url, line=lineno, context=context)
