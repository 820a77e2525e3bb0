"""Correction candidate generators.

Each generator looks at one broken URL in isolation and yields zero or more
:class:`CorrectionSuggestion` objects.  Ranking happens in the corrector.
"""

from __future__ import annotations

import posixpath
from difflib import SequenceMatcher
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence
from urllib.parse import urlsplit

from linkaudit.db.models import CorrectionSuggestion, CorrectionType

TYPO_CONFIDENCE_CEILING = 0.95
EXTENSION_CONFIDENCE = 0.9
REDIRECT_CONFIDENCE = 0.95
MOVED_CONFIDENCE = 0.85
SIMILAR_RATIO_FLOOR = 0.6
SIMILAR_WEIGHT = 0.9


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def levenshtein_distance(s1: str, s2: str) -> int:
    """Minimum number of single-character insertions, deletions or substitutions."""
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)
    if not s2:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row
    return previous_row[-1]


def split_url(url: str) -> tuple[str, str]:
    """Split *url* into ``(path, suffix)`` where suffix is ``?query#fragment``."""
    parts = urlsplit(url)
    suffix = ""
    if parts.query:
        suffix += "?" + parts.query
    if parts.fragment:
        suffix += "#" + parts.fragment
    return parts.path, suffix


def normalise(path: str) -> str:
    if len(path) > 1:
        path = path.rstrip("/")
    return path or "/"


class KnownGood:
    """The set of site paths believed to resolve (sitemap + validated)."""

    def __init__(self, urls: Iterable[str] = ()) -> None:
        self._paths: dict[str, str] = {}
        self.update(urls)

    def update(self, urls: Iterable[str]) -> None:
        for url in urls:
            path = urlsplit(url).path
            if path.startswith("/"):
                self._paths.setdefault(normalise(path), path)

    def __contains__(self, path: str) -> bool:
        return normalise(path) in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def paths(self) -> List[str]:
        return list(self._paths.values())


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------

def typo_candidates(url: str, known: KnownGood, max_distance: int) -> Iterator[CorrectionSuggestion]:
    path, suffix = split_url(url)
    if not path.startswith("/"):
        return
    broken = normalise(path)
    for candidate in known.paths():
        target = normalise(candidate)
        if target == broken:
            continue
        distance = levenshtein_distance(broken.lower(), target.lower())
        if 1 <= distance <= max_distance:
            max_len = max(len(broken), len(target))
            confidence = min(TYPO_CONFIDENCE_CEILING, 1 - distance / (max_len + 1))
            yield CorrectionSuggestion(
                original_url=url,
                suggested_url=candidate + suffix,
                confidence=confidence,
                correction_type=CorrectionType.TYPO,
                reasoning=f"Edit distance {distance} from known page {candidate}",
            )


def extension_candidates(
    url: str,
    known: KnownGood,
    static_roots: Sequence[Path] = (),
) -> Iterator[CorrectionSuggestion]:
    path, suffix = split_url(url)
    if not path.startswith("/"):
        return

    variants: List[str] = []
    stem, ext = posixpath.splitext(path.rstrip("/"))
    if ext.lower() in (".html", ".htm"):
        variants.append(stem)
    elif not ext:
        variants.append(path.rstrip("/") + ".html")
    variants.append(path[:-1] if path.endswith("/") and len(path) > 1 else path + "/")

    for variant in variants:
        if variant and variant in known and variant != path:
            yield CorrectionSuggestion(
                original_url=url,
                suggested_url=variant + suffix,
                confidence=EXTENSION_CONFIDENCE,
                correction_type=CorrectionType.EXTENSION,
                reasoning=f"Known page differs only by extension or trailing slash: {variant}",
            )

    # Download files: a sibling on disk with the same stem and another extension.
    if ext:
        relative_dir = posixpath.dirname(path).lstrip("/")
        base = posixpath.basename(stem)
        for root in static_roots:
            directory = root / relative_dir
            if not directory.is_dir():
                continue
            for sibling in sorted(directory.glob(f"{base}.*")):
                if sibling.is_file() and sibling.suffix.lower() != ext.lower():
                    suggested = posixpath.join(posixpath.dirname(path), sibling.name)
                    yield CorrectionSuggestion(
                        original_url=url,
                        suggested_url=suggested + suffix,
                        confidence=EXTENSION_CONFIDENCE,
                        correction_type=CorrectionType.EXTENSION,
                        reasoning=f"File exists with a different extension: {sibling.name}",
                    )


def redirect_candidates(url: str, redirect_url: Optional[str], base_url: str) -> Iterator[CorrectionSuggestion]:
    if not redirect_url or redirect_url == url:
        return

    original = urlsplit(url)
    target = urlsplit(redirect_url)
    base_host = urlsplit(base_url).netloc.lower()

    suggested = redirect_url
    # Keep relative links relative when the redirect stays on this site.
    if not original.netloc and target.netloc.lower() == base_host:
        suggested = target.path or "/"
        if target.query:
            suggested += "?" + target.query
        if target.fragment:
            suggested += "#" + target.fragment
    if suggested == url:
        return

    if normalise(original.path) == normalise(target.path):
        yield CorrectionSuggestion(
            original_url=url,
            suggested_url=suggested,
            confidence=REDIRECT_CONFIDENCE,
            correction_type=CorrectionType.REDIRECT,
            reasoning=f"Server redirects to the same path at {redirect_url}",
        )
    else:
        yield CorrectionSuggestion(
            original_url=url,
            suggested_url=suggested,
            confidence=MOVED_CONFIDENCE,
            correction_type=CorrectionType.MOVED,
            reasoning=f"Content moved to {redirect_url}",
        )


def similar_candidates(url: str, known: KnownGood) -> Iterator[CorrectionSuggestion]:
    path, suffix = split_url(url)
    if not path.startswith("/"):
        return
    broken = normalise(path)
    parent = posixpath.dirname(broken)
    name = posixpath.basename(broken)
    for candidate in known.paths():
        target = normalise(candidate)
        if target == broken or posixpath.dirname(target) != parent:
            continue
        ratio = SequenceMatcher(None, name.lower(), posixpath.basename(target).lower()).ratio()
        if ratio > SIMILAR_RATIO_FLOOR:
            yield CorrectionSuggestion(
                original_url=url,
                suggested_url=candidate + suffix,
                confidence=ratio * SIMILAR_WEIGHT,
                correction_type=CorrectionType.SIMILAR,
                reasoning=f"Similar page in {parent or '/'} (similarity {ratio:.2f})",
            )
