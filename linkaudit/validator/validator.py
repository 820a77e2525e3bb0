"""HTTP reachability checks with bounded concurrency, retry and caching.

Each distinct URL gets one :class:`ValidationResult`.  URLs are processed in
batches of ``batch_size``; a batch runs on a thread pool of the same size so
no more than ``batch_size`` requests are ever in flight, and the validator
sleeps ``rate_limit_delay`` between batches.

With a :class:`LocalFileValidator` attached, internal and download links are
looked up on disk first: a file that serves the URL makes it valid without a
request.  A link with no file behind it is still requested, and is reported
broken when the server cannot be reached either.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup

from linkaudit.config import Settings
from linkaudit.db.models import LinkStatus, LinkType, ScannedLink, ValidationResult
from linkaudit.validator.local import LOCAL_TYPES, LocalFileValidator

logger = logging.getLogger(__name__)

# HEAD is not allowed / not implemented: retry the request as GET.
_HEAD_FALLBACK_CODES = frozenset({405, 501})


@dataclass
class ValidatorConfig:
    base_url: str = "http://localhost:3000"
    timeout: float = 10.0
    retry_attempts: int = 2
    user_agent: str = "Mozilla/5.0 (compatible; LinkAudit-Bot/1.0)"
    follow_redirects: bool = True
    check_anchors: bool = False
    batch_size: int = 10
    rate_limit_delay: float = 1.0
    retry_backoff: float = 1.0
    cache_ttl: float = 3600.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ValidatorConfig":
        return cls(
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            retry_attempts=settings.retry_attempts,
            user_agent=settings.user_agent,
            follow_redirects=settings.follow_redirects,
            check_anchors=settings.check_anchors,
            batch_size=settings.batch_size,
            rate_limit_delay=settings.rate_limit_delay,
            retry_backoff=settings.retry_backoff,
            cache_ttl=settings.validation_cache_ttl,
        )


class _Transient(Exception):
    """A retryable outcome (timeout, 5xx, connection failure)."""

    def __init__(self, result: ValidationResult) -> None:
        super().__init__(result.error_message)
        self.result = result


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _dedupe(urls: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            ordered.append(url)
    return ordered


def _anchor_present(html: str, fragment: str) -> bool:
    soup = BeautifulSoup(html, "html.parser")
    return (
        soup.find(attrs={"id": fragment}) is not None
        or soup.find(attrs={"name": fragment}) is not None
    )


class Validator:
    """Check URLs over HTTP and classify each into a :class:`LinkStatus`."""

    def __init__(
        self,
        config: ValidatorConfig,
        client: Optional[httpx.Client] = None,
        local: Optional[LocalFileValidator] = None,
    ) -> None:
        self.config = config
        self._client = client
        self.local = local
        self._cache: dict[str, tuple[ValidationResult, float]] = {}
        self._cache_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _cached(self, url: str) -> Optional[ValidationResult]:
        with self._cache_lock:
            entry = self._cache.get(url)
            if entry is None:
                return None
            result, stored_at = entry
            if time.monotonic() - stored_at > self.config.cache_ttl:
                del self._cache[url]
                return None
            return result

    def _store(self, result: ValidationResult) -> None:
        # Transient outcomes are always re-checked.
        if self.config.cache_ttl <= 0 or result.status in (LinkStatus.TIMEOUT, LinkStatus.UNKNOWN):
            return
        with self._cache_lock:
            self._cache[result.url] = (result, time.monotonic())

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
        if self.local is not None:
            self.local.clear_cache()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def new_client(self) -> httpx.Client:
        return httpx.Client(
            headers={"User-Agent": self.config.user_agent},
            timeout=self.config.timeout,
        )

    def validate_url(
        self,
        url: str,
        client: Optional[httpx.Client] = None,
        link_type: Optional[LinkType] = None,
    ) -> ValidationResult:
        """Validate a single URL, consulting the cache first."""
        cached = self._cached(url)
        if cached is not None:
            return cached

        client = client or self._client
        if client is None:
            with self.new_client() as own_client:
                result = self._validate(url, own_client, link_type)
        else:
            result = self._validate(url, client, link_type)

        self._store(result)
        return result

    def validate_links(self, links: Iterable[ScannedLink]) -> List[ValidationResult]:
        """Validate the distinct URLs of *links*, passing each URL's link type on."""
        link_types: dict[str, LinkType] = {}
        for link in links:
            link_types.setdefault(link.url, link.link_type)
        return self.validate_batch(list(link_types), link_types)

    def validate_batch(
        self,
        urls: Iterable[str],
        link_types: Optional[Mapping[str, LinkType]] = None,
    ) -> List[ValidationResult]:
        """Validate every distinct URL, returning results in input order."""
        link_types = link_types or {}
        unique = _dedupe(urls)
        if not unique:
            return []

        size = max(1, self.config.batch_size)
        batches = [unique[i:i + size] for i in range(0, len(unique), size)]
        results: List[ValidationResult] = []

        client = self._client or self.new_client()
        try:
            for index, batch in enumerate(batches, start=1):
                logger.info("[VALIDATE] Batch %d/%d (%d URLs)", index, len(batches), len(batch))
                with ThreadPoolExecutor(max_workers=size) as pool:
                    results.extend(pool.map(lambda u: self.validate_url(u, client, link_types.get(u)), batch))
                if index < len(batches) and self.config.rate_limit_delay > 0:
                    time.sleep(self.config.rate_limit_delay)
        finally:
            if self._client is None:
                client.close()

        broken = sum(1 for r in results if r.status is LinkStatus.BROKEN)
        logger.info("[VALIDATE] %d URLs checked, %d broken", len(results), broken)
        return results

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _result(self, url: str, status: LinkStatus, started: float, **kwargs) -> ValidationResult:
        return ValidationResult(
            url=url,
            status=status,
            response_time_ms=int((time.monotonic() - started) * 1000),
            checked_at=int(time.time()),
            **kwargs,
        )

    def _resolve(self, url: str) -> str:
        if url.startswith("//"):
            return "https:" + url
        parts = urlsplit(url)
        if parts.scheme:
            return url
        return urljoin(self.config.base_url.rstrip("/") + "/", url)

    def _validate(
        self,
        url: str,
        client: httpx.Client,
        link_type: Optional[LinkType] = None,
    ) -> ValidationResult:
        started = time.monotonic()

        if url.startswith("#") and not self.config.check_anchors:
            return self._result(url, LinkStatus.VALID, started)

        missing_locally = False
        anchor_pending = self.config.check_anchors and "#" in url
        if self.local is not None and link_type in LOCAL_TYPES and not anchor_pending:
            if self.local.locate(url, link_type) is not None:
                return self._result(url, LinkStatus.VALID, started)
            missing_locally = self.local.route_path(url) is not None

        target = self._resolve(url)
        scheme = urlsplit(target).scheme
        if scheme not in ("http", "https"):
            return self._result(
                url, LinkStatus.UNKNOWN, started,
                error_message=f"Unsupported or malformed URL: {url!r}",
            )

        attempts = self.config.retry_attempts + 1
        for attempt in range(1, attempts + 1):
            try:
                result = self._check_url(url, target, client, started)
            except _Transient as exc:
                result = exc.result
                if attempt < attempts:
                    logger.debug("[VALIDATE] %s attempt %d failed: %s", url, attempt, result.error_message)
                    time.sleep(self.config.retry_backoff * attempt)
                    continue
            break

        if missing_locally and result.status is LinkStatus.UNKNOWN:
            kind = "Download file" if link_type is LinkType.DOWNLOAD else "Internal route"
            return self._result(
                url, LinkStatus.BROKEN, started,
                error_message=f"{kind} not found: {url} ({result.error_message})",
            )

        if self.config.check_anchors and "#" in url and result.status is LinkStatus.VALID:
            result = self._check_anchor(url, target, client, started)
        return result

    def _request(self, client: httpx.Client, method: str, target: str) -> httpx.Response:
        return client.request(method, target, follow_redirects=self.config.follow_redirects)

    def _check_url(self, url: str, target: str, client: httpx.Client, started: float) -> ValidationResult:
        try:
            response = self._request(client, "HEAD", target)
            if response.status_code in _HEAD_FALLBACK_CODES:
                response = self._request(client, "GET", target)
        except httpx.TimeoutException as exc:
            raise _Transient(self._result(
                url, LinkStatus.TIMEOUT, started,
                error_message=f"Timed out after {self.config.timeout}s: {exc}",
            )) from exc
        except httpx.ConnectError as exc:
            raise _Transient(self._result(
                url, LinkStatus.UNKNOWN, started, error_message=f"Connection failed: {exc}",
            )) from exc
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            return self._result(url, LinkStatus.UNKNOWN, started, error_message=str(exc) or type(exc).__name__)

        return self._classify(url, target, response, started)

    def _classify(self, url: str, target: str, response: httpx.Response, started: float) -> ValidationResult:
        code = response.status_code
        final_url = str(response.url)
        redirected = bool(response.history) and final_url != target

        if 200 <= code < 300:
            return self._result(
                url, LinkStatus.VALID, started,
                status_code=code,
                redirect_url=final_url if redirected else None,
            )
        if 300 <= code < 400:
            location = response.headers.get("location")
            return self._result(
                url, LinkStatus.REDIRECT, started,
                status_code=code,
                redirect_url=urljoin(final_url, location) if location else None,
                error_message=None if location else "Redirect without Location header",
            )
        if 400 <= code < 500:
            return self._result(
                url, LinkStatus.BROKEN, started,
                status_code=code, error_message=f"HTTP {code}",
            )
        if 500 <= code < 600:
            raise _Transient(self._result(
                url, LinkStatus.BROKEN, started,
                status_code=code, error_message=f"HTTP {code}",
            ))
        return self._result(
            url, LinkStatus.UNKNOWN, started,
            status_code=code, error_message=f"Unexpected status {code}",
        )

    def _check_anchor(self, url: str, target: str, client: httpx.Client, started: float) -> ValidationResult:
        page, _, fragment = target.partition("#")
        if not fragment:
            return self._result(url, LinkStatus.VALID, started)
        try:
            response = client.get(page, follow_redirects=True)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("[VALIDATE] Anchor check for %s failed: %s", url, exc)
            return self._result(url, LinkStatus.UNKNOWN, started, error_message=f"Anchor check failed: {exc}")

        if response.status_code >= 400:
            return self._result(
                url, LinkStatus.BROKEN, started,
                status_code=response.status_code, error_message=f"HTTP {response.status_code}",
            )
        if not _anchor_present(response.text, fragment):
            return self._result(
                url, LinkStatus.BROKEN, started,
                status_code=response.status_code,
                error_message=f"Anchor #{fragment} not found on page",
            )
        return self._result(url, LinkStatus.VALID, started, status_code=response.status_code)
