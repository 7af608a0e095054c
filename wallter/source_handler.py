"""
Wallpaper Source API

This module wraps the remote wallpaper search capability. A source client does exactly two things:
search for candidate images matching some criteria, and fetch the raw bytes of one candidate.
Everything else (hashing, caching, choosing what to show) happens downstream.

SourceClient is the interface the rest of wallter depends on. WallhavenClient implements it against
the public Wallhaven API (https://wallhaven.cc/help/api). The search endpoint works without an API
key for SFW content; a key is only needed for NSFW results.

Failures come in three distinct kinds:
- Unreachable: the network or the server is down (connection errors, timeouts, 5xx). Retried.
- RateLimited: the server answered 429. Retried, honoring Retry-After when it is sent.
- InvalidResponse: the server answered but the body makes no sense. Never retried.
"""

import time
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import wraps
from collections.abc import Iterator
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Base class for everything a source client raises."""

    pass


class SourceUnavailable(SourceError):
    """Raised when the source cannot be reached or refuses to serve us right now."""

    pass


class Unreachable(SourceUnavailable):
    """Raised on connection failures, timeouts and server side (5xx) errors."""

    pass


class RateLimited(SourceUnavailable):
    """
    Raised when the source responds with HTTP 429. retry_after holds the number of seconds the
    server asked us to wait, or None when no hint was sent.
    """

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class InvalidResponse(SourceError):
    """Raised when a response body is malformed or the request itself was rejected (4xx)."""

    pass


@dataclass(frozen=True)
class CandidateDescriptor:
    """Metadata about a remote image before it is downloaded."""

    id: str
    url: str
    width: int
    height: int
    page_url: str = ""
    file_type: str = ""
    source: str = ""


@dataclass(frozen=True)
class SearchCriteria:
    query: str = ""
    categories: tuple[bool, bool, bool] = (True, True, False)  # general, anime, people
    purity: tuple[bool, bool, bool] = (True, False, False)  # sfw, sketchy, nsfw
    sorting: str = "random"
    order: str = "desc"
    top_range: Optional[str] = None
    atleast: Optional[str] = None
    resolutions: Optional[str] = None
    ratios: Optional[str] = None
    colors: Optional[str] = None
    page: int = 1
    max_pages: int = 1
    seed: Optional[str] = None


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff. The delay before retry n (0-based) is backoff * 2**n, capped at
    max_backoff. RateLimited errors use the server's Retry-After hint instead when one is given.
    """

    attempts: int = 4
    backoff: float = 1.0
    max_backoff: float = 60.0

    def delay(self, attempt: int, error: SourceUnavailable) -> float:
        if isinstance(error, RateLimited) and error.retry_after is not None:
            return max(0.0, error.retry_after)

        return min(self.max_backoff, self.backoff * 2**attempt)


def retry(func):
    """
    Decorator for SourceClient methods that perform a single network round trip. Retries
    SourceUnavailable errors according to the client's retry policy and lets InvalidResponse
    propagate immediately. The client's 'sleep' attribute is used to wait so tests can skip it.
    """

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        attempts = max(1, self.retry_policy.attempts)

        for attempt in range(attempts):
            try:
                return func(self, *args, **kwargs)

            except SourceUnavailable as error:
                if attempt == attempts - 1:
                    raise

                delay = self.retry_policy.delay(attempt, error)
                logger.warning(
                    "%s failed (%s), retry %d/%d in %.1fs",
                    func.__name__,
                    error,
                    attempt + 1,
                    attempts - 1,
                    delay,
                )
                self.sleep(delay)

    return wrapper


class SourceClient(ABC):
    """
    Interface for a remote wallpaper source. search() is lazy and finite; iterating it again
    requires calling search() again, which re-queries the source.
    """

    name = "source"

    def __init__(
        self,
        retry_policy: RetryPolicy = None,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.sleep = sleep

    @abstractmethod
    def search(self, criteria: SearchCriteria) -> Iterator[CandidateDescriptor]:
        ...

    @abstractmethod
    def fetch(self, descriptor: CandidateDescriptor) -> bytes:
        ...


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After may be a number of seconds. HTTP dates are not worth supporting here."""

    if value is None:
        return None

    try:
        return float(value)
    except ValueError:
        return None


def check_response(response: requests.Response, url: str) -> None:
    """Translate an HTTP status into the matching SourceError kind."""

    status = response.status_code

    if status == 429:
        raise RateLimited(
            f"Rate limited by {url}",
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )

    if status >= 500:
        raise Unreachable(f"Server error from {url} (status code {status})")

    if status >= 400:
        raise InvalidResponse(f"Request to {url} was rejected (status code {status})")


def get(url: str, params: dict = None, timeout: float = 30.0) -> requests.Response:
    """GET url and map transport failures to Unreachable."""

    try:
        response = requests.get(url, params=params, timeout=timeout)

    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as error:
        raise Unreachable(f"Could not reach {url}: {error}")

    except requests.exceptions.RequestException as error:
        raise InvalidResponse(f"Invalid request to {url}: {error}")

    check_response(response, url)
    return response


def flags(values: tuple[bool, ...]) -> str:
    """Wallhaven encodes category and purity toggles as bit strings, e.g. (True, True, False) -> '110'."""

    return "".join("1" if value else "0" for value in values)


class WallhavenClient(SourceClient):
    """Search and download wallpapers from wallhaven.cc."""

    name = "wallhaven"
    base_url = "https://wallhaven.cc/api/v1"

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key

    def params(self, criteria: SearchCriteria, page: int) -> dict:
        """Build the query string parameters for one search page."""

        params = {
            "q": criteria.query,
            "categories": flags(criteria.categories),
            "purity": flags(criteria.purity),
            "sorting": criteria.sorting,
            "order": criteria.order,
            "page": page,
        }

        # topRange only means something for the toplist sorting
        if criteria.sorting == "toplist" and criteria.top_range:
            params["topRange"] = criteria.top_range

        optional = {
            "atleast": criteria.atleast,
            "resolutions": criteria.resolutions,
            "ratios": criteria.ratios,
            "colors": criteria.colors,
            "seed": criteria.seed,
            "apikey": self.api_key,
        }
        params.update({key: value for key, value in optional.items() if value})

        return {key: value for key, value in params.items() if value != ""}

    @retry
    def search_page(self, criteria: SearchCriteria, page: int) -> tuple[list[CandidateDescriptor], int]:
        """Fetch one page of results. Returns (descriptors, last_page)."""

        url = f"{self.base_url}/search"
        response = get(url, params=self.params(criteria, page), timeout=self.timeout)

        try:
            body = response.json()
        except ValueError as error:
            raise InvalidResponse(f"Response from {url} is not JSON: {error}")

        if not isinstance(body, dict) or not isinstance(body.get("data"), list):
            raise InvalidResponse(f"Response from {url} has no 'data' list")

        descriptors = [self.descriptor(item) for item in body["data"]]

        meta = body.get("meta") or {}
        last_page = meta.get("last_page", page) if isinstance(meta, dict) else page

        try:
            last_page = int(last_page or page)
        except (TypeError, ValueError):
            raise InvalidResponse(f"Response from {url} has an invalid last_page {last_page!r}")

        return descriptors, last_page

    def descriptor(self, item: dict) -> CandidateDescriptor:
        try:
            return CandidateDescriptor(
                id=str(item["id"]),
                url=item["path"],
                width=int(item["dimension_x"]),
                height=int(item["dimension_y"]),
                page_url=item.get("url", ""),
                file_type=item.get("file_type", ""),
                source=self.name,
            )

        except (KeyError, TypeError, ValueError) as error:
            raise InvalidResponse(f"Malformed wallpaper entry {item!r}: {error}")

    def search(self, criteria: SearchCriteria) -> Iterator[CandidateDescriptor]:
        """
        Yield candidates page by page. Pages are requested only as the caller keeps iterating,
        and iteration stops at the last page, after max_pages pages, or on an empty page.
        """

        page = max(1, criteria.page)
        last_page = page + max(1, criteria.max_pages) - 1

        while page <= last_page:
            descriptors, source_last_page = self.search_page(criteria, page)
            logger.debug("%s page %d returned %d results", self.name, page, len(descriptors))

            if not descriptors:
                return

            yield from descriptors

            last_page = min(last_page, source_last_page)
            page += 1

    @retry
    def fetch(self, descriptor: CandidateDescriptor) -> bytes:
        """Download the full resolution image for descriptor."""

        response = get(descriptor.url, timeout=self.timeout)

        if not response.content:
            raise InvalidResponse(f"Empty body downloading {descriptor.url}")

        return response.content


def make_source(name: str = "wallhaven", **kwargs) -> SourceClient:
    """Return the source client registered under name."""

    sources = {WallhavenClient.name: WallhavenClient}

    try:
        return sources[name](**kwargs)
    except KeyError:
        raise SourceError(f"Unknown wallpaper source '{name}'")
