"""Default metadata fetcher: one HTTP GET, OpenGraph/HTML meta parsing.

Every URL, including each redirect target, is checked against a small
blocklist before any request is made, so that user-submitted links cannot
be used to reach internal services.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from typing import Any, Awaitable, Callable, Optional, Protocol
from urllib.parse import parse_qs, urljoin, urlsplit

import aiohttp
from bs4 import BeautifulSoup

from linkmeta.main.aiohttp_client import AioHttpClient, aiohttp_client
from linkmeta.main.exceptions import FetchError
from linkmeta.main.logging import get_logger

logger = get_logger(__name__)

DEFAULT_USER_AGENT = "ClubhouseMetadataFetcher/1.0"
DEFAULT_REQUEST_TIMEOUT = 5.0
DEFAULT_MAX_BODY_BYTES = 2 << 20  # 2MB
DEFAULT_MAX_REDIRECTS = 5

INTERNAL_UPLOADS_PATH = "/api/v1/uploads"

BLOCKED_HOSTNAMES = frozenset({"localhost", "metadata.google.internal"})
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
IMAGE_EXTENSIONS = (
    "jpg",
    "jpeg",
    "png",
    "gif",
    "webp",
    "bmp",
    "svg",
    "avif",
    "tif",
    "tiff",
)

# Host substring -> provider name
KNOWN_PROVIDERS = (
    ("spotify.com", "spotify"),
    ("youtube.com", "youtube"),
    ("youtu.be", "youtube"),
    ("imdb.com", "imdb"),
    ("soundcloud.com", "soundcloud"),
    ("bandcamp.com", "bandcamp"),
    ("vimeo.com", "vimeo"),
)

Resolver = Callable[[str], Awaitable[list[str]]]


class MetadataFetcher(Protocol):
    async def fetch(self, url: str) -> dict[str, Any]:
        """Return fetched metadata for ``url``. Raise on failure."""
        ...


def extract_domain(url: str) -> str:
    if not url or not url.strip():
        return ""
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError:
        return ""
    return (host or "").strip().lower()


def is_internal_upload_url(url: str) -> bool:
    """Links to files uploaded to the application itself have nothing to fetch."""
    trimmed = (url or "").strip()
    if not trimmed:
        return False

    try:
        path = urlsplit(trimmed).path.strip()
    except ValueError:
        return False

    return path == INTERNAL_UPLOADS_PATH or path.startswith(INTERNAL_UPLOADS_PATH + "/")


def classify_fetch_error(exc: BaseException | None) -> str:
    """Map a fetch failure to a short error type for logs."""
    if exc is None:
        return ""
    if isinstance(exc, FetchError):
        return exc.error_type
    if isinstance(exc, (TimeoutError, asyncio.CancelledError, aiohttp.ServerTimeoutError)):
        return "timeout"
    if isinstance(exc, aiohttp.TooManyRedirects):
        return "redirect"
    if isinstance(exc, aiohttp.InvalidURL):
        return "invalid_url"
    if isinstance(exc, aiohttp.ClientResponseError):
        return "http_status"
    if isinstance(exc, (aiohttp.ClientConnectorDNSError, socket.gaierror)):
        return "dns"
    return "fetch_error"


def is_blocked_hostname(host: str) -> bool:
    return host in BLOCKED_HOSTNAMES or host.endswith(".localhost")


def is_blocked_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return ip.is_loopback or ip.is_link_local or ip.is_private or ip.is_unspecified


def looks_like_image_url(url: str) -> bool:
    parts = urlsplit(url)

    def has_image_extension(value: str) -> bool:
        lower = value.lower()
        for ext in IMAGE_EXTENSIONS:
            needle = f".{ext}"
            idx = lower.rfind(needle)
            if idx == -1:
                continue
            end = idx + len(needle)
            if end == len(lower) or lower[end] in "?#&":
                return True
        return False

    if has_image_extension(parts.path):
        return True

    if not parts.query:
        return False

    query = parse_qs(parts.query)
    for key in ("format", "fm", "ext", "type"):
        values = query.get(key)
        if values and values[0].lower() in (*IMAGE_EXTENSIONS, "image"):
            return True

    return any(
        has_image_extension(value) for values in query.values() for value in values
    )


def detect_provider(host: str) -> str:
    host = host.lower()
    for needle, provider in KNOWN_PROVIDERS:
        if needle in host:
            return provider
    return ""


def _first_non_empty(*values: Optional[str]) -> str:
    for value in values:
        if value and value.strip():
            return value.strip()
    return ""


def extract_html_meta(body: bytes | str) -> tuple[dict[str, str], str]:
    """Collect ``<meta property|name content>`` pairs and the page title.

    Keys are lowercased; the first occurrence of a key wins.
    """
    meta_tags: dict[str, str] = {}
    if not body:
        return meta_tags, ""

    soup = BeautifulSoup(body, "lxml")

    for tag in soup.find_all("meta"):
        key = (tag.get("property") or tag.get("name") or "").strip().lower()
        content = (tag.get("content") or "").strip()
        if key and content and key not in meta_tags:
            meta_tags[key] = content

    title = ""
    if soup.title is not None and soup.title.string:
        title = soup.title.string.strip()

    return meta_tags, title


def build_metadata(
    url: str, content_type: str, body: bytes, *, final_url: Optional[str] = None
) -> dict[str, Any]:
    """Turn a fetched response into the metadata stored on a link."""
    base_url = final_url or url
    host = urlsplit(url).hostname or ""
    content_type = content_type.lower()
    is_html = "text/html" in content_type

    metadata: dict[str, Any] = {}
    provider = detect_provider(host)

    # SVGs are rendered through <img> by the frontend, never inline
    if content_type.startswith("image/"):
        metadata["image"] = url
        metadata["type"] = "image"

    if is_html:
        meta_tags, page_title = extract_html_meta(body)
        site_name = _first_non_empty(
            meta_tags.get("og:site_name"), meta_tags.get("application-name")
        )
        image = _first_non_empty(
            meta_tags.get("og:image:secure_url"),
            meta_tags.get("og:image"),
            meta_tags.get("twitter:image"),
            meta_tags.get("twitter:image:src"),
        )
        fields = {
            "title": _first_non_empty(
                meta_tags.get("og:title"), meta_tags.get("twitter:title"), page_title
            ),
            "description": _first_non_empty(
                meta_tags.get("og:description"),
                meta_tags.get("twitter:description"),
                meta_tags.get("description"),
            ),
            "image": urljoin(base_url, image) if image else "",
            "site_name": site_name,
            "author": _first_non_empty(
                meta_tags.get("author"), meta_tags.get("twitter:creator")
            ),
            "artist": _first_non_empty(
                meta_tags.get("music:artist"),
                meta_tags.get("music:musician"),
                meta_tags.get("spotify:artist"),
            ),
            "type": meta_tags.get("og:type", ""),
        }
        metadata.update({key: value for key, value in fields.items() if value})

        if not provider and site_name:
            provider = site_name

    if "image" not in metadata and not is_html and looks_like_image_url(url):
        metadata["image"] = url
        metadata["type"] = "image"

    provider = provider or host
    if provider:
        metadata["provider"] = provider

    return metadata


async def resolve_host(host: str) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


class HtmlMetadataFetcher:
    """Fetches a page and extracts OpenGraph / HTML meta information."""

    def __init__(
        self,
        client: AioHttpClient = aiohttp_client,
        *,
        resolver: Resolver = resolve_host,
        user_agent: str = DEFAULT_USER_AGENT,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
    ):
        self._client = client
        self._resolver = resolver
        self._user_agent = user_agent
        self._request_timeout = request_timeout
        self._max_body_bytes = max_body_bytes
        self._max_redirects = max_redirects

    async def validate_url(self, url: str) -> None:
        """Reject URLs that are malformed or point at internal hosts.

        Raises:
            FetchError: With ``error_type`` invalid_url, blocked or dns.
        """
        try:
            parts = urlsplit(url)
            hostname = parts.hostname
        except ValueError as exc:
            raise FetchError(f"parse url: {exc}", "invalid_url") from exc

        if not parts.scheme:
            raise FetchError("missing url scheme", "invalid_url")
        if not parts.netloc:
            raise FetchError("missing url host", "invalid_url")
        if parts.scheme not in ("http", "https"):
            raise FetchError("unsupported url scheme", "invalid_url")

        host = (hostname or "").lower().rstrip(".")
        if not host:
            raise FetchError("missing url host", "invalid_url")
        if is_blocked_hostname(host):
            raise FetchError(f"blocked host: {host}", "blocked")

        try:
            literal_ip = ipaddress.ip_address(host)
        except ValueError:
            literal_ip = None

        if literal_ip is not None:
            if is_blocked_ip(literal_ip):
                raise FetchError(f"blocked ip: {host}", "blocked")
            return

        try:
            addresses = await self._resolver(host)
        except (OSError, socket.gaierror) as exc:
            raise FetchError(f"resolve host: {exc}", "dns") from exc

        if not addresses:
            raise FetchError("resolve host: no addresses", "dns")

        for address in addresses:
            try:
                ip = ipaddress.ip_address(address.split("%", 1)[0])
            except ValueError:
                raise FetchError(f"blocked ip: {address}", "blocked") from None
            if is_blocked_ip(ip):
                raise FetchError(f"blocked ip: {address}", "blocked")

    async def fetch(self, url: str) -> dict[str, Any]:
        await self.validate_url(url)

        session = self._client()
        timeout = aiohttp.ClientTimeout(total=self._request_timeout)
        headers = {"User-Agent": self._user_agent}
        current_url = url

        try:
            for _ in range(self._max_redirects + 1):
                async with session.get(
                    current_url,
                    allow_redirects=False,
                    timeout=timeout,
                    headers=headers,
                ) as response:
                    if response.status in REDIRECT_STATUSES:
                        location = response.headers.get("Location")
                        if not location:
                            raise FetchError(
                                "redirect without location", "redirect"
                            )
                        current_url = urljoin(current_url, location)
                        await self.validate_url(current_url)
                        continue

                    if response.status < 200 or response.status >= 400:
                        raise FetchError(
                            f"unexpected status: {response.status}", "http_status"
                        )

                    content_type = response.headers.get("Content-Type", "")
                    body = await self._read_body(response)

                return build_metadata(
                    url, content_type, body, final_url=current_url
                )
        except FetchError:
            raise
        except TimeoutError as exc:
            raise FetchError(
                f"fetch url: timed out after {self._request_timeout}s", "timeout"
            ) from exc
        except aiohttp.ClientError as exc:
            raise FetchError(f"fetch url: {exc}", classify_fetch_error(exc)) from exc

        raise FetchError("too many redirects", "redirect")

    async def _read_body(self, response: aiohttp.ClientResponse) -> bytes:
        chunks: list[bytes] = []
        remaining = self._max_body_bytes
        async for chunk in response.content.iter_chunked(64 * 1024):
            chunks.append(chunk[:remaining])
            remaining -= len(chunk)
            if remaining <= 0:
                break
        return b"".join(chunks)
