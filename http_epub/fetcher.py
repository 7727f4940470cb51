"""Page retrieval with print/mobile variant substitution."""

from __future__ import annotations

import logging
from typing import Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

import requests
from bs4 import BeautifulSoup, SoupStrainer

from .config import ConvertConfig
from .errors import FetchError
from .models import FetchedPage
from .utils import is_http_url, resolve_url

logger = logging.getLogger("http_epub")

HTML_CONTENT_TYPES = {"text/html", "application/xhtml+xml"}


def new_session(config: ConvertConfig) -> requests.Session:
    """Create the HTTP session owned by a single conversion job."""
    session = requests.Session()
    session.headers["User-Agent"] = config.user_agent
    return session


def media_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";")[0].strip().lower()


def declared_charset(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    for param in content_type.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip("\"'")
    return None


def _request(session: requests.Session, url: str, timeout: float) -> requests.Response:
    try:
        resp = session.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise FetchError(f"could not fetch {url}: {exc}") from exc
    kind = media_type(resp.headers.get("Content-Type"))
    if kind and kind not in HTML_CONTENT_TYPES:
        raise FetchError(f"{url} is not an HTML page (Content-Type={kind})")
    return resp


def known_variant(url: str) -> Optional[Tuple[str, str]]:
    """Return ``(name, url)`` for sites with a known print or mobile edition."""
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()

    if host.endswith("wikipedia.org"):
        labels = host.split(".")
        # lang.wikipedia.org -> lang.m.wikipedia.org
        if len(labels) == 3 and labels[1] == "wikipedia":
            netloc = parts.netloc.lower().replace(host, f"{labels[0]}.m.wikipedia.org", 1)
            return "mobile", urlunsplit(parts._replace(netloc=netloc))
        return None

    if host == "medium.com" or host.endswith(".medium.com"):
        if "format=print" in parts.query:
            return None
        return "print", urlunsplit(parts._replace(query="format=print"))

    if host.endswith("nytimes.com") or host.endswith("washingtonpost.com"):
        if "print=true" in parts.query:
            return None
        query = f"{parts.query}&print=true" if parts.query else "print=true"
        return "print", urlunsplit(parts._replace(query=query))

    return None


def discover_variant(html: bytes, url: str, encoding: Optional[str] = None) -> Optional[Tuple[str, str]]:
    """Find a preferable reading variant advertised in the page head or known for its site."""
    head = BeautifulSoup(
        html,
        "lxml",
        parse_only=SoupStrainer("head"),
        from_encoding=encoding,
    )
    print_href = None
    amp_href = None
    for link in head.find_all("link"):
        rel = [value.lower() for value in (link.get("rel") or [])]
        href = (link.get("href") or "").strip()
        if not href:
            continue
        if "alternate" in rel and "print" in (link.get("media") or "").lower():
            print_href = print_href or href
        elif "amphtml" in rel:
            amp_href = amp_href or href

    for name, href in (("print", print_href), ("amp", amp_href)):
        if href:
            resolved = resolve_url(url, href)
            if resolved and is_http_url(resolved) and resolved != url:
                return name, resolved
    return known_variant(url)


def fetch_page(
    url: str,
    session: Optional[requests.Session] = None,
    config: Optional[ConvertConfig] = None,
) -> FetchedPage:
    """Fetch ``url``, substituting a better reading variant when one answers."""
    config = config or ConvertConfig()
    if not is_http_url(url):
        raise FetchError(f"not an http(s) address: {url!r}")
    session = session or new_session(config)

    logger.info("Fetching %s", url)
    resp = _request(session, url, config.timeout)
    final_url = resp.url or url
    encoding = declared_charset(resp.headers.get("Content-Type"))
    page = FetchedPage(
        requested_url=url,
        url=final_url,
        body=resp.content,
        encoding=encoding,
    )

    variant = discover_variant(page.body, final_url, encoding)
    if variant is None:
        return page

    name, variant_url = variant
    logger.debug("Trying %s variant %s", name, variant_url)
    try:
        variant_resp = _request(session, variant_url, config.timeout)
    except FetchError as exc:
        logger.debug("Ignoring %s variant: %s", name, exc)
        return page

    logger.info("Using %s variant %s", name, variant_resp.url or variant_url)
    return FetchedPage(
        requested_url=url,
        url=variant_resp.url or variant_url,
        body=variant_resp.content,
        encoding=declared_charset(variant_resp.headers.get("Content-Type")),
        variant=name,
    )
