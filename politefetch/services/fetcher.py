from __future__ import annotations

import hashlib
from dataclasses import dataclass

import httpx

from politefetch.core.errors import FetchErrorKind, fetch_error, http_status_error
from politefetch.services.repository import FetchMeta

DEFAULT_TIMEOUT_SECONDS = 30.0
ACCEPT = "text/html,application/xhtml+xml"
ACCEPT_LANGUAGE = "en-US,en;q=0.9"


@dataclass(slots=True, frozen=True)
class NotModified:
    url: str
    not_modified: bool = True


@dataclass(slots=True, frozen=True)
class FetchedPage:
    url: str
    final_url: str
    status_code: int
    content: bytes
    html: str
    hash: str
    size: int
    etag: str | None = None
    last_modified: str | None = None


def build_request_headers(user_agent: str, meta: FetchMeta | None = None) -> dict[str, str]:
    headers = {
        "User-Agent": user_agent,
        "Accept": ACCEPT,
        "Accept-Language": ACCEPT_LANGUAGE,
        "Cache-Control": "no-cache",
    }
    if meta is not None:
        if meta.etag:
            headers["If-None-Match"] = meta.etag
        if meta.last_modified:
            headers["If-Modified-Since"] = meta.last_modified
    return headers


async def conditional_get(
    client: httpx.AsyncClient,
    url: str,
    meta: FetchMeta | None = None,
    *,
    user_agent: str,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> NotModified | FetchedPage:
    """GET ``url`` with revalidation headers taken from ``meta``.

    Returns ``NotModified`` on 304. Any other non-2xx status raises a
    ``FetchError`` whose kind is derived from the status code; transport
    failures raise a ``FetchError`` tagged as timeout or connection reset.
    """
    try:
        response = await client.get(
            url,
            headers=build_request_headers(user_agent, meta),
            timeout=timeout_seconds,
            follow_redirects=True,
        )
    except httpx.TimeoutException as exc:
        raise fetch_error(FetchErrorKind.TIMEOUT, f"timeout fetching {url}: {exc!r}") from exc
    except (httpx.NetworkError, httpx.RemoteProtocolError) as exc:
        raise fetch_error(FetchErrorKind.CONNECTION_RESET, f"connection failed for {url}: {exc!r}") from exc
    except httpx.HTTPError as exc:
        raise fetch_error(FetchErrorKind.UNKNOWN, f"request failed for {url}: {exc!r}") from exc

    if response.status_code == 304:
        return NotModified(url=url)

    if not response.is_success:
        raise http_status_error(response.status_code, response.reason_phrase)

    content = response.content
    return FetchedPage(
        url=url,
        final_url=str(response.url),
        status_code=response.status_code,
        content=content,
        html=response.text,
        hash=hashlib.sha256(content).hexdigest(),
        size=len(content),
        etag=response.headers.get("etag"),
        last_modified=response.headers.get("last-modified"),
    )
