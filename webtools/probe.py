"""HTTP probing primitives shared by every analyzer.

All outbound requests go through :func:`probe`, which performs exactly one
request on a per-thread ``requests.Session`` and never raises for network
failures: DNS errors, refused connections and timeouts come back as a
:class:`ProbeResult` with ``status == 0`` and the error message.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Dict, Optional
from urllib.parse import urlparse

import requests

from .models import InvalidTargetError, ProbeResult, ScanTarget

DEFAULT_TIMEOUT = 12
DEFAULT_LINK_TIMEOUT = 3
USER_AGENT = "WebTools-SEO-Scanner/1.0 (+https://webtools.io)"

SESSION_HEADERS = {"User-Agent": USER_AGENT, "Accept": "*/*"}

logger = logging.getLogger("webtools.probe")
logger.addHandler(logging.NullHandler())

_THREAD_LOCAL_SESSION: threading.local = threading.local()


def read_int_from_env(var_name: str, default: int, minimum: int) -> int:
    value = os.getenv(var_name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return max(minimum, parsed)


def read_limit_from_env(var_name: str, default: Optional[int]) -> Optional[int]:
    """Like :func:`read_int_from_env` but ``0`` (or below) means "no limit"."""
    value = os.getenv(var_name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else None


def default_timeout() -> int:
    return read_int_from_env("WEBTOOLS_TIMEOUT", DEFAULT_TIMEOUT, 1)


def link_timeout() -> int:
    return read_int_from_env("WEBTOOLS_LINK_TIMEOUT", DEFAULT_LINK_TIMEOUT, 1)


def _get_thread_session() -> requests.Session:
    session = getattr(_THREAD_LOCAL_SESSION, "session", None)
    if session is None:
        session = requests.Session()
        session.headers.update(SESSION_HEADERS)
        setattr(_THREAD_LOCAL_SESSION, "session", session)
    return session


def probe(
    url: str,
    method: str = "HEAD",
    *,
    allow_redirects: bool = True,
    timeout: Optional[float] = None,
    headers: Optional[Dict[str, str]] = None,
    read_body: bool = True,
) -> ProbeResult:
    """Issue one request and summarise the response.

    Header names in the result are lower-cased. The body is only read for
    non-HEAD requests, and never when ``read_body`` is false: the response is
    then streamed and closed after the headers arrive.
    """
    method = method.upper()
    session = _get_thread_session()
    request_headers = dict(session.headers)
    if headers:
        request_headers.update(headers)

    try:
        resp = session.request(
            method,
            url,
            timeout=timeout if timeout is not None else default_timeout(),
            headers=request_headers,
            allow_redirects=allow_redirects,
            stream=not read_body,
        )
    except requests.RequestException as exc:
        if logger.isEnabledFor(logging.DEBUG):
            logger.exception("Request %s %s failed", method, url)
        else:
            logger.warning("Request %s %s failed: %s", method, url, exc)
        return ProbeResult(url=url, status=0, error=str(exc) or exc.__class__.__name__)

    if not read_body:
        resp.close()
    return ProbeResult(
        url=url,
        status=resp.status_code,
        headers={k.lower(): v for k, v in resp.headers.items()},
        text=(resp.text or "") if read_body and method != "HEAD" else "",
        final_url=resp.url or url,
    )


def ensure_scheme(url: str) -> str:
    cleaned = (url or "").strip()
    if cleaned and "://" not in cleaned:
        cleaned = "https://" + cleaned.lstrip("/")
    return cleaned


def normalize_target(url: str) -> ScanTarget:
    """Default the scheme to https and derive the domain used as storage key."""
    cleaned = ensure_scheme(url)
    if not cleaned:
        raise InvalidTargetError("URL is required")
    try:
        parsed = urlparse(cleaned)
        hostname = parsed.hostname
    except ValueError as exc:
        raise InvalidTargetError(f"Invalid URL: {url}") from exc
    if parsed.scheme not in {"http", "https"} or not hostname or " " in hostname:
        raise InvalidTargetError(f"Invalid URL: {url}")
    return ScanTarget(url=cleaned, domain=hostname)
