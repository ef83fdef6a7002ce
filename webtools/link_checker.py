"""Broken link detection for single URLs and whole pages.

The website scan fetches one page, collects every ``<a href>`` target,
resolves them against the page's final URL and probes the unique set in
parallel with a short per-link timeout.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .models import LinkCheckResult, WebsiteLinkScanResult
from .probe import link_timeout, probe, read_int_from_env

DEFAULT_LINK_WORKERS = 16
ANCHOR_TEXT_LIMIT = 50
SKIPPED_PREFIXES = ("mailto:", "tel:", "#", "javascript:")

logger = logging.getLogger("webtools.link_checker")
logger.addHandler(logging.NullHandler())


def extract_links(html: str, base_url: str) -> Dict[str, str]:
    """Map each unique absolute link target to the first anchor text seen."""
    soup = BeautifulSoup(html, "html.parser")
    links: Dict[str, str] = {}
    for tag in soup.find_all("a", href=True):
        href = (tag.get("href") or "").strip()
        if not href or href.lower().startswith(SKIPPED_PREFIXES):
            continue
        try:
            absolute = urljoin(base_url, href)
        except ValueError:
            continue
        if absolute not in links:
            links[absolute] = tag.get_text().strip()[:ANCHOR_TEXT_LIMIT]
    return links


def check_link(url: str, *, timeout: Optional[float] = None) -> LinkCheckResult:
    result = probe(url, "HEAD", timeout=timeout)
    if result.error is not None:
        return LinkCheckResult(url=url, status=0, ok=False, error=result.error)
    return LinkCheckResult(url=url, status=result.status, ok=result.ok)


def _check_with_anchor(url: str, anchor_text: str) -> LinkCheckResult:
    checked = check_link(url, timeout=link_timeout())
    checked.anchor_text = anchor_text or None
    return checked


def scan_website_links(url: str, *, max_links: Optional[int] = None) -> WebsiteLinkScanResult:
    """Fetch ``url`` and probe every link on it.

    ``max_links`` caps how many of the unique links are probed; ``totalLinks``
    still reports every unique link found.
    """
    page = probe(url, "GET")
    if page.error is not None:
        return WebsiteLinkScanResult(url=url, error=page.error)
    if not 200 <= page.status < 300:
        return WebsiteLinkScanResult(url=url, error=f"Main page returned {page.status}")

    links = extract_links(page.text, page.final_url or url)
    to_check = list(links.items())
    if max_links is not None:
        to_check = to_check[:max_links]

    scan = WebsiteLinkScanResult(url=url, total_links=len(links), checked_links=len(to_check))
    if not to_check:
        return scan

    workers = min(read_int_from_env("WEBTOOLS_LINK_WORKERS", DEFAULT_LINK_WORKERS, 1), len(to_check))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(_check_with_anchor, link, anchor): (link, anchor)
            for link, anchor in to_check
        }
        for future in as_completed(futures):
            link, anchor = futures[future]
            try:
                checked = future.result()
            except Exception as exc:  # pragma: no cover - probe does not raise
                logger.error("Link check worker failed for %s: %s", link, exc)
                checked = LinkCheckResult(
                    url=link, status=0, ok=False, anchor_text=anchor or None, error=str(exc)
                )
            if checked.ok:
                scan.working_links.append(checked)
            else:
                scan.broken_links.append(checked)

    logger.info(
        "Link scan for %s: %d unique, %d checked, %d broken",
        url,
        scan.total_links,
        scan.checked_links,
        len(scan.broken_links),
    )
    return scan
