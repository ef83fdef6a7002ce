#!/usr/bin/env python3
"""
WebTools SEO Scanner
--------------------

Provides the scanning core that powers the CLI as well as the API layer.
A scan runs a user selected subset of independent tools against one URL:

* redirect      - trace the redirect chain hop by hop.
* security      - audit six common security response headers.
* robots        - fetch and validate /robots.txt.
* broken_links  - probe every link found on the page.
* whois         - registration data, WHOIS with an RDAP fallback.
* ai            - AI generated summary of the site.

Tools run one after another and in isolation: a failing tool leaves an
error-shaped value in its slot and never stops the others. The merged result
is upserted into the per-domain report.
"""

from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from urllib.parse import urljoin

from .ai_summary import SUMMARY_ERROR, OpenAISummarizer, Summarizer
from .link_checker import scan_website_links
from .models import Failed, InvalidTargetError, Ok, RedirectTrace
from .probe import normalize_target, probe, read_int_from_env, read_limit_from_env
from .storage import DomainStorage, SQLAlchemyStorage
from .whois_lookup import WhoisLookup, clean_domain, lookup_whois

DEFAULT_MAX_REDIRECTS = 10
DEFAULT_SCAN_LINK_LIMIT = 20

SECURITY_HEADER_CHECKS = [
    ("strict-transport-security", "HSTS"),
    ("content-security-policy", "CSP"),
    ("x-frame-options", "X-Frame-Options"),
    ("x-content-type-options", "X-Content-Type-Options"),
    ("referrer-policy", "Referrer-Policy"),
    ("permissions-policy", "Permissions-Policy"),
]

STATUS_PRESENT = "present"
STATUS_MISSING = "missing"
STATUS_ERROR = "error"

TOOL_REDIRECT = "redirect"
TOOL_BROKEN_LINKS = "broken_links"
TOOL_SECURITY = "security"
TOOL_ROBOTS = "robots"
TOOL_AI = "ai"
TOOL_WHOIS = "whois"

TOOL_SLOTS = {
    TOOL_REDIRECT: "redirectData",
    TOOL_SECURITY: "securityData",
    TOOL_ROBOTS: "robotsData",
    TOOL_BROKEN_LINKS: "brokenLinksData",
    TOOL_AI: "aiData",
    TOOL_WHOIS: "whoisData",
}
TOOL_NAMES = tuple(TOOL_SLOTS)

ToolResult = Union[Ok, Failed]

logger = logging.getLogger("webtools.scanner")
logger.addHandler(logging.NullHandler())


def trace_redirects(start_url: str, max_redirects: Optional[int] = None) -> RedirectTrace:
    """Follow ``Location`` headers manually, recording one hop per request.

    At most ``max_redirects`` redirects are followed, so a trace holds at most
    ``max_redirects + 1`` hops. A network failure or a Location that cannot be
    resolved ends the trace with a status 0 hop carrying the error. Bodies are
    never downloaded.
    """
    if max_redirects is None:
        max_redirects = read_int_from_env("WEBTOOLS_MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS, 0)

    hops: List[Dict[str, Any]] = []
    current = start_url
    count = 0
    while True:
        result = probe(current, "GET", allow_redirects=False, read_body=False)
        if result.error is not None:
            hops.append({"url": current, "status": 0, "error": result.error})
            return RedirectTrace(hops=hops)

        hops.append({"url": current, "status": result.status, "headers": result.headers})
        location = result.headers.get("location")
        if not 300 <= result.status < 400 or not location:
            return RedirectTrace(hops=hops)
        if count >= max_redirects:
            logger.info("Redirect trace for %s stopped after %d redirects", start_url, count)
            return RedirectTrace(hops=hops, truncated=True)
        try:
            current = urljoin(current, location)
        except ValueError as exc:
            logger.warning("Unusable Location %r from %s: %s", location, current, exc)
            hops.append({"url": location, "status": 0, "error": f"Invalid redirect location: {exc}"})
            return RedirectTrace(hops=hops)
        count += 1


def check_security_headers(url: str) -> List[Dict[str, Any]]:
    result = probe(url, "HEAD")
    if result.error is not None:
        return [{"header": "Error", "value": None, "status": STATUS_ERROR, "description": result.error}]

    findings = []
    for key, name in SECURITY_HEADER_CHECKS:
        value = result.headers.get(key)
        findings.append(
            {
                "header": name,
                "value": value or None,
                "status": STATUS_PRESENT if value else STATUS_MISSING,
            }
        )
    return findings


def check_robots(base_url: str) -> Dict[str, Any]:
    robots_url = urljoin(base_url, "/robots.txt")
    result = probe(robots_url, "GET")
    if result.error is not None:
        return {"content": None, "isValid": False, "issues": [result.error]}

    is_valid = result.status == 200
    return {
        "content": result.text if is_valid else None,
        "isValid": is_valid,
        "status": result.status,
        "issues": [] if is_valid else [f"Returned status {result.status}"],
    }


def validate_tools(tools: Iterable[str]) -> List[str]:
    selected = list(tools or [])
    if not selected:
        raise InvalidTargetError("Select at least one tool")
    unknown = [tool for tool in selected if tool not in TOOL_SLOTS]
    if unknown:
        raise InvalidTargetError(f"Unknown tool: {unknown[0]}")
    # Preserve request order, drop duplicates.
    return list(dict.fromkeys(selected))


def whois_to_json(lookup: WhoisLookup) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"domain": lookup.domain, "data": lookup.data}
    if lookup.source:
        payload["source"] = lookup.source
    return payload


class ScanOrchestrator:
    """Runs the requested tools for one target and persists the merged slots.

    Storage, the AI summarizer and the WHOIS lookup are injected so callers
    (and tests) decide which implementations back a scan.
    """

    def __init__(
        self,
        storage: DomainStorage,
        summarizer: Optional[Summarizer] = None,
        whois_lookup: Callable[[str], WhoisLookup] = lookup_whois,
        link_limit: Optional[int] = None,
    ) -> None:
        self.storage = storage
        self.summarizer = summarizer
        self.whois_lookup = whois_lookup
        self.link_limit = link_limit

    def _scan_link_limit(self) -> Optional[int]:
        if self.link_limit is not None:
            return self.link_limit or None
        return read_limit_from_env("WEBTOOLS_SCAN_LINK_LIMIT", DEFAULT_SCAN_LINK_LIMIT)

    def _run_redirect(self, url: str, domain: str) -> ToolResult:
        return Ok(trace_redirects(url).hops)

    def _run_security(self, url: str, domain: str) -> ToolResult:
        return Ok(check_security_headers(url))

    def _run_robots(self, url: str, domain: str) -> ToolResult:
        return Ok(check_robots(url))

    def _run_broken_links(self, url: str, domain: str) -> ToolResult:
        return Ok(scan_website_links(url, max_links=self._scan_link_limit()).to_dict())

    def _run_ai(self, url: str, domain: str) -> ToolResult:
        if self.summarizer is None:
            return Failed(SUMMARY_ERROR, details="AI summaries are not configured")
        try:
            return self.summarizer.summarize(url)
        except Exception as exc:
            logger.error("AI summary for %s raised: %s", url, exc)
            return Failed(SUMMARY_ERROR, details=str(exc))

    def _run_whois(self, url: str, domain: str) -> ToolResult:
        bare = clean_domain(domain)
        try:
            lookup = self.whois_lookup(bare)
        except Exception as exc:
            logger.error("WHOIS lookup for %s raised: %s", bare, exc)
            return Failed(str(exc), extra={"domain": bare})
        if not lookup.data:
            return Failed("No WHOIS data found", extra={"domain": bare})
        return Ok(whois_to_json(lookup))

    def run_tool(self, tool: str, url: str, domain: str) -> ToolResult:
        runner = getattr(self, f"_run_{tool}")
        try:
            return runner(url, domain)
        except Exception as exc:
            if logger.isEnabledFor(logging.DEBUG):
                logger.exception("Tool %s failed for %s", tool, url)
            else:
                logger.error("Tool %s failed for %s: %s", tool, url, exc)
            return Failed(f"{tool} check failed", details=str(exc))

    def run_scan(self, url: str, tools: Iterable[str]) -> Dict[str, Any]:
        """Validate input, run each requested tool and return the merged record."""
        selected = validate_tools(tools)
        target = normalize_target(url)
        logger.info("Scanning %s with %s", target.url, ", ".join(selected))

        update: Dict[str, Any] = {"domain": target.domain}
        for tool in selected:
            outcome = self.run_tool(tool, target.url, target.domain)
            if not outcome.is_ok:
                logger.warning("Tool %s for %s returned an error: %s", tool, target.domain, outcome.message)
            update[TOOL_SLOTS[tool]] = outcome.to_json()

        return self.storage.upsert_domain(update)


def main() -> None:
    parser = argparse.ArgumentParser(description="WebTools SEO scanner")
    parser.add_argument("--url", "-u", required=True, help="Target URL or domain.")
    parser.add_argument(
        "--tools",
        "-t",
        default=",".join(tool for tool in TOOL_NAMES if tool != TOOL_AI),
        help="Comma separated tools: " + ", ".join(TOOL_NAMES),
    )
    parser.add_argument("--db", default=None, help="SQLite database file (default WEBTOOLS_DB_PATH).")
    parser.add_argument("--output", "-o", default=None, help="Write the JSON report here instead of stdout.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for INFO, -vv for DEBUG.")
    args = parser.parse_args()

    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    summarizer: Optional[Summarizer] = None
    tools = [tool.strip() for tool in args.tools.split(",") if tool.strip()]
    if TOOL_AI in tools:
        summarizer = OpenAISummarizer()

    orchestrator = ScanOrchestrator(SQLAlchemyStorage(args.db), summarizer=summarizer)
    try:
        report = orchestrator.run_scan(args.url, tools)
    except InvalidTargetError as exc:
        parser.error(str(exc))
        return

    rendered = json.dumps(report, ensure_ascii=False, indent=2)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as handle:
            handle.write(rendered)
        print(f"Report saved to {args.output}")
    else:
        print(rendered)


if __name__ == "__main__":
    main()
