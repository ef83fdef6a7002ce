"""Shared data models for the scanning tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class InvalidTargetError(ValueError):
    """Raised when a user supplied URL or tool selection cannot be scanned."""


@dataclass
class ProbeResult:
    """Outcome of a single HTTP request. ``status`` is 0 on network failure."""

    url: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    text: str = ""
    final_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400


@dataclass
class ScanTarget:
    url: str
    domain: str


@dataclass
class RedirectTrace:
    hops: List[Dict[str, Any]]
    truncated: bool = False


@dataclass
class LinkCheckResult:
    url: str
    status: int
    ok: bool
    anchor_text: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"url": self.url, "status": self.status, "ok": self.ok}
        if self.anchor_text:
            payload["anchorText"] = self.anchor_text
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass
class WebsiteLinkScanResult:
    url: str
    total_links: int = 0
    checked_links: int = 0
    broken_links: List[LinkCheckResult] = field(default_factory=list)
    working_links: List[LinkCheckResult] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "url": self.url,
            "totalLinks": self.total_links,
            "checkedLinks": self.checked_links,
            "brokenLinks": [item.to_dict() for item in self.broken_links],
            "workingLinks": [item.to_dict() for item in self.working_links],
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass
class Ok:
    """Successful tool outcome wrapping its JSON-ready payload."""

    payload: Any
    is_ok = True

    def to_json(self) -> Any:
        return self.payload


@dataclass
class Failed:
    """Failed tool outcome. ``extra`` is merged into the JSON form."""

    message: str
    details: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    is_ok = False

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extra)
        payload["error"] = self.message
        if self.details is not None:
            payload["details"] = self.details
        return payload
