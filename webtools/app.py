from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .ai_summary import OpenAISummarizer, Summarizer
from .link_checker import check_link, scan_website_links
from .models import InvalidTargetError
from .probe import ensure_scheme, read_int_from_env, read_limit_from_env
from .scanner import ScanOrchestrator, check_robots, check_security_headers, trace_redirects, whois_to_json
from .storage import DomainStorage, SQLAlchemyStorage
from .whois_lookup import WhoisLookup, clean_domain, lookup_whois

ToolName = Literal["redirect", "broken_links", "security", "robots", "ai", "whois"]

DEFAULT_REDIRECT_WORKERS = 8

logger = logging.getLogger("webtools.api")
logger.addHandler(logging.NullHandler())


class ScanRequest(BaseModel):
    url: str = Field(min_length=1, description="URL or bare domain; https is assumed without a scheme.")
    tools: List[ToolName] = Field(min_length=1, description="Tools to run for this scan.")


class UrlRequest(BaseModel):
    url: Optional[str] = None


class RedirectCheckRequest(BaseModel):
    urls: Any = None


class WhoisRequest(BaseModel):
    url: Optional[str] = None
    domain: Optional[str] = None


def _require_url(payload: UrlRequest) -> str:
    if not payload.url or not payload.url.strip():
        raise HTTPException(status_code=400, detail="Please provide a URL")
    return ensure_scheme(payload.url)


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    message = str(first.get("msg", "Invalid request")).replace("Value error, ", "")
    location = [str(part) for part in first.get("loc", ()) if part != "body"]
    return f"{'.'.join(location)}: {message}" if location else message


def create_app(
    storage: Optional[DomainStorage] = None,
    summarizer: Optional[Summarizer] = None,
    whois_lookup: Callable[[str], WhoisLookup] = lookup_whois,
) -> FastAPI:
    storage = storage or SQLAlchemyStorage()
    orchestrator = ScanOrchestrator(
        storage,
        summarizer=summarizer if summarizer is not None else OpenAISummarizer(),
        whois_lookup=whois_lookup,
    )

    app = FastAPI(
        title="WebTools SEO Scanner API",
        description="Redirect, security header, robots.txt, broken link, WHOIS and AI checks per domain.",
        version="1.0.0",
    )
    app.state.storage = storage
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_api_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        if request.url.path.startswith("/api"):
            logger.info(
                "%s %s %d in %dms",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"message": _first_validation_message(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})

    @app.get("/healthz", tags=["meta"])
    def healthcheck():
        return {"status": "ok"}

    @app.get("/api/domains", tags=["domains"])
    def list_domains(limit: int = Query(default=10, ge=1, le=1000)):
        return storage.get_recent_domains(limit)

    @app.get("/api/domains/{domain}", tags=["domains"])
    def get_domain(domain: str):
        record = storage.get_domain(domain.lower())
        if record is None:
            raise HTTPException(status_code=404, detail="Domain report not found")
        return record

    @app.post("/api/scan", tags=["scan"])
    def scan(payload: ScanRequest):
        try:
            return orchestrator.run_scan(payload.url, payload.tools)
        except InvalidTargetError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except Exception:
            logger.exception("Scan of %s failed", payload.url)
            raise HTTPException(status_code=500, detail="Internal server error during scan")

    @app.post("/api/redirect-check", tags=["tools"])
    def redirect_check(payload: RedirectCheckRequest):
        urls = payload.urls
        if not isinstance(urls, list) or not urls:
            raise HTTPException(status_code=400, detail="Please provide an array of URLs")

        def trace(raw: Any) -> Dict[str, Any]:
            if not isinstance(raw, str) or not raw.strip():
                return {"url": raw, "hops": [], "truncated": False, "error": "URL must be a non-empty string"}
            url = ensure_scheme(raw)
            try:
                result = trace_redirects(url)
            except Exception as exc:
                logger.error("Redirect check for %s failed: %s", url, exc)
                return {"url": raw, "hops": [], "truncated": False, "error": str(exc)}
            return {"url": url, "hops": result.hops, "truncated": result.truncated}

        workers = min(read_int_from_env("WEBTOOLS_REDIRECT_WORKERS", DEFAULT_REDIRECT_WORKERS, 1), len(urls))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(trace, urls))

    @app.post("/api/security-check", tags=["tools"])
    def security_check(payload: UrlRequest):
        url = _require_url(payload)
        return {"url": url, "headers": check_security_headers(url)}

    @app.post("/api/robots-check", tags=["tools"])
    def robots_check(payload: UrlRequest):
        url = _require_url(payload)
        return {"url": url, **check_robots(url)}

    @app.post("/api/link-check", tags=["tools"])
    def link_check(payload: UrlRequest):
        url = _require_url(payload)
        return check_link(url).to_dict()

    @app.post("/api/website-link-check", tags=["tools"])
    def website_link_check(payload: UrlRequest):
        url = _require_url(payload)
        limit = read_limit_from_env("WEBTOOLS_WEBSITE_LINK_LIMIT", None)
        return scan_website_links(url, max_links=limit).to_dict()

    @app.post("/api/whois-check", tags=["tools"])
    def whois_check(payload: WhoisRequest):
        domain = clean_domain(payload.domain or payload.url or "")
        if not domain:
            raise HTTPException(status_code=400, detail="Please provide a domain")
        lookup = whois_lookup(domain)
        if not lookup.data:
            return {"domain": domain, "error": "No WHOIS data found"}
        return whois_to_json(lookup)

    return app


app = create_app()
