"""WHOIS resolution with an RDAP fallback.

The primary source is the text WHOIS protocol via python-whois. Responses that
error out, look rate limited or retired, or carry at most one field trigger a
lookup against RDAP instead. Both sources are normalised into the same
camelCase field names; a lookup never merges the two.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Union

import whois

from .probe import probe

DEFAULT_RDAP_URL = "https://rdap.org/domain/"

INVALID_RESPONSE_MARKERS = (
    "rate limit exceeded",
    "retired",
    "use our rdap service",
)

PRIMARY_FIELD_NAMES = {
    "domain_name": "domainName",
    "registrar": "registrar",
    "registrar_url": "registrarUrl",
    "whois_server": "whoisServer",
    "creation_date": "creationDate",
    "updated_date": "updatedDate",
    "expiration_date": "expirationDate",
    "status": "status",
    "name_servers": "nameServer",
    "name": "registrantName",
    "org": "registrantOrganization",
    "country": "registrantCountry",
    "state": "registrantState",
    "city": "registrantCity",
    "emails": "emails",
    "dnssec": "dnssec",
}

RDAP_EVENT_FIELDS = {
    "registration": "creationDate",
    "expiration": "expirationDate",
    "last changed": "updatedDate",
}

FieldValue = Union[str, List[str]]

logging.getLogger("whois").setLevel(logging.CRITICAL)
logger = logging.getLogger("webtools.whois_lookup")
logger.addHandler(logging.NullHandler())


class RdapLookupError(RuntimeError):
    pass


@dataclass
class WhoisLookup:
    domain: str
    data: Dict[str, FieldValue] = field(default_factory=dict)
    source: Optional[str] = None


def clean_domain(value: str) -> str:
    """Strip scheme, path and a leading ``www.`` from user input."""
    domain = (value or "").strip().lower()
    domain = re.sub(r"^https?://", "", domain)
    domain = domain.split("/", 1)[0]
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def _normalise_value(value: Any) -> Optional[FieldValue]:
    if isinstance(value, (list, tuple, set)):
        items: List[str] = []
        for item in value:
            text = _stringify(item)
            if text and text not in items:
                items.append(text)
        if not items:
            return None
        return items[0] if len(items) == 1 else items
    return _stringify(value)


def _camel_case(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _query_primary(domain: str) -> Any:
    return whois.whois(domain)


def _is_invalid_response(response: Any) -> bool:
    if not response:
        return True
    try:
        fields = dict(response)
    except (TypeError, ValueError):
        logger.info("WHOIS response is not a mapping: %s", type(response).__name__)
        return True
    try:
        serialized = json.dumps(fields, default=str)
    except (TypeError, ValueError):
        serialized = str(response)
    raw_text = getattr(response, "text", None)
    if isinstance(raw_text, str):
        serialized += raw_text
    lowered = serialized.lower()
    if any(marker in lowered for marker in INVALID_RESPONSE_MARKERS):
        return True
    populated = [key for key, value in fields.items() if _normalise_value(value) is not None]
    return len(populated) <= 1


def normalise_primary(response: Any) -> Dict[str, FieldValue]:
    data: Dict[str, FieldValue] = {}
    for key, value in dict(response).items():
        normalised = _normalise_value(value)
        if normalised is None:
            continue
        data[PRIMARY_FIELD_NAMES.get(key, _camel_case(key))] = normalised
    return data


def _vcard_value(entity: Dict[str, Any], name: str) -> Optional[str]:
    vcard = entity.get("vcardArray") or []
    if len(vcard) < 2 or not isinstance(vcard[1], list):
        return None
    for entry in vcard[1]:
        if isinstance(entry, list) and len(entry) >= 4 and entry[0] == name:
            return _stringify(entry[3])
    return None


def _find_entity(entities: Iterable[Dict[str, Any]], role: str) -> Optional[Dict[str, Any]]:
    for entity in entities:
        if role in (entity.get("roles") or []):
            return entity
        nested = _find_entity(entity.get("entities") or [], role)
        if nested is not None:
            return nested
    return None


def _query_rdap(domain: str) -> Dict[str, Any]:
    base = os.getenv("WEBTOOLS_RDAP_URL", DEFAULT_RDAP_URL)
    result = probe(
        base.rstrip("/") + "/" + domain,
        "GET",
        headers={"Accept": "application/rdap+json"},
    )
    if result.error is not None:
        raise RdapLookupError(result.error)
    if result.status != 200:
        raise RdapLookupError(f"RDAP returned status {result.status}")
    try:
        payload = json.loads(result.text)
    except ValueError as exc:
        raise RdapLookupError(f"RDAP returned invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise RdapLookupError("RDAP returned an unexpected payload")
    return payload


def normalise_rdap(payload: Dict[str, Any]) -> Dict[str, FieldValue]:
    entities = payload.get("entities") or []
    registrar = _find_entity(entities, "registrar")
    registrant = _find_entity(entities, "registrant")

    raw: Dict[str, Any] = {
        "domainName": payload.get("ldhName") or payload.get("unicodeName"),
        "registrar": _vcard_value(registrar, "fn") if registrar else None,
        "status": payload.get("status"),
        "nameServer": [ns.get("ldhName") for ns in payload.get("nameservers") or [] if isinstance(ns, dict)],
    }
    for event in payload.get("events") or []:
        target = RDAP_EVENT_FIELDS.get(str(event.get("eventAction", "")).lower())
        if target and target not in raw:
            raw[target] = event.get("eventDate")
    if registrant:
        raw["registrantName"] = _vcard_value(registrant, "fn")
        raw["registrantOrganization"] = _vcard_value(registrant, "org")

    data: Dict[str, FieldValue] = {}
    for key, value in raw.items():
        normalised = _normalise_value(value)
        if normalised is not None:
            data[key] = normalised
    return data


def lookup_whois(domain: str) -> WhoisLookup:
    """Resolve registration data for a bare domain.

    Never raises: when both sources fail the lookup carries an empty mapping.
    """
    response: Any = None
    try:
        response = _query_primary(domain)
    except Exception as exc:
        logger.warning("WHOIS lookup for %s failed: %s", domain, exc)
    else:
        if not _is_invalid_response(response):
            return WhoisLookup(domain=domain, data=normalise_primary(response), source="whois")
        logger.info("WHOIS response for %s unusable, falling back to RDAP", domain)

    try:
        payload = _query_rdap(domain)
    except Exception as exc:
        logger.warning("RDAP lookup for %s failed: %s", domain, exc)
        return WhoisLookup(domain=domain)
    return WhoisLookup(domain=domain, data=normalise_rdap(payload), source="rdap")
