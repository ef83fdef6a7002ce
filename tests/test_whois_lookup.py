import json
from datetime import datetime

import pytest

from conftest import FakeResponse
from webtools import whois_lookup
from webtools.whois_lookup import clean_domain, lookup_whois, normalise_primary, normalise_rdap

RDAP_URL = "https://rdap.org/domain/example.com"

RDAP_PAYLOAD = {
    "ldhName": "EXAMPLE.COM",
    "status": ["client delete prohibited", "client transfer prohibited"],
    "nameservers": [{"ldhName": "A.IANA-SERVERS.NET"}, {"ldhName": "B.IANA-SERVERS.NET"}],
    "events": [
        {"eventAction": "registration", "eventDate": "1995-08-14T04:00:00Z"},
        {"eventAction": "expiration", "eventDate": "2026-08-13T04:00:00Z"},
        {"eventAction": "last changed", "eventDate": "2025-08-14T07:01:38Z"},
    ],
    "entities": [
        {
            "roles": ["registrar"],
            "vcardArray": ["vcard", [["version", {}, "text", "4.0"], ["fn", {}, "text", "RESERVED-Internet Assigned Numbers Authority"]]],
        },
        {
            "roles": ["registrant"],
            "vcardArray": [
                "vcard",
                [["fn", {}, "text", "Domain Admin"], ["org", {}, "text", "Example Org"]],
            ],
        },
    ],
}

PRIMARY_RESPONSE = {
    "domain_name": ["EXAMPLE.COM", "example.com"],
    "registrar": "RESERVED-Internet Assigned Numbers Authority",
    "creation_date": datetime(1995, 8, 14, 4, 0),
    "expiration_date": None,
    "name_servers": ["A.IANA-SERVERS.NET", "B.IANA-SERVERS.NET"],
    "org": "Example Org",
}


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("example.com", "example.com"),
        ("https://www.Example.com/some/path", "example.com"),
        ("http://sub.example.com", "sub.example.com"),
        ("www.example.com/", "example.com"),
    ],
)
def test_clean_domain(raw, expected):
    assert clean_domain(raw) == expected


def test_normalise_primary_maps_field_names():
    data = normalise_primary(PRIMARY_RESPONSE)

    assert data == {
        "domainName": ["EXAMPLE.COM", "example.com"],
        "registrar": "RESERVED-Internet Assigned Numbers Authority",
        "creationDate": "1995-08-14T04:00:00",
        "nameServer": ["A.IANA-SERVERS.NET", "B.IANA-SERVERS.NET"],
        "registrantOrganization": "Example Org",
    }


def test_normalise_rdap_reads_entities_and_events():
    data = normalise_rdap(RDAP_PAYLOAD)

    assert data["domainName"] == "EXAMPLE.COM"
    assert data["registrar"] == "RESERVED-Internet Assigned Numbers Authority"
    assert data["creationDate"] == "1995-08-14T04:00:00Z"
    assert data["expirationDate"] == "2026-08-13T04:00:00Z"
    assert data["updatedDate"] == "2025-08-14T07:01:38Z"
    assert data["nameServer"] == ["A.IANA-SERVERS.NET", "B.IANA-SERVERS.NET"]
    assert data["registrantName"] == "Domain Admin"
    assert data["registrantOrganization"] == "Example Org"


def test_lookup_uses_primary_when_valid(fake_http, monkeypatch):
    monkeypatch.setattr(whois_lookup, "_query_primary", lambda domain: PRIMARY_RESPONSE)

    result = lookup_whois("example.com")

    assert result.source == "whois"
    assert result.data["registrar"] == "RESERVED-Internet Assigned Numbers Authority"
    assert fake_http.calls == []


@pytest.mark.parametrize(
    "primary",
    [
        {"domain_name": "example.com", "registrar": "x", "text": "Rate Limit Exceeded, try later"},
        {"domain_name": "example.com", "registrar": "This WHOIS service has been RETIRED"},
        {"domain_name": "example.com", "registrar": "Please use our RDAP service"},
        {"domain_name": "example.com"},
        {},
    ],
)
def test_lookup_falls_back_to_rdap_on_unusable_response(fake_http, monkeypatch, primary):
    monkeypatch.setattr(whois_lookup, "_query_primary", lambda domain: primary)
    fake_http.add("GET", RDAP_URL, FakeResponse(200, text=json.dumps(RDAP_PAYLOAD)))

    result = lookup_whois("example.com")

    assert result.source == "rdap"
    assert result.data["registrantOrganization"] == "Example Org"
    assert "rate limit" not in json.dumps(result.data).lower()


@pytest.mark.parametrize("primary", ["No match for domain EXAMPLE.COM", 42, [1, 2, 3]])
def test_lookup_falls_back_when_primary_is_not_a_mapping(fake_http, monkeypatch, primary):
    monkeypatch.setattr(whois_lookup, "_query_primary", lambda domain: primary)
    fake_http.add("GET", RDAP_URL, FakeResponse(200, text=json.dumps(RDAP_PAYLOAD)))

    result = lookup_whois("example.com")

    assert result.source == "rdap"
    assert result.data["domainName"] == "EXAMPLE.COM"


def test_lookup_falls_back_when_primary_raises(fake_http, monkeypatch):
    def fail(domain):
        raise ConnectionResetError("connection reset")

    monkeypatch.setattr(whois_lookup, "_query_primary", fail)
    fake_http.add("GET", RDAP_URL, FakeResponse(200, text=json.dumps(RDAP_PAYLOAD)))

    result = lookup_whois("example.com")

    assert result.source == "rdap"
    assert fake_http.calls[0]["headers"]["Accept"] == "application/rdap+json"


def test_lookup_returns_empty_when_both_sources_fail(fake_http, monkeypatch):
    monkeypatch.setattr(whois_lookup, "_query_primary", lambda domain: {})
    fake_http.add("GET", RDAP_URL, FakeResponse(404))

    result = lookup_whois("example.com")

    assert result.data == {}
    assert result.source is None


def test_lookup_rejects_malformed_rdap(fake_http, monkeypatch):
    monkeypatch.setattr(whois_lookup, "_query_primary", lambda domain: {})
    fake_http.add("GET", RDAP_URL, FakeResponse(200, text="<html>nope</html>"))

    assert lookup_whois("example.com").data == {}


def test_rdap_base_url_is_configurable(fake_http, monkeypatch):
    monkeypatch.setenv("WEBTOOLS_RDAP_URL", "https://rdap.test/v1/domain")
    monkeypatch.setattr(whois_lookup, "_query_primary", lambda domain: {})
    fake_http.add("GET", "https://rdap.test/v1/domain/example.com", FakeResponse(200, text=json.dumps(RDAP_PAYLOAD)))

    assert lookup_whois("example.com").source == "rdap"
