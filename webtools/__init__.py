"""WebTools SEO scanner: per-domain redirect, header, robots, link and WHOIS checks."""

__version__ = "1.0.0"
