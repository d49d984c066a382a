"""Company URL canonicalization and store filter helpers.

Company URLs are free text entered at different times, so the same company
can be stored as `https://acme.com`, `https://acme.com/` or
`https://ACME.com/?utm_source=x`. Lookups query every variant.
"""

import re
from urllib.parse import urlsplit, urlunsplit

URL_LIKE = re.compile(r"^https?://\S+", re.IGNORECASE)

# 80 and 443 are dropped for both schemes
DEFAULT_PORTS = {80, 443}

# Characters that must be quoted inside a PostgREST `or=(...)` expression
_POSTGREST_RESERVED = re.compile(r'[,()"]')


def canonicalize_company_url(value: object) -> str | None:
    """Normalize a company URL into a comparable form.

    Returns None for anything that is not an http(s) URL, including input
    that looks like a URL but cannot be parsed.
    """
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw or not URL_LIKE.match(raw):
        return None

    try:
        parts = urlsplit(raw)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return None
    if not host:
        return None

    scheme = parts.scheme.lower()
    netloc = f"[{host}]" if ":" in host else host
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"
    if port is not None and port not in DEFAULT_PORTS:
        netloc = f"{netloc}:{port}"

    path = parts.path or "/"
    if path != "/":
        path = path.rstrip("/") or "/"

    return urlunsplit((scheme, netloc, path, "", ""))


def normalize_company_value(value: object) -> str | None:
    """Canonical form when URL-like, otherwise the trimmed raw text."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return canonicalize_company_url(trimmed) or trimmed


def toggle_trailing_slash(url: str) -> str:
    """Add a trailing slash to the path, or remove it if present.

    A root URL toggles to the bare origin. Non-URL text is returned unchanged.
    """
    if not URL_LIKE.match(url):
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    path = parts.path
    path = path.rstrip("/") if path.endswith("/") else f"{path}/"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def company_url_variants(value: str | None) -> list[str]:
    """All spellings of a company URL that historical rows may use."""
    if not value:
        return []
    raw = value.strip()
    if not raw:
        return []

    canon = canonicalize_company_url(raw) or raw
    candidates = [raw, canon, toggle_trailing_slash(raw), toggle_trailing_slash(canon)]

    seen: set[str] = set()
    variants: list[str] = []
    for candidate in candidates:
        item = candidate.strip()
        if not item or item in seen:
            continue
        seen.add(item)
        variants.append(item)
    return variants


def _quote_filter_value(value: str) -> str:
    if not _POSTGREST_RESERVED.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_company_or_filter(variants: list[str], column: str = "company") -> str | None:
    """PostgREST `or` value matching any variant.

    Returns None for zero or one variant; callers use a plain `eq` filter then.
    """
    values = [v for v in variants if v]
    if len(values) <= 1:
        return None
    clauses = ",".join(f"{column}.eq.{_quote_filter_value(v)}" for v in values)
    return f"({clauses})"


def company_filter_params(value: str, column: str = "company") -> dict[str, str]:
    """Query parameters selecting rows whose column matches any variant of value."""
    variants = company_url_variants(value)
    or_filter = build_company_or_filter(variants, column)
    if or_filter:
        return {"or": or_filter}
    return {column: f"eq.{variants[0] if variants else value}"}
