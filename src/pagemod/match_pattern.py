"""URL match patterns.

Two syntaxes are accepted:

* Full patterns ``scheme://host/path`` where scheme is ``*``, ``http``,
  ``https`` or ``file``, plus the special ``<all_urls>``.
* Legacy bare-domain shorthand without ``://``: ``*`` (everything),
  ``*.base`` (subdomains of base only), ``base`` (exact host), each with an
  optional trailing ``/path*``.

Invalid patterns never raise from :func:`matches_url`; they simply deny.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlsplit

ALL_URLS = "<all_urls>"

_WILDCARD_SCHEMES = frozenset({"http", "https"})
_ALL_URLS_SCHEMES = frozenset({"http", "https", "file"})
_PATTERN_SCHEMES = frozenset({"*", "http", "https", "file"})

_FULL_PATTERN = re.compile(r"^([^:/]+)://([^/]*)(/.*)?$")


@dataclass(frozen=True)
class MatchPattern:
    scheme: str
    host: str
    path: str


class _HasTargets(Protocol):
    target_domains: list[str]


def _valid_host(host: str) -> bool:
    if host == "*":
        return True
    if host.startswith("*."):
        base = host[2:]
        return bool(base) and "*" not in base
    return bool(host) and "*" not in host


def parse_match_pattern(pattern: str) -> MatchPattern | None:
    """Parse a pattern into its parts, or None when it is not valid."""
    if not pattern:
        return None
    if pattern == ALL_URLS:
        return MatchPattern(scheme="*", host="*", path="/*")

    if "://" in pattern:
        m = _FULL_PATTERN.match(pattern)
        if not m:
            return None
        scheme, host, path = m.group(1), m.group(2).lower(), m.group(3)
        if scheme not in _PATTERN_SCHEMES or path is None:
            return None
        if scheme == "file":
            # file URLs carry no host
            return MatchPattern(scheme=scheme, host=host, path=path) if not host else None
        if not _valid_host(host):
            return None
        return MatchPattern(scheme=scheme, host=host, path=path)

    # Legacy shorthand: host[/path]
    host, sep, rest = pattern.partition("/")
    host = host.lower()
    path = f"/{rest}" if sep else "/*"
    if host == "*":
        return MatchPattern(scheme="*", host="*", path=path)
    if not _valid_host(host):
        return None
    base = host[2:] if host.startswith("*.") else host
    if "." not in base:
        return None
    return MatchPattern(scheme="*", host=host, path=path)


def _glob_to_regex(glob: str) -> re.Pattern[str]:
    parts = (re.escape(chunk) for chunk in glob.split("*"))
    return re.compile("^" + ".*".join(parts) + "$")


def _host_matches(pattern_host: str, host: str) -> bool:
    if pattern_host == "*":
        return True
    if pattern_host.startswith("*."):
        # Strictly a subdomain: the bare base is excluded
        return host.endswith("." + pattern_host[2:])
    return host == pattern_host


def matches_url(url: str, pattern: str) -> bool:
    """Whether *url* falls under *pattern*. Invalid input yields False."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    scheme = parts.scheme.lower()
    if not scheme:
        return False

    if pattern == ALL_URLS:
        return scheme in _ALL_URLS_SCHEMES

    parsed = parse_match_pattern(pattern)
    if parsed is None:
        return False

    if parsed.scheme == "*":
        if scheme not in _WILDCARD_SCHEMES:
            return False
    elif scheme != parsed.scheme:
        return False

    host = (parts.hostname or "").lower()
    if scheme != "file":
        if not host or not _host_matches(parsed.host, host):
            return False

    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return bool(_glob_to_regex(parsed.path).match(path))


def matches_any(url: str, patterns: Iterable[str]) -> bool:
    return any(matches_url(url, p) for p in patterns)


def is_plugin_applicable(plugin: _HasTargets, url: str) -> bool:
    """Whether any of the plugin's target patterns covers *url*.

    A bare domain (no scheme) is treated as an https URL.
    """
    if "://" not in url:
        url = f"https://{url}"
    return matches_any(url, plugin.target_domains)


def extract_domain(url: str) -> str:
    """Hostname of *url*, or an empty string when there is none."""
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""


def is_valid_target_pattern(value: str) -> bool:
    """Validation used for ``targetDomains`` entries."""
    value = value.strip()
    return bool(value) and parse_match_pattern(value) is not None


def to_match_pattern(domain: str) -> str:
    """Expand legacy shorthand into a full ``scheme://host/path`` pattern."""
    if domain == ALL_URLS or "://" in domain:
        return domain
    parsed = parse_match_pattern(domain)
    if parsed is None:
        raise ValueError(f"Invalid domain pattern: {domain}")
    return f"{parsed.scheme}://{parsed.host}{parsed.path}"
