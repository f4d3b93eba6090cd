"""Tests for URL match pattern parsing and matching."""

from __future__ import annotations

import pytest

from pagemod.match_pattern import (
    MatchPattern,
    extract_domain,
    is_plugin_applicable,
    is_valid_target_pattern,
    matches_url,
    parse_match_pattern,
    to_match_pattern,
)
from conftest import make_plugin


class TestParseMatchPattern:
    def test_full_pattern(self):
        assert parse_match_pattern("https://example.com/*") == MatchPattern(
            scheme="https", host="example.com", path="/*"
        )

    def test_wildcard_scheme_and_subdomain(self):
        assert parse_match_pattern("*://*.github.com/*") == MatchPattern(
            scheme="*", host="*.github.com", path="/*"
        )

    def test_all_urls(self):
        assert parse_match_pattern("<all_urls>") == MatchPattern(scheme="*", host="*", path="/*")

    def test_file_pattern_has_empty_host(self):
        assert parse_match_pattern("file:///home/*") == MatchPattern(
            scheme="file", host="", path="/home/*"
        )

    @pytest.mark.parametrize(
        "pattern",
        [
            "",
            "invalid",
            "https://example.com",  # no path
            "ftp://example.com/*",
            "https://exa*mple.com/*",
            "https://*.*.com/*",
            "https://api.*.com/*",
        ],
    )
    def test_invalid_patterns(self, pattern):
        assert parse_match_pattern(pattern) is None

    def test_legacy_bare_domain(self):
        assert parse_match_pattern("github.com") == MatchPattern(
            scheme="*", host="github.com", path="/*"
        )

    def test_legacy_domain_with_path(self):
        assert parse_match_pattern("example.com/api/*") == MatchPattern(
            scheme="*", host="example.com", path="/api/*"
        )

    def test_legacy_star(self):
        assert parse_match_pattern("*") == MatchPattern(scheme="*", host="*", path="/*")

    def test_legacy_host_needs_a_dot(self):
        assert parse_match_pattern("localhost") is None
        assert parse_match_pattern("localhost/api/*") is None
        assert parse_match_pattern("http://localhost/*") == MatchPattern(
            scheme="http", host="localhost", path="/*"
        )


class TestMatchesUrl:
    def test_bare_domain_matches_any_path(self):
        assert matches_url("https://github.com/user/repo", "github.com")

    def test_subdomain_wildcard_matches_subdomains(self):
        assert matches_url("https://api.github.com/", "*.github.com")
        assert matches_url("https://gist.github.com/x", "*.github.com")

    def test_subdomain_wildcard_excludes_bare_base(self):
        assert not matches_url("https://github.com/", "*.github.com")
        assert not matches_url("https://github.com/", "*://*.github.com/*")

    def test_subdomain_wildcard_requires_dot_boundary(self):
        assert not matches_url("https://evilgithub.com/", "*.github.com")

    def test_star_matches_everything_web(self):
        assert matches_url("https://example.com/", "*")
        assert matches_url("http://anything.org/page", "*")

    def test_legacy_path(self):
        assert matches_url("https://example.com/api/users", "example.com/api/*")
        assert not matches_url("https://example.com/other", "example.com/api/*")

    def test_invalid_pattern_denies(self):
        assert not matches_url("https://example.com/", "not-a-url")
        assert not matches_url("https://example.com/", "https://exa*mple.com/*")

    def test_scheme_must_match(self):
        assert not matches_url("http://example.com/", "https://example.com/*")
        assert matches_url("https://example.com/", "https://example.com/*")

    def test_wildcard_scheme_excludes_file(self):
        assert not matches_url("file:///etc/hosts", "*://*/*")

    def test_all_urls(self):
        assert matches_url("https://example.com/", "<all_urls>")
        assert matches_url("http://example.com/", "<all_urls>")
        assert matches_url("file:///etc/hosts", "<all_urls>")
        assert not matches_url("ftp://example.com/", "<all_urls>")
        assert not matches_url("chrome://extensions", "<all_urls>")

    def test_file_pattern(self):
        assert matches_url("file:///home/me/notes.html", "file:///home/*")
        assert not matches_url("file:///etc/hosts", "file:///home/*")

    def test_path_glob_escapes_regex_metacharacters(self):
        assert matches_url("https://example.com/a.b", "https://example.com/a.b")
        assert not matches_url("https://example.com/aXb", "https://example.com/a.b")

    def test_path_includes_query(self):
        assert matches_url("https://example.com/search?q=1", "https://example.com/search*")

    def test_host_is_case_insensitive(self):
        assert matches_url("https://GitHub.com/x", "github.com")

    def test_url_without_scheme_never_matches(self):
        assert not matches_url("example.com/page", "*")


class TestHelpers:
    def test_is_plugin_applicable_with_domain_only(self):
        plugin = make_plugin(targetDomains=["github.com"])
        assert is_plugin_applicable(plugin, "github.com")
        assert is_plugin_applicable(plugin, "https://github.com/user")
        assert not is_plugin_applicable(plugin, "gitlab.com")

    def test_is_plugin_applicable_any_pattern(self):
        plugin = make_plugin(targetDomains=["example.com", "*.github.com"])
        assert is_plugin_applicable(plugin, "https://api.github.com/")

    def test_extract_domain(self):
        assert extract_domain("https://sub.example.com:8080/x") == "sub.example.com"
        assert extract_domain("nope") == ""

    def test_to_match_pattern(self):
        assert to_match_pattern("*.github.com") == "*://*.github.com/*"
        assert to_match_pattern("example.com/api/*") == "*://example.com/api/*"
        assert to_match_pattern("*") == "*://*/*"
        assert to_match_pattern("https://example.com/*") == "https://example.com/*"

    def test_to_match_pattern_rejects_invalid(self):
        with pytest.raises(ValueError):
            to_match_pattern("invalid")

    def test_is_valid_target_pattern(self):
        assert is_valid_target_pattern("example.com")
        assert is_valid_target_pattern("*")
        assert is_valid_target_pattern("*.github.com")
        assert is_valid_target_pattern("<all_urls>")
        assert not is_valid_target_pattern("*.com")
        assert not is_valid_target_pattern("   ")
        assert not is_valid_target_pattern("https://")
