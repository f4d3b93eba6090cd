"""Execution gating by security level.

The ambient level is the most permissive tier the user allows: ``safe``
runs only safe plugins, ``moderate`` adds moderate ones, ``advanced`` runs
everything.
"""

from __future__ import annotations

from dataclasses import dataclass

from pagemod.schema import Plugin
from pagemod.security.analyzer import analyze_plugin
from pagemod.types import SecurityAnalysis, SecurityLevel

LEVEL_LABELS: dict[SecurityLevel, str] = {
    SecurityLevel.SAFE: "🟢 Safe",
    SecurityLevel.MODERATE: "🟡 Moderate",
    SecurityLevel.ADVANCED: "🔴 Advanced",
}

LEVEL_DESCRIPTIONS: dict[SecurityLevel, str] = {
    SecurityLevel.SAFE: "Only modifies page elements with predefined actions",
    SecurityLevel.MODERATE: "Communicates with external APIs or sets raw HTML",
    SecurityLevel.ADVANCED: "Executes custom JavaScript code",
}


@dataclass
class GateDecision:
    """Result of checking a plugin against the ambient level."""

    allowed: bool
    analysis: SecurityAnalysis
    reason: str | None = None


def level_allows(ambient: SecurityLevel | str, required: SecurityLevel | str) -> bool:
    return SecurityLevel(required).rank <= SecurityLevel(ambient).rank


def blocked_reason(analysis: SecurityAnalysis, ambient: SecurityLevel | str) -> str | None:
    """User-facing explanation, or None when the plugin may run."""
    if level_allows(ambient, analysis.level):
        return None
    ambient_label = LEVEL_LABELS[SecurityLevel(ambient)]
    match analysis.level:
        case SecurityLevel.ADVANCED:
            return (
                "This plugin executes custom JavaScript and requires the Advanced "
                f"security level (current: {ambient_label})"
            )
        case SecurityLevel.MODERATE:
            return (
                "This plugin communicates with external APIs or injects HTML and "
                f"requires the Moderate security level (current: {ambient_label})"
            )
        case _:
            return None


def evaluate(plugin: Plugin, ambient: SecurityLevel | str) -> GateDecision:
    analysis = analyze_plugin(plugin)
    reason = blocked_reason(analysis, ambient)
    return GateDecision(allowed=reason is None, analysis=analysis, reason=reason)


def can_execute(plugin: Plugin, ambient: SecurityLevel | str) -> bool:
    return level_allows(ambient, analyze_plugin(plugin).level)
