"""Static risk classification and security-level gating for plugins."""

from pagemod.security.analyzer import SecurityAnalyzer, analyze_plugin
from pagemod.security.gate import (
    LEVEL_DESCRIPTIONS,
    LEVEL_LABELS,
    GateDecision,
    blocked_reason,
    can_execute,
    evaluate,
    level_allows,
)

__all__ = [
    "LEVEL_DESCRIPTIONS",
    "LEVEL_LABELS",
    "GateDecision",
    "SecurityAnalyzer",
    "analyze_plugin",
    "blocked_reason",
    "can_execute",
    "evaluate",
    "level_allows",
]
