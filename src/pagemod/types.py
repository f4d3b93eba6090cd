"""Result and record types shared across modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pagemod.migration import load_plugin
from pagemod.schema import Plugin


class SecurityLevel(StrEnum):
    SAFE = "safe"
    MODERATE = "moderate"
    ADVANCED = "advanced"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {SecurityLevel.SAFE: 0, SecurityLevel.MODERATE: 1, SecurityLevel.ADVANCED: 2}


class RiskType(StrEnum):
    CUSTOM_JS = "custom_js"
    INNER_HTML = "inner_html"
    EXTERNAL_API = "external_api"
    DANGEROUS_SELECTOR = "dangerous_selector"
    SUSPICIOUS_URL = "suspicious_url"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class RiskSignal:
    type: RiskType
    severity: Severity
    location: str
    description: str
    code: str | None = None  # offending snippet, when there is one


@dataclass
class SecurityAnalysis:
    level: SecurityLevel
    signals: list[RiskSignal] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": str(self.level),
            "signals": [
                {
                    "type": str(s.type),
                    "severity": str(s.severity),
                    "location": s.location,
                    "description": s.description,
                }
                for s in self.signals
            ],
            "recommendations": list(self.recommendations),
        }


@dataclass
class OperationResult:
    operation_id: str
    success: bool
    affected: int = 0
    error: str | None = None


@dataclass
class ExecutionResult:
    plugin_id: str
    results: list[OperationResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def failed(self) -> list[OperationResult]:
        return [r for r in self.results if not r.success]


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class PluginRecord:
    """Registry entry wrapping a plugin with its bookkeeping."""

    plugin: Plugin
    enabled: bool = True
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    last_used_at: str | None = None
    usage_count: int = 0

    @property
    def id(self) -> str:
        return self.plugin.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "plugin": self.plugin.to_json_dict(),
            "enabled": self.enabled,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_used_at": self.last_used_at,
            "usage_count": self.usage_count,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> PluginRecord:
        return cls(
            plugin=load_plugin(raw["plugin"]),
            enabled=raw.get("enabled", True),
            created_at=raw.get("created_at") or now_iso(),
            updated_at=raw.get("updated_at") or now_iso(),
            last_used_at=raw.get("last_used_at"),
            usage_count=raw.get("usage_count", 0),
        )
