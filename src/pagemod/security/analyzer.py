"""Static risk analysis of plugin content.

Walks every operation (and, for inserts, every nested element) and emits
typed RiskSignals. The plugin's level is the highest tier any signal
reaches: a high signal means advanced, medium means moderate. Low signals
never lift a plugin above safe.
"""

from __future__ import annotations

import re
from collections.abc import Iterator

from pagemod.schema import (
    Condition,
    Element,
    ExecuteOperation,
    InsertOperation,
    Plugin,
)
from pagemod.types import RiskSignal, RiskType, SecurityAnalysis, SecurityLevel, Severity

DANGEROUS_SELECTORS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p) for p in (r"^body$", r"^html$", r"^\*$", r"^div$", r"^span$", r"^p$", r"^a$")
)

_EXTERNAL_CALL = re.compile(r"\bfetch\s*\(|\bXMLHttpRequest\b|\baxios\s*\.\s*\w+")
_FETCH_URL = re.compile(r"""fetch\s*\(\s*['"`]([^'"`]+)['"`]""")
_SCHEME_LITERAL = re.compile(r"""['"`]\s*(?:javascript|data|vbscript):""", re.IGNORECASE)

# Anything here disqualifies event code from the "pure external call" shape
_NOT_PURE_EXTERNAL: tuple[re.Pattern[str], ...] = (
    re.compile(r"\beval\s*\("),
    re.compile(r"\bFunction\s*\("),
    re.compile(r"\bsetTimeout\s*\("),
    re.compile(r"\bsetInterval\s*\("),
    re.compile(r"\bdocument\.write\w*"),
    re.compile(r"\.innerHTML\s*=(?!=)"),
    _SCHEME_LITERAL,
)

_SUSPICIOUS_URL: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"""\blocation(?:\.href)?\s*=\s*['"`]\s*(?:javascript|data|vbscript):""",
        re.IGNORECASE,
    ),
    _SCHEME_LITERAL,
)

RECOMMENDATIONS: dict[RiskType, str] = {
    RiskType.CUSTOM_JS: "Consider using predefined actions instead of custom JS",
    RiskType.INNER_HTML: "Consider textContent instead of innerHTML",
    RiskType.EXTERNAL_API: "Restrict external API calls to trusted domains",
    RiskType.DANGEROUS_SELECTOR: "Use more specific selectors",
    RiskType.SUSPICIOUS_URL: "Remove suspicious URLs",
}


def is_dangerous_selector(selector: str) -> bool:
    return any(p.match(selector) for p in DANGEROUS_SELECTORS)


def has_external_call(code: str) -> bool:
    return bool(_EXTERNAL_CALL.search(code))


def is_pure_external_call(code: str) -> bool:
    """Code that only talks to an API: fetch/XHR/axios with nothing riskier."""
    return has_external_call(code) and not any(p.search(code) for p in _NOT_PURE_EXTERNAL)


def has_suspicious_url(code: str) -> bool:
    return any(p.search(code) for p in _SUSPICIOUS_URL)


def extract_api_url(code: str) -> str:
    m = _FETCH_URL.search(code)
    return m.group(1) if m else "unknown"


class SecurityAnalyzer:
    """Deterministic classifier: the same plugin content always yields the same result."""

    def analyze(self, plugin: Plugin) -> SecurityAnalysis:
        signals = list(self._scan(plugin))
        return SecurityAnalysis(
            level=self._level(signals),
            signals=signals,
            recommendations=self._recommendations(signals),
        )

    # --- walking ---

    def _scan(self, plugin: Plugin) -> Iterator[RiskSignal]:
        for i, op in enumerate(plugin.operations):
            loc = f"operations[{i}]"

            if isinstance(op, ExecuteOperation):
                yield RiskSignal(
                    RiskType.CUSTOM_JS,
                    Severity.HIGH,
                    loc,
                    "Operation executes custom JavaScript",
                    op.params.code,
                )

            if op.condition is not None:
                yield from self._scan_condition(op.condition, f"{loc}.condition")

            selector = getattr(op.params, "selector", None)
            if selector and is_dangerous_selector(selector):
                yield RiskSignal(
                    RiskType.DANGEROUS_SELECTOR,
                    Severity.LOW,
                    f"{loc}.selector",
                    f"Broad selector '{selector}' affects many elements",
                )

            if isinstance(op, InsertOperation):
                yield from self._scan_element_tree(op.params.element, f"{loc}.element")

    def _scan_condition(self, condition: Condition, loc: str) -> Iterator[RiskSignal]:
        if condition.type == "custom" and condition.code:
            yield RiskSignal(
                RiskType.CUSTOM_JS,
                Severity.HIGH,
                loc,
                "Custom condition evaluates JavaScript",
                condition.code,
            )

    def _scan_element_tree(self, root: Element, root_loc: str) -> Iterator[RiskSignal]:
        stack: list[tuple[Element, str]] = [(root, root_loc)]
        while stack:
            element, loc = stack.pop()

            if element.inner_html:
                yield RiskSignal(
                    RiskType.INNER_HTML,
                    Severity.MEDIUM,
                    loc,
                    "Element sets raw HTML content",
                )

            for j, event in enumerate(element.events or []):
                yield from self._scan_event_code(event.code, f"{loc}.events[{j}]")
                if event.condition is not None:
                    yield from self._scan_condition(
                        event.condition, f"{loc}.events[{j}].condition"
                    )

            children = element.children or []
            # Reversed so children pop in document order
            for k in range(len(children) - 1, -1, -1):
                stack.append((children[k], f"{loc}.children[{k}]"))

    def _scan_event_code(self, code: str, loc: str) -> Iterator[RiskSignal]:
        if is_pure_external_call(code):
            yield self._external_signal(code, loc)
        else:
            yield RiskSignal(
                RiskType.CUSTOM_JS,
                Severity.HIGH,
                loc,
                "Event handler executes custom JavaScript",
                code,
            )
            if has_external_call(code):
                yield self._external_signal(code, loc)

        if has_suspicious_url(code):
            yield RiskSignal(
                RiskType.SUSPICIOUS_URL,
                Severity.HIGH,
                loc,
                "Code references a javascript:, data: or vbscript: URL",
                code,
            )

    @staticmethod
    def _external_signal(code: str, loc: str) -> RiskSignal:
        return RiskSignal(
            RiskType.EXTERNAL_API,
            Severity.MEDIUM,
            loc,
            f"Calls external API: {extract_api_url(code)}",
            code,
        )

    # --- aggregation ---

    @staticmethod
    def _level(signals: list[RiskSignal]) -> SecurityLevel:
        severities = {s.severity for s in signals}
        if Severity.HIGH in severities:
            return SecurityLevel.ADVANCED
        if Severity.MEDIUM in severities:
            return SecurityLevel.MODERATE
        return SecurityLevel.SAFE

    @staticmethod
    def _recommendations(signals: list[RiskSignal]) -> list[str]:
        present = {s.type for s in signals}
        return [text for risk, text in RECOMMENDATIONS.items() if risk in present]


_analyzer = SecurityAnalyzer()


def analyze_plugin(plugin: Plugin) -> SecurityAnalysis:
    return _analyzer.analyze(plugin)
