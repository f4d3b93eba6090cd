"""Conversion of legacy flat-operation plugins to the current format.

Older plugins put operation fields at the top level
(``{"type": "hide", "selector": ".ad"}``) and used an action vocabulary
(hide/show/style/modify/remove/replace) instead of params-based
insert/update/delete/execute operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from pagemod.errors import PluginValidationError
from pagemod.logger import logger
from pagemod.schema import Plugin

_LEGACY_FIELDS = ("selector", "element", "style", "attributes", "code")


@dataclass
class MigrationResult:
    success: bool
    plugin: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def is_legacy_plugin(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    operations = data.get("operations")
    if not isinstance(operations, list) or not operations:
        return False
    first = operations[0]
    if not isinstance(first, dict) or "type" not in first or "params" in first:
        return False
    return any(key in first for key in _LEGACY_FIELDS)


def _migrate_operation(
    op: dict[str, Any], index: int, warnings: list[str], errors: list[str]
) -> dict[str, Any] | None:
    op_id = op.get("id")
    if not op_id:
        op_id = f"op-{index + 1}"
        warnings.append(f"operations[{index}]: missing id, assigned '{op_id}'")

    base: dict[str, Any] = {"id": op_id, "description": op.get("description", "")}
    if op.get("condition"):
        base["condition"] = op["condition"]

    selector = op.get("selector")
    kind = op.get("type")

    def _need_selector() -> bool:
        if not selector:
            errors.append(f"operations[{index}]: '{kind}' requires a selector")
            return False
        return True

    match kind:
        case "insert":
            if not _need_selector():
                return None
            if not op.get("element"):
                errors.append(f"operations[{index}]: 'insert' requires an element")
                return None
            position = op.get("position") or "beforeend"
            return {
                **base,
                "type": "insert",
                "params": {"selector": selector, "position": position, "element": op["element"]},
            }
        case "remove":
            if not _need_selector():
                return None
            return {**base, "type": "delete", "params": {"selector": selector}}
        case "hide" | "show":
            if not _need_selector():
                return None
            display = "none" if kind == "hide" else ""
            return {
                **base,
                "type": "update",
                "params": {"selector": selector, "style": {"display": display}},
            }
        case "style":
            if not _need_selector():
                return None
            return {
                **base,
                "type": "update",
                "params": {"selector": selector, "style": op.get("style") or {}},
            }
        case "modify":
            if not _need_selector():
                return None
            params: dict[str, Any] = {
                "selector": selector,
                "attributes": op.get("attributes") or {},
            }
            if op.get("textContent") is not None:
                params["textContent"] = op["textContent"]
            return {**base, "type": "update", "params": params}
        case "execute":
            if not op.get("code"):
                errors.append(f"operations[{index}]: 'execute' requires code")
                return None
            return {
                **base,
                "type": "execute",
                "params": {"code": op["code"], "run": op.get("run") or "once"},
            }
        case "replace":
            errors.append(
                f"operations[{index}]: 'replace' cannot be converted automatically;"
                " split it into delete + insert"
            )
            return None
        case _:
            errors.append(f"operations[{index}]: unknown operation type '{kind}'")
            return None


def migrate_plugin(data: dict[str, Any]) -> MigrationResult:
    """Convert a legacy plugin dict. Never raises; check ``result.success``."""
    warnings: list[str] = []
    errors: list[str] = []

    migrated = {k: v for k, v in data.items() if k != "operations"}
    if not migrated.get("version"):
        migrated["version"] = "1.0.0"
        warnings.append("missing version, defaulted to 1.0.0")

    operations = []
    for index, op in enumerate(data.get("operations") or []):
        new_op = _migrate_operation(op, index, warnings, errors)
        if new_op is not None:
            operations.append(new_op)
    migrated["operations"] = operations

    if errors:
        return MigrationResult(success=False, warnings=warnings, errors=errors)
    return MigrationResult(success=True, plugin=migrated, warnings=warnings)


def auto_migrate_plugin(data: dict[str, Any]) -> MigrationResult:
    """Migrate only if *data* is in the legacy shape; otherwise pass it through."""
    if not is_legacy_plugin(data):
        return MigrationResult(success=True, plugin=data)
    result = migrate_plugin(data)
    logger.info(
        "Migrated legacy plugin",
        plugin_id=data.get("id"),
        success=result.success,
        warnings=len(result.warnings),
    )
    return result


def _format_validation_errors(exc: ValidationError) -> list[str]:
    out = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        out.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return out


def load_plugin(data: Plugin | dict[str, Any]) -> Plugin:
    """Validate a plugin dict, migrating the legacy format first if needed."""
    if isinstance(data, Plugin):
        return data
    if not isinstance(data, dict):
        raise PluginValidationError("Plugin must be a JSON object")
    result = auto_migrate_plugin(data)
    if not result.success or result.plugin is None:
        raise PluginValidationError("Legacy plugin could not be migrated", result.errors)
    try:
        return Plugin.model_validate(result.plugin)
    except ValidationError as exc:
        raise PluginValidationError(
            "Plugin failed validation", _format_validation_errors(exc)
        ) from exc
