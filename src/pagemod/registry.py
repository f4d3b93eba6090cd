"""Ordered plugin registry.

List position is priority: index 0 wins. New plugins are prepended; saving
an existing id updates it in place and keeps its position. A domain index
(target pattern -> plugin ids) is derived from the list and written in the
same atomic store update as the list itself.

Older installs stored plugins as a map keyed by id with a numeric
``priority``. That shape is converted to the ordered list the first time it
is read and written back, so the conversion runs once.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any, TypeAlias

from pagemod.config import get_settings
from pagemod.errors import PluginNotFoundError, PluginValidationError, StorageError
from pagemod.logger import logger
from pagemod.match_pattern import is_plugin_applicable
from pagemod.migration import load_plugin
from pagemod.schema import Plugin
from pagemod.storage import DOMAIN_INDEX_KEY, PLUGINS_KEY, SETTINGS_KEY, KeyValueStore
from pagemod.types import PluginRecord, SecurityLevel, now_iso

LEGACY_DEFAULT_PRIORITY = 500

DomainIndex: TypeAlias = dict[str, list[str]]


@dataclass
class RegistrySettings:
    plugins_enabled: bool = True
    security_level: SecurityLevel = SecurityLevel.ADVANCED

    @classmethod
    def defaults(cls) -> RegistrySettings:
        return cls(security_level=SecurityLevel(get_settings().security.default_level))

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RegistrySettings:
        base = cls.defaults()
        return cls(
            plugins_enabled=raw.get("plugins_enabled", base.plugins_enabled),
            security_level=SecurityLevel(raw.get("security_level", base.security_level)),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["security_level"] = str(self.security_level)
        return data


def _reindex(index: DomainIndex, plugin_id: str, domains: list[str]) -> None:
    """Point *domains* (and only those) at *plugin_id*."""
    for domain in list(index):
        ids = [i for i in index[domain] if i != plugin_id]
        if ids:
            index[domain] = ids
        else:
            del index[domain]
    for domain in dict.fromkeys(domains):
        index.setdefault(domain, []).append(plugin_id)


def build_domain_index(records: list[PluginRecord]) -> DomainIndex:
    index: DomainIndex = {}
    for record in records:
        for domain in dict.fromkeys(record.plugin.target_domains):
            index.setdefault(domain, []).append(record.id)
    return index


def _ms_to_iso(value: Any) -> str | None:
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000, tz=UTC).isoformat()
    return value


def _legacy_entry_to_record(entry: dict[str, Any]) -> dict[str, Any]:
    """Normalize one keyed-map entry (camelCase, epoch-ms) to the record dict shape."""
    plugin = dict(entry.get("plugin") or entry)
    plugin.pop("priority", None)
    return {
        "plugin": plugin,
        "enabled": entry.get("enabled", plugin.get("enabled", True)),
        "created_at": _ms_to_iso(entry.get("createdAt", entry.get("created_at"))),
        "updated_at": _ms_to_iso(entry.get("updatedAt", entry.get("updated_at"))),
        "last_used_at": _ms_to_iso(entry.get("lastUsedAt", entry.get("last_used_at"))),
        "usage_count": entry.get("usageCount", entry.get("usage_count", 0)),
    }


def _legacy_priority(entry: dict[str, Any]) -> int:
    plugin = entry.get("plugin") or entry
    priority = plugin.get("priority", entry.get("priority"))
    # Zero and non-integers (bools included) fall back to the default
    if isinstance(priority, bool) or not isinstance(priority, int) or priority == 0:
        return LEGACY_DEFAULT_PRIORITY
    return priority


class PluginRegistry:
    """Thin logic layer over a :class:`~pagemod.storage.KeyValueStore`."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        # Serializes read-modify-write cycles on the list and index
        self._lock = asyncio.Lock()

    # --- loading ---

    async def _load(self) -> list[PluginRecord]:
        raw = await self._store.get(PLUGINS_KEY)
        if raw is None:
            return []
        if isinstance(raw, dict):
            return await self._migrate_keyed_map(raw)
        if not isinstance(raw, list):
            raise StorageError(f"Unexpected plugin list type: {type(raw).__name__}")
        try:
            return [PluginRecord.from_dict(r) for r in raw]
        except (KeyError, PluginValidationError) as exc:
            raise StorageError(f"Stored plugin record is invalid: {exc}") from exc

    async def _load_index(self) -> DomainIndex:
        return await self._store.get(DOMAIN_INDEX_KEY) or {}

    async def _migrate_keyed_map(self, keyed: dict[str, Any]) -> list[PluginRecord]:
        entries = list(keyed.values())
        # sorted() is stable: equal priorities keep their stored order
        entries = sorted(entries, key=_legacy_priority, reverse=True)
        try:
            records = [PluginRecord.from_dict(_legacy_entry_to_record(e)) for e in entries]
        except PluginValidationError as exc:
            raise StorageError(f"Legacy plugin could not be migrated: {exc}") from exc
        await self._persist(records, build_domain_index(records))
        logger.info("Migrated plugin storage to ordered list", count=len(records))
        return records

    async def _persist(self, records: list[PluginRecord], index: DomainIndex) -> None:
        await self._store.set_many(
            {
                PLUGINS_KEY: [r.to_dict() for r in records],
                DOMAIN_INDEX_KEY: index,
            }
        )

    # --- queries ---

    async def all_records(self) -> list[PluginRecord]:
        return await self._load()

    async def all(self) -> list[Plugin]:
        return [r.plugin for r in await self._load()]

    async def get_record(self, plugin_id: str) -> PluginRecord | None:
        for record in await self._load():
            if record.id == plugin_id:
                return record
        return None

    async def get(self, plugin_id: str) -> Plugin | None:
        record = await self.get_record(plugin_id)
        return record.plugin if record else None

    async def enabled(self) -> list[Plugin]:
        return [r.plugin for r in await self._load() if r.enabled]

    async def for_url(self, url: str) -> list[Plugin]:
        """Enabled plugins whose target patterns cover *url*, in priority order."""
        return [
            r.plugin
            for r in await self._load()
            if r.enabled and is_plugin_applicable(r.plugin, url)
        ]

    async def domain_index(self) -> DomainIndex:
        await self._load()  # runs the legacy migration if it is still pending
        return await self._load_index()

    async def ids_for_domain(self, domain: str) -> list[str]:
        return list((await self.domain_index()).get(domain, []))

    # --- mutations ---

    async def save(self, plugin: Plugin) -> PluginRecord:
        async with self._lock:
            records = await self._load()
            index = await self._load_index()
            record = next((r for r in records if r.id == plugin.id), None)
            if record is not None:
                record.plugin = plugin
                # The saved definition carries the flag
                record.enabled = plugin.enabled
                record.updated_at = now_iso()
                logger.info("Plugin updated", plugin_id=plugin.id)
            else:
                record = PluginRecord(plugin=plugin, enabled=plugin.enabled)
                records.insert(0, record)
                logger.info("Plugin saved", plugin_id=plugin.id, name=plugin.name)
            _reindex(index, plugin.id, plugin.target_domains)
            await self._persist(records, index)
            return record

    async def update(self, plugin_id: str, **changes: Any) -> Plugin:
        """Merge *changes* (snake_case field names) into a plugin and save it."""
        current = await self.get(plugin_id)
        if current is None:
            raise PluginNotFoundError(plugin_id)
        merged = {**current.model_dump(), **changes, "id": plugin_id}
        plugin = load_plugin(merged)
        await self.save(plugin)
        return plugin

    async def delete(self, plugin_id: str) -> bool:
        async with self._lock:
            records = await self._load()
            remaining = [r for r in records if r.id != plugin_id]
            if len(remaining) == len(records):
                return False
            index = await self._load_index()
            _reindex(index, plugin_id, [])
            await self._persist(remaining, index)
        logger.info("Plugin deleted", plugin_id=plugin_id)
        return True

    async def toggle(self, plugin_id: str, enabled: bool) -> PluginRecord:
        async with self._lock:
            records = await self._load()
            record = next((r for r in records if r.id == plugin_id), None)
            if record is None:
                raise PluginNotFoundError(plugin_id)
            record.enabled = enabled
            record.plugin = record.plugin.model_copy(update={"enabled": enabled})
            record.updated_at = now_iso()
            await self._persist(records, await self._load_index())
        logger.info("Plugin toggled", plugin_id=plugin_id, enabled=enabled)
        return record

    async def record_usage(self, plugin_id: str) -> None:
        async with self._lock:
            records = await self._load()
            record = next((r for r in records if r.id == plugin_id), None)
            if record is None:
                return
            record.usage_count += 1
            record.last_used_at = now_iso()
            await self._persist(records, await self._load_index())

    # --- import / export ---

    async def import_plugin(self, text: str) -> Plugin:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise PluginValidationError("Invalid JSON format", [str(exc)]) from exc
        plugin = load_plugin(data)
        await self.save(plugin)
        return plugin

    async def export_plugin(self, plugin_id: str) -> str:
        plugin = await self.get(plugin_id)
        if plugin is None:
            raise PluginNotFoundError(plugin_id)
        return json.dumps(plugin.to_json_dict(), indent=2, ensure_ascii=False)

    async def export_all(self) -> str:
        plugins = [p.to_json_dict() for p in await self.all()]
        return json.dumps(plugins, indent=2, ensure_ascii=False)

    # --- settings ---

    async def get_settings(self) -> RegistrySettings:
        raw = await self._store.get(SETTINGS_KEY)
        return RegistrySettings.from_dict(raw) if raw else RegistrySettings.defaults()

    async def update_settings(self, **changes: Any) -> RegistrySettings:
        async with self._lock:
            current = await self.get_settings()
            merged = RegistrySettings.from_dict({**current.to_dict(), **changes})
            await self._store.set_many({SETTINGS_KEY: merged.to_dict()})
        return merged
