"""Entry point for `python -m pagemod` / `pagemod`.

Subcommands:
    pagemod analyze FILE              Risk analysis of a plugin JSON file
    pagemod import FILE               Validate and register a plugin
    pagemod export [ID] [--all]       Print plugin JSON
    pagemod list [--url URL]          List registered plugins
    pagemod toggle ID --on|--off      Enable or disable a plugin
    pagemod delete ID                 Remove a plugin
    pagemod match URL PATTERN         Test a match pattern against a URL
    pagemod apply HTML --url URL      Run applicable plugins on a static HTML file
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pagemod.config import get_settings
from pagemod.errors import PageModError, error_message
from pagemod.logger import install_excepthook, set_level
from pagemod.match_pattern import matches_url, parse_match_pattern
from pagemod.registry import PluginRegistry
from pagemod.storage import SqliteStore


def _analyze(args: argparse.Namespace) -> int:
    from pagemod.migration import load_plugin
    from pagemod.security import LEVEL_DESCRIPTIONS, LEVEL_LABELS, analyze_plugin

    plugin = load_plugin(json.loads(Path(args.file).read_text(encoding="utf-8")))
    analysis = analyze_plugin(plugin)
    if args.json:
        print(json.dumps(analysis.to_dict(), indent=2, ensure_ascii=False))
        return 0
    level = analysis.level
    print(f"{plugin.name}: {LEVEL_LABELS[level]} ({LEVEL_DESCRIPTIONS[level]})")
    for signal in analysis.signals:
        print(f"  [{signal.severity}] {signal.type} at {signal.location}: {signal.description}")
    for rec in analysis.recommendations:
        print(f"  - {rec}")
    return 0


def _match(args: argparse.Namespace) -> int:
    parsed = parse_match_pattern(args.pattern)
    if parsed is None:
        print(f"Invalid pattern: {args.pattern}", file=sys.stderr)
        return 2
    ok = matches_url(args.url, args.pattern)
    print(f"{'match' if ok else 'no match'} ({parsed.scheme}://{parsed.host}{parsed.path})")
    return 0 if ok else 1


async def _with_registry(args: argparse.Namespace) -> int:
    db_path = args.db or str(get_settings().db_path)
    async with SqliteStore(db_path) as store:
        registry = PluginRegistry(store)
        match args.command:
            case "import":
                text = Path(args.file).read_text(encoding="utf-8")
                plugin = await registry.import_plugin(text)
                print(f"Imported {plugin.id}")
            case "export":
                if args.all or not args.id:
                    print(await registry.export_all())
                else:
                    print(await registry.export_plugin(args.id))
            case "list":
                await _list(registry, args.url)
            case "toggle":
                record = await registry.toggle(args.id, args.enabled)
                print(f"{record.id}: {'enabled' if record.enabled else 'disabled'}")
            case "delete":
                if not await registry.delete(args.id):
                    print(f"Plugin not found: {args.id}", file=sys.stderr)
                    return 1
                print(f"Deleted {args.id}")
            case "apply":
                return await _apply(registry, args)
    return 0


async def _list(registry: PluginRegistry, url: str | None) -> None:
    from pagemod.plugin_utils import plugin_summary

    records = await registry.all_records()
    if url:
        applicable = {p.id for p in await registry.for_url(url)}
        records = [r for r in records if r.id in applicable]
    for record in records:
        flag = "on " if record.enabled else "off"
        print(f"[{flag}] {record.id}  {plugin_summary(record.plugin)}  used={record.usage_count}")


async def _apply(registry: PluginRegistry, args: argparse.Namespace) -> int:
    from pagemod.bridge import ChannelBridge, StaticEvaluator, connect_world
    from pagemod.document import SoupDocument
    from pagemod.runner import PageSession

    document = SoupDocument.from_path(args.html)
    bridge = ChannelBridge()
    connect_world(bridge, StaticEvaluator())
    session = PageSession(document, registry, bridge, args.url)
    try:
        results = await session.start()
    finally:
        session.stop()
        bridge.close()

    for blocked in session.blocked:
        print(f"blocked {blocked.plugin_id}: {blocked.reason}")
    failed = False
    for result in results:
        print(f"{result.plugin_id}: {'ok' if result.success else 'FAILED'}")
        for op in result.results:
            status = f"ok ({op.affected} affected)" if op.success else f"error: {op.error}"
            print(f"  {op.operation_id}: {status}")
        failed = failed or not result.success

    rendered = document.render()
    if args.output:
        Path(args.output).write_text(rendered, encoding="utf-8")
    else:
        print(rendered)
    return 1 if failed else 0


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pagemod",
        description="Declarative page-modification plugins",
    )
    parser.add_argument("--db", help="SQLite registry path (default: [storage] path)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("analyze", help="Risk analysis of a plugin file")
    p.add_argument("file")
    p.add_argument("--json", action="store_true", help="Emit JSON")

    p = sub.add_parser("import", help="Validate and register a plugin file")
    p.add_argument("file")

    p = sub.add_parser("export", help="Print plugin JSON")
    p.add_argument("id", nargs="?")
    p.add_argument("--all", action="store_true")

    p = sub.add_parser("list", help="List registered plugins")
    p.add_argument("--url", help="Only plugins applicable to this URL")

    p = sub.add_parser("toggle", help="Enable or disable a plugin")
    p.add_argument("id")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--on", dest="enabled", action="store_true")
    group.add_argument("--off", dest="enabled", action="store_false")

    p = sub.add_parser("delete", help="Remove a plugin")
    p.add_argument("id")

    p = sub.add_parser("match", help="Test a match pattern against a URL")
    p.add_argument("url")
    p.add_argument("pattern")

    p = sub.add_parser("apply", help="Run applicable plugins on a static HTML file")
    p.add_argument("html")
    p.add_argument("--url", required=True, help="URL the page is treated as")
    p.add_argument("-o", "--output", help="Write the modified HTML here")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    install_excepthook()
    set_level(get_settings().logging.level)

    try:
        match args.command:
            case "analyze":
                code = _analyze(args)
            case "match":
                code = _match(args)
            case _:
                code = asyncio.run(_with_registry(args))
    except (PageModError, OSError, json.JSONDecodeError) as exc:
        print(f"Error: {error_message(exc)}", file=sys.stderr)
        return 1
    return code


if __name__ == "__main__":
    sys.exit(main())
