"""
FileOpts CLI — upload option management and the API server.

Commands:
- fileopts fields                      — Upload-capable fields and their modes
- fileopts get <field_key>             — Stored and effective mode of a field
- fileopts set <field_key> <mode>      — Store a mode (name or -1..2)
- fileopts custom list                 — Custom fields and their modes
- fileopts custom add <name>           — Register a custom field (mode rename)
- fileopts custom remove <name>        — Remove a custom field
- fileopts custom set <name> <value>   — Set a custom field mode (99 removes)
- fileopts serve                       — Start the API server (uvicorn)
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from fileopts.engine.config import load_platform_config
from fileopts.engine.errors import FileOptsError
from fileopts.fields import FieldKey
from fileopts.runtime import UploadRuntime

logger = logging.getLogger("fileopts.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="fileopts",
        description="FileOpts — per-field filename collision policies for uploads",
    )
    parser.add_argument(
        "--config", default=None, help="Path to fileopts.yaml (default: discovered from cwd)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # fileopts fields
    subparsers.add_parser("fields", help="List upload-capable fields with their modes")

    # fileopts get
    get_parser = subparsers.add_parser("get", help="Show the mode of a field")
    get_parser.add_argument("field_key", help="entity.bundle.field or a custom field name")

    # fileopts set
    set_parser = subparsers.add_parser("set", help="Set the mode of a field")
    set_parser.add_argument("field_key", help="entity.bundle.field or a custom field name")
    set_parser.add_argument("mode", help="rename, replace, reject, inherit or -1..2")

    # fileopts custom
    custom_parser = subparsers.add_parser("custom", help="Manage custom fields")
    custom_sub = custom_parser.add_subparsers(dest="custom_command", help="Custom field commands")
    custom_sub.add_parser("list", help="List custom fields")
    add_parser = custom_sub.add_parser("add", help="Register a custom field")
    add_parser.add_argument("name")
    remove_parser = custom_sub.add_parser("remove", help="Remove a custom field")
    remove_parser.add_argument("name")
    custom_set_parser = custom_sub.add_parser("set", help="Set a custom field mode (99 removes it)")
    custom_set_parser.add_argument("name")
    custom_set_parser.add_argument("value")

    # fileopts serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0
    if args.command == "custom" and args.custom_command is None:
        custom_parser.print_help()
        return 0

    try:
        config = load_platform_config(args.config)
    except FileOptsError as e:
        print(f"[ERROR] Failed to load config: {e.message}")
        return 1
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        return cmd_serve(args, config)

    runtime = UploadRuntime(config)
    try:
        runtime.startup()
        if args.command == "fields":
            return cmd_fields(args, runtime)
        elif args.command == "get":
            return cmd_get(args, runtime)
        elif args.command == "set":
            return cmd_set(args, runtime)
        elif args.command == "custom":
            return cmd_custom(args, runtime)
        parser.print_help()
        return 0
    except FileOptsError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        runtime.shutdown()


def cmd_fields(args: argparse.Namespace, runtime: UploadRuntime) -> int:
    """Fields grouped by entity type, with their stored modes."""
    grouped = runtime.introspector.list_upload_capable_fields()
    if not grouped:
        print("No upload-capable fields configured.")
    for entity_label, fields in grouped.items():
        print(entity_label)
        for canonical, info in fields.items():
            mode = runtime.policy_store.get_mode(canonical)
            print(f"  {canonical:<45} {info['bundle']:<15} {info['field_name']:<20} {mode.name.lower()}")

    custom = runtime.policy_store.list_custom_fields()
    if custom:
        print("Custom fields")
        for name, mode in custom:
            print(f"  {name:<45} {mode.name.lower()}")
    return 0


def cmd_get(args: argparse.Namespace, runtime: UploadRuntime) -> int:
    key = FieldKey.parse(args.field_key)
    stored = runtime.policy_store.get_mode(key)
    effective = runtime.policy_store.resolve_mode(key)
    print(f"{key.canonical}: {stored.name.lower()} (effective: {effective.name.lower()})")
    return 0


def cmd_set(args: argparse.Namespace, runtime: UploadRuntime) -> int:
    key = FieldKey.parse(args.field_key)
    if not key.is_custom:
        runtime.get_field(key)
    mode = runtime.policy_store.set_mode(key, args.mode)
    print(f"[OK] {key.canonical} -> {mode.name.lower()}")
    return 0


def cmd_custom(args: argparse.Namespace, runtime: UploadRuntime) -> int:
    store = runtime.policy_store

    if args.custom_command == "list":
        fields = store.list_custom_fields()
        if not fields:
            print("No custom fields.")
        for name, mode in fields:
            print(f"{name:<45} {mode.name.lower()}")
        return 0

    if args.custom_command == "add":
        if store.register_custom_field(args.name):
            print(f"[OK] Registered custom field '{args.name}' (rename)")
        else:
            print(f"[INFO] Custom field '{args.name}' already exists")
        return 0

    if args.custom_command == "remove":
        if store.remove_custom_field(args.name):
            print(f"[OK] Removed custom field '{args.name}'")
        else:
            print(f"[INFO] Custom field '{args.name}' not found")
        return 0

    if args.custom_command == "set":
        result = store.apply_custom_submission({args.name: args.value})
        if result[args.name] == "removed":
            print(f"[OK] Removed custom field '{args.name}'")
        else:
            print(f"[OK] {args.name} -> {store.get_mode(FieldKey.custom(args.name)).name.lower()}")
        return 0

    return 1


def cmd_serve(args: argparse.Namespace, config) -> int:
    """Start the API server with uvicorn."""
    try:
        import uvicorn
    except ImportError:
        print("[ERROR] 'uvicorn' is not installed. Install: pip install uvicorn")
        return 1

    from fileopts.api.app import create_app

    runtime = UploadRuntime(config)
    try:
        app = create_app(runtime)
    except FileOptsError as e:
        print(f"[ERROR] {e.message}")
        return 1

    print(f"Starting FileOpts API on http://{args.host}:{args.port}")
    try:
        uvicorn.run(app, host=args.host, port=args.port)
    except KeyboardInterrupt:
        print("\nServer stopped.")
    finally:
        runtime.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
