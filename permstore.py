#!/usr/bin/env python3
"""
permstore - Inspect and edit the desktop portal permission store over D-Bus

Usage:
    permstore delete <table> <id> [app]         Delete a resource, or one app's grant
    permstore get <table> <id> <app>            Show one app's permissions
    permstore list <table>                      List resource IDs in a table
    permstore lookup <table> <id>               Show every app's permissions + data
    permstore set [-c] <table> <id> <app> [permissions...]
                                                Replace one app's permissions

Options:
    -j, --json            Output raw JSON
    -v, --verbose         Log bus traffic to stderr
"""

import argparse
import asyncio
import json
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from rich.console import Console
from rich.segment import Segments
from rich.table import Table
from rich.text import Text
from rich import box

from permstore_interface import (
    LookupResult,
    PermissionStore,
    PermissionStoreError,
    RemoteCallError,
    check_version,
    connect,
    DBUS_NAME,
    DBUS_PATH,
)

console = Console()
err_console = Console(stderr=True)


def error(msg: str):
    """Print error and exit."""
    err_console.print(f"[red]error:[/red] {msg}", highlight=False, soft_wrap=True)
    sys.exit(1)


def log(tag: str, msg: dict):
    """Log to stderr."""
    compact = json.dumps(msg, separators=(",", ":"))
    print(f"[{tag}] {compact}", file=sys.stderr, flush=True)


# ============================================================================
# Output formatting
# ============================================================================

# Upper bound used only to measure a table's natural width
MEASURE_WIDTH = 1 << 16


def lookup_table(result: LookupResult) -> Table:
    table = Table(box=box.SIMPLE)
    table.add_column("AppID", style="cyan", overflow="fold")
    table.add_column("Permissions", overflow="fold")
    for app_id, allowed in result.permissions.items():
        table.add_row(Text(app_id), Text(",".join(allowed)))
    return table


def resource_table(ids: list[str]) -> Table:
    table = Table(box=box.SIMPLE)
    table.add_column("Resource ID", style="cyan", overflow="fold")
    for id in ids:
        table.add_row(Text(id))
    return table


def permission_table(permissions: list[str]) -> Table:
    table = Table(box=box.SIMPLE)
    table.add_column("Permission", overflow="fold")
    for permission in permissions:
        table.add_row(Text(permission))
    return table


def print_table(table: Table, out: Console):
    """Print a table at its natural width, even past the console's edge.

    IDs are meant to be copied back into other commands, so cells are never
    wrapped or cut short.
    """
    natural = out.measure(table, options=out.options.update_width(MEASURE_WIDTH)).maximum
    options = out.options.update_width(max(out.width, natural))
    lines = out.render_lines(table, options, pad=False, new_lines=True)
    out.print(Segments(segment for line in lines for segment in line), crop=False)


def print_lookup_response(result: LookupResult, out: Console | None = None):
    out = out or console
    print_table(lookup_table(result), out)
    out.print("associated data:", highlight=False)
    # repr() may contain brackets; keep rich from reading them as markup
    out.print(repr(result.data), markup=False, highlight=False, soft_wrap=True)


def print_list_response(ids: list[str], out: Console | None = None):
    print_table(resource_table(ids), out or console)


def print_get_permission_response(permissions: list[str], out: Console | None = None):
    print_table(permission_table(permissions), out or console)


def to_json(result: Any) -> Any:
    """Plain JSON shape for a command result."""
    if result is None:
        return {"status": "ok"}
    if isinstance(result, LookupResult):
        return {"permissions": result.permissions, "data": repr(result.data)}
    return result


# ============================================================================
# Commands - one per remote call shape
# ============================================================================

class Command(ABC):
    """A parsed CLI command bound to exactly one remote call."""

    action: str = ""

    @abstractmethod
    async def call(self, store: PermissionStore) -> Any:
        """Issue the remote call and return its decoded reply."""

    @abstractmethod
    def show(self, result: Any) -> None:
        """Render the reply on stdout."""


@dataclass
class DeleteResource(Command):
    table: str
    id: str
    action = "delete permissions"

    async def call(self, store):
        await store.delete(self.table, self.id)

    def show(self, result):
        console.print("Permissions deleted successfully")


@dataclass
class DeleteAppPermission(Command):
    table: str
    id: str
    app: str
    action = "delete permissions"

    async def call(self, store):
        await store.delete_permission(self.table, self.id, self.app)

    def show(self, result):
        console.print("Permissions deleted successfully")


@dataclass
class GetPermission(Command):
    table: str
    id: str
    app: str
    action = "get permissions"

    async def call(self, store):
        return await store.get_permission(self.table, self.id, self.app)

    def show(self, result):
        print_get_permission_response(result)


@dataclass
class ListResources(Command):
    table: str
    action = "list permissions"

    async def call(self, store):
        return await store.list(self.table)

    def show(self, result):
        print_list_response(result)


@dataclass
class Lookup(Command):
    table: str
    id: str
    action = "lookup permissions"

    async def call(self, store):
        return await store.lookup(self.table, self.id)

    def show(self, result):
        print_lookup_response(result)


@dataclass
class SetPermission(Command):
    table: str
    id: str
    app: str
    permissions: list[str] = field(default_factory=list)
    create: bool = False
    action = "set permissions"

    async def call(self, store):
        await store.set_permission(self.table, self.create, self.id, self.app, self.permissions)

    def show(self, result):
        console.print("Permissions set successfully")


def command_from_args(args: argparse.Namespace) -> Command:
    """Resolve parsed arguments to the single remote call they ask for."""
    cmd = args.command

    if cmd == "delete":
        if args.app is not None:
            return DeleteAppPermission(args.table, args.id, args.app)
        return DeleteResource(args.table, args.id)

    elif cmd == "get":
        return GetPermission(args.table, args.id, args.app)

    elif cmd == "list":
        return ListResources(args.table)

    elif cmd == "lookup":
        return Lookup(args.table, args.id)

    elif cmd == "set":
        return SetPermission(args.table, args.id, args.app, list(args.permissions), args.create)

    raise ValueError(f"unknown command: {cmd}")


# ============================================================================
# Runner
# ============================================================================

async def run(command: Command, bus=None, verbose: bool = False) -> Any:
    """Connect, check the service version, then issue the command's one call."""
    store = connect(bus)
    if verbose:
        log("BUS", {"name": DBUS_NAME, "path": DBUS_PATH})

    version = await check_version(store)
    if verbose:
        log("VER", {"version": version})
        log("CALL", {"command": type(command).__name__, "args": vars(command)})

    result = await command.call(store)
    if verbose:
        log("DONE", {"command": type(command).__name__})
    return result


# ============================================================================
# CLI
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="permstore",
        description="Desktop portal permission store over D-Bus",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-j", "--json", action="store_true", help="Output raw JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log bus traffic to stderr")

    sub = parser.add_subparsers(dest="command", required=True, metavar="command")

    p = sub.add_parser("delete", help="Delete Permissions")
    p.add_argument("table", help="The name of the table to use")
    p.add_argument("id", help="The resource ID to modify")
    p.add_argument("app", nargs="?", help="Name of the application")

    p = sub.add_parser("get", help="Get Permissions")
    p.add_argument("table", help="The name of the table to use")
    p.add_argument("id", help="The resource ID to modify")
    p.add_argument("app", help="Name of the application")

    p = sub.add_parser("list", help="List Permissions")
    p.add_argument("table", help="The name of the table to use")

    p = sub.add_parser("lookup", help="Lookup Permissions")
    p.add_argument("table", help="The name of the table to use")
    p.add_argument("id", help="The resource ID to modify")

    p = sub.add_parser("set", help="Set Permissions")
    p.add_argument("-c", "--create", action="store_true",
                   help="Whether to create the table if it does not exist")
    p.add_argument("table", help="The name of the table to use")
    p.add_argument("id", help="The resource ID to modify")
    p.add_argument("app", help="The application ID to modify")
    p.add_argument("permissions", nargs="*", help="The permissions to set")

    return parser


def main(argv: list[str] | None = None):
    args = build_parser().parse_args(argv)
    command = command_from_args(args)

    try:
        result = asyncio.run(run(command, verbose=args.verbose))
    except RemoteCallError as e:
        error(f"failed to {command.action}: {e}")
    except PermissionStoreError as e:
        error(str(e))

    if args.json:
        console.print_json(data=to_json(result))
    else:
        command.show(result)


if __name__ == "__main__":
    main()
