"""
Permission store client: typed binding to the desktop portal permission store.

The service lives on the session bus and keeps named tables of resources.
Each resource maps application IDs to permission lists and carries one
opaque variant value ("associated data").

Usage:
    store = connect()
    await check_version(store)
    ids = await store.list("notifications")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sdbus import (
    DbusInterfaceCommonAsync,
    dbus_method_async,
    dbus_property_async,
    sd_bus_open_user,
)
from sdbus.exceptions import SdBusBaseError

# ============================================================================
# Constants
# ============================================================================

DBUS_NAME = "org.freedesktop.impl.portal.PermissionStore"
DBUS_PATH = "/org/freedesktop/impl/portal/PermissionStore"
PERMISSION_STORE_VERSION = 2


# ============================================================================
# Errors
# ============================================================================

class PermissionStoreError(Exception):
    """Base class for every failure surfaced by the client."""


class BusConnectionError(PermissionStoreError):
    """The session bus could not be opened."""

    def __init__(self, detail: str):
        super().__init__(f"Failed to connect: {detail}")


class ProxyCreationError(PermissionStoreError):
    """The proxy could not be bound to the connection."""

    def __init__(self, detail: str):
        super().__init__(f"Failed to create proxy: {detail}")


class VersionReadError(PermissionStoreError):
    """The `version` property could not be read."""

    def __init__(self, detail: str):
        super().__init__(f"Failed to get server version: {detail}")


class VersionMismatchError(PermissionStoreError):
    def __init__(self, server_version: int, expected_version: int = PERMISSION_STORE_VERSION):
        self.server_version = server_version
        self.expected_version = expected_version
        super().__init__(
            f"Server version {server_version} does not match expected version {expected_version}"
        )


class RemoteCallError(PermissionStoreError):
    """A dispatched method call failed, on the bus or inside the service."""

    def __init__(self, method: str, detail: str):
        self.method = method
        self.detail = detail
        super().__init__(detail)


# ============================================================================
# Values
# ============================================================================

@dataclass(frozen=True)
class AssociatedData:
    """Opaque variant stored next to a resource. Only ever displayed."""
    signature: str
    value: Any

    @classmethod
    def from_variant(cls, variant: tuple[str, Any]) -> AssociatedData:
        signature, value = variant
        return cls(signature, value)

    def to_variant(self) -> tuple[str, Any]:
        return (self.signature, self.value)


@dataclass
class LookupResult:
    """Every application's grant on one resource, plus its associated data."""
    permissions: dict[str, list[str]] = field(default_factory=dict)
    data: AssociatedData | None = None


# ============================================================================
# D-Bus interface
# ============================================================================

class PermissionStoreInterface(DbusInterfaceCommonAsync, interface_name=DBUS_NAME):
    """Proxy-side declaration of org.freedesktop.impl.portal.PermissionStore."""

    @dbus_property_async(property_signature="u", property_name="version")
    def version(self) -> int:
        raise NotImplementedError

    @dbus_method_async(input_signature="ss")
    async def delete(self, table: str, id: str) -> None:
        raise NotImplementedError

    @dbus_method_async(input_signature="sss")
    async def delete_permission(self, table: str, id: str, app: str) -> None:
        raise NotImplementedError

    @dbus_method_async(input_signature="sss", result_signature="as")
    async def get_permission(self, table: str, id: str, app: str) -> list[str]:
        raise NotImplementedError

    @dbus_method_async(input_signature="s", result_signature="as")
    async def list(self, table: str) -> list[str]:
        raise NotImplementedError

    @dbus_method_async(input_signature="ss", result_signature="a{sas}v")
    async def lookup(self, table: str, id: str) -> tuple[dict[str, list[str]], tuple[str, Any]]:
        raise NotImplementedError

    @dbus_method_async(input_signature="sbssas")
    async def set_permission(
        self, table: str, create: bool, id: str, app: str, permissions: list[str]
    ) -> None:
        raise NotImplementedError

    @dbus_method_async(input_signature="sbsv")
    async def set_value(self, table: str, create: bool, id: str, data: tuple[str, Any]) -> None:
        raise NotImplementedError

    @dbus_method_async(input_signature="sbsa{sas}v")
    async def set(
        self,
        table: str,
        create: bool,
        id: str,
        app_permissions: dict[str, list[str]],
        data: tuple[str, Any],
    ) -> None:
        raise NotImplementedError


# ============================================================================
# Client
# ============================================================================

BUS_ERRORS = (SdBusBaseError, OSError)


class PermissionStore:
    """Typed calls against a permission store proxy.

    Every failure of a method call comes back as RemoteCallError carrying
    the bus error text; replies are decoded into plain Python values.
    """

    def __init__(self, proxy):
        self._proxy = proxy

    async def version(self) -> int:
        try:
            return int(await self._proxy.version)
        except BUS_ERRORS as e:
            raise VersionReadError(str(e)) from e

    async def _call(self, method: str, *args):
        try:
            return await getattr(self._proxy, method)(*args)
        except BUS_ERRORS as e:
            raise RemoteCallError(method, str(e)) from e

    async def delete(self, table: str, id: str) -> None:
        """Drop a resource together with every application's grant."""
        await self._call("delete", table, id)

    async def delete_permission(self, table: str, id: str, app: str) -> None:
        """Drop one application's grant, leaving the rest of the resource."""
        await self._call("delete_permission", table, id, app)

    async def get_permission(self, table: str, id: str, app: str) -> list[str]:
        return list(await self._call("get_permission", table, id, app))

    async def list(self, table: str) -> list[str]:
        return list(await self._call("list", table))

    async def lookup(self, table: str, id: str) -> LookupResult:
        permissions, data = await self._call("lookup", table, id)
        return LookupResult(
            permissions={app: list(perms) for app, perms in permissions.items()},
            data=AssociatedData.from_variant(data),
        )

    async def set_permission(
        self, table: str, create: bool, id: str, app: str, permissions: list[str]
    ) -> None:
        await self._call("set_permission", table, create, id, app, list(permissions))

    async def set_value(self, table: str, create: bool, id: str, data: AssociatedData) -> None:
        await self._call("set_value", table, create, id, data.to_variant())

    async def set(
        self,
        table: str,
        create: bool,
        id: str,
        app_permissions: dict[str, list[str]],
        data: AssociatedData,
    ) -> None:
        """Replace the whole per-application mapping and the data in one call."""
        await self._call(
            "set",
            table,
            create,
            id,
            {app: list(perms) for app, perms in app_permissions.items()},
            data.to_variant(),
        )


def connect(bus=None) -> PermissionStore:
    """Open the session bus (unless given one) and bind a proxy to the store."""
    if bus is None:
        try:
            bus = sd_bus_open_user()
        except BUS_ERRORS as e:
            raise BusConnectionError(str(e)) from e

    # new_proxy sends nothing; it only fails on a bad name, path or bus handle
    try:
        proxy = PermissionStoreInterface.new_proxy(DBUS_NAME, DBUS_PATH, bus)
    except (*BUS_ERRORS, TypeError, ValueError) as e:
        raise ProxyCreationError(str(e)) from e

    return PermissionStore(proxy)


async def check_version(store: PermissionStore, expected: int = PERMISSION_STORE_VERSION) -> int:
    """Read the service version once and refuse anything but `expected`."""
    server_version = await store.version()
    if server_version != expected:
        raise VersionMismatchError(server_version, expected)
    return server_version
