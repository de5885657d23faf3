import io

import pytest
from rich.console import Console

from permstore_interface import PermissionStore

METHODS = {
    "delete",
    "delete_permission",
    "get_permission",
    "list",
    "lookup",
    "set_permission",
    "set_value",
    "set",
}


class FakeProxy:
    """Stands in for an sdbus proxy: records calls, replays canned replies."""

    def __init__(self, version=2, replies=None, errors=None):
        self._version = version
        self.replies = replies or {}
        self.errors = errors or {}
        self.calls = []
        self.version_reads = 0

    @property
    def version(self):
        return self._read_version()

    async def _read_version(self):
        self.version_reads += 1
        if isinstance(self._version, BaseException):
            raise self._version
        return self._version

    def __getattr__(self, name):
        if name not in METHODS:
            raise AttributeError(name)

        async def method(*args):
            self.calls.append((name, args))
            if name in self.errors:
                raise self.errors[name]
            return self.replies.get(name)

        return method

    def called(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def proxy():
    return FakeProxy()


@pytest.fixture
def store(proxy):
    return PermissionStore(proxy)


@pytest.fixture
def make_out():
    """Factory for plain-text consoles with a fixed width."""
    def factory():
        return Console(file=io.StringIO(), width=100, color_system=None, force_terminal=False)
    return factory


@pytest.fixture
def out(make_out):
    return make_out()


@pytest.fixture
def make_proxy():
    return FakeProxy
