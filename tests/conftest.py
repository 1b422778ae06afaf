"""Shared fixtures for prompt_modules tests."""

import gzip
import io
import tarfile
from collections.abc import Callable

import httpx
import pytest

Handler = Callable[[httpx.Request], httpx.Response]


def respond(status_code: int = 200, **kwargs) -> Handler:
    """Handler factory returning a fresh response per request."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, **kwargs)

    return handler


class FakeServer:
    """URL-routed MockTransport handler that records every request.

    Unrouted URLs answer 404.
    """

    def __init__(self, routes: dict[str, Handler] | None = None):
        self.routes = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(str(request.url))
        if handler is None:
            return httpx.Response(404, json={"message": "Not Found"})
        return handler(request)

    def calls(self, url: str) -> int:
        return sum(1 for request in self.requests if str(request.url) == url)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def build_tar(files: dict[str, bytes | str], directories: tuple[str, ...] = ()) -> bytes:
    """Uncompressed ustar archive with the given files."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.USTAR_FORMAT) as tar:
        for name in directories:
            info = tarfile.TarInfo(name)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tar.addfile(info)
        for name, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def build_tarball(files: dict[str, bytes | str], directories: tuple[str, ...] = ()) -> bytes:
    """Gzipped tar archive, as served by a package registry."""
    return gzip.compress(build_tar(files, directories))


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def prompt_text():
    """Factory for template source with front matter."""

    def make(name: str, description: str = "", tags: str = "", body: str = "Hello") -> str:
        lines = ["---", f"name: {name}"]
        if description:
            lines.append(f"description: {description}")
        if tags:
            lines.append(f"tags: [{tags}]")
        lines.extend(["---", body])
        return "\n".join(lines) + "\n"

    return make
