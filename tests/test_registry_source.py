"""Tests for RegistryPromptSource."""

import httpx
import pytest
from conftest import FakeServer
from conftest import build_tarball
from conftest import respond
from prompt_modules.content_cache import ContentCache
from prompt_modules.errors import MalformedSourceError
from prompt_modules.errors import NotFoundError
from prompt_modules.models import ParsedPackageSource
from prompt_modules.sources import RegistryPromptSource
from prompt_modules.sources.registry import encode_package_name
from prompt_modules.sources.registry import parse_package_source

REGISTRY = "https://registry.npmjs.org"
TARBALL_URL = f"{REGISTRY}/shared-prompts/-/shared-prompts-1.0.0.tgz"


@pytest.fixture
def tarball():
    return build_tarball(
        {
            "package/package.json": '{"name": "shared-prompts"}',
            "package/prompts/review.prompt": "---\nname: review\n---\nReview it",
            "package/prompts/notes.md": "ignored",
        }
    )


class TestParsePackageSource:
    @pytest.mark.parametrize(
        "source,expected",
        [
            ("@scope/pkg@2.1.0", ParsedPackageSource(name="@scope/pkg", version="2.1.0")),
            ("@scope/pkg", ParsedPackageSource(name="@scope/pkg")),
            ("pkg", ParsedPackageSource(name="pkg")),
            ("pkg@1.0.0", ParsedPackageSource(name="pkg", version="1.0.0")),
            ("pkg@", ParsedPackageSource(name="pkg")),
        ],
    )
    def test_parse(self, source, expected):
        assert parse_package_source(source) == expected

    def test_scoped_name_is_encoded(self):
        assert encode_package_name("@scope/pkg") == "@scope%2Fpkg"
        assert encode_package_name("pkg") == "pkg"


class TestRegistryPromptSource:
    @pytest.mark.asyncio
    async def test_specifier_resolves_metadata_then_downloads(self, tarball):
        server = FakeServer(
            {
                f"{REGISTRY}/shared-prompts/1.0.0": respond(200, json={"dist": {"tarball": TARBALL_URL}}),
                TARBALL_URL: respond(200, content=tarball),
            }
        )
        source = RegistryPromptSource("shared-prompts@1.0.0", client=server.client())

        files = await source.get_prompts()

        assert [f.filename for f in files] == ["review.prompt"]
        assert [str(r.url) for r in server.requests] == [f"{REGISTRY}/shared-prompts/1.0.0", TARBALL_URL]

    @pytest.mark.asyncio
    async def test_missing_version_uses_latest(self, tarball):
        server = FakeServer(
            {
                f"{REGISTRY}/shared-prompts/latest": respond(200, json={"dist": {"tarball": TARBALL_URL}}),
                TARBALL_URL: respond(200, content=tarball),
            }
        )
        files = await RegistryPromptSource("shared-prompts", client=server.client()).get_prompts()
        assert len(files) == 1

    @pytest.mark.asyncio
    async def test_scoped_package_path_is_encoded(self, tarball):
        requested = []

        def handler(request):
            requested.append(request.url.raw_path)
            if request.url.path.endswith(".tgz"):
                return httpx.Response(200, content=tarball)
            return httpx.Response(200, json={"dist": {"tarball": "https://example.com/acme.tgz"}})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        await RegistryPromptSource("@acme/prompts@2.0.0", client=client).get_prompts()
        assert requested[0] == b"/@acme%2Fprompts/2.0.0"

    @pytest.mark.asyncio
    async def test_custom_registry_url(self, tarball):
        registry = "https://npm.internal.example.com/"
        server = FakeServer(
            {
                "https://npm.internal.example.com/pkg/latest": respond(
                    200, json={"dist": {"tarball": "https://npm.internal.example.com/pkg.tgz"}}
                ),
                "https://npm.internal.example.com/pkg.tgz": respond(200, content=tarball),
            }
        )
        files = await RegistryPromptSource("pkg", registry_url=registry, client=server.client()).get_prompts()
        assert len(files) == 1

    @pytest.mark.asyncio
    async def test_direct_url_skips_metadata(self, tarball):
        server = FakeServer({TARBALL_URL: respond(200, content=tarball)})
        source = RegistryPromptSource.from_url(TARBALL_URL, client=server.client())

        files = await source.get_prompts()

        assert len(files) == 1
        assert len(server.requests) == 1

    @pytest.mark.asyncio
    async def test_metadata_without_tarball_raises(self):
        server = FakeServer({f"{REGISTRY}/pkg/latest": respond(200, json={"name": "pkg"})})
        with pytest.raises(NotFoundError, match="No tarball URL"):
            await RegistryPromptSource("pkg", client=server.client()).get_prompts()

    @pytest.mark.asyncio
    async def test_unknown_package_adds_context(self):
        with pytest.raises(NotFoundError, match='Fetch failed for "ghost@latest"'):
            await RegistryPromptSource("ghost", client=FakeServer().client()).get_prompts()

    @pytest.mark.asyncio
    async def test_missing_tarball_adds_context(self):
        with pytest.raises(NotFoundError, match="Fetch failed for tarball"):
            await RegistryPromptSource.from_url(TARBALL_URL, client=FakeServer().client()).get_prompts()

    @pytest.mark.asyncio
    async def test_corrupt_tarball_raises(self):
        server = FakeServer({TARBALL_URL: respond(200, content=b"not a tarball")})
        with pytest.raises(MalformedSourceError):
            await RegistryPromptSource.from_url(TARBALL_URL, client=server.client()).get_prompts()

    @pytest.mark.asyncio
    async def test_custom_extension(self):
        tarball = build_tarball({"package/prompts/a.tmpl": "A", "package/prompts/b.prompt": "B"})
        server = FakeServer({TARBALL_URL: respond(200, content=tarball)})
        source = RegistryPromptSource.from_url(TARBALL_URL, extension=".tmpl", client=server.client())
        assert [f.filename for f in await source.get_prompts()] == ["a.tmpl"]

    @pytest.mark.asyncio
    async def test_downloads_go_through_cache(self, tarball):
        server = FakeServer({TARBALL_URL: respond(200, content=tarball)})
        cache = ContentCache(client=server.client())

        await RegistryPromptSource.from_url(TARBALL_URL, cache=cache).get_prompts()
        await RegistryPromptSource.from_url(TARBALL_URL, cache=cache).get_prompts()

        assert server.calls(TARBALL_URL) == 1
