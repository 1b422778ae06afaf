"""Tests for ModuleLoader deduplication, version conflicts and normalization."""

import asyncio
import json
import os

import pytest
from prompt_modules.errors import NotFoundError
from prompt_modules.errors import VersionConflictError
from prompt_modules.loader import ModuleLoader
from prompt_modules.models import ResolvedModuleEntry


class RecordingCodeLoader:
    """Code loader that finds nothing and records every target."""

    def __init__(self, gate: asyncio.Event | None = None):
        self.calls: list[str] = []
        self.gate = gate

    async def load_module(self, target, headers=None):
        self.calls.append(target)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        raise NotFoundError(f"No module at {target}")


def entry(name, type, source, **kwargs):
    return ResolvedModuleEntry(name=name, type=type, source=source, **kwargs)


@pytest.fixture
def local_lib(tmp_path):
    lib = tmp_path / "lib"
    lib.mkdir()
    (lib / "a.prompt").write_text("---\nname: a\n---\nA")
    return lib


@pytest.fixture
def npm_project(tmp_path, monkeypatch):
    package_dir = tmp_path / "node_modules" / "pkg"
    (package_dir / "prompts").mkdir(parents=True)
    (package_dir / "package.json").write_text(json.dumps({"name": "pkg"}))
    (package_dir / "prompts" / "p.prompt").write_text("P")
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestDeduplication:
    @pytest.mark.asyncio
    async def test_repeated_load_resolves_once(self, local_lib):
        code_loader = RecordingCodeLoader()
        loader = ModuleLoader(code_loader=code_loader)

        first = await loader.load_entry(entry("lib", "local", str(local_lib)))
        second = await loader.load_entry(entry("lib", "local", str(local_lib)))

        assert first is second
        assert len(code_loader.calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_resolution(self, local_lib):
        code_loader = RecordingCodeLoader()
        loader = ModuleLoader(code_loader=code_loader)

        results = await asyncio.gather(*(loader.load_entry(entry("lib", "local", str(local_lib))) for _ in range(10)))

        assert all(result is results[0] for result in results)
        assert len(code_loader.calls) == 1

    @pytest.mark.asyncio
    async def test_equivalent_relative_paths_share_key(self, local_lib, monkeypatch):
        monkeypatch.chdir(local_lib.parent)
        code_loader = RecordingCodeLoader()
        loader = ModuleLoader(code_loader=code_loader)

        first = await loader.load_entry(entry("lib", "local", "./lib"))
        second = await loader.load_entry(entry("lib", "local", "lib"))
        third = await loader.load_entry(entry("lib", "local", str(local_lib.resolve())))

        assert first is second is third
        assert len(code_loader.calls) == 1

    @pytest.mark.asyncio
    async def test_npm_names_are_case_insensitive(self, npm_project):
        code_loader = RecordingCodeLoader()
        loader = ModuleLoader(code_loader=code_loader)

        first = await loader.load_entry(entry("pkg", "npm", "pkg"))
        second = await loader.load_entry(entry("pkg", "npm", "PKG"))

        assert first is second
        assert len(code_loader.calls) == 1

    @pytest.mark.asyncio
    async def test_name_override_applies_to_first_resolution(self, local_lib):
        loader = ModuleLoader(code_loader=RecordingCodeLoader())
        library = await loader.load_entry(entry("renamed", "local", str(local_lib)))
        assert library.name == "renamed"

    @pytest.mark.asyncio
    async def test_failure_releases_in_flight_slot(self, tmp_path):
        lib = tmp_path / "late"
        lib.mkdir()
        code_loader = RecordingCodeLoader()
        loader = ModuleLoader(code_loader=code_loader)

        with pytest.raises(NotFoundError):
            await loader.load_entry(entry("late", "local", str(lib)))

        (lib / "a.prompt").write_text("A")
        library = await loader.load_entry(entry("late", "local", str(lib)))
        assert list(library.prompts) == ["a"]
        assert len(code_loader.calls) == 2

    @pytest.mark.asyncio
    async def test_concurrent_failure_reaches_every_caller(self, tmp_path):
        lib = tmp_path / "empty"
        lib.mkdir()
        code_loader = RecordingCodeLoader()
        loader = ModuleLoader(code_loader=code_loader)

        results = await asyncio.gather(
            *(loader.load_entry(entry("e", "local", str(lib))) for _ in range(3)),
            return_exceptions=True,
        )

        assert all(isinstance(result, NotFoundError) for result in results)
        assert len(code_loader.calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_resolution(self, local_lib):
        gate = asyncio.Event()
        code_loader = RecordingCodeLoader(gate=gate)
        loader = ModuleLoader(code_loader=code_loader)

        first = asyncio.create_task(loader.load_entry(entry("lib", "local", str(local_lib))))
        second = asyncio.create_task(loader.load_entry(entry("lib", "local", str(local_lib))))
        await asyncio.sleep(0)

        first.cancel()
        gate.set()

        library = await second
        assert list(library.prompts) == ["a"]
        assert first.cancelled()
        assert len(code_loader.calls) == 1

    @pytest.mark.asyncio
    async def test_clear_forces_new_resolution(self, local_lib):
        code_loader = RecordingCodeLoader()
        loader = ModuleLoader(code_loader=code_loader)

        first = await loader.load_entry(entry("lib", "local", str(local_lib)))
        loader.clear()
        second = await loader.load_entry(entry("lib", "local", str(local_lib)))

        assert first is not second
        assert len(code_loader.calls) == 2


class TestVersionConflicts:
    @pytest.mark.asyncio
    async def test_different_version_conflicts_before_resolution(self, npm_project):
        code_loader = RecordingCodeLoader()
        loader = ModuleLoader(code_loader=code_loader)
        await loader.load_entry(entry("pkg", "npm", "pkg@1.0.0", version="1.0.0"))

        with pytest.raises(VersionConflictError) as exc_info:
            await loader.load_entry(entry("pkg", "npm", "pkg@2.0.0", version="2.0.0"))

        error = exc_info.value
        assert (error.name, error.requested, error.loaded) == ("pkg", "2.0.0", "1.0.0")
        assert "2.0.0" in str(error) and "1.0.0" in str(error)
        assert len(code_loader.calls) == 1

    @pytest.mark.asyncio
    async def test_same_version_is_not_a_conflict(self, npm_project):
        loader = ModuleLoader(code_loader=RecordingCodeLoader())
        first = await loader.load_entry(entry("pkg", "npm", "pkg@1.0.0", version="1.0.0"))
        second = await loader.load_entry(entry("pkg", "npm", "pkg@1.0.0", version="1.0.0"))
        assert first is second

    @pytest.mark.asyncio
    async def test_missing_version_is_not_a_conflict(self, npm_project):
        loader = ModuleLoader(code_loader=RecordingCodeLoader())
        await loader.load_entry(entry("pkg", "npm", "pkg@1.0.0", version="1.0.0"))
        library = await loader.load_entry(entry("pkg", "npm", "pkg"))
        assert list(library.prompts) == ["p"]

    @pytest.mark.asyncio
    async def test_unversioned_then_versioned_is_not_a_conflict(self, npm_project):
        loader = ModuleLoader(code_loader=RecordingCodeLoader())
        await loader.load_entry(entry("pkg", "npm", "pkg"))
        await loader.load_entry(entry("pkg", "npm", "pkg@2.0.0", version="2.0.0"))

    @pytest.mark.asyncio
    async def test_clear_forgets_versions(self, npm_project):
        loader = ModuleLoader(code_loader=RecordingCodeLoader())
        await loader.load_entry(entry("pkg", "npm", "pkg@1.0.0", version="1.0.0"))
        loader.clear()
        await loader.load_entry(entry("pkg", "npm", "pkg@2.0.0", version="2.0.0"))

    @pytest.mark.asyncio
    async def test_clear_during_load_discards_its_result(self, npm_project):
        gate = asyncio.Event()
        code_loader = RecordingCodeLoader(gate=gate)
        loader = ModuleLoader(code_loader=code_loader)

        pending = asyncio.create_task(loader.load_entry(entry("pkg", "npm", "pkg@1.0.0", version="1.0.0")))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        loader.clear()
        gate.set()

        library = await pending
        assert list(library.prompts) == ["p"]

        upgraded = await loader.load_entry(entry("pkg", "npm", "pkg@2.0.0", version="2.0.0"))
        assert upgraded is not library
        again = await loader.load_entry(entry("pkg", "npm", "pkg@1.0.0"))
        assert again is not library
        assert len(code_loader.calls) == 3

    @pytest.mark.asyncio
    async def test_failed_load_does_not_record_version(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        loader = ModuleLoader(code_loader=RecordingCodeLoader())

        with pytest.raises(NotFoundError):
            await loader.load_entry(entry("ghost-pkg-xyz", "npm", "ghost-pkg-xyz@1.0.0", version="1.0.0"))

        with pytest.raises(NotFoundError):
            await loader.load_entry(entry("ghost-pkg-xyz", "npm", "ghost-pkg-xyz@2.0.0", version="2.0.0"))


class TestNormalizeSource:
    @pytest.mark.parametrize(
        "source,type",
        [
            ("./lib", "local"),
            ("../shared/./lib", "local"),
            ("lib", "local"),
            ("/abs/lib", "local"),
            ("@Scope/Pkg@1.0.0", "npm"),
            ("Pkg", "npm"),
            ("https://example.com/x.py", "url"),
            ("acme/prompts#main", "git"),
        ],
    )
    def test_idempotent(self, source, type):
        loader = ModuleLoader()
        once = loader.normalize_source(source, type)
        assert loader.normalize_source(once, type) == once

    def test_relative_local_paths(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        loader = ModuleLoader()
        expected = os.path.normpath(os.path.join(os.getcwd(), "lib"))

        assert loader.normalize_source("./lib", "local") == expected
        assert loader.normalize_source("lib", "local") == expected
        assert loader.normalize_source("sub/../lib", "local") == expected

    def test_absolute_local_path_unchanged(self):
        assert ModuleLoader().normalize_source("/abs/lib", "local") == "/abs/lib"

    def test_home_relative_path_matches_expanded_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        loader = ModuleLoader()
        assert loader.normalize_source("~/lib", "local") == str(tmp_path / "lib")

    @pytest.mark.asyncio
    async def test_home_relative_and_absolute_share_key(self, local_lib, monkeypatch):
        monkeypatch.setenv("HOME", str(local_lib.parent))
        code_loader = RecordingCodeLoader()
        loader = ModuleLoader(code_loader=code_loader)

        first = await loader.load_entry(entry("lib", "local", "~/lib"))
        second = await loader.load_entry(entry("lib", "local", str(local_lib)))

        assert first is second
        assert len(code_loader.calls) == 1

    def test_npm_lowercases_name_and_keeps_version(self):
        loader = ModuleLoader()
        assert loader.normalize_source("@Scope/Pkg@1.0.0-Beta", "npm") == "@scope/pkg@1.0.0-Beta"
        assert loader.normalize_source("Pkg", "npm") == "pkg"

    def test_url_and_git_pass_through(self):
        loader = ModuleLoader()
        assert loader.normalize_source("https://Example.com/X.py", "url") == "https://Example.com/X.py"
        assert loader.normalize_source("Acme/Prompts", "git") == "Acme/Prompts"

    def test_parse_package_source(self):
        parsed = ModuleLoader().parse_package_source("@scope/pkg@2.1.0")
        assert (parsed.name, parsed.version) == ("@scope/pkg", "2.1.0")
