"""
Tests for editor leasing.
"""

import asyncio
import json

import pytest

from core.editor_registry import EditorRegistry
from core.error_handler import NoResourceAvailable, RegistryError, ResourceUnavailable
from core.models import Editor, EditorStatus
from tests.fakes import EDITOR_URLS, write_editors


class TestAdmission:

    @pytest.mark.asyncio
    async def test_admit_takes_first_available(self, registry, editors_file):
        editor = await registry.admit()

        assert editor.url == EDITOR_URLS[0]
        assert editor.status == EditorStatus.IN_USE
        stored = json.loads(editors_file.read_text())
        assert stored[0]["status"] == "in-use"
        assert stored[1]["status"] == "available"

    @pytest.mark.asyncio
    async def test_admit_skips_in_use(self, tmp_path):
        registry = EditorRegistry(write_editors(tmp_path / "editors.json", ["in-use", "available"]))

        editor = await registry.admit()

        assert editor.url == EDITOR_URLS[1]

    @pytest.mark.asyncio
    async def test_admit_with_none_available_raises(self, tmp_path):
        registry = EditorRegistry(write_editors(tmp_path / "editors.json", ["in-use", "in-use"]))

        with pytest.raises(NoResourceAvailable) as exc_info:
            await registry.admit()

        assert "All 2 editors are currently in-use" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_concurrent_admissions_lease_once(self, tmp_path):
        registry = EditorRegistry(write_editors(tmp_path / "editors.json", ["available", "in-use"]))

        results = await asyncio.gather(registry.admit(), registry.admit(), return_exceptions=True)

        admitted = [r for r in results if isinstance(r, Editor)]
        rejected = [r for r in results if isinstance(r, NoResourceAvailable)]
        assert len(admitted) == 1
        assert len(rejected) == 1

    @pytest.mark.asyncio
    async def test_missing_store_is_empty(self, tmp_path):
        registry = EditorRegistry(tmp_path / "nope.json")

        assert registry.list_available() == []
        with pytest.raises(NoResourceAvailable):
            await registry.admit()

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "editors.json"
        path.write_text("{not json")

        with pytest.raises(RegistryError):
            EditorRegistry(path).all()


class TestTransitions:

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, registry):
        editor = await registry.admit()

        await registry.release(editor)
        await registry.release(editor)

        assert registry.counts() == {"available": 2, "in_use": 0, "total": 2}

    @pytest.mark.asyncio
    async def test_release_unknown_is_noop(self, registry):
        await registry.release("https://example.com/unknown")

        assert registry.counts()["available"] == 2

    @pytest.mark.asyncio
    async def test_lease_in_use_raises(self, registry):
        await registry.lease(EDITOR_URLS[0])

        with pytest.raises(ResourceUnavailable):
            await registry.lease(EDITOR_URLS[0])

    @pytest.mark.asyncio
    async def test_recover_resets_in_use(self, tmp_path):
        registry = EditorRegistry(write_editors(tmp_path / "editors.json", ["in-use", "in-use"]))

        assert await registry.recover() == 2
        assert len(registry.list_available()) == 2

    @pytest.mark.asyncio
    async def test_register_appends_once(self, registry):
        await registry.register("https://www.capcut.com/editor/CCCC-3333")
        await registry.register("https://www.capcut.com/editor/CCCC-3333")

        assert registry.counts()["total"] == 3

    @pytest.mark.asyncio
    async def test_store_written_with_four_space_indent(self, registry, editors_file):
        await registry.admit()

        assert '\n    {' in editors_file.read_text()
