"""Tests for StorageService against an in-memory aiosqlite database."""

import pytest

from shotforge.services.storage import StorageService


def _asset(asset_id: str, project_id: str = "proj_1", **extra) -> dict:
    return {"id": asset_id, "project_id": project_id, "url": f"https://cdn.test/{asset_id}.png", **extra}


class TestPutAndGet:
    @pytest.mark.asyncio
    async def test_put_then_get(self, storage: StorageService):
        """[P0] A stored object is returned by id with its full payload."""
        # GIVEN
        asset = _asset("img_1", label="S01")

        # WHEN
        await storage.put("assets", asset)

        # THEN
        assert await storage.get("assets", "img_1") == asset
        assert await storage.get("assets", "img_missing") is None

    @pytest.mark.asyncio
    async def test_put_replaces_existing_id(self, storage):
        """[P1] put() is an upsert; the collection still holds one object."""
        await storage.put("assets", _asset("img_1", label="old"))
        await storage.put("assets", _asset("img_1", project_id="proj_2", label="new"))

        assert (await storage.get("assets", "img_1"))["label"] == "new"
        assert await storage.count("assets") == 1
        assert await storage.get_items_for_project("assets", "proj_1") == []
        assert len(await storage.get_items_for_project("assets", "proj_2")) == 1

    @pytest.mark.asyncio
    async def test_collections_are_isolated(self, storage):
        await storage.put("assets", _asset("shared_id"))
        await storage.put("session_snapshots", {"id": "shared_id", "version": "1.0.0"})

        assert (await storage.get("assets", "shared_id"))["url"].endswith("shared_id.png")
        assert await storage.get("session_snapshots", "shared_id") == {"id": "shared_id", "version": "1.0.0"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("item", [{"url": "u"}, {"id": "", "url": "u"}, {"id": None}])
    async def test_object_without_id_is_rejected(self, storage, item):
        with pytest.raises(ValueError, match="without an 'id'"):
            await storage.put("assets", item)

        assert await storage.count("assets") == 0


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_all_returns_insertion_order(self, storage):
        count = await storage.put_many("assets", [_asset("img_b"), _asset("img_a"), _asset("img_c")])

        assert count == 3
        assert [item["id"] for item in await storage.get_all("assets")] == ["img_b", "img_a", "img_c"]

    @pytest.mark.asyncio
    async def test_get_items_for_project_filters(self, storage):
        """[P1] Only objects of the requested project are returned."""
        await storage.put_many(
            "assets",
            [_asset("img_1"), _asset("img_2", project_id="proj_2"), _asset("img_3"), {"id": "orphan"}],
        )

        items = await storage.get_items_for_project("assets", "proj_1")

        assert [item["id"] for item in items] == ["img_1", "img_3"]

    @pytest.mark.asyncio
    async def test_empty_collection(self, storage):
        assert await storage.get_all("assets") == []
        assert await storage.count("assets") == 0


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_reports_whether_anything_was_removed(self, storage):
        await storage.put("assets", _asset("img_1"))

        assert await storage.delete("assets", "img_1") is True
        assert await storage.delete("assets", "img_1") is False
        assert await storage.get("assets", "img_1") is None

    @pytest.mark.asyncio
    async def test_clear_only_touches_one_collection(self, storage):
        """[P1] clear() empties its collection and returns how many objects went."""
        await storage.put_many("assets", [_asset("img_1"), _asset("img_2")])
        await storage.put("session_snapshots", {"id": "snapshot_1"})

        removed = await storage.clear("assets")

        assert removed == 2
        assert await storage.count("assets") == 0
        assert await storage.count("session_snapshots") == 1
