"""Tests for catalog editing and report moderation."""

from __future__ import annotations

import json

import pytest

from fake_backend import FakeSupabase, storefront_harness
from storefront.errors import AdminRequiredError, BackendError
from storefront.models import GameDraft, UserView

ADMIN = UserView(id="admin-1", display_name="admin", email="admin@site.com", is_admin=True)
PLAYER = UserView(id="user-2", display_name="nova", email="nova@example.com")


def _report(report_id: str, game_id: str, status: str, created_at: str) -> dict:
    return {
        "id": report_id,
        "game_id": game_id,
        "user_id": "user-2",
        "status": status,
        "created_at": created_at,
    }


@pytest.mark.anyio("asyncio")
async def test_non_admins_are_rejected(tmp_path) -> None:
    fake = FakeSupabase()

    async with storefront_harness(tmp_path, fake) as harness:
        admin = harness.controller.admin
        with pytest.raises(AdminRequiredError):
            await admin.save_game(GameDraft(title="Nope"))

        harness.store.set_user(PLAYER)
        with pytest.raises(AdminRequiredError):
            await admin.list_reports()
        with pytest.raises(AdminRequiredError):
            await admin.delete_game("g1")

    assert fake.requests == []


@pytest.mark.anyio("asyncio")
async def test_new_game_gets_default_rating_and_catalog_refetch(tmp_path) -> None:
    fake = FakeSupabase()

    async with storefront_harness(tmp_path, fake) as harness:
        harness.store.set_user(ADMIN)
        draft = GameDraft(
            title="Nebula",
            description="Space racing",
            downloadUrl="https://dl.example/nebula",
            platform="PS5",
        )

        await harness.controller.admin.save_game(draft)

        assert [game.title for game in harness.store.games] == ["Nebula"]
        assert harness.store.notices[-1].message == "Nebula added."

    inserted = json.loads(fake.calls("POST", "games")[0].content)[0]
    assert inserted["rating"] == 4.5
    assert inserted["category"] == "Action"
    assert inserted["platform"] == "PS5"
    assert len(fake.calls("GET", "games")) == 1


@pytest.mark.anyio("asyncio")
async def test_existing_game_is_updated_in_place(tmp_path) -> None:
    fake = FakeSupabase()
    fake.add_game("Astro Run", downloads=7, id="g-astro")

    async with storefront_harness(tmp_path, fake) as harness:
        harness.store.set_user(ADMIN)
        await harness.controller.admin.save_game(
            GameDraft(id="g-astro", title="Astro Run DX", category="Arcade")
        )

        game = harness.store.find_game("g-astro")
        assert game is not None
        assert game.title == "Astro Run DX"
        assert game.category == "Arcade"
        assert game.download_count == 7

    assert fake.calls("POST", "games") == []
    patch = fake.calls("PATCH", "games")[0]
    assert patch.url.params["id"] == "eq.g-astro"


@pytest.mark.anyio("asyncio")
async def test_failed_save_pushes_notice_and_raises(tmp_path) -> None:
    fake = FakeSupabase()
    fake.fail("POST", "games", status=403, body={"code": "42501", "message": "permission denied"})

    async with storefront_harness(tmp_path, fake) as harness:
        harness.store.set_user(ADMIN)
        with pytest.raises(BackendError):
            await harness.controller.admin.save_game(GameDraft(title="Nebula"))

        assert harness.store.notices[-1].level == "error"

    assert fake.calls("GET", "games") == []


@pytest.mark.anyio("asyncio")
async def test_delete_game_refetches_catalog(tmp_path) -> None:
    fake = FakeSupabase()
    fake.add_game("Astro Run", id="g-astro")
    fake.add_game("Deep Dive", id="g-deep")

    async with storefront_harness(tmp_path, fake) as harness:
        harness.store.set_user(ADMIN)
        await harness.controller.catalog.fetch_catalog()

        await harness.controller.admin.delete_game("g-astro")

        assert [game.id for game in harness.store.games] == ["g-deep"]


@pytest.mark.anyio("asyncio")
async def test_reports_are_listed_newest_first_with_titles(tmp_path) -> None:
    fake = FakeSupabase()
    fake.add_game("Astro Run", id="g-astro")
    fake.tables["reports"].extend(
        [
            _report("r1", "g-astro", "pending", "2024-01-01T00:00:00Z"),
            _report("r2", "g-gone", "pending", "2024-02-01T00:00:00Z"),
            _report("r3", "g-astro", "resolved", "2024-03-01T00:00:00Z"),
        ]
    )

    async with storefront_harness(tmp_path, fake) as harness:
        harness.store.set_user(ADMIN)
        await harness.controller.catalog.fetch_catalog()

        reports = await harness.controller.admin.list_reports()

        assert [report.id for report in reports] == ["r2", "r1"]
        assert reports[0].game_title is None
        assert reports[1].game_title == "Astro Run"

        resolved = await harness.controller.admin.list_reports("resolved")
        assert [report.id for report in resolved] == ["r3"]


@pytest.mark.anyio("asyncio")
async def test_resolving_report_updates_pending_count(tmp_path) -> None:
    fake = FakeSupabase()
    fake.tables["reports"].extend(
        [
            _report("r1", "g-astro", "pending", "2024-01-01T00:00:00Z"),
            _report("r2", "g-astro", "pending", "2024-02-01T00:00:00Z"),
        ]
    )

    async with storefront_harness(tmp_path, fake) as harness:
        harness.store.set_user(ADMIN)
        assert await harness.controller.admin.refresh_report_count() == 2

        await harness.controller.admin.resolve_report("r1")

        assert harness.store.report_count == 1

    assert fake.tables["reports"][0]["status"] == "resolved"
