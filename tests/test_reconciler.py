"""Tests for the background identity reconciliation."""

from __future__ import annotations

import asyncio
import json

import pytest

from fake_backend import FakeSupabase, storefront_harness
from storefront.models import AuthUser, UserView


async def _wait_for_request(fake: FakeSupabase, method: str, table: str) -> None:
    for _ in range(1000):
        if fake.calls(method, table):
            return
        await asyncio.sleep(0)
    raise AssertionError(f"{method} {table} was never requested")


@pytest.mark.anyio("asyncio")
async def test_concurrent_reconciles_fetch_once(tmp_path) -> None:
    fake = FakeSupabase()
    identity = AuthUser.model_validate(fake.add_account("nova@example.com"))
    fake.tables["profiles"].append({"id": identity.id, "username": "Nova", "is_admin": False})

    async with storefront_harness(tmp_path, fake) as harness:
        reconciler = harness.controller.reconciler
        await asyncio.gather(reconciler.reconcile(identity), reconciler.reconcile(identity))

        assert harness.store.reconciled is True
        await reconciler.reconcile(identity)

    assert len(fake.calls("GET", "profiles")) == 1
    assert len(fake.calls("GET", "user_library")) == 1


@pytest.mark.anyio("asyncio")
async def test_profile_and_library_are_merged(tmp_path) -> None:
    fake = FakeSupabase()
    identity = AuthUser.model_validate(
        fake.add_account("nova@example.com", username="novastar")
    )
    fake.tables["profiles"].append(
        {"id": identity.id, "username": "Commander Nova", "email": "nova@example.com", "is_admin": True}
    )
    fake.tables["user_library"].extend(
        [
            {"user_id": identity.id, "game_id": "g1"},
            {"user_id": identity.id, "game_id": "g2"},
            {"user_id": "someone-else", "game_id": "g3"},
        ]
    )
    fake.tables["reports"].extend(
        [{"id": "r1", "status": "pending"}, {"id": "r2", "status": "resolved"}]
    )

    async with storefront_harness(tmp_path, fake) as harness:
        await harness.controller.reconciler.reconcile(identity)
        store = harness.store

        assert store.user == UserView(
            id=identity.id, display_name="Commander Nova", email="nova@example.com", is_admin=True
        )
        assert store.library_ids == frozenset({"g1", "g2"})
        assert store.report_count == 1
        assert store.reconciled is True


@pytest.mark.anyio("asyncio")
async def test_profile_fields_left_empty_keep_optimistic_values(tmp_path) -> None:
    fake = FakeSupabase()
    identity = AuthUser.model_validate(fake.add_account("admin@site.com"))
    fake.tables["profiles"].append({"id": identity.id, "username": "", "is_admin": False})

    async with storefront_harness(tmp_path, fake) as harness:
        await harness.controller.reconciler.reconcile(identity)
        user = harness.store.user

    assert user is not None
    assert user.display_name == "admin"
    # The stored row is authoritative for the admin flag.
    assert user.is_admin is False
    assert fake.calls("HEAD", "reports") == []


@pytest.mark.anyio("asyncio")
async def test_missing_profile_is_created_once(tmp_path) -> None:
    fake = FakeSupabase()
    identity = AuthUser.model_validate(fake.add_account("nova@example.com", username="novastar"))

    async with storefront_harness(tmp_path, fake) as harness:
        await harness.controller.reconciler.reconcile(identity)
        await harness.controller.tasks.drain()

        assert harness.store.user is not None
        assert harness.store.user.display_name == "novastar"
        assert harness.store.reconciled is True

    inserts = fake.calls("POST", "profiles")
    assert len(inserts) == 1
    assert json.loads(inserts[0].content) == [
        {"id": identity.id, "username": "novastar", "email": "nova@example.com", "is_admin": False}
    ]


@pytest.mark.anyio("asyncio")
async def test_admin_without_profile_heals_and_counts_reports(tmp_path) -> None:
    fake = FakeSupabase()
    identity = AuthUser.model_validate(fake.add_account("admin@site.com"))
    fake.tables["reports"].extend(
        [{"id": "r1", "status": "pending"}, {"id": "r2", "status": "pending"}]
    )

    async with storefront_harness(tmp_path, fake) as harness:
        await harness.controller.reconciler.reconcile(identity)
        await harness.controller.tasks.drain()
        store = harness.store

        assert store.user is not None and store.user.is_admin is True
        assert store.report_count == 2

    created = fake.tables["profiles"]
    assert created == [
        {"id": identity.id, "username": "admin", "email": "admin@site.com", "is_admin": True}
    ]
    assert len(fake.calls("HEAD", "reports")) == 1


@pytest.mark.anyio("asyncio")
async def test_failed_profile_creation_is_swallowed(tmp_path) -> None:
    fake = FakeSupabase()
    identity = AuthUser.model_validate(fake.add_account("nova@example.com"))
    fake.fail("POST", "profiles", status=409, body={"code": "23505", "message": "duplicate key"})

    async with storefront_harness(tmp_path, fake) as harness:
        await harness.controller.reconciler.reconcile(identity)
        await harness.controller.tasks.drain()

        assert harness.store.user is not None
        assert harness.store.user.display_name == "nova"
        assert harness.store.notices == []


@pytest.mark.anyio("asyncio")
async def test_generic_profile_error_keeps_optimistic_view_and_guard_open(tmp_path) -> None:
    fake = FakeSupabase()
    identity = AuthUser.model_validate(fake.add_account("nova@example.com"))
    fake.tables["profiles"].append({"id": identity.id, "username": "Commander Nova", "is_admin": False})
    fake.tables["user_library"].append({"user_id": identity.id, "game_id": "g1"})
    fake.fail("GET", "profiles", status=500)

    async with storefront_harness(tmp_path, fake) as harness:
        reconciler = harness.controller.reconciler
        await reconciler.reconcile(identity)
        store = harness.store

        assert store.user == UserView(
            id=identity.id, display_name="nova", email="nova@example.com", is_admin=False
        )
        assert store.library_ids == frozenset()
        assert store.reconciled is False
        assert fake.calls("POST", "profiles") == []

        fake.heal("GET", "profiles")
        await reconciler.reconcile(identity)

        assert store.user is not None and store.user.display_name == "Commander Nova"
        assert store.library_ids == frozenset({"g1"})
        assert store.reconciled is True

    assert len(fake.calls("GET", "profiles")) == 2


@pytest.mark.anyio("asyncio")
async def test_failed_library_lookup_still_completes(tmp_path) -> None:
    fake = FakeSupabase()
    identity = AuthUser.model_validate(fake.add_account("nova@example.com"))
    fake.tables["profiles"].append({"id": identity.id, "username": "Nova", "is_admin": False})
    fake.fail("GET", "user_library", status=503)

    async with storefront_harness(tmp_path, fake) as harness:
        await harness.controller.reconciler.reconcile(identity)

        assert harness.store.user is not None and harness.store.user.display_name == "Nova"
        assert harness.store.library_ids == frozenset()
        assert harness.store.reconciled is True


@pytest.mark.anyio("asyncio")
async def test_sign_out_during_reconciliation_discards_results(tmp_path) -> None:
    fake = FakeSupabase()
    identity = AuthUser.model_validate(fake.add_account("nova@example.com"))
    fake.tables["profiles"].append({"id": identity.id, "username": "Nova", "is_admin": False})
    fake.tables["user_library"].append({"user_id": identity.id, "game_id": "g1"})
    release = fake.gate("GET", "profiles")

    async with storefront_harness(tmp_path, fake) as harness:
        task = asyncio.create_task(harness.controller.reconciler.reconcile(identity))
        await _wait_for_request(fake, "GET", "profiles")
        assert harness.store.user is not None

        harness.store.clear_identity()
        release.set()
        await task

        assert harness.store.user is None
        assert harness.store.library_ids == frozenset()
        assert harness.store.reconciled is False


@pytest.mark.anyio("asyncio")
async def test_admin_heuristic_can_be_disabled(tmp_path) -> None:
    fake = FakeSupabase()
    identity = AuthUser.model_validate(fake.add_account("admin@site.com"))
    fake.fail("GET", "profiles", status=500)

    async with storefront_harness(tmp_path, fake, ADMIN_EMAIL_HEURISTIC=False) as harness:
        await harness.controller.reconciler.reconcile(identity)

        assert harness.store.user is not None
        assert harness.store.user.is_admin is False


@pytest.mark.parametrize(
    ("method", "table", "profile"),
    [
        ("GET", "user_library", {"username": "Nova", "is_admin": False}),
        ("HEAD", "reports", {"username": "Nova", "is_admin": True}),
        ("POST", "profiles", None),
    ],
)
@pytest.mark.anyio("asyncio")
async def test_sign_out_at_any_suspension_point_leaves_store_empty(
    tmp_path, method, table, profile
) -> None:
    fake = FakeSupabase()
    identity = AuthUser.model_validate(fake.add_account("nova@example.com"))
    if profile is not None:
        fake.tables["profiles"].append({"id": identity.id, **profile})
    fake.tables["user_library"].append({"user_id": identity.id, "game_id": "g1"})
    fake.tables["reports"].append({"id": "r1", "status": "pending"})
    release = fake.gate(method, table)

    async with storefront_harness(tmp_path, fake) as harness:
        task = asyncio.create_task(harness.controller.reconciler.reconcile(identity))
        await _wait_for_request(fake, method, table)

        harness.store.clear_identity()
        release.set()
        await task
        await harness.controller.tasks.drain()
        store = harness.store

        assert store.user is None
        assert store.library_ids == frozenset()
        assert store.reconciled is False
        assert store.report_count == 0
