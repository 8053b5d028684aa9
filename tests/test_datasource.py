"""Tests for the grants and users endpoint wrappers."""

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from grantclient.datasource.grants import GrantsApi
from grantclient.datasource.types import InteractionAction, SearchPage
from grantclient.datasource.users import UsersApi


def grants_service(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/api/csrf-token":
        return httpx.Response(200, json={"token": "csrf-1", "expiresInSeconds": 3600})
    if path == "/api/grants":
        return httpx.Response(
            200, json={"grants": [{"id": "g1", "title": "One", "unknown": 1}], "count": 1}
        )
    if path in ("/api/grants/g1", "/api/grants/g2"):
        grant_id = path.rsplit("/", 1)[1]
        return httpx.Response(200, json={"grant": {"id": grant_id, "title": "One"}})
    if path == "/api/grants/metadata":
        return httpx.Response(500, json={"message": "down"})
    if path == "/api/grants/recommended":
        return httpx.Response(200, json={"grants": [{"id": "g9"}]})
    if path == "/api/users/interactions":
        if request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "interactions": [
                        {
                            "user_id": "user-1",
                            "grant_id": "g1",
                            "action": "saved",
                            "timestamp": "2024-01-01T12:00:00Z",
                        },
                        {"grant_id": "broken"},
                    ]
                },
            )
        return httpx.Response(200, json={"ok": True})
    if path == "/api/users/interactions/delete":
        return httpx.Response(200, json={"ok": True})
    return httpx.Response(404, json={"message": "Not found"})


@pytest.fixture
def client(make_client):
    return make_client(grants_service)


class TestSearchPage:
    def test_items_and_total_count(self):
        page = SearchPage.from_payload({"items": [{"id": "a"}], "totalCount": 42})
        assert [g.id for g in page.items] == ["a"]
        assert page.total_count == 42

    @pytest.mark.parametrize("raw", [-3, "12", None, True])
    def test_invalid_total_count_is_zero(self, raw):
        assert SearchPage.from_payload({"items": [], "totalCount": raw}).total_count == 0

    def test_not_a_mapping(self):
        assert SearchPage.from_payload(None) == SearchPage()


class TestGrantsApi:
    @pytest.mark.asyncio
    async def test_search_decodes_legacy_payload(self, client):
        page = await GrantsApi(client).search({"page": 1, "limit": 6})

        assert page.total_count == 1
        assert page.items[0].title == "One"

    @pytest.mark.asyncio
    async def test_get_grant_unwraps_envelope(self, client):
        grant = await GrantsApi(client).get_grant("g1")
        assert grant.id == "g1"

    @pytest.mark.asyncio
    async def test_metadata_falls_back_when_unavailable(self, client):
        metadata = await GrantsApi(client).get_metadata()
        assert metadata.agencies == []
        assert metadata.data_sources == []

    @pytest.mark.asyncio
    async def test_recommended(self, client, session):
        grants = await GrantsApi(client).get_recommended(session, exclude=["g1", "g2"], limit=5)
        assert [g.id for g in grants] == ["g9"]


class TestUsersApi:
    @pytest.mark.asyncio
    async def test_record_interaction_body(self, make_client, session):
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return grants_service(request)

        users = UsersApi(make_client(handler))
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)

        await users.record_interaction(session, "g1", InteractionAction.SAVED, now=now)

        post = next(r for r in sent if r.method == "POST")
        assert json.loads(post.content) == {
            "user_id": "user-1",
            "grant_id": "g1",
            "action": "saved",
            "timestamp": "2024-01-01T00:00:00+00:00",
        }

    @pytest.mark.asyncio
    async def test_delete_interaction(self, make_client, session):
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return grants_service(request)

        users = UsersApi(make_client(handler))

        await users.delete_interaction(session, "g1", InteractionAction.IGNORED)

        delete = next(r for r in sent if r.method == "DELETE")
        assert delete.url.path == "/api/users/interactions/delete"
        assert json.loads(delete.content)["action"] == "ignored"

    @pytest.mark.asyncio
    async def test_get_interactions_skips_malformed_rows(self, client, session):
        rows = await UsersApi(client).get_interactions(session)

        assert len(rows) == 1
        assert rows[0].action == InteractionAction.SAVED

    @pytest.mark.asyncio
    async def test_invalidation_drops_stale_reads(self, client, session):
        grants = GrantsApi(client)
        users = UsersApi(client)
        await grants.search({"page": 1}, session=session)
        await grants.get_grant("g1", session=session)
        await grants.get_grant("g2", session=session)
        await users.get_interactions(session)

        removed = await users.invalidate_interaction_reads("g1")

        # search listing, grant g1 and the interaction list; g2 detail stays
        assert removed == 3
        assert client.cache.get_stats().size == 1

    @pytest.mark.asyncio
    async def test_writes_for_different_grants_do_not_cancel_each_other(self, make_client, session):
        gate = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                await gate.wait()
            return grants_service(request)

        users = UsersApi(make_client(handler))
        first = asyncio.create_task(users.record_interaction(session, "g1", InteractionAction.SAVED))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(users.record_interaction(session, "g2", InteractionAction.SAVED))
        await asyncio.sleep(0.01)
        gate.set()

        assert await asyncio.gather(first, second) == [{"ok": True}, {"ok": True}]
