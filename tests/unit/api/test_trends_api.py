"""Unit tests for trends API endpoints."""

import pytest
from httpx import AsyncClient

from trendsync.core.exceptions import NotAuthenticatedError
from trendsync.schemas.trends import SyncStatus


def _payload(*records):
    return [record.model_dump(mode="json", by_alias=True) for record in records]


class TestTrendsAPI:
    """Test cases for trends API endpoints."""

    @pytest.mark.unit
    async def test_get_trends_with_freshness(
        self, async_client: AsyncClient, cache_store, make_record
    ):
        await cache_store.upsert(
            [
                make_record(keyword="ai agents", values=[0.0] * 23 + [100.0] * 7),
                make_record(keyword="vector db", values=[50.0] * 30),
            ]
        )

        response = await async_client.get("/api/v1/trends/")

        assert response.status_code == 200
        data = {item["targetKeyword"]: item for item in response.json()}
        assert data["ai agents"]["freshnessScore"] == 100
        assert data["vector db"]["freshnessScore"] == 10
        assert "syncState" not in data["ai agents"]

    @pytest.mark.unit
    async def test_get_trends_with_filters(
        self, async_client: AsyncClient, cache_store, make_record
    ):
        await cache_store.upsert(
            [
                make_record(keyword="ai agents", reviewed=True),
                make_record(keyword="ai search"),
                make_record(keyword="vector db"),
            ]
        )

        response = await async_client.get(
            "/api/v1/trends/", params={"reviewed": "false", "search": "AI"}
        )

        assert response.status_code == 200
        assert [item["targetKeyword"] for item in response.json()] == ["ai search"]

    @pytest.mark.unit
    async def test_get_trends_rejects_bad_pagination(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/trends/", params={"limit": 0})

        assert response.status_code == 422

    @pytest.mark.unit
    async def test_upload_trends(
        self, async_client: AsyncClient, remote_store, make_record
    ):
        response = await async_client.post(
            "/api/v1/trends/",
            json=_payload(
                make_record(keyword="llm"),
                make_record(keyword="silent", values=[0.0] * 7),
            ),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["accepted"] == 1
        assert data["rejected"] == ["silent"]
        assert data["sync"]["pushed"] == 1
        assert remote_store.keywords(False) == {"llm"}

    @pytest.mark.unit
    async def test_upload_stores_valid_records_of_mixed_batch(
        self, async_client: AsyncClient, cache_store, remote_store, make_record
    ):
        payload = _payload(
            make_record(keyword="llm"),
            make_record(keyword="silent", values=[0.0] * 7),
        )
        payload += [
            {"targetKeyword": "broken", "comparisonData": []},
            {"comparisonData": "not a list"},
        ]

        response = await async_client.post("/api/v1/trends/", json=payload)

        assert response.status_code == 200
        data = response.json()
        assert data["accepted"] == 1
        assert data["rejected"] == ["broken", "#3", "silent"]
        assert data["sync"]["pushed"] == 1
        assert remote_store.keywords(False) == {"llm"}
        assert set(await cache_store.get_many(["llm", "broken"])) == {"llm"}

    @pytest.mark.unit
    async def test_upload_requires_a_list(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/trends/", json={"targetKeyword": "llm"}
        )

        assert response.status_code == 422

    @pytest.mark.unit
    async def test_upload_keeps_record_pending_when_not_authenticated(
        self, async_client: AsyncClient, cache_store, remote_store, make_record
    ):
        remote_store.fail("upsert_many", exc_type=NotAuthenticatedError)

        response = await async_client.post(
            "/api/v1/trends/", json=_payload(make_record(keyword="llm"))
        )

        assert response.status_code == 401
        cached = (await cache_store.get_many(["llm"]))["llm"]
        assert cached.sync_state.status is SyncStatus.PENDING

    @pytest.mark.unit
    async def test_review_trends(
        self,
        async_client: AsyncClient,
        sync_manager,
        cache_store,
        remote_store,
        make_record,
    ):
        record = make_record(keyword="llm")
        await cache_store.upsert([record])
        await sync_manager.sync()

        response = await async_client.post(
            "/api/v1/trends/review", json={"ids": [record.id], "reviewed": True}
        )

        assert response.status_code == 200
        assert response.json()["pushed"] == 1
        assert remote_store.keywords(True) == {"llm"}

    @pytest.mark.unit
    async def test_review_requires_ids(self, async_client: AsyncClient):
        response = await async_client.post(
            "/api/v1/trends/review", json={"ids": [], "reviewed": True}
        )

        assert response.status_code == 422

    @pytest.mark.unit
    async def test_review_retryable_error_when_remote_down(
        self,
        async_client: AsyncClient,
        sync_manager,
        cache_store,
        remote_store,
        make_record,
    ):
        record = make_record(keyword="llm")
        await cache_store.upsert([record])
        await sync_manager.sync()
        remote_store.fail("upsert_many", times=3)

        response = await async_client.post(
            "/api/v1/trends/review", json={"ids": [record.id], "reviewed": True}
        )

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["retryable"] is True
        assert detail["persisted"] == 0
        assert detail["failed"] == 1

    @pytest.mark.unit
    async def test_partitioned_trends(
        self, async_client: AsyncClient, remote_store, make_record
    ):
        remote_store.seed(make_record(keyword="a"), make_record(keyword="b"))
        remote_store.seed(make_record(keyword="a", reviewed=True))

        response = await async_client.get(
            "/api/v1/trends/partitioned", params={"include_reviewed": "true"}
        )

        assert response.status_code == 200
        keywords = [item["targetKeyword"] for item in response.json()]
        assert sorted(keywords) == ["a", "b"]

    @pytest.mark.unit
    async def test_purge_requires_confirmation(
        self, async_client: AsyncClient, remote_store, make_record
    ):
        remote_store.seed(make_record(keyword="a", reviewed=True))

        response = await async_client.delete("/api/v1/trends/reviewed")

        assert response.status_code == 400
        assert remote_store.keywords(True) == {"a"}

    @pytest.mark.unit
    async def test_purge_reviewed(
        self, async_client: AsyncClient, remote_store, make_record
    ):
        remote_store.seed(make_record(keyword="a"), make_record(keyword="b"))
        remote_store.seed(make_record(keyword="a", reviewed=True))

        response = await async_client.delete(
            "/api/v1/trends/reviewed", params={"confirm": "true"}
        )

        assert response.status_code == 200
        assert response.json() == {"removed_reviewed": 1, "repaired_violations": ["a"]}
        assert remote_store.keywords(True) == set()
        assert remote_store.keywords(False) == {"b"}
