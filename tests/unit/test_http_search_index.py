"""
Unit tests for the HTTP search index client and index document builders.

The REST endpoint is replaced with an ``httpx.MockTransport`` handler.
"""

from __future__ import annotations

import json

import httpx
import pytest

from novelsync.documents.models import Chapter, ChapterPointer, Novel
from novelsync.exceptions import SearchIndexError, StoreConnectionError
from novelsync.search.http import (
    INDEX_MAPPINGS,
    HttpSearchIndex,
    build_bulk_body,
    create_search_client,
)
from novelsync.search.interface import NOVEL_INDEX, IndexDocument, SearchIndex
from novelsync.search.serializers import chapter_document, novel_document, popularity_score


class Cluster:
    """Records requests and answers them from a route table."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"error": "no route"})
        return response


def make_index(cluster: Cluster) -> HttpSearchIndex:
    client = httpx.AsyncClient(
        base_url="http://search.local:9200", transport=httpx.MockTransport(cluster)
    )
    return HttpSearchIndex(client, enable_tracing=False)


DOCUMENTS = [
    IndexDocument(id="1", body={"title": "Star Road"}),
    IndexDocument(id="2", body={"title": "Old Kingdom"}),
]


class TestBuildBulkBody:
    def test_action_and_source_lines(self):
        body = build_bulk_body("novels", DOCUMENTS)
        lines = body.split("\n")

        assert body.endswith("\n")
        assert json.loads(lines[0]) == {"index": {"_index": "novels", "_id": "1"}}
        assert json.loads(lines[1]) == {"title": "Star Road"}
        assert json.loads(lines[2]) == {"index": {"_index": "novels", "_id": "2"}}

    def test_non_ascii_kept(self):
        body = build_bulk_body("novels", [IndexDocument(id="1", body={"title": "星之路"})])
        assert "星之路" in body


class TestHttpSearchIndex:
    """Tests for the REST client."""

    def test_implements_protocol(self):
        assert isinstance(make_index(Cluster({})), SearchIndex)

    @pytest.mark.asyncio
    async def test_ping(self):
        index = make_index(Cluster({("GET", "/"): httpx.Response(200, json={})}))
        await index.ping()

    @pytest.mark.asyncio
    async def test_ping_failure_is_connection_error(self):
        index = make_index(Cluster({("GET", "/"): httpx.Response(503)}))

        with pytest.raises(StoreConnectionError) as exc_info:
            await index.ping()

        assert exc_info.value.store == "search"

    @pytest.mark.asyncio
    async def test_ensure_index_existing(self):
        cluster = Cluster({("HEAD", "/novels"): httpx.Response(200)})

        await make_index(cluster).ensure_index(NOVEL_INDEX)

        assert [r.method for r in cluster.requests] == ["HEAD"]

    @pytest.mark.asyncio
    async def test_ensure_index_creates_with_mappings(self):
        cluster = Cluster({("PUT", "/novels"): httpx.Response(200, json={"acknowledged": True})})

        await make_index(cluster).ensure_index(NOVEL_INDEX)

        put = cluster.requests[-1]
        assert put.method == "PUT"
        assert json.loads(put.content) == {"mappings": INDEX_MAPPINGS[NOVEL_INDEX]}

    @pytest.mark.asyncio
    async def test_ensure_index_tolerates_concurrent_creation(self):
        cluster = Cluster(
            {
                ("PUT", "/novels"): httpx.Response(
                    400, json={"error": {"type": "resource_already_exists_exception"}}
                )
            }
        )

        await make_index(cluster).ensure_index(NOVEL_INDEX)

    @pytest.mark.asyncio
    async def test_count(self):
        cluster = Cluster({("GET", "/novels/_count"): httpx.Response(200, json={"count": 12})})

        assert await make_index(cluster).count(NOVEL_INDEX) == 12

    @pytest.mark.asyncio
    async def test_count_of_missing_index_is_zero(self):
        assert await make_index(Cluster({})).count(NOVEL_INDEX) == 0

    @pytest.mark.asyncio
    async def test_count_error(self):
        cluster = Cluster({("GET", "/novels/_count"): httpx.Response(500)})

        with pytest.raises(SearchIndexError):
            await make_index(cluster).count(NOVEL_INDEX)

    @pytest.mark.asyncio
    async def test_upsert_posts_ndjson(self):
        cluster = Cluster(
            {("POST", "/_bulk"): httpx.Response(200, json={"errors": False, "items": []})}
        )

        written = await make_index(cluster).upsert(NOVEL_INDEX, DOCUMENTS)

        request = cluster.requests[-1]
        assert written == 2
        assert request.headers["content-type"] == "application/x-ndjson"
        assert request.content.decode("utf-8") == build_bulk_body(NOVEL_INDEX, DOCUMENTS)

    @pytest.mark.asyncio
    async def test_upsert_nothing_sends_nothing(self):
        cluster = Cluster({})

        assert await make_index(cluster).upsert(NOVEL_INDEX, []) == 0
        assert cluster.requests == []

    @pytest.mark.asyncio
    async def test_bulk_item_errors_fail_the_batch(self):
        cluster = Cluster(
            {
                ("POST", "/_bulk"): httpx.Response(
                    200,
                    json={
                        "errors": True,
                        "items": [
                            {"index": {"_id": "1", "status": 201}},
                            {"index": {"_id": "2", "status": 400, "error": "mapper_parsing"}},
                        ],
                    },
                )
            }
        )

        with pytest.raises(SearchIndexError) as exc_info:
            await make_index(cluster).upsert(NOVEL_INDEX, DOCUMENTS)

        assert exc_info.value.failures == ["2: mapper_parsing"]
        assert "1 of 2 documents rejected" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_http_error_fails_the_batch(self):
        cluster = Cluster({("POST", "/_bulk"): httpx.Response(429)})

        with pytest.raises(SearchIndexError):
            await make_index(cluster).upsert(NOVEL_INDEX, DOCUMENTS)


class TestCreateSearchClient:
    @pytest.mark.asyncio
    async def test_uses_first_node(self):
        client = create_search_client("http://es1:9200, http://es2:9200", username="elastic")

        assert str(client.base_url) == "http://es1:9200"
        assert client.auth is not None
        await client.aclose()


class TestSerializers:
    """Tests for index document builders."""

    def test_novel_document(self):
        novel = Novel(
            novel_id=42,
            title="Star Road",
            slug="star-road",
            upvote_count=40,
            favorites_count=10,
            views=100,
            genre_ids=[3, 5],
            first_chapter=ChapterPointer(uuid="c1", title="Chapter 1", sequence=1),
        )

        document = novel_document(novel)

        assert document.id == "42"
        assert document.body["genreIds"] == [3, 5]
        assert document.body["firstChapterUuid"] == "c1"
        assert document.body["latestChapterUuid"] is None
        assert document.body["latestChapterSequence"] == 0
        assert document.body["popularityScore"] == pytest.approx(41.0)

    def test_popularity_score(self):
        novel = Novel(novel_id=1, title="T", slug="t", upvote_count=10)
        assert popularity_score(novel) == pytest.approx(7.0)

    def test_chapter_document_uses_uuid(self):
        chapter = Chapter(
            chapter_id=421,
            uuid="chapter-uuid",
            novel_id=42,
            novel_uuid="novel-uuid",
            title="Chapter 1",
            sequence=1,
        )

        document = chapter_document(chapter)

        assert document.id == "chapter-uuid"
        assert document.body["publishedAt"] == document.body["createdAt"]
