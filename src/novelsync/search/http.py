"""
Elasticsearch/OpenSearch index client over the REST API (httpx).

Writes go through ``_bulk`` with ``index`` actions, which create or replace
documents by id, so repeating a batch is harmless. A bulk response with
``errors: true`` is treated as a failed batch: the caller must not advance
any watermark past it.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from novelsync.exceptions import SearchIndexError, StoreConnectionError
from novelsync.observability import Tracer, create_tracer
from novelsync.observability.attributes import (
    ATTR_DB_SYSTEM,
    ATTR_DOCUMENT_COUNT,
    ATTR_INDEX_NAME,
)
from novelsync.search.interface import CHAPTER_INDEX, NOVEL_INDEX, IndexDocument

logger = logging.getLogger(__name__)

INDEX_MAPPINGS: dict[str, dict[str, Any]] = {
    NOVEL_INDEX: {
        "properties": {
            "novelId": {"type": "integer"},
            "uuid": {"type": "keyword"},
            "title": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
            "slug": {"type": "keyword"},
            "description": {"type": "text"},
            "status": {"type": "keyword"},
            "approvalStatus": {"type": "keyword"},
            "tagIds": {"type": "integer"},
            "genreIds": {"type": "integer"},
            "popularityScore": {"type": "float"},
            "createdAt": {"type": "date"},
            "updatedAt": {"type": "date"},
        }
    },
    CHAPTER_INDEX: {
        "properties": {
            "uuid": {"type": "keyword"},
            "chapterId": {"type": "integer"},
            "novelUuid": {"type": "keyword"},
            "title": {"type": "text"},
            "sequence": {"type": "integer"},
            "isPublished": {"type": "boolean"},
            "updatedAt": {"type": "date"},
            "publishedAt": {"type": "date"},
        }
    },
}


def build_bulk_body(index: str, documents: Sequence[IndexDocument]) -> str:
    """
    Encode documents as an NDJSON ``_bulk`` payload.

    Example:
        >>> build_bulk_body("novels", [IndexDocument(id="1", body={"title": "A"})])
        '{"index": {"_index": "novels", "_id": "1"}}\\n{"title": "A"}\\n'
    """
    lines: list[str] = []
    for document in documents:
        lines.append(json.dumps({"index": {"_index": index, "_id": document.id}}))
        lines.append(json.dumps(document.body, ensure_ascii=False))
    return "\n".join(lines) + "\n"


class HttpSearchIndex:
    """
    Search index backed by an Elasticsearch-compatible REST endpoint.

    Example:
        >>> client = httpx.AsyncClient(base_url="http://localhost:9200", timeout=30.0)
        >>> index = HttpSearchIndex(client)
        >>> await index.ensure_index("novels")
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._client = client

    async def ping(self) -> None:
        try:
            response = await self._client.get("/")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise StoreConnectionError("search", str(e)) from e

    async def ensure_index(self, index: str) -> None:
        with self._tracer.span(
            "novelsync.search.ensure_index",
            {ATTR_DB_SYSTEM: "elasticsearch", ATTR_INDEX_NAME: index},
        ):
            try:
                response = await self._client.head(f"/{index}")
                if response.status_code == 200:
                    return
                body: dict[str, Any] = {}
                if index in INDEX_MAPPINGS:
                    body["mappings"] = INDEX_MAPPINGS[index]
                response = await self._client.put(f"/{index}", json=body)
                # created concurrently
                if response.status_code == 400 and "resource_already_exists" in response.text:
                    return
                response.raise_for_status()
                logger.info("Created search index %s", index)
            except httpx.HTTPError as e:
                raise SearchIndexError(index, str(e)) from e

    async def count(self, index: str) -> int:
        with self._tracer.span(
            "novelsync.search.count",
            {ATTR_DB_SYSTEM: "elasticsearch", ATTR_INDEX_NAME: index},
        ):
            try:
                response = await self._client.get(f"/{index}/_count")
                if response.status_code == 404:
                    return 0
                response.raise_for_status()
                return int(response.json().get("count", 0))
            except httpx.HTTPError as e:
                raise SearchIndexError(index, str(e)) from e

    async def upsert(self, index: str, documents: Sequence[IndexDocument]) -> int:
        if not documents:
            return 0
        with self._tracer.span(
            "novelsync.search.upsert",
            {
                ATTR_DB_SYSTEM: "elasticsearch",
                ATTR_INDEX_NAME: index,
                ATTR_DOCUMENT_COUNT: len(documents),
            },
        ):
            try:
                response = await self._client.post(
                    "/_bulk",
                    content=build_bulk_body(index, documents).encode("utf-8"),
                    headers={"Content-Type": "application/x-ndjson"},
                )
                response.raise_for_status()
                result = response.json()
            except httpx.HTTPError as e:
                raise SearchIndexError(index, str(e)) from e

            if result.get("errors"):
                failures = []
                for item in result.get("items", []):
                    action = item.get("index") or {}
                    if action.get("error"):
                        failures.append(f"{action.get('_id')}: {action['error']}")
                raise SearchIndexError(
                    index,
                    f"{len(failures)} of {len(documents)} documents rejected",
                    failures,
                )
            logger.debug("Indexed %d documents into %s", len(documents), index)
            return len(documents)

    async def close(self) -> None:
        await self._client.aclose()


def create_search_client(
    nodes: str,
    *,
    username: str | None = None,
    password: str | None = None,
    timeout: float = 30.0,
) -> httpx.AsyncClient:
    """
    Create the HTTP client for the search cluster.

    Args:
        nodes: Comma-separated node URLs; the first one is used
        username: Basic auth user (optional)
        password: Basic auth password (optional)
        timeout: Per-request timeout in seconds
    """
    base_url = nodes.split(",")[0].strip()
    auth = httpx.BasicAuth(username, password or "") if username else None
    return httpx.AsyncClient(base_url=base_url, auth=auth, timeout=timeout)


__all__ = [
    "HttpSearchIndex",
    "INDEX_MAPPINGS",
    "build_bulk_body",
    "create_search_client",
]
