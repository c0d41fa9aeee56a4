"""
MongoDB implementation of the document store (motor).

Duplicate-key errors (code 11000) are translated into the store's
idempotent no-op contract. Reads carry a server-side time limit
(``max_time_ms``) so a pathological query cannot stall a stage.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

from novelsync.documents.interface import ChapterTotals, TDocument
from novelsync.documents.models import DOCUMENT_TYPES, CanonicalDocument, Chapter
from novelsync.documents.query import Filter, Query
from novelsync.exceptions import StoreConnectionError
from novelsync.observability import Tracer, create_tracer
from novelsync.observability.attributes import (
    ATTR_DB_COLLECTION,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DOCUMENT_COUNT,
)

logger = logging.getLogger(__name__)

DUPLICATE_KEY = 11000
SEQUENCES_COLLECTION = "sequences"

_OPERATORS = {
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
}


def _to_bson(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_to_bson(v) for v in value]
    return value


def translate_filters(
    model: type[CanonicalDocument], filters: Sequence[Filter]
) -> dict[str, Any]:
    """
    Translate filters into a MongoDB filter document.

    Example:
        >>> translate_filters(Chapter, [Filter.eq("novel_id", 42), Filter.gt("sequence", 3)])
        {'novelId': 42, 'sequence': {'$gt': 3}}
    """
    spec: dict[str, Any] = {}
    for filter_ in filters:
        name = model.storage_name(filter_.field)
        value = _to_bson(filter_.value)
        if filter_.operator == "eq":
            spec[name] = value
            continue
        condition = spec.get(name)
        if not isinstance(condition, dict):
            condition = {}
            spec[name] = condition
        condition[_OPERATORS[filter_.operator]] = value
    return spec


class MongoDocumentStore:
    """
    Document store backed by MongoDB through motor.

    Example:
        >>> client = AsyncIOMotorClient(uri, tz_aware=True)
        >>> store = MongoDocumentStore(client, "novels")
        >>> await store.ensure_indexes()
    """

    def __init__(
        self,
        client: AsyncIOMotorClient,
        database: str,
        *,
        max_time_ms: int = 60_000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            client: Motor client (create it with ``tz_aware=True``)
            database: Database name
            max_time_ms: Server-side time limit for reads
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._client = client
        self._db: AsyncIOMotorDatabase = client[database]
        self._database_name = database
        self._max_time_ms = max_time_ms

    def _span(self, operation: str, collection: str, **extra: Any) -> Any:
        attributes = {
            ATTR_DB_SYSTEM: "mongodb",
            ATTR_DB_NAME: self._database_name,
            ATTR_DB_OPERATION: operation,
            ATTR_DB_COLLECTION: collection,
        }
        attributes.update(extra)
        return self._tracer.span(f"novelsync.documents.{operation}", attributes)

    async def ping(self) -> None:
        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            raise StoreConnectionError("documents", str(e)) from e

    async def ensure_indexes(self) -> None:
        for model in DOCUMENT_TYPES:
            collection = self._db[model.collection_name()]
            with self._span("create_index", model.collection_name()):
                for fields in model.__unique_keys__:
                    keys = [(model.storage_name(f), ASCENDING) for f in fields]
                    await collection.create_index(keys, unique=True)
                for fields in model.__indexes__:
                    keys = [(model.storage_name(f), ASCENDING) for f in fields]
                    await collection.create_index(keys)
            logger.debug("Ensured indexes on %s", model.collection_name())

    async def find_one(self, model: type[TDocument], *filters: Filter) -> TDocument | None:
        collection = model.collection_name()
        with self._span("find_one", collection):
            document = await self._db[collection].find_one(
                translate_filters(model, filters),
                max_time_ms=self._max_time_ms,
            )
            return model.model_validate(document) if document else None

    async def find(self, model: type[TDocument], query: Query | None = None) -> list[TDocument]:
        query = query or Query()
        collection = model.collection_name()
        with self._span("find", collection):
            cursor = self._db[collection].find(translate_filters(model, query.filters))
            if query.order_by:
                direction = DESCENDING if query.order_direction == "desc" else ASCENDING
                cursor = cursor.sort(model.storage_name(query.order_by), direction)
            if query.offset:
                cursor = cursor.skip(query.offset)
            if query.limit is not None:
                cursor = cursor.limit(query.limit)
            cursor = cursor.max_time_ms(self._max_time_ms)
            return [model.model_validate(doc) async for doc in cursor]

    async def count(self, model: type[CanonicalDocument], *filters: Filter) -> int:
        collection = model.collection_name()
        with self._span("count", collection):
            return int(
                await self._db[collection].count_documents(
                    translate_filters(model, filters),
                    maxTimeMS=self._max_time_ms,
                )
            )

    async def distinct(
        self, model: type[CanonicalDocument], field: str, *filters: Filter
    ) -> list[Any]:
        collection = model.collection_name()
        with self._span("distinct", collection):
            return list(
                await self._db[collection].distinct(
                    model.storage_name(field),
                    translate_filters(model, filters),
                    maxTimeMS=self._max_time_ms,
                )
            )

    async def insert(self, document: CanonicalDocument) -> bool:
        collection = document.collection_name()
        with self._span("insert", collection):
            try:
                await self._db[collection].insert_one(document.to_document())
            except DuplicateKeyError:
                logger.debug(
                    "Duplicate %s %s ignored", collection, document.legacy_id
                )
                return False
            return True

    async def insert_many(self, documents: Sequence[CanonicalDocument]) -> int:
        if not documents:
            return 0
        collection = documents[0].collection_name()
        with self._span("insert_many", collection, **{ATTR_DOCUMENT_COUNT: len(documents)}):
            try:
                result = await self._db[collection].insert_many(
                    [d.to_document() for d in documents],
                    ordered=False,
                )
            except BulkWriteError as e:
                write_errors = e.details.get("writeErrors", [])
                if any(err.get("code") != DUPLICATE_KEY for err in write_errors):
                    raise
                inserted = int(e.details.get("nInserted", 0))
                logger.debug(
                    "Ignored %d duplicate %s documents", len(write_errors), collection
                )
                return inserted
            return len(result.inserted_ids)

    async def update(
        self,
        model: type[TDocument],
        filters: Sequence[Filter],
        changes: Mapping[str, Any],
    ) -> TDocument | None:
        collection = model.collection_name()
        with self._span("update", collection):
            document = await self._db[collection].find_one_and_update(
                translate_filters(model, filters),
                {"$set": {model.storage_name(k): _to_bson(v) for k, v in changes.items()}},
                return_document=ReturnDocument.AFTER,
            )
            return model.model_validate(document) if document else None

    async def published_chapter_totals(
        self, novel_ids: Sequence[int]
    ) -> dict[int, ChapterTotals]:
        novel_field = Chapter.storage_name("novel_id")
        pipeline = [
            {
                "$match": {
                    novel_field: {"$in": list(novel_ids)},
                    Chapter.storage_name("is_published"): True,
                }
            },
            {
                "$group": {
                    "_id": f"${novel_field}",
                    "count": {"$sum": 1},
                    "words": {"$sum": {"$ifNull": [f"${Chapter.storage_name('word_count')}", 0]}},
                }
            },
        ]
        with self._span("aggregate", Chapter.collection_name()):
            cursor = self._db[Chapter.collection_name()].aggregate(
                pipeline, maxTimeMS=self._max_time_ms
            )
            return {
                row["_id"]: ChapterTotals(
                    novel_id=row["_id"],
                    chapters_count=int(row["count"]),
                    word_count=int(row["words"]),
                )
                async for row in cursor
            }

    async def next_sequence(self, name: str) -> int:
        with self._span("next_sequence", SEQUENCES_COLLECTION):
            document = await self._db[SEQUENCES_COLLECTION].find_one_and_update(
                {"_id": name},
                {"$inc": {"seq": 1}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
            return int(document["seq"])

    async def close(self) -> None:
        self._client.close()


def create_mongo_client(uri: str, *, timeout_ms: int = 10_000) -> AsyncIOMotorClient:
    """Create a timezone-aware motor client."""
    return AsyncIOMotorClient(
        uri,
        tz_aware=True,
        serverSelectionTimeoutMS=timeout_ms,
    )


__all__ = ["MongoDocumentStore", "create_mongo_client", "translate_filters"]
