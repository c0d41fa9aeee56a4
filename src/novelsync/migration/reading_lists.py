"""
Reading list migration.

Lists keep their legacy id; every list gets a fresh uuid and its items point
at it through ``list_uuid``. Items whose novel was not migrated are dropped
with a warning. The first few valid items supply the list's cover images.

A novel appears at most once per list. Re-running against an existing list
only adds items for novels it does not hold yet, then recomputes the list's
item count and covers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from novelsync.config import MigrationConfig
from novelsync.documents.interface import DocumentStore
from novelsync.documents.models import Novel, ReadingList, ReadingListItem, utc_now
from novelsync.documents.query import Filter, Query
from novelsync.exceptions import MissingReferenceError, RecordMigrationError
from novelsync.identity import IdentifierMap
from novelsync.legacy.interface import LegacySource
from novelsync.legacy.models import LegacyReadingList, LegacyReadingListItem
from novelsync.migration.base import (
    MigrationResult,
    ProgressCallback,
    RecordOutcome,
    legacy_timestamps,
    run_paginated,
)
from novelsync.observability import Tracer, create_tracer
from novelsync.observability.attributes import ATTR_ENTITY_TYPE, ATTR_RECORDS_MIGRATED

logger = logging.getLogger(__name__)

ITEM_ID_STRIDE = 10000
VERIFY_THRESHOLD = 0.95


def item_id(list_id: int, position: int) -> int:
    """Item ids are derived from the list id and the item's position in the list."""
    return list_id * ITEM_ID_STRIDE + position


@dataclass(frozen=True)
class ListVerification:
    """
    Legacy and canonical reading list counts side by side.

    Attributes:
        legacy_lists: Rows in ``reading_lists``
        legacy_items: Rows in ``reading_list_items``
        lists: Documents in ``reading-lists``
        items: Documents in ``reading-list-items``
    """

    legacy_lists: int
    legacy_items: int
    lists: int
    items: int

    @property
    def passed(self) -> bool:
        """At least 95% of the legacy lists made it across."""
        return self.lists >= self.legacy_lists * VERIFY_THRESHOLD

    def to_dict(self) -> dict[str, Any]:
        return {
            "legacy_lists": self.legacy_lists,
            "legacy_items": self.legacy_items,
            "lists": self.lists,
            "items": self.items,
            "passed": self.passed,
        }


class ReadingListMigrator:
    """
    Migrates reading lists and their items.

    Example:
        >>> migrator = ReadingListMigrator(source, store, users=users, novels=novels)
        >>> result = await migrator.migrate_reading_lists()
        >>> (await migrator.verify()).passed
        True
    """

    def __init__(
        self,
        source: LegacySource,
        store: DocumentStore,
        *,
        users: IdentifierMap,
        novels: IdentifierMap,
        config: MigrationConfig | None = None,
        progress_callback: ProgressCallback | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._source = source
        self._store = store
        self._users = users
        self._novels = novels
        self._config = config or MigrationConfig()
        self._progress_callback = progress_callback

    async def migrate_reading_lists(self, batch_size: int | None = None) -> MigrationResult:
        result = MigrationResult(stage="reading-lists")
        expected = await self._source.count_reading_lists()
        logger.info("Migrating %d reading lists", expected)
        with self._tracer.span(
            "novelsync.reading_lists.migrate", {ATTR_ENTITY_TYPE: "reading_list"}
        ) as span:
            await run_paginated(
                result,
                expected=expected,
                fetch=self._source.fetch_reading_lists,
                worker=self.migrate_list,
                batch_size=batch_size or self._config.batch_size,
                concurrency=self._config.concurrency,
                entity_type="reading_list",
                legacy_id=lambda reading_list: reading_list.id,
                progress_callback=self._progress_callback,
                tracer=self._tracer,
            )
            if span:
                span.set_attribute(ATTR_RECORDS_MIGRATED, result.migrated)
        return result.complete()

    async def migrate_list(self, legacy: LegacyReadingList) -> RecordOutcome:
        owner_uuid = self._users.get(legacy.user_id)
        if owner_uuid is None:
            raise MissingReferenceError("reading_list", legacy.id, "user", legacy.user_id)

        legacy_items = await self._source.fetch_reading_list_items(legacy.id)
        valid, warnings = self._valid_items(legacy, legacy_items)
        novel_ids = [item.novel_id for _, item in valid]

        existing = await self._store.find_one(ReadingList, Filter.eq("list_id", legacy.id))
        if existing is None:
            reading_list = ReadingList(
                list_id=legacy.id,
                owner_user_uuid=owner_uuid,
                name=legacy.name,
                description=legacy.description or "",
                visibility="public",
                items_count=len(valid),
                cover_novel_id=novel_ids[0] if novel_ids else None,
                cover_images=await self._cover_images(novel_ids),
                **legacy_timestamps(legacy.created_at, legacy.updated_at),
            )
            if await self._store.insert(reading_list):
                existing = reading_list
                created = True
            else:
                existing = await self._store.find_one(ReadingList, Filter.eq("list_id", legacy.id))
                created = False
            if existing is None:
                raise RecordMigrationError("reading_list", legacy.id, "list rejected as duplicate")
        else:
            created = False

        # item ids use the position in the unfiltered legacy list
        listed: set[int] = set()
        if not created:
            listed = {
                item.novel_id
                for item in await self._store.find(
                    ReadingListItem, Query(filters=[Filter.eq("list_uuid", existing.uuid)])
                )
            }
        items = [
            ReadingListItem(
                item_id=item_id(legacy.id, position),
                list_uuid=existing.uuid,
                novel_id=item.novel_id,
                novel_slug=self._novels.slug(item.novel_id) or "",
                novel_uuid=self._novels.get(item.novel_id) or "",
                **legacy_timestamps(item.added_at, None),
            )
            for position, item in valid
            if item.novel_id not in listed
        ]
        written = await self._store.insert_many(items) if items else 0

        details = {"items": written, "items_skipped": len(legacy_items) - len(valid)}
        if not created:
            details["existing"] = 1
            await self.refresh_list(existing)
        return RecordOutcome.migrated(legacy.id, warnings=warnings, details=details)

    def _valid_items(
        self, legacy: LegacyReadingList, items: list[LegacyReadingListItem]
    ) -> tuple[list[tuple[int, LegacyReadingListItem]], list[str]]:
        """Items whose novel was migrated, with their position in the legacy list."""
        valid: list[tuple[int, LegacyReadingListItem]] = []
        warnings: list[str] = []
        seen: set[int] = set()
        for position, item in enumerate(items):
            if item.novel_id in seen:
                continue
            if item.novel_id in self._novels and self._novels.slug(item.novel_id):
                valid.append((position, item))
                seen.add(item.novel_id)
            else:
                warnings.append(
                    f"Reading list {legacy.id}: novel {item.novel_id} not found, item skipped"
                )
        return valid, warnings

    async def _cover_images(self, novel_ids: list[int]) -> list[str]:
        covers: list[str] = []
        for novel_id in novel_ids[: self._config.cover_sample_size]:
            novel = await self._store.find_one(Novel, Filter.eq("novel_id", novel_id))
            if novel is not None and novel.cover_img:
                covers.append(novel.cover_img)
        return covers

    async def refresh_covers(self) -> MigrationResult:
        """
        Recompute cover images and item counts of stored lists.

        Lists migrated before their novels had covers keep empty covers
        until this runs.
        """
        result = MigrationResult(stage="reading-list-covers")
        expected = await self._store.count(ReadingList)
        logger.info("Refreshing covers of %d reading lists", expected)

        async def fetch(limit: int, offset: int) -> list[ReadingList]:
            return await self._store.find(
                ReadingList, Query(order_by="list_id", limit=limit, offset=offset)
            )

        await run_paginated(
            result,
            expected=expected,
            fetch=fetch,
            worker=self.refresh_list,
            batch_size=self._config.batch_size,
            concurrency=self._config.concurrency,
            entity_type="reading_list",
            legacy_id=lambda reading_list: reading_list.list_id,
            progress_callback=self._progress_callback,
            tracer=self._tracer,
        )
        return result.complete()

    async def refresh_list(self, reading_list: ReadingList) -> RecordOutcome:
        items = await self._store.find(
            ReadingListItem,
            Query(filters=[Filter.eq("list_uuid", reading_list.uuid)], order_by="item_id"),
        )
        novel_ids = [item.novel_id for item in items]
        changes: dict[str, Any] = {
            "items_count": len(items),
            "cover_novel_id": novel_ids[0] if novel_ids else None,
            "cover_images": await self._cover_images(novel_ids),
        }
        if all(getattr(reading_list, key) == value for key, value in changes.items()):
            return RecordOutcome.migrated(reading_list.list_id, details={"unchanged": 1})
        changes["updated_at"] = utc_now()
        await self._store.update(
            ReadingList, [Filter.eq("list_id", reading_list.list_id)], changes
        )
        return RecordOutcome.migrated(reading_list.list_id, details={"refreshed": 1})

    async def verify(self) -> ListVerification:
        verification = ListVerification(
            legacy_lists=await self._source.count_reading_lists(),
            legacy_items=await self._source.count_reading_list_items(),
            lists=await self._store.count(ReadingList),
            items=await self._store.count(ReadingListItem),
        )
        if verification.passed:
            logger.info("Reading list verification passed: %s", verification.to_dict())
        else:
            logger.warning(
                "Reading list verification: fewer than %d%% of lists migrated: %s",
                int(VERIFY_THRESHOLD * 100),
                verification.to_dict(),
            )
        return verification


__all__ = ["ITEM_ID_STRIDE", "ListVerification", "ReadingListMigrator", "item_id"]
