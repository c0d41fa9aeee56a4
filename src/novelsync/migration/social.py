"""
Social data migration: users, favorites and comments.

The four sub-operations are independent and each can be re-run on its own.
They all resolve references through identifier maps, so the user map has to
hold every migrated user before ratings, bookmarks or comments run, and the
novel map every migrated novel.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from novelsync.config import MigrationConfig
from novelsync.documents.interface import DocumentStore
from novelsync.documents.models import Comment, Favorite, User
from novelsync.documents.query import Filter
from novelsync.exceptions import MissingReferenceError, RecordMigrationError
from novelsync.identity import IdentifierMap
from novelsync.legacy.interface import LegacySource
from novelsync.legacy.models import LegacyComment, LegacyRating, LegacyUser
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

T = TypeVar("T", LegacyUser, LegacyRating, LegacyComment)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,}$")

FAVORITE_SEQUENCE = "favorites"


def fallback_username(legacy_id: int) -> str:
    return f"user{legacy_id}"


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def parse_bookmarks(value: Any) -> list[int]:
    """
    Extract bookmarked novel ids from the legacy ``bookmarks`` column.

    The column was written by several generations of the legacy app and
    holds one of:

    - a plain array of ids
    - ``{"bookmarks": [...]}`` or ``{"list": [...]}``
    - an object used as a set, keyed by id
    - any of the above, JSON-encoded as a string

    Entries that are not integers are dropped and duplicates removed, keeping
    first-seen order.

    Raises:
        ValueError: If ``value`` is a string that is not valid JSON

    Example:
        >>> parse_bookmarks('{"list": [5, 9, "x", 5]}')
        [5, 9]
    """
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        if not value.strip():
            return []
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"bookmarks column is not valid JSON: {e}") from e

    if isinstance(value, dict):
        if isinstance(value.get("bookmarks"), list):
            entries: list[Any] = value["bookmarks"]
        elif isinstance(value.get("list"), list):
            entries = value["list"]
        else:
            entries = list(value.keys())
    elif isinstance(value, list):
        entries = value
    else:
        return []

    ids: list[int] = []
    for entry in entries:
        novel_id = _as_int(entry)
        if novel_id is not None and novel_id not in ids:
            ids.append(novel_id)
    return ids


class SocialDataMigrator:
    """
    Migrates users, favorites and novel comments.

    Favorites come from two legacy sources: high ratings and the per-user
    bookmarks column. Both write into the same collection, keyed by
    ``(user_uuid, novel_id)``, so a novel that is both rated and bookmarked
    becomes a single favorite.

    Example:
        >>> social = SocialDataMigrator(source, store, users=users, novels=novels)
        >>> await social.migrate_users()
        >>> await social.migrate_ratings_to_favorites()
    """

    def __init__(
        self,
        source: LegacySource,
        store: DocumentStore,
        *,
        users: IdentifierMap | None = None,
        novels: IdentifierMap | None = None,
        config: MigrationConfig | None = None,
        progress_callback: ProgressCallback | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._source = source
        self._store = store
        self._users = users if users is not None else IdentifierMap("user")
        self._novels = novels if novels is not None else IdentifierMap("novel")
        self._config = config or MigrationConfig()
        self._progress_callback = progress_callback

    @property
    def users(self) -> IdentifierMap:
        return self._users

    async def _paginate(
        self,
        stage: str,
        entity_type: str,
        expected: int,
        fetch: Callable[[int, int], Awaitable[Sequence[T]]],
        worker: Callable[[T], Awaitable[RecordOutcome]],
        keep: Callable[[T], bool] | None = None,
    ) -> MigrationResult:
        result = MigrationResult(stage=stage)
        logger.info("Migrating %d %s records", expected, stage)
        with self._tracer.span(
            f"novelsync.social.{stage}", {ATTR_ENTITY_TYPE: entity_type}
        ) as span:
            await run_paginated(
                result,
                expected=expected,
                fetch=fetch,
                worker=worker,
                batch_size=self._config.batch_size,
                concurrency=self._config.concurrency,
                entity_type=entity_type,
                legacy_id=lambda record: record.id,
                keep=keep,
                progress_callback=self._progress_callback,
                tracer=self._tracer,
            )
            if span:
                span.set_attribute(ATTR_RECORDS_MIGRATED, result.migrated)
        return result.complete()

    # Users

    async def migrate_users(self) -> MigrationResult:
        return await self._paginate(
            "users",
            "user",
            await self._source.count_users(),
            self._source.fetch_users,
            self.migrate_user,
        )

    async def _username_for(self, legacy: LegacyUser) -> str:
        local_part = legacy.email.split("@", 1)[0]
        if USERNAME_PATTERN.match(local_part):
            taken = await self._store.find_one(User, Filter.eq("username", local_part))
            if taken is None:
                return local_part
        return fallback_username(legacy.id)

    def _transform_user(self, legacy: LegacyUser, username: str) -> User:
        return User(
            user_id=legacy.id,
            username=username,
            email=legacy.email,
            password_hash=legacy.password or "",
            display_name=legacy.name or username,
            avatar_url=legacy.image or "",
            email_verified=bool(legacy.email_verified),
            roles=["user"],
            **legacy_timestamps(legacy.created_at, legacy.updated_at),
        )

    async def migrate_user(self, legacy: LegacyUser) -> RecordOutcome:
        existing = await self._store.find_one(User, Filter.eq("user_id", legacy.id))
        if existing is not None:
            self._users.add(existing.user_id, existing.uuid)
            return RecordOutcome.existing(legacy.id)

        user = self._transform_user(legacy, await self._username_for(legacy))
        if await self._store.insert(user):
            self._users.add(user.user_id, user.uuid)
            return RecordOutcome.migrated(legacy.id)

        # lost a race, on user_id or on username
        existing = await self._store.find_one(User, Filter.eq("user_id", legacy.id))
        if existing is not None:
            self._users.add(existing.user_id, existing.uuid)
            return RecordOutcome.existing(legacy.id)
        retry = user.model_copy(update={"username": fallback_username(legacy.id)})
        if not await self._store.insert(retry):
            raise RecordMigrationError("user", legacy.id, f"username {retry.username!r} is taken")
        self._users.add(retry.user_id, retry.uuid)
        warning = f"User {legacy.id}: username {user.username!r} taken, using {retry.username!r}"
        return RecordOutcome.migrated(legacy.id, warnings=[warning])

    # Favorites

    async def _write_favorite(
        self,
        user_uuid: str,
        novel_id: int,
        novel_uuid: str,
        **timestamps: Any,
    ) -> bool:
        """Insert a favorite unless the pair already exists. Returns whether it was written."""
        existing = await self._store.find_one(
            Favorite, Filter.eq("user_uuid", user_uuid), Filter.eq("novel_id", novel_id)
        )
        if existing is not None:
            return False
        favorite = Favorite(
            favorite_id=await self._store.next_sequence(FAVORITE_SEQUENCE),
            user_uuid=user_uuid,
            novel_id=novel_id,
            novel_uuid=novel_uuid,
            **timestamps,
        )
        return await self._store.insert(favorite)

    async def migrate_ratings_to_favorites(self) -> MigrationResult:
        threshold = self._config.favorite_rating_threshold

        async def fetch(limit: int, offset: int) -> list[LegacyRating]:
            return await self._source.fetch_ratings(threshold, limit, offset)

        return await self._paginate(
            "ratings",
            "rating",
            await self._source.count_ratings(threshold),
            fetch,
            self.migrate_rating,
        )

    async def migrate_rating(self, rating: LegacyRating) -> RecordOutcome:
        user_uuid = self._users.get(rating.user_id)
        if user_uuid is None:
            raise MissingReferenceError("rating", rating.id, "user", rating.user_id)
        novel_uuid = self._novels.get(rating.novel_id)
        if novel_uuid is None:
            raise MissingReferenceError("rating", rating.id, "novel", rating.novel_id)

        written = await self._write_favorite(
            user_uuid,
            rating.novel_id,
            novel_uuid,
            **legacy_timestamps(rating.created_at, rating.updated_at),
        )
        if not written:
            return RecordOutcome.existing(rating.id)
        return RecordOutcome.migrated(rating.id)

    async def migrate_bookmarks_to_favorites(self) -> MigrationResult:
        return await self._paginate(
            "bookmarks",
            "bookmark",
            await self._source.count_users(),
            self._source.fetch_users,
            self.migrate_bookmarks,
            keep=lambda user: bool(user.bookmarks),
        )

    async def migrate_bookmarks(self, legacy: LegacyUser) -> RecordOutcome:
        """Turn one user's bookmarks into favorites."""
        user_uuid = self._users.get(legacy.id)
        if user_uuid is None:
            raise MissingReferenceError("bookmarks", legacy.id, "user", legacy.id)
        try:
            novel_ids = parse_bookmarks(legacy.bookmarks)
        except ValueError as e:
            return RecordOutcome.skipped(legacy.id, warning=f"User {legacy.id}: {e}")

        warnings: list[str] = []
        written = existing = 0
        timestamps = legacy_timestamps(legacy.created_at, None)
        for novel_id in novel_ids:
            novel_uuid = self._novels.get(novel_id)
            if novel_uuid is None:
                warnings.append(f"User {legacy.id}: bookmarked novel {novel_id} not found")
                continue
            if await self._write_favorite(user_uuid, novel_id, novel_uuid, **timestamps):
                written += 1
            else:
                existing += 1
        return RecordOutcome.migrated(
            legacy.id, warnings=warnings, details={"favorites": written, "existing": existing}
        )

    # Comments

    async def migrate_comments(self) -> MigrationResult:
        return await self._paginate(
            "comments",
            "comment",
            await self._source.count_comments(),
            self._source.fetch_comments,
            self.migrate_comment,
        )

    async def migrate_comment(self, legacy: LegacyComment) -> RecordOutcome:
        if await self._store.find_one(Comment, Filter.eq("comment_id", legacy.id)) is not None:
            return RecordOutcome.existing(legacy.id)
        user_uuid = self._users.get(legacy.user_id)
        if user_uuid is None:
            raise MissingReferenceError("comment", legacy.id, "user", legacy.user_id)
        novel_uuid = self._novels.get(legacy.novel_id)
        if legacy.novel_id is None or novel_uuid is None:
            raise MissingReferenceError("comment", legacy.id, "novel", legacy.novel_id)

        comment = Comment(
            comment_id=legacy.id,
            user_uuid=user_uuid,
            novel_id=legacy.novel_id,
            novel_uuid=novel_uuid,
            content=legacy.content,
            parent_comment_id=legacy.parent_id,
            upvote_count=legacy.likes or 0,
            **legacy_timestamps(legacy.created_at, legacy.updated_at),
        )
        if not await self._store.insert(comment):
            return RecordOutcome.existing(legacy.id)
        return RecordOutcome.migrated(legacy.id)


__all__ = ["SocialDataMigrator", "fallback_username", "parse_bookmarks"]
