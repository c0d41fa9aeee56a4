"""
Canonical documents written to the primary store.

Every document carries a dense integer id (preserved from the legacy id, or
allocated from a sequence) and an opaque ``uuid`` used for all cross-entity
references. Field names are snake_case in Python and camelCase in storage.

Timestamps are UTC and truncated to millisecond precision, which is what
the document store keeps; the sync watermark relies on both sides agreeing.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def truncate_to_millis(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    else:
        value = value.astimezone(UTC)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utc_now() -> datetime:
    return truncate_to_millis(datetime.now(UTC))


def to_millis(value: datetime) -> int:
    """Epoch milliseconds of an aware datetime."""
    return int(truncate_to_millis(value).timestamp() * 1000)


def from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def new_uuid() -> str:
    return str(uuid4())


class NovelStatus(Enum):
    """Publication status of a novel."""

    ONGOING = "ongoing"
    COMPLETED = "completed"
    HIATUS = "hiatus"


class ApprovalStatus(Enum):
    """Moderation state of a novel."""

    PENDING = "pending"
    APPROVED = "approved"


class DocumentModel(BaseModel):
    """Base for anything stored in the document store, embedded or not."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        use_enum_values=True,
        validate_default=True,
    )


class ChapterPointer(DocumentModel):
    """Denormalized reference to a chapter, embedded in the novel."""

    uuid: str
    title: str
    sequence: int


class CanonicalDocument(DocumentModel):
    """
    Base class for top-level documents.

    Subclasses declare their collection, the field holding the dense integer
    id, and the unique keys that make re-runs idempotent. Stores create the
    indexes from these declarations.
    """

    uuid: str = Field(default_factory=new_uuid, description="Opaque identifier")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    __collection__: ClassVar[str] = ""
    __id_field__: ClassVar[str] = ""
    __unique_keys__: ClassVar[tuple[tuple[str, ...], ...]] = ()
    __indexes__: ClassVar[tuple[tuple[str, ...], ...]] = ()

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return truncate_to_millis(value)

    @classmethod
    def collection_name(cls) -> str:
        return cls.__collection__

    @classmethod
    def storage_name(cls, field: str) -> str:
        """
        Map a Python field name to its stored (camelCase) name.

        Example:
            >>> Novel.storage_name("chapters_count")
            'chaptersCount'
        """
        info = cls.model_fields.get(field)
        if info is None:
            raise KeyError(f"{cls.__name__} has no field {field!r}")
        return info.alias or field

    @property
    def legacy_id(self) -> int:
        return int(getattr(self, self.__id_field__))

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Tag(CanonicalDocument):
    __collection__ = "novel-tags"
    __id_field__ = "tag_id"
    __unique_keys__ = (("tag_id",), ("uuid",), ("slug",))

    tag_id: int
    name: str
    slug: str
    description: str = ""


class Genre(CanonicalDocument):
    __collection__ = "novel-genres"
    __id_field__ = "genre_id"
    __unique_keys__ = (("genre_id",), ("uuid",), ("slug",))

    genre_id: int
    name: str
    slug: str
    description: str = ""
    # raw legacy labels folded into this genre by the ceiling
    aliases: list[str] = Field(default_factory=list)


class Novel(CanonicalDocument):
    __collection__ = "novels"
    __id_field__ = "novel_id"
    __unique_keys__ = (("novel_id",), ("uuid",))
    __indexes__ = (("slug",), ("updated_at",), ("source",))

    novel_id: int
    owner_user_id: int = 1
    title: str
    slug: str
    description: str = ""
    tag_ids: list[int] = Field(default_factory=list)
    genre_ids: list[int] = Field(default_factory=list)
    status: NovelStatus = NovelStatus.ONGOING
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    cover_img: str = ""
    language: str = "en"
    views: int = 0
    favorites_count: int = 0
    chapters_count: int = 0
    word_count: int = 0
    upvote_count: int = 0
    downvote_count: int = 0
    source: list[int] = Field(default_factory=list)
    first_chapter: ChapterPointer | None = None
    latest_chapter: ChapterPointer | None = None


class Chapter(CanonicalDocument):
    __collection__ = "chapters"
    __id_field__ = "chapter_id"
    __unique_keys__ = (("chapter_id",), ("uuid",), ("novel_id", "sequence"))
    __indexes__ = (("novel_uuid",), ("updated_at",))

    chapter_id: int
    novel_id: int
    novel_uuid: str
    title: str
    sequence: int
    word_count: int = 0
    content: str = ""
    is_published: bool = True
    published_at: datetime | None = None


class User(CanonicalDocument):
    __collection__ = "users"
    __id_field__ = "user_id"
    __unique_keys__ = (("user_id",), ("uuid",), ("username",))
    __indexes__ = (("email",),)

    user_id: int
    username: str
    email: str
    password_hash: str = ""
    display_name: str = ""
    avatar_url: str = ""
    email_verified: bool = False
    roles: list[str] = Field(default_factory=lambda: ["user"])


class Favorite(CanonicalDocument):
    __collection__ = "favorites"
    __id_field__ = "favorite_id"
    __unique_keys__ = (("favorite_id",), ("uuid",), ("user_uuid", "novel_id"))

    favorite_id: int
    user_uuid: str
    novel_id: int
    novel_uuid: str


class Comment(CanonicalDocument):
    __collection__ = "novel-comments"
    __id_field__ = "comment_id"
    __unique_keys__ = (("comment_id",), ("uuid",))
    __indexes__ = (("novel_id",), ("parent_comment_id",))

    comment_id: int
    user_uuid: str
    novel_id: int
    novel_uuid: str
    content: str
    parent_comment_id: int | None = None
    root_comment_id: int | None = None
    # thread placement is not reconstructed from legacy data
    path: str = ""
    depth: int = 0
    upvote_count: int = 0
    downvote_count: int = 0


class ReadingList(CanonicalDocument):
    __collection__ = "reading-lists"
    __id_field__ = "list_id"
    __unique_keys__ = (("list_id",), ("uuid",))
    __indexes__ = (("owner_user_uuid",),)

    list_id: int
    owner_user_uuid: str
    name: str
    description: str = ""
    visibility: str = "public"
    items_count: int = 0
    cover_novel_id: int | None = None
    cover_images: list[str] = Field(default_factory=list)
    upvote_count: int = 0
    downvote_count: int = 0


class ReadingListItem(CanonicalDocument):
    __collection__ = "reading-list-items"
    __id_field__ = "item_id"
    __unique_keys__ = (("item_id",), ("uuid",), ("list_uuid", "novel_id"))

    item_id: int
    list_uuid: str
    novel_id: int
    novel_slug: str
    novel_uuid: str


DOCUMENT_TYPES: tuple[type[CanonicalDocument], ...] = (
    Tag,
    Genre,
    Novel,
    Chapter,
    User,
    Favorite,
    Comment,
    ReadingList,
    ReadingListItem,
)


__all__ = [
    "ApprovalStatus",
    "CanonicalDocument",
    "Chapter",
    "ChapterPointer",
    "Comment",
    "DOCUMENT_TYPES",
    "DocumentModel",
    "Favorite",
    "Genre",
    "Novel",
    "NovelStatus",
    "ReadingList",
    "ReadingListItem",
    "Tag",
    "User",
    "from_millis",
    "new_uuid",
    "to_millis",
    "truncate_to_millis",
    "utc_now",
]
