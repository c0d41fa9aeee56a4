"""
Canonical document store: models, the query builder, the store protocol and
its MongoDB, in-memory and dry-run backends.
"""

from novelsync.documents.dry_run import DryRunDocumentStore
from novelsync.documents.in_memory import InMemoryDocumentStore
from novelsync.documents.interface import ChapterTotals, DocumentStore
from novelsync.documents.models import (
    DOCUMENT_TYPES,
    ApprovalStatus,
    CanonicalDocument,
    Chapter,
    ChapterPointer,
    Comment,
    Favorite,
    Genre,
    Novel,
    NovelStatus,
    ReadingList,
    ReadingListItem,
    Tag,
    User,
)
from novelsync.documents.mongodb import MongoDocumentStore, create_mongo_client
from novelsync.documents.query import Filter, Query

__all__ = [
    "DOCUMENT_TYPES",
    "ApprovalStatus",
    "CanonicalDocument",
    "Chapter",
    "ChapterPointer",
    "ChapterTotals",
    "Comment",
    "DocumentStore",
    "DryRunDocumentStore",
    "Favorite",
    "Filter",
    "Genre",
    "InMemoryDocumentStore",
    "MongoDocumentStore",
    "Novel",
    "NovelStatus",
    "Query",
    "ReadingList",
    "ReadingListItem",
    "Tag",
    "User",
    "create_mongo_client",
]
