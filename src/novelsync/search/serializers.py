"""
Builders for search index documents.

Novels are indexed under their dense ``novel_id``; chapters under their
opaque ``uuid``. Chapter pointers are flattened so the search side can sort
and display without a join.
"""

from __future__ import annotations

from datetime import datetime

from novelsync.documents.models import Chapter, Novel
from novelsync.search.interface import IndexDocument


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def popularity_score(novel: Novel) -> float:
    """Weighted popularity used for default search ordering."""
    return novel.upvote_count * 0.7 + novel.favorites_count * 0.3 + novel.views * 0.1


def novel_document(novel: Novel) -> IndexDocument:
    first = novel.first_chapter
    latest = novel.latest_chapter
    return IndexDocument(
        id=str(novel.novel_id),
        body={
            "novelId": novel.novel_id,
            "uuid": novel.uuid,
            "ownerUserId": novel.owner_user_id,
            "title": novel.title,
            "slug": novel.slug,
            "description": novel.description,
            "status": novel.status,
            "language": novel.language,
            "coverImg": novel.cover_img,
            "views": novel.views,
            "favoritesCount": novel.favorites_count,
            "chaptersCount": novel.chapters_count,
            "wordCount": novel.word_count,
            "upvoteCount": novel.upvote_count,
            "downvoteCount": novel.downvote_count,
            "source": list(novel.source),
            "tagIds": list(novel.tag_ids),
            "genreIds": list(novel.genre_ids),
            "approvalStatus": novel.approval_status,
            "firstChapterUuid": first.uuid if first else None,
            "firstChapterTitle": first.title if first else None,
            "firstChapterSequence": first.sequence if first else 0,
            "latestChapterUuid": latest.uuid if latest else None,
            "latestChapterTitle": latest.title if latest else None,
            "latestChapterSequence": latest.sequence if latest else 0,
            "popularityScore": popularity_score(novel),
            "createdAt": _iso(novel.created_at),
            "updatedAt": _iso(novel.updated_at),
        },
    )


def chapter_document(chapter: Chapter) -> IndexDocument:
    return IndexDocument(
        id=chapter.uuid,
        body={
            "uuid": chapter.uuid,
            "chapterId": chapter.chapter_id,
            "novelId": chapter.novel_id,
            "novelUuid": chapter.novel_uuid,
            "title": chapter.title,
            "sequence": chapter.sequence,
            "wordCount": chapter.word_count,
            "isPublished": chapter.is_published,
            "createdAt": _iso(chapter.created_at),
            "updatedAt": _iso(chapter.updated_at),
            "publishedAt": _iso(chapter.published_at or chapter.created_at),
        },
    )


__all__ = ["chapter_document", "novel_document", "popularity_score"]
