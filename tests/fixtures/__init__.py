"""
Shared test fixtures for the novelsync tests.

Usage:
    from tests.fixtures import make_novel, make_chapter, sample_source
"""

from tests.fixtures.legacy import (
    BASE_TIME,
    at,
    make_chapter,
    make_comment,
    make_list_item,
    make_novel,
    make_rating,
    make_reading_list,
    make_user,
    sample_source,
    words,
)

__all__ = [
    "BASE_TIME",
    "at",
    "make_chapter",
    "make_comment",
    "make_list_item",
    "make_novel",
    "make_rating",
    "make_reading_list",
    "make_user",
    "sample_source",
    "words",
]
