"""
Secondary search index: protocol, REST and in-memory backends, and the
document builders for novels and chapters.
"""

from novelsync.search.dry_run import DryRunSearchIndex
from novelsync.search.http import HttpSearchIndex, create_search_client
from novelsync.search.in_memory import InMemorySearchIndex
from novelsync.search.interface import CHAPTER_INDEX, NOVEL_INDEX, IndexDocument, SearchIndex
from novelsync.search.serializers import chapter_document, novel_document

__all__ = [
    "CHAPTER_INDEX",
    "NOVEL_INDEX",
    "DryRunSearchIndex",
    "HttpSearchIndex",
    "InMemorySearchIndex",
    "IndexDocument",
    "SearchIndex",
    "chapter_document",
    "create_search_client",
    "novel_document",
]
