"""
Query builder for the document store.

Provides a backend-agnostic way to express lookups with filters, ordering and
pagination. Field names are the Python (snake_case) names of the document
model; the MongoDB store translates them to stored names, the in-memory
store evaluates them directly against model attributes.
"""

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(frozen=True)
class Filter:
    """
    A single filter condition for a query.

    Attributes:
        field: Name of the model field to filter on
        operator: Comparison operator (eq, ne, gt, gte, lt, lte, in)
        value: Value to compare against

    Example:
        >>> Filter.eq("novel_id", 42)
        >>> Filter.gt("updated_at", cursor_time)
        >>> Filter.in_("chapter_id", [1, 2, 3])
    """

    field: str
    operator: Literal["eq", "ne", "gt", "gte", "lt", "lte", "in"]
    value: Any

    @classmethod
    def eq(cls, field: str, value: Any) -> "Filter":
        """Create an equality filter (field = value)."""
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def ne(cls, field: str, value: Any) -> "Filter":
        """Create a not-equal filter (field != value)."""
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def gt(cls, field: str, value: Any) -> "Filter":
        """Create a greater-than filter (field > value)."""
        return cls(field=field, operator="gt", value=value)

    @classmethod
    def gte(cls, field: str, value: Any) -> "Filter":
        """Create a greater-than-or-equal filter (field >= value)."""
        return cls(field=field, operator="gte", value=value)

    @classmethod
    def lt(cls, field: str, value: Any) -> "Filter":
        """Create a less-than filter (field < value)."""
        return cls(field=field, operator="lt", value=value)

    @classmethod
    def lte(cls, field: str, value: Any) -> "Filter":
        """Create a less-than-or-equal filter (field <= value)."""
        return cls(field=field, operator="lte", value=value)

    @classmethod
    def in_(cls, field: str, values: list[Any]) -> "Filter":
        """Create an "in list" filter (field IN (values))."""
        return cls(field=field, operator="in", value=list(values))

    def matches(self, candidate: Any) -> bool:
        """
        Evaluate the filter against a field value.

        ``None`` never satisfies an ordering comparison, mirroring how the
        document store treats missing fields in range queries.
        """
        if self.operator == "eq":
            return bool(candidate == self.value)
        elif self.operator == "ne":
            return bool(candidate != self.value)
        elif self.operator == "in":
            return candidate in self.value
        if candidate is None:
            return False
        if self.operator == "gt":
            return bool(candidate > self.value)
        elif self.operator == "gte":
            return bool(candidate >= self.value)
        elif self.operator == "lt":
            return bool(candidate < self.value)
        elif self.operator == "lte":
            return bool(candidate <= self.value)
        return False

    def __str__(self) -> str:
        op_symbols = {
            "eq": "=",
            "ne": "!=",
            "gt": ">",
            "gte": ">=",
            "lt": "<",
            "lte": "<=",
            "in": "IN",
        }
        return f"{self.field} {op_symbols[self.operator]} {self.value!r}"


@dataclass
class Query:
    """
    Query specification for the document store.

    All filters are combined with AND logic.

    Example:
        >>> query = Query(
        ...     filters=[Filter.gt("updated_at", since), Filter.eq("is_published", True)],
        ...     order_by="updated_at",
        ...     limit=500,
        ... )
        >>> chapters = await store.find(Chapter, query)
    """

    filters: list[Filter] = field(default_factory=list)
    order_by: str | None = None
    order_direction: Literal["asc", "desc"] = "asc"
    limit: int | None = None
    offset: int = 0

    def with_filter(self, filter_: Filter) -> "Query":
        """Create a new Query with an additional filter."""
        return Query(
            filters=[*self.filters, filter_],
            order_by=self.order_by,
            order_direction=self.order_direction,
            limit=self.limit,
            offset=self.offset,
        )

    def __str__(self) -> str:
        parts = []
        if self.filters:
            parts.append("WHERE " + " AND ".join(str(f) for f in self.filters))
        if self.order_by:
            parts.append(f"ORDER BY {self.order_by} {self.order_direction.upper()}")
        if self.limit is not None:
            parts.append(f"LIMIT {self.limit}")
        if self.offset:
            parts.append(f"OFFSET {self.offset}")
        return " ".join(parts) if parts else "SELECT ALL"


__all__ = ["Filter", "Query"]
