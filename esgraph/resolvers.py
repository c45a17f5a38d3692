"""
Search, pagination and connection resolvers for an entity

Each resolver validates the client filter and sort against the typed fields of the entity,
and issues exactly one query to the search capability.
"""

from typing import Any, Iterable, Mapping

from esgraph.documents import shape_document
from esgraph.models import QueryDescriptor, SortClause, TypedField
from esgraph.pagination import connection_result, decode_cursor, pagination_result, query_fingerprint
from esgraph.query import QueryError, parse_filter, parse_sort, with_tiebreak
from esgraph.store import SearchCapability
from esgraph.typedefs import DEFAULT_LIMIT

Filter = Mapping[str, Any] | None
Sort = Iterable[Mapping[str, Any]] | None


def _check_non_negative(**kargs: int):
    for name, value in kargs.items():
        if value < 0:
            raise QueryError(f"{name} should not be negative, got {value}")


class EntityResolvers:
    """
    The resolvers for one entity, backed by the given search capability

    :param entity: The root typed field of the entity
    :param store: The search capability
    :param index: The index to query
    :param tiebreak: Name of a sortable field with unique values, appended to every sort order
    """

    def __init__(self, entity: TypedField, store: SearchCapability, index: str, tiebreak: str | None = None):
        self.entity = entity
        self.store = store
        self.index = index
        self.tiebreak: SortClause | None = None
        if tiebreak is not None:
            (self.tiebreak,) = parse_sort(entity, [{"field": tiebreak}])

    def descriptor(self, filter: Filter, sort: Sort, **kargs) -> QueryDescriptor:
        return QueryDescriptor(
            filter=parse_filter(self.entity, filter),
            sort=with_tiebreak(parse_sort(self.entity, sort), self.tiebreak),
            **kargs,
        )

    async def _execute(self, descriptor: QueryDescriptor) -> tuple[list[dict[str, Any]], int | None]:
        result = await self.store.execute_query(self.index, descriptor)
        return [shape_document(self.entity, doc) for doc in result.documents], result.total

    async def search(
        self, filter: Filter = None, sort: Sort = None, limit: int | None = DEFAULT_LIMIT
    ) -> list[dict[str, Any]]:
        """Return (at most limit) documents matching the filter, in the requested order"""
        limit = DEFAULT_LIMIT if limit is None else limit
        _check_non_negative(limit=limit)
        documents, _ = await self._execute(self.descriptor(filter, sort, limit=limit))
        return documents

    async def paginate(
        self, filter: Filter = None, sort: Sort = None, offset: int | None = 0, limit: int | None = DEFAULT_LIMIT
    ) -> dict[str, Any]:
        """Return a page of documents as {items, total}. An offset beyond the total gives an empty page"""
        offset, limit = offset or 0, DEFAULT_LIMIT if limit is None else limit
        _check_non_negative(offset=offset, limit=limit)
        descriptor = self.descriptor(filter, sort, limit=limit, offset=offset, track_total=True)
        documents, total = await self._execute(descriptor)
        return pagination_result(documents, total or 0)

    async def connect(
        self, filter: Filter = None, sort: Sort = None, first: int | None = DEFAULT_LIMIT, after: str | None = None
    ) -> dict[str, Any]:
        """
        Return a connection of the first documents after the given cursor.
        Using the endCursor of a page as 'after' gives the next page.

        :raises CursorError: if after is not a cursor issued for this filter and sort order
        """
        first = DEFAULT_LIMIT if first is None else first
        _check_non_negative(first=first)
        descriptor = self.descriptor(filter, sort, limit=first)
        fingerprint = query_fingerprint(descriptor)
        offset = 0 if after is None else decode_cursor(after, fingerprint) + 1
        descriptor = descriptor.model_copy(update=dict(offset=offset, track_total=True))
        documents, total = await self._execute(descriptor)
        return connection_result(documents, offset, total or 0, fingerprint)


def build_resolvers(
    entity: TypedField, store: SearchCapability, index: str, tiebreak: str | None = None
) -> EntityResolvers:
    """Build the search, paginate and connect resolvers for this entity"""
    return EntityResolvers(entity, store, index, tiebreak)
