"""
The capabilities the subgraph needs from the document store, and their elastic implementations.

The resolvers only depend on the SearchCapability and BatchLookupCapability protocols, so any store
that can execute a QueryDescriptor can back the subgraph.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Protocol

from elasticsearch import AsyncElasticsearch

from esgraph.connections import es
from esgraph.documents import shape_document, source_values
from esgraph.models import FieldPredicate, QueryDescriptor, SearchResult, TypedField
from esgraph.query import DOC_ORDER, ID_FIELD, QueryError, build_body, resolve_field

# the default index.max_result_window of elastic
MAX_RESULT_WINDOW = 10000


class SearchCapability(Protocol):
    async def execute_query(self, index: str, descriptor: QueryDescriptor) -> SearchResult: ...


class BatchLookupCapability(Protocol):
    async def lookup_many(self, relation_name: str, ids: Iterable[Any]) -> Mapping[Any, list[dict] | None]: ...


class ElasticSearchCapability:
    """
    Execute query descriptors on elastic. Every call is a single search request.

    :param elastic: Gives the elastic client
    :param max_result_window: The index.max_result_window of the indices: elastic refuses to return hits beyond it
    """

    def __init__(self, elastic: Callable[[], AsyncElasticsearch] = es, max_result_window: int = MAX_RESULT_WINDOW):
        self.elastic = elastic
        self.max_result_window = max_result_window

    async def execute_query(self, index: str, descriptor: QueryDescriptor) -> SearchResult:
        if descriptor.offset >= self.max_result_window:
            return await self._beyond_window(index, descriptor)
        if descriptor.offset + descriptor.limit > self.max_result_window:
            descriptor = descriptor.model_copy(update=dict(limit=self.max_result_window - descriptor.offset))
        body, paging = build_body(descriptor)
        result = await self.elastic().search(index=index, **body, **paging)
        documents = [dict(_id=hit["_id"], **hit.get("_source", {})) for hit in result["hits"]["hits"]]
        total = result["hits"]["total"]["value"] if descriptor.track_total else None
        return SearchResult(documents=documents, total=total)

    async def _beyond_window(self, index: str, descriptor: QueryDescriptor) -> SearchResult:
        """Count the hits of a page that starts past the result window. It is only valid (and empty) past the end"""
        body, paging = build_body(descriptor.model_copy(update=dict(offset=0, limit=0, track_total=True)))
        body.pop("sort", None)
        result = await self.elastic().search(index=index, **body, **paging)
        total = result["hits"]["total"]["value"]
        if total > descriptor.offset:
            raise QueryError(
                f"Cannot retrieve results beyond the first {self.max_result_window} (offset {descriptor.offset} of {total})"
            )
        return SearchResult(documents=[], total=total if descriptor.track_total else None)


@dataclass(frozen=True)
class RelationTarget:
    """The documents in index whose foreign_key field contains the id of a parent are related to that parent"""

    index: str
    entity: TypedField
    foreign_key: TypedField


def relation_target(index: str, entity: TypedField, foreign_key: str) -> RelationTarget:
    field = ID_FIELD if foreign_key == "_id" else resolve_field(entity, foreign_key)
    return RelationTarget(index=index, entity=entity, foreign_key=field)


class SearchRelationLookup:
    """
    Look up related documents for a batch of parent ids with a terms (or ids) query, paging through all hits

    :param search: The search capability to query
    :param relations: relation name to relation target
    :param size: Number of related documents retrieved per search request
    """

    def __init__(self, search: SearchCapability, relations: Mapping[str, RelationTarget], size: int = 1000):
        self.search = search
        self.relations = dict(relations)
        self.size = size

    async def lookup_many(self, relation_name: str, ids: Iterable[Any]) -> dict[Any, list[dict] | None]:
        target = self.relations.get(relation_name)
        if target is None:
            raise ValueError(f"Unknown relation {relation_name!r}")
        ids = list(ids)
        # parent ids come from other subgraphs and may differ in type from the stored values
        by_key: dict[str, list[Any]] = {}
        for id in ids:
            by_key.setdefault(str(id), []).append(id)
        fk = target.foreign_key
        predicate = FieldPredicate(path=fk.path, source=fk.source, kind=fk.kind, op="in", value=tuple(by_key))
        descriptor = QueryDescriptor(filter=predicate, sort=(DOC_ORDER,), limit=self.size, track_total=True)
        documents = await self._retrieve_all(relation_name, target.index, descriptor)

        related: dict[Any, list[dict]] = {id: [] for id in ids}
        for doc in documents:
            shaped = shape_document(target.entity, doc)
            for value in set(str(v) for v in source_values(doc, fk.source)):
                for id in by_key.get(value, []):
                    related[id].append(shaped)
        return {id: (docs or None) for (id, docs) in related.items()}

    async def _retrieve_all(self, relation_name: str, index: str, descriptor: QueryDescriptor) -> list[dict]:
        """Page through all hits of the descriptor"""
        documents: list[dict] = []
        while True:
            result = await self.search.execute_query(index, descriptor.model_copy(update=dict(offset=len(documents))))
            documents += result.documents
            if result.total is None or len(documents) >= result.total:
                return documents
            if not result.documents:
                raise LookupError(
                    f"Relation {relation_name} has {result.total} related documents, but only {len(documents)} were returned"
                )
