from types import SimpleNamespace

import pytest
from pytest import raises

from esgraph import connections
from esgraph.models import FieldPredicate, QueryDescriptor, SearchResult, SortClause
from esgraph.query import DOC_ORDER, QueryError
from esgraph.relations import RelationDispatcher, RelationLookupError
from esgraph.resolvers import build_resolvers
from esgraph.store import ElasticSearchCapability, SearchRelationLookup, relation_target
from esgraph.subgraph import create_subgraph
from tests.conftest import ORDERS_INDEX, ORDERS_MAPPING, make_settings


class FakeIndices:
    def __init__(self, mappings):
        self.mappings = mappings

    async def get_mapping(self, index):
        return SimpleNamespace(body={f"{index}-000001": {"mappings": self.mappings[index]}})


class FakeElastic:
    """Records search requests and answers them with the given hits"""

    def __init__(self, hits, mappings=None):
        self.hits = hits
        self.requests = []
        self.indices = FakeIndices(mappings or {})

    async def search(self, **kargs):
        self.requests.append(kargs)
        size, offset = kargs.get("size", 10), kargs.get("from_", 0)
        return {"hits": {"total": {"value": len(self.hits)}, "hits": self.hits[offset : offset + size]}}


HITS = [
    {"_id": "1", "_source": {"title": "Foo", "products": [{"product_id": "p1"}]}},
    {"_id": "2", "_source": {"title": "Bar", "products": [{"product_id": "p1"}, {"product_id": "p2"}]}},
    {"_id": "3"},
]


@pytest.mark.anyio
async def test_execute_query():
    elastic = FakeElastic(HITS)
    capability = ElasticSearchCapability(lambda: elastic)  # type: ignore[arg-type, return-value]
    predicate = FieldPredicate(path="title.keyword", source="title", kind="keyword", op="eq", value="Foo")
    descriptor = QueryDescriptor(filter=predicate, sort=(SortClause(path="year", source="year"), DOC_ORDER), limit=2)
    result = await capability.execute_query("orders", descriptor)
    assert result.documents == [{"_id": "1", "title": "Foo", "products": [{"product_id": "p1"}]}, HITS[1]["_source"] | {"_id": "2"}]
    assert result.total is None
    (request,) = elastic.requests
    assert request == {
        "index": "orders",
        "query": {"bool": {"filter": [{"term": {"title.keyword": "Foo"}}]}},
        "sort": [{"year": {"order": "asc"}}, {"_doc": {"order": "asc"}}],
        "size": 2,
        "track_total_hits": False,
    }

    result = await capability.execute_query("orders", QueryDescriptor(offset=2, track_total=True))
    assert result.documents == [{"_id": "3"}]
    assert result.total == 3
    assert elastic.requests[-1]["from_"] == 2


@pytest.mark.anyio
async def test_search_relation_lookup(orders):
    elastic = FakeElastic(HITS)
    targets = {"productOrders": relation_target(ORDERS_INDEX, orders, "products.product_id")}
    lookup = SearchRelationLookup(ElasticSearchCapability(lambda: elastic), targets, size=50)  # type: ignore
    result = await lookup.lookup_many("productOrders", ["p1", "p2", "p3"])
    assert [d["_id"] for d in result["p1"]] == ["1", "2"]
    assert [d["_id"] for d in result["p2"]] == ["2"]
    assert result["p3"] is None
    # documents are shaped to the entity
    assert result["p2"][0]["products"] == [{"product_id": "p1", "product_name": None, "price": None},
                                           {"product_id": "p2", "product_name": None, "price": None}]
    (request,) = elastic.requests
    assert request["query"] == {"bool": {"filter": [{"terms": {"products.product_id": ["p1", "p2", "p3"]}}]}}
    assert request["size"] == 50


@pytest.mark.anyio
async def test_lookup_numeric_ids(orders):
    """Parent ids from other subgraphs can differ in type from the stored values"""
    hits = [{"_id": "1", "_source": {"year": 2020}}]
    targets = {"byYear": relation_target(ORDERS_INDEX, orders, "year")}
    lookup = SearchRelationLookup(ElasticSearchCapability(lambda: FakeElastic(hits)), targets)  # type: ignore
    result = await lookup.lookup_many("byYear", ["2020", 2020])
    assert [d["_id"] for d in result["2020"]] == ["1"]
    assert [d["_id"] for d in result[2020]] == ["1"]


@pytest.mark.anyio
async def test_create_subgraph_from_elastic():
    settings = make_settings()
    settings.entities[0].mapping = None
    elastic = FakeElastic(HITS, mappings={ORDERS_INDEX: ORDERS_MAPPING})
    subgraph = await create_subgraph(settings, elastic)  # type: ignore[arg-type]
    assert "Order" in subgraph.schema.entity_keys
    # without a connection, all mappings need to be configured
    with raises(ValueError):
        await create_subgraph(settings)


@pytest.mark.anyio
async def test_elastic_connection(monkeypatch):
    class Client:
        closed = False

        async def ping(self):
            return True

        async def close(self):
            self.closed = True

    client = Client()
    monkeypatch.setattr(connections, "_client", lambda settings: client)
    with raises(ConnectionError):
        connections.es()
    async with connections.elastic_connection() as elastic:
        assert elastic is client
        assert connections.es() is client
    assert client.closed
    with raises(ConnectionError):
        connections.es()


@pytest.mark.anyio
async def test_beyond_result_window(orders):
    elastic = FakeElastic(HITS)
    capability = ElasticSearchCapability(lambda: elastic)  # type: ignore[arg-type, return-value]
    page = await build_resolvers(orders, capability, ORDERS_INDEX).paginate(offset=20000, limit=10)
    assert page == {"items": [], "total": 3}
    # a single request that only counts the hits
    (request,) = elastic.requests
    assert request["size"] == 0
    assert request["track_total_hits"] is True
    assert "from_" not in request

    capability = ElasticSearchCapability(lambda: elastic, max_result_window=2)  # type: ignore[arg-type, return-value]
    # pages that run over the window are cut short at the window
    result = await capability.execute_query(ORDERS_INDEX, QueryDescriptor(offset=1, limit=10))
    assert [d["_id"] for d in result.documents] == ["2"]
    assert elastic.requests[-1]["size"] == 1
    # hits past the window cannot be retrieved
    with raises(QueryError):
        await capability.execute_query(ORDERS_INDEX, QueryDescriptor(offset=2))


@pytest.mark.anyio
async def test_lookup_pages_through_related(orders, store):
    targets = {"customerOrders": relation_target(ORDERS_INDEX, orders, "customer_id")}
    lookup = SearchRelationLookup(store, targets, size=2)
    result = await lookup.lookup_many("customerOrders", ["c1", "c2", "c3"])
    assert {id: [d["_id"] for d in docs] for (id, docs) in result.items()} == {
        "c1": ["1", "2"],
        "c2": ["3", "5"],
        "c3": ["4"],
    }
    assert [q.offset for (_, q) in store.queries] == [0, 2, 4]


class TruncatingStore:
    """Reports all hits in the total, but returns no documents after the first max_documents"""

    def __init__(self, store, max_documents: int):
        self.store = store
        self.max_documents = max_documents

    async def execute_query(self, index, descriptor):
        result = await self.store.execute_query(index, descriptor)
        documents = result.documents[: max(0, self.max_documents - descriptor.offset)]
        return SearchResult(documents=documents, total=result.total)


@pytest.mark.anyio
async def test_incomplete_lookup_fails(orders, store):
    """If not all related documents can be retrieved, the relation fails rather than resolving to null"""
    targets = {"customerOrders": relation_target(ORDERS_INDEX, orders, "customer_id")}
    lookup = SearchRelationLookup(TruncatingStore(store, max_documents=2), targets, size=2)
    with raises(LookupError):
        await lookup.lookup_many("customerOrders", ["c1", "c3"])
    dispatcher = RelationDispatcher(lookup)
    with raises(RelationLookupError):
        await dispatcher.resolve("c3", "customerOrders")

    # elastic cannot page past the result window
    hits = [{"_id": str(i), "_source": {"customer_id": "c1"}} for i in range(5)]
    capability = ElasticSearchCapability(lambda: FakeElastic(hits), max_result_window=3)  # type: ignore
    lookup = SearchRelationLookup(capability, targets, size=2)
    with raises(QueryError):
        await lookup.lookup_many("customerOrders", ["c1"])
