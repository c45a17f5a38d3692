import pytest
from pytest import raises

from esgraph.mapping import MappingError, get_index_mapping, graphql_name, translate
from esgraph.models import FieldKind
from tests.conftest import ORDERS_MAPPING, REVIEWS_MAPPING


@pytest.mark.parametrize(
    "elastic_type,kind,graph_type",
    [
        ("text", FieldKind.TEXT, "String"),
        ("match_only_text", FieldKind.TEXT, "String"),
        ("keyword", FieldKind.KEYWORD, "String"),
        ("wildcard", FieldKind.KEYWORD, "String"),
        ("integer", FieldKind.INTEGER, "Int"),
        ("short", FieldKind.INTEGER, "Int"),
        ("long", FieldKind.INTEGER, "Long"),
        ("unsigned_long", FieldKind.INTEGER, "Long"),
        ("half_float", FieldKind.FLOAT, "Float"),
        ("double", FieldKind.FLOAT, "Float"),
        ("scaled_float", FieldKind.FLOAT, "Float"),
        ("date", FieldKind.DATE, "Date"),
        ("geo_point", FieldKind.GEO_POINT, "GeoPoint"),
        ("boolean", FieldKind.BOOLEAN, "Boolean"),
    ],
)
def test_leaf_kinds(elastic_type, kind, graph_type):
    root = translate({"properties": {"x": {"type": elastic_type}}})
    (field,) = root.children
    assert field.kind == kind
    assert field.graph_type == graph_type
    assert field.is_list is False
    assert field.children is None


@pytest.mark.parametrize("elastic_type", ["binary", "ip", "dense_vector", "flattened", None])
def test_unknown_kind(elastic_type):
    with raises(MappingError):
        translate({"properties": {"title": {"type": "text"}, "x": {"type": elastic_type}}})
    # also when the unknown type is deep within an object, or a multi-field
    with raises(MappingError):
        translate({"properties": {"o": {"properties": {"x": {"type": elastic_type}}}}})
    with raises(MappingError):
        translate({"properties": {"t": {"type": "text", "fields": {"x": {"type": elastic_type}}}}})


def test_no_properties():
    with raises(MappingError):
        translate({})


def test_translate(orders):
    assert orders.graph_type == "Order"
    assert [f.name for f in orders.children] == [
        "customer_id",
        "geoip",
        "order_date",
        "paid",
        "products",
        "tags",
        "taxful_total_price",
        "title",
        "year",
    ]
    geoip = orders.child("geoip")
    assert geoip.kind == FieldKind.OBJECT
    assert geoip.graph_type == "OrderGeoip"
    assert geoip.is_list is False
    assert [(f.name, f.path, f.kind) for f in geoip.children] == [
        ("city_name", "geoip.city_name", FieldKind.KEYWORD),
        ("location", "geoip.location", FieldKind.GEO_POINT),
    ]


def test_filter_variant(orders):
    title = orders.child("title")
    assert title.kind == FieldKind.TEXT
    assert title.graph_type == "String"
    variant = title.filter_variant
    assert variant is not None
    assert variant.name == "title_keyword"
    assert variant.path == "title.keyword"
    assert variant.source == "title"
    assert variant.kind == FieldKind.KEYWORD
    assert variant.ignore_above == 256
    assert orders.child("title_keyword") == variant
    assert orders.child("year").filter_variant is None
    product_name = orders.child("products").child("product_name")
    assert product_name.filter_variant.path == "products.product_name.keyword"


def test_plural_fields():
    mapping = {"properties": {"tags": {"type": "keyword"}, "a": {"properties": {"b": {"type": "integer"}}}}}
    root = translate(mapping)
    assert not root.child("tags").is_list
    root = translate(mapping, plural_fields=["tags", "a.b"])
    assert root.child("tags").is_list
    assert not root.child("a").is_list
    assert root.child("a").child("b").is_list


def test_nested():
    mapping = {"properties": {"items": {"type": "nested", "properties": {"sku": {"type": "keyword"}}}}}
    items = translate(mapping).child("items")
    assert items.is_list
    assert items.nested
    # plain objects are only lists if they are declared plural
    mapping = {"properties": {"items": {"type": "object", "properties": {"sku": {"type": "keyword"}}}}}
    items = translate(mapping, plural_fields=["items"]).child("items")
    assert items.is_list
    assert not items.nested


def test_empty_object_is_skipped():
    root = translate({"properties": {"meta": {"type": "object"}, "x": {"type": "keyword"}}})
    assert [f.name for f in root.children] == ["x"]


def test_names():
    assert graphql_name("user-name") == "user_name"
    assert graphql_name("3d") == "_3d"
    root = translate({"properties": {"@timestamp": {"type": "date"}}})
    (field,) = root.children
    assert field.name == "_timestamp"
    assert field.path == "@timestamp"
    with raises(MappingError):
        translate({"properties": {"a-b": {"type": "keyword"}, "a_b": {"type": "keyword"}}})


def test_object_type_names():
    """Object types get a name that differs from the other types generated for the entity"""
    obj = {"properties": {"page": {"type": "integer"}}}
    mapping = {
        "properties": {
            "title": {"type": "keyword"},
            "pagination": obj,
            "filter": obj,
            "geo_ip": obj,
            "geoIp": obj,
            "user": {"properties": {"info": obj}},
        }
    }
    root = translate(mapping, name="Doc")
    assert root.child("pagination").graph_type == "DocPaginationObject"
    assert root.child("filter").graph_type == "DocFilterObject"
    assert {root.child("geo_ip").graph_type, root.child("geoIp").graph_type} == {"DocGeoIp", "DocGeoIpObject"}
    assert root.child("user").child("info").graph_type == "DocUserInfo"
    # an entity named Page would otherwise generate PageInfo
    assert translate({"properties": {"info": obj}}, name="Page").child("info").graph_type == "PageInfoObject"


def test_deterministic():
    reordered = {"properties": dict(reversed(list(ORDERS_MAPPING["properties"].items())))}
    assert translate(ORDERS_MAPPING, ["tags"], "Order") == translate(reordered, ["tags"], "Order")


def test_mappings_wrapper():
    root = translate(REVIEWS_MAPPING, name="Review")
    assert [f.name for f in root.children] == ["order_id", "rating", "text", "views"]


class FakeIndices:
    def __init__(self, body):
        self.body = body

    async def get_mapping(self, index):
        return self


class FakeElastic:
    def __init__(self, body):
        self.indices = FakeIndices(body)


@pytest.mark.anyio
async def test_get_index_mapping():
    body = {"reviews-2": REVIEWS_MAPPING, "reviews-1": REVIEWS_MAPPING}
    mapping = await get_index_mapping(FakeElastic(body), "reviews")  # type: ignore[arg-type]
    assert mapping == REVIEWS_MAPPING["mappings"]
    with raises(MappingError):
        await get_index_mapping(FakeElastic({}), "reviews")  # type: ignore[arg-type]
