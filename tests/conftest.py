import pytest
from httpx import ASGITransport, AsyncClient

from esgraph.api import create_app
from esgraph.config import Settings
from esgraph.mapping import translate
from esgraph.subgraph import create_subgraph
from tests.tools import MemoryStore

ORDERS_INDEX = "esgraph_unittest_orders"
REVIEWS_INDEX = "esgraph_unittest_reviews"

ORDERS_MAPPING = {
    "properties": {
        "title": {"type": "text", "fields": {"keyword": {"type": "keyword", "ignore_above": 256}}},
        "customer_id": {"type": "keyword"},
        "year": {"type": "integer"},
        "taxful_total_price": {"type": "half_float"},
        "order_date": {"type": "date"},
        "paid": {"type": "boolean"},
        "geoip": {
            "properties": {
                "city_name": {"type": "keyword"},
                "location": {"type": "geo_point"},
            }
        },
        "products": {
            "properties": {
                "product_id": {"type": "keyword"},
                "product_name": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
                "price": {"type": "float"},
            }
        },
        "tags": {"type": "keyword"},
    }
}

REVIEWS_MAPPING = {
    "mappings": {
        "properties": {
            "order_id": {"type": "keyword"},
            "rating": {"type": "integer"},
            "text": {"type": "text"},
            "views": {"type": "long"},
        }
    }
}

ORDERS = [
    {
        "_id": "1",
        "title": "Foo",
        "customer_id": "c1",
        "year": 2020,
        "taxful_total_price": 10.5,
        "order_date": "2020-01-01",
        "paid": True,
        "geoip": {"city_name": "Amsterdam", "location": {"lat": 52.37, "lon": 4.89}},
        "products": [{"product_id": "p1", "product_name": "Red shirt", "price": 5.0}],
        "tags": ["a"],
    },
    {
        "_id": "2",
        "title": "Foo bar",
        "customer_id": "c1",
        "year": 2021,
        "taxful_total_price": 30.0,
        "order_date": "2021-03-01",
        "paid": False,
        "geoip": {"city_name": "Utrecht", "location": [5.12, 52.09]},
        "products": [
            {"product_id": "p1", "product_name": "Red shirt", "price": 5.0},
            {"product_id": "p2", "product_name": "Blue shirt", "price": 25.0},
        ],
        "tags": ["a", "b"],
    },
    {
        "_id": "3",
        "title": "Bar",
        "customer_id": "c2",
        "year": 2021,
        "taxful_total_price": 12.0,
        "order_date": "2021-06-01",
        "paid": True,
        "geoip": {"city_name": "Amsterdam", "location": "52.36,4.90"},
        "products": {"product_id": "p3", "product_name": "Green hat", "price": 12.0},
        "tags": "b",
    },
    {
        "_id": "4",
        "title": "Baz",
        "customer_id": "c3",
        "year": 2022,
        "taxful_total_price": 25.0,
        "order_date": "2022-02-01",
        "paid": True,
        "products": [{"product_id": "p2", "product_name": "Blue shirt", "price": 25.0}],
    },
    {
        "_id": "5",
        "title": "foo",
        "customer_id": "c2",
        "year": 2023,
        "taxful_total_price": 7.25,
        "order_date": "2023-01-01",
        "paid": False,
        "products": [],
        "tags": [],
    },
]

REVIEWS = [
    {"_id": "r1", "order_id": "1", "rating": 4, "text": "fine shirt", "views": 5000000000},
    {"_id": "r2", "order_id": "2", "rating": 2, "text": "too blue"},
    {"_id": "r3", "order_id": "1", "rating": 5, "text": "great"},
]


def make_settings(**kargs) -> Settings:
    entities = [
        dict(
            type_name="Order",
            index=ORDERS_INDEX,
            plural_fields=["products", "tags"],
            mapping=ORDERS_MAPPING,
        ),
        dict(type_name="Review", index=REVIEWS_INDEX, mapping=REVIEWS_MAPPING),
    ]
    relations = {
        "productOrders": dict(entity="Order", foreign_key="products.product_id"),
        "customerOrders": dict(entity="Order", foreign_key="customer_id"),
        "orderReviews": dict(entity="Review", foreign_key="order_id"),
    }
    extensions = [
        dict(type_name="Product", key_fields=["id"], added_fields={"orders": dict(relation="productOrders")}),
        dict(
            type_name="Customer",
            key_fields=["id"],
            external_fields={"name": "String"},
            added_fields={
                "orders": dict(relation="customerOrders"),
                "firstOrder": dict(relation="customerOrders", return_type="Order"),
            },
        ),
    ]
    return Settings(**{**dict(entities=entities, relations=relations, extensions=extensions), **kargs})


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def orders():
    return translate(ORDERS_MAPPING, plural_fields=["products", "tags"], name="Order")


@pytest.fixture()
def store():
    return MemoryStore({ORDERS_INDEX: ORDERS, REVIEWS_INDEX: REVIEWS})


@pytest.fixture()
def settings():
    return make_settings()


@pytest.fixture()
async def subgraph(settings, store):
    return await create_subgraph(settings, store=store)


@pytest.fixture()
async def client(subgraph):
    app = create_app(subgraph)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
