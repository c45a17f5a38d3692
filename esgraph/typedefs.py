"""
GraphQL type definitions for entities

Every entity gets an object type (plus one per object field), a filter input type, a sort input type,
pagination and connection types, and three query fields. The definitions shared by all entities
(scalars, operator filters, PageInfo) are in COMMON_TYPEDEFS, which is included in the definitions of
every entity so each set of definitions is valid by itself.
"""

import datetime
from dataclasses import dataclass
from typing import Any

from ariadne import ScalarType
from graphql import parse

from esgraph.models import FieldKind, TypedField

DEFAULT_LIMIT = 10

COMMON_TYPEDEFS = '''
scalar Date
scalar Long

type GeoPoint {
  lat: Float!
  lon: Float!
}

enum SortDirection {
  ASC
  DESC
}

type PageInfo {
  hasNextPage: Boolean!
  hasPreviousPage: Boolean!
  startCursor: String
  endCursor: String
}

input IdFilter {
  eq: ID
  in: [ID!]
}

"Full text search in an analyzed text field"
input TextFilter {
  match: String
  exists: Boolean
}

input KeywordFilter {
  eq: String
  in: [String!]
  exists: Boolean
}

input IntFilter {
  eq: Int
  in: [Int!]
  gt: Int
  gte: Int
  lt: Int
  lte: Int
  exists: Boolean
}

input LongFilter {
  eq: Long
  in: [Long!]
  gt: Long
  gte: Long
  lt: Long
  lte: Long
  exists: Boolean
}

input FloatFilter {
  eq: Float
  in: [Float!]
  gt: Float
  gte: Float
  lt: Float
  lte: Float
  exists: Boolean
}

input DateFilter {
  eq: Date
  in: [Date!]
  gt: Date
  gte: Date
  lt: Date
  lte: Date
  exists: Boolean
}

input BooleanFilter {
  eq: Boolean
  exists: Boolean
}

"Points within the given distance (e.g. 10km) of lat, lon"
input GeoDistance {
  lat: Float!
  lon: Float!
  distance: String!
}

input GeoPointFilter {
  distance: GeoDistance
  exists: Boolean
}
'''

COMMON_TYPE_NAMES = frozenset(d.name.value for d in parse(COMMON_TYPEDEFS).definitions)  # type: ignore[attr-defined]

FILTER_TYPES: dict[FieldKind, str] = {
    FieldKind.TEXT: "TextFilter",
    FieldKind.KEYWORD: "KeywordFilter",
    FieldKind.INTEGER: "IntFilter",
    FieldKind.FLOAT: "FloatFilter",
    FieldKind.DATE: "DateFilter",
    FieldKind.BOOLEAN: "BooleanFilter",
    FieldKind.GEO_POINT: "GeoPointFilter",
}


def _serialize_date(value: Any) -> str:
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return str(value)


date_scalar = ScalarType("Date", serializer=_serialize_date)
long_scalar = ScalarType("Long", serializer=int, value_parser=int)

SCALARS = [date_scalar, long_scalar]


@dataclass(frozen=True)
class QueryFieldNames:
    search: str
    pagination: str
    connection: str


def query_field_names(type_name: str) -> QueryFieldNames:
    """The names of the query fields of an entity, e.g. ecommerceSearch, ecommercePagination, ecommerceConnection"""
    prefix = type_name[0].lower() + type_name[1:]
    return QueryFieldNames(f"{prefix}Search", f"{prefix}Pagination", f"{prefix}Connection")


def entity_type_names(type_name: str) -> frozenset[str]:
    """The names of the types generated for the entity itself (not for its object fields)"""
    suffixes = ["", "Filter", "Sort", "Pagination", "Edge", "Connection"]
    return frozenset(f"{type_name}{suffix}" for suffix in suffixes)


def _output_type(field: TypedField) -> str:
    return f"[{field.graph_type}]" if field.is_list else field.graph_type


def _filter_type(field: TypedField) -> str:
    if field.children is not None:
        return f"{field.graph_type}Filter"
    if field.graph_type == "Long":
        return "LongFilter"
    return FILTER_TYPES[field.kind]


def _object_types(node: TypedField, root: bool) -> list[str]:
    """Object type definitions for this node and its object fields"""
    directive = ' @key(fields: "_id")' if root else ""
    lines = [f"type {node.graph_type}{directive} {{"]
    if root:
        lines.append("  _id: ID!")
    lines += [f"  {f.name}: {_output_type(f)}" for f in node.children or ()]
    lines.append("}")
    result = ["\n".join(lines)]
    for field in node.children or ():
        if field.children is not None:
            result += _object_types(field, root=False)
    return result


def _filter_types(node: TypedField, root: bool) -> list[str]:
    name = f"{node.graph_type}Filter"
    lines = [f"input {name} {{"]
    if root:
        lines += [f"  AND: [{name}!]", f"  OR: [{name}!]", f"  NOT: {name}", "  _id: IdFilter"]
    for field in node.children or ():
        lines.append(f"  {field.name}: {_filter_type(field)}")
        if field.filter_variant is not None:
            lines.append(f"  {field.filter_variant.name}: {_filter_type(field.filter_variant)}")
    lines.append("}")
    result = ["\n".join(lines)]
    for field in node.children or ():
        if field.children is not None:
            result += _filter_types(field, root=False)
    return result


def entity_type_definitions(entity: TypedField) -> str:
    """Render the type definitions (SDL) for this entity, including the common definitions"""
    t = entity.graph_type
    names = query_field_names(t)
    args = f"filter: {t}Filter, sort: [{t}Sort!]"
    definitions = [COMMON_TYPEDEFS.strip()]
    definitions += _object_types(entity, root=True)
    definitions += _filter_types(entity, root=True)
    definitions.append(
        f'''"Sort on a sortable field, by name (year), path (geoip.city_name) or exact variant (title_keyword)"
input {t}Sort {{
  field: String!
  direction: SortDirection = ASC
}}

type {t}Pagination {{
  items: [{t}!]!
  total: Int!
}}

type {t}Edge {{
  node: {t}!
  cursor: String!
}}

type {t}Connection {{
  edges: [{t}Edge!]!
  pageInfo: PageInfo!
  totalCount: Int!
}}

type Query {{
  {names.search}({args}, limit: Int = {DEFAULT_LIMIT}): [{t}!]
  {names.pagination}({args}, offset: Int = 0, limit: Int = {DEFAULT_LIMIT}): {t}Pagination
  {names.connection}({args}, first: Int = {DEFAULT_LIMIT}, after: String): {t}Connection
}}'''
    )
    return "\n\n".join(definitions) + "\n"
