"""
Translate an elastic field mapping into a tree of TypedFields.

The elastic mapping (https://www.elastic.co/guide/en/elasticsearch/reference/current/mapping-types.html)
is a tree of properties. Leaves have a type (text, keyword, etc.), internal nodes have (nested) properties.
The translation is deterministic: the same mapping and plural fields always give the same tree,
as the tree is printed into the type definitions that are served to clients.
"""

import logging
import re
from typing import Any, Iterable, Mapping

from caseconverter import pascalcase
from elasticsearch import AsyncElasticsearch

from esgraph.models import FieldKind, TypedField
from esgraph.typedefs import COMMON_TYPE_NAMES, entity_type_names


class MappingError(ValueError):
    """The mapping contains a field that cannot be translated"""


# This needs to be a complete list: elastic types that are not in here cannot be served
TYPEMAP_ES_TO_KIND: dict[str, FieldKind] = {
    # TEXT fields
    "text": FieldKind.TEXT,
    "match_only_text": FieldKind.TEXT,
    # KEYWORD fields
    "keyword": FieldKind.KEYWORD,
    "constant_keyword": FieldKind.KEYWORD,
    "wildcard": FieldKind.KEYWORD,
    # INTEGER fields
    "integer": FieldKind.INTEGER,
    "short": FieldKind.INTEGER,
    "byte": FieldKind.INTEGER,
    "long": FieldKind.INTEGER,
    "unsigned_long": FieldKind.INTEGER,
    # NUMBER fields
    "half_float": FieldKind.FLOAT,
    "float": FieldKind.FLOAT,
    "double": FieldKind.FLOAT,
    "scaled_float": FieldKind.FLOAT,
    # OTHER fields
    "date": FieldKind.DATE,
    "geo_point": FieldKind.GEO_POINT,
    "boolean": FieldKind.BOOLEAN,
}

# GraphQL output type per field kind. Long values do not fit in a GraphQL Int (32 bit)
GRAPH_TYPES: dict[FieldKind, str] = {
    FieldKind.TEXT: "String",
    FieldKind.KEYWORD: "String",
    FieldKind.INTEGER: "Int",
    FieldKind.FLOAT: "Float",
    FieldKind.DATE: "Date",
    FieldKind.GEO_POINT: "GeoPoint",
    FieldKind.BOOLEAN: "Boolean",
}
LONG_TYPES = {"long", "unsigned_long"}

OBJECT_TYPES = {"object", "nested"}


def graphql_name(name: str) -> str:
    """Make an elastic field name usable as a GraphQL name (/[_A-Za-z][_0-9A-Za-z]*/)"""
    name = re.sub(r"[^_0-9A-Za-z]", "_", name)
    if not name or name[0].isdigit():
        name = f"_{name}"
    return name


def _leaf_kind(path: str, definition: Mapping[str, Any]) -> FieldKind:
    elastic_type = definition.get("type")
    kind = TYPEMAP_ES_TO_KIND.get(elastic_type)  # type: ignore[arg-type]
    if kind is None:
        raise MappingError(f"Field {path} has unsupported elastic type {elastic_type!r}")
    return kind


def _filter_variant(name: str, path: str, definition: Mapping[str, Any]) -> TypedField | None:
    """
    Return the exact match variant of a (text) field if it has a keyword multi-field,
    e.g. title.keyword becomes title_keyword
    Other multi-fields are validated but not exposed
    """
    subfields = definition.get("fields") or {}
    variant = None
    # prefer the conventional 'keyword' subfield, otherwise take the first keyword subfield by name
    for subname in sorted(subfields, key=lambda n: (n != "keyword", n)):
        subdefinition = subfields[subname]
        subkind = _leaf_kind(f"{path}.{subname}", subdefinition)
        if variant is None and subkind == FieldKind.KEYWORD:
            variant = TypedField(
                name=graphql_name(f"{name}_{subname}"),
                path=f"{path}.{subname}",
                source=path,
                kind=FieldKind.KEYWORD,
                graph_type=GRAPH_TYPES[FieldKind.KEYWORD],
                ignore_above=subdefinition.get("ignore_above"),
            )
    return variant


def _object_type_name(candidate: str, used: set[str]) -> str:
    """Name the type of an object field (and its filter input) so it differs from all other generated types"""
    name, i = candidate, 1
    while name in used or f"{name}Filter" in used:
        name = f"{candidate}Object" if i == 1 else f"{candidate}Object{i}"
        i += 1
    if name != candidate:
        logging.debug(f"Object type {candidate} is already used, naming it {name}")
    used.update([name, f"{name}Filter"])
    return name


def _translate_node(
    name: str,
    path: str,
    definition: Mapping[str, Any],
    type_name: str,
    plural_fields: frozenset[str],
    used: set[str],
) -> TypedField:
    is_list = name in plural_fields or path in plural_fields
    if "properties" in definition or definition.get("type") in OBJECT_TYPES:
        nested = definition.get("type") == "nested"
        if nested:
            is_list = True
        object_type = _object_type_name(f"{type_name}{pascalcase(name)}", used)
        properties = definition.get("properties") or {}
        children = _translate_properties(properties, path, object_type, plural_fields, used)
        return TypedField(
            name=graphql_name(name),
            path=path,
            source=path,
            kind=FieldKind.OBJECT,
            graph_type=object_type,
            is_list=is_list,
            nested=nested,
            children=children,
        )
    kind = _leaf_kind(path, definition)
    graph_type = "Long" if definition.get("type") in LONG_TYPES else GRAPH_TYPES[kind]
    return TypedField(
        name=graphql_name(name),
        path=path,
        source=path,
        kind=kind,
        graph_type=graph_type,
        is_list=is_list,
        filter_variant=_filter_variant(name, path, definition),
        analyzer=definition.get("analyzer"),
    )


def _translate_properties(
    properties: Mapping[str, Any], prefix: str, type_name: str, plural_fields: frozenset[str], used: set[str]
) -> tuple[TypedField, ...]:
    children = []
    names: set[str] = set()
    for name in sorted(properties):
        path = f"{prefix}.{name}" if prefix else name
        field = _translate_node(name, path, properties[name], type_name, plural_fields, used)
        if field.children == ():
            # object fields without (known) properties have nothing to expose
            logging.debug(f"Skipping object field {path} without properties")
            continue
        for new_name in [field.name] + ([field.filter_variant.name] if field.filter_variant else []):
            if new_name in names:
                raise MappingError(f"Field {path} clashes with another field named {new_name}")
            names.add(new_name)
        children.append(field)
    return tuple(children)


def translate(mapping: Mapping[str, Any], plural_fields: Iterable[str] = (), name: str = "Document") -> TypedField:
    """
    Translate an elastic mapping into a TypedField tree

    :param mapping: The elastic mapping, i.e. {"properties": {...}} (or {"mappings": {"properties": ...}})
    :param plural_fields: Names or dotted paths of fields that should be exposed as lists
    :param name: The type name of the entity, used as prefix for the types of object fields
    :return: The root TypedField, with graph_type equal to name
    """
    if "mappings" in mapping:
        mapping = mapping["mappings"]
    if "properties" not in mapping:
        raise MappingError(f"Mapping for {name} has no properties")
    used = set(COMMON_TYPE_NAMES | entity_type_names(name))
    children = _translate_properties(mapping["properties"], "", name, frozenset(plural_fields), used)
    return TypedField(name=name, path="", source="", kind=FieldKind.OBJECT, graph_type=name, children=children)


async def get_index_mapping(elastic: AsyncElasticsearch, index: str) -> dict[str, Any]:
    """Retrieve the mapping of the given index"""
    r = await elastic.indices.get_mapping(index=index)
    # the response is keyed by the concrete index name, which can differ from an alias
    concrete = sorted(r.body.keys())
    if not concrete:
        raise MappingError(f"Index {index} has no mapping")
    return r.body[concrete[0]]["mappings"]
