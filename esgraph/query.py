"""
All things query

Filters and sort orders are given by the client in terms of the typed fields of an entity. They are validated
and converted into a QueryDescriptor (see models.py), which build_body translates into an elastic query body.
"""

from typing import Any, Iterable, Mapping, Tuple

from esgraph.models import (
    BoolPredicate,
    FieldKind,
    FieldPredicate,
    NestedPredicate,
    Predicate,
    QueryDescriptor,
    SortClause,
    TypedField,
)


class QueryError(ValueError):
    """A filter or sort refers to an unknown field or uses an operator that does not fit the field"""


RANGE_OPS = ("gt", "gte", "lt", "lte")

# which operators are allowed for each field kind
ALLOWED_OPS: dict[FieldKind, set[str]] = {
    FieldKind.TEXT: {"match", "exists"},
    FieldKind.KEYWORD: {"eq", "in", "exists"},
    FieldKind.INTEGER: {"eq", "in", "exists", *RANGE_OPS},
    FieldKind.FLOAT: {"eq", "in", "exists", *RANGE_OPS},
    FieldKind.DATE: {"eq", "in", "exists", *RANGE_OPS},
    FieldKind.BOOLEAN: {"eq", "exists"},
    FieldKind.GEO_POINT: {"distance", "exists"},
    FieldKind.ID: {"eq", "in"},
}

SORTABLE_KINDS = {FieldKind.KEYWORD, FieldKind.INTEGER, FieldKind.FLOAT, FieldKind.DATE, FieldKind.BOOLEAN}

COMBINATORS = {"AND": "and", "OR": "or", "NOT": "not"}

ID_FIELD = TypedField(name="_id", path="_id", source="_id", kind=FieldKind.ID, graph_type="ID")

# Index order: the tie-break of last resort, so pages never overlap
DOC_ORDER = SortClause(path="_doc", source="_doc")


def _standardize_operators(field: TypedField, value: Any) -> dict[str, Any]:
    """Convert filter shorthand to operator format: "x" -> {eq: "x"}, ["x", "y"] -> {in: ["x", "y"]}"""
    if isinstance(value, Mapping):
        return {op: v for (op, v) in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return {"in": list(value)}
    if field.kind == FieldKind.TEXT:
        return {"match": value}
    return {"eq": value}


def _parse_field_filter(field: TypedField, value: Any) -> list[Predicate]:
    ops = _standardize_operators(field, value)
    if not ops:
        return []
    unknown = set(ops) - ALLOWED_OPS[field.kind]
    if unknown:
        raise QueryError(
            f"Filter on {field.name} ({field.kind.value}) cannot use {', '.join(sorted(unknown))};"
            f" allowed: {', '.join(sorted(ALLOWED_OPS[field.kind]))}"
        )
    result: list[Predicate] = []
    for op, v in ops.items():
        if op == "in" and not isinstance(v, (list, tuple)):
            raise QueryError(f"Filter {field.name}.in should be a list, not {v!r}")
        if op == "distance":
            v = _parse_distance(field, v)
        if op == "in":
            v = tuple(v)
        result.append(FieldPredicate(path=field.path, source=field.source, kind=field.kind, op=op, value=v))
    return result


def _parse_distance(field: TypedField, value: Any) -> dict[str, Any]:
    if not isinstance(value, Mapping) or not {"lat", "lon", "distance"} <= set(value):
        raise QueryError(f"Distance filter on {field.name} needs lat, lon and distance, not {value!r}")
    return {"lat": float(value["lat"]), "lon": float(value["lon"]), "distance": str(value["distance"])}


def _combine(clauses: list[Predicate]) -> Predicate | None:
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return BoolPredicate(type="and", clauses=tuple(clauses))


def _parse_object_filter(entity: TypedField, filter: Mapping[str, Any], root: bool) -> list[Predicate]:
    if not isinstance(filter, Mapping):
        raise QueryError(f"Filter on {entity.name} should be an object, not {filter!r}")
    clauses: list[Predicate] = []
    for key in sorted(filter):
        value = filter[key]
        if value is None:
            continue
        if root and key in COMBINATORS:
            clauses.extend(_parse_combinator(entity, COMBINATORS[key], value))
            continue
        if root and key == "_id":
            clauses.extend(_parse_field_filter(ID_FIELD, value))
            continue
        field = entity.child(key)
        if field is None:
            raise QueryError(f"Cannot filter on unknown field {key!r} of {entity.graph_type}")
        if field.children is not None:
            sub = _combine(_parse_object_filter(field, value, root=False))
            if sub is None:
                continue
            if field.nested:
                # conditions on a nested field should hold for the same element
                sub = NestedPredicate(path=field.path, clause=sub)
            clauses.append(sub)
        else:
            clauses.extend(_parse_field_filter(field, value))
    return clauses


def _parse_combinator(entity: TypedField, type: str, value: Any) -> list[Predicate]:
    if type == "not":
        inner = _combine(_parse_object_filter(entity, value, root=True))
        return [] if inner is None else [BoolPredicate(type="not", clauses=(inner,))]
    if isinstance(value, Mapping):
        value = [value]
    parts = [_combine(_parse_object_filter(entity, v, root=True)) for v in value]
    clauses = tuple(p for p in parts if p is not None)
    if not clauses:
        return []
    return [BoolPredicate(type=type, clauses=clauses)]  # type: ignore[arg-type]


def parse_filter(entity: TypedField, filter: Mapping[str, Any] | None) -> Predicate | None:
    """
    Validate a client filter against the fields of this entity and convert it into a Predicate

    A filter is a dict of field name to operators, e.g. {"year": {"gte": 2000}, "party": {"in": ["a", "b"]}}.
    As shorthand, a value is an equality filter (or a match filter on text fields) and a list is an 'in' filter.
    Object fields take a dict of filters on their subfields, and AND, OR and NOT combine filters.

    :raises QueryError: if a field does not exist or the operator cannot be used on that field
    """
    if not filter:
        return None
    return _combine(_parse_object_filter(entity, filter, root=True))


def resolve_field(entity: TypedField, name: str) -> TypedField:
    """Find a leaf field by its (GraphQL) name, dotted name (geoip.city_name) or filter variant name (title_keyword)"""
    parts = name.split(".")
    node: TypedField | None = entity
    for part in parts:
        node = node.child(part) if node is not None else None
    if node is None:
        for leaf in entity.leaves():
            if leaf.path == name:
                return leaf
        raise QueryError(f"Unknown field {name!r} of {entity.graph_type}")
    return node


def parse_sort(entity: TypedField, sort: Iterable[Mapping[str, Any]] | None) -> list[SortClause]:
    """
    Convert a client sort argument ([{field: "year", direction: "DESC"}, ...]) into SortClauses

    :raises QueryError: if a field does not exist or cannot be sorted on (text and object fields)
    """
    result = []
    for s in sort or []:
        if "field" not in s:
            raise QueryError(f"Sort clause should have a field: {s!r}")
        field = resolve_field(entity, s["field"])
        if field.kind not in SORTABLE_KINDS:
            hint = f", use {field.filter_variant.name} instead" if field.filter_variant else ""
            raise QueryError(f"Cannot sort on {field.kind.value} field {s['field']!r}{hint}")
        direction = str(s.get("direction") or "ASC").lower()
        if direction not in ("asc", "desc"):
            raise QueryError(f"Sort direction should be ASC or DESC, not {s.get('direction')!r}")
        result.append(SortClause(path=field.path, source=field.source, order=direction))  # type: ignore[arg-type]
    return result


def with_tiebreak(sort: list[SortClause], tiebreak: SortClause | None) -> tuple[SortClause, ...]:
    """Add the tiebreak clause(s) to the sort order, so documents with equal sort values have a fixed order"""
    clauses = list(sort)
    for clause in [tiebreak, DOC_ORDER]:
        if clause is not None and all(c.path != clause.path for c in clauses):
            clauses.append(clause)
    return tuple(clauses)


########################## ELASTIC QUERY DSL #############################


def _field_query(p: FieldPredicate) -> dict:
    if p.kind == FieldKind.ID:
        return {"ids": {"values": [p.value] if p.op == "eq" else list(p.value)}}
    if p.op == "eq":
        return {"term": {p.path: p.value}}
    if p.op == "in":
        return {"terms": {p.path: list(p.value)}}
    if p.op == "match":
        return {"match": {p.path: p.value}}
    if p.op == "exists":
        if p.value:
            return {"exists": {"field": p.path}}
        return {"bool": {"must_not": {"exists": {"field": p.path}}}}
    if p.op == "distance":
        return {"geo_distance": {"distance": p.value["distance"], p.path: {"lat": p.value["lat"], "lon": p.value["lon"]}}}
    if p.op in RANGE_OPS:
        return {"range": {p.path: {p.op: p.value}}}
    raise QueryError(f"Unknown filter operator {p.op}")


def _merge_ranges(queries: list[dict]) -> list[dict]:
    """Merge range queries on the same field, i.e. {gt: 1} and {lt: 5} become {gt: 1, lt: 5}"""
    result: list[dict] = []
    ranges: dict[str, dict] = {}
    for q in queries:
        if "range" in q:
            ((field, condition),) = q["range"].items()
            if field in ranges:
                ranges[field].update(condition)
                continue
            ranges[field] = dict(condition)
            q = {"range": {field: ranges[field]}}
        result.append(q)
    return result


def predicate_query(predicate: Predicate) -> dict:
    """Translate a predicate into an elastic query"""
    if isinstance(predicate, FieldPredicate):
        return _field_query(predicate)
    if isinstance(predicate, NestedPredicate):
        return {"nested": {"path": predicate.path, "query": predicate_query(predicate.clause)}}
    clauses = [predicate_query(c) for c in predicate.clauses]
    if predicate.type == "and":
        return {"bool": {"filter": _merge_ranges(clauses)}}
    if predicate.type == "or":
        return {"bool": {"should": clauses, "minimum_should_match": 1}}
    return {"bool": {"must_not": clauses}}


def build_body(descriptor: QueryDescriptor) -> Tuple[dict[str, Any], dict[str, Any]]:
    """
    Translate a query descriptor into the arguments for elastic search()

    :return: a tuple of the query body (query and sort) and the paging arguments (size, from_, track_total_hits)
    """
    if descriptor.filter is None:
        query: dict[str, Any] = {"match_all": {}}
    else:
        query = {"bool": {"filter": [predicate_query(descriptor.filter)]}}
    body: dict[str, Any] = {"query": query}
    if descriptor.sort:
        body["sort"] = [{s.path: {"order": s.order}} for s in descriptor.sort]
    paging: dict[str, Any] = {"size": descriptor.limit, "track_total_hits": descriptor.track_total}
    if descriptor.offset:
        paging["from_"] = descriptor.offset
    return body, paging
