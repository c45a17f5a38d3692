from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict


######################## DOCUMENT FIELD DEFINITIONS #########################


class FieldKind(str, Enum):
    TEXT = "text"
    KEYWORD = "keyword"
    INTEGER = "integer"
    FLOAT = "float"
    DATE = "date"
    GEO_POINT = "geo_point"
    BOOLEAN = "boolean"
    OBJECT = "object"
    #: the document identity (_id), not part of any mapping
    ID = "id"


class TypedField(BaseModel):
    """
    A field of an indexed entity, translated from the elastic mapping.

    name is the (GraphQL safe) name of the field, path is the name elastic uses in queries,
    and source is the dotted location of the value in the document _source. For most fields
    path and source are identical, but a keyword multi-field (title.keyword) is stored in its
    parent (title).
    """

    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    source: str
    kind: FieldKind
    graph_type: str
    is_list: bool = False
    #: stored as an elastic nested type, i.e. filters should match within a single element
    nested: bool = False
    children: tuple["TypedField", ...] | None = None
    filter_variant: "TypedField | None" = None
    analyzer: str | None = None
    ignore_above: int | None = None

    def child(self, name: str) -> "TypedField | None":
        for child in self.children or ():
            if child.name == name:
                return child
            if child.filter_variant is not None and child.filter_variant.name == name:
                return child.filter_variant
        return None

    def leaves(self):
        """Iterate over all leaf fields (including filter variants) depth first"""
        for child in self.children or ():
            if child.children is not None:
                yield from child.leaves()
            else:
                yield child
                if child.filter_variant is not None:
                    yield child.filter_variant


####################### SEARCH DEFINITIONS #########################

FilterOp = Literal["eq", "in", "gt", "gte", "lt", "lte", "exists", "match", "distance"]


class FieldPredicate(BaseModel):
    """A single operator applied to a single field"""

    model_config = ConfigDict(frozen=True)

    type: Literal["field"] = "field"
    path: str
    source: str
    kind: FieldKind
    op: FilterOp
    value: Any = None


class BoolPredicate(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["and", "or", "not"]
    clauses: tuple["Predicate", ...]


class NestedPredicate(BaseModel):
    """A predicate that should be matched within a single element of a nested (repeated) object"""

    model_config = ConfigDict(frozen=True)

    type: Literal["nested"] = "nested"
    path: str
    clause: "Predicate"


Predicate = Union[FieldPredicate, BoolPredicate, NestedPredicate]


class SortClause(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    source: str
    order: Literal["asc", "desc"] = "asc"


class QueryDescriptor(BaseModel):
    """
    The structured form of a query as handed to a search capability. The capability
    decides how to execute it, e.g. with query.build_body for elastic.
    """

    model_config = ConfigDict(frozen=True)

    filter: Predicate | None = None
    sort: tuple[SortClause, ...] = ()
    limit: int = 10
    offset: int = 0
    track_total: bool = False


class SearchResult(BaseModel):
    """Documents (with _id) as returned by a search capability"""

    documents: list[dict[str, Any]]
    total: int | None = None


BoolPredicate.model_rebuild()
NestedPredicate.model_rebuild()
QueryDescriptor.model_rebuild()
