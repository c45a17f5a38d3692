"""
Merging subgraph units into a federated schema

A subgraph unit consists of type definitions (SDL) and the resolver bindings for its fields.
merge() combines the units of all entities and the extensions of types owned by other subgraphs
into a single, immutable, executable (ariadne) federated schema.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping

from ariadne import ObjectType, QueryType
from ariadne.contrib.federation import FederatedObjectType, make_federated_schema
from graphql import (
    DocumentNode,
    GraphQLSchema,
    InputObjectTypeDefinitionNode,
    ObjectTypeDefinitionNode,
    TypeDefinitionNode,
    parse,
    print_ast,
)

from esgraph.typedefs import COMMON_TYPE_NAMES, SCALARS

#: field name of the bindings that resolve entity references (_entities) for a type
REFERENCE_FIELD = "__reference"


class MergeConflictError(Exception):
    """The units and extensions cannot be combined into a single unambiguous schema"""


class ResolverKind(str, Enum):
    SEARCH = "search"
    PAGINATE = "paginate"
    CONNECT = "connect"
    REFERENCE = "reference"
    RELATION = "relation"


@dataclass(frozen=True)
class ResolverBinding:
    """The resolver of one field of one type"""

    type_name: str
    field_name: str
    kind: ResolverKind
    resolve: Callable


@dataclass(frozen=True)
class SubgraphUnit:
    type_definitions: str
    bindings: tuple[ResolverBinding, ...] = ()

    @property
    def resolver_map(self) -> dict[str, dict[str, Callable]]:
        result: dict[str, dict[str, Callable]] = {}
        for b in self.bindings:
            result.setdefault(b.type_name, {})[b.field_name] = b.resolve
        return result


@dataclass(frozen=True)
class AddedField:
    return_type: str
    resolver: Callable


@dataclass(frozen=True)
class FederationExtension:
    """
    A type owned by another subgraph, extended with fields resolved by this subgraph

    :param key_fields: the fields that identify an instance of the type (its federation @key)
    :param external_fields: the fields of the owning subgraph used here (name -> GraphQL type).
                            Key fields that are not listed are ID!
    :param added_fields: the fields added by this subgraph
    """

    type_name: str
    key_fields: tuple[str, ...] = ("id",)
    external_fields: Mapping[str, str] = field(default_factory=dict)
    added_fields: Mapping[str, AddedField] = field(default_factory=dict)

    def type_definition(self) -> str:
        external = {k: "ID!" for k in self.key_fields}
        external.update(self.external_fields)
        lines = [f'type {self.type_name} @key(fields: "{" ".join(self.key_fields)}") @extends {{']
        lines += [f"  {name}: {type} @external" for (name, type) in external.items()]
        lines += [f"  {name}: {f.return_type}" for (name, f) in self.added_fields.items()]
        lines.append("}")
        return "\n".join(lines)

    def bindings(self) -> tuple[ResolverBinding, ...]:
        return tuple(
            ResolverBinding(self.type_name, name, ResolverKind.RELATION, f.resolver)
            for (name, f) in self.added_fields.items()
        )


@dataclass(frozen=True)
class FederatedSchema:
    """The executable schema with the type definitions, bindings and entity keys it was built from"""

    schema: GraphQLSchema
    type_definitions: str
    bindings: Mapping[tuple[str, str], ResolverBinding]
    entity_keys: Mapping[str, tuple[str, ...]]


def _is_external(node: Any) -> bool:
    return any(d.name.value == "external" for d in node.directives or ())


def _merge_type(existing: TypeDefinitionNode, new: TypeDefinitionNode) -> TypeDefinitionNode:
    """Combine the fields and directives of two definitions of the same object or input type"""
    name = new.name.value
    mergeable = (ObjectTypeDefinitionNode, InputObjectTypeDefinitionNode)
    if type(existing) is not type(new) or not isinstance(new, mergeable):
        raise MergeConflictError(f"Type {name} is defined more than once")
    fields = {f.name.value: f for f in existing.fields}  # type: ignore[attr-defined]
    for f in new.fields:
        other = fields.get(f.name.value)
        if other is not None:
            # external fields are owned by another subgraph, so they can be declared by every extension
            if _is_external(f) and _is_external(other) and print_ast(f.type) == print_ast(other.type):
                continue
            raise MergeConflictError(f"Field {name}.{f.name.value} is defined more than once")
        fields[f.name.value] = f
    directives = {print_ast(d): d for d in [*(existing.directives or ()), *(new.directives or ())]}
    # ast nodes can be frozen, so the merged type is a new node
    kwargs = {k: getattr(existing, k) for k in existing.keys if k not in ("fields", "directives")}
    return existing.__class__(**kwargs, fields=tuple(fields.values()), directives=tuple(directives.values()))


def _add_definitions(
    definitions: dict[str, TypeDefinitionNode], sdl: str, exclude: frozenset[str], owner: str
) -> None:
    names: set[str] = set()
    for node in parse(sdl).definitions:
        if not isinstance(node, TypeDefinitionNode):
            raise MergeConflictError(f"Unsupported definition in {owner}: {print_ast(node)}")
        name = node.name.value
        if name in names:
            raise MergeConflictError(f"Type {name} is defined more than once in {owner}")
        names.add(name)
        if name in exclude:
            # shared definitions are kept once
            definitions.setdefault(name, node)
        elif name in definitions:
            definitions[name] = _merge_type(definitions[name], node)
        else:
            definitions[name] = node


def _entity_keys(definitions: Mapping[str, TypeDefinitionNode]) -> dict[str, tuple[str, ...]]:
    keys = {}
    for name, node in definitions.items():
        for d in node.directives or ():
            if d.name.value == "key":
                (argument,) = d.arguments
                keys[name] = tuple(argument.value.value.split())  # type: ignore[attr-defined]
    return keys


def _check_bindings(
    definitions: Mapping[str, TypeDefinitionNode],
    bindings: Mapping[tuple[str, str], ResolverBinding],
    entity_keys: Mapping[str, tuple[str, ...]],
    required: Iterable[tuple[str, str]],
) -> None:
    for (type_name, field_name), binding in bindings.items():
        node = definitions.get(type_name)
        if binding.kind == ResolverKind.REFERENCE:
            if type_name not in entity_keys:
                raise MergeConflictError(f"Reference resolver for {type_name}, which is not an entity type")
        elif node is None or field_name not in {f.name.value for f in getattr(node, "fields", ())}:
            raise MergeConflictError(f"Resolver bound to unknown field {type_name}.{field_name}")
    for key in required:
        if key not in bindings:
            raise MergeConflictError(f"Field {'.'.join(key)} has no resolver")


def merge(
    units: Iterable[SubgraphUnit],
    extensions: Iterable[FederationExtension] = (),
    exclude: Iterable[str] = COMMON_TYPE_NAMES,
) -> FederatedSchema:
    """
    Merge the subgraph units and extensions into a single federated schema

    :param units: The subgraph units, e.g. one for each entity
    :param extensions: The types of other subgraphs to extend
    :param exclude: Names of the shared definitions that every unit can contain
    :raises MergeConflictError: if types or fields are defined more than once, or a field has no (or no valid) resolver
    """
    units, extensions, exclude = list(units), list(extensions), frozenset(exclude)
    definitions: dict[str, TypeDefinitionNode] = {}
    bindings: dict[tuple[str, str], ResolverBinding] = {}
    required: list[tuple[str, str]] = []

    def add_bindings(new: Iterable[ResolverBinding]) -> None:
        for b in new:
            key = (b.type_name, b.field_name)
            if key in bindings:
                raise MergeConflictError(f"Field {b.type_name}.{b.field_name} is bound more than once")
            bindings[key] = b

    for i, unit in enumerate(units):
        _add_definitions(definitions, unit.type_definitions, exclude, owner=f"unit {i}")
        add_bindings(unit.bindings)
    if "Query" not in definitions:
        raise MergeConflictError("None of the units defines a Query type")
    required += [("Query", f.name.value) for f in definitions["Query"].fields]  # type: ignore[attr-defined]

    local_types = set(definitions)
    for extension in extensions:
        if extension.type_name in local_types:
            raise MergeConflictError(f"Cannot extend type {extension.type_name}, it is defined by this subgraph")
        _add_definitions(definitions, extension.type_definition(), exclude, owner=f"extension {extension.type_name}")
        add_bindings(extension.bindings())
        required += [(extension.type_name, name) for name in extension.added_fields]

    entity_keys = _entity_keys(definitions)
    _check_bindings(definitions, bindings, entity_keys, required)

    resolver_map: dict[str, dict[str, ResolverBinding]] = {}
    for b in bindings.values():
        resolver_map.setdefault(b.type_name, {})[b.field_name] = b
    bindables: list[Any] = [s for s in SCALARS if s.name in definitions]
    for type_name, fields in resolver_map.items():
        if type_name == "Query":
            obj: ObjectType = QueryType()
        elif type_name in entity_keys:
            obj = FederatedObjectType(type_name)
        else:
            obj = ObjectType(type_name)
        for field_name, b in fields.items():
            if b.kind == ResolverKind.REFERENCE:
                obj.reference_resolver(b.resolve)  # type: ignore[attr-defined]
            else:
                obj.set_field(field_name, b.resolve)
        bindables.append(obj)

    type_definitions = print_ast(DocumentNode(definitions=tuple(definitions.values())))
    schema = make_federated_schema(type_definitions, *bindables)
    logging.info(
        f"Merged {len(units)} unit(s) and {len(extensions)} extension(s) into a schema with "
        f"{len(definitions)} types and entities {', '.join(sorted(entity_keys)) or '(none)'}"
    )
    return FederatedSchema(
        schema=schema,
        type_definitions=type_definitions,
        bindings=MappingProxyType(bindings),
        entity_keys=MappingProxyType(entity_keys),
    )
