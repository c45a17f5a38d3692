"""
Assemble the subgraph from the settings: an entity schema for every configured index,
the extensions of types owned by other subgraphs, and the lookup that resolves their relations.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from elasticsearch import AsyncElasticsearch

from esgraph.config import EntitySettings, Settings
from esgraph.federation import (
    REFERENCE_FIELD,
    AddedField,
    FederatedSchema,
    FederationExtension,
    MergeConflictError,
    ResolverBinding,
    ResolverKind,
    SubgraphUnit,
    merge,
)
from esgraph.mapping import get_index_mapping, translate
from esgraph.models import TypedField
from esgraph.relations import CONTEXT_KEY, RelationDispatcher, reference_resolver, relation_resolver
from esgraph.resolvers import EntityResolvers, build_resolvers
from esgraph.store import (
    BatchLookupCapability,
    ElasticSearchCapability,
    RelationTarget,
    SearchCapability,
    SearchRelationLookup,
    relation_target,
)
from esgraph.typedefs import DEFAULT_LIMIT, entity_type_definitions, query_field_names


@dataclass(frozen=True)
class EntitySchema:
    type_name: str
    fields: TypedField
    index: str
    resolvers: EntityResolvers


def build_entity_schema(
    entity: EntitySettings, mapping: Mapping[str, Any], store: SearchCapability
) -> EntitySchema:
    fields = translate(mapping, entity.plural_fields, name=entity.type_name)
    resolvers = build_resolvers(fields, store, entity.index, entity.tiebreak_field)
    return EntitySchema(type_name=entity.type_name, fields=fields, index=entity.index, resolvers=resolvers)


def reference_relation(type_name: str) -> str:
    """Name of the relation that finds entities of this type by _id"""
    return f"{type_name}._id"


def subgraph_unit(entity: EntitySchema) -> SubgraphUnit:
    """The type definitions and resolvers of a single entity"""
    r = entity.resolvers
    names = query_field_names(entity.type_name)

    async def resolve_search(_, info, filter=None, sort=None, limit=DEFAULT_LIMIT):
        return await r.search(filter, sort, limit)

    async def resolve_pagination(_, info, filter=None, sort=None, offset=0, limit=DEFAULT_LIMIT):
        return await r.paginate(filter, sort, offset, limit)

    async def resolve_connection(_, info, filter=None, sort=None, first=DEFAULT_LIMIT, after=None):
        return await r.connect(filter, sort, first, after)

    bindings = (
        ResolverBinding("Query", names.search, ResolverKind.SEARCH, resolve_search),
        ResolverBinding("Query", names.pagination, ResolverKind.PAGINATE, resolve_pagination),
        ResolverBinding("Query", names.connection, ResolverKind.CONNECT, resolve_connection),
        ResolverBinding(
            entity.type_name,
            REFERENCE_FIELD,
            ResolverKind.REFERENCE,
            reference_resolver(reference_relation(entity.type_name), "_id", entity.type_name),
        ),
    )
    return SubgraphUnit(entity_type_definitions(entity.fields), bindings)


def build_relation_targets(settings: Settings, entities: Mapping[str, EntitySchema]) -> dict[str, RelationTarget]:
    targets = {
        reference_relation(e.type_name): relation_target(e.index, e.fields, "_id") for e in entities.values()
    }
    for name, relation in settings.relations.items():
        entity = entities.get(relation.entity)
        if entity is None:
            raise ValueError(f"Relation {name} refers to unknown entity {relation.entity}")
        targets[name] = relation_target(entity.index, entity.fields, relation.foreign_key)
    return targets


def build_extensions(settings: Settings) -> list[FederationExtension]:
    extensions = []
    for ext in settings.extensions:
        added = {}
        for name, f in ext.added_fields.items():
            relation = settings.relations.get(f.relation)
            if relation is None:
                raise ValueError(f"Field {ext.type_name}.{name} refers to unknown relation {f.relation}")
            return_type = f.return_type or f"[{relation.entity}!]"
            resolver = relation_resolver(
                f.relation, parent_key=f.parent_key or ext.key_fields[0], many=return_type.startswith("[")
            )
            added[name] = AddedField(return_type=return_type, resolver=resolver)
        extensions.append(
            FederationExtension(
                type_name=ext.type_name,
                key_fields=tuple(ext.key_fields),
                external_fields=dict(ext.external_fields),
                added_fields=added,
            )
        )
    return extensions


@dataclass(frozen=True)
class Subgraph:
    schema: FederatedSchema
    lookup: BatchLookupCapability

    def context(self, request: Any = None) -> dict[str, Any]:
        """A fresh GraphQL context value, with its own relation dispatcher, for every request"""
        return {"request": request, CONTEXT_KEY: RelationDispatcher(self.lookup)}


async def create_subgraph(
    settings: Settings, elastic: AsyncElasticsearch | None = None, store: SearchCapability | None = None
) -> Subgraph:
    """
    Build the subgraph for these settings

    :param elastic: The elastic client, used to read the mappings that are not configured (and as store by default)
    :param store: The search capability to use instead of elastic
    :raises MappingError: if a mapping cannot be translated
    :raises MergeConflictError: if the entities and extensions cannot be merged into a single schema
    """
    if store is None:
        if elastic is None:
            raise ValueError("Either an elastic client or a store is needed")
        store = ElasticSearchCapability(lambda: elastic)
    entities: dict[str, EntitySchema] = {}
    for e in settings.entities:
        if e.type_name in entities:
            raise MergeConflictError(f"Entity type {e.type_name} is configured more than once")
        mapping = e.mapping
        if mapping is None:
            if elastic is None:
                raise ValueError(f"No mapping given for {e.type_name} and no elastic connection to read it from")
            mapping = await get_index_mapping(elastic, e.index)
        entities[e.type_name] = build_entity_schema(e, mapping, store)
        logging.info(f"Serving index {e.index} as {e.type_name}")
    lookup = SearchRelationLookup(store, build_relation_targets(settings, entities), size=settings.relation_size)
    schema = merge([subgraph_unit(e) for e in entities.values()], build_extensions(settings))
    return Subgraph(schema=schema, lookup=lookup)
