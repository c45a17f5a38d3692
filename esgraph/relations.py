"""
Batched resolution of relations

Fields that a subgraph adds to types owned by other subgraphs (and the _entities reference resolution) typically
resolve a relation for a whole list of parents. Rather than querying the store once per parent, the resolvers
queue their parent id with the RelationDispatcher of the request, which looks up all ids queued in the same
execution pass with a single lookup_many call per relation.
"""

import asyncio
import logging
from typing import Any, Callable, Hashable, Mapping

from esgraph.store import BatchLookupCapability

# key of the dispatcher in the GraphQL context value
CONTEXT_KEY = "relations"


class RelationLookupError(LookupError):
    """The batch lookup of a relation failed"""


class RelationDispatcher:
    """
    Coalesce relation requests into batched lookups. Use one dispatcher per request:
    results are memoised for the lifetime of the dispatcher.

    Pending requests are flushed by a callback scheduled on the event loop when the first request is queued,
    i.e. after all resolvers that were started in the current pass had a chance to queue their ids.
    flush() can also be called explicitly.
    """

    def __init__(self, lookup: BatchLookupCapability):
        self.lookup = lookup
        #: number of lookup_many calls made
        self.batches = 0
        self._results: dict[tuple[str, Hashable], asyncio.Future] = {}
        self._pending: dict[str, list[Hashable]] = {}
        self._tasks: set[asyncio.Task] = set()
        self._scheduled = False

    async def resolve(self, parent_id: Hashable | None, relation_name: str) -> list[dict] | None:
        """
        Get the documents related to this parent, or None if there are none

        :raises RelationLookupError: if the batch lookup of the relation failed
        """
        if parent_id is None:
            return None
        key = (relation_name, parent_id)
        future = self._results.get(key)
        if future is None:
            loop = asyncio.get_running_loop()
            future = loop.create_future()
            self._results[key] = future
            self._pending.setdefault(relation_name, []).append(parent_id)
            if not self._scheduled:
                self._scheduled = True
                loop.call_soon(self._dispatch_pending)
        # a cancelled resolver should not cancel the result shared with other resolvers
        return await asyncio.shield(future)

    async def flush(self) -> None:
        """Look up all pending requests now"""
        await asyncio.gather(*self._dispatch_pending())

    def _dispatch_pending(self) -> list[asyncio.Task]:
        self._scheduled = False
        pending, self._pending = self._pending, {}
        tasks = [asyncio.ensure_future(self._dispatch(name, ids)) for (name, ids) in pending.items()]
        # the event loop only keeps weak references to tasks
        for task in tasks:
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return tasks

    async def _dispatch(self, relation_name: str, ids: list[Hashable]) -> None:
        self.batches += 1
        logging.debug(f"Looking up relation {relation_name} for {len(ids)} parent(s)")
        try:
            result = await self.lookup.lookup_many(relation_name, ids)
        except Exception as e:
            logging.exception(f"Lookup of relation {relation_name} failed")
            for id in ids:
                error = RelationLookupError(f"Could not look up {relation_name}: {e}")
                error.__cause__ = e
                self._set(relation_name, id, error=error)
            return
        for id in ids:
            self._set(relation_name, id, result=result.get(id) or None)

    def _set(self, relation_name: str, id: Hashable, result: Any = None, error: Exception | None = None) -> None:
        future = self._results[relation_name, id]
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)


def _get(parent: Any, key: str) -> Any:
    if isinstance(parent, Mapping):
        return parent.get(key)
    return getattr(parent, key, None)


def relation_resolver(relation_name: str, parent_key: str, many: bool = True) -> Callable:
    """
    Create a GraphQL resolver that resolves the relation for the parent_key value of its parent object.
    If many is False, the resolver returns the first related document (in index order) instead of a list.
    """

    async def resolve_relation(parent: Any, info, **kargs) -> Any:
        dispatcher: RelationDispatcher = info.context[CONTEXT_KEY]
        documents = await dispatcher.resolve(_get(parent, parent_key), relation_name)
        if many or not documents:
            return documents
        return documents[0]

    return resolve_relation


def reference_resolver(relation_name: str, key: str, type_name: str) -> Callable:
    """
    Create a federation reference resolver: given a representation ({__typename, key: value}),
    return the local entity with that key, or None if there is none.
    """

    async def resolve_reference(_, info, representation: Mapping[str, Any]) -> dict | None:
        dispatcher: RelationDispatcher = info.context[CONTEXT_KEY]
        documents = await dispatcher.resolve(representation.get(key), relation_name)
        if not documents:
            return None
        return dict(documents[0], __typename=type_name)

    return resolve_reference
