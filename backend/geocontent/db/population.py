"""Resolve relation references into related documents.

A relation field holds the id of a related document or a list of ids. For
every ``PopulationNode`` the related collection is queried once for all ids
referenced by the page, with the node's own filter, projection and sort, and
the node's children are resolved on the related documents in turn.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from geocontent.core import errors
from geocontent.query import expressions, types

if TYPE_CHECKING:
    from geocontent.db import database, models

logger = logging.getLogger(__name__)


def _referenced_ids(documents: Iterable[Mapping[str, Any]], path: str) -> list[Any]:
    ids: dict[Any, None] = {}
    for document in documents:
        value = document.get(path)
        for ref in value if isinstance(value, list) else [value]:
            if isinstance(ref, (str, int)) and not isinstance(ref, bool):
                ids[ref] = None
    return list(ids)


def _replace(
    document: dict[str, Any],
    node: types.PopulationNode,
    related: Mapping[Any, dict[str, Any]],
    rank: Mapping[Any, int],
) -> dict[str, Any]:
    value = document.get(node.path)
    if isinstance(value, list):
        found = [related[ref] for ref in value if ref in related]
        if node.sort:
            found.sort(key=lambda doc: rank[doc[expressions.ID_FIELD]])
        populated: Any = found
    else:
        populated = related.get(value)
    return {**document, node.path: populated}


async def populate(
    store: database.DocumentStoreProtocol,
    schema: models.CollectionSchema,
    documents: list[dict[str, Any]],
    nodes: Iterable[types.PopulationNode],
) -> list[dict[str, Any]]:
    """Replace reference ids in ``documents`` by the related documents.

    Single references that match nothing (missing, or rejected by the
    node's filter) become None; array references keep only matches.

    Raises:
        ValidationError: If a node names a field that is not a relation.
    """
    for node in nodes:
        target = schema.relations.get(node.path)
        if target is None:
            raise errors.ValidationError(
                [errors.error_object("include", f"Invalid relation: {node.path}")]
            )
        present = [doc for doc in documents if node.path in doc]
        ids = _referenced_ids(present, node.path)
        if not ids:
            continue

        collection = store.collection(target)
        query = expressions.conjunction(
            expressions.from_filter(node.filter),
            expressions.id_membership(ids),
        )
        found = await collection.find(
            query,
            projection=node.select.without([expressions.ID_FIELD]),
            sort=node.sort,
            populate=node.children,
        )
        logger.debug("populated %d of %d %s references", len(found), len(ids), node.path)

        related = {doc[expressions.ID_FIELD]: doc for doc in found}
        rank = {doc[expressions.ID_FIELD]: position for position, doc in enumerate(found)}
        documents = [
            _replace(doc, node, related, rank) if node.path in doc else doc
            for doc in documents
        ]
    return documents
