"""Push relation-prefixed directives down into population nodes.

Clients address related documents with dotted prefixes: with
``include=owner.team`` the select entry ``owner.team.name`` belongs to the
``team`` relation of ``owner``, not to the listed documents themselves. The
merger walks every population node at every depth, moves matching
select/sort/filter keys into the node (stripping the prefix) and removes them
from the top-level masks. Keys starting with ``*.`` are wildcards: they are
copied into every node and never consumed.

Example:
    >>> options = types.QueryOptions(
    ...     populate=(types.PopulationNode("owner"),),
    ...     select=types.FieldMask({"owner.name": 1, "title": 1}),
    ... )
    >>> merged = merge_populations(options)
    >>> merged.select.to_dict(), merged.populate[0].select.to_dict()
    ({'title': 1}, {'name': 1})
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Literal, TypeVar

from geocontent.query import types

if TYPE_CHECKING:
    from collections.abc import Iterable

Directive = Literal["select", "sort", "filter"]
MaskT = TypeVar("MaskT", bound=types.FieldMask | types.FilterTree)


def _distribute(
    nodes: Iterable[types.PopulationNode],
    remaining: MaskT,
    directive: Directive,
    prefix: str = "",
) -> tuple[tuple[types.PopulationNode, ...], MaskT]:
    """Move keys of ``remaining`` addressed to ``nodes`` into the nodes.

    Returns the rewritten nodes and what is left of the top-level mask.
    """
    rewritten = []
    for node in nodes:
        node_prefix = f"{prefix}{node.path}."
        local = remaining.split_prefix(node_prefix)
        if local:
            additions = {name: remaining[key] for key, name in local.items()}
            own = getattr(node, directive)
            node = dataclasses.replace(node, **{directive: own.merge(additions)})
            remaining = remaining.without(
                key for key in local if not key.startswith(types.WILDCARD)
            )
        if node.children:
            children, remaining = _distribute(
                node.children, remaining, directive, node_prefix
            )
            node = dataclasses.replace(node, children=children)
        rewritten.append(node)
    return tuple(rewritten), remaining


def merge_populations(options: types.QueryOptions) -> types.QueryOptions:
    """Distribute prefixed directives and merge nodes sharing a path.

    Args:
        options: Options straight out of the directive handlers.

    Returns:
        New options whose population nodes carry their own select, sort and
        filter, with one node per top-level relation path.
    """
    if not options.populate:
        return options

    populate, select = _distribute(options.populate, options.select, "select")
    populate, sort = _distribute(populate, options.sort, "sort")
    populate, filter_tree = _distribute(populate, options.filter, "filter")

    return dataclasses.replace(
        options,
        populate=types.merge_nodes(populate),
        select=select,
        sort=sort,
        filter=filter_tree,
    )


def strip_wildcards(options: types.QueryOptions) -> types.QueryOptions:
    """Drop ``*`` keys, which never apply to the listed documents."""

    def wildcards(keys: Iterable[str]) -> list[str]:
        return [key for key in keys if key.startswith(types.WILDCARD)]

    return dataclasses.replace(
        options,
        select=options.select.without(wildcards(options.select)),
        sort=options.sort.without(wildcards(options.sort)),
        filter=options.filter.without_wildcards(),
    )
