"""Query compiler and pagination engine.

This package turns flat, client-supplied query parameters into a structured,
store-agnostic ``QueryOptions`` value and executes it against a document
collection with offset-based or cursor-based pagination.

Submodules, leaf-first:
    - params: decodes ``page[number]=2`` style query strings into trees.
    - types: immutable field masks, filter trees, population nodes, cursors.
    - handlers: one pure handler per directive plus the ``QueryParser``.
    - population: pushes relation-prefixed directives into population nodes.
    - cursor: opaque cursor token encoding and decoding.
    - expressions: store-agnostic predicates consumed by collections.
    - executor: list pages, totals, facet counts and next/previous cursors.
    - links: self/next/prev/first/last link building.
"""
