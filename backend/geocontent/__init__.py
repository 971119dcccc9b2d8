"""Geospatial content API package.

This package contains the backend for listing and retrieving multi-tenant
geospatial content (layers, locations, widgets and dashboards) through a
compact query language.

- Compiles filter, sort, select, include, search and page directives into
  immutable query options
- Merges relation-prefixed directives into population nodes
- Paginates with page numbers or self-contained keyset cursors
- Counts facet values for filter UIs
- Stores documents in PostgreSQL JSONB, or in memory for local development

See README and module sub-docstrings for details on architecture and usage.
"""
