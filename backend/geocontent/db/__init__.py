"""Document collections and their query evaluation.

This package holds the collection schemas, the in-memory and PostgreSQL
document collections, the in-memory predicate evaluator, the JSONB SQL
compiler and relation population.

Example:
    Use in a service or FastAPI dependency:
        >>> from geocontent.db import database
        >>> store = database.get_document_store(settings)
        >>> layers = store.collection("layers")
"""
