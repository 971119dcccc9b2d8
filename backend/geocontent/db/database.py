"""Document collections backing the content API.

Every content type lives in its own collection of JSON documents keyed by
``id``. Two implementations share ``DocumentCollectionProtocol``: an
in-memory one for tests and local development, and a PostgreSQL one storing
each document in a ``JSONB`` column. psycopg2 is blocking, so the PostgreSQL
collection runs every statement in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol

import psycopg2
import psycopg2.extensions
import psycopg2.extras

from geocontent.db import matching, models, population, sql
from geocontent.query import expressions, types

if TYPE_CHECKING:
    from geocontent.core import config

logger = logging.getLogger(__name__)

Document = dict[str, Any]


def _key_expression(
    schema: models.CollectionSchema,
    key: str,
) -> expressions.Expression:
    fields = (expressions.ID_FIELD, *schema.unique_fields)
    return expressions.Or(
        tuple(expressions.Condition(f, types.Operator.EQ, key) for f in fields)
    )


class DocumentCollectionProtocol(Protocol):
    """Protocol interface for querying one collection of documents.

    Implementations evaluate store-agnostic expressions, supporting both
    in-memory (testing) and PostgreSQL (production) backends.
    """

    schema: models.CollectionSchema

    async def find(
        self,
        expression: expressions.Expression,
        *,
        projection: Mapping[str, int] | None = None,
        sort: Mapping[str, int] | None = None,
        skip: int = 0,
        limit: int | None = None,
        populate: Sequence[types.PopulationNode] = (),
    ) -> list[Document]: ...

    async def count(self, expression: expressions.Expression) -> int: ...

    async def aggregate(
        self,
        group_by: str,
        expression: expressions.Expression,
    ) -> list[tuple[Any, int]]: ...

    async def get(
        self,
        key: str,
        expression: expressions.Expression = expressions.MATCH_ALL,
        *,
        projection: Mapping[str, int] | None = None,
        populate: Sequence[types.PopulationNode] = (),
    ) -> Document | None: ...

    async def add(self, document: Document) -> Document: ...


class DocumentStoreProtocol(Protocol):
    def collection(self, name: str) -> DocumentCollectionProtocol: ...


class _CollectionBase:
    """Population and lookup by key shared by both implementations."""

    schema: models.CollectionSchema
    store: DocumentStoreProtocol

    async def _populate(
        self,
        documents: list[Document],
        nodes: Sequence[types.PopulationNode],
    ) -> list[Document]:
        if not nodes or not documents:
            return documents
        return await population.populate(self.store, self.schema, documents, nodes)

    async def get(
        self,
        key: str,
        expression: expressions.Expression = expressions.MATCH_ALL,
        *,
        projection: Mapping[str, int] | None = None,
        populate: Sequence[types.PopulationNode] = (),
    ) -> Document | None:
        """Retrieve a document by id or by any unique field.

        Args:
            key: Id or unique field value (slug).
            expression: Additional conditions the document must satisfy.
            projection: Fields to include or exclude.
            populate: Relations to resolve.

        Returns:
            The document if found and visible, None otherwise.
        """
        found = await self.find(
            expressions.conjunction(expression, _key_expression(self.schema, key)),
            projection=projection,
            sort={expressions.ID_FIELD: 1},
            limit=1,
            populate=populate,
        )
        return found[0] if found else None


class InMemoryDocumentCollection(_CollectionBase):
    """Simple in-memory collection for tests and local development.

    Stores documents in a dictionary. Data is lost when the process exits.
    """

    def __init__(
        self,
        schema: models.CollectionSchema,
        store: DocumentStoreProtocol,
    ) -> None:
        self.schema = schema
        self.store = store
        self._documents: dict[str, Document] = {}

    def _matching(self, expression: expressions.Expression) -> list[Document]:
        return [
            doc
            for doc in self._documents.values()
            if matching.matches(doc, expression, self.schema.search_fields)
        ]

    async def find(
        self,
        expression: expressions.Expression,
        *,
        projection: Mapping[str, int] | None = None,
        sort: Mapping[str, int] | None = None,
        skip: int = 0,
        limit: int | None = None,
        populate: Sequence[types.PopulationNode] = (),
    ) -> list[Document]:
        documents = self._matching(expression)
        if sort:
            documents = matching.sort_documents(documents, sort)
        end = None if limit is None else skip + limit
        projection = matching.keep_relations(projection, populate)
        page = [matching.project(doc, projection) for doc in documents[skip:end]]
        return await self._populate(page, populate)

    async def count(self, expression: expressions.Expression) -> int:
        return len(self._matching(expression))

    async def aggregate(
        self,
        group_by: str,
        expression: expressions.Expression,
    ) -> list[tuple[Any, int]]:
        return matching.group_counts(self._matching(expression), group_by)

    async def add(self, document: Document) -> Document:
        """Add or replace a document, keyed by its ``id``."""
        self._documents[str(document[expressions.ID_FIELD])] = dict(document)
        return document


class PostgresDocumentCollection(_CollectionBase):
    """PostgreSQL-backed collection storing documents as JSONB.

    Automatically creates the collection table on first use.
    """

    CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS {table} (
      id TEXT PRIMARY KEY,
      data JSONB NOT NULL,
      created_at TIMESTAMPTZ DEFAULT now()
    );
    """

    def __init__(
        self,
        schema: models.CollectionSchema,
        store: DocumentStoreProtocol,
        settings: config.Settings,
    ) -> None:
        self.schema = schema
        self.store = store
        self.settings = settings
        self.table = sql.validate_identifier(schema.name)
        self._schema_ready = False

    def _connection(self) -> psycopg2.extensions.connection:
        return psycopg2.connect(self.settings.database_url)

    def _ensure_schema(self, conn: psycopg2.extensions.connection) -> None:
        if self._schema_ready:
            return
        with conn.cursor() as cur:
            cur.execute(self.CREATE_TABLE_SQL.format(table=self._quoted(conn)))
        conn.commit()
        self._schema_ready = True

    def _quoted(self, conn: psycopg2.extensions.connection) -> str:
        return psycopg2.extensions.quote_ident(self.table, conn)

    def _fetch(self, build: Any) -> list[tuple[Any, ...]]:
        with self._connection() as conn:
            self._ensure_schema(conn)
            statement: sql.Fragment = build(self._quoted(conn))
            if self.settings.debug:
                logger.debug("%s %s", statement.sql, statement.params)
            with conn.cursor() as cur:
                cur.execute(statement.sql, statement.params)
                return cur.fetchall()

    def _where(self, expression: expressions.Expression) -> sql.Fragment:
        return sql.compile_expression(expression, self.schema.search_fields)

    async def find(
        self,
        expression: expressions.Expression,
        *,
        projection: Mapping[str, int] | None = None,
        sort: Mapping[str, int] | None = None,
        skip: int = 0,
        limit: int | None = None,
        populate: Sequence[types.PopulationNode] = (),
    ) -> list[Document]:
        where = self._where(expression)
        order = sql.compile_sort(sort or {})
        rows = await asyncio.to_thread(
            self._fetch,
            lambda table: sql.select_sql(table, where, order, skip, limit),
        )
        projection = matching.keep_relations(projection, populate)
        page = [matching.project(row[0], projection) for row in rows]
        return await self._populate(page, populate)

    async def count(self, expression: expressions.Expression) -> int:
        where = self._where(expression)
        rows = await asyncio.to_thread(
            self._fetch, lambda table: sql.count_sql(table, where)
        )
        return int(rows[0][0])

    async def aggregate(
        self,
        group_by: str,
        expression: expressions.Expression,
    ) -> list[tuple[Any, int]]:
        where = self._where(expression)
        rows = await asyncio.to_thread(
            self._fetch,
            lambda table: sql.group_count_sql(table, group_by, where),
        )
        return [(value, int(count)) for value, count in rows]

    def _upsert(self, document: Document) -> None:
        with self._connection() as conn:
            self._ensure_schema(conn)
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {self._quoted(conn)} (id, data)
                    VALUES (%(id)s, %(data)s)
                    ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data;
                    """,
                    {
                        "id": str(document[expressions.ID_FIELD]),
                        "data": psycopg2.extras.Json(document, dumps=sql.json_param),
                    },
                )
            conn.commit()

    async def add(self, document: Document) -> Document:
        """Insert or update a document, keyed by its ``id``."""
        await asyncio.to_thread(self._upsert, document)
        return document


class InMemoryDocumentStore(DocumentStoreProtocol):
    """One in-memory collection per content schema."""

    def __init__(
        self,
        schemas: Mapping[str, models.CollectionSchema] = models.SCHEMAS,
    ) -> None:
        self._collections = {
            name: InMemoryDocumentCollection(schema, self)
            for name, schema in schemas.items()
        }

    def collection(self, name: str) -> InMemoryDocumentCollection:
        return self._collections[name]


class PostgresDocumentStore(DocumentStoreProtocol):
    """One JSONB table per content schema in a single database."""

    def __init__(
        self,
        settings: config.Settings,
        schemas: Mapping[str, models.CollectionSchema] = models.SCHEMAS,
    ) -> None:
        self._collections = {
            name: PostgresDocumentCollection(schema, self, settings)
            for name, schema in schemas.items()
        }

    def collection(self, name: str) -> PostgresDocumentCollection:
        return self._collections[name]


_stores: dict[tuple[str, str], DocumentStoreProtocol] = {}


def get_document_store(settings: config.Settings) -> DocumentStoreProtocol:
    """Factory function returning the process-wide document store.

    Stores are created once per backend and database URL, so the in-memory
    backend keeps its documents across requests.

    Args:
        settings: Application settings selecting the backend and database.

    Returns:
        InMemoryDocumentStore when ``storage_backend`` is "memory",
        otherwise PostgresDocumentStore.
    """
    key = (settings.storage_backend, settings.database_url)
    if key not in _stores:
        if settings.storage_backend == "memory":
            _stores[key] = InMemoryDocumentStore()
        else:
            _stores[key] = PostgresDocumentStore(settings)
    return _stores[key]
